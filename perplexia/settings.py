"""
Django settings for the perplexia project.

Every deployment-specific value is read from the environment so the same
module serves local development, CI and production.
"""

import os
from pathlib import Path

import logfire

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ['SECRET_KEY']

DEBUG = os.getenv('DEBUG', 'false').lower() in ('1', 'true', 'yes')

ALLOWED_HOSTS = [
    host.strip()
    for host in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
    if host.strip()
]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'chat',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'perplexia.ratelimit_middleware.RateLimitMiddleware',
]

ROOT_URLCONF = 'perplexia.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

ASGI_APPLICATION = 'perplexia.asgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.getenv('POSTGRES_DB', 'perplexia'),
        'USER': os.getenv('POSTGRES_USER', 'perplexia'),
        'PASSWORD': os.getenv('POSTGRES_PASSWORD', ''),
        'HOST': os.getenv('POSTGRES_HOST', 'localhost'),
        'PORT': os.getenv('POSTGRES_PORT', '5432'),
        'CONN_MAX_AGE': int(os.getenv('POSTGRES_CONN_MAX_AGE', '60')),
    }
}

# django-ratelimit needs a cache shared by every worker process
CACHES = {
    'default': {
        'BACKEND': 'perplexia.cache_backends.RateLimitDatabaseCache',
        'LOCATION': 'perplexia_cache',
    }
}

RATELIMIT_USE_CACHE = 'default'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ---------------------------------------------------------------------------
# Perplexity
# ---------------------------------------------------------------------------

# Number of numbered PERPLEXITY_API_KEY_<n> variables to read.
PERPLEXITY_KEY_SLOTS = int(os.getenv('PERPLEXITY_KEY_SLOTS', '3'))

# Position i holds key index i + 1; missing variables stay as '' so indexes
# never shift when one key is removed from the environment.
PERPLEXITY_API_KEYS = tuple(
    os.getenv(f'PERPLEXITY_API_KEY_{index}', '').strip()
    for index in range(1, PERPLEXITY_KEY_SLOTS + 1)
)

PERPLEXITY_API_URL = os.getenv('PERPLEXITY_API_URL', 'https://api.perplexity.ai')
PERPLEXITY_TIMEOUT = float(os.getenv('PERPLEXITY_TIMEOUT', '60'))
PERPLEXITY_DEFAULT_MODEL = os.getenv('PERPLEXITY_DEFAULT_MODEL', 'sonar')

# ---------------------------------------------------------------------------
# Logging / Logfire
# ---------------------------------------------------------------------------

LOGFIRE_KEY = os.getenv('LOGFIRE_KEY', '')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.getenv('LOG_LEVEL', 'INFO'),
    },
}

if LOGFIRE_KEY:
    logfire.configure(
        token=LOGFIRE_KEY,
        service_name='perplexia',
        send_to_logfire='if-token-present',
        console=False,
    )
    logfire.instrument_django()
    logfire.instrument_httpx()

    LOGGING['handlers']['logfire'] = {'class': 'logfire.LogfireLoggingHandler'}
    LOGGING['root']['handlers'].append('logfire')
