"""
Test-specific Django settings that extend the main settings.

This module provides default values for environment variables that are required
in the main settings but may not be available in CI/test environments.
"""

import os

# Set dummy environment variables for testing if not already set
if not os.getenv('SECRET_KEY'):
    os.environ['SECRET_KEY'] = 'test-secret-key-django-testing-only'

for _index in range(1, 4):
    os.environ.setdefault(f'PERPLEXITY_API_KEY_{_index}', f'pplx-test-key-{_index}')

# Never ship test telemetry
os.environ['LOGFIRE_KEY'] = ''

# Import all settings from the main settings module
from .settings import *  # noqa: F403, F401, E402

# CI provides Postgres; everywhere else an SQLite file is enough
if os.getenv('POSTGRES_HOST'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.getenv('POSTGRES_DB', 'test_db'),
            'USER': os.getenv('POSTGRES_USER', 'test_user'),
            'PASSWORD': os.getenv('POSTGRES_PASSWORD', 'test_password'),
            'HOST': os.getenv('POSTGRES_HOST', 'localhost'),
            'PORT': os.getenv('POSTGRES_PORT', '5432'),
            'CONN_MAX_AGE': 0,  # No persistent connections
            'OPTIONS': {},
            'TEST': {
                'NAME': None,  # Use default test database name
            },
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'test_db.sqlite3',  # noqa: F405
        }
    }

# Views are exercised many times per test case
RATELIMIT_ENABLE = False

PERPLEXITY_API_URL = 'https://api.perplexity.test'
PERPLEXITY_TIMEOUT = 5.0
