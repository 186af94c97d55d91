"""ASGI entry point for the perplexia project (views are async)."""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'perplexia.settings')

application = get_asgi_application()
