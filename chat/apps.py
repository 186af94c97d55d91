"""chat.apps module.

Django application configuration for the *chat* app used by the **perplexia**
project.
"""

import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class ChatConfig(AppConfig):
    """Django ``AppConfig`` for the **chat** application."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'chat'
    verbose_name = 'Perplexia chat'

    def ready(self) -> None:
        # The registry is seeded lazily on the first request; the database
        # must not be queried here.
        configured = sum(1 for key in settings.PERPLEXITY_API_KEYS if key)
        if configured:
            logger.info("%s Perplexity API key(s) configured", configured)
        else:
            logger.warning(
                "No PERPLEXITY_API_KEY_<n> variables are set; every chat turn "
                "will fail until one is configured."
            )
