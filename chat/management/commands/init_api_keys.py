"""
Management command to seed the API key registry at deploy time.

Requests seed an empty registry lazily. This command also adds slots for
keys configured after the first seed (for example after raising
``PERPLEXITY_KEY_SLOTS``), which lazy seeding never does.
"""

from asgiref.sync import async_to_sync
from django.conf import settings
from django.core.management.base import BaseCommand

from chat.key_registry import KeyRegistry


class Command(BaseCommand):
    help = "Create one API key slot per configured PERPLEXITY_API_KEY_<n>"

    def handle(self, *args, **options):
        if not any(settings.PERPLEXITY_API_KEYS):
            self.stdout.write(
                self.style.WARNING('No PERPLEXITY_API_KEY_<n> variables are set.')
            )
            return

        registry = KeyRegistry(settings.PERPLEXITY_API_KEYS)
        created = async_to_sync(registry.add_missing_slots)()
        if created:
            self.stdout.write(self.style.SUCCESS(f'Created {created} API key slot(s).'))
        else:
            self.stdout.write('API key slots already exist; nothing to do.')
