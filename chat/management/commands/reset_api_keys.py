"""
Management command to bring exhausted Perplexity API keys back into rotation.

The application never resets an exhausted key on its own; run this once the
provider quota has been refilled.
"""

from asgiref.sync import async_to_sync
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from chat.key_registry import KeyRegistry
from chat.models import ApiKeyStatus


class Command(BaseCommand):
    help = "Reactivate exhausted Perplexity API keys"

    def add_arguments(self, parser):
        parser.add_argument(
            '--index',
            type=int,
            help='Reactivate only this 1-based key index (default: all keys)',
        )

    def handle(self, *args, **options):
        registry = KeyRegistry(settings.PERPLEXITY_API_KEYS)
        async_to_sync(registry.ensure_initialized)()

        key_index = options['index']
        if key_index is None:
            count = async_to_sync(registry.reset_all)()
            self.stdout.write(self.style.SUCCESS(f'Reactivated {count} API key(s).'))
        elif async_to_sync(registry.reactivate)(key_index):
            self.stdout.write(self.style.SUCCESS(f'Reactivated API key {key_index}.'))
        else:
            raise CommandError(f'No API key slot with index {key_index}.')

        for slot in ApiKeyStatus.objects.order_by('key_index'):
            self.stdout.write(f"  {slot}")
