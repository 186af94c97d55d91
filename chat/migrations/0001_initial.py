import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ApiKeyStatus',
            fields=[
                (
                    'id',
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name='ID',
                    ),
                ),
                (
                    'key_index',
                    models.PositiveIntegerField(
                        help_text='1-based position in PERPLEXITY_API_KEYS',
                        unique=True,
                    ),
                ),
                (
                    'is_active',
                    models.BooleanField(
                        default=True,
                        help_text='Key has been selected as the current key',
                    ),
                ),
                (
                    'is_exhausted',
                    models.BooleanField(
                        default=False,
                        help_text='Key was rejected with a quota or rate-limit error',
                    ),
                ),
                ('last_used', models.DateTimeField(blank=True, null=True)),
                ('error_count', models.PositiveIntegerField(default=0)),
            ],
            options={
                'verbose_name': 'API Key Status',
                'verbose_name_plural': 'API Key Statuses',
                'db_table': 'api_keys',
                'ordering': ['key_index'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(
                            ('is_active', True), ('is_exhausted', True), _negated=True
                        ),
                        name='api_key_not_active_and_exhausted',
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name='Chat',
            fields=[
                (
                    'id',
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    'title',
                    models.CharField(
                        default='New Chat',
                        help_text='Chat title, set from the first message unless renamed.',
                        max_length=255,
                    ),
                ),
                (
                    'model',
                    models.CharField(
                        default='sonar',
                        help_text='Perplexity model used when a message names none',
                        max_length=64,
                    ),
                ),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Chat',
                'verbose_name_plural': 'Chats',
                'db_table': 'chats',
                'ordering': ['-updated_at'],
            },
        ),
        migrations.CreateModel(
            name='Message',
            fields=[
                (
                    'id',
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    'role',
                    models.CharField(
                        choices=[('user', 'User'), ('assistant', 'Assistant')],
                        max_length=16,
                    ),
                ),
                ('content', models.TextField()),
                (
                    'citations',
                    models.JSONField(
                        blank=True,
                        help_text='Citation URLs returned by Perplexity',
                        null=True,
                    ),
                ),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                (
                    'chat',
                    models.ForeignKey(
                        help_text='Chat this message belongs to',
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name='messages',
                        to='chat.chat',
                    ),
                ),
            ],
            options={
                'verbose_name': 'Message',
                'verbose_name_plural': 'Messages',
                'db_table': 'messages',
                'ordering': ['chat_id', 'created_at'],
            },
        ),
    ]
