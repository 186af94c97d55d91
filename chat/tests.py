"""
Tests for the chat JSON API with async views.

These tests cover every view and mock the AI service so no request ever
reaches Perplexity.
"""

import json
import uuid
from io import StringIO
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

from asgiref.sync import async_to_sync
from django.conf import settings
from django.contrib import admin
from django.core.cache import caches
from django.core.management import CommandError, call_command
from django.test import (
    RequestFactory,
    SimpleTestCase,
    TestCase,
    TransactionTestCase,
    override_settings,
)
from django.test.client import AsyncClient
from django.urls import reverse
from django_ratelimit.exceptions import Ratelimited

from perplexia.ratelimit_middleware import RateLimitMiddleware

from .exceptions import AllCredentialsExhausted, UpstreamTransportError
from .key_registry import KeyRegistry
from .models import ApiKeyStatus, Chat, Message
from .perplexity_client import UpstreamSuccess
from .views import title_from_message


def post_json(client: AsyncClient, url: str, payload: Any):
    """Issue a JSON POST with the async test client."""
    return client.post(url, data=json.dumps(payload), content_type='application/json')


class ChatCrudViewsTest(TransactionTestCase):
    """Test chat list/create/detail/update/delete endpoints."""

    def setUp(self) -> None:
        """Set up test data."""
        self.client = AsyncClient()

    async def test_create_chat_defaults(self) -> None:
        """Test creating a chat with an empty body."""
        response = await post_json(self.client, reverse('chat_list'), {})

        self.assertEqual(response.status_code, 201)
        data = json.loads(response.content)
        self.assertEqual(data['title'], 'New Chat')
        self.assertEqual(data['model'], 'sonar')
        self.assertTrue(await Chat.objects.filter(pk=data['id']).aexists())

    async def test_create_chat_with_title_and_model(self) -> None:
        """Test the posted title and model are stored."""
        response = await post_json(
            self.client,
            reverse('chat_list'),
            {'title': 'Inventory API', 'model': 'sonar-pro'},
        )

        self.assertEqual(response.status_code, 201)
        data = json.loads(response.content)
        self.assertEqual(data['title'], 'Inventory API')
        self.assertEqual(data['model'], 'sonar-pro')

    async def test_create_chat_invalid_body(self) -> None:
        """Test malformed JSON is rejected with 400."""
        response = await self.client.post(
            reverse('chat_list'), data='{not json', content_type='application/json'
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn('error', json.loads(response.content))

    async def test_list_chats_most_recent_first(self) -> None:
        """Test chats are listed by last update, newest first."""
        older = await Chat.objects.acreate(title='Older')
        newer = await Chat.objects.acreate(title='Newer')

        response = await self.client.get(reverse('chat_list'))

        self.assertEqual(response.status_code, 200)
        ids = [chat['id'] for chat in json.loads(response.content)]
        self.assertEqual(ids, [str(newer.id), str(older.id)])

    async def test_chat_list_wrong_method(self) -> None:
        """Test PUT on the collection returns 405."""
        response = await self.client.put(reverse('chat_list'))

        self.assertEqual(response.status_code, 405)

    async def test_get_chat(self) -> None:
        """Test fetching one chat."""
        chat = await Chat.objects.acreate(title='Blog')

        response = await self.client.get(
            reverse('chat_detail', kwargs={'chat_id': chat.id})
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content)['title'], 'Blog')

    async def test_get_missing_chat(self) -> None:
        """Test an unknown id returns a JSON 404."""
        response = await self.client.get(
            reverse('chat_detail', kwargs={'chat_id': uuid.uuid4()})
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(json.loads(response.content)['error'], 'Chat not found')

    async def test_patch_chat(self) -> None:
        """Test renaming a chat."""
        chat = await Chat.objects.acreate(title='Blog')

        response = await self.client.patch(
            reverse('chat_detail', kwargs={'chat_id': chat.id}),
            data=json.dumps({'title': 'Blog with comments'}),
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 200)
        await chat.arefresh_from_db()
        self.assertEqual(chat.title, 'Blog with comments')
        self.assertEqual(chat.model, 'sonar')

    async def test_patch_chat_rejects_empty_title(self) -> None:
        """Test an empty title fails validation."""
        chat = await Chat.objects.acreate(title='Blog')

        response = await self.client.patch(
            reverse('chat_detail', kwargs={'chat_id': chat.id}),
            data=json.dumps({'title': ''}),
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 400)

    async def test_delete_chat_cascades_messages(self) -> None:
        """Test deleting a chat removes its messages."""
        chat = await Chat.objects.acreate(title='Blog')
        await Message.objects.acreate(chat=chat, role='user', content='hi')

        response = await self.client.delete(
            reverse('chat_detail', kwargs={'chat_id': chat.id})
        )

        self.assertEqual(response.status_code, 204)
        self.assertFalse(await Chat.objects.filter(pk=chat.id).aexists())
        self.assertEqual(await Message.objects.acount(), 0)

    async def test_chat_messages_chronological(self) -> None:
        """Test messages come back in creation order."""
        chat = await Chat.objects.acreate(title='Blog')
        await Message.objects.acreate(chat=chat, role='user', content='first')
        await Message.objects.acreate(
            chat=chat,
            role='assistant',
            content='second',
            citations=['https://docs.djangoproject.com'],
        )

        response = await self.client.get(
            reverse('chat_messages', kwargs={'chat_id': chat.id})
        )

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual([m['content'] for m in data], ['first', 'second'])
        self.assertEqual(data[1]['citations'], ['https://docs.djangoproject.com'])

    async def test_chat_messages_missing_chat(self) -> None:
        """Test listing messages of an unknown chat returns 404."""
        response = await self.client.get(
            reverse('chat_messages', kwargs={'chat_id': uuid.uuid4()})
        )

        self.assertEqual(response.status_code, 404)


class SendMessageViewTest(TransactionTestCase):
    """Test the send-message endpoint with a mocked AI service."""

    def setUp(self) -> None:
        """Set up test data."""
        self.client = AsyncClient()

    async def asetUp(self) -> None:
        """Set up async test data."""
        self.chat = await Chat.objects.acreate()

    @patch('chat.views.ai_service')
    async def test_send_message_success(self, mock_ai_service: MagicMock) -> None:
        """Test a turn stores both messages and titles the chat."""
        await self.asetUp()
        mock_ai_service.send_message = AsyncMock(
            return_value=UpstreamSuccess(
                content='```python models.py\n...```',
                citations=['https://docs.djangoproject.com/en/5.2/'],
            )
        )

        response = await post_json(
            self.client,
            reverse('send_message'),
            {'chat_id': str(self.chat.id), 'content': 'Build a blog app'},
        )

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual(data['user_message']['role'], 'user')
        self.assertEqual(data['user_message']['content'], 'Build a blog app')
        self.assertEqual(data['assistant_message']['role'], 'assistant')
        self.assertEqual(
            data['assistant_message']['citations'],
            ['https://docs.djangoproject.com/en/5.2/'],
        )

        # History passed to the service already contains the stored prompt
        mock_ai_service.send_message.assert_called_once_with(
            [{'role': 'user', 'content': 'Build a blog app'}],
            'Build a blog app',
            'sonar',
        )

        self.assertEqual(await Message.objects.filter(chat=self.chat).acount(), 2)
        await self.chat.arefresh_from_db()
        self.assertEqual(self.chat.title, 'Build a blog app')

    @patch('chat.views.ai_service')
    async def test_send_message_includes_history(
        self, mock_ai_service: MagicMock
    ) -> None:
        """Test earlier turns are passed on and the title is kept."""
        await self.asetUp()
        self.chat.title = 'Kept title'
        await self.chat.asave()
        await Message.objects.acreate(chat=self.chat, role='user', content='q1')
        await Message.objects.acreate(chat=self.chat, role='assistant', content='a1')
        mock_ai_service.send_message = AsyncMock(
            return_value=UpstreamSuccess(content='a2')
        )

        response = await post_json(
            self.client,
            reverse('send_message'),
            {'chat_id': str(self.chat.id), 'content': 'q2', 'model': 'sonar-pro'},
        )

        self.assertEqual(response.status_code, 200)
        mock_ai_service.send_message.assert_called_once_with(
            [
                {'role': 'user', 'content': 'q1'},
                {'role': 'assistant', 'content': 'a1'},
                {'role': 'user', 'content': 'q2'},
            ],
            'q2',
            'sonar-pro',
        )
        await self.chat.arefresh_from_db()
        self.assertEqual(self.chat.title, 'Kept title')

    @patch('chat.views.ai_service')
    async def test_send_message_unknown_model_uses_sonar(
        self, mock_ai_service: MagicMock
    ) -> None:
        """Test the chat's unknown model is resolved before the call."""
        await self.asetUp()
        self.chat.model = 'retired-model'
        await self.chat.asave()
        mock_ai_service.send_message = AsyncMock(
            return_value=UpstreamSuccess(content='ok')
        )

        await post_json(
            self.client,
            reverse('send_message'),
            {'chat_id': str(self.chat.id), 'content': 'hello'},
        )

        self.assertEqual(mock_ai_service.send_message.call_args[0][2], 'sonar')

    @patch('chat.views.ai_service')
    async def test_send_message_keys_exhausted(
        self, mock_ai_service: MagicMock
    ) -> None:
        """Test total key exhaustion surfaces as a 500 with the cause."""
        await self.asetUp()
        mock_ai_service.send_message = AsyncMock(
            side_effect=AllCredentialsExhausted(3)
        )

        response = await post_json(
            self.client,
            reverse('send_message'),
            {'chat_id': str(self.chat.id), 'content': 'Build a blog app'},
        )

        self.assertEqual(response.status_code, 500)
        self.assertIn('exhausted', json.loads(response.content)['error'])
        # The prompt is kept so the user can retry
        self.assertEqual(await Message.objects.filter(chat=self.chat).acount(), 1)

    @patch('chat.views.ai_service')
    async def test_send_message_upstream_error(
        self, mock_ai_service: MagicMock
    ) -> None:
        """Test transport failures surface with the provider detail."""
        await self.asetUp()
        mock_ai_service.send_message = AsyncMock(
            side_effect=UpstreamTransportError(
                'Perplexity API error: 400 - invalid model',
                status_code=400,
                body='invalid model',
            )
        )

        response = await post_json(
            self.client,
            reverse('send_message'),
            {'chat_id': str(self.chat.id), 'content': 'hello'},
        )

        self.assertEqual(response.status_code, 500)
        self.assertIn('invalid model', json.loads(response.content)['error'])

    async def test_send_message_empty_content(self) -> None:
        """Test an empty prompt is rejected."""
        await self.asetUp()

        response = await post_json(
            self.client,
            reverse('send_message'),
            {'chat_id': str(self.chat.id), 'content': ''},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(await Message.objects.acount(), 0)

    async def test_send_message_missing_chat_id(self) -> None:
        """Test chat_id is required."""
        response = await post_json(
            self.client, reverse('send_message'), {'content': 'hello'}
        )

        self.assertEqual(response.status_code, 400)

    async def test_send_message_unknown_chat(self) -> None:
        """Test a well-formed but unknown chat id returns 404."""
        response = await post_json(
            self.client,
            reverse('send_message'),
            {'chat_id': str(uuid.uuid4()), 'content': 'hello'},
        )

        self.assertEqual(response.status_code, 404)

    async def test_send_message_get_request(self) -> None:
        """Test GET request to send_message returns method not allowed."""
        response = await self.client.get(reverse('send_message'))

        self.assertEqual(response.status_code, 405)
        self.assertIn('error', json.loads(response.content))


@override_settings(RATELIMIT_ENABLE=True)
class SendMessageRateLimitTest(TransactionTestCase):
    """Test the send-message endpoint with rate limiting switched on."""

    def setUp(self) -> None:
        """Set up test data."""
        self.client = AsyncClient()
        caches['default'].clear()

    def tearDown(self) -> None:
        caches['default'].clear()

    @patch('chat.views.ai_service')
    async def test_send_message_with_rate_limiting(
        self, mock_ai_service: MagicMock
    ) -> None:
        """Test a turn goes through the async rate-limit check."""
        chat = await Chat.objects.acreate()
        mock_ai_service.send_message = AsyncMock(
            return_value=UpstreamSuccess(content='Hello')
        )

        response = await post_json(
            self.client,
            reverse('send_message'),
            {'chat_id': str(chat.id), 'content': 'Hi'},
        )

        self.assertEqual(response.status_code, 200)
        mock_ai_service.send_message.assert_awaited_once()

    async def test_hourly_limit_returns_429(self) -> None:
        """Test the 31st POST within the hour is rejected with JSON 429."""
        for _ in range(30):
            response = await post_json(self.client, reverse('send_message'), {})
            self.assertEqual(response.status_code, 400)

        response = await post_json(self.client, reverse('send_message'), {})

        self.assertEqual(response.status_code, 429)
        self.assertIn('error', json.loads(response.content))

    async def test_get_requests_are_not_counted(self) -> None:
        """Test only POSTs count towards the limit."""
        for _ in range(31):
            response = await self.client.get(reverse('send_message'))
            self.assertEqual(response.status_code, 405)


class KeyStatusViewTest(TransactionTestCase):
    """Test the key status and model catalogue endpoints."""

    def setUp(self) -> None:
        """Set up test data."""
        self.client = AsyncClient()

    async def test_key_status_initializes_registry(self) -> None:
        """Test the first status call seeds one slot per configured key."""
        configured = [i + 1 for i, key in enumerate(settings.PERPLEXITY_API_KEYS) if key]

        response = await self.client.get(reverse('key_status'))

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual([slot['index'] for slot in data['slots']], configured)
        self.assertEqual(data['active_index'], configured[0])
        self.assertFalse(any(slot['is_exhausted'] for slot in data['slots']))

    async def test_key_status_reports_exhaustion(self) -> None:
        """Test an exhausted key is reported and skipped as active."""
        registry = KeyRegistry(('pplx-a', 'pplx-b'))
        await registry.ensure_initialized()
        await registry.mark_exhausted(1)

        response = await self.client.get(reverse('key_status'))

        data = json.loads(response.content)
        self.assertEqual(data['active_index'], 2)
        self.assertEqual(
            data['slots'][0], {'index': 1, 'is_active': False, 'is_exhausted': True}
        )

    async def test_key_status_post_not_allowed(self) -> None:
        """Test POST returns 405."""
        response = await self.client.post(reverse('key_status'))

        self.assertEqual(response.status_code, 405)

    async def test_model_list(self) -> None:
        """Test the catalogue lists every Perplexity model."""
        response = await self.client.get(reverse('model_list'))

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual(data['default'], 'sonar')
        self.assertEqual(
            [model['id'] for model in data['models']],
            ['sonar-pro', 'sonar', 'sonar-reasoning', 'sonar-deep-research'],
        )

    @override_settings(PERPLEXITY_DEFAULT_MODEL='sonar-reasoning')
    async def test_model_list_reports_configured_default(self) -> None:
        """Test the default comes from PERPLEXITY_DEFAULT_MODEL."""
        response = await self.client.get(reverse('model_list'))

        self.assertEqual(json.loads(response.content)['default'], 'sonar-reasoning')

    @override_settings(PERPLEXITY_DEFAULT_MODEL='sonar-pro')
    async def test_new_chat_uses_configured_default(self) -> None:
        """Test chats created without a model get the configured default."""
        response = await post_json(self.client, reverse('chat_list'), {})

        self.assertEqual(json.loads(response.content)['model'], 'sonar-pro')


class TitleFromMessageTest(SimpleTestCase):
    """Test chat titles derived from the first prompt."""

    def test_short_message_kept(self) -> None:
        self.assertEqual(title_from_message('Build a blog'), 'Build a blog')

    def test_long_message_truncated(self) -> None:
        title = title_from_message('x' * 80)

        self.assertEqual(title, 'x' * 50 + '...')


class ManualResetTest(TestCase):
    """Test the management commands and admin action that reset keys."""

    keys = ('pplx-a', 'pplx-b', 'pplx-c')

    def setUp(self) -> None:
        self.registry = KeyRegistry(self.keys)
        async_to_sync(self.registry.ensure_initialized)()
        ApiKeyStatus.objects.update(is_exhausted=True, is_active=False, error_count=2)

    def test_reset_all_keys_command(self) -> None:
        """Test every slot is reactivated."""
        out = StringIO()

        call_command('reset_api_keys', stdout=out)

        self.assertIn('Reactivated 3 API key(s).', out.getvalue())
        self.assertFalse(ApiKeyStatus.objects.filter(is_exhausted=True).exists())
        self.assertFalse(ApiKeyStatus.objects.exclude(error_count=0).exists())

    def test_reset_single_key_command(self) -> None:
        """Test only the requested slot is reactivated."""
        call_command('reset_api_keys', index=2, stdout=StringIO())

        self.assertEqual(
            list(
                ApiKeyStatus.objects.filter(is_exhausted=False).values_list(
                    'key_index', flat=True
                )
            ),
            [2],
        )

    def test_reset_unknown_key_command(self) -> None:
        """Test an unknown index is an error."""
        with self.assertRaises(CommandError):
            call_command('reset_api_keys', index=7, stdout=StringIO())

    def test_init_command_is_idempotent(self) -> None:
        """Test seeding an already seeded registry changes nothing."""
        out = StringIO()

        call_command('init_api_keys', stdout=out)

        self.assertIn('already exist', out.getvalue())
        self.assertEqual(ApiKeyStatus.objects.count(), 3)

    def test_init_command_adds_new_keys(self) -> None:
        """Test a key configured after the first seed gets its slot."""
        ApiKeyStatus.objects.filter(key_index=3).delete()
        out = StringIO()

        call_command('init_api_keys', stdout=out)

        self.assertIn('Created 1 API key slot(s).', out.getvalue())
        self.assertEqual(
            list(ApiKeyStatus.objects.values_list('key_index', flat=True)),
            [1, 2, 3],
        )
        # Existing slots keep their state
        self.assertTrue(ApiKeyStatus.objects.get(key_index=1).is_exhausted)
        self.assertFalse(ApiKeyStatus.objects.get(key_index=3).is_exhausted)

    def test_admin_reactivate_action(self) -> None:
        """Test the admin action reactivates the selected slots."""
        model_admin = admin.site._registry[ApiKeyStatus]
        request = RequestFactory().post('/admin/chat/apikeystatus/')

        with patch.object(model_admin, 'message_user') as message_user:
            model_admin.reactivate_keys(
                request, ApiKeyStatus.objects.filter(key_index__in=[1, 3])
            )

        message_user.assert_called_once()
        self.assertEqual(
            list(
                ApiKeyStatus.objects.filter(is_active=True).values_list(
                    'key_index', flat=True
                )
            ),
            [1, 3],
        )


class RateLimitInfrastructureTest(TestCase):
    """Test the rate-limit middleware and its cache backend."""

    def test_ratelimited_becomes_json_429(self) -> None:
        """Test Ratelimited exceptions are answered with a JSON 429."""
        middleware = RateLimitMiddleware(lambda request: None)
        request = RequestFactory().post('/api/messages/')

        response = middleware.process_exception(request, Ratelimited())

        self.assertEqual(response.status_code, 429)
        self.assertIn('error', json.loads(response.content))

    def test_other_exceptions_pass_through(self) -> None:
        """Test unrelated exceptions are left to Django."""
        middleware = RateLimitMiddleware(lambda request: None)
        request = RequestFactory().get('/api/chats/')

        self.assertIsNone(middleware.process_exception(request, ValueError('boom')))

    def test_cache_incr_seeds_and_counts(self) -> None:
        """Test incr creates a missing counter and then increments it."""
        cache = caches['default']

        self.assertEqual(cache.incr('rl:test-counter'), 1)
        self.assertEqual(cache.incr('rl:test-counter', 4), 5)
        self.assertEqual(cache.decr('rl:test-counter', 2), 3)
        self.assertEqual(cache.get('rl:test-counter'), 3)
