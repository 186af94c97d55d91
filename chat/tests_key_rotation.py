"""
Tests for API key rotation: registry, selector, upstream client and the
rotation loop in :class:`chat.ai_service.AIService`.

Perplexity is faked with ``httpx.MockTransport`` so every request the client
makes is recorded and no network access happens.
"""

import asyncio
import json
from typing import Any, List

import httpx
from django.test import SimpleTestCase, TransactionTestCase, override_settings

from .ai_service import DJANGO_SYSTEM_PROMPT, AIService, prepare_messages
from .exceptions import (
    AllCredentialsExhausted,
    NoCredentialsConfigured,
    UpstreamTransportError,
)
from .key_registry import KeyRegistry
from .key_selector import KeySelector, SelectedKey, mask_key
from .models import ApiKeyStatus
from .perplexity_client import (
    FailureKind,
    PerplexityClient,
    UpstreamFailure,
    UpstreamSuccess,
    default_model,
    resolve_model,
)

KEYS = ('pplx-key-one', 'pplx-key-two', 'pplx-key-three')


def completion(content: str = 'Here is your Django model.', citations=None) -> dict:
    """Build a successful chat-completions body."""
    body: dict = {
        'id': 'cmpl-1',
        'model': 'sonar',
        'choices': [
            {
                'index': 0,
                'message': {'role': 'assistant', 'content': content},
                'finish_reason': 'stop',
            }
        ],
        'usage': {'prompt_tokens': 10, 'completion_tokens': 5, 'total_tokens': 15},
    }
    if citations is not None:
        body['citations'] = citations
    return body


class FakePerplexity:
    """Scripted upstream: answers requests in order and records them."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def keys_used(self) -> List[str]:
        return [
            request.headers['Authorization'].removeprefix('Bearer ')
            for request in self.requests
        ]

    def client(self) -> PerplexityClient:
        return PerplexityClient(
            base_url='https://api.perplexity.test',
            transport=httpx.MockTransport(self),
        )


class KeyedPerplexity(FakePerplexity):
    """Upstream whose answer depends only on the key used."""

    def __init__(self, by_key: dict) -> None:
        super().__init__()
        self.by_key = by_key

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = request.headers['Authorization'].removeprefix('Bearer ')
        status, body = self.by_key[key]
        return httpx.Response(status, json=body)


# ---------------------------------------------------------------------------
# Message preparation
# ---------------------------------------------------------------------------


class PrepareMessagesTest(SimpleTestCase):
    """Test the alternation rules applied before calling Perplexity."""

    def test_empty_history_appends_user_message(self) -> None:
        """Test an empty history yields system prompt plus the new message."""
        messages = prepare_messages([], 'hello')

        self.assertEqual(
            messages,
            [
                {'role': 'system', 'content': DJANGO_SYSTEM_PROMPT},
                {'role': 'user', 'content': 'hello'},
            ],
        )

    def test_unanswered_prompt_wins_over_new_prompt(self) -> None:
        """Test a prompt left by a failed turn is sent instead of the new one."""
        history = [
            {'role': 'user', 'content': 'q1'},
            {'role': 'assistant', 'content': 'a1'},
            {'role': 'user', 'content': 'unanswered'},
            {'role': 'user', 'content': 'retry'},
        ]

        messages = prepare_messages(history, 'retry')

        self.assertEqual(
            [(m['role'], m['content']) for m in messages[1:]],
            [('user', 'q1'), ('assistant', 'a1'), ('user', 'unanswered')],
        )

    def test_consecutive_same_role_messages_collapse(self) -> None:
        """Test a repeated user turn is dropped and the new prompt appended."""
        history = [
            {'role': 'user', 'content': 'a'},
            {'role': 'user', 'content': 'b'},
            {'role': 'assistant', 'content': 'c'},
        ]

        messages = prepare_messages(history, 'd')

        self.assertEqual(
            [(m['role'], m['content']) for m in messages],
            [
                ('system', DJANGO_SYSTEM_PROMPT),
                ('user', 'a'),
                ('assistant', 'c'),
                ('user', 'd'),
            ],
        )

    def test_history_ending_on_user_is_not_duplicated(self) -> None:
        """Test the stored prompt is reused when history already ends on it."""
        history = [
            {'role': 'user', 'content': 'Create a Post model'},
            {'role': 'assistant', 'content': 'class Post(models.Model): ...'},
            {'role': 'user', 'content': 'Now add comments'},
        ]

        messages = prepare_messages(history, 'Now add comments')

        self.assertEqual(len(messages), 4)
        self.assertEqual(messages[-1], {'role': 'user', 'content': 'Now add comments'})

    def test_sequence_always_alternates(self) -> None:
        """Test no two neighbouring non-system messages share a role."""
        history = [
            {'role': 'assistant', 'content': 'hi'},
            {'role': 'assistant', 'content': 'hi again'},
            {'role': 'user', 'content': 'q1'},
            {'role': 'user', 'content': 'q2'},
            {'role': 'assistant', 'content': 'a1'},
        ]

        messages = prepare_messages(history, 'q3')[1:]

        for previous, current in zip(messages, messages[1:]):
            self.assertNotEqual(previous['role'], current['role'])
        self.assertEqual(messages[-1]['role'], 'user')


# ---------------------------------------------------------------------------
# Upstream client
# ---------------------------------------------------------------------------


class PerplexityClientTest(SimpleTestCase):
    """Test single-attempt classification of upstream responses."""

    messages = [{'role': 'user', 'content': 'Build a todo app'}]

    async def test_success_extracts_content_and_citations(self) -> None:
        """Test a 200 response yields the first choice and citation URLs."""
        upstream = FakePerplexity(
            httpx.Response(
                200,
                json=completion('Use a ModelForm.', ['https://docs.djangoproject.com']),
            )
        )

        outcome = await upstream.client().execute(self.messages, 'sonar', 'secret')

        self.assertIsInstance(outcome, UpstreamSuccess)
        self.assertEqual(outcome.content, 'Use a ModelForm.')
        self.assertEqual(outcome.citations, ['https://docs.djangoproject.com'])

    async def test_request_shape(self) -> None:
        """Test the endpoint, bearer header and JSON body sent upstream."""
        upstream = FakePerplexity(httpx.Response(200, json=completion()))

        await upstream.client().execute(self.messages, 'sonar-pro', 'secret')

        request = upstream.requests[0]
        self.assertEqual(request.method, 'POST')
        self.assertEqual(
            str(request.url), 'https://api.perplexity.test/chat/completions'
        )
        self.assertEqual(request.headers['Authorization'], 'Bearer secret')
        self.assertEqual(
            json.loads(request.content),
            {
                'model': 'sonar-pro',
                'messages': self.messages,
                'max_tokens': 4096,
                'temperature': 0.2,
                'top_p': 0.9,
                'stream': False,
                'frequency_penalty': 1,
            },
        )

    async def test_missing_citations_is_none(self) -> None:
        """Test citations stay None when the provider sends none."""
        upstream = FakePerplexity(httpx.Response(200, json=completion()))

        outcome = await upstream.client().execute(self.messages, 'sonar', 'secret')

        self.assertIsNone(outcome.citations)

    async def test_429_and_402_are_rate_limited(self) -> None:
        """Test quota statuses classify as rotation-worthy."""
        for status in (429, 402):
            upstream = FakePerplexity(
                httpx.Response(status, json={'error': 'quota exceeded'})
            )

            outcome = await upstream.client().execute(self.messages, 'sonar', 'k')

            self.assertIsInstance(outcome, UpstreamFailure)
            self.assertEqual(outcome.kind, FailureKind.RATE_LIMITED)
            self.assertEqual(outcome.status_code, status)

    async def test_server_error_is_transport_with_body(self) -> None:
        """Test other statuses carry status and raw body in the message."""
        upstream = FakePerplexity(httpx.Response(500, text='upstream exploded'))

        outcome = await upstream.client().execute(self.messages, 'sonar', 'k')

        self.assertEqual(outcome.kind, FailureKind.TRANSPORT)
        self.assertIn('500', outcome.message)
        self.assertIn('upstream exploded', outcome.message)

    async def test_empty_choices_is_transport(self) -> None:
        """Test a 200 without choices is not treated as success."""
        upstream = FakePerplexity(httpx.Response(200, json={'choices': []}))

        outcome = await upstream.client().execute(self.messages, 'sonar', 'k')

        self.assertEqual(outcome.kind, FailureKind.TRANSPORT)
        self.assertIn('No response', outcome.message)

    async def test_invalid_json_is_transport(self) -> None:
        """Test an unparseable 200 body is a transport failure."""
        upstream = FakePerplexity(httpx.Response(200, text='<html>oops</html>'))

        outcome = await upstream.client().execute(self.messages, 'sonar', 'k')

        self.assertEqual(outcome.kind, FailureKind.TRANSPORT)

    async def test_timeout_is_transport(self) -> None:
        """Test a timeout is reported, not raised and not rotation-worthy."""
        upstream = FakePerplexity(httpx.ReadTimeout('read timed out'))

        outcome = await upstream.client().execute(self.messages, 'sonar', 'k')

        self.assertEqual(outcome.kind, FailureKind.TRANSPORT)
        self.assertIn('timed out', outcome.message)

    async def test_network_error_is_transport(self) -> None:
        """Test connection failures are transport failures."""
        upstream = FakePerplexity(httpx.ConnectError('connection refused'))

        outcome = await upstream.client().execute(self.messages, 'sonar', 'k')

        self.assertEqual(outcome.kind, FailureKind.TRANSPORT)
        self.assertIn('connection refused', outcome.message)

    def test_resolve_model(self) -> None:
        """Test known models pass through and unknown ones fall back."""
        self.assertEqual(resolve_model('sonar-reasoning'), 'sonar-reasoning')
        self.assertEqual(resolve_model('gpt-4'), 'sonar')
        self.assertEqual(resolve_model(None), 'sonar')

    @override_settings(PERPLEXITY_DEFAULT_MODEL='sonar-pro')
    def test_resolve_model_uses_configured_default(self) -> None:
        """Test the configured default model replaces sonar."""
        self.assertEqual(default_model(), 'sonar-pro')
        self.assertEqual(resolve_model(None), 'sonar-pro')
        self.assertEqual(resolve_model('gpt-4'), 'sonar-pro')
        self.assertEqual(resolve_model('sonar'), 'sonar')

    @override_settings(PERPLEXITY_DEFAULT_MODEL='gpt-4')
    def test_unknown_configured_default_falls_back(self) -> None:
        """Test a default outside the catalogue is ignored."""
        self.assertEqual(default_model(), 'sonar')
        self.assertEqual(resolve_model(None), 'sonar')

    def test_mask_key(self) -> None:
        """Test keys are masked to their last six characters."""
        self.assertEqual(mask_key('pplx-abcdef123456'), '...123456')
        self.assertEqual(mask_key('short'), '***')


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class KeyRegistryTest(TransactionTestCase):
    """Test persistence of key slot state."""

    async def test_ensure_initialized_is_idempotent(self) -> None:
        """Test seeding twice never duplicates slots."""
        registry = KeyRegistry(KEYS)

        created_first = await registry.ensure_initialized()
        created_second = await registry.ensure_initialized()

        self.assertEqual(created_first, 3)
        self.assertEqual(created_second, 0)
        self.assertEqual(await ApiKeyStatus.objects.acount(), 3)
        slots = await registry.list_slots()
        self.assertEqual([s.key_index for s in slots], [1, 2, 3])
        for slot in slots:
            self.assertTrue(slot.is_active)
            self.assertFalse(slot.is_exhausted)
            self.assertEqual(slot.error_count, 0)

    async def test_ensure_initialized_skips_empty_keys(self) -> None:
        """Test missing keys get no slot and keep their index gap."""
        registry = KeyRegistry(('pplx-a', '', 'pplx-c'))

        await registry.ensure_initialized()

        slots = await registry.list_slots()
        self.assertEqual([s.key_index for s in slots], [1, 3])

    async def test_add_missing_slots_after_first_seed(self) -> None:
        """Test keys configured later get a slot without touching old ones."""
        await KeyRegistry(('pplx-a', '')).ensure_initialized()
        await ApiKeyStatus.objects.filter(key_index=1).aupdate(
            is_exhausted=True, is_active=False, error_count=1
        )
        registry = KeyRegistry(('pplx-a', 'pplx-b', 'pplx-c'))

        self.assertEqual(await registry.ensure_initialized(), 0)
        self.assertEqual(await registry.add_missing_slots(), 2)
        self.assertEqual(await registry.add_missing_slots(), 0)

        slots = await registry.list_slots()
        self.assertEqual([s.key_index for s in slots], [1, 2, 3])
        self.assertTrue(slots[0].is_exhausted)
        self.assertEqual(slots[0].error_count, 1)
        self.assertEqual((await registry.get_current_candidate()).key_index, 2)

    async def test_current_candidate_skips_exhausted(self) -> None:
        """Test the candidate is the lowest non-exhausted index."""
        registry = KeyRegistry(KEYS)
        await registry.ensure_initialized()

        await registry.mark_exhausted(1)
        candidate = await registry.get_current_candidate()
        self.assertEqual(candidate.key_index, 2)

        await registry.mark_exhausted(2)
        await registry.mark_exhausted(3)
        self.assertIsNone(await registry.get_current_candidate())

    async def test_mark_exhausted_is_idempotent(self) -> None:
        """Test a second mark is a no-op and counts the error once."""
        registry = KeyRegistry(KEYS)
        await registry.ensure_initialized()

        self.assertTrue(await registry.mark_exhausted(2))
        self.assertFalse(await registry.mark_exhausted(2))

        slot = await ApiKeyStatus.objects.aget(key_index=2)
        self.assertTrue(slot.is_exhausted)
        self.assertFalse(slot.is_active)
        self.assertEqual(slot.error_count, 1)

    async def test_reactivate_restores_slot(self) -> None:
        """Test reactivation clears exhaustion and the error counter."""
        registry = KeyRegistry(KEYS)
        await registry.ensure_initialized()
        await registry.mark_exhausted(1)

        self.assertTrue(await registry.reactivate(1))

        slot = await ApiKeyStatus.objects.aget(key_index=1)
        self.assertTrue(slot.is_active)
        self.assertFalse(slot.is_exhausted)
        self.assertEqual(slot.error_count, 0)

    async def test_reactivate_unknown_index(self) -> None:
        """Test reactivating a slot that does not exist reports False."""
        registry = KeyRegistry(KEYS)
        await registry.ensure_initialized()

        self.assertFalse(await registry.reactivate(9))

    async def test_reset_all(self) -> None:
        """Test every exhausted slot comes back."""
        registry = KeyRegistry(KEYS)
        await registry.ensure_initialized()
        for index in (1, 2, 3):
            await registry.mark_exhausted(index)

        self.assertEqual(await registry.reset_all(), 3)
        self.assertFalse(
            await ApiKeyStatus.objects.filter(is_exhausted=True).aexists()
        )

    async def test_state_survives_new_registry_instance(self) -> None:
        """Test mutations are durable rather than held in memory."""
        await KeyRegistry(KEYS).ensure_initialized()
        await KeyRegistry(KEYS).mark_exhausted(1)

        candidate = await KeyRegistry(KEYS).get_current_candidate()

        self.assertEqual(candidate.key_index, 2)


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------


class KeySelectorTest(TransactionTestCase):
    """Test the three-step key selection order."""

    async def test_prefers_current_candidate(self) -> None:
        """Test a healthy registry yields the lowest index."""
        registry = KeyRegistry(KEYS)
        await registry.ensure_initialized()

        selected = await KeySelector(registry, KEYS).select_key()

        self.assertEqual(selected, SelectedKey('pplx-key-one', 1))

    async def test_skips_exhausted_slot(self) -> None:
        """Test slot 2 is chosen once slot 1 is exhausted, without a reset."""
        registry = KeyRegistry(KEYS)
        await registry.ensure_initialized()
        await registry.mark_exhausted(1)

        selected = await KeySelector(registry, KEYS).select_key()

        self.assertEqual(selected, SelectedKey('pplx-key-two', 2))

    async def test_scans_slots_when_candidate_has_no_key(self) -> None:
        """Test a candidate without a configured value is passed over and
        the next usable slot is reactivated."""
        keys = ('', 'pplx-key-two')
        await ApiKeyStatus.objects.acreate(key_index=1)
        await ApiKeyStatus.objects.acreate(key_index=2, is_active=False, error_count=4)

        selected = await KeySelector(KeyRegistry(keys), keys).select_key()

        self.assertEqual(selected, SelectedKey('pplx-key-two', 2))
        slot = await ApiKeyStatus.objects.aget(key_index=2)
        self.assertTrue(slot.is_active)
        self.assertEqual(slot.error_count, 0)

    async def test_falls_back_to_configuration_when_all_exhausted(self) -> None:
        """Test the first configured key is returned even if exhausted."""
        registry = KeyRegistry(KEYS)
        await registry.ensure_initialized()
        for index in (1, 2, 3):
            await registry.mark_exhausted(index)

        selected = await KeySelector(registry, KEYS).select_key()

        self.assertEqual(selected, SelectedKey('pplx-key-one', 1))

    async def test_falls_back_when_registry_empty(self) -> None:
        """Test configuration is used when no slot was ever seeded."""
        keys = ('', 'pplx-key-two')

        selected = await KeySelector(KeyRegistry(keys), keys).select_key()

        self.assertEqual(selected, SelectedKey('pplx-key-two', 2))

    async def test_no_configured_keys(self) -> None:
        """Test None is returned when nothing is configured."""
        keys = ('', '')

        self.assertIsNone(await KeySelector(KeyRegistry(keys), keys).select_key())


# ---------------------------------------------------------------------------
# Rotation controller
# ---------------------------------------------------------------------------


class RotationControllerTest(TransactionTestCase):
    """Test the rotation loop end to end against a fake Perplexity."""

    history = [{'role': 'user', 'content': 'Create a blog app'}]

    def make_service(self, upstream: FakePerplexity, keys=KEYS) -> AIService:
        return AIService(api_keys=keys, client=upstream.client())

    async def test_success_on_first_key(self) -> None:
        """Test a healthy key answers and gets its last_used stamped."""
        upstream = FakePerplexity(
            httpx.Response(200, json=completion('models.py ...', ['https://a.io']))
        )
        service = self.make_service(upstream)

        reply = await service.send_message(self.history, 'Create a blog app', 'sonar')

        self.assertEqual(reply.content, 'models.py ...')
        self.assertEqual(reply.citations, ['https://a.io'])
        self.assertEqual(upstream.keys_used, ['pplx-key-one'])
        slot = await ApiKeyStatus.objects.aget(key_index=1)
        self.assertIsNotNone(slot.last_used)

    async def test_rotates_to_next_key_on_rate_limit(self) -> None:
        """Test a 429 exhausts the key and the next key is tried."""
        upstream = FakePerplexity(
            httpx.Response(429, json={'error': 'rate limited'}),
            httpx.Response(200, json=completion('from key two')),
        )
        service = self.make_service(upstream)

        reply = await service.send_message(self.history, 'Create a blog app')

        self.assertEqual(reply.content, 'from key two')
        self.assertEqual(upstream.keys_used, ['pplx-key-one', 'pplx-key-two'])
        slot_one = await ApiKeyStatus.objects.aget(key_index=1)
        self.assertTrue(slot_one.is_exhausted)
        self.assertFalse(slot_one.is_active)

    async def test_payment_required_rotates(self) -> None:
        """Test a 402 is treated like a rate limit."""
        upstream = FakePerplexity(
            httpx.Response(402, json={'error': 'payment required'}),
            httpx.Response(200, json=completion()),
        )
        service = self.make_service(upstream)

        await service.send_message(self.history, 'Create a blog app')

        self.assertEqual(len(upstream.requests), 2)

    async def test_all_keys_rate_limited(self) -> None:
        """Test N rate limits mean exactly N attempts and N exhausted slots."""
        upstream = FakePerplexity(
            *[httpx.Response(429, json={'error': 'rate limited'}) for _ in KEYS]
        )
        service = self.make_service(upstream)

        with self.assertRaises(AllCredentialsExhausted) as ctx:
            await service.send_message(self.history, 'Create a blog app')

        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(len(upstream.requests), 3)
        self.assertEqual(upstream.keys_used, list(KEYS))
        self.assertEqual(
            await ApiKeyStatus.objects.filter(is_exhausted=True).acount(), 3
        )
        self.assertIn('exhausted', str(ctx.exception))

    async def test_attempts_bounded_when_registry_already_exhausted(self) -> None:
        """Test the fallback key is retried at most N times."""
        registry = KeyRegistry(KEYS)
        await registry.ensure_initialized()
        for index in (1, 2, 3):
            await registry.mark_exhausted(index)
        upstream = FakePerplexity(
            *[httpx.Response(429, json={'error': 'rate limited'}) for _ in KEYS]
        )
        service = self.make_service(upstream)

        with self.assertRaises(AllCredentialsExhausted):
            await service.send_message(self.history, 'Create a blog app')

        self.assertEqual(upstream.keys_used, ['pplx-key-one'] * 3)

    async def test_transport_error_is_not_rotated(self) -> None:
        """Test a non-quota failure aborts after one attempt without touching
        the registry."""
        upstream = FakePerplexity(httpx.Response(400, text='bad request: messages'))
        service = self.make_service(upstream)
        await service.registry.ensure_initialized()
        before = [
            (s.key_index, s.is_active, s.is_exhausted, s.error_count, s.last_used)
            async for s in ApiKeyStatus.objects.order_by('key_index')
        ]

        with self.assertRaises(UpstreamTransportError) as ctx:
            await service.send_message(self.history, 'Create a blog app')

        self.assertEqual(len(upstream.requests), 1)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn('bad request', str(ctx.exception))
        after = [
            (s.key_index, s.is_active, s.is_exhausted, s.error_count, s.last_used)
            async for s in ApiKeyStatus.objects.order_by('key_index')
        ]
        self.assertEqual(before, after)

    async def test_timeout_is_not_rotated(self) -> None:
        """Test a timeout ends the turn without exhausting the key."""
        upstream = FakePerplexity(httpx.ReadTimeout('timed out'))
        service = self.make_service(upstream)

        with self.assertRaises(UpstreamTransportError):
            await service.send_message(self.history, 'Create a blog app')

        self.assertFalse(
            await ApiKeyStatus.objects.filter(is_exhausted=True).aexists()
        )

    async def test_no_keys_configured(self) -> None:
        """Test the turn fails immediately when no key exists."""
        upstream = FakePerplexity()
        service = self.make_service(upstream, keys=('', ''))

        with self.assertRaises(NoCredentialsConfigured):
            await service.send_message(self.history, 'Create a blog app')

        self.assertEqual(upstream.requests, [])

    async def test_unknown_model_falls_back_to_sonar(self) -> None:
        """Test the model id sent upstream is resolved first."""
        upstream = FakePerplexity(httpx.Response(200, json=completion()))
        service = self.make_service(upstream)

        await service.send_message(self.history, 'Create a blog app', 'not-a-model')

        self.assertEqual(json.loads(upstream.requests[0].content)['model'], 'sonar')

    async def test_concurrent_turns_keep_slots_consistent(self) -> None:
        """Test two turns rotating at once never leave a slot both active
        and exhausted, and count the exhaustion once."""
        upstream = KeyedPerplexity(
            {
                'pplx-key-one': (429, {'error': 'rate limited'}),
                'pplx-key-two': (200, completion('ok')),
                'pplx-key-three': (200, completion('ok')),
            }
        )
        service = self.make_service(upstream)
        await service.registry.ensure_initialized()

        replies = await asyncio.gather(
            service.send_message(self.history, 'first turn'),
            service.send_message(self.history, 'second turn'),
        )

        self.assertEqual([r.content for r in replies], ['ok', 'ok'])
        self.assertFalse(
            await ApiKeyStatus.objects.filter(
                is_active=True, is_exhausted=True
            ).aexists()
        )
        slot_one = await ApiKeyStatus.objects.aget(key_index=1)
        self.assertTrue(slot_one.is_exhausted)
        self.assertEqual(slot_one.error_count, 1)

    async def test_get_key_status(self) -> None:
        """Test the status summary reflects the registry."""
        service = self.make_service(FakePerplexity())
        await service.registry.ensure_initialized()
        await service.registry.mark_exhausted(1)

        status = await service.get_key_status()

        self.assertEqual(status['active_index'], 2)
        self.assertEqual(
            status['slots'],
            [
                {'index': 1, 'is_active': False, 'is_exhausted': True},
                {'index': 2, 'is_active': True, 'is_exhausted': False},
                {'index': 3, 'is_active': True, 'is_exhausted': False},
            ],
        )

    async def test_get_key_status_all_exhausted_defaults_to_one(self) -> None:
        """Test active_index falls back to 1 when no candidate exists."""
        service = self.make_service(FakePerplexity())
        await service.registry.ensure_initialized()
        for index in (1, 2, 3):
            await service.registry.mark_exhausted(index)

        status = await service.get_key_status()

        self.assertEqual(status['active_index'], 1)
