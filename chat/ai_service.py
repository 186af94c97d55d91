"""
AI service module: Perplexity chat completions with API key rotation.

This module prepares the message sequence for a chat turn and drives the
rotation loop across the configured Perplexity API keys. A key answering
429/402 is marked exhausted and the next one is tried; any other failure
ends the turn immediately.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, cast

from django.conf import settings

from .exceptions import (
    AllCredentialsExhausted,
    KeyRotationError,
    NoCredentialsConfigured,
    RateLimited,
    UpstreamTransportError,
)
from .key_registry import KeyRegistry
from .key_selector import KeySelector, SelectedKey, mask_key
from .perplexity_client import PerplexityClient, UpstreamSuccess, resolve_model

logger = logging.getLogger(__name__)

DJANGO_SYSTEM_PROMPT = """You are Perplexia, an expert AI assistant specialized in Django full-stack development with PostgreSQL.

Your expertise includes:
- Django models, views, templates, and URL routing
- Django REST Framework for building APIs
- PostgreSQL database design and optimization
- Django ORM queries and migrations
- Authentication and authorization patterns
- Django admin customization
- Best practices for production Django deployments

When generating code:
1. Always provide complete, working code examples
2. Include proper imports at the top of each file
3. Use descriptive variable and function names
4. Add inline comments explaining complex logic
5. Structure files with clear filename headers (e.g., ```python models.py)
6. Follow Django conventions and PEP 8 style guide
7. Include requirements.txt when relevant
8. Provide database migration commands when needed

Always aim to generate production-ready code that follows Django best practices."""


class RotationState(str, Enum):
    """States of one logical chat turn."""

    SELECT = "select"
    ATTEMPT = "attempt"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = (RotationState.SUCCEEDED, RotationState.FAILED)


def prepare_messages(
    conversation_history: Sequence[Dict[str, str]], user_message: str
) -> List[Dict[str, str]]:
    """
    Build the message list sent to Perplexity.

    Perplexity requires user and assistant turns to alternate, so a history
    message is dropped when it has the same role as the message kept before
    it. The sequence always ends on a user turn: ``user_message`` is appended
    unless the kept history already ends with a user message (the view stores
    the new prompt before building the history).

    Args:
        conversation_history: Stored messages in chronological order,
            ``[{'role': 'user', 'content': '...'}, ...]``
        user_message: The prompt submitted for this turn

    Returns:
        ``[system, *alternating history, user]``
    """
    messages: List[Dict[str, str]] = [
        {"role": "system", "content": DJANGO_SYSTEM_PROMPT}
    ]

    for msg in conversation_history:
        if len(messages) == 1 or messages[-1]["role"] != msg["role"]:
            messages.append({"role": msg["role"], "content": msg["content"]})

    if len(messages) == 1 or messages[-1]["role"] != "user":
        messages.append({"role": "user", "content": user_message})

    return messages


class AIService:
    """Send chat turns to Perplexity, rotating keys on quota errors."""

    def __init__(
        self,
        api_keys: Optional[Sequence[str]] = None,
        client: Optional[PerplexityClient] = None,
        registry: Optional[KeyRegistry] = None,
    ) -> None:
        """
        Args:
            api_keys: Configured key values, position ``i`` being key index
                ``i + 1``. Defaults to ``settings.PERPLEXITY_API_KEYS``.
            client: Upstream executor. Defaults to one built from settings.
            registry: Slot registry. Defaults to one over ``api_keys``.
        """
        if api_keys is None:
            api_keys = settings.PERPLEXITY_API_KEYS
        self.api_keys = tuple(api_keys)
        self.registry = registry or KeyRegistry(self.api_keys)
        self.selector = KeySelector(self.registry, self.api_keys)
        self.client = client or PerplexityClient(
            base_url=settings.PERPLEXITY_API_URL,
            timeout=settings.PERPLEXITY_TIMEOUT,
        )

    @property
    def max_attempts(self) -> int:
        """One attempt per configured key."""
        return sum(1 for value in self.api_keys if value)

    async def send_message(
        self,
        conversation_history: Sequence[Dict[str, str]],
        user_message: str,
        model: Optional[str] = None,
    ) -> UpstreamSuccess:
        """
        Generate the assistant reply for one chat turn.

        Args:
            conversation_history: Previous messages in format
                [{'role': 'user', 'content': '...'}, ...]
            user_message: The user's input message
            model: Requested Perplexity model; unknown ids fall back to ``sonar``

        Returns:
            Reply text and optional citation URLs

        Raises:
            NoCredentialsConfigured: If no API key is configured
            AllCredentialsExhausted: If every key was rate limited
            UpstreamTransportError: If the request failed for any other reason
        """
        messages = prepare_messages(conversation_history, user_message)
        return await self.call_with_rotation(messages, resolve_model(model))

    async def call_with_rotation(
        self, messages: List[Dict[str, str]], model_id: str
    ) -> UpstreamSuccess:
        """Run the SELECT/ATTEMPT loop until a terminal state is reached."""
        await self.registry.ensure_initialized()

        state = RotationState.SELECT
        attempts = 0
        selected: Optional[SelectedKey] = None
        result: Optional[UpstreamSuccess] = None
        failure: Optional[KeyRotationError] = None

        while state not in TERMINAL_STATES:
            if state is RotationState.SELECT:
                if attempts and attempts >= self.max_attempts:
                    failure = AllCredentialsExhausted(attempts)
                    state = RotationState.FAILED
                    continue

                selected = await self.selector.select_key()
                if selected is None:
                    failure = NoCredentialsConfigured()
                    state = RotationState.FAILED
                    continue

                state = RotationState.ATTEMPT

            elif state is RotationState.ATTEMPT:
                selected = cast(SelectedKey, selected)
                attempts += 1
                try:
                    result = await self._attempt(messages, model_id, selected)
                except RateLimited as e:
                    logger.warning(
                        "Attempt %s/%s: API key %s (%s) rate limited with HTTP %s; "
                        "rotating",
                        attempts,
                        self.max_attempts,
                        e.key_index,
                        mask_key(selected.value),
                        e.status_code,
                    )
                    await self.registry.mark_exhausted(e.key_index)
                    state = RotationState.SELECT
                except UpstreamTransportError as e:
                    logger.error(
                        "Attempt %s/%s: API key %s (%s) failed, not rotating: %s",
                        attempts,
                        self.max_attempts,
                        selected.index,
                        mask_key(selected.value),
                        e,
                    )
                    failure = e
                    state = RotationState.FAILED
                else:
                    logger.info(
                        "Perplexity replied using API key %s after %s attempt(s)",
                        selected.index,
                        attempts,
                    )
                    state = RotationState.SUCCEEDED

        if failure is not None:
            logger.error("Chat turn failed: %s", failure)
            raise failure

        return cast(UpstreamSuccess, result)

    async def _attempt(
        self, messages: List[Dict[str, str]], model_id: str, selected: SelectedKey
    ) -> UpstreamSuccess:
        """One upstream call, turning a failed outcome into an exception."""
        outcome = await self.client.execute(messages, model_id, selected.value)

        if isinstance(outcome, UpstreamSuccess):
            await self.registry.touch(selected.index)
            return outcome

        if outcome.is_rate_limited:
            raise RateLimited(selected.index, outcome.status_code or 429, outcome.body)

        raise UpstreamTransportError(
            outcome.message, status_code=outcome.status_code, body=outcome.body
        )

    async def get_key_status(self) -> Dict[str, Any]:
        """
        Summarize the registry for the status endpoint.

        Returns:
            ``{'active_index': int, 'slots': [{'index', 'is_active',
            'is_exhausted'}, ...]}``; ``active_index`` is 1 when every slot
            is exhausted.
        """
        await self.registry.ensure_initialized()
        slots = await self.registry.list_slots()
        candidate = await self.registry.get_current_candidate()

        return {
            "active_index": candidate.key_index if candidate else 1,
            "slots": [
                {
                    "index": slot.key_index,
                    "is_active": slot.is_active,
                    "is_exhausted": slot.is_exhausted,
                }
                for slot in slots
            ],
        }


# Default global AI service instance used by the views
ai_service = AIService()
