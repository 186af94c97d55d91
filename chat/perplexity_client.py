"""
Single-attempt client for the Perplexity chat-completions endpoint.

:meth:`PerplexityClient.execute` performs exactly one HTTP request with the
key it is given and classifies the result. It never retries and never touches
the key registry; rotation is :class:`chat.ai_service.AIService`'s job.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Union

import httpx
from django.conf import settings
from pydantic import BaseModel, ValidationError

from .schemas import CompletionResponse

logger = logging.getLogger(__name__)

# Models offered to the front-end, in display order.
PERPLEXITY_MODELS = [
    {
        "id": "sonar-pro",
        "name": "Sonar Pro",
        "description": "Most capable model for complex tasks",
    },
    {
        "id": "sonar",
        "name": "Sonar",
        "description": "Fast and efficient for general queries",
    },
    {
        "id": "sonar-reasoning",
        "name": "Sonar Reasoning",
        "description": "Enhanced reasoning capabilities",
    },
    {
        "id": "sonar-deep-research",
        "name": "Deep Research",
        "description": "In-depth research and analysis",
    },
]

DEFAULT_MODEL = "sonar"

# Statuses Perplexity uses for rate limits and exhausted credit.
ROTATION_STATUS_CODES = frozenset({402, 429})


def default_model() -> str:
    """The ``PERPLEXITY_DEFAULT_MODEL`` setting, or ``sonar`` if it is unknown."""
    configured = getattr(settings, "PERPLEXITY_DEFAULT_MODEL", DEFAULT_MODEL)
    if configured in {model["id"] for model in PERPLEXITY_MODELS}:
        return configured
    logger.warning(
        "Unknown PERPLEXITY_DEFAULT_MODEL %r, using %s", configured, DEFAULT_MODEL
    )
    return DEFAULT_MODEL


def resolve_model(model_id: Optional[str]) -> str:
    """Map a requested model id onto a known one, defaulting to :func:`default_model`."""
    known = {model["id"] for model in PERPLEXITY_MODELS}
    if model_id in known:
        return model_id
    return default_model()


class FailureKind(str, Enum):
    """Classification of a failed upstream attempt."""

    RATE_LIMITED = "rate_limited"  # rotate to the next key
    TRANSPORT = "transport"  # abort the turn


class UpstreamSuccess(BaseModel):
    """Assistant reply extracted from a successful completion."""

    content: str
    citations: Optional[List[str]] = None


class UpstreamFailure(BaseModel):
    """A classified failure of one attempt."""

    kind: FailureKind
    message: str
    status_code: Optional[int] = None
    body: str = ""

    @property
    def is_rate_limited(self) -> bool:
        return self.kind is FailureKind.RATE_LIMITED


UpstreamOutcome = Union[UpstreamSuccess, UpstreamFailure]


class PerplexityClient:
    """Send one chat-completions request per call."""

    def __init__(
        self,
        base_url: str = "https://api.perplexity.ai",
        timeout: float = 60.0,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        top_p: float = 0.9,
        frequency_penalty: float = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            base_url: API root; ``/chat/completions`` is appended.
            timeout: Seconds before the request is abandoned as a transport error.
            transport: Optional httpx transport, used by tests to fake responses.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.frequency_penalty = frequency_penalty
        self.transport = transport

    def build_payload(self, messages: List[Dict[str, str]], model_id: str) -> dict:
        """Return the JSON body for ``/chat/completions``."""
        return {
            "model": model_id,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "stream": False,
            "frequency_penalty": self.frequency_penalty,
        }

    async def execute(
        self, messages: List[Dict[str, str]], model_id: str, api_key: str
    ) -> UpstreamOutcome:
        """
        Perform one request and classify the response.

        Args:
            messages: Prepared ``[{'role': ..., 'content': ...}, ...]`` sequence
            model_id: Perplexity model name
            api_key: Bearer token to authenticate with

        Returns:
            :class:`UpstreamSuccess`, or :class:`UpstreamFailure` with
            ``RATE_LIMITED`` for 429/402 and ``TRANSPORT`` for everything else
            (other statuses, empty choices, bad JSON, network errors, timeouts).
        """
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=self.build_payload(messages, model_id),
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            return UpstreamFailure(
                kind=FailureKind.TRANSPORT,
                message=f"Perplexity API request timed out after {self.timeout}s: {e}",
            )
        except httpx.RequestError as e:
            return UpstreamFailure(
                kind=FailureKind.TRANSPORT,
                message=f"Perplexity API network error: {e}",
            )

        if not response.is_success:
            body = response.text
            kind = (
                FailureKind.RATE_LIMITED
                if response.status_code in ROTATION_STATUS_CODES
                else FailureKind.TRANSPORT
            )
            return UpstreamFailure(
                kind=kind,
                message=f"Perplexity API error: {response.status_code} - {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            completion = CompletionResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            return UpstreamFailure(
                kind=FailureKind.TRANSPORT,
                message=f"Malformed response from Perplexity API: {e}",
                status_code=response.status_code,
                body=response.text,
            )

        if not completion.choices:
            return UpstreamFailure(
                kind=FailureKind.TRANSPORT,
                message="No response from Perplexity API",
                status_code=response.status_code,
                body=response.text,
            )

        if completion.usage:
            logger.debug(
                "Perplexity %s used %s tokens",
                completion.model or model_id,
                completion.usage.total_tokens,
            )

        return UpstreamSuccess(
            content=completion.choices[0].message.content,
            citations=completion.citations or None,
        )
