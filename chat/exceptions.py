"""
Exceptions raised while talking to Perplexity through the key rotation layer.

Only :class:`NoCredentialsConfigured`, :class:`AllCredentialsExhausted` and
:class:`UpstreamTransportError` ever reach callers of
:meth:`chat.ai_service.AIService.send_message`. :class:`RateLimited` is
raised and handled inside the rotation loop.
"""

from typing import Optional


class KeyRotationError(Exception):
    """Base class for every failure of a logical chat turn."""


class NoCredentialsConfigured(KeyRotationError):
    """No ``PERPLEXITY_API_KEY_<n>`` value is configured at all."""

    def __init__(self, message: str = "No Perplexity API keys are configured.") -> None:
        super().__init__(message)


class AllCredentialsExhausted(KeyRotationError):
    """Every configured key was rate limited during this turn."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"All Perplexity API keys are exhausted after {attempts} attempt(s). "
            "The upstream quota has likely been used up; try again later."
        )


class RateLimited(KeyRotationError):
    """Perplexity answered 429/402 for one key; the controller rotates."""

    def __init__(self, key_index: int, status_code: int, body: str = "") -> None:
        self.key_index = key_index
        self.status_code = status_code
        self.body = body
        super().__init__(f"API key {key_index} rate limited ({status_code})")


class UpstreamTransportError(KeyRotationError):
    """Any non-quota failure: bad request, provider 5xx, network error, timeout."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)
