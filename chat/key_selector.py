"""Choose which Perplexity API key the next upstream attempt should use."""

import logging
from typing import NamedTuple, Optional, Sequence

from .key_registry import KeyRegistry

logger = logging.getLogger(__name__)


def mask_key(api_key: str) -> str:
    """Mask a key for logs, keeping only its last 6 characters."""
    if len(api_key) > 6:
        return f"...{api_key[-6:]}"
    return "***"


class SelectedKey(NamedTuple):
    """A key value together with its 1-based slot index."""

    value: str
    index: int


class KeySelector:
    """Pick a key using registry bookkeeping first and raw configuration last."""

    def __init__(self, registry: KeyRegistry, api_keys: Sequence[str]) -> None:
        self.registry = registry
        self.api_keys = tuple(api_keys)

    def _configured(self, key_index: int) -> str:
        """Return the configured value for ``key_index`` or ``''``."""
        if 1 <= key_index <= len(self.api_keys):
            return self.api_keys[key_index - 1]
        return ''

    async def select_key(self) -> Optional[SelectedKey]:
        """
        Return the key to use next, or ``None`` when no key is configured.

        Order of preference:

        1. The registry's current candidate (lowest non-exhausted index).
        2. The first non-exhausted slot that has a configured value; it is
           reactivated before being returned.
        3. The first non-empty configured key, ignoring the registry. This can
           hand out a key the registry still marks exhausted.
        """
        candidate = await self.registry.get_current_candidate()
        if candidate is not None:
            value = self._configured(candidate.key_index)
            if value:
                return SelectedKey(value, candidate.key_index)

        for slot in await self.registry.list_slots():
            if slot.is_exhausted:
                continue
            value = self._configured(slot.key_index)
            if value:
                await self.registry.reactivate(slot.key_index)
                return SelectedKey(value, slot.key_index)

        for position, value in enumerate(self.api_keys):
            if value:
                logger.warning(
                    "No usable key slot in registry; falling back to configured "
                    "key %s (%s)",
                    position + 1,
                    mask_key(value),
                )
                return SelectedKey(value, position + 1)

        return None
