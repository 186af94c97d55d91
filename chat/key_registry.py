"""
Persistent registry of Perplexity API key slots.

Each configured key has one :class:`chat.models.ApiKeyStatus` row. All state
changes are single ``UPDATE`` statements so concurrent chat turns never
interleave a read and a write on the same row.
"""

import logging
from typing import List, Optional, Sequence

from django.db.models import F
from django.utils import timezone

from .models import ApiKeyStatus

logger = logging.getLogger(__name__)


class KeyRegistry:
    """Async accessors and mutators for :class:`ApiKeyStatus` rows."""

    def __init__(self, api_keys: Sequence[str]) -> None:
        """
        Args:
            api_keys: Configured key values; position ``i`` is key index ``i + 1``.
                Only used to decide which slots to seed.
        """
        self.api_keys = tuple(api_keys)

    async def list_slots(self) -> List[ApiKeyStatus]:
        """Return every slot ordered by ``key_index``."""
        return [slot async for slot in ApiKeyStatus.objects.order_by('key_index')]

    async def get_current_candidate(self) -> Optional[ApiKeyStatus]:
        """Return the lowest-index slot that is not exhausted, if any."""
        return (
            await ApiKeyStatus.objects.filter(is_exhausted=False)
            .order_by('key_index')
            .afirst()
        )

    async def mark_exhausted(self, key_index: int) -> bool:
        """
        Flag a slot as exhausted and inactive.

        The update only matches a slot that is not exhausted yet, so repeated
        calls (including concurrent ones from other turns) are no-ops and
        ``error_count`` is bumped exactly once per transition.

        Returns:
            ``True`` if this call performed the transition.
        """
        updated = await ApiKeyStatus.objects.filter(
            key_index=key_index, is_exhausted=False
        ).aupdate(
            is_exhausted=True,
            is_active=False,
            error_count=F('error_count') + 1,
        )
        if updated:
            logger.warning("API key %s marked exhausted", key_index)
        return bool(updated)

    async def reactivate(self, key_index: int) -> bool:
        """Bring a slot back into rotation and clear its error counter."""
        updated = await ApiKeyStatus.objects.filter(key_index=key_index).aupdate(
            is_exhausted=False, is_active=True, error_count=0
        )
        if updated:
            logger.info("API key %s reactivated", key_index)
        return bool(updated)

    async def reset_all(self) -> int:
        """Reactivate every slot. Returns the number of rows touched."""
        updated = await ApiKeyStatus.objects.aupdate(
            is_exhausted=False, is_active=True, error_count=0
        )
        logger.info("Reactivated %s API key slot(s)", updated)
        return updated

    async def touch(self, key_index: int) -> None:
        """Stamp ``last_used`` after a successful call with this slot."""
        await ApiKeyStatus.objects.filter(key_index=key_index).aupdate(
            last_used=timezone.now()
        )

    async def ensure_initialized(self) -> int:
        """
        Seed one slot per configured key when the table is empty.

        Safe to call on every request: it is a single ``EXISTS`` query once
        slots exist, and the unique ``key_index`` plus ``ignore_conflicts``
        keeps two concurrent first calls from creating duplicates.

        Returns:
            Number of slots this call tried to insert (0 when already seeded).
        """
        if await ApiKeyStatus.objects.aexists():
            return 0

        slots = [
            ApiKeyStatus(
                key_index=position + 1,
                is_active=True,
                is_exhausted=False,
                error_count=0,
            )
            for position, value in enumerate(self.api_keys)
            if value
        ]
        if not slots:
            return 0

        await ApiKeyStatus.objects.abulk_create(slots, ignore_conflicts=True)
        logger.info("Initialized %s API key slot(s)", len(slots))
        return len(slots)

    async def add_missing_slots(self) -> int:
        """
        Seed a slot for every configured key that has none yet.

        Unlike :meth:`ensure_initialized` this also covers keys configured
        after the first seed. Existing slots are left as they are.

        Returns:
            Number of slots created.
        """
        existing = {
            index
            async for index in ApiKeyStatus.objects.values_list('key_index', flat=True)
        }
        slots = [
            ApiKeyStatus(key_index=position + 1)
            for position, value in enumerate(self.api_keys)
            if value and position + 1 not in existing
        ]
        if not slots:
            return 0

        await ApiKeyStatus.objects.abulk_create(slots, ignore_conflicts=True)
        logger.info(
            "Added API key slot(s) %s", ", ".join(str(s.key_index) for s in slots)
        )
        return len(slots)
