"""Database cache backend shared by every worker for request rate limiting."""

from typing import Optional

from django.core.cache.backends.db import DatabaseCache
from django.db import transaction


class RateLimitDatabaseCache(DatabaseCache):
    """``DatabaseCache`` whose counters survive concurrent increments.

    ``django_ratelimit`` stores one integer per rate-limit window and bumps it
    with ``incr``. The stock implementation raises when the key is missing and
    races between its read and its write; this one seeds missing keys and runs
    both steps inside a single transaction.
    """

    def incr(self, key: str, delta: int = 1, version: Optional[int] = None) -> int:
        """Add ``delta`` to the counter stored at ``key`` and return the result."""
        self.validate_key(self.make_key(key, version=version))

        with transaction.atomic():
            if self.add(key, delta, version=version):
                return delta

            current = self.get(key, version=version)
            try:
                new_value = int(current) + delta
            except (TypeError, ValueError):
                # Expired between add() and get(), or not a counter
                new_value = delta
            self.set(key, new_value, version=version)
            return new_value

    def decr(self, key: str, delta: int = 1, version: Optional[int] = None) -> int:
        """Subtract ``delta`` from the counter stored at ``key``."""
        return self.incr(key, -delta, version=version)
