"""In-process cache with per-entry expiry and an explicit eviction sweep."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Optional

from utils.timeutils import add_seconds, utcnow

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached value and the moment it stops being valid."""

    key: Hashable
    value: Any
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class TTLCache:
    """
    Key/value cache whose entries expire after a time-to-live.

    Expired entries are invisible to readers immediately, but are only
    removed from memory by sweep(), which the scheduler runs periodically.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.default_ttl = default_ttl
        self._clock = clock or utcnow
        self._entries: Dict[Hashable, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value for ttl seconds (default_ttl when omitted)."""
        lifetime = self.default_ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            expires_at=add_seconds(self._clock(), lifetime),
        )

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_create(
        self,
        key: Hashable,
        factory: Callable[[], Any],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value, awaiting factory() on a miss.

        None results are not cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = await factory()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def sweep(self) -> int:
        """Remove expired entries and return how many were evicted."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.debug(f"Cache sweep evicted {len(expired)} entries")
        return len(expired)
