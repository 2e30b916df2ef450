"""
Snapshot Cache

Short-TTL memo of the last computed value for a key. The market-data handler
keys it by the requested symbol list and stores the snapshot set of the last
aggregation cycle (TTL 2000 ms); ``/prices`` uses a second instance holding the
flat price mapping (TTL 3000 ms) and also reads it past expiry as a stale
fallback when a fresh computation fails.

Only the latest entry is kept: the memo absorbs bursts of identical requests,
it is not a general cache.
"""

from dataclasses import dataclass
from typing import Generic, Hashable, Optional, TypeVar

from core.utils.time import current_utc_timestamp


T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    key: Hashable
    value: T
    computed_at: int


class SnapshotCache(Generic[T]):
    """
    Single-entry TTL cache.

    Example:
        >>> cache = SnapshotCache(ttl_ms=2000)
        >>> cache.put(("BTCUSD",), snapshots, now=1000)
        >>> cache.get_fresh(("BTCUSD",), now=2500) is snapshots
        True
        >>> cache.get_fresh(("BTCUSD",), now=3000) is None
        True
    """

    def __init__(self, ttl_ms: int):
        self.ttl_ms = ttl_ms
        self._entry: Optional[CacheEntry[T]] = None

    @property
    def last_computed_at(self) -> Optional[int]:
        return self._entry.computed_at if self._entry else None

    def put(self, key: Hashable, value: T, now: Optional[int] = None) -> None:
        now = current_utc_timestamp(milliseconds=True) if now is None else now
        self._entry = CacheEntry(key=key, value=value, computed_at=now)

    def get_fresh(self, key: Hashable, now: Optional[int] = None) -> Optional[T]:
        """Cached value for ``key`` if it was computed less than ``ttl_ms`` ago."""
        entry = self._entry
        if entry is None or entry.key != key:
            return None
        now = current_utc_timestamp(milliseconds=True) if now is None else now
        if now - entry.computed_at < self.ttl_ms:
            return entry.value
        return None

    def get_stale(self, key: Hashable) -> Optional[T]:
        """Cached value for ``key`` regardless of age."""
        entry = self._entry
        if entry is None or entry.key != key:
            return None
        return entry.value

    def clear(self) -> None:
        self._entry = None
