"""
Storage Package

In-memory state owned by the server process:
- HistoryStore: bounded per-symbol time series with rolling summaries
- SnapshotCache: short-TTL memo of the last aggregation result

Nothing here is durable; a restart starts from empty history and cache.
"""

from storage.history_store import HistoryStore
from storage.snapshot_cache import SnapshotCache

__all__ = ["HistoryStore", "SnapshotCache"]
