"""
History Store

In-memory, size-bounded time series of aggregation results, one per symbol.
Each aggregation cycle appends one ``HistoryPoint`` per symbol; once a symbol
holds ``limit`` points (1440 by default, about a day at a one-minute cadence)
the oldest point is dropped for every new one.
At most ``max_symbols`` symbols are tracked; a new symbol beyond that evicts
the one updated least recently.

Summaries are recomputed on demand by scanning the points (no incremental
state); the size bound keeps that scan cheap.
"""

from collections import OrderedDict, deque
from typing import Deque, Dict, List, Optional

from core.aggregator import total_volume
from core.config import settings
from core.logging import get_logger
from core.schemas import AggregatedSnapshot, HistoryPoint, HistorySummary
from core.utils.time import age_seconds, current_utc_timestamp


logger = get_logger(__name__)

# Rolling windows in seconds
WINDOWS = {
    "minute": 60,
    "hourly": 3600,
    "daily": 86400,
}


class HistoryStore:
    """
    Bounded per-symbol FIFO of history points.

    Example:
        >>> store = HistoryStore(limit=1440)
        >>> store.append(snapshot)
        >>> store.summarize("BTCUSD")
        HistorySummary(minute=64000.1, hourly=63980.4, daily=63512.9)
    """

    def __init__(self, limit: Optional[int] = None, max_symbols: Optional[int] = None):
        self.limit = limit if limit is not None else settings.history_limit
        self.max_symbols = max_symbols if max_symbols is not None else settings.history_max_symbols
        self._points: "OrderedDict[str, Deque[HistoryPoint]]" = OrderedDict()

    def _series(self, symbol: str) -> Deque[HistoryPoint]:
        symbol = symbol.upper()
        if symbol in self._points:
            self._points.move_to_end(symbol)
            return self._points[symbol]

        if len(self._points) >= self.max_symbols:
            evicted, _ = self._points.popitem(last=False)
            logger.info(f"History full ({self.max_symbols} symbols), evicting {evicted}")
        self._points[symbol] = deque(maxlen=self.limit)
        return self._points[symbol]

    def append(self, snapshot: AggregatedSnapshot) -> HistoryPoint:
        """
        Record one snapshot as a history point.

        Timestamps are kept non-decreasing per symbol: a snapshot older than the
        newest stored point is recorded at the newest point's time.
        """
        series = self._series(snapshot.symbol)
        t = snapshot.timestamp
        if series and t < series[-1].t:
            logger.debug(f"Clamping out-of-order history point for {snapshot.symbol}: {t} < {series[-1].t}")
            t = series[-1].t

        point = HistoryPoint(
            t=t,
            mid=snapshot.verified.price_mid,
            vwap=snapshot.verified.vwap,
            vol=total_volume(snapshot),
        )
        series.append(point)
        return point

    def extend(self, snapshots: List[AggregatedSnapshot]) -> None:
        for snapshot in snapshots:
            self.append(snapshot)

    def points(self, symbol: str) -> List[HistoryPoint]:
        """Stored points for ``symbol``, oldest first."""
        return list(self._points.get(symbol.upper(), ()))

    def __len__(self) -> int:
        return sum(len(series) for series in self._points.values())

    def summarize(self, symbol: str, now: Optional[int] = None) -> HistorySummary:
        """
        Mean VWAP over points aged <= 60 s, <= 3600 s and <= 86400 s.

        Args:
            symbol: Symbol to summarize
            now: Reference time in epoch milliseconds (defaults to now)

        Returns:
            HistorySummary: each window is 0 when no point falls inside it
        """
        now = current_utc_timestamp(milliseconds=True) if now is None else now
        series = self._points.get(symbol.upper(), ())

        averages = {}
        for name, window in WINDOWS.items():
            values = [p.vwap for p in series if age_seconds(p.t, now) <= window]
            averages[name] = sum(values) / len(values) if values else 0.0

        return HistorySummary(**averages)

    def summarize_many(self, symbols: List[str], now: Optional[int] = None) -> Dict[str, HistorySummary]:
        return {symbol.upper(): self.summarize(symbol, now) for symbol in symbols}
