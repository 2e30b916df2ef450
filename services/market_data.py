"""
Market Data Service

The server-side owner of all aggregation state: the snapshot cache, the
history store and the metrics counters live on one ``MarketDataService``
instance that is created in the application lifespan and handed to the HTTP
handlers and the distribution hub. Nothing is a module-level singleton.

Lifecycle:
    service = MarketDataService(SourceManager())
    await service.start()          # open exchange sessions
    ...                            # serve requests
    await service.shutdown()

Cycle semantics:
    - A plain request within the snapshot TTL returns the memo (no adapter calls)
    - history / metrics requests always run (or join) a cycle
    - Concurrent requests for the same symbol list share one in-flight cycle
    - The snapshots appended to history are the exact objects cached and returned
"""

import asyncio
import time
from typing import Dict, List, Optional, Tuple

from core.config import settings
from core.logging import get_logger
from core.schemas import AggregatedSnapshot, MarketDataResponse, Metrics
from core.source_manager import SourceManager
from core.utils.time import current_utc_timestamp
from storage.history_store import HistoryStore
from storage.snapshot_cache import SnapshotCache


logger = get_logger(__name__)

SymbolKey = Tuple[str, ...]


def parse_symbols(
    raw: Optional[str],
    default: Optional[List[str]] = None,
    max_symbols: Optional[int] = None,
) -> List[str]:
    """
    Parse a comma-separated symbol list, keeping order and dropping blanks/duplicates.

    Raises:
        ValueError: If a symbol is not alphanumeric, or more than ``max_symbols``
                    (default MAX_SYMBOLS_PER_REQUEST) distinct symbols are requested

    Example:
        >>> parse_symbols("btcusd, ,ETHUSD,btcusd")
        ['BTCUSD', 'ETHUSD']
    """
    if not raw:
        return list(default if default is not None else settings.symbols_list)
    symbols: List[str] = []
    for part in raw.split(","):
        symbol = part.strip().upper()
        if symbol and not symbol.isalnum():
            raise ValueError(f"Invalid symbol: '{part.strip()}'")
        if symbol and symbol not in symbols:
            symbols.append(symbol)
    if not symbols:
        return list(default if default is not None else settings.symbols_list)
    limit = settings.max_symbols_per_request if max_symbols is None else max_symbols
    if len(symbols) > limit:
        raise ValueError(f"Too many symbols: {len(symbols)} requested, at most {limit} allowed")
    return symbols


class MarketDataService:
    """
    Aggregation context: sources, cache, history and metrics.

    Attributes:
        sources: SourceManager performing the per-symbol fan-out
        history: HistoryStore receiving one point per symbol per cycle
        snapshot_cache: Memo of the last snapshot set (keyed by symbol list)
        prices_cache: Memo of the last flat price mapping for /prices
        metrics: Cumulative counters
    """

    def __init__(
        self,
        sources: SourceManager,
        history: Optional[HistoryStore] = None,
        snapshot_ttl_ms: Optional[int] = None,
        prices_ttl_ms: Optional[int] = None,
        static_prices: Optional[Dict[str, float]] = None,
    ):
        self.sources = sources
        self.history = history or HistoryStore()
        self.snapshot_cache: SnapshotCache[List[AggregatedSnapshot]] = SnapshotCache(
            settings.snapshot_cache_ttl_ms if snapshot_ttl_ms is None else snapshot_ttl_ms
        )
        self.prices_cache: SnapshotCache[Dict[str, float]] = SnapshotCache(
            settings.prices_cache_ttl_ms if prices_ttl_ms is None else prices_ttl_ms
        )
        self.static_prices = dict(settings.static_prices_map if static_prices is None else static_prices)
        self.metrics = Metrics()
        self._inflight: Dict[SymbolKey, asyncio.Task] = {}

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self) -> None:
        await self.sources.initialize_all()
        logger.info("Market data service started")

    async def shutdown(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        await self.sources.shutdown_all()
        logger.info("Market data service stopped")

    # ============================================
    # Aggregation Cycle
    # ============================================

    async def run_cycle(self, symbols: List[str]) -> List[AggregatedSnapshot]:
        """
        Aggregate ``symbols`` once, or join the cycle already running for them.

        Raises:
            Exception: Whatever broke the cycle (metrics are updated first)
        """
        key: SymbolKey = tuple(symbols)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._cycle(key), name=f"aggregate:{','.join(key)}")
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        else:
            logger.debug(f"Joining in-flight cycle for {','.join(key)}")
        # Shield so one caller going away does not cancel the cycle for the others
        return await asyncio.shield(task)

    async def _cycle(self, key: SymbolKey) -> List[AggregatedSnapshot]:
        started = time.monotonic()
        try:
            snapshots = await self.sources.aggregate_many(list(key))

            # Single writer: history, cache and metrics change together after the fan-out
            self.history.extend(snapshots)
            finished_at = current_utc_timestamp(milliseconds=True)
            self.snapshot_cache.put(key, snapshots, now=finished_at)

            self.metrics.successes += 1
            self.metrics.last_duration_ms = int((time.monotonic() - started) * 1000)
            self.metrics.last_error = None

            logger.info(
                f"Aggregation cycle for {','.join(key)} finished in {self.metrics.last_duration_ms}ms"
            )
            return snapshots

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.record_failure(e)
            raise

    def record_failure(self, error: Exception) -> None:
        self.metrics.failures += 1
        self.metrics.last_error = str(error) or error.__class__.__name__
        logger.error(f"Aggregation cycle failed: {self.metrics.last_error}")

    # ============================================
    # Request Operations
    # ============================================

    async def get_market_data(
        self,
        symbols: List[str],
        want_history: bool = False,
        want_metrics: bool = False,
    ) -> MarketDataResponse:
        """
        Build the ``GET /market-data`` response.

        Plain requests are served from the snapshot memo when it is fresh.
        Requests for history or metrics always reflect a new (or joined) cycle.
        """
        key: SymbolKey = tuple(symbols)

        if not want_history and not want_metrics:
            cached = self.snapshot_cache.get_fresh(key)
            if cached is not None:
                return MarketDataResponse(
                    data=cached,
                    cached=True,
                    metrics=self.metrics.model_copy(),
                    fetched_at=self.snapshot_cache.last_computed_at,
                )

        snapshots = await self.run_cycle(symbols)
        response = MarketDataResponse(data=snapshots, metrics=self.metrics.model_copy())

        if want_history:
            response.history = self.history.summarize_many(symbols)
        if not want_history and not want_metrics:
            response.fetched_at = self.snapshot_cache.last_computed_at
        return response

    async def get_prices(self, symbols: List[str]) -> Dict[str, float]:
        """
        Flat SYMBOL -> price mapping for ``GET /prices`` and the hub.

        Order of preference: fresh memo, new cycle, stale memo, static list.
        Never raises.
        """
        key: SymbolKey = tuple(symbols)
        cached = self.prices_cache.get_fresh(key)
        if cached is not None:
            return dict(cached)

        try:
            snapshots = await self.run_cycle(symbols)
            prices = {
                s.symbol: s.verified.price_mid for s in snapshots if s.verified.price_mid is not None
            }
            if prices:
                prices = self._fill_missing(key, prices)
                self.prices_cache.put(key, prices)
                return dict(prices)
            logger.warning(f"No live price for any of {','.join(symbols)}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Price computation failed: {e}")

        stale = self.prices_cache.get_stale(key)
        if stale is not None:
            logger.warning("Serving stale prices")
            return dict(stale)

        logger.warning("Serving static fallback prices")
        return {s: self.static_prices[s] for s in symbols if s in self.static_prices}

    def _fill_missing(self, key: SymbolKey, prices: Dict[str, float]) -> Dict[str, float]:
        """Carry over the last known (then static) price for symbols this cycle missed."""
        previous = self.prices_cache.get_stale(key) or {}
        filled: Dict[str, float] = {}
        for symbol in key:
            if symbol in prices:
                filled[symbol] = prices[symbol]
            elif symbol in previous:
                filled[symbol] = previous[symbol]
            elif symbol in self.static_prices:
                filled[symbol] = self.static_prices[symbol]
        missing = [s for s in key if s not in prices and s in filled]
        if missing:
            logger.warning(f"No live price for {','.join(missing)}; keeping last known value")
        return filled

    def metrics_snapshot(self) -> Metrics:
        return self.metrics.model_copy()
