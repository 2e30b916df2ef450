"""
Source Manager: Registry and Settle-All Fan-Out for Quote Sources

The SourceManager owns the set of exchange adapters and runs one aggregation
fan-out per symbol: all adapters are invoked concurrently, every call carries
an absolute deadline, and the fan-out waits until each one has either answered
or failed. One adapter failing never aborts the others (settle-all, not
fail-fast); failures are logged as ``SourceUnavailable`` and excluded.

Example Usage:
    manager = SourceManager()
    await manager.initialize_all()

    quotes = await manager.collect_quotes("BTCUSD")     # {"binance": Quote, ...}
    snapshot = await manager.aggregate("BTCUSD")         # AggregatedSnapshot
    snapshots = await manager.aggregate_many(["BTCUSD", "ETHUSD"])

    await manager.shutdown_all()
"""

import asyncio
from typing import Dict, List, Optional

from core.aggregator import build_snapshot
from core.config import settings
from core.errors import SourceUnavailable
from core.logging import get_logger
from core.schemas import AggregatedSnapshot, Quote
from core.source_interface import QuoteSource


logger = get_logger(__name__)


class SourceManager:
    """
    Central Registry for Quote Sources

    Attributes:
        sources: Mapping of source name -> adapter instance
        timeout: Absolute deadline (seconds) for one adapter's ``get_quote``

    Example:
        >>> manager = SourceManager()
        >>> manager.list_sources()
        ['binance', 'coinbase', 'kraken']
    """

    def __init__(self, sources: Optional[List[QuoteSource]] = None, timeout: Optional[float] = None):
        """
        Initialize the registry.

        Args:
            sources: Adapters to register (defaults to Binance, Coinbase and Kraken)
            timeout: Per-adapter deadline; defaults to the source timeout plus a
                     small margin, since one adapter may issue two calls concurrently
        """
        if sources is None:
            # Each exchange module imports from core, so import lazily
            from exchanges.binance import BinanceSource
            from exchanges.coinbase import CoinbaseSource
            from exchanges.kraken import KrakenSource

            sources = [BinanceSource(), CoinbaseSource(), KrakenSource()]

        self.sources: Dict[str, QuoteSource] = {source.name: source for source in sources}
        self.timeout = timeout if timeout is not None else settings.source_timeout + 0.5

        logger.info(
            f"SourceManager initialized with {len(self.sources)} source(s): {', '.join(self.sources.keys())}"
        )

    # ============================================
    # Registry Access
    # ============================================

    def get_source(self, name: str) -> QuoteSource:
        """
        Get a source adapter by name.

        Raises:
            ValueError: If the source is not registered
        """
        name = name.lower()
        if name not in self.sources:
            available = ", ".join(self.sources.keys())
            raise ValueError(f"Source '{name}' is not supported. Available sources: {available}")
        return self.sources[name]

    def list_sources(self) -> List[str]:
        return list(self.sources.keys())

    # ============================================
    # Lifecycle Management
    # ============================================

    async def initialize_all(self) -> None:
        """Initialize every adapter; one failing adapter does not stop the others."""
        logger.info("Initializing all sources...")
        for name, source in self.sources.items():
            try:
                await source.initialize()
                logger.info(f"✓ {name.capitalize()} initialized")
            except Exception as e:
                logger.error(f"✗ Failed to initialize {name}: {e}")

    async def shutdown_all(self) -> None:
        logger.info("Shutting down all sources...")
        for name, source in self.sources.items():
            try:
                await source.shutdown()
                logger.debug(f"✓ {name.capitalize()} shut down")
            except Exception as e:
                logger.error(f"✗ Error shutting down {name}: {e}")

    async def health_check_all(self) -> Dict[str, bool]:
        """Check all sources concurrently; each result is True when reachable."""
        names = list(self.sources.keys())
        results = await asyncio.gather(
            *(self._bounded(self.sources[n].health_check()) for n in names),
            return_exceptions=True,
        )
        return {name: result is True for name, result in zip(names, results)}

    # ============================================
    # Fan-Out
    # ============================================

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout)

    async def collect_quotes(self, symbol: str) -> Dict[str, Quote]:
        """
        Ask every source for ``symbol`` concurrently and keep the successes.

        Returns:
            Dict[str, Quote]: Successful quotes by source name (possibly empty)

        Notes:
            - Never raises for adapter failures; they are logged and excluded
            - Returns only after every adapter has answered or hit its deadline
        """
        symbol = symbol.upper()
        names = list(self.sources.keys())
        results = await asyncio.gather(
            *(self._bounded(self.sources[n].get_quote(symbol)) for n in names),
            return_exceptions=True,
        )

        quotes: Dict[str, Quote] = {}
        for name, result in zip(names, results):
            if isinstance(result, Quote):
                quotes[name] = result
                continue
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, asyncio.TimeoutError):
                result = SourceUnavailable(name, symbol, f"no answer within {self.timeout:.1f}s")
            elif not isinstance(result, SourceUnavailable):
                result = SourceUnavailable(name, symbol, repr(result))
            logger.warning(str(result))

        return quotes

    async def aggregate(self, symbol: str) -> AggregatedSnapshot:
        """
        Collect quotes for one symbol and verify them into a snapshot.

        A symbol for which no source succeeded still yields a snapshot
        (``priceMid`` None, vwap 0, no alert).
        """
        quotes = await self.collect_quotes(symbol)
        snapshot = build_snapshot(symbol.upper(), quotes)
        if snapshot.is_empty:
            logger.warning(f"AggregationEmpty: no source succeeded for {snapshot.symbol}")
        elif snapshot.verified.alert:
            logger.warning(
                f"Discrepancy alert for {snapshot.symbol}: "
                f"{snapshot.verified.discrepancy_pct:.2f}% across {', '.join(quotes.keys())}"
            )
        return snapshot

    async def aggregate_many(self, symbols: List[str]) -> List[AggregatedSnapshot]:
        """Aggregate several symbols concurrently, preserving the request order."""
        return list(await asyncio.gather(*(self.aggregate(s) for s in symbols)))

    def __repr__(self) -> str:
        return f"<SourceManager(sources={list(self.sources.keys())})>"

    def __len__(self) -> int:
        return len(self.sources)
