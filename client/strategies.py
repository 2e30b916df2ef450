"""
Price Fetch Strategies

The client's polling fallback chain is an ordered list of strategies, each
implementing ``fetch_prices(symbols) -> PriceResult``. The feed tries them in
order and keeps the first result; a strategy signals failure by raising.

    ServerAggregationStrategy    GET /market-data on the backend
    DirectAggregationStrategy    query the exchanges directly (shared adapters + aggregator)
    StaticPlaceholderStrategy    GET /prices on the backend, synthesized into snapshots

``local_placeholder()`` is the last resort once every strategy failed; it needs
no network at all.
"""

import enum
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from core.config import settings
from core.errors import SourceUnavailable, UpstreamRateLimited, UpstreamUnavailable
from core.logging import get_logger
from core.schemas import (
    AggregatedSnapshot,
    HistorySummary,
    MarketDataResponse,
    Metrics,
    PricesResponse,
    Quote,
    VerifiedPrice,
)
from core.source_manager import SourceManager
from core.utils.time import current_utc_timestamp
from storage.history_store import HistoryStore


logger = get_logger(__name__)

PLACEHOLDER_SOURCE = "placeholder"


class FeedTier(str, enum.Enum):
    CHANNEL = "channel"
    SERVER_AGGREGATION = "server_aggregation"
    DIRECT_AGGREGATION = "direct_aggregation"
    STATIC_PLACEHOLDER = "static_placeholder"
    LOCAL_PLACEHOLDER = "local_placeholder"


class PriceResult(BaseModel):
    """One update delivered to the consumer, whichever tier produced it."""

    tier: FeedTier
    prices: Dict[str, float] = Field(default_factory=dict)
    snapshots: List[AggregatedSnapshot] = Field(default_factory=list)
    history: Optional[Dict[str, HistorySummary]] = None
    metrics: Optional[Metrics] = None
    error: Optional[str] = None
    warning: Optional[str] = None
    fetched_at: int = Field(default_factory=lambda: current_utc_timestamp(milliseconds=True))

    @property
    def degraded(self) -> bool:
        return self.error is not None or self.warning is not None


def prices_from_snapshots(snapshots: List[AggregatedSnapshot]) -> Dict[str, float]:
    return {s.symbol: s.verified.price_mid for s in snapshots if s.verified.price_mid is not None}


def synthesize_snapshot(symbol: str, price: float, timestamp: Optional[int] = None) -> AggregatedSnapshot:
    """
    Degenerate snapshot for a single known price.

    Example:
        >>> snap = synthesize_snapshot("BTCUSD", 100.0)
        >>> snap.sources["placeholder"].bid, snap.sources["placeholder"].ask
        (99.9, 100.1)
    """
    return AggregatedSnapshot(
        symbol=symbol,
        sources={PLACEHOLDER_SOURCE: Quote(bid=price * 0.999, ask=price * 1.001)},
        verified=VerifiedPrice(price_mid=price, vwap=price, discrepancy_pct=0.0, alert=False),
        timestamp=timestamp if timestamp is not None else current_utc_timestamp(milliseconds=True),
    )


def local_placeholder(
    symbols: List[str],
    static_prices: Optional[Dict[str, float]] = None,
    error: Optional[str] = None,
) -> PriceResult:
    """Result built from the locally configured static prices (no network)."""
    table = static_prices if static_prices is not None else settings.static_prices_map
    prices = {s: table[s] for s in symbols if s in table}
    now = current_utc_timestamp(milliseconds=True)
    return PriceResult(
        tier=FeedTier.LOCAL_PLACEHOLDER,
        prices=prices,
        snapshots=[synthesize_snapshot(s, p, now) for s, p in prices.items()],
        error=error,
        warning="Showing locally configured placeholder prices",
        fetched_at=now,
    )


class PriceStrategy(ABC):
    """One tier of the polling fallback chain."""

    tier: FeedTier

    @abstractmethod
    async def fetch_prices(self, symbols: List[str]) -> PriceResult:
        """
        Fetch prices for ``symbols``.

        Raises:
            MarketDataError: When this tier cannot produce prices
        """

    async def aclose(self) -> None:
        """Release any resources held by the strategy."""


# ============================================
# Backend Strategies (httpx)
# ============================================

class _BackendStrategy(PriceStrategy):
    """Shared HTTP plumbing for strategies that call the backend."""

    def __init__(
        self,
        api_base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base_url = (api_base_url or settings.api_base_url).rstrip("/")
        self.api_key = settings.market_api_key if api_key is None else api_key
        self.timeout = timeout
        self._transport = transport

    async def _get_json(self, path: str, params: Dict[str, str]):
        headers = {"x-api-key": self.api_key} if self.api_key else {}
        try:
            async with httpx.AsyncClient(
                base_url=self.api_base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(path, params=params, headers=headers)
                if response.status_code == 429:
                    raise UpstreamRateLimited()
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"{path} answered HTTP {e.response.status_code}", status=e.response.status_code
            ) from e
        except httpx.RequestError as e:
            raise UpstreamUnavailable(f"{path} unreachable: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailable(f"{path} returned invalid JSON: {e}") from e


class ServerAggregationStrategy(_BackendStrategy):
    """Polls ``GET /market-data`` on the backend."""

    tier = FeedTier.SERVER_AGGREGATION

    def __init__(self, *args, want_history: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.want_history = want_history

    async def fetch_prices(self, symbols: List[str]) -> PriceResult:
        params = {"symbols": ",".join(symbols)}
        if self.want_history:
            params["history"] = "1"

        payload = await self._get_json("/market-data", params)
        try:
            response = MarketDataResponse.model_validate(payload)
        except ValidationError as e:
            raise UpstreamUnavailable(f"/market-data returned an unexpected payload: {e}") from e

        prices = prices_from_snapshots(response.data)
        if not prices:
            raise UpstreamUnavailable("/market-data returned no prices")

        return PriceResult(
            tier=self.tier,
            prices=prices,
            snapshots=response.data,
            history=response.history,
            metrics=response.metrics,
        )


class StaticPlaceholderStrategy(_BackendStrategy):
    """Reads ``GET /prices`` and synthesizes degenerate snapshots from it."""

    tier = FeedTier.STATIC_PLACEHOLDER

    async def fetch_prices(self, symbols: List[str]) -> PriceResult:
        payload = await self._get_json("/prices", {"symbols": ",".join(symbols)})
        try:
            prices = PricesResponse.model_validate(payload).prices
        except ValidationError as e:
            raise UpstreamUnavailable(f"/prices returned an unexpected payload: {e}") from e

        prices = {s: prices[s] for s in symbols if s in prices}
        if not prices:
            raise UpstreamUnavailable("/prices returned no prices")

        now = current_utc_timestamp(milliseconds=True)
        return PriceResult(
            tier=self.tier,
            prices=prices,
            snapshots=[synthesize_snapshot(s, p, now) for s, p in prices.items()],
            warning="Live data unavailable, showing placeholder prices",
            fetched_at=now,
        )


# ============================================
# Direct Exchange Strategy
# ============================================

class DirectAggregationStrategy(PriceStrategy):
    """
    Aggregates in the client process with the same adapters and aggregator as
    the server, keeping its own bounded history.
    """

    tier = FeedTier.DIRECT_AGGREGATION

    def __init__(self, sources: Optional[SourceManager] = None, history: Optional[HistoryStore] = None):
        self._sources = sources
        self._initialized = False
        self.history = history or HistoryStore()

    async def _manager(self) -> SourceManager:
        if self._sources is None:
            self._sources = SourceManager()
        if not self._initialized:
            await self._sources.initialize_all()
            self._initialized = True
        return self._sources

    async def fetch_prices(self, symbols: List[str]) -> PriceResult:
        manager = await self._manager()
        snapshots = await manager.aggregate_many(symbols)

        prices = prices_from_snapshots(snapshots)
        if not prices:
            raise SourceUnavailable("all", ",".join(symbols), "no exchange answered")

        self.history.extend(snapshots)
        return PriceResult(
            tier=self.tier,
            prices=prices,
            snapshots=snapshots,
            history=self.history.summarize_many(symbols),
            warning="Backend unavailable, aggregating directly from exchanges",
        )

    async def aclose(self) -> None:
        if self._sources is not None and self._initialized:
            await self._sources.shutdown_all()
            self._initialized = False
