"""
Binance Quote Source

Implements QuoteSource for Binance spot.

Endpoints Used:
    - GET /api/v3/ticker/bookTicker - best bid / ask
    - GET /api/v3/ticker/24hr       - 24h volume and change percent

Pair Mapping:
    Binance quotes USD markets in USDT: BTCUSD -> BTCUSDT, ETHUSD -> ETHUSDT.
"""

import asyncio

from core.errors import SourceUnavailable
from core.logging import get_logger
from core.schemas import Quote
from core.source_interface import QuoteSource, change_pct, split_symbol, to_float
from .api_client import BinanceAPIClient


logger = get_logger(__name__)


class BinanceSource(QuoteSource):
    """
    Binance Spot Quote Source

    Example:
        >>> source = BinanceSource()
        >>> await source.initialize()
        >>> quote = await source.get_quote("BTCUSD")
        >>> await source.shutdown()
    """

    name = "binance"

    def __init__(self, client: BinanceAPIClient = None):
        self.client = client
        self._owns_client = client is None

    def _default_pair(self, symbol: str) -> str:
        base, quote_asset = split_symbol(symbol)
        if quote_asset == "USD":
            quote_asset = "USDT"
        return f"{base}{quote_asset}"

    async def initialize(self) -> None:
        if self.client is None:
            self.client = BinanceAPIClient()
        if self.client.session is None:
            await self.client.__aenter__()
        logger.debug("Binance source ready")

    async def shutdown(self) -> None:
        if self.client and self._owns_client:
            await self.client.__aexit__(None, None, None)

    async def get_quote(self, symbol: str) -> Quote:
        """
        Fetch book ticker and 24h stats concurrently and normalize them.

        Raises:
            SourceUnavailable: If either call fails or the book has no prices
        """
        if self.client is None:
            raise SourceUnavailable(self.name, symbol, "source not initialized")

        pair = self.to_pair(symbol)
        book, stats = await asyncio.gather(
            self.client.get_book_ticker(pair, symbol=symbol),
            self.client.get_24hr_stats(pair, symbol=symbol),
        )

        if not isinstance(book, dict) or not isinstance(stats, dict):
            raise SourceUnavailable(self.name, symbol, "unexpected payload shape")

        change = to_float(stats.get("priceChangePercent"))
        if change is None:
            change = change_pct(to_float(stats.get("lastPrice")), to_float(stats.get("openPrice")))

        bid = to_float(book.get("bidPrice"))
        ask = to_float(book.get("askPrice"))
        if bid is None and ask is None:
            raise SourceUnavailable(self.name, symbol, f"no book prices for {pair}")

        return Quote(
            bid=bid,
            ask=ask,
            volume_24h=to_float(stats.get("volume")),
            change_24h_pct=change,
        )
