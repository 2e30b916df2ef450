"""
Coinbase Quote Source

Endpoints Used:
    - GET /products/{pair}/ticker - best bid / ask and last trade price
    - GET /products/{pair}/stats  - 24h open and volume

Pair Mapping:
    BTCUSD -> BTC-USD

Coinbase does not report a change percentage, so it is derived from the
24h open and the last trade price.
"""

import asyncio

from core.errors import SourceUnavailable
from core.logging import get_logger
from core.schemas import Quote
from core.source_interface import QuoteSource, change_pct, split_symbol, to_float
from .api_client import CoinbaseAPIClient


logger = get_logger(__name__)


class CoinbaseSource(QuoteSource):
    """Coinbase Exchange Quote Source"""

    name = "coinbase"

    def __init__(self, client: CoinbaseAPIClient = None):
        self.client = client
        self._owns_client = client is None

    def _default_pair(self, symbol: str) -> str:
        base, quote_asset = split_symbol(symbol)
        return f"{base}-{quote_asset}"

    async def initialize(self) -> None:
        if self.client is None:
            self.client = CoinbaseAPIClient()
        if self.client.session is None:
            await self.client.__aenter__()
        logger.debug("Coinbase source ready")

    async def shutdown(self) -> None:
        if self.client and self._owns_client:
            await self.client.__aexit__(None, None, None)

    async def get_quote(self, symbol: str) -> Quote:
        if self.client is None:
            raise SourceUnavailable(self.name, symbol, "source not initialized")

        pair = self.to_pair(symbol)
        ticker, stats = await asyncio.gather(
            self.client.get_ticker(pair, symbol=symbol),
            self.client.get_stats(pair, symbol=symbol),
        )

        if not isinstance(ticker, dict) or not isinstance(stats, dict):
            raise SourceUnavailable(self.name, symbol, "unexpected payload shape")
        if "message" in ticker and "bid" not in ticker:
            # Coinbase reports unknown products as {"message": "NotFound"}
            raise SourceUnavailable(self.name, symbol, f"{pair}: {ticker['message']}")

        bid = to_float(ticker.get("bid"))
        ask = to_float(ticker.get("ask"))
        if bid is None and ask is None:
            raise SourceUnavailable(self.name, symbol, f"no book prices for {pair}")

        last = to_float(ticker.get("price"))
        if last is None:
            last = to_float(stats.get("last"))

        volume = to_float(stats.get("volume"))
        if volume is None:
            volume = to_float(ticker.get("volume"))

        return Quote(
            bid=bid,
            ask=ask,
            volume_24h=volume,
            change_24h_pct=change_pct(last, to_float(stats.get("open"))),
        )
