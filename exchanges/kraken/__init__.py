"""
Kraken Quote Source

Endpoints Used:
    - GET /0/public/Ticker - bid, ask, last, 24h volume and today's open in one call

Pair Mapping:
    Kraken names bitcoin XBT: BTCUSD -> XBTUSD; other symbols pass through.
"""

from typing import List, Optional

from core.errors import SourceUnavailable
from core.logging import get_logger
from core.schemas import Quote
from core.source_interface import QuoteSource, change_pct, to_float
from .api_client import KrakenAPIClient


logger = get_logger(__name__)


def _first(values) -> Optional[float]:
    """First element of a Kraken [price, ...] array as a float."""
    if isinstance(values, (list, tuple)) and values:
        return to_float(values[0])
    return None


def _volume_24h(values) -> Optional[float]:
    """Kraken's v = [today, last 24h]; prefer the 24h figure."""
    if not isinstance(values, (list, tuple)) or not values:
        return None
    candidates: List = list(values[1:2]) + list(values[:1])
    for candidate in candidates:
        parsed = to_float(candidate)
        if parsed is not None:
            return parsed
    return None


class KrakenSource(QuoteSource):
    """Kraken Quote Source"""

    name = "kraken"

    pair_overrides = {
        "BTCUSD": "XBTUSD",
    }

    def __init__(self, client: KrakenAPIClient = None):
        self.client = client
        self._owns_client = client is None

    async def initialize(self) -> None:
        if self.client is None:
            self.client = KrakenAPIClient()
        if self.client.session is None:
            await self.client.__aenter__()
        logger.debug("Kraken source ready")

    async def shutdown(self) -> None:
        if self.client and self._owns_client:
            await self.client.__aexit__(None, None, None)

    async def get_quote(self, symbol: str) -> Quote:
        if self.client is None:
            raise SourceUnavailable(self.name, symbol, "source not initialized")

        pair = self.to_pair(symbol)
        ticker = await self.client.get_ticker(pair, symbol=symbol)
        if not isinstance(ticker, dict):
            raise SourceUnavailable(self.name, symbol, "unexpected payload shape")

        bid = _first(ticker.get("b"))
        ask = _first(ticker.get("a"))
        if bid is None and ask is None:
            raise SourceUnavailable(self.name, symbol, f"no book prices for {pair}")

        return Quote(
            bid=bid,
            ask=ask,
            volume_24h=_volume_24h(ticker.get("v")),
            change_24h_pct=change_pct(_first(ticker.get("c")), to_float(ticker.get("o"))),
        )
