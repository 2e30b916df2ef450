"""
Binance REST API Client

Async HTTP client for the two Binance spot endpoints a quote needs.

API Documentation:
    https://binance-docs.github.io/apidocs/spot/en/#market-data-endpoints

Usage:
    async with BinanceAPIClient() as client:
        book = await client.get_book_ticker("BTCUSDT")
        stats = await client.get_24hr_stats("BTCUSDT")
"""

from typing import Any, Dict, Optional

from core.config import settings
from exchanges.base_client import RestClient


class BinanceAPIClient(RestClient):
    """
    Async HTTP client for Binance spot market data.

    Example:
        >>> async with BinanceAPIClient() as client:
        ...     book = await client.get_book_ticker("BTCUSDT")
        ...     print(book["bidPrice"], book["askPrice"])
    """

    source = "binance"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(base_url or settings.binance_base_url, timeout)

    async def get_book_ticker(self, pair: str, symbol: str = "") -> Dict[str, Any]:
        """
        Best bid/ask for a pair.

        Binance Endpoint:
            GET /api/v3/ticker/bookTicker?symbol={pair}

        Response Format:
            {
              "symbol": "BTCUSDT",
              "bidPrice": "64000.10",
              "bidQty": "1.2",
              "askPrice": "64000.20",
              "askQty": "0.8"
            }
        """
        return await self._get("/api/v3/ticker/bookTicker", {"symbol": pair}, symbol=symbol)

    async def get_24hr_stats(self, pair: str, symbol: str = "") -> Dict[str, Any]:
        """
        Rolling 24h statistics for a pair.

        Binance Endpoint:
            GET /api/v3/ticker/24hr?symbol={pair}

        Response Format (abridged):
            {
              "symbol": "BTCUSDT",
              "priceChangePercent": "1.250",
              "openPrice": "63200.00",
              "lastPrice": "64000.15",
              "volume": "15234.12"
            }
        """
        return await self._get("/api/v3/ticker/24hr", {"symbol": pair}, symbol=symbol)
