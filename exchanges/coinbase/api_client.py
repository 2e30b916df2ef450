"""
Coinbase Exchange REST API Client

API Documentation:
    https://docs.cdp.coinbase.com/exchange/reference/exchangerestapi_getproductticker

Notes:
    Coinbase rejects requests without a User-Agent header.
"""

from typing import Any, Dict, Optional

from core.config import settings
from exchanges.base_client import RestClient


class CoinbaseAPIClient(RestClient):
    """Async HTTP client for Coinbase Exchange product ticker and stats."""

    source = "coinbase"
    default_headers = {"User-Agent": "CryptoZen"}

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(base_url or settings.coinbase_base_url, timeout)

    async def get_ticker(self, pair: str, symbol: str = "") -> Dict[str, Any]:
        """
        Coinbase Endpoint:
            GET /products/{pair}/ticker

        Response Format:
            {"trade_id": 1, "price": "64000.15", "size": "0.01",
             "bid": "64000.10", "ask": "64000.20", "volume": "8123.5",
             "time": "2024-01-01T12:00:00Z"}
        """
        return await self._get(f"/products/{pair}/ticker", symbol=symbol)

    async def get_stats(self, pair: str, symbol: str = "") -> Dict[str, Any]:
        """
        Coinbase Endpoint:
            GET /products/{pair}/stats

        Response Format:
            {"open": "63200.00", "high": "64500.00", "low": "63000.00",
             "last": "64000.15", "volume": "8123.5"}
        """
        return await self._get(f"/products/{pair}/stats", symbol=symbol)
