"""
Kraken REST API Client

API Documentation:
    https://docs.kraken.com/api/docs/rest-api/get-ticker-information
"""

from typing import Any, Dict, Optional

from core.config import settings
from core.errors import SourceUnavailable
from exchanges.base_client import RestClient


class KrakenAPIClient(RestClient):
    """Async HTTP client for the Kraken public ticker."""

    source = "kraken"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(base_url or settings.kraken_base_url, timeout)

    async def get_ticker(self, pair: str, symbol: str = "") -> Dict[str, Any]:
        """
        Ticker for one pair, unwrapped from Kraken's envelope.

        Kraken Endpoint:
            GET /0/public/Ticker?pair={pair}

        Response Format:
            {
              "error": [],
              "result": {
                "XXBTZUSD": {
                  "a": ["64000.20", "1", "1.000"],   // ask [price, whole lot, lot]
                  "b": ["64000.10", "2", "2.000"],   // bid
                  "c": ["64000.15", "0.01"],         // last trade [price, volume]
                  "v": ["1200.5", "3120.7"],         // volume [today, last 24h]
                  "o": "63200.00"                    // today's opening price
                }
              }
            }

        Returns:
            The inner ticker object (first key of ``result``; Kraken renames pairs)

        Raises:
            SourceUnavailable: If Kraken reports an error or the result is empty
        """
        payload = await self._get("/0/public/Ticker", {"pair": pair}, symbol=symbol)

        errors = payload.get("error") if isinstance(payload, dict) else None
        if errors:
            raise SourceUnavailable(self.source, symbol, f"{pair}: {', '.join(map(str, errors))}")

        result = payload.get("result") if isinstance(payload, dict) else None
        if not result:
            raise SourceUnavailable(self.source, symbol, f"empty ticker result for {pair}")

        key = next(iter(result))
        return result[key]
