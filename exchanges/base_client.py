"""
Shared REST Client Plumbing

Every exchange API client needs the same things: an aiohttp session managed
through ``async with``, and a GET helper that enforces the per-call deadline
and turns any transport problem into ``SourceUnavailable``.

Unlike a long-running data collector, a quote adapter must answer inside the
aggregation cycle, so there is exactly one attempt per call: a timeout or a
non-200 status is a normal, tolerated failure and the cycle moves on without
that source.

Usage:
    class KrakenAPIClient(RestClient):
        source = "kraken"
        ...

    async with KrakenAPIClient() as client:
        payload = await client._get("/0/public/Ticker", {"pair": "XBTUSD"})
"""

import asyncio
import time
from typing import Any, Dict, Optional

import aiohttp

from core.config import settings
from core.errors import SourceUnavailable
from core.logging import get_logger, log_api_request, log_api_response


class RestClient:
    """
    Base async HTTP client for one exchange.

    Attributes:
        source: Source name used in logs and errors
        base_url: Exchange REST base URL
        timeout: Deadline for each request in seconds
        session: aiohttp ClientSession (created on ``__aenter__``)
    """

    source: str = "exchange"
    default_headers: Dict[str, str] = {}

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.source_timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(f"exchanges.{self.source}")

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(headers=self.default_headers)
        self.logger.debug(f"{self.__class__.__name__} session created")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session and not self.session.closed:
            await self.session.close()
            self.logger.debug(f"{self.__class__.__name__} session closed")

    # ============================================
    # HTTP Request Handler
    # ============================================

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None, symbol: str = "") -> Any:
        """
        GET ``path`` and return the decoded JSON body.

        Args:
            path: Endpoint path (e.g. "/api/v3/ticker/bookTicker")
            params: Optional query parameters
            symbol: Common symbol, for error context only

        Raises:
            RuntimeError: If the session was not opened
            SourceUnavailable: On timeout, connection error, non-200 status or bad JSON
        """
        if not self.session:
            raise RuntimeError("Client session not initialized. Use 'async with' statement.")

        url = f"{self.base_url}{path}"
        log_api_request(self.source, path, params)
        started = time.monotonic()

        try:
            async with self.session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as resp:
                log_api_response(self.source, path, resp.status, time.monotonic() - started)

                if resp.status != 200:
                    text = await resp.text()
                    raise SourceUnavailable(self.source, symbol, f"HTTP {resp.status} on {path}: {text[:200]}")

                return await resp.json(content_type=None)

        except asyncio.TimeoutError:
            raise SourceUnavailable(self.source, symbol, f"timeout after {self.timeout:.1f}s on {path}")

        except aiohttp.ClientError as e:
            raise SourceUnavailable(self.source, symbol, f"request failed on {path}: {e}")

        except ValueError as e:
            raise SourceUnavailable(self.source, symbol, f"invalid JSON on {path}: {e}")
