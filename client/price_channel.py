"""
Persistent Price Channel Client

Connects to the server's ``/ws/prices`` WebSocket and hands every
``INITIAL_PRICES`` / ``PRICE_UPDATE`` message to a callback.

Close handling:
    - stop() or close code 1000 is a clean close: ``run()`` returns
    - anything else (other close codes, dropped connections, refused connects)
      is abnormal and triggers a reconnect after a backoff delay
    - a successful open resets the attempt counter
    - once the retries of an episode are used up, ``run()`` raises
      ChannelClosedAbnormally so the caller can fall back to polling

Example:
    >>> channel = PriceChannelClient(url, on_prices=print)
    >>> await channel.run()
"""

import asyncio
import enum
import json
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlparse, urlunparse

import websockets
from pydantic import ValidationError

from core.backoff import BackoffPolicy, reconnect_policy
from core.errors import ChannelClosedAbnormally, InvalidChannelEndpoint
from core.logging import get_logger, log_websocket_event
from core.schemas import ChannelMessage


logger = get_logger(__name__)

NORMAL_CLOSURE = 1000
CHANNEL_PATH = "/ws/prices"


def build_channel_url(api_base_url: str, ws_url: str = "", allowed_hosts: Optional[List[str]] = None) -> str:
    """
    Resolve the WebSocket URL of the price channel.

    Args:
        api_base_url: HTTP base URL of the backend (http:// or https://)
        ws_url: Explicit channel URL; when empty it is derived from ``api_base_url``
        allowed_hosts: Hosts the client may open a channel to, in addition to the
                       backend's own host

    Raises:
        InvalidChannelEndpoint: When the scheme is not ws/wss or the host is not allowed

    Example:
        >>> build_channel_url("https://api.example.com")
        'wss://api.example.com/ws/prices'
    """
    if ws_url:
        parsed = urlparse(ws_url)
    else:
        base = urlparse(api_base_url)
        if base.scheme not in ("http", "https"):
            raise InvalidChannelEndpoint(f"Cannot derive a channel URL from '{api_base_url}'")
        scheme = "wss" if base.scheme == "https" else "ws"
        path = base.path.rstrip("/") + CHANNEL_PATH
        parsed = urlparse(urlunparse((scheme, base.netloc, path, "", "", "")))

    if parsed.scheme not in ("ws", "wss"):
        raise InvalidChannelEndpoint(f"Channel scheme '{parsed.scheme}' is not allowed (use ws or wss)")
    if not parsed.hostname:
        raise InvalidChannelEndpoint(f"Channel URL '{parsed.geturl()}' has no host")

    allowed = {h.lower() for h in (allowed_hosts or [])}
    backend_host = urlparse(api_base_url).hostname
    if backend_host:
        allowed.add(backend_host.lower())
    if parsed.hostname.lower() not in allowed:
        raise InvalidChannelEndpoint(f"Channel host '{parsed.hostname}' is not in the allowed hosts")

    return parsed.geturl()


class ChannelState(str, enum.Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class PriceChannelClient:
    """
    Reconnecting WebSocket consumer of the price channel.

    Attributes:
        url: Channel URL (see ``build_channel_url``)
        state: Current ChannelState
        attempt: Reconnect attempts made in the current episode
    """

    def __init__(
        self,
        url: str,
        on_prices: Callable[[ChannelMessage], None],
        backoff: Optional[BackoffPolicy] = None,
        connect=websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self.on_prices = on_prices
        self.backoff = backoff or reconnect_policy()
        self.state = ChannelState.CLOSED
        self.attempt = 0
        self.last_close_code: Optional[int] = None
        self._connect = connect
        self._sleep = sleep
        self._ws = None
        self._stopping = False

    async def run(self) -> None:
        """
        Keep the channel open until a clean close.

        Raises:
            ChannelClosedAbnormally: When the reconnect attempts are exhausted
        """
        self._stopping = False
        self.attempt = 0

        while not self._stopping:
            self.state = ChannelState.CONNECTING
            close_code: Optional[int] = None
            try:
                async with self._connect(self.url) as ws:
                    self._ws = ws
                    self.state = ChannelState.OPEN
                    self.attempt = 0
                    log_websocket_event("prices", "open", details=self.url)
                    async for raw in ws:
                        self._handle(raw)
                    close_code = getattr(ws, "close_code", None)
            except asyncio.CancelledError:
                self.state = ChannelState.CLOSED
                raise
            except websockets.exceptions.ConnectionClosed as e:
                close_code = e.rcvd.code if e.rcvd is not None else None
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"Price channel connect failed: {e}")
            finally:
                self._ws = None
                self.state = ChannelState.CLOSED

            self.last_close_code = close_code
            if self._stopping or close_code == NORMAL_CLOSURE:
                log_websocket_event("prices", "closed", details=f"code={close_code}")
                return

            self.attempt += 1
            if self.backoff.exhausted(self.attempt):
                log_websocket_event("prices", "error", details=f"giving up after {self.attempt - 1} retries")
                raise ChannelClosedAbnormally(attempts=self.attempt - 1, close_code=close_code)

            delay_ms = self.backoff.delay(self.attempt)
            logger.warning(
                f"Price channel closed abnormally (code={close_code}); "
                f"reconnect {self.attempt}/{self.backoff.max_attempts} in {delay_ms:.0f}ms"
            )
            await self._sleep(delay_ms / 1000)

    def _handle(self, raw) -> None:
        try:
            message = ChannelMessage.model_validate(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.debug(f"Ignoring malformed channel message: {e}")
            return
        self.on_prices(message)

    async def stop(self) -> None:
        """Close the channel cleanly; ``run()`` returns instead of reconnecting."""
        self._stopping = True
        if self._ws is not None:
            await self._ws.close()
