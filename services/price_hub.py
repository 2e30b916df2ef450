"""
Price Distribution Hub

Keeps a registry of WebSocket subscribers and pushes prices to them:

    on open          -> {"type": "INITIAL_PRICES", "data": {SYMBOL: price}}
    every interval   -> {"type": "PRICE_UPDATE",   "data": {SYMBOL: price}}

A subscriber whose send fails or stalls past the send timeout (or whose socket
is already closed) is dropped from the registry during the broadcast; sends
run concurrently, so the other subscribers still receive the message on time.

Price sources are pluggable:
    - AggregatedPriceSource: the same path as ``GET /prices`` (live, cached, stale, static)
    - SimulatedPriceSource: bounded random walk around the static price list
"""

import asyncio
import contextlib
import enum
import itertools
import random
from typing import Awaitable, Callable, Dict, List, Optional

from starlette.websockets import WebSocket, WebSocketState

from core.config import settings
from core.logging import get_logger, log_websocket_event
from core.schemas import INITIAL_PRICES, PRICE_UPDATE, ChannelMessage


logger = get_logger(__name__)

PriceSource = Callable[[], Awaitable[Dict[str, float]]]


# ============================================
# Price Sources
# ============================================

class AggregatedPriceSource:
    """Reads prices from a MarketDataService for a fixed symbol list."""

    def __init__(self, service, symbols: Optional[List[str]] = None):
        self.service = service
        self.symbols = list(symbols or settings.symbols_list)

    async def __call__(self) -> Dict[str, float]:
        return await self.service.get_prices(self.symbols)


class SimulatedPriceSource:
    """
    Random walk around a static price list.

    Each call moves every price by at most ``max_step`` (relative) and keeps it
    within ``band`` of its starting value.
    """

    def __init__(
        self,
        base_prices: Optional[Dict[str, float]] = None,
        max_step: float = 0.002,
        band: float = 0.05,
        rng: Optional[random.Random] = None,
    ):
        self.base_prices = dict(base_prices if base_prices is not None else settings.static_prices_map)
        self.max_step = max_step
        self.band = band
        self._rng = rng or random.Random()
        self._current = dict(self.base_prices)

    async def __call__(self) -> Dict[str, float]:
        for symbol, base in self.base_prices.items():
            price = self._current[symbol] * (1 + self._rng.uniform(-self.max_step, self.max_step))
            low, high = base * (1 - self.band), base * (1 + self.band)
            self._current[symbol] = round(min(max(price, low), high), 8)
        return dict(self._current)


# ============================================
# Subscribers
# ============================================

class SubscriberState(str, enum.Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED_CLEAN = "CLOSED_CLEAN"
    CLOSED_ERROR = "CLOSED_ERROR"


class Subscriber:
    """One registered WebSocket and its lifecycle state."""

    _ids = itertools.count(1)

    def __init__(self, websocket: WebSocket):
        self.id = next(self._ids)
        self.websocket = websocket
        self.state = SubscriberState.CONNECTING

    @property
    def label(self) -> str:
        return f"subscriber-{self.id}"

    @property
    def is_closed(self) -> bool:
        if self.state in (SubscriberState.CLOSED_CLEAN, SubscriberState.CLOSED_ERROR):
            return True
        return (
            self.websocket.client_state == WebSocketState.DISCONNECTED
            or self.websocket.application_state == WebSocketState.DISCONNECTED
        )

    async def send(self, message: ChannelMessage) -> None:
        await self.websocket.send_json(message.to_wire())


# ============================================
# Hub
# ============================================

class PriceHub:
    """
    Subscriber registry plus the periodic broadcast loop.

    Example:
        hub = PriceHub(AggregatedPriceSource(service), interval=5.0)
        await hub.start()
        subscriber = await hub.register(websocket)
        ...
        hub.unregister(subscriber, clean=True)
        await hub.stop()
    """

    def __init__(
        self,
        price_source: PriceSource,
        interval: Optional[float] = None,
        send_timeout: Optional[float] = None,
    ):
        self.price_source = price_source
        self.interval = interval if interval is not None else settings.broadcast_interval
        self.send_timeout = send_timeout if send_timeout is not None else settings.hub_send_timeout
        self._subscribers: Dict[int, Subscriber] = {}
        self._running = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribers(self) -> List[Subscriber]:
        return list(self._subscribers.values())

    # ============================================
    # Registry
    # ============================================

    async def register(self, websocket: WebSocket) -> Subscriber:
        """
        Register an accepted WebSocket and send it the current prices.

        The subscriber only joins the broadcast set once the initial message
        went out; a failed initial send closes it with CLOSED_ERROR and re-raises.
        """
        subscriber = Subscriber(websocket)
        log_websocket_event("prices", "connecting", subscriber.label)

        prices = await self._read_prices()
        try:
            await subscriber.send(ChannelMessage(type=INITIAL_PRICES, data=prices))
        except Exception:
            subscriber.state = SubscriberState.CLOSED_ERROR
            log_websocket_event("prices", "initial send failed", subscriber.label)
            raise

        subscriber.state = SubscriberState.OPEN
        self._subscribers[subscriber.id] = subscriber
        log_websocket_event("prices", "open", subscriber.label, f"subscribers={self.subscriber_count}")
        return subscriber

    def unregister(self, subscriber: Subscriber, clean: bool = True) -> None:
        if subscriber.state not in (SubscriberState.CLOSED_CLEAN, SubscriberState.CLOSED_ERROR):
            subscriber.state = SubscriberState.CLOSED_CLEAN if clean else SubscriberState.CLOSED_ERROR
        if self._subscribers.pop(subscriber.id, None) is not None:
            log_websocket_event(
                "prices", subscriber.state.value.lower(), subscriber.label,
                f"subscribers={self.subscriber_count}",
            )

    # ============================================
    # Broadcast
    # ============================================

    async def _read_prices(self) -> Dict[str, float]:
        try:
            return await self.price_source()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Price source failed: {e}")
            return {}

    async def broadcast(self, prices: Optional[Dict[str, float]] = None) -> int:
        """
        Send one PRICE_UPDATE to every open subscriber.

        Sends run concurrently, each bounded by ``send_timeout``; a subscriber
        that fails or stalls is dropped and never delays the others.

        Returns:
            int: Number of subscribers that received the update
        """
        if prices is None:
            prices = await self._read_prices()
        message = ChannelMessage(type=PRICE_UPDATE, data=prices)

        targets: List[Subscriber] = []
        for subscriber in self.subscribers():
            if subscriber.is_closed:
                self.unregister(subscriber, clean=subscriber.state != SubscriberState.CLOSED_ERROR)
                continue
            targets.append(subscriber)

        results = await asyncio.gather(
            *(asyncio.wait_for(s.send(message), timeout=self.send_timeout) for s in targets),
            return_exceptions=True,
        )

        delivered = 0
        for subscriber, result in zip(targets, results):
            if not isinstance(result, BaseException):
                delivered += 1
                continue
            if isinstance(result, asyncio.TimeoutError):
                reason = f"send stalled for {self.send_timeout:.1f}s"
            else:
                reason = str(result) or result.__class__.__name__
            logger.warning(f"Dropping {subscriber.label}: {reason}")
            self.unregister(subscriber, clean=False)
        return delivered

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self) -> None:
        if self._running.is_set():
            return
        self._running.set()
        logger.info(f"Starting price hub (every {self.interval:.1f}s)...")
        self._task = asyncio.create_task(self._run(), name="price_hub")

    async def stop(self) -> None:
        if not self._running.is_set():
            return
        logger.info("Stopping price hub...")
        self._running.clear()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._task
            self._task = None
        for subscriber in self.subscribers():
            self.unregister(subscriber, clean=True)

    async def _run(self) -> None:
        while self._running.is_set():
            try:
                await asyncio.sleep(self.interval)
                if self._subscribers:
                    delivered = await self.broadcast()
                    logger.debug(f"PRICE_UPDATE delivered to {delivered} subscriber(s)")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Price hub cycle error: {e}")


def build_price_source(service) -> PriceSource:
    """Price source selected by ``HUB_PRICE_SOURCE``."""
    if settings.hub_price_source == "simulated":
        return SimulatedPriceSource()
    return AggregatedPriceSource(service)
