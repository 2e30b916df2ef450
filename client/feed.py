"""
Resilient Price Feed

Client-side orchestration of the fallback tiers. The consumer registers one
``on_update`` callback and receives a ``PriceResult`` for every update,
whichever tier produced it; ``refresh()`` never raises.
One refresh runs as soon as the feed starts, so the consumer has prices while
the channel is still connecting.

Tiers:
    1. Persistent channel (``PriceChannelClient``) while it stays up
    2. Polling ``/market-data`` every 30 s (60 s after an HTTP 429)
    3. Direct aggregation against the exchanges
    4. ``/prices`` from the backend, synthesized into placeholder snapshots
    -. Local static prices when every tier failed (AllTiersExhausted)

Reaching tier 4 by falling back, or exhausting every tier, starts a 5-minute
cooldown during which tiers 2 and 3 are skipped.

Tier selection is re-evaluated on every refresh from ConnectivitySignals:
    offline                  -> local placeholder only, no network at all
    static hosting           -> no backend: direct aggregation, then local placeholder
    external calls disabled  -> tier 3 is skipped
"""

import asyncio
import contextlib
import enum
import re
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlparse

from core.backoff import BackoffPolicy, polling_policy
from core.config import settings
from core.errors import (
    AllTiersExhausted,
    ChannelClosedAbnormally,
    InvalidChannelEndpoint,
    UpstreamRateLimited,
)
from core.logging import get_logger
from core.schemas import ChannelMessage
from client.price_channel import PriceChannelClient, build_channel_url
from client.strategies import (
    DirectAggregationStrategy,
    FeedTier,
    PriceResult,
    PriceStrategy,
    ServerAggregationStrategy,
    StaticPlaceholderStrategy,
    local_placeholder,
)


logger = get_logger(__name__)

STATIC_HOSTING_PATTERN = re.compile(r"(^|\.)(netlify\.app|github\.io)$", re.IGNORECASE)


@dataclass
class ConnectivitySignals:
    online: bool = True
    static_hosting: bool = False
    external_calls_disabled: bool = False

    @classmethod
    def detect(cls, host: Optional[str] = None, online: bool = True) -> "ConnectivitySignals":
        """
        Signals for the current runtime.

        Args:
            host: Host the client is served from (defaults to the backend host)
            online: Whether the runtime reports network connectivity
        """
        if host is None:
            host = urlparse(settings.api_base_url).hostname or ""
        return cls(
            online=online,
            static_hosting=bool(STATIC_HOSTING_PATTERN.search(host)),
            external_calls_disabled=settings.disable_external_calls,
        )


class FeedMode(str, enum.Enum):
    CHANNEL = "CHANNEL"
    POLLING = "POLLING"
    STOPPED = "STOPPED"


class ResilientPriceFeed:
    """
    Multi-tier price feed.

    Example:
        feed = ResilientPriceFeed(["BTCUSD", "ETHUSD"], on_update=render)
        await feed.start()      # channel first, polling once it gives up
        ...
        await feed.stop()
    """

    def __init__(
        self,
        symbols: Optional[List[str]] = None,
        on_update: Optional[Callable[[PriceResult], None]] = None,
        signals: Optional[Callable[[], ConnectivitySignals]] = None,
        server: Optional[PriceStrategy] = None,
        direct: Optional[PriceStrategy] = None,
        static: Optional[PriceStrategy] = None,
        channel_factory: Optional[Callable[..., PriceChannelClient]] = None,
        polling: Optional[BackoffPolicy] = None,
        cooldown: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.symbols = list(symbols or settings.symbols_list)
        self.on_update = on_update
        self.server = server or ServerAggregationStrategy()
        self.direct = direct or DirectAggregationStrategy()
        self.static = static or StaticPlaceholderStrategy()
        self.polling = polling or polling_policy()
        self.cooldown = settings.placeholder_cooldown if cooldown is None else cooldown

        self.mode = FeedMode.STOPPED
        self.poll_attempt = 0
        self.last_result: Optional[PriceResult] = None

        self._signals = signals or ConnectivitySignals.detect
        self._channel_factory = channel_factory or PriceChannelClient
        self._channel: Optional[PriceChannelClient] = None
        self._clock = clock
        self._sleep = sleep
        self._cooldown_until = 0.0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ============================================
    # Tier Selection
    # ============================================

    @property
    def poll_interval(self) -> float:
        """Seconds until the next poll: normal, or widened after a 429."""
        return self.polling.delay(self.poll_attempt)

    @property
    def in_cooldown(self) -> bool:
        return self._clock() < self._cooldown_until

    def start_cooldown(self) -> None:
        self._cooldown_until = self._clock() + self.cooldown
        logger.warning(f"Placeholder cooldown started: skipping live tiers for {self.cooldown:.0f}s")

    def tiers_for(self, signals: ConnectivitySignals) -> List[PriceStrategy]:
        """Strategies to try, in order, for one refresh."""
        if not signals.online:
            return []
        if signals.static_hosting:
            if signals.external_calls_disabled or self.in_cooldown:
                return []
            return [self.direct]
        if self.in_cooldown:
            return [self.static]

        tiers: List[PriceStrategy] = [self.server]
        if not signals.external_calls_disabled:
            tiers.append(self.direct)
        tiers.append(self.static)
        return tiers

    # ============================================
    # Refresh
    # ============================================

    async def refresh(self) -> PriceResult:
        """
        Produce one update from the best available tier and deliver it.

        Never raises; failures end in a local placeholder result with ``error`` set.
        """
        signals = self._signals()
        strategies = self.tiers_for(signals)
        failures: List[str] = []

        for strategy in strategies:
            try:
                result = await strategy.fetch_prices(self.symbols)
            except asyncio.CancelledError:
                raise
            except UpstreamRateLimited as e:
                self.poll_attempt = 1
                failures.append(f"{strategy.tier.value}: {e}")
                logger.warning(f"Rate limited, polling every {self.poll_interval:.0f}s")
                continue
            except Exception as e:
                failures.append(f"{strategy.tier.value}: {e}")
                logger.warning(f"Tier {strategy.tier.value} failed: {e}")
                continue

            if strategy.tier == FeedTier.SERVER_AGGREGATION:
                self.poll_attempt = 0
            if strategy.tier == FeedTier.STATIC_PLACEHOLDER and failures:
                self.start_cooldown()
            if failures:
                note = "; ".join(failures)
                result.warning = f"{result.warning} ({note})" if result.warning else note
            self._deliver(result)
            return result

        if not signals.online:
            result = local_placeholder(self.symbols)
            result.warning = "Offline, showing locally configured prices"
        elif not strategies:
            result = local_placeholder(self.symbols)
        else:
            exhausted = AllTiersExhausted(failures)
            logger.error(str(exhausted))
            result = local_placeholder(self.symbols, error=str(exhausted))
            self.start_cooldown()

        self._deliver(result)
        return result

    def _deliver(self, result: PriceResult) -> None:
        self.last_result = result
        if self.on_update is None:
            return
        try:
            self.on_update(result)
        except Exception as e:
            logger.error(f"Price update callback failed: {e}")

    def _on_channel_message(self, message: ChannelMessage) -> None:
        self._deliver(PriceResult(tier=FeedTier.CHANNEL, prices=message.data))

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="price_feed")

    async def stop(self) -> None:
        """Close the channel, cancel the loop and any pending sleep, release strategies."""
        self._running = False
        if self._channel is not None:
            with contextlib.suppress(Exception):
                await self._channel.stop()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._task
            self._task = None
        for strategy in (self.server, self.direct, self.static):
            with contextlib.suppress(Exception):
                await strategy.aclose()
        self.mode = FeedMode.STOPPED

    async def _run(self) -> None:
        # Prices over HTTP right away; the channel may need a whole retry episode to open
        await self.refresh()
        await self._run_channel()
        if self._running:
            await self._poll_loop()

    async def _run_channel(self) -> None:
        """Hold the persistent channel until it closes or gives up."""
        signals = self._signals()
        if not signals.online or signals.static_hosting:
            return
        try:
            url = build_channel_url(settings.api_base_url, settings.ws_url, settings.allowed_ws_hosts_list)
            self._channel = self._channel_factory(url, self._on_channel_message)
            self.mode = FeedMode.CHANNEL
            await self._channel.run()
            logger.info("Price channel closed cleanly")
        except InvalidChannelEndpoint as e:
            logger.warning(f"Persistent channel unavailable: {e}")
        except ChannelClosedAbnormally as e:
            logger.warning(f"{e}; switching to polling")
        finally:
            self._channel = None

    async def _poll_loop(self) -> None:
        self.mode = FeedMode.POLLING
        logger.info(f"Polling for prices every {self.poll_interval:.0f}s")
        while self._running:
            await self.refresh()
            await self._sleep(self.poll_interval)
