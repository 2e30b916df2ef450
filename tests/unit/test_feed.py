"""
Unit Tests for ResilientPriceFeed

These tests verify tier selection and degradation:
- Tiers are tried in order and the first success is delivered
- HTTP 429 widens polling to 60 s; a successful poll restores 30 s
- Falling back to the static placeholder starts a 5-minute cooldown
- Exhausting every tier yields local placeholder prices with an error
- Connectivity signals (offline, static hosting, external calls disabled)
- An abnormal channel close with 5 failed retries switches to polling

Run with:
    pytest tests/unit/test_feed.py -v
"""

import asyncio

import pytest

from client.feed import ConnectivitySignals, FeedMode, ResilientPriceFeed
from client.price_channel import PriceChannelClient
from client.strategies import FeedTier, PriceResult, PriceStrategy
from core.backoff import BackoffPolicy
from core.config import settings
from core.errors import UpstreamRateLimited, UpstreamUnavailable
from core.schemas import ChannelMessage


class FakeStrategy(PriceStrategy):
    """Strategy replaying scripted outcomes (PriceResult prices or exceptions)"""

    def __init__(self, tier: FeedTier, outcomes=None):
        self.tier = tier
        self.outcomes = list(outcomes or [])
        self.calls = 0
        self.closed = False

    async def fetch_prices(self, symbols):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else UpstreamUnavailable(f"{self.tier.value} down")
        if isinstance(outcome, Exception):
            raise outcome
        return PriceResult(tier=self.tier, prices=outcome)

    async def aclose(self):
        self.closed = True


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_feed(server=(), direct=(), static=(), signals=None, **kwargs):
    feed = ResilientPriceFeed(
        symbols=["BTCUSD", "ETHUSD"],
        signals=signals or ConnectivitySignals,
        server=FakeStrategy(FeedTier.SERVER_AGGREGATION, server),
        direct=FakeStrategy(FeedTier.DIRECT_AGGREGATION, direct),
        static=FakeStrategy(FeedTier.STATIC_PLACEHOLDER, static),
        polling=BackoffPolicy(base_delay=30, max_delay=60, factor=2),
        cooldown=300,
        **kwargs,
    )
    return feed


LIVE = {"BTCUSD": 64000.0, "ETHUSD": 2650.0}


# ============================================
# Tier Selection
# ============================================

class TestTierSelection:
    """Which strategies a refresh may use"""

    def test_all_tiers_when_online(self):
        feed = make_feed()
        tiers = [s.tier for s in feed.tiers_for(ConnectivitySignals())]
        assert tiers == [FeedTier.SERVER_AGGREGATION, FeedTier.DIRECT_AGGREGATION, FeedTier.STATIC_PLACEHOLDER]

    def test_external_calls_disabled_skips_direct(self):
        feed = make_feed()
        tiers = [s.tier for s in feed.tiers_for(ConnectivitySignals(external_calls_disabled=True))]
        assert tiers == [FeedTier.SERVER_AGGREGATION, FeedTier.STATIC_PLACEHOLDER]

    def test_static_hosting_has_no_backend(self):
        feed = make_feed()
        tiers = [s.tier for s in feed.tiers_for(ConnectivitySignals(static_hosting=True))]
        assert tiers == [FeedTier.DIRECT_AGGREGATION]

    def test_offline_uses_no_network(self):
        assert make_feed().tiers_for(ConnectivitySignals(online=False)) == []

    @pytest.mark.parametrize("host,expected", [
        ("myapp.netlify.app", True),
        ("someone.github.io", True),
        ("api.example.com", False),
        ("netlify.app.example.com", False),
    ])
    def test_static_hosting_detection(self, host, expected):
        assert ConnectivitySignals.detect(host=host).static_hosting is expected


# ============================================
# Refresh
# ============================================

class TestRefresh:
    """One refresh cycle"""

    @pytest.mark.asyncio
    async def test_server_tier_first(self):
        updates = []
        feed = make_feed(server=[LIVE], on_update=updates.append)

        result = await feed.refresh()

        assert result.tier == FeedTier.SERVER_AGGREGATION
        assert result.prices == LIVE
        assert result.warning is None
        assert updates == [result]
        assert feed.direct.calls == 0

    @pytest.mark.asyncio
    async def test_direct_tier_when_server_fails(self):
        feed = make_feed(direct=[LIVE])
        result = await feed.refresh()

        assert result.tier == FeedTier.DIRECT_AGGREGATION
        assert "server_aggregation" in result.warning
        assert not feed.in_cooldown

    @pytest.mark.asyncio
    async def test_rate_limit_widens_then_success_restores(self):
        feed = make_feed(server=[UpstreamRateLimited(), LIVE], direct=[LIVE])
        assert feed.poll_interval == 30.0

        await feed.refresh()
        assert feed.poll_interval == 60.0

        await feed.refresh()
        assert feed.poll_interval == 30.0

    @pytest.mark.asyncio
    async def test_static_fallback_starts_cooldown(self):
        clock = FakeClock()
        feed = make_feed(static=[{"BTCUSD": 43250.75}, {"BTCUSD": 43250.75}], clock=clock)

        result = await feed.refresh()
        assert result.tier == FeedTier.STATIC_PLACEHOLDER
        assert feed.in_cooldown

        # During the cooldown only the static tier is tried
        await feed.refresh()
        assert feed.server.calls == 1
        assert feed.direct.calls == 1
        assert feed.static.calls == 2

        clock.now += 301
        assert not feed.in_cooldown
        assert [s.tier for s in feed.tiers_for(ConnectivitySignals())][0] == FeedTier.SERVER_AGGREGATION

    @pytest.mark.asyncio
    async def test_all_tiers_exhausted(self):
        updates = []
        feed = make_feed(on_update=updates.append, clock=FakeClock())

        result = await feed.refresh()

        assert result.tier == FeedTier.LOCAL_PLACEHOLDER
        assert "All price tiers failed" in result.error
        assert result.prices == {s: settings.static_prices_map[s] for s in ("BTCUSD", "ETHUSD")}
        assert result.snapshots[0].sources["placeholder"].bid == pytest.approx(result.prices["BTCUSD"] * 0.999)
        assert feed.in_cooldown
        assert updates == [result]

    @pytest.mark.asyncio
    async def test_offline_serves_local_prices_without_error(self):
        feed = make_feed(server=[LIVE], signals=lambda: ConnectivitySignals(online=False))

        result = await feed.refresh()

        assert result.tier == FeedTier.LOCAL_PLACEHOLDER
        assert result.error is None
        assert "Offline" in result.warning
        assert feed.server.calls == 0
        assert not feed.in_cooldown

    @pytest.mark.asyncio
    async def test_static_hosting_falls_back_to_local(self):
        feed = make_feed(signals=lambda: ConnectivitySignals(static_hosting=True), clock=FakeClock())

        result = await feed.refresh()

        assert result.tier == FeedTier.LOCAL_PLACEHOLDER
        assert feed.direct.calls == 1
        assert feed.server.calls == 0
        assert feed.static.calls == 0

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_escape(self):
        def broken(result):
            raise RuntimeError("render failed")

        feed = make_feed(server=[LIVE], on_update=broken)
        result = await feed.refresh()
        assert feed.last_result is result


# ============================================
# Channel -> Polling
# ============================================

class TestChannelFallback:
    """Lifecycle from persistent channel to polling"""

    @staticmethod
    def refused_channel(url, on_prices):
        async def no_wait(seconds):
            return None

        def refuse(url):
            raise OSError("connection refused")

        policy = BackoffPolicy(base_delay=1000, max_delay=10000, max_attempts=5, jitter=1000, rand=lambda: 0.0)
        return PriceChannelClient(url, on_prices, policy, connect=refuse, sleep=no_wait)

    @pytest.mark.asyncio
    async def test_abnormal_close_switches_to_polling(self):
        """5 failed reconnects -> polling at 30 s, widened to 60 s after a 429"""
        sleeps = []
        polled_twice = asyncio.Event()

        async def poll_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) >= 2:
                polled_twice.set()
                await asyncio.Event().wait()

        # The first outcome is consumed by the refresh made at start
        feed = make_feed(
            server=[LIVE, LIVE, UpstreamRateLimited()],
            direct=[LIVE],
            channel_factory=self.refused_channel,
            sleep=poll_sleep,
        )

        await feed.start()
        await asyncio.wait_for(polled_twice.wait(), timeout=2)

        assert feed.mode == FeedMode.POLLING
        assert sleeps == [30.0, 60.0]
        assert feed.last_result.tier == FeedTier.DIRECT_AGGREGATION

        await feed.stop()
        assert feed.mode == FeedMode.STOPPED
        assert feed.server.closed and feed.direct.closed and feed.static.closed

    @pytest.mark.asyncio
    async def test_prices_delivered_while_channel_reconnects(self):
        """The consumer gets HTTP prices before the channel's retry episode ends"""
        updates = []
        retrying = asyncio.Event()

        def slow_channel(url, on_prices):
            async def long_wait(seconds):
                retrying.set()
                await asyncio.Event().wait()

            def refuse(url):
                raise OSError("connection refused")

            return PriceChannelClient(url, on_prices, connect=refuse, sleep=long_wait)

        feed = make_feed(server=[LIVE], on_update=updates.append, channel_factory=slow_channel)

        await feed.start()
        await asyncio.wait_for(retrying.wait(), timeout=2)

        assert feed.mode == FeedMode.CHANNEL
        assert [u.tier for u in updates] == [FeedTier.SERVER_AGGREGATION]
        assert updates[0].prices == LIVE
        await feed.stop()

    @pytest.mark.asyncio
    async def test_invalid_channel_endpoint_polls_immediately(self, monkeypatch):
        monkeypatch.setattr(settings, "ws_url", "wss://not-allowed.test/ws/prices")
        polled = asyncio.Event()
        created = []

        async def poll_sleep(seconds):
            polled.set()
            await asyncio.Event().wait()

        def factory(url, on_prices):
            created.append(url)
            return self.refused_channel(url, on_prices)

        feed = make_feed(server=[LIVE], channel_factory=factory, sleep=poll_sleep)

        await feed.start()
        await asyncio.wait_for(polled.wait(), timeout=2)

        assert created == []
        assert feed.mode == FeedMode.POLLING
        await feed.stop()

    @pytest.mark.asyncio
    async def test_channel_messages_are_delivered(self):
        updates = []
        feed = make_feed(on_update=updates.append)

        feed._on_channel_message(ChannelMessage(type="PRICE_UPDATE", data={"BTCUSD": 1.5}))

        assert updates[0].tier == FeedTier.CHANNEL
        assert updates[0].prices == {"BTCUSD": 1.5}
