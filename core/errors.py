"""
Error Taxonomy

Every failure the engine distinguishes has its own exception type so that
each layer can decide whether to tolerate it, degrade, or surface it:

    SourceUnavailable        one adapter timed out or errored; tolerated and excluded
    UpstreamUnavailable      the aggregation endpoint is unreachable or answered non-2xx
    UpstreamRateLimited      the aggregation endpoint answered HTTP 429; widens polling
    ChannelClosedAbnormally  the persistent channel dropped and retries ran out
    InvalidChannelEndpoint   no channel URL can be built (disallowed scheme or host)
    AllTiersExhausted        every fallback tier failed; placeholder data + cooldown

A symbol for which zero sources succeeded is not an error: it is returned as a
degraded snapshot with ``priceMid = None`` (see ``AggregatedSnapshot.is_empty``).
"""

from typing import List, Optional


class MarketDataError(Exception):
    """Base class for all market-data failures."""


class SourceUnavailable(MarketDataError):
    """
    A single exchange adapter failed for a symbol.

    Attributes:
        source: Adapter name ("binance", "coinbase", "kraken")
        symbol: Requested symbol
    """

    def __init__(self, source: str, symbol: str, reason: str):
        self.source = source
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"{source} unavailable for {symbol}: {reason}")


class UpstreamUnavailable(MarketDataError):
    """The server-side aggregation endpoint could not be used."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class UpstreamRateLimited(UpstreamUnavailable):
    """The aggregation endpoint answered HTTP 429."""

    def __init__(self, message: str = "Aggregation endpoint rate limited (HTTP 429)"):
        super().__init__(message, status=429)


class ChannelClosedAbnormally(MarketDataError):
    """The persistent channel closed unexpectedly and reconnect attempts are exhausted."""

    def __init__(self, attempts: int, close_code: Optional[int] = None):
        self.attempts = attempts
        self.close_code = close_code
        super().__init__(
            f"Price channel closed abnormally (code={close_code}) after {attempts} reconnect attempt(s)"
        )


class InvalidChannelEndpoint(MarketDataError):
    """No persistent-channel URL can be constructed for the configured backend."""


class AllTiersExhausted(MarketDataError):
    """Every fallback tier failed during one refresh."""

    def __init__(self, failures: List[str]):
        self.failures = failures
        super().__init__("All price tiers failed: " + "; ".join(failures))
