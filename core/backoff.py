"""
Backoff Policy

One reusable description of "how long to wait before trying again", shared by
the persistent-channel reconnect loop and the polling loop of the resilient
client. Each call site parameterizes it differently:

    Reconnect:  base 1000 ms, factor 2, cap 10000 ms, jitter 0-1000 ms, 5 attempts
                -> attempt 1..5: ~2s, ~4s, ~8s, ~10s, ~10s (+ jitter)
    Polling:    base 30 s, factor 2, cap 60 s, no jitter, unlimited
                -> attempt 0: 30 s (normal), attempt >= 1: 60 s (after HTTP 429)

Formula:
    delay(attempt) = min(base * factor ** attempt, cap) + uniform(0, jitter)
"""

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

from core.config import settings


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff with a cap and additive jitter.

    Attributes:
        base_delay: Delay for attempt 0 (any unit; callers pick ms or seconds)
        max_delay: Cap applied before jitter
        max_attempts: Attempts allowed per episode (None = unlimited)
        jitter: Upper bound of the random amount added to every delay
        factor: Growth factor per attempt
        rand: Source of uniform [0, 1) values (injectable for tests)

    Example:
        >>> policy = BackoffPolicy(base_delay=1000, max_delay=10000, max_attempts=5, jitter=0)
        >>> [policy.delay(a) for a in range(1, 6)]
        [2000.0, 4000.0, 8000.0, 10000.0, 10000.0]
    """

    base_delay: float
    max_delay: float
    max_attempts: Optional[int] = None
    jitter: float = 0.0
    factor: float = 2.0
    rand: Callable[[], float] = field(default=random.random, repr=False, compare=False)

    def delay(self, attempt: int) -> float:
        """Delay before the given attempt (0-based growth exponent)."""
        attempt = max(0, attempt)
        # Keep the exponent small enough not to overflow on long episodes
        exponent = min(attempt, 64)
        capped = min(self.base_delay * (self.factor ** exponent), self.max_delay)
        return float(capped + self.rand() * self.jitter)

    def exhausted(self, attempt: int) -> bool:
        """True when ``attempt`` is past the allowed number of attempts."""
        return self.max_attempts is not None and attempt > self.max_attempts

    @property
    def upper_bound(self) -> float:
        """Largest delay this policy can ever return."""
        return float(self.max_delay + self.jitter)


def reconnect_policy() -> BackoffPolicy:
    """Reconnect policy for the persistent channel, in milliseconds."""
    return BackoffPolicy(
        base_delay=settings.ws_reconnect_base_ms,
        max_delay=settings.ws_reconnect_cap_ms,
        max_attempts=settings.ws_max_reconnect_attempts,
        jitter=settings.ws_reconnect_jitter_ms,
    )


def polling_policy() -> BackoffPolicy:
    """Polling interval policy, in seconds: normal, then widened after a 429."""
    return BackoffPolicy(
        base_delay=settings.poll_interval,
        max_delay=settings.rate_limited_poll_interval,
        factor=settings.rate_limited_poll_interval / settings.poll_interval,
    )
