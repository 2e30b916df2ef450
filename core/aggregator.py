"""
Aggregator / Verifier

Blends the quotes that several exchanges returned for one symbol into a single
verified price and a discrepancy signal. This module is pure computation: the
fan-out that collects the quotes lives in ``core.source_manager``, and both the
server and the client's direct-aggregation fallback call into the functions
below, so the two paths can never drift apart.

Algorithm (per symbol, per cycle):
    1. mid = (bid + ask) / 2 for every quote; drop non-finite or <= 0 mids
    2. priceMid       = mean of surviving mids, None if there are none
    3. median         = median of surviving mids
    4. discrepancyPct = max |mid - median| / median * 100 (0 with no mids)
    5. alert          = discrepancyPct >= 1.5
    6. vwap           = sum(mid * vol) / sum(vol) over quotes with a positive mid
                        and a finite, non-negative volume; falls back to the mean
                        of mids when the total volume is 0; 0 with no mids

Median-based discrepancy tolerates one outlier source; the VWAP mean fallback
keeps degraded sources without volume data from producing 0 or NaN.
"""

import math
import statistics
from typing import Dict, List, Optional, Tuple

from core.config import settings
from core.schemas import AggregatedSnapshot, Quote, VerifiedPrice
from core.utils.time import current_utc_timestamp


DISCREPANCY_ALERT_PCT = 1.5


def valid_mid(quote: Quote) -> Optional[float]:
    """Mid price of a quote, or None when it is missing, non-finite or not positive."""
    mid = quote.mid
    if mid is None or not math.isfinite(mid) or mid <= 0:
        return None
    return mid


def median(values: List[float]) -> float:
    """
    Statistical median; an even count averages the two middle values.

    Raises:
        ValueError: If ``values`` is empty
    """
    if not values:
        raise ValueError("median of empty sequence")
    return float(statistics.median(values))


def discrepancy_pct(mids: List[float]) -> float:
    """
    Maximum relative deviation of any mid from the median, in percent.

    Example:
        >>> discrepancy_pct([100.0, 102.0, 98.0])
        2.0
    """
    if not mids:
        return 0.0
    med = median(mids)
    if med <= 0:
        return 0.0
    return max(abs(m - med) / med * 100 for m in mids)


def is_alert(pct: float, threshold: float = DISCREPANCY_ALERT_PCT) -> bool:
    return pct >= threshold


def compute_vwap(pairs: List[Tuple[float, Optional[float]]]) -> float:
    """
    Volume-weighted average over (mid, volume) pairs taken from the same quote.

    Pairs with a non-positive mid or a missing, non-finite or negative volume
    are excluded from the weighting but still count toward the mean fallback.

    Example:
        >>> round(compute_vwap([(100.0, 10.0), (102.0, 0.0), (98.0, 5.0)]), 2)
        99.33
    """
    mids = [m for m, _ in pairs if math.isfinite(m) and m > 0]
    if not mids:
        return 0.0

    numerator = 0.0
    denominator = 0.0
    for mid, volume in pairs:
        if not (math.isfinite(mid) and mid > 0):
            continue
        if volume is None or not math.isfinite(volume) or volume < 0:
            continue
        numerator += mid * volume
        denominator += volume

    if denominator > 0:
        return numerator / denominator
    return sum(mids) / len(mids)


def verify(quotes: Dict[str, Quote], alert_threshold: float = None) -> VerifiedPrice:
    """
    Compute the verified price for the quotes collected in one cycle.

    Args:
        quotes: Successful quotes keyed by source name (may be empty)
        alert_threshold: Discrepancy percentage that raises the alert

    Returns:
        VerifiedPrice: price_mid is None only when no quote produced a usable mid
    """
    threshold = settings.discrepancy_alert_pct if alert_threshold is None else alert_threshold

    pairs = []
    for quote in quotes.values():
        mid = valid_mid(quote)
        if mid is not None:
            pairs.append((mid, quote.volume_24h))
    mids = [m for m, _ in pairs]

    price_mid = sum(mids) / len(mids) if mids else None
    pct = discrepancy_pct(mids)

    return VerifiedPrice(
        price_mid=price_mid,
        vwap=compute_vwap(pairs),
        discrepancy_pct=pct,
        alert=is_alert(pct, threshold),
    )


def build_snapshot(
    symbol: str,
    quotes: Dict[str, Quote],
    timestamp: int = None,
    alert_threshold: float = None
) -> AggregatedSnapshot:
    """Wrap the verification result for ``symbol`` into an AggregatedSnapshot."""
    return AggregatedSnapshot(
        symbol=symbol,
        sources=dict(quotes),
        verified=verify(quotes, alert_threshold),
        timestamp=current_utc_timestamp(milliseconds=True) if timestamp is None else timestamp,
    )


def total_volume(snapshot: AggregatedSnapshot) -> float:
    """Sum of the finite 24h volumes reported by the snapshot's sources."""
    return sum(q.volume_24h for q in snapshot.sources.values() if q.volume_24h is not None)
