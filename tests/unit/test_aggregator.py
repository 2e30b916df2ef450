"""
Unit Tests for the Aggregator / Verifier

These tests verify that cross-source verification:
- Averages mids and weights VWAP by each quote's own volume
- Measures discrepancy against the median and flags it at 1.5%
- Degrades cleanly with zero sources, missing sides and missing volumes

Run with:
    pytest tests/unit/test_aggregator.py -v
"""

import math

import pytest

from core.aggregator import (
    build_snapshot,
    compute_vwap,
    discrepancy_pct,
    is_alert,
    median,
    total_volume,
    valid_mid,
    verify,
)
from core.schemas import Quote


def quote(mid: float, volume=None, spread: float = 0.0) -> Quote:
    """Quote whose bid/ask average to ``mid``"""
    return Quote(bid=mid - spread / 2, ask=mid + spread / 2, volume_24h=volume)


# ============================================
# Scenarios
# ============================================

class TestScenarios:
    """End-to-end verification over realistic quote sets"""

    def test_three_sources_with_outlier_volume(self):
        """Mids 100/102/98 with volumes 10/0/5"""
        quotes = {
            "binance": quote(100.0, 10.0, spread=0.2),
            "coinbase": quote(102.0, 0.0, spread=0.4),
            "kraken": quote(98.0, 5.0, spread=0.2),
        }
        verified = verify(quotes)

        assert verified.price_mid == pytest.approx(100.0)
        assert verified.vwap == pytest.approx((100 * 10 + 98 * 5) / 15)
        assert verified.discrepancy_pct == pytest.approx(2.0)
        assert verified.alert is True

    def test_zero_sources(self):
        """No successful source yields an empty, non-alerting result"""
        verified = verify({})
        assert verified.price_mid is None
        assert verified.vwap == 0.0
        assert verified.discrepancy_pct == 0.0
        assert verified.alert is False

    def test_single_source(self):
        """One source is its own median"""
        verified = verify({"kraken": quote(64000.0, 3.5, spread=1.0)})
        assert verified.price_mid == pytest.approx(64000.0)
        assert verified.vwap == pytest.approx(64000.0)
        assert verified.discrepancy_pct == 0.0
        assert verified.alert is False

    def test_quote_without_ask_is_excluded(self):
        """A one-sided quote contributes no mid"""
        quotes = {
            "binance": quote(100.0, 1.0),
            "coinbase": Quote(bid=150.0, ask=None, volume_24h=100.0),
        }
        verified = verify(quotes)
        assert verified.price_mid == pytest.approx(100.0)
        assert verified.vwap == pytest.approx(100.0)
        assert verified.discrepancy_pct == 0.0


# ============================================
# Properties
# ============================================

class TestProperties:
    """Invariants that hold for any input"""

    @pytest.mark.parametrize("mids", [[1.0], [64000.0, 64010.5], [0.52, 0.53, 0.51, 0.6]])
    def test_price_mid_is_finite_with_any_source(self, mids):
        """At least one usable source always yields a finite price"""
        quotes = {f"s{i}": quote(m, 1.0) for i, m in enumerate(mids)}
        verified = verify(quotes)
        assert verified.price_mid is not None
        assert math.isfinite(verified.price_mid)
        assert verified.discrepancy_pct >= 0

    def test_equal_mids_have_zero_discrepancy(self):
        """Identical mids never alert"""
        quotes = {name: quote(2650.3, 7.0, spread=0.1) for name in ("binance", "coinbase", "kraken")}
        verified = verify(quotes)
        assert verified.discrepancy_pct == pytest.approx(0.0, abs=1e-9)
        assert verified.alert is False

    def test_vwap_equals_mean_with_all_zero_volumes(self):
        """Zero total volume falls back to the mean of mids"""
        quotes = {"a": quote(100.0, 0.0), "b": quote(110.0, 0.0), "c": quote(90.0, 0.0)}
        assert verify(quotes).vwap == pytest.approx(100.0)

    def test_vwap_equals_mean_with_missing_volumes(self):
        """Sources without volume data do not produce 0 or NaN"""
        quotes = {"a": quote(100.0), "b": quote(104.0)}
        assert verify(quotes).vwap == pytest.approx(102.0)


# ============================================
# Building Blocks
# ============================================

class TestAlertBoundary:
    """The alert threshold is inclusive"""

    def test_just_below_threshold(self):
        assert is_alert(1.499999) is False

    def test_at_threshold(self):
        assert is_alert(1.5) is True

    def test_custom_threshold(self):
        """verify() honours an explicit threshold"""
        quotes = {"a": quote(100.0), "b": quote(100.0), "c": quote(103.0)}
        assert verify(quotes, alert_threshold=5.0).alert is False
        assert verify(quotes, alert_threshold=2.5).alert is True


class TestMedianAndDiscrepancy:
    """Median and discrepancy helpers"""

    def test_median_odd(self):
        assert median([3.0, 1.0, 2.0]) == 2.0

    def test_median_even_averages_middle_values(self):
        assert median([1.0, 2.0, 3.0, 10.0]) == 2.5

    def test_median_empty_raises(self):
        with pytest.raises(ValueError):
            median([])

    def test_discrepancy_uses_median_not_mean(self):
        """One outlier is measured against the median of the others"""
        assert discrepancy_pct([100.0, 100.0, 110.0]) == pytest.approx(10.0)

    def test_discrepancy_empty(self):
        assert discrepancy_pct([]) == 0.0


class TestVwap:
    """compute_vwap over (mid, volume) pairs"""

    def test_no_mids(self):
        assert compute_vwap([]) == 0.0

    def test_negative_volume_is_not_weighted(self):
        """A negative volume is excluded from the weighting"""
        assert compute_vwap([(100.0, 5.0), (200.0, -5.0)]) == pytest.approx(100.0)

    def test_volume_stays_paired_with_its_mid(self):
        """Volumes are never shifted onto another source's mid"""
        assert compute_vwap([(100.0, None), (200.0, 1.0)]) == pytest.approx(200.0)


class TestValidMid:
    """Quote mids that may take part in aggregation"""

    def test_non_positive_mid_rejected(self):
        assert valid_mid(Quote(bid=0.0, ask=0.0)) is None

    def test_non_finite_values_never_reach_the_mid(self):
        """NaN and infinities are dropped when the quote is built"""
        q = Quote(bid=float("nan"), ask=float("inf"), volume_24h=float("nan"))
        assert q.bid is None and q.ask is None and q.volume_24h is None
        assert valid_mid(q) is None


class TestBuildSnapshot:
    """Snapshot assembly"""

    def test_snapshot_fields(self):
        quotes = {"binance": quote(100.0, 2.0), "kraken": quote(100.0, 3.0)}
        snapshot = build_snapshot("btcusd", quotes, timestamp=1704110400000)

        assert snapshot.symbol == "BTCUSD"
        assert set(snapshot.sources) == {"binance", "kraken"}
        assert snapshot.timestamp == 1704110400000
        assert snapshot.is_empty is False
        assert total_volume(snapshot) == pytest.approx(5.0)

    def test_empty_snapshot(self):
        snapshot = build_snapshot("ETHUSD", {}, timestamp=1)
        assert snapshot.is_empty is True
        assert snapshot.sources == {}
        assert total_volume(snapshot) == 0

    def test_wire_format_is_camel_case(self):
        """Serialized snapshots use the camelCase wire names"""
        snapshot = build_snapshot("BTCUSD", {"binance": quote(100.0, 1.0)}, timestamp=1)
        wire = snapshot.to_wire()
        assert set(wire["verified"]) == {"priceMid", "vwap", "discrepancyPct", "alert"}
        assert set(wire["sources"]["binance"]) == {"bid", "ask", "volume24h", "change24hPct"}
