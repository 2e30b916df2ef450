"""
Normalized Data Schemas

This module defines Pydantic models for every payload the engine produces or
consumes. Whatever exchange a quote came from, it is normalized into ``Quote``
at the adapter boundary, so the aggregator never branches on exchange identity.

Models:
    - Quote: One exchange's view of one symbol
    - VerifiedPrice: Cross-source verification result (mid, VWAP, discrepancy)
    - AggregatedSnapshot: One verified aggregation result for one symbol
    - HistoryPoint / HistorySummary: Rolling history and its window averages
    - Metrics: Process-wide aggregation counters
    - MarketDataResponse / PricesResponse: HTTP payloads
    - ChannelMessage: Persistent-channel (WebSocket) messages

Wire format:
    JSON keys are camelCase (``priceMid``, ``change24hPct``, ``fetchedAt``).
    Python attributes are snake_case; every model accepts both spellings on
    input and ``model_dump(by_alias=True)`` produces the wire spelling.
"""

import math
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class WireModel(BaseModel):
    """Base model that reads snake_case or camelCase and writes camelCase."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Dump to a JSON-ready dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)


# ============================================
# Quote Schema
# ============================================

class Quote(WireModel):
    """
    One exchange's view of one symbol.

    Any field may be missing when the exchange omitted it. Non-finite values
    (NaN, +/-inf) are replaced by None on construction so they can never
    reach the aggregator or a client.

    Example:
        >>> q = Quote(bid=64000.5, ask=64001.5, volume_24h=1532.4, change_24h_pct=-0.8)
        >>> q.mid
        64001.0
    """

    bid: Optional[float] = Field(default=None, description="Best bid price")
    ask: Optional[float] = Field(default=None, description="Best ask price")
    volume_24h: Optional[float] = Field(
        default=None,
        alias="volume24h",
        description="Rolling 24h traded volume in base asset"
    )
    change_24h_pct: Optional[float] = Field(
        default=None,
        alias="change24hPct",
        description="Rolling 24h price change in percent"
    )

    @field_validator("bid", "ask", "volume_24h", "change_24h_pct")
    @classmethod
    def drop_non_finite(cls, v: Optional[float]) -> Optional[float]:
        """Filter NaN and infinities at the boundary"""
        if v is None or not math.isfinite(v):
            return None
        return v

    @property
    def mid(self) -> Optional[float]:
        """Average of bid and ask, or None when either side is missing."""
        if self.bid is None or self.ask is None:
            return None
        return (self.bid + self.ask) / 2


# ============================================
# Verification & Snapshot Schemas
# ============================================

class VerifiedPrice(WireModel):
    """
    Cross-source verification result for one symbol.

    Attributes:
        price_mid: Mean of the surviving source mids (None when no source succeeded)
        vwap: Volume-weighted average of source mids (mean fallback, 0 when empty)
        discrepancy_pct: Max relative deviation of any mid from the median, in percent
        alert: True iff discrepancy_pct is at or above the alert threshold
    """

    price_mid: Optional[float] = Field(default=None, alias="priceMid")
    vwap: float = Field(default=0.0)
    discrepancy_pct: float = Field(default=0.0, ge=0, alias="discrepancyPct")
    alert: bool = Field(default=False)


class AggregatedSnapshot(WireModel):
    """
    One verified aggregation result for one symbol at one point in time.

    Example:
        >>> snap = AggregatedSnapshot(
        ...     symbol="BTCUSD",
        ...     sources={"binance": Quote(bid=100, ask=100)},
        ...     verified=VerifiedPrice(price_mid=100, vwap=100),
        ...     timestamp=1704110400000,
        ... )
    """

    symbol: str = Field(..., examples=["BTCUSD", "ETHUSD"])
    sources: Dict[str, Quote] = Field(default_factory=dict)
    verified: VerifiedPrice = Field(default_factory=VerifiedPrice)
    timestamp: int = Field(..., description="Aggregation time, epoch milliseconds")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "symbol": "BTCUSD",
                "sources": {
                    "binance": {"bid": 64000.1, "ask": 64000.2, "volume24h": 15234.1, "change24hPct": 1.2},
                    "kraken": {"bid": 63998.0, "ask": 64001.0, "volume24h": 3120.7, "change24hPct": 1.1}
                },
                "verified": {"priceMid": 63999.825, "vwap": 63999.93, "discrepancyPct": 0.0012, "alert": False},
                "timestamp": 1704110400000
            }
        }
    )

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Ensure symbol is uppercase"""
        return v.upper()

    @property
    def is_empty(self) -> bool:
        """True when zero sources succeeded for this symbol."""
        return self.verified.price_mid is None


# ============================================
# History Schemas
# ============================================

class HistoryPoint(WireModel):
    """One history entry, appended once per aggregation cycle per symbol."""

    t: int = Field(..., description="Snapshot timestamp, epoch milliseconds")
    mid: Optional[float] = None
    vwap: float = 0.0
    vol: float = 0.0


class HistorySummary(WireModel):
    """Mean VWAP over the last minute, hour and day."""

    minute: float = 0.0
    hourly: float = 0.0
    daily: float = 0.0


# ============================================
# Metrics Schema
# ============================================

class Metrics(WireModel):
    """Process-wide aggregation counters, reset only on restart."""

    successes: int = 0
    failures: int = 0
    last_duration_ms: int = Field(default=0, alias="lastDurationMs")
    last_error: Optional[str] = Field(default=None, alias="lastError")


# ============================================
# HTTP Payload Schemas
# ============================================

class MarketDataResponse(WireModel):
    """
    Payload of ``GET /market-data``.

    Optional top-level fields are omitted from the wire payload when unset;
    nulls nested inside snapshots and metrics are kept.
    """

    status: Literal["ok"] = "ok"
    data: List[AggregatedSnapshot] = Field(default_factory=list)
    history: Optional[Dict[str, HistorySummary]] = None
    metrics: Optional[Metrics] = None
    cached: Optional[bool] = None
    fetched_at: Optional[int] = Field(default=None, alias="fetchedAt")

    def to_wire(self) -> Dict[str, Any]:
        payload = super().to_wire()
        return {key: value for key, value in payload.items() if value is not None}


class ErrorResponse(WireModel):
    status: Literal["error"] = "error"
    message: str


class PricesResponse(WireModel):
    """Payload of ``GET /prices``: a flat SYMBOL -> price mapping."""

    prices: Dict[str, float] = Field(default_factory=dict)


# ============================================
# Persistent Channel Messages
# ============================================

INITIAL_PRICES = "INITIAL_PRICES"
PRICE_UPDATE = "PRICE_UPDATE"


class ChannelMessage(WireModel):
    """
    Server -> client message on the persistent channel.

    Example:
        >>> ChannelMessage(type="PRICE_UPDATE", data={"BTCUSD": 64001.0}).to_wire()
        {'type': 'PRICE_UPDATE', 'data': {'BTCUSD': 64001.0}}
    """

    type: Literal["INITIAL_PRICES", "PRICE_UPDATE"]
    data: Dict[str, float] = Field(default_factory=dict)
