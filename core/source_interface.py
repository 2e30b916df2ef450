"""
Source Interface: Abstract Contract for Quote Sources

Every exchange adapter (Binance, Coinbase, Kraken, ...) implements this class.
The contract is deliberately small: given a common symbol such as ``BTCUSD``,
return one normalized ``Quote`` or raise ``SourceUnavailable``.

Responsibilities of an adapter:
    - Map the common symbol to the exchange's own pair name
      (BTCUSD -> BTCUSDT on Binance, BTC-USD on Coinbase, XBTUSD on Kraken)
    - Issue the exchange's calls, each bounded by its own timeout
    - Normalize the raw payload into ``Quote`` right away, so nothing
      downstream ever sees an exchange-specific shape
    - Derive ``change24hPct`` from open/last prices when the exchange does
      not report it directly

Example:
    class KrakenSource(QuoteSource):
        name = "kraken"
        pair_overrides = {"BTCUSD": "XBTUSD"}

        async def get_quote(self, symbol):
            ...
            return Quote(bid=..., ask=..., volume_24h=..., change_24h_pct=...)
"""

import math
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from core.schemas import Quote


def split_symbol(symbol: str) -> Tuple[str, str]:
    """
    Split a common symbol into (base, quote) assets.

    Example:
        >>> split_symbol("ethusd")
        ('ETH', 'USD')
    """
    symbol = symbol.upper()
    for quote_asset in ("USDT", "USDC", "USD", "EUR"):
        if symbol.endswith(quote_asset) and len(symbol) > len(quote_asset):
            return symbol[: -len(quote_asset)], quote_asset
    raise ValueError(f"Cannot split symbol '{symbol}' into base and quote assets")


def to_float(value) -> Optional[float]:
    """
    Parse an exchange number (often a string) into a finite float.

    Returns None for missing, unparsable or non-finite values.
    """
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def change_pct(last: Optional[float], open_: Optional[float]) -> float:
    """
    24h change in percent from open and last prices.

    Defined as 0 when open (or last) is missing or zero.

    Example:
        >>> change_pct(110.0, 100.0)
        10.0
        >>> change_pct(110.0, 0.0)
        0.0
    """
    if not last or not open_:
        return 0.0
    return (last - open_) / open_ * 100


class QuoteSource(ABC):
    """
    Abstract Base Class for Quote Sources

    Class Attributes:
        name: Unique identifier (lowercase, e.g. "binance")
        pair_overrides: Symbol -> exchange pair mappings that the generic rule gets wrong
    """

    name: str

    pair_overrides: Dict[str, str] = {}

    def to_pair(self, symbol: str) -> str:
        """
        Map a common symbol to the exchange's pair name.

        Subclasses implement ``_default_pair``; explicit overrides win.
        """
        symbol = symbol.upper()
        if symbol in self.pair_overrides:
            return self.pair_overrides[symbol]
        return self._default_pair(symbol)

    def _default_pair(self, symbol: str) -> str:
        return symbol

    @abstractmethod
    async def get_quote(self, symbol: str) -> Quote:
        """
        Fetch and normalize the current quote for ``symbol``.

        Args:
            symbol: Common symbol in uppercase (e.g. "BTCUSD")

        Returns:
            Quote: Normalized quote (fields may be None if the exchange omitted them)

        Raises:
            SourceUnavailable: On timeout, non-200 status or malformed payload
        """
        ...

    # ============================================
    # Lifecycle Methods (optional to override)
    # ============================================

    async def initialize(self) -> None:
        """Create sessions or other resources. Called once at startup."""
        pass

    async def shutdown(self) -> None:
        """Release resources. Safe to call more than once."""
        pass

    async def health_check(self) -> bool:
        """
        Check whether the exchange answers at all.

        The default implementation asks for a BTCUSD quote.
        """
        try:
            await self.get_quote("BTCUSD")
            return True
        except Exception:
            return False

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}')>"
