"""
Market Data Settings

One Settings object covers the exchange endpoints, the aggregation knobs, the
distribution hub and the client feed. Values come from the environment or a
.env file and are type-checked by pydantic-settings.

Key Features:
- Validates symbols, timeouts and thresholds on startup
- Converts comma-separated strings to lists (symbols, hosts, origins)
- Parses the last-resort static price list
- Holds both server-side and client-side (resilient feed) settings

Usage:
    from core.config import settings

    print(settings.source_timeout)
    print(settings.symbols_list)  # ['BTCUSD', 'ETHUSD', 'LTCUSD', 'XRPUSD']
"""

from typing import Dict, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application Settings

    Values are automatically loaded from environment variables or .env file.

    Attributes:
        binance_base_url: Binance spot REST API base URL
        coinbase_base_url: Coinbase Exchange REST API base URL
        kraken_base_url: Kraken REST API base URL
        supported_symbols: Default symbols tracked when a request names none
        source_timeout: Per-call deadline for every exchange request (seconds)
        snapshot_cache_ttl_ms: Freshness window of the aggregated snapshot memo
        prices_cache_ttl_ms: Freshness window of the flat /prices mapping
        history_limit: Maximum history points kept per symbol
        history_max_symbols: Maximum symbols with stored history
        max_symbols_per_request: Maximum symbols in one request
        discrepancy_alert_pct: Discrepancy at or above which a snapshot is flagged
        market_api_key: Shared secret for the x-api-key header (empty = open)
        broadcast_interval: Seconds between PRICE_UPDATE pushes
        hub_send_timeout: Per-subscriber deadline for one broadcast send
        hub_price_source: "aggregated" or "simulated"
        static_prices: Last-resort SYMBOL:price list
        api_base_url: Backend base URL used by the resilient client
        ws_url: Explicit channel URL for the client (derived from api_base_url if empty)
        allowed_ws_hosts: Hosts the client may open a channel to
    """

    # ============================================
    # Exchange API Configuration
    # ============================================

    binance_base_url: str = Field(
        default="https://api.binance.com",
        description="Binance spot API base URL"
    )

    coinbase_base_url: str = Field(
        default="https://api.exchange.coinbase.com",
        description="Coinbase Exchange API base URL"
    )

    kraken_base_url: str = Field(
        default="https://api.kraken.com",
        description="Kraken API base URL"
    )

    source_timeout: float = Field(
        default=2.0,
        description="Deadline for each exchange HTTP call in seconds (2.0-2.5)"
    )

    # ============================================
    # Supported Markets Configuration
    # ============================================

    supported_symbols: str = Field(
        default="BTCUSD,ETHUSD,LTCUSD,XRPUSD",
        description="Comma-separated list of tracked symbols"
    )

    # ============================================
    # Aggregation, Cache & History
    # ============================================

    snapshot_cache_ttl_ms: int = Field(
        default=2000,
        description="Aggregated snapshot cache TTL in milliseconds"
    )

    prices_cache_ttl_ms: int = Field(
        default=3000,
        description="Flat price mapping cache TTL in milliseconds"
    )

    history_limit: int = Field(
        default=1440,
        description="Maximum history points kept per symbol"
    )

    history_max_symbols: int = Field(
        default=64,
        description="Maximum symbols with stored history; the least recently updated one is evicted"
    )

    max_symbols_per_request: int = Field(
        default=20,
        description="Maximum symbols accepted in one symbols= query"
    )

    discrepancy_alert_pct: float = Field(
        default=1.5,
        description="Cross-source discrepancy (percent) that raises the alert flag"
    )

    market_api_key: str = Field(
        default="",
        description="Shared secret expected in x-api-key (empty = unauthenticated)"
    )

    static_prices: str = Field(
        default="BTCUSD:43250.75,ETHUSD:2650.30,LTCUSD:85.42,XRPUSD:0.52",
        description="Comma-separated SYMBOL:price pairs used as the last resort"
    )

    # ============================================
    # Distribution Hub
    # ============================================

    broadcast_interval: float = Field(
        default=5.0,
        description="Seconds between PRICE_UPDATE broadcasts"
    )

    hub_send_timeout: float = Field(
        default=2.0,
        description="Seconds one subscriber may take to accept a broadcast before it is dropped"
    )

    hub_price_source: str = Field(
        default="aggregated",
        description="Price source for broadcasts: aggregated or simulated"
    )

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8000,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Client Resilience Layer
    # ============================================

    api_base_url: str = Field(
        default="http://localhost:8000",
        description="Backend base URL used by the resilient price feed"
    )

    ws_url: str = Field(
        default="",
        description="Persistent channel URL (derived from api_base_url when empty)"
    )

    allowed_ws_hosts: str = Field(
        default="localhost,127.0.0.1",
        description="Comma-separated hosts a client may open a channel to"
    )

    disable_external_calls: bool = Field(
        default=False,
        description="Skip direct exchange aggregation on the client"
    )

    poll_interval: float = Field(
        default=30.0,
        description="Polling interval in seconds once the channel is given up"
    )

    rate_limited_poll_interval: float = Field(
        default=60.0,
        description="Polling interval in seconds after an HTTP 429"
    )

    placeholder_cooldown: float = Field(
        default=300.0,
        description="Seconds to stay on the static placeholder after falling back to it"
    )

    ws_reconnect_base_ms: int = Field(
        default=1000,
        description="Base reconnect delay in milliseconds"
    )

    ws_reconnect_cap_ms: int = Field(
        default=10000,
        description="Reconnect delay cap in milliseconds (before jitter)"
    )

    ws_reconnect_jitter_ms: int = Field(
        default=1000,
        description="Upper bound of the random jitter added to each reconnect delay"
    )

    ws_max_reconnect_attempts: int = Field(
        default=5,
        description="Maximum reconnect attempts per episode"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # ============================================
    # Derived Properties
    # ============================================

    @property
    def symbols_list(self) -> List[str]:
        """
        Convert comma-separated symbols string to a list.

        Example:
            >>> settings.symbols_list
            ['BTCUSD', 'ETHUSD', 'LTCUSD', 'XRPUSD']
        """
        return [s.strip().upper() for s in self.supported_symbols.split(",") if s.strip()]

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def allowed_ws_hosts_list(self) -> List[str]:
        return [h.strip().lower() for h in self.allowed_ws_hosts.split(",") if h.strip()]

    @property
    def static_prices_map(self) -> Dict[str, float]:
        """
        Parse the static price list into a mapping.

        Malformed entries are skipped.

        Example:
            >>> settings.static_prices_map["BTCUSD"]
            43250.75
        """
        prices: Dict[str, float] = {}
        for entry in self.static_prices.split(","):
            symbol, sep, raw = entry.partition(":")
            if not sep:
                continue
            try:
                prices[symbol.strip().upper()] = float(raw)
            except ValueError:
                continue
        return prices


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # logging.py imports config.py, so import lazily
    from core.logging import logger

    config = config or settings

    if not config.symbols_list:
        raise ValueError("SUPPORTED_SYMBOLS must contain at least one symbol")

    for symbol in config.symbols_list:
        if not symbol.isalnum():
            raise ValueError(
                f"Symbol '{symbol}' must be alphanumeric (e.g. BTCUSD). "
                f"Please update SUPPORTED_SYMBOLS in .env"
            )

    if not (2.0 <= config.source_timeout <= 2.5):
        raise ValueError(
            f"Invalid SOURCE_TIMEOUT: {config.source_timeout}. Must be between 2.0 and 2.5 seconds"
        )

    if config.history_limit <= 0:
        raise ValueError(f"Invalid HISTORY_LIMIT: {config.history_limit}. Must be positive")

    if config.history_max_symbols <= 0 or config.max_symbols_per_request <= 0:
        raise ValueError("HISTORY_MAX_SYMBOLS and MAX_SYMBOLS_PER_REQUEST must be positive")

    if config.hub_send_timeout <= 0:
        raise ValueError(f"Invalid HUB_SEND_TIMEOUT: {config.hub_send_timeout}. Must be positive")

    if config.discrepancy_alert_pct < 0:
        raise ValueError("DISCREPANCY_ALERT_PCT cannot be negative")

    if config.poll_interval <= 0 or config.rate_limited_poll_interval < config.poll_interval:
        raise ValueError(
            f"Invalid polling intervals: POLL_INTERVAL={config.poll_interval}, "
            f"RATE_LIMITED_POLL_INTERVAL={config.rate_limited_poll_interval}. "
            f"Both must be positive and the rate-limited one cannot be shorter"
        )

    if config.hub_price_source not in ("aggregated", "simulated"):
        raise ValueError(
            f"Invalid HUB_PRICE_SOURCE: '{config.hub_price_source}'. "
            f"Must be one of: aggregated, simulated"
        )

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    logger.info("Configuration validated successfully")
    logger.info(f"Tracking symbols: {', '.join(config.symbols_list)}")
    logger.info(f"Source timeout: {config.source_timeout:.1f}s")
    logger.info(f"Snapshot cache TTL: {config.snapshot_cache_ttl_ms}ms")
    logger.info(f"Broadcast: every {config.broadcast_interval:.1f}s ({config.hub_price_source})")
    logger.info(f"Server: {config.app_host}:{config.app_port}")
    logger.info(f"API key required: {'yes' if config.market_api_key else 'no'}")
