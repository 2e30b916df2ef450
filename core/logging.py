"""
Unified Logging Configuration

Sets up one logging tree for the whole engine. Modules use either the shared
``logger`` or a child obtained with ``get_logger(__name__)`` instead of print().

Usage:
    from core.logging import logger, get_logger

    logger.info("Aggregation cycle finished")
    log = get_logger(__name__)     # "marketdata.exchanges.kraken"
    log.warning("Source unavailable")

Configuration:
    The level comes from LOG_LEVEL in the environment / .env (default INFO).
"""

import logging
import sys
from typing import Optional


ROOT_LOGGER_NAME = "marketdata"


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Prefix messages with the wall-clock time
        include_module: Include the logger name in messages

    Returns:
        logging.Logger: Configured "marketdata" logger

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Hub started")
        2024-01-01 12:00:00 [INFO] marketdata: Hub started
    """
    if log_format is None:
        format_parts = []
        if include_timestamp:
            format_parts.append("%(asctime)s")
        format_parts.append("[%(levelname)s]")
        if include_module:
            format_parts.append("%(name)s:")
        format_parts.append("%(message)s")
        log_format = " ".join(format_parts)

    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    app_logger.setLevel(level)
    return app_logger


# ============================================
# Initialize Logger with Settings
# ============================================

try:
    from core.config import settings
    _log_level = settings.log_level
except ImportError:
    _log_level = "INFO"

logger = setup_logging(log_level=_log_level)


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger of the application logger.

    Args:
        name: Component name (typically __name__)

    Example:
        >>> get_logger("services.price_hub").name
        'marketdata.services.price_hub'
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(source: str, endpoint: str, params: dict = None) -> None:
    """
    Log an outbound exchange request.

    Example:
        >>> log_api_request("kraken", "/0/public/Ticker", {"pair": "XBTUSD"})
        [DEBUG] API Request: kraken /0/public/Ticker | Params: {'pair': 'XBTUSD'}
    """
    if params:
        logger.debug(f"API Request: {source} {endpoint} | Params: {params}")
    else:
        logger.debug(f"API Request: {source} {endpoint}")


def log_api_response(source: str, endpoint: str, status: int, response_time: float = None) -> None:
    """
    Log an exchange response with status and timing.

    Example:
        >>> log_api_response("coinbase", "/products/BTC-USD/ticker", 200, 0.182)
        [DEBUG] API Response: coinbase /products/BTC-USD/ticker | Status: 200 | Time: 0.182s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {source} {endpoint} | Status: {status}{time_str}")


def log_websocket_event(channel: str, event: str, subscriber: str = None, details: str = None) -> None:
    """
    Log a persistent-channel event, at ERROR for "error" and INFO otherwise.

    Example:
        >>> log_websocket_event("hub", "connected", subscriber="sub-3")
        [INFO] WebSocket: hub connected | Subscriber: sub-3
    """
    subscriber_str = f" | Subscriber: {subscriber}" if subscriber else ""
    details_str = f" | {details}" if details else ""

    level = logging.ERROR if event == "error" else logging.INFO
    logger.log(level, f"WebSocket: {channel} {event}{subscriber_str}{details_str}")


logger.debug("Logging system initialized")
