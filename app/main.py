"""
FastAPI Application - Verified Multi-Source Market Data API

Aggregates live quotes from several exchanges into one verified price per
symbol and distributes it over HTTP and a persistent WebSocket channel.

Sources:
    - Binance (spot)
    - Coinbase Exchange
    - Kraken

Features:
    - Cross-source verification (mean mid, VWAP, discrepancy alert)
    - Short-TTL snapshot cache and rolling in-memory history
    - Flat price list with stale and static fallbacks
    - Push channel (INITIAL_PRICES, then PRICE_UPDATE every few seconds)

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8000

Docs:
    - Swagger: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import contextlib
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings, validate_configuration
from core.logging import logger
from core.schemas import ErrorResponse, PricesResponse
from core.source_manager import SourceManager
from core.utils.time import current_utc_timestamp, to_utc_datetime
from services.market_data import MarketDataService, parse_symbols
from services.price_hub import PriceHub, build_price_source


CLEAN_CLOSE_CODES = (1000, 1001)


# ============================================
# Dependencies
# ============================================

def get_market_service(request: Request) -> MarketDataService:
    return request.app.state.market_service


def get_hub(request: Request) -> PriceHub:
    return request.app.state.hub


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(message=message).to_wire())


router = APIRouter()


# ============================================
# System Endpoints
# ============================================

@router.get("/", tags=["System"])
async def root(service: MarketDataService = Depends(get_market_service)):
    """API information and configured sources."""
    return {
        "name": "Verified Market Data API",
        "version": "1.0.0",
        "status": "operational",
        "docs": "/docs",
        "sources": service.sources.list_sources(),
        "symbols": settings.symbols_list,
    }


@router.get("/health", tags=["System"])
async def health_check(
    service: MarketDataService = Depends(get_market_service),
    hub: PriceHub = Depends(get_hub),
):
    """Health check - tests connectivity to every source."""
    health = await service.sources.health_check_all()
    return {
        "status": "healthy" if all(health.values()) else "degraded",
        "sources": health,
        "subscribers": hub.subscriber_count,
        "metrics": service.metrics_snapshot().to_wire(),
        "server_time": to_utc_datetime(current_utc_timestamp(milliseconds=True)).isoformat(),
    }


# ============================================
# Market Data Endpoints
# ============================================

@router.get("/market-data", tags=["Market Data"])
async def get_market_data(
    symbols: Optional[str] = Query(default=None, description="Comma-separated symbols, e.g. BTCUSD,ETHUSD"),
    metrics: Optional[str] = Query(default=None, description="1 to force a fresh cycle and report metrics"),
    history: Optional[str] = Query(default=None, description="1 to include minute/hourly/daily VWAP averages"),
    x_api_key: Optional[str] = Header(default=None),
    service: MarketDataService = Depends(get_market_service),
):
    """
    Verified snapshots for the requested symbols.

    Examples:
        GET /market-data
        GET /market-data?symbols=BTCUSD,ETHUSD&history=1
    """
    if settings.market_api_key and x_api_key != settings.market_api_key:
        logger.warning("Rejected /market-data request with missing or invalid API key")
        return JSONResponse(status_code=401, content={"message": "Unauthorized"})

    try:
        symbol_list = parse_symbols(symbols)
    except ValueError as e:
        return _error(400, str(e))

    try:
        response = await service.get_market_data(
            symbol_list, want_history=_flag(history), want_metrics=_flag(metrics)
        )
        return JSONResponse(content=response.to_wire())
    except Exception as e:
        logger.error(f"Market data error for {','.join(symbol_list)}: {e}")
        return _error(500, str(e) or "Internal server error")


@router.get("/prices", tags=["Market Data"])
async def get_prices(
    symbols: Optional[str] = Query(default=None, description="Comma-separated symbols"),
    service: MarketDataService = Depends(get_market_service),
):
    """
    Flat SYMBOL -> price mapping (live, cached, stale or static).

    Example:
        GET /prices?symbols=BTCUSD,ETHUSD
    """
    try:
        symbol_list = parse_symbols(symbols)
    except ValueError as e:
        return _error(400, str(e))

    prices = await service.get_prices(symbol_list)
    return JSONResponse(content=PricesResponse(prices=prices).to_wire())


# ============================================
# WebSocket Endpoints
# ============================================

@router.websocket("/ws/prices")
async def websocket_prices(websocket: WebSocket):
    """
    Live price channel.

    Messages:
        {"type": "INITIAL_PRICES", "data": {"BTCUSD": 64001.0, ...}}   on connect
        {"type": "PRICE_UPDATE",   "data": {"BTCUSD": 64003.5, ...}}   every broadcast interval

    Example:
        ws://localhost:8000/ws/prices
    """
    hub: PriceHub = websocket.app.state.hub
    await websocket.accept()
    logger.info("WS connected: prices")

    subscriber = None
    clean = True
    try:
        subscriber = await hub.register(websocket)
        while True:
            # Inbound messages carry nothing; reading detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect as e:
        clean = e.code in CLEAN_CLOSE_CODES
        logger.info(f"WS disconnected: prices (code={e.code})")
    except Exception as e:
        clean = False
        logger.error(f"WS error prices: {e}")
        with contextlib.suppress(Exception):
            await websocket.close(code=1011, reason="Internal error")
    finally:
        if subscriber is not None:
            hub.unregister(subscriber, clean=clean)
        logger.info("WS ended: prices")


# ============================================
# Application Factory
# ============================================

def create_app(
    market_service: Optional[MarketDataService] = None,
    hub: Optional[PriceHub] = None,
) -> FastAPI:
    """
    Build the application around one MarketDataService and one PriceHub.

    Both are created from settings unless injected (tests inject fakes).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown."""
        logger.info("=== Application Starting ===")
        try:
            validate_configuration()
            service = market_service or MarketDataService(SourceManager())
            price_hub = hub or PriceHub(build_price_source(service))
            app.state.market_service = service
            app.state.hub = price_hub

            await service.start()
            await price_hub.start()
            logger.info("=== Started Successfully ===")
        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise

        yield

        logger.info("=== Shutting Down ===")
        try:
            await app.state.hub.stop()
        except Exception as e:
            logger.error(f"Error stopping price hub: {e}")
        try:
            await app.state.market_service.shutdown()
            logger.info("=== Shutdown Complete ===")
        except Exception as e:
            logger.error(f"Shutdown error: {e}")

    application = FastAPI(
        title="Verified Market Data API",
        description=(
            "Cross-verified cryptocurrency prices from Binance, Coinbase and Kraken.\n\n"
            "## REST Endpoints\n"
            "- `GET /market-data?symbols=BTCUSD,ETHUSD&history=1&metrics=1` - Verified snapshots\n"
            "- `GET /prices?symbols=BTCUSD` - Flat price list with fallbacks\n"
            "- `GET /health` - Source reachability and metrics\n\n"
            "## WebSocket Streams\n"
            "- `ws://{host}/ws/prices` - INITIAL_PRICES on connect, then PRICE_UPDATE\n\n"
            "Clients should reconnect on abnormal closes and poll `/market-data` "
            "when the channel is unavailable."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)

    @application.exception_handler(404)
    async def not_found_handler(request, exc):
        """Handle 404 errors."""
        return JSONResponse(status_code=404, content={"detail": "Not found", "path": str(request.url)})

    @application.exception_handler(500)
    async def internal_error_handler(request, exc):
        """Handle 500 errors."""
        logger.error(f"Internal error: {exc}")
        return JSONResponse(status_code=500, content=ErrorResponse(message="Internal server error").to_wire())

    return application


app = create_app()
