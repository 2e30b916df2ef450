"""
Unit Tests for the HTTP and WebSocket Surfaces

The application is built with ``create_app`` around an injected
MarketDataService whose sources are fakes, so no request leaves the process.

Run with:
    pytest tests/unit/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from core.config import settings
from core.schemas import Quote
from core.source_interface import QuoteSource
from core.source_manager import SourceManager
from services.market_data import MarketDataService
from services.price_hub import AggregatedPriceSource, PriceHub, SimulatedPriceSource


class FixedSource(QuoteSource):
    def __init__(self, name: str, mid: float):
        self.name = name
        self.mid = mid
        self.calls = 0

    async def get_quote(self, symbol: str) -> Quote:
        self.calls += 1
        return Quote(bid=self.mid - 1, ask=self.mid + 1, volume_24h=1.0, change_24h_pct=0.5)


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def sources():
    return [FixedSource("binance", 100.0), FixedSource("kraken", 100.0)]


@pytest.fixture
def service(sources):
    return MarketDataService(SourceManager(sources, timeout=1.0))


@pytest.fixture
def client(service):
    hub = PriceHub(AggregatedPriceSource(service, ["BTCUSD", "ETHUSD"]), interval=3600)
    with TestClient(create_app(market_service=service, hub=hub)) as test_client:
        yield test_client


# ============================================
# System Endpoints
# ============================================

class TestSystemEndpoints:
    """Tests for / and /health"""

    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "operational"
        assert body["sources"] == ["binance", "kraken"]

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["sources"] == {"binance": True, "kraken": True}
        assert body["subscribers"] == 0
        assert "successes" in body["metrics"]
        assert body["server_time"].endswith("+00:00")


# ============================================
# /market-data
# ============================================

class TestMarketData:
    """Tests for GET /market-data"""

    def test_default_symbols(self, client):
        response = client.get("/market-data")
        assert response.status_code == 200

        body = response.json()
        assert body["status"] == "ok"
        assert [s["symbol"] for s in body["data"]] == settings.symbols_list
        first = body["data"][0]
        assert first["verified"]["priceMid"] == pytest.approx(100.0)
        assert first["verified"]["alert"] is False
        assert set(first["sources"]) == {"binance", "kraken"}
        assert first["sources"]["binance"]["change24hPct"] == 0.5

    def test_second_request_is_cached(self, client, sources):
        client.get("/market-data?symbols=BTCUSD")
        body = client.get("/market-data?symbols=BTCUSD").json()

        assert body["cached"] is True
        assert "fetchedAt" in body
        assert sources[0].calls == 1

    def test_history_and_metrics(self, client):
        body = client.get("/market-data?symbols=BTCUSD,ETHUSD&history=1&metrics=1").json()

        assert set(body["history"]) == {"BTCUSD", "ETHUSD"}
        assert set(body["history"]["BTCUSD"]) == {"minute", "hourly", "daily"}
        assert body["metrics"]["successes"] == 1
        assert body["metrics"]["lastError"] is None
        assert "cached" not in body

    def test_invalid_symbol_is_400(self, client):
        response = client.get("/market-data?symbols=BTC-USD")
        assert response.status_code == 400
        assert response.json()["status"] == "error"

    def test_too_many_symbols_is_400(self, client, sources, monkeypatch):
        monkeypatch.setattr(settings, "max_symbols_per_request", 2)

        response = client.get("/market-data?symbols=BTCUSD,ETHUSD,LTCUSD")

        assert response.status_code == 400
        assert "Too many symbols" in response.json()["message"]
        assert sources[0].calls == 0

    def test_api_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "market_api_key", "secret")

        assert client.get("/market-data").status_code == 401
        assert client.get("/market-data").json() == {"message": "Unauthorized"}
        wrong = client.get("/market-data", headers={"x-api-key": "nope"})
        assert wrong.status_code == 401
        ok = client.get("/market-data", headers={"x-api-key": "secret"})
        assert ok.status_code == 200

    def test_internal_error_is_500(self, client, service, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("cycle failed")

        monkeypatch.setattr(service, "get_market_data", broken)

        response = client.get("/market-data")
        assert response.status_code == 500
        assert response.json() == {"status": "error", "message": "cycle failed"}


# ============================================
# /prices
# ============================================

class TestPrices:
    """Tests for GET /prices"""

    def test_prices(self, client):
        body = client.get("/prices?symbols=BTCUSD,ETHUSD").json()
        assert body == {"prices": {"BTCUSD": pytest.approx(100.0), "ETHUSD": pytest.approx(100.0)}}

    def test_static_fallback_when_sources_fail(self):
        class DownSource(QuoteSource):
            name = "down"

            async def get_quote(self, symbol):
                raise RuntimeError("unreachable")

        service = MarketDataService(SourceManager([DownSource()], timeout=1.0))
        hub = PriceHub(SimulatedPriceSource(), interval=3600)
        with TestClient(create_app(market_service=service, hub=hub)) as test_client:
            body = test_client.get("/prices?symbols=BTCUSD").json()

        assert body == {"prices": {"BTCUSD": settings.static_prices_map["BTCUSD"]}}


# ============================================
# WebSocket /ws/prices
# ============================================

class TestPriceChannel:
    """Tests for the /ws/prices channel"""

    def test_initial_prices_on_connect(self, client):
        with client.websocket_connect("/ws/prices") as ws:
            message = ws.receive_json()

        assert message["type"] == "INITIAL_PRICES"
        assert message["data"]["BTCUSD"] == pytest.approx(100.0)

    def test_price_updates_are_pushed(self, service):
        hub = PriceHub(AggregatedPriceSource(service, ["BTCUSD"]), interval=0.05)
        with TestClient(create_app(market_service=service, hub=hub)) as test_client:
            with test_client.websocket_connect("/ws/prices") as ws:
                initial = ws.receive_json()
                update = ws.receive_json()

        assert initial["type"] == "INITIAL_PRICES"
        assert update["type"] == "PRICE_UPDATE"
        assert update["data"] == {"BTCUSD": pytest.approx(100.0)}

    def test_subscriber_removed_after_disconnect(self, client):
        with client.websocket_connect("/ws/prices") as ws:
            ws.receive_json()
            assert client.get("/health").json()["subscribers"] == 1

        # The server notices the close on its next receive
        for _ in range(50):
            if client.get("/health").json()["subscribers"] == 0:
                break
        assert client.get("/health").json()["subscribers"] == 0
