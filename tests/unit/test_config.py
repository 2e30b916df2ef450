"""
Unit Tests for Configuration Module

These tests verify that the configuration system works correctly:
- Default values are applied when nothing is configured
- Comma-separated settings are exposed as lists and mappings
- Validation catches invalid configurations

Run with:
    pytest tests/unit/test_config.py -v
"""

import pytest
from core.config import Settings, settings, validate_configuration


def make_settings(**overrides) -> Settings:
    """Settings built from defaults plus overrides, ignoring any local .env"""
    return Settings(_env_file=None, **overrides)


class TestConfigurationDefaults:
    """Test the defaults the engine relies on"""

    def test_exchange_urls_are_https(self):
        """Verify every exchange base URL is set"""
        config = make_settings()
        assert "binance" in config.binance_base_url
        assert "coinbase" in config.coinbase_base_url
        assert "kraken" in config.kraken_base_url
        for url in (config.binance_base_url, config.coinbase_base_url, config.kraken_base_url):
            assert url.startswith("https://")

    def test_aggregation_defaults(self):
        """Verify timeout, TTLs, history bound and alert threshold"""
        config = make_settings()
        assert config.source_timeout == 2.0
        assert config.snapshot_cache_ttl_ms == 2000
        assert config.prices_cache_ttl_ms == 3000
        assert config.history_limit == 1440
        assert config.discrepancy_alert_pct == 1.5

    def test_client_defaults(self):
        """Verify polling, cooldown and reconnect defaults"""
        config = make_settings()
        assert config.poll_interval == 30.0
        assert config.rate_limited_poll_interval == 60.0
        assert config.placeholder_cooldown == 300.0
        assert config.ws_reconnect_base_ms == 1000
        assert config.ws_reconnect_cap_ms == 10000
        assert config.ws_reconnect_jitter_ms == 1000
        assert config.ws_max_reconnect_attempts == 5

    def test_app_port_is_valid_integer(self):
        """Verify app port is a valid integer"""
        assert isinstance(settings.app_port, int)
        assert 1 <= settings.app_port <= 65535


class TestListProperties:
    """Test parsing of comma-separated settings"""

    def test_default_symbols(self):
        """Verify the default symbol set"""
        assert make_settings().symbols_list == ["BTCUSD", "ETHUSD", "LTCUSD", "XRPUSD"]

    def test_symbols_are_stripped_and_uppercased(self):
        """Verify whitespace and case are normalized"""
        config = make_settings(supported_symbols=" btcusd , ethusd,, ")
        assert config.symbols_list == ["BTCUSD", "ETHUSD"]

    def test_static_prices_map(self):
        """Verify the static price list parses into floats"""
        prices = make_settings().static_prices_map
        assert prices["BTCUSD"] == 43250.75
        assert prices["XRPUSD"] == 0.52

    def test_static_prices_skip_malformed_entries(self):
        """Verify malformed entries are ignored"""
        config = make_settings(static_prices="BTCUSD:100,ETHUSD,LTCUSD:abc,xrpusd: 0.5")
        assert config.static_prices_map == {"BTCUSD": 100.0, "XRPUSD": 0.5}

    def test_allowed_ws_hosts_lowercased(self):
        """Verify allowed hosts are normalized"""
        config = make_settings(allowed_ws_hosts="LocalHost, api.Example.com")
        assert config.allowed_ws_hosts_list == ["localhost", "api.example.com"]

    def test_cors_origins_list(self):
        """Verify CORS origins split on commas"""
        config = make_settings(cors_origins="http://a.test, http://b.test")
        assert config.cors_origins_list == ["http://a.test", "http://b.test"]


class TestConfigurationValidation:
    """Test configuration validation function"""

    def test_validate_configuration_succeeds(self):
        """Verify validation passes with default configuration"""
        try:
            validate_configuration(make_settings())
        except ValueError as e:
            pytest.fail(f"Configuration validation failed: {e}")

    def test_rejects_timeout_outside_bounds(self):
        """Verify the source timeout must stay within 2.0-2.5s"""
        with pytest.raises(ValueError, match="SOURCE_TIMEOUT"):
            validate_configuration(make_settings(source_timeout=5.0))
        with pytest.raises(ValueError, match="SOURCE_TIMEOUT"):
            validate_configuration(make_settings(source_timeout=1.0))

    def test_accepts_upper_timeout_bound(self):
        """Verify 2.5s is allowed"""
        validate_configuration(make_settings(source_timeout=2.5))

    def test_rejects_non_alphanumeric_symbol(self):
        """Verify symbols like BTC-USD are refused"""
        with pytest.raises(ValueError, match="alphanumeric"):
            validate_configuration(make_settings(supported_symbols="BTC-USD"))

    def test_rejects_unknown_hub_price_source(self):
        """Verify only aggregated and simulated are accepted"""
        with pytest.raises(ValueError, match="HUB_PRICE_SOURCE"):
            validate_configuration(make_settings(hub_price_source="random"))

    def test_rejects_non_positive_history_limit(self):
        """Verify history must hold at least one point"""
        with pytest.raises(ValueError, match="HISTORY_LIMIT"):
            validate_configuration(make_settings(history_limit=0))

    def test_rejects_inverted_polling_intervals(self):
        """Verify the rate-limited interval cannot be shorter than the normal one"""
        with pytest.raises(ValueError, match="polling"):
            validate_configuration(make_settings(poll_interval=60, rate_limited_poll_interval=30))

    def test_rejects_invalid_log_level(self):
        """Verify unknown log levels are refused"""
        with pytest.raises(ValueError, match="LOG_LEVEL"):
            validate_configuration(make_settings(log_level="VERBOSE"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
