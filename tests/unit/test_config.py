"""
Unit Tests - Configuration
Tests for application settings, realtime config and logging setup.
"""
from loguru import logger

from marketlink.config import Settings
from marketlink.realtime.connection_manager import WebSocketConfig
from marketlink.utils.logger import get_logger, setup_logging


class TestSettings:
    """Tests for Settings configuration class."""

    def test_defaults(self):
        settings = Settings()
        assert settings.APP_NAME == "MarketLink"
        assert settings.HTTP_TIMEOUT_SECONDS == 30.0
        assert settings.WS_RECONNECT_INTERVAL == 5.0
        assert settings.WS_MAX_RECONNECT_ATTEMPTS == 5
        assert settings.DEFAULT_TEST_SYMBOL == "AAPL"

    def test_enabled_providers_comma_separated(self):
        settings = Settings(ENABLED_PROVIDERS="finnhub, indian-api")
        assert settings.ENABLED_PROVIDERS == ["finnhub", "indian-api"]

    def test_enabled_providers_json(self):
        settings = Settings(ENABLED_PROVIDERS='["alpha-vantage"]')
        assert settings.ENABLED_PROVIDERS == ["alpha-vantage"]

    def test_enabled_providers_empty(self):
        assert Settings(ENABLED_PROVIDERS="").ENABLED_PROVIDERS == []

    def test_is_production(self):
        assert Settings(APP_ENV="production").is_production is True
        assert Settings(APP_ENV="testing").is_production is False


class TestWebSocketConfig:
    """Tests for per-provider realtime configuration."""

    def test_finnhub_config(self):
        settings = Settings(WS_RECONNECT_INTERVAL=2.0, WS_MAX_RECONNECT_ATTEMPTS=3)
        config = settings.websocket_config("finnhub", api_key="abc")

        assert isinstance(config, WebSocketConfig)
        assert config.url == "wss://ws.finnhub.io?token=abc"
        assert config.reconnect_interval == 2.0
        assert config.max_reconnect_attempts == 3

    def test_url_override(self):
        config = Settings(FINNHUB_WS_URL="wss://mirror.test").websocket_config("finnhub")
        assert config.url == "wss://mirror.test"

    def test_unknown_provider(self):
        assert Settings().websocket_config("indian-api") is None


class TestLogging:
    """Tests for loguru sink setup."""

    def test_file_sinks(self, tmp_path):
        setup_logging(Settings(LOG_DIR=str(tmp_path / "logs")))
        try:
            get_logger("tests").error("provider exploded")
            logger.info("lifecycle event")

            all_log = (tmp_path / "logs" / "marketlink.log").read_text()
            error_log = (tmp_path / "logs" / "error.log").read_text()
            assert "provider exploded" in all_log
            assert "lifecycle event" in all_log
            assert "provider exploded" in error_log
            assert "lifecycle event" not in error_log
        finally:
            setup_logging(Settings())

    def test_console_only(self, tmp_path):
        setup_logging(Settings(LOG_DIR=""))
        assert list(tmp_path.iterdir()) == []
