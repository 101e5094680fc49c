"""
MarketLink - Configuration Settings
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
import json


DEFAULT_STREAM_URLS = {
    "finnhub": "wss://ws.finnhub.io",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # =========================
    # Application Settings
    # =========================
    APP_NAME: str = "MarketLink"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # =========================
    # Logging
    # =========================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = ""  # empty = console only
    LOG_ROTATION: str = "10 MB"
    LOG_RETENTION: str = "30 days"

    # =========================
    # REST Providers
    # =========================
    HTTP_TIMEOUT_SECONDS: float = 30.0
    ALPHA_VANTAGE_BASE_URL: str = "https://www.alphavantage.co"
    FINNHUB_BASE_URL: str = "https://finnhub.io/api/v1"
    INDIAN_API_BASE_URL: str = "https://indianapi.in"

    # Built-in provider ids to register; empty means all of them
    ENABLED_PROVIDERS: List[str] = []

    @field_validator("ENABLED_PROVIDERS", mode="before")
    @classmethod
    def parse_enabled_providers(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return []
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [provider.strip() for provider in v.split(",") if provider.strip()]
        return v

    DEFAULT_TEST_SYMBOL: str = "AAPL"
    DEFAULT_CURRENCY: str = "USD"

    # =========================
    # Realtime Streaming
    # =========================
    WS_RECONNECT_INTERVAL: float = 5.0  # seconds, doubled per attempt
    WS_MAX_RECONNECT_ATTEMPTS: int = 5
    FINNHUB_WS_URL: str = DEFAULT_STREAM_URLS["finnhub"]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    def stream_url(self, provider_id: str) -> Optional[str]:
        """Get the websocket URL configured for a provider, if any."""
        if provider_id == "finnhub":
            return self.FINNHUB_WS_URL
        return DEFAULT_STREAM_URLS.get(provider_id)

    def websocket_config(self, provider_id: str, api_key: str = ""):
        """
        Build the realtime connection config for a provider.

        Finnhub authenticates in the URL as well as with an auth frame,
        so the token is appended when an API key is given.

        Returns:
            WebSocketConfig, or None when no stream URL is known
        """
        from marketlink.realtime.connection_manager import WebSocketConfig

        url = self.stream_url(provider_id)
        if not url:
            return None
        if provider_id == "finnhub" and api_key:
            url = f"{url}?token={api_key}"

        return WebSocketConfig(
            url=url,
            reconnect_interval=self.WS_RECONNECT_INTERVAL,
            max_reconnect_attempts=self.WS_MAX_RECONNECT_ATTEMPTS,
        )


# Create global settings instance
settings = Settings()
