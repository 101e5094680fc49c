"""
Provider Initialization Module

Builds the provider context: one catalog, one adapter factory and one
realtime connection manager, created once at startup and passed to
whatever needs them.
"""
from typing import Any, Callable, Optional

from loguru import logger

from marketlink.config import Settings, settings as default_settings
from marketlink.data_providers.adapters.alpha_vantage import AlphaVantageAdapter, create_alpha_vantage_provider
from marketlink.data_providers.adapters.base import BaseAdapter
from marketlink.data_providers.adapters.custom import CustomApiAdapter
from marketlink.data_providers.adapters.finnhub import FinnhubAdapter, create_finnhub_provider
from marketlink.data_providers.adapters.indian_api import IndianApiAdapter, create_indian_api_provider
from marketlink.data_providers.models import (
    Credentials,
    CustomApiConfiguration,
    CustomApiValidationResult,
    DetectedStructure,
    OperationKind,
    Provider,
    UserConfiguration,
)
from marketlink.data_providers.registry import AdapterFactory, ConnectionTestResult, ProviderCatalog
from marketlink.data_providers.structure_detector import detect_structure, validate_custom_api
from marketlink.realtime.connection_manager import ConnectionManager


def builtin_constructors(settings: Settings) -> dict[str, Callable[[], BaseAdapter]]:
    """Adapter constructors for the built-in providers, keyed by provider id."""
    timeout = settings.HTTP_TIMEOUT_SECONDS
    return {
        "alpha-vantage": lambda: AlphaVantageAdapter(
            create_alpha_vantage_provider(settings.ALPHA_VANTAGE_BASE_URL), timeout
        ),
        "finnhub": lambda: FinnhubAdapter(
            create_finnhub_provider(settings.FINNHUB_BASE_URL), timeout
        ),
        "indian-api": lambda: IndianApiAdapter(
            create_indian_api_provider(settings.INDIAN_API_BASE_URL), timeout
        ),
    }


class ProviderContext:
    """
    Process-wide handle on the provider registry and realtime feeds.

    Usage:
        context = create_provider_context()
        adapter = context.get_or_create(user_config)
        quote = await adapter.get_quote(QuoteRequest("AAPL"), user_config.credentials)
        ...
        await context.close()
    """

    def __init__(
        self,
        catalog: ProviderCatalog,
        factory: AdapterFactory,
        connection_manager: ConnectionManager,
        settings: Settings,
    ):
        self.catalog = catalog
        self.factory = factory
        self.connection_manager = connection_manager
        self.settings = settings

    # ==================== Registry ====================

    def register_provider(self, provider_id: str, constructor: Callable[[], BaseAdapter]) -> Provider:
        return self.catalog.register(provider_id, constructor)

    async def register_custom_api(self, config: CustomApiConfiguration) -> Provider:
        """
        Register (or re-register) a custom API as ``custom-<config id>``.

        Adapters already cached for that provider id are dropped so the
        next resolution sees the new configuration.
        """
        timeout = self.settings.HTTP_TIMEOUT_SECONDS
        currency = self.settings.DEFAULT_CURRENCY
        provider = self.catalog.register(
            config.provider_id,
            lambda: CustomApiAdapter(config, timeout_seconds=timeout, default_currency=currency),
        )
        evicted = await self.factory.clear_provider(config.provider_id)
        if evicted:
            logger.info(f"Dropped {evicted} cached adapter(s) for {config.provider_id}")
        return provider

    def create_adapter(self, provider_id: str) -> Optional[BaseAdapter]:
        return self.catalog.create_adapter(provider_id)

    def get_or_create(self, config: UserConfiguration) -> Optional[BaseAdapter]:
        return self.factory.get_or_create(config)

    async def validate_credentials(self, provider_id: str, credentials: Credentials) -> bool:
        return await self.factory.validate_credentials(provider_id, credentials)

    async def test_connection(self, config: UserConfiguration) -> ConnectionTestResult:
        return await self.factory.test_connection(config)

    # ==================== Structure Detection ====================

    def detect_structure(self, sample_response: Any, expected_kind: OperationKind | str) -> DetectedStructure:
        return detect_structure(sample_response, expected_kind)

    async def validate_custom_api(
        self,
        base_url: str,
        endpoint: str,
        auth_headers: dict[str, str],
        test_symbol: Optional[str] = None,
    ) -> CustomApiValidationResult:
        return await validate_custom_api(
            base_url,
            endpoint,
            auth_headers,
            test_symbol=test_symbol or self.settings.DEFAULT_TEST_SYMBOL,
            timeout_seconds=self.settings.HTTP_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        """Close realtime connections and cached adapter sessions."""
        await self.connection_manager.cleanup()
        await self.factory.close()
        logger.info("Provider context closed")


def create_provider_context(
    settings: Optional[Settings] = None,
    connection_manager: Optional[ConnectionManager] = None,
) -> ProviderContext:
    """
    Build the provider context and register the built-in providers.

    Only providers listed in ``ENABLED_PROVIDERS`` are registered, or all
    of them when the list is empty.
    """
    settings = settings or default_settings
    catalog = ProviderCatalog()

    enabled = set(settings.ENABLED_PROVIDERS)
    for provider_id, constructor in builtin_constructors(settings).items():
        if enabled and provider_id not in enabled:
            logger.debug(f"Skipping disabled provider {provider_id}")
            continue
        catalog.register(provider_id, constructor)

    unknown = enabled - set(builtin_constructors(settings))
    if unknown:
        logger.warning(f"Unknown providers in ENABLED_PROVIDERS: {sorted(unknown)}")

    logger.info(f"Provider context ready with {len(catalog.get_all_providers())} providers")
    return ProviderContext(
        catalog=catalog,
        factory=AdapterFactory(catalog),
        connection_manager=connection_manager or ConnectionManager(),
        settings=settings,
    )
