"""
Provider Catalog & Adapter Factory

The catalog maps provider ids to adapter constructors and holds each
provider's immutable descriptor. The factory resolves a user
configuration to a cached adapter instance, one per
(provider id, configuration id).
"""
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterable, Optional

from loguru import logger

from marketlink.data_providers.adapters.base import BaseAdapter
from marketlink.data_providers.models import (
    ApiFeature,
    Credentials,
    Provider,
    QuoteRequest,
    UserConfiguration,
)
from marketlink.utils.exceptions import UnsupportedProviderError


AdapterConstructor = Callable[[], BaseAdapter]

# Region -> feature tag a provider must carry
REGION_FEATURES = {
    "us": ApiFeature.US_STOCKS,
    "india": ApiFeature.INDIAN_STOCKS,
    "global": ApiFeature.GLOBAL_STOCKS,
}


class ProviderCatalog:
    """Registry of adapter constructors keyed by provider id."""

    def __init__(self):
        self._constructors: dict[str, AdapterConstructor] = {}
        self._providers: dict[str, Provider] = {}

    def register(self, provider_id: str, constructor: AdapterConstructor) -> Provider:
        """
        Register (or replace) an adapter constructor.

        The constructor is called once here to capture the provider
        descriptor; adapters open no connections until first use.
        """
        provider = constructor().provider
        self._constructors[provider_id] = constructor
        self._providers[provider_id] = provider
        logger.debug(f"Registered provider {provider_id}")
        return provider

    def create_adapter(self, provider_id: str) -> Optional[BaseAdapter]:
        """Build a new adapter instance, or None for an unknown id."""
        constructor = self._constructors.get(provider_id)
        return constructor() if constructor else None

    def get_all_providers(self) -> list[Provider]:
        return list(self._providers.values())

    def get_provider(self, provider_id: str) -> Optional[Provider]:
        return self._providers.get(provider_id)

    def is_supported(self, provider_id: str) -> bool:
        return provider_id in self._constructors

    def get_providers_by_feature(self, feature: ApiFeature | str) -> list[Provider]:
        return [p for p in self._providers.values() if p.supports(feature)]

    # ==================== Selection Helpers ====================

    def supports_all_features(self, provider_id: str, features: Iterable[ApiFeature | str]) -> bool:
        provider = self.get_provider(provider_id)
        if provider is None:
            return False
        return all(provider.supports(f) for f in features)

    def get_recommended_providers(
        self,
        region: Optional[str] = None,
        features: Optional[Iterable[ApiFeature | str]] = None,
    ) -> list[Provider]:
        """
        Filter by region tag and by any of ``features``.

        Sorted by rate limit, highest first.
        """
        providers = self.get_all_providers()

        if region in REGION_FEATURES:
            providers = [p for p in providers if p.supports(REGION_FEATURES[region])]

        if features:
            wanted = list(features)
            providers = [p for p in providers if any(p.supports(f) for f in wanted)]

        return sorted(providers, key=lambda p: p.rate_limit_per_minute, reverse=True)

    def get_best_provider(
        self,
        features: Iterable[ApiFeature | str],
        min_rate_limit: Optional[int] = None,
        region: Optional[str] = None,
    ) -> Optional[Provider]:
        """Highest-rate-limit provider supporting every feature."""
        features = list(features)
        for provider in self.get_recommended_providers(region=region, features=features):
            if not all(provider.supports(f) for f in features):
                continue
            if min_rate_limit and provider.rate_limit_per_minute < min_rate_limit:
                continue
            return provider
        return None


def format_provider_info(provider: Provider) -> dict[str, str]:
    """Human-readable summary of a provider."""
    return {
        "name": provider.name,
        "description": provider.description,
        "features": ", ".join(sorted(f.value for f in provider.supported_features)),
        "rate_limit": f"{provider.rate_limit_per_minute} requests/minute",
        "documentation": provider.documentation_url,
    }


@dataclass
class ConnectionTestResult:
    success: bool
    error: Optional[str] = None


class AdapterFactory:
    """
    Resolves user configurations to cached adapter instances.

    Cache keys are ``(provider_id, config_id)`` tuples. get-or-create runs
    under a lock, so concurrent resolutions of one key share an instance.
    """

    def __init__(self, catalog: ProviderCatalog):
        self.catalog = catalog
        self._instances: dict[tuple[str, str], BaseAdapter] = {}
        self._lock = Lock()

    def get_or_create(self, config: UserConfiguration) -> Optional[BaseAdapter]:
        """Return the cached adapter for ``config``, creating it on first use."""
        key = (config.provider_id, config.id)
        with self._lock:
            adapter = self._instances.get(key)
            if adapter is not None:
                return adapter

            adapter = self.catalog.create_adapter(config.provider_id)
            if adapter is None:
                logger.warning(f"No adapter registered for provider {config.provider_id}")
                return None

            self._instances[key] = adapter
            logger.info(f"Created {config.provider_id} adapter for configuration {config.id}")
            return adapter

    def cached_keys(self) -> list[tuple[str, str]]:
        with self._lock:
            return list(self._instances)

    def _evict(self, predicate: Callable[[tuple[str, str]], bool]) -> list[BaseAdapter]:
        with self._lock:
            keys = [key for key in self._instances if predicate(key)]
            return [self._instances.pop(key) for key in keys]

    async def clear_cache(self, config_id: Optional[str] = None) -> int:
        """
        Drop cached adapters for one configuration id, or all of them.

        Evicted adapters have their HTTP sessions closed.

        Returns:
            Number of adapters evicted
        """
        if config_id is None:
            evicted = self._evict(lambda key: True)
        else:
            evicted = self._evict(lambda key: key[1] == config_id)
        await self._close_all(evicted)
        return len(evicted)

    async def clear_provider(self, provider_id: str) -> int:
        """Drop every cached adapter built for ``provider_id``."""
        evicted = self._evict(lambda key: key[0] == provider_id)
        await self._close_all(evicted)
        return len(evicted)

    async def _close_all(self, adapters: list[BaseAdapter]) -> None:
        for adapter in adapters:
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing {adapter.provider.id} adapter: {e}")

    async def validate_credentials(self, provider_id: str, credentials: Credentials) -> bool:
        """
        Check credentials with a throwaway adapter that is never cached.

        Raises:
            UnsupportedProviderError: If no adapter is registered for the id
        """
        adapter = self.catalog.create_adapter(provider_id)
        if adapter is None:
            raise UnsupportedProviderError(provider_id)
        try:
            return await adapter.validate_credentials(credentials)
        finally:
            await adapter.close()

    async def test_connection(self, config: UserConfiguration) -> ConnectionTestResult:
        """Issue one quote for the provider's test symbol; never raises."""
        try:
            adapter = self.get_or_create(config)
            if adapter is None:
                return ConnectionTestResult(success=False, error="Adapter not found")

            result = await adapter.get_quote(QuoteRequest(symbol=adapter.test_symbol), config.credentials)
            return ConnectionTestResult(success=result.success, error=result.error)
        except Exception as e:
            logger.warning(f"Connection test failed for configuration {config.id}: {e}")
            return ConnectionTestResult(success=False, error=str(e) or "Connection test failed")

    async def close(self) -> None:
        await self.clear_cache()
