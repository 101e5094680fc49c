"""
Provider Adapters Package

Contains adapters for the built-in providers and the configuration-driven
custom adapter. Each adapter implements the BaseAdapter interface.
"""
from marketlink.data_providers.adapters.base import (
    AdapterStats,
    BaseAdapter,
    operation,
)
from marketlink.data_providers.adapters.alpha_vantage import (
    AlphaVantageAdapter,
    create_alpha_vantage_provider,
)
from marketlink.data_providers.adapters.finnhub import (
    FinnhubAdapter,
    create_finnhub_provider,
)
from marketlink.data_providers.adapters.indian_api import (
    IndianApiAdapter,
    create_indian_api_provider,
)
from marketlink.data_providers.adapters.custom import (
    CustomApiAdapter,
    create_custom_provider,
)

__all__ = [
    # Base
    "AdapterStats",
    "BaseAdapter",
    "operation",
    # Built-in providers
    "AlphaVantageAdapter",
    "create_alpha_vantage_provider",
    "FinnhubAdapter",
    "create_finnhub_provider",
    "IndianApiAdapter",
    "create_indian_api_provider",
    # Custom APIs
    "CustomApiAdapter",
    "create_custom_provider",
]
