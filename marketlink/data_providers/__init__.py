"""
Data Providers Package

Canonical model, provider adapters, field mapping and structure
detection. The provider context lives in provider_init.
"""
from marketlink.data_providers.models import (
    ApiFeature,
    ApiResponse,
    CompanyProfile,
    Credentials,
    CustomApiConfiguration,
    HistoricalPoint,
    NewsItem,
    Provider,
    Quote,
    UserConfiguration,
)
from marketlink.data_providers.registry import (
    AdapterFactory,
    ConnectionTestResult,
    ProviderCatalog,
    format_provider_info,
)
from marketlink.data_providers.structure_detector import detect_structure, validate_custom_api

__all__ = [
    # Model
    "ApiFeature",
    "ApiResponse",
    "CompanyProfile",
    "Credentials",
    "CustomApiConfiguration",
    "HistoricalPoint",
    "NewsItem",
    "Provider",
    "Quote",
    "UserConfiguration",
    # Registry
    "AdapterFactory",
    "ConnectionTestResult",
    "ProviderCatalog",
    "format_provider_info",
    # Structure detection
    "detect_structure",
    "validate_custom_api",
]
