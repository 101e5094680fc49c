"""
Canonical Data Model

Normalized entities shared by every adapter, the field mapper and the
structure detector. These are plain data contracts with no behavior
beyond small serialization helpers.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApiFeature(str, Enum):
    """Capability tags a provider can declare."""
    REAL_TIME_QUOTES = "real-time-quotes"
    HISTORICAL_DATA = "historical-data"
    COMPANY_PROFILE = "company-profile"
    MARKET_NEWS = "market-news"
    CRYPTO_DATA = "crypto-data"
    FOREX_DATA = "forex-data"
    INDIAN_STOCKS = "indian-stocks"
    US_STOCKS = "us-stocks"
    GLOBAL_STOCKS = "global-stocks"


class TimeFrame(str, Enum):
    """Supported timeframes for historical data."""
    MINUTE_1 = "1min"
    MINUTE_5 = "5min"
    MINUTE_15 = "15min"
    MINUTE_30 = "30min"
    HOUR_1 = "1hour"
    HOUR_4 = "4hour"
    DAY = "1day"
    WEEK = "1week"
    MONTH = "1month"


# ==================== Provider & Configuration ====================

@dataclass(frozen=True)
class Provider:
    """Immutable descriptor of an external data source."""
    id: str
    name: str
    description: str
    base_url: str
    requires_api_key: bool
    rate_limit_per_minute: int
    supported_features: frozenset[ApiFeature] = frozenset()
    documentation_url: str = ""

    def supports(self, feature: ApiFeature | str) -> bool:
        try:
            return ApiFeature(feature) in self.supported_features
        except ValueError:
            # Unknown tags are simply unsupported
            return False


@dataclass
class Credentials:
    """API credentials plus optional per-user overrides."""
    api_key: str = ""
    base_url: Optional[str] = None
    rate_limit_per_minute: Optional[int] = None


@dataclass
class UserConfiguration:
    """A user's saved binding of credentials to a provider."""
    id: str
    provider_id: str
    name: str
    credentials: Credentials
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    last_used: Optional[datetime] = None


# ==================== Canonical Entities ====================

@dataclass
class Quote:
    """Normalized quote data structure."""
    symbol: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: int = 0
    high: Optional[float] = None
    low: Optional[float] = None
    open: Optional[float] = None
    previous_close: Optional[float] = None
    timestamp: datetime = field(default_factory=utc_now)
    currency: str = "USD"
    exchange: Optional[str] = None

    def __post_init__(self):
        self.symbol = self.symbol.upper()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "change_percent": self.change_percent,
            "volume": self.volume,
            "high": self.high,
            "low": self.low,
            "open": self.open,
            "previous_close": self.previous_close,
            "timestamp": self.timestamp.isoformat(),
            "currency": self.currency,
            "exchange": self.exchange,
        }


@dataclass
class HistoricalPoint:
    """Normalized OHLCV bar."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass
class CompanyProfile:
    symbol: str
    name: str
    description: str = ""
    sector: str = ""
    industry: str = ""
    market_cap: Optional[float] = None
    employees: Optional[int] = None
    website: Optional[str] = None
    country: Optional[str] = None
    exchange: Optional[str] = None

    def __post_init__(self):
        self.symbol = self.symbol.upper()


@dataclass
class NewsItem:
    id: str
    title: str
    summary: str = ""
    url: str = ""
    source: str = ""
    published_at: datetime = field(default_factory=utc_now)
    symbols: list[str] = field(default_factory=list)
    sentiment: Optional[str] = None  # positive | negative | neutral


# ==================== Requests & Results ====================

@dataclass
class QuoteRequest:
    symbol: str


@dataclass
class HistoricalDataRequest:
    symbol: str
    interval: str = TimeFrame.DAY.value
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: Optional[int] = None


@dataclass
class NewsRequest:
    symbols: list[str] = field(default_factory=list)
    limit: Optional[int] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


@dataclass
class RateLimitInfo:
    remaining: int
    reset_at: datetime


@dataclass
class ApiResponse(Generic[T]):
    """
    Discriminated result of an adapter operation.

    Either ``success`` is True and ``data`` holds the canonical payload, or
    it is False and ``error`` holds a message.
    """
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    rate_limit: Optional[RateLimitInfo] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: T, rate_limit: Optional[RateLimitInfo] = None, **metadata) -> "ApiResponse[T]":
        return cls(success=True, data=data, rate_limit=rate_limit, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata) -> "ApiResponse[T]":
        return cls(success=False, error=error, metadata=metadata)


# ==================== Custom API Configuration ====================

class AuthType(str, Enum):
    NONE = "none"
    API_KEY = "api_key"
    BEARER_TOKEN = "bearer_token"
    BASIC_AUTH = "basic_auth"
    CUSTOM_HEADER = "custom_header"


class FieldTransform(str, Enum):
    NONE = "none"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    PARSE_FLOAT = "parse_float"
    PARSE_DATE = "parse_date"
    MULTIPLY_100 = "multiply_100"
    DIVIDE_100 = "divide_100"


class FieldDataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class OperationKind(str, Enum):
    """Canonical operations a custom API can wire an endpoint to."""
    QUOTE = "quote"
    HISTORICAL = "historical"
    PROFILE = "profile"
    NEWS = "news"
    SEARCH = "search"


@dataclass
class FieldMapping:
    """Rule translating one source path into one canonical field."""
    source_field: str
    target_field: str
    data_type: FieldDataType = FieldDataType.STRING
    transform: FieldTransform = FieldTransform.NONE
    default_value: Any = None
    required: bool = False


@dataclass
class CustomApiEndpoint:
    """Endpoint template; ``url`` may hold {symbol}, {interval}, {from}, {to}, {limit}."""
    url: str
    name: str = ""
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, str] = field(default_factory=dict)
    items_path: Optional[str] = None


@dataclass
class CustomApiConfiguration:
    """Declarative description of a user-supplied REST API."""
    id: str
    name: str
    base_url: str
    auth_type: AuthType = AuthType.NONE
    auth_config: dict[str, str] = field(default_factory=dict)
    endpoints: dict[OperationKind, CustomApiEndpoint] = field(default_factory=dict)
    field_mappings: dict[OperationKind, list[FieldMapping]] = field(default_factory=dict)
    rate_limit_per_minute: int = 60
    test_symbol: str = "AAPL"
    description: str = ""
    supported_symbols: list[str] = field(default_factory=list)
    validated: bool = False

    def __post_init__(self):
        # Accept plain strings from deserialized configs
        self.auth_type = AuthType(self.auth_type)
        self.endpoints = {OperationKind(k): v for k, v in self.endpoints.items()}
        self.field_mappings = {OperationKind(k): v for k, v in self.field_mappings.items()}

    @property
    def provider_id(self) -> str:
        return f"custom-{self.id}"


# ==================== Detection & Validation ====================

class ValidationErrorCode(str, Enum):
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    FIELD_ACCESS_ERROR = "FIELD_ACCESS_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"


@dataclass
class ValidationError:
    """A validation problem, reported in lists rather than raised."""
    field: str
    message: str
    code: ValidationErrorCode
    severity: str = "error"  # error | warning


@dataclass
class FieldCandidate:
    target_field: str
    confidence: float
    reason: str


@dataclass
class DetectedField:
    path: str
    value: Any
    inferred_type: str
    candidate_mappings: list[FieldCandidate] = field(default_factory=list)


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class DetectedStructure:
    sample_response: Any
    detected_fields: list[DetectedField]
    suggested_mappings: list[FieldMapping]
    confidence: ConfidenceLevel
    items_path: Optional[str] = None  # list-shaped kinds only


@dataclass
class CustomApiValidationResult:
    is_valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)
    detected_structure: Optional[DetectedStructure] = None
    suggested_improvements: list[str] = field(default_factory=list)
