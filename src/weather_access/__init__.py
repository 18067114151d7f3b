"""Network-resilient, location-aware weather data access."""

from __future__ import annotations

from .adaptive import AdaptiveConfigProvider
from .cache import CacheEntry, GeoCache, compute_ttl_ms, make_cache_key
from .classifier import ErrorClassifier, classify, log_classified
from .client import ResilientDataClient, ResilientDataClientDependencies
from .config import (
    LOCATION_CACHE_CONFIG,
    WEATHER_CACHE_CONFIG,
    ClassifierConfig,
    GeoCacheConfig,
    HttpClientConfig,
    RetryPolicy,
    StatusMonitorConfig,
)
from .errors import (
    CacheError,
    ClassifiedError,
    ErrorKind,
    ProbeError,
    RecoveryAction,
    RetryHint,
    TransportError,
    WeatherAccessError,
)
from .eventbus import EventBus, SubscriptionHandle
from .http import HttpConnectivityProbe, WeatherHttpClient
from .models import (
    CacheEntryStats,
    CacheStats,
    CacheStrategy,
    Coordinates,
    FetchParams,
    FetchResult,
    LinkReading,
    LinkType,
    LocationAccuracy,
    LocationSample,
    NetworkStatus,
)
from .retry import RetryOrchestrator, RetryOutcome, backoff_delay_ms
from .status import ConnectivityProbe, StatusMonitor, classify_reading
from .telemetry import BufferedTelemetrySink, NullTelemetrySink, TelemetrySink

__all__ = [
    "LOCATION_CACHE_CONFIG",
    "WEATHER_CACHE_CONFIG",
    "AdaptiveConfigProvider",
    "BufferedTelemetrySink",
    "CacheEntry",
    "CacheEntryStats",
    "CacheError",
    "CacheStats",
    "CacheStrategy",
    "ClassifiedError",
    "ClassifierConfig",
    "ConnectivityProbe",
    "Coordinates",
    "ErrorClassifier",
    "ErrorKind",
    "EventBus",
    "FetchParams",
    "FetchResult",
    "GeoCache",
    "GeoCacheConfig",
    "HttpClientConfig",
    "HttpConnectivityProbe",
    "LinkReading",
    "LinkType",
    "LocationAccuracy",
    "LocationSample",
    "NetworkStatus",
    "NullTelemetrySink",
    "ProbeError",
    "RecoveryAction",
    "ResilientDataClient",
    "ResilientDataClientDependencies",
    "RetryHint",
    "RetryOrchestrator",
    "RetryOutcome",
    "RetryPolicy",
    "StatusMonitor",
    "StatusMonitorConfig",
    "SubscriptionHandle",
    "TelemetrySink",
    "TransportError",
    "WeatherAccessError",
    "WeatherHttpClient",
    "backoff_delay_ms",
    "classify",
    "classify_reading",
    "compute_ttl_ms",
    "log_classified",
    "make_cache_key",
]
