"""
Geolayers

Fetches, caches, normalizes and persists environmental layer data (weather,
air pollution and crime statistics) for geographic coordinates from
third-party providers, with per-provider rate limits and a durable cache.

Quick Start:
    >>> import asyncio
    >>> from geolayers import query
    >>> envelope = asyncio.run(query(
    ...     {"action": "get_current", "layer": "weather", "lat": 44.43, "lon": 26.10},
    ...     config_path="geolayers.toml",
    ... ))
    >>> envelope["source"]
    'api'

    # Or use synchronous API:
    >>> from geolayers import query_sync
    >>> envelope = query_sync({"cache_action": "stats"}, config_path="geolayers.toml")
"""

__version__ = "0.1.0"

# High-level API (recommended for most users)
from geolayers.api import query, query_sync

# Core components (for advanced usage)
from geolayers.cache.sqlite import CacheLayer
from geolayers.core.config import ProviderConfig, Settings, load_settings

# Exceptions
from geolayers.core.exceptions import (
    CacheError,
    ConfigurationError,
    DisabledServiceError,
    GeoLayersError,
    NoDataError,
    RateLimitExceeded,
    RepositoryError,
    UnsupportedOperation,
    UpstreamFormatError,
    UpstreamTransportError,
    ValidationError,
)

# Data models
from geolayers.core.models import (
    Bounds,
    DataQuality,
    LayerRecord,
    LayerResponse,
    LayerType,
    Location,
    RequestState,
    ResponseSource,
)
from geolayers.core.normalizer import LayerNormalizer
from geolayers.providers import CrimeGateway, LayerGateway, PollutionGateway, WeatherGateway
from geolayers.ratelimit.sqlite import RateLimiter
from geolayers.repository.sqlite import LayerRepository
from geolayers.service import LayerService

__all__ = [
    # Version
    "__version__",
    # High-level API
    "query",
    "query_sync",
    # Models
    "Bounds",
    "DataQuality",
    "LayerRecord",
    "LayerResponse",
    "LayerType",
    "Location",
    "RequestState",
    "ResponseSource",
    # Configuration
    "ProviderConfig",
    "Settings",
    "load_settings",
    # Core
    "CacheLayer",
    "RateLimiter",
    "LayerNormalizer",
    "LayerRepository",
    "LayerService",
    "LayerGateway",
    "WeatherGateway",
    "PollutionGateway",
    "CrimeGateway",
    # Exceptions
    "GeoLayersError",
    "ConfigurationError",
    "DisabledServiceError",
    "RateLimitExceeded",
    "UpstreamTransportError",
    "UpstreamFormatError",
    "ValidationError",
    "UnsupportedOperation",
    "NoDataError",
    "CacheError",
    "RepositoryError",
]
