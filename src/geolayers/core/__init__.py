"""
Core module for geolayers.

Contains configuration, data models, the layer normalizer, validation and
exceptions.
"""

from geolayers.core.config import ProviderConfig, Settings, load_settings
from geolayers.core.exceptions import (
    CacheError,
    ConfigurationError,
    GeoLayersError,
    RateLimitExceeded,
    RepositoryError,
    ValidationError,
)
from geolayers.core.models import (
    Bounds,
    CacheEntry,
    DataQuality,
    LayerRecord,
    LayerResponse,
    LayerType,
    Location,
    RequestState,
    ResponseSource,
)
from geolayers.core.normalizer import LayerNormalizer

__all__ = [
    # Models
    "Bounds",
    "CacheEntry",
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
    "LayerNormalizer",
    # Exceptions
    "GeoLayersError",
    "ConfigurationError",
    "RateLimitExceeded",
    "ValidationError",
    "CacheError",
    "RepositoryError",
]
