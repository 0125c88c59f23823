"""
Core data models for the environmental layer subsystem.

This module defines the data structures shared by the cache, the rate limiter,
the layer repository and the provider gateways.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from geolayers.core.exceptions import GeoLayersError, RateLimitExceeded


class LayerType(Enum):
    """Classes of external geospatial datasets."""

    WEATHER = "weather"
    POLLUTION = "pollution"
    CRIME = "crime"

    def __str__(self) -> str:
        return self.value


class DataQuality(Enum):
    """Completeness rating of a normalized payload."""

    HIGH = "high"  # >= 90% of leaves populated
    MEDIUM = "medium"  # >= 70%
    LOW = "low"
    UNKNOWN = "unknown"  # Not yet assessed

    def __str__(self) -> str:
        return self.value


class ResponseSource(Enum):
    """Where the data in a response envelope came from."""

    API = "api"
    CACHE = "cache"
    DATABASE = "database"
    MOCK = "mock"

    def __str__(self) -> str:
        return self.value


class RequestState(Enum):
    """States of a single gateway request."""

    UNCHECKED = "unchecked"
    DISABLED = "disabled"
    RATE_LIMITED = "rate_limited"
    CACHE_HIT = "cache_hit"
    FETCHING = "fetching"
    FETCH_FAILED = "fetch_failed"
    NORMALIZED = "normalized"
    STORED = "stored"
    RETURNED = "returned"
    REJECTED = "rejected"  # Failed validation before any check

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Bounds:
    """Rectangular latitude/longitude area."""

    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lon: float) -> bool:
        """Return True if the point lies inside (or on the edge of) the box."""
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    def to_dict(self) -> dict[str, float]:
        return {
            "north": self.north,
            "south": self.south,
            "east": self.east,
            "west": self.west,
        }

    @classmethod
    def around(cls, lat: float, lon: float, delta: float) -> "Bounds":
        """Build a square box of +/- delta degrees around a point."""
        return cls(
            north=lat + delta,
            south=lat - delta,
            east=lon + delta,
            west=lon - delta,
        )


@dataclass(frozen=True)
class Location:
    """A named point used for bulk requests."""

    lat: float
    lon: float
    name: str | None = None

    @property
    def label(self) -> str:
        """Return the name, or "lat,lon" when the location is unnamed."""
        return self.name or f"{self.lat},{self.lon}"

    @classmethod
    def from_dict(cls, data: Any) -> "Location":
        """Build a location from a bulk request entry.

        Coordinates are not validated; a missing one is kept as None.
        """
        if not isinstance(data, dict):
            data = {}
        return cls(lat=data.get("lat"), lon=data.get("lon"), name=data.get("name"))


@dataclass
class CacheEntry:
    """A single stored cache entry."""

    key: str
    service: str
    endpoint: str
    params: dict[str, Any]
    payload: Any
    created_at: float
    expires_at: float
    size: int = 0


@dataclass
class LayerRecord:
    """Normalized layer data persisted for a coordinate and radius."""

    layer_type: LayerType
    source: str
    latitude: float
    longitude: float
    payload: Any
    radius: int = 1000
    quality: DataQuality = DataQuality.UNKNOWN
    created_at: datetime | None = None
    updated_at: datetime | None = None
    expires_at: datetime | None = None

    def __str__(self) -> str:
        return (
            f"{self.layer_type}/{self.source} @ "
            f"({self.latitude}, {self.longitude}) r={self.radius} [{self.quality}]"
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "layer_type": self.layer_type.value,
            "source": self.source,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "radius": self.radius,
            "payload": self.payload,
            "quality": self.quality.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class LayerResponse:
    """Response envelope returned by every gateway operation."""

    success: bool
    timestamp: int
    data: Any = None
    error: str | None = None
    error_type: str | None = None
    retryable: bool = False
    source: ResponseSource | None = None
    state: RequestState | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        if self.success:
            return f"ok ({self.source})"
        return f"{self.error_type}: {self.error}"

    @classmethod
    def ok(
        cls,
        data: Any,
        source: ResponseSource,
        timestamp: int,
        state: RequestState = RequestState.RETURNED,
    ) -> "LayerResponse":
        """Build a successful envelope."""
        return cls(
            success=True,
            data=data,
            source=source,
            state=state,
            timestamp=timestamp,
        )

    @classmethod
    def from_error(
        cls,
        exc: GeoLayersError,
        timestamp: int,
        state: RequestState | None = None,
    ) -> "LayerResponse":
        """Build a failure envelope from a geolayers exception."""
        details: dict[str, Any] = {}
        if isinstance(exc, RateLimitExceeded) and exc.retry_after is not None:
            details["retry_after"] = exc.retry_after

        return cls(
            success=False,
            error=str(exc),
            error_type=type(exc).__name__,
            retryable=exc.retryable,
            state=state,
            timestamp=timestamp,
            details=details,
        )

    def to_dict(self) -> dict:
        """Convert to the wire envelope."""
        result: dict[str, Any] = {
            "success": self.success,
            "timestamp": self.timestamp,
        }
        if self.success:
            result["data"] = self.data
            result["source"] = self.source.value if self.source else None
        else:
            result["data"] = None
            result["error"] = self.error
            result["error_type"] = self.error_type
            result["retryable"] = self.retryable
            result.update(self.details)
        if self.state is not None:
            result["state"] = self.state.value
        return result
