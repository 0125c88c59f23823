"""
Input validation utilities for layer requests.

Provides validation for coordinates, area bounds, layer-specific parameters
and timeframe strings before anything reaches a provider or a store.
"""

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any

from geolayers.core.exceptions import ValidationError
from geolayers.core.models import Bounds, LayerType, Location

# Maximum locations accepted in a single bulk request
MAX_BULK_LOCATIONS = 50

# Maximum response size (10 MB)
MAX_RESPONSE_SIZE = 10 * 1024 * 1024

WEATHER_UNITS = ("standard", "metric", "imperial")

MAX_FORECAST_DAYS = 5
MAX_FORECAST_HOURS = 120

DEFAULT_TIMEFRAME_HOURS = 24

_TIMEFRAME_PATTERN = re.compile(r"(\d+)([hmd])")
_CRIME_DATE_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _as_float(field: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValidationError(field, str(value), "Must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(field, str(value), "Must be a number")
    if not math.isfinite(number):
        raise ValidationError(field, str(value), "Must be a finite number")
    return number


def validate_coordinates(
    lat: Any,
    lon: Any,
    region: Bounds | None = None,
) -> tuple[float, float]:
    """Validate a latitude/longitude pair.

    Args:
        lat: Latitude in degrees.
        lon: Longitude in degrees.
        region: Optional area the point must fall inside.

    Returns:
        The coordinates as floats.

    Raises:
        ValidationError: If the coordinates are missing, out of range or
            outside the configured region.
    """
    lat_f = _as_float("lat", lat)
    lon_f = _as_float("lon", lon)

    if not -90.0 <= lat_f <= 90.0:
        raise ValidationError("lat", str(lat), "Latitude must be between -90 and 90")
    if not -180.0 <= lon_f <= 180.0:
        raise ValidationError("lon", str(lon), "Longitude must be between -180 and 180")

    # 0 is what an absent query parameter decodes to
    if lat_f == 0.0 or lon_f == 0.0:
        raise ValidationError("coordinates", f"{lat},{lon}", "Invalid coordinates provided")

    if region is not None and not region.contains(lat_f, lon_f):
        raise ValidationError(
            "coordinates",
            f"{lat_f},{lon_f}",
            "Coordinates outside the supported region",
        )

    return lat_f, lon_f


def validate_bounds(
    north: Any,
    south: Any,
    east: Any,
    west: Any,
) -> Bounds:
    """Validate an area bounding box.

    Raises:
        ValidationError: If any edge is missing, zero, out of range, or the
            box is inverted.
    """
    edges = {
        "north": _as_float("north", north),
        "south": _as_float("south", south),
        "east": _as_float("east", east),
        "west": _as_float("west", west),
    }

    for name, value in edges.items():
        if value == 0.0:
            raise ValidationError(name, str(value), "Invalid area bounds provided")
        limit = 90.0 if name in ("north", "south") else 180.0
        if not -limit <= value <= limit:
            raise ValidationError(name, str(value), f"Must be between -{limit:.0f} and {limit:.0f}")

    if edges["south"] > edges["north"]:
        raise ValidationError("bounds", f"{south}>{north}", "South edge lies north of north edge")
    if edges["west"] > edges["east"]:
        raise ValidationError("bounds", f"{west}>{east}", "West edge lies east of east edge")

    return Bounds(**edges)


def validate_layer(layer: Any) -> LayerType:
    """Resolve a layer name to a LayerType."""
    if not layer:
        raise ValidationError("layer", "", "Layer cannot be empty")
    try:
        return LayerType(str(layer).lower())
    except ValueError:
        valid = ", ".join(t.value for t in LayerType)
        raise ValidationError("layer", str(layer), f"Unsupported layer type (expected one of: {valid})")


def validate_units(units: Any) -> str:
    if units not in WEATHER_UNITS:
        raise ValidationError("units", str(units), f"Must be one of: {', '.join(WEATHER_UNITS)}")
    return units


def validate_forecast_days(days: Any) -> int:
    return _bounded_int("days", days, 1, MAX_FORECAST_DAYS)


def validate_forecast_hours(hours: Any) -> int:
    return _bounded_int("hours", hours, 1, MAX_FORECAST_HOURS)


def _bounded_int(field: str, value: Any, low: int, high: int) -> int:
    if isinstance(value, bool):
        raise ValidationError(field, str(value), "Must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(field, str(value), "Must be an integer")
    if not low <= number <= high:
        raise ValidationError(field, str(value), f"Must be between {low} and {high}")
    return number


def validate_crime_date(date: str | None, now: datetime | None = None) -> str:
    """Validate a crime period (YYYY-MM), defaulting to the previous month."""
    if date is None:
        now = now or datetime.now(timezone.utc)
        first_of_month = now.replace(day=1)
        return (first_of_month - timedelta(days=1)).strftime("%Y-%m")

    if not _CRIME_DATE_PATTERN.match(str(date)):
        raise ValidationError("date", str(date), "Must use the YYYY-MM format")
    return str(date)


def validate_locations(locations: Any) -> list[Location]:
    """Validate a bulk request location list.

    Only the list itself is checked here. Entry coordinates are left as given
    so that one bad entry fails on its own when it is requested.
    """
    if not locations:
        raise ValidationError("locations", "", "No locations provided for bulk request")
    if not isinstance(locations, list):
        raise ValidationError("locations", type(locations).__name__, "Must be a list")
    if len(locations) > MAX_BULK_LOCATIONS:
        raise ValidationError(
            "locations",
            str(len(locations)),
            f"Maximum {MAX_BULK_LOCATIONS} locations allowed per bulk request",
        )

    return [
        entry if isinstance(entry, Location) else Location.from_dict(entry)
        for entry in locations
    ]


def parse_timeframe(timeframe: Any) -> int:
    """Parse a timeframe string into a number of hours.

    Supports ``<n>h`` (hours), ``<n>d`` (days) and ``<n>m`` (30-day months).
    Anything unparseable falls back to 24 hours.
    """
    match = _TIMEFRAME_PATTERN.search(str(timeframe or ""))
    if not match:
        return DEFAULT_TIMEFRAME_HOURS

    value = int(match.group(1))
    unit = match.group(2)
    if unit == "h":
        return value
    if unit == "d":
        return value * 24
    return value * 24 * 30


def validate_response_size(
    content_length: int | None,
    max_size: int = MAX_RESPONSE_SIZE,
) -> None:
    """Validate that a response size is within acceptable limits.

    Args:
        content_length: The Content-Length header value (may be None).
        max_size: Maximum allowed response size in bytes.

    Raises:
        ValidationError: If the response is too large.
    """
    if content_length is not None and content_length > max_size:
        size_mb = content_length / (1024 * 1024)
        max_mb = max_size / (1024 * 1024)
        raise ValidationError(
            "response_size",
            f"{size_mb:.1f} MB",
            f"Response exceeds maximum size of {max_mb:.0f} MB",
        )
