"""
Layer normalizer for provider payloads.

Maps raw provider responses into one canonical schema per layer type and
rates the completeness of the result. Normalization never raises on bad
upstream data; it returns an error-shaped payload instead so callers can still
produce a typed response.
"""

import time
from typing import Any, Callable, Optional

from geolayers.core.models import DataQuality, LayerType

AQI_LEVELS = {
    1: "Good",
    2: "Fair",
    3: "Moderate",
    4: "Poor",
    5: "Very Poor",
}

POLLUTANTS = ("pm2_5", "pm10", "co", "no2", "o3", "so2")
POLLUTANT_UNIT = "μg/m³"

TEMPERATURE_UNITS = {
    "standard": "kelvin",
    "metric": "celsius",
    "imperial": "fahrenheit",
}

SPEED_UNITS = {
    "standard": "m/s",
    "metric": "m/s",
    "imperial": "mph",
}


def _to_celsius(value: Optional[float], unit: str) -> Optional[float]:
    if value is None:
        return None
    if unit == "kelvin":
        return round(value - 273.15, 1)
    if unit == "fahrenheit":
        return round((value - 32) * 5 / 9, 1)
    return round(value, 1)


def _leaves(value: Any):
    """Yield every non-container value inside nested dicts and lists."""
    if isinstance(value, dict):
        for item in value.values():
            yield from _leaves(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _leaves(item)
    else:
        yield value


class LayerNormalizer:
    """Normalize provider payloads and assess their quality.

    Each provider id a layer understands maps to one private parser; ids the
    normalizer does not know are reported as malformed input.
    """

    # Completeness thresholds for quality ratings
    HIGH_COMPLETENESS = 0.9
    MEDIUM_COMPLETENESS = 0.7

    # Crime count thresholds
    CRIME_RATE_THRESHOLDS = ((5, "low"), (15, "medium"))
    SAFETY_LEVEL_THRESHOLDS = (
        (5, "very_safe"),
        (10, "safe"),
        (20, "moderate"),
        (35, "unsafe"),
    )

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.time
        self._parsers: dict[tuple[LayerType, str], Callable[..., dict]] = {
            (LayerType.WEATHER, "openweathermap"): self._weather_openweathermap,
            (LayerType.POLLUTION, "openweathermap"): self._pollution_openweathermap,
            (LayerType.CRIME, "police_uk"): self._crime_police_uk,
        }

    def supports(self, layer_type: LayerType, source: str) -> bool:
        return (layer_type, source) in self._parsers

    def standardize(
        self,
        raw_payload: Any,
        source: str,
        layer_type: LayerType,
        *,
        units: Optional[str] = None,
        period: Optional[str] = None,
    ) -> dict[str, Any]:
        """Convert a raw provider payload into the canonical schema.

        Args:
            raw_payload: Decoded JSON from the provider.
            source: Provider id (e.g. "openweathermap", "police_uk").
            layer_type: Layer the payload belongs to.
            units: Unit system of a weather payload (standard, metric, imperial).
            period: Period label of a crime payload (e.g. "2024-05").

        Returns:
            ``{type, source, timestamp, data}``, or an error payload with
            ``source="error"`` and ``data=None`` when the input is malformed.
        """
        parser = self._parsers.get((layer_type, source))
        if parser is None:
            return self.error_payload(layer_type, f"Unsupported source for {layer_type}: {source}")

        try:
            data = parser(raw_payload, units=units, period=period)
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            return self.error_payload(layer_type, f"Malformed {source} payload: {e}")

        return {
            "type": layer_type.value,
            "source": source,
            "timestamp": int(self.clock()),
            "data": data,
        }

    def error_payload(self, layer_type: LayerType, message: str) -> dict[str, Any]:
        """Build the error-shaped payload returned for malformed input."""
        return {
            "type": layer_type.value,
            "source": "error",
            "timestamp": int(self.clock()),
            "error": message,
            "data": None,
        }

    @staticmethod
    def is_error(payload: Any) -> bool:
        """Return True if a payload is the normalizer's error shape."""
        return isinstance(payload, dict) and payload.get("source") == "error"

    def assess_quality(self, payload: Any) -> DataQuality:
        """Rate the completeness of a payload.

        Every leaf value is enumerated recursively; ``None`` and empty strings
        count as missing.

        Returns:
            HIGH when at least 90% of leaves are populated, MEDIUM at 70%,
            LOW otherwise (including empty or non-structured payloads).
        """
        if not isinstance(payload, (dict, list, tuple)) or not payload:
            return DataQuality.LOW

        total = 0
        missing = 0
        for value in _leaves(payload):
            total += 1
            if value is None or value == "":
                missing += 1

        if total == 0:
            return DataQuality.LOW

        completeness = 1 - (missing / total)
        if completeness >= self.HIGH_COMPLETENESS:
            return DataQuality.HIGH
        if completeness >= self.MEDIUM_COMPLETENESS:
            return DataQuality.MEDIUM
        return DataQuality.LOW

    @staticmethod
    def aqi_level(aqi: Any) -> str:
        """Return the label for an OpenWeatherMap AQI index (1-5)."""
        return AQI_LEVELS.get(aqi, "Unknown")

    def crime_rate(self, total_crimes: int) -> str:
        for limit, label in self.CRIME_RATE_THRESHOLDS:
            if total_crimes < limit:
                return label
        return "high"

    def safety_level(self, total_crimes: int) -> str:
        for limit, label in self.SAFETY_LEVEL_THRESHOLDS:
            if total_crimes < limit:
                return label
        return "very_unsafe"

    def _weather_openweathermap(
        self,
        raw: dict[str, Any],
        units: Optional[str] = None,
        **_: Any,
    ) -> dict[str, Any]:
        units = units or "standard"
        temperature_unit = TEMPERATURE_UNITS.get(units, "kelvin")

        main = raw.get("main") or {}
        wind = raw.get("wind") or {}
        conditions = raw.get("weather") or [{}]
        condition = conditions[0]
        temperature = main.get("temp")

        return {
            "temperature": {
                "value": temperature,
                "unit": temperature_unit,
                "derived_celsius": _to_celsius(temperature, temperature_unit),
            },
            "humidity": {
                "value": main.get("humidity"),
                "unit": "percent",
            },
            "pressure": {
                "value": main.get("pressure"),
                "unit": "hPa",
            },
            "wind": {
                "speed": wind.get("speed"),
                "direction": wind.get("deg"),
                "unit": SPEED_UNITS.get(units, "m/s"),
            },
            "description": condition.get("description"),
            "icon": condition.get("icon"),
            "visibility": raw.get("visibility"),
        }

    def _pollution_openweathermap(self, raw: dict[str, Any], **_: Any) -> dict[str, Any]:
        entries = raw.get("list") or [{}]
        entry = entries[0]
        aqi = (entry.get("main") or {}).get("aqi")
        components = entry.get("components") or {}

        data: dict[str, Any] = {
            "aqi": {
                "value": aqi,
                "level": self.aqi_level(aqi),
                "scale": "1-5",
            },
        }
        for pollutant in POLLUTANTS:
            data[pollutant] = {
                "value": components.get(pollutant),
                "unit": POLLUTANT_UNIT,
            }
        return data

    def _crime_police_uk(
        self,
        raw: list[dict[str, Any]],
        period: Optional[str] = None,
        **_: Any,
    ) -> dict[str, Any]:
        if not isinstance(raw, list):
            raise TypeError(f"expected a list of crimes, got {type(raw).__name__}")

        categories: dict[str, int] = {}
        for crime in raw:
            category = crime.get("category") or "unknown"
            categories[category] = categories.get(category, 0) + 1

        total = len(raw)
        return {
            "total_crimes": total,
            "categories": categories,
            "crime_rate": self.crime_rate(total),
            "safety_level": self.safety_level(total),
            "period": period or "last_month",
        }
