"""
OpenWeatherMap gateway for the air pollution layer.

Adds an analysis block to current readings (health recommendation, severity
score and dominant pollutants) and serves an hourly forecast.
"""

from datetime import datetime, timezone
from typing import Any

from geolayers.core.exceptions import UpstreamFormatError, ValidationError
from geolayers.core.models import LayerResponse, LayerType, RequestState
from geolayers.core.normalizer import POLLUTANTS
from geolayers.core.validation import validate_forecast_hours
from geolayers.providers.base import LayerGateway

# Higher weight for the more harmful pollutants
POLLUTANT_WEIGHTS = {
    "pm2_5": 2.0,
    "pm10": 1.5,
    "no2": 1.0,
    "o3": 1.0,
    "co": 0.5,
    "so2": 0.8,
}

HEALTH_RECOMMENDATIONS = {
    1: "Air quality is good. Perfect for outdoor activities.",
    2: "Air quality is acceptable. Outdoor activities are generally safe.",
    3: "Sensitive individuals should consider limiting outdoor activities.",
    4: "Everyone should limit outdoor activities, especially children and elderly.",
    5: "Avoid outdoor activities. Stay indoors if possible.",
}


def rank_pollutants(components: dict[str, Any]) -> list[str]:
    """Order pollutants by weighted concentration, highest first.

    Missing or non-numeric readings count as zero.
    """
    weighted = {}
    for pollutant, value in components.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            value = 0
        weighted[pollutant] = value * POLLUTANT_WEIGHTS.get(pollutant, 1.0)
    return sorted(weighted, key=lambda p: weighted[p], reverse=True)


class PollutionGateway(LayerGateway):
    """Gateway for the OpenWeatherMap air pollution API."""

    LAYER_TYPE = LayerType.POLLUTION
    SOURCE = "openweathermap"
    BULK_DELAY = 0.15

    CURRENT_PATH = "/air_pollution"
    FORECAST_PATH = "/air_pollution/forecast"

    async def get_current(self, lat: float, lon: float, **_: Any) -> LayerResponse:
        """Get current air pollution for coordinates.

        Returns:
            Envelope with the normalized pollution payload and its analysis.
        """
        try:
            lat, lon = self._validate(lat, lon)
        except ValidationError as e:
            return self._failure(e, RequestState.REJECTED)

        query = {"lat": lat, "lon": lon}

        return await self._run(
            "current",
            query,
            fetch=lambda: self._request(self.CURRENT_PATH, query),
            transform=self._standardize_current,
            location=(lat, lon),
        )

    async def get_forecast(
        self,
        lat: float,
        lon: float,
        hours: int = 24,
        **_: Any,
    ) -> LayerResponse:
        """Get an hourly air pollution forecast for coordinates.

        Args:
            lat: Latitude.
            lon: Longitude.
            hours: Number of hourly entries to return (1-120).
        """
        try:
            lat, lon = self._validate(lat, lon)
            hours = validate_forecast_hours(hours)
        except ValidationError as e:
            return self._failure(e, RequestState.REJECTED)

        query = {"lat": lat, "lon": lon}

        return await self._run(
            "forecast",
            {**query, "hours": hours},
            fetch=lambda: self._request(self.FORECAST_PATH, query),
            transform=lambda raw: self._summarize_forecast(raw, hours),
        )

    async def _request(self, path: str, query: dict[str, Any]) -> Any:
        return await self._get_json(path, {**query, "appid": self.config.api_key or ""})

    def _standardize_current(self, raw: Any) -> dict[str, Any]:
        payload = self._normalize(raw)
        payload["analysis"] = self.analyze(payload["data"])
        return payload

    @staticmethod
    def analyze(data: dict[str, Any]) -> dict[str, Any]:
        """Derive health guidance from a normalized pollution reading.

        Returns:
            Dict with overall_quality, health_recommendations,
            severity_score ((aqi - 1) * 25) and the top three main_pollutants.
        """
        analysis: dict[str, Any] = {
            "overall_quality": "unknown",
            "health_recommendations": [],
            "main_pollutants": [],
            "severity_score": 0,
        }

        aqi = (data.get("aqi") or {}).get("value")
        if aqi not in HEALTH_RECOMMENDATIONS:
            return analysis

        analysis["overall_quality"] = data["aqi"]["level"]
        analysis["severity_score"] = (aqi - 1) * 25
        analysis["health_recommendations"].append(HEALTH_RECOMMENDATIONS[aqi])

        readings = {p: (data.get(p) or {}).get("value") for p in POLLUTANTS}
        analysis["main_pollutants"] = rank_pollutants(readings)[:3]
        return analysis

    def _summarize_forecast(self, raw: Any, hours: int) -> dict[str, Any]:
        try:
            entries = raw["list"][:hours]
            forecasts = []

            for entry in entries:
                reading = self._normalize({"list": [entry]})
                components = entry.get("components") or {}
                ranked = rank_pollutants(components)
                forecasts.append({
                    "datetime": datetime.fromtimestamp(entry["dt"], tz=timezone.utc).isoformat(),
                    "timestamp": entry["dt"],
                    "aqi": reading["data"]["aqi"],
                    "main_pollutant": ranked[0] if ranked else None,
                    "components": components,
                })
        except (KeyError, IndexError, TypeError, ValueError, AttributeError, OverflowError) as e:
            raise UpstreamFormatError(self.name, f"Malformed forecast payload: {e}")

        return {
            "type": "pollution_forecast",
            "source": self.SOURCE,
            "timestamp": self._timestamp(),
            "forecast_hours": hours,
            "hourly_forecasts": forecasts,
        }
