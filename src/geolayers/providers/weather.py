"""
OpenWeatherMap gateway for the weather layer.

Serves current conditions and a daily forecast built from the three-hourly
forecast endpoint.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Any

from geolayers.core.exceptions import UpstreamFormatError, UpstreamTransportError, ValidationError
from geolayers.core.models import LayerResponse, LayerType, RequestState
from geolayers.core.validation import validate_forecast_days, validate_units
from geolayers.providers.base import LayerGateway


class WeatherGateway(LayerGateway):
    """Gateway for OpenWeatherMap current weather and forecasts."""

    LAYER_TYPE = LayerType.WEATHER
    SOURCE = "openweathermap"
    BULK_DELAY = 0.1

    CURRENT_PATH = "/weather"
    FORECAST_PATH = "/forecast"
    # The forecast endpoint returns one entry every three hours
    ENTRIES_PER_DAY = 8

    async def get_current(
        self,
        lat: float,
        lon: float,
        units: str = "metric",
        **_: Any,
    ) -> LayerResponse:
        """Get current weather for coordinates.

        Args:
            lat: Latitude.
            lon: Longitude.
            units: "standard" (kelvin), "metric" (celsius) or "imperial" (fahrenheit).

        Returns:
            Envelope with the normalized weather payload.
        """
        try:
            lat, lon = self._validate(lat, lon)
            units = validate_units(units)
        except ValidationError as e:
            return self._failure(e, RequestState.REJECTED)

        query = {"lat": lat, "lon": lon, "units": units}

        return await self._run(
            "current",
            query,
            fetch=lambda: self._request(self.CURRENT_PATH, query),
            transform=lambda raw: self._normalize(raw, units=units),
            location=(lat, lon),
        )

    async def get_forecast(
        self,
        lat: float,
        lon: float,
        units: str = "metric",
        days: int = 5,
        **_: Any,
    ) -> LayerResponse:
        """Get a daily weather forecast for coordinates.

        Args:
            lat: Latitude.
            lon: Longitude.
            units: Unit system for temperatures and wind speed.
            days: Number of days (1-5).

        Returns:
            Envelope with ``daily_forecasts`` summaries.
        """
        try:
            lat, lon = self._validate(lat, lon)
            units = validate_units(units)
            days = validate_forecast_days(days)
        except ValidationError as e:
            return self._failure(e, RequestState.REJECTED)

        cache_params = {"lat": lat, "lon": lon, "units": units, "days": days}
        query = {
            "lat": lat,
            "lon": lon,
            "units": units,
            "cnt": days * self.ENTRIES_PER_DAY,
        }

        return await self._run(
            "forecast",
            cache_params,
            fetch=lambda: self._request(self.FORECAST_PATH, query),
            transform=lambda raw: self._summarize_forecast(raw, units),
        )

    async def _request(self, path: str, query: dict[str, Any]) -> Any:
        data = await self._get_json(path, {**query, "appid": self.config.api_key or ""})

        # OpenWeatherMap reports some errors in the body ("cod" is a string on /forecast)
        if isinstance(data, dict) and str(data.get("cod", 200)) != "200":
            raise UpstreamTransportError(
                self.name,
                f"{self.config.base_url}{path}",
                details=str(data.get("message", "Weather API error")),
            )
        return data

    def _summarize_forecast(self, raw: Any, units: str) -> dict[str, Any]:
        """Aggregate three-hourly entries into per-day summaries."""
        try:
            entries = raw["list"]
            days: dict[str, dict[str, list]] = {}

            for entry in entries:
                date = datetime.fromtimestamp(entry["dt"], tz=timezone.utc).strftime("%Y-%m-%d")
                day = days.setdefault(
                    date,
                    {"temperatures": [], "conditions": [], "humidity": [], "wind_speeds": []},
                )
                day["temperatures"].append(entry["main"]["temp"])
                day["conditions"].append(entry["weather"][0]["main"])
                day["humidity"].append(entry["main"]["humidity"])
                day["wind_speeds"].append((entry.get("wind") or {}).get("speed") or 0)

            daily = [self._summarize_day(date, day) for date, day in days.items()]
        except (KeyError, IndexError, TypeError, ValueError, OverflowError) as e:
            raise UpstreamFormatError(self.name, f"Malformed forecast payload: {e}")

        return {
            "type": "weather_forecast",
            "source": self.SOURCE,
            "timestamp": self._timestamp(),
            "units": units,
            "daily_forecasts": daily,
        }

    @staticmethod
    def _summarize_day(date: str, day: dict[str, list]) -> dict[str, Any]:
        temps = day["temperatures"]
        return {
            "date": date,
            "temperature": {
                "min": min(temps),
                "max": max(temps),
                "avg": round(sum(temps) / len(temps), 1),
            },
            "condition": Counter(day["conditions"]).most_common(1)[0][0],
            "humidity_avg": round(sum(day["humidity"]) / len(day["humidity"])),
            "wind_speed_avg": round(sum(day["wind_speeds"]) / len(day["wind_speeds"]), 1),
        }
