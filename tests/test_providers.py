"""
Tests for the provider gateways.

The upstream transport is replaced by AsyncMock; the cache, rate limiter and
repository are real stores in a temporary directory.
"""

import shutil
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from geolayers import __version__
from geolayers.cache.sqlite import CacheLayer
from geolayers.core.config import ProviderConfig
from geolayers.core.exceptions import (
    RepositoryError,
    UpstreamFormatError,
    UpstreamTransportError,
)
from geolayers.core.models import Bounds, LayerType, Location
from geolayers.core.normalizer import LayerNormalizer
from geolayers.providers.base import LayerGateway
from geolayers.providers.crime import MOCK_CATEGORY_RANGES, CrimeGateway, risk_level
from geolayers.providers.pollution import HEALTH_RECOMMENDATIONS, PollutionGateway, rank_pollutants
from geolayers.providers.weather import WeatherGateway
from geolayers.ratelimit.sqlite import RateLimiter
from geolayers.repository.sqlite import LayerRepository

LAT, LON = 44.43, 26.10
LONDON = (51.5, -0.12)
BUCHAREST = Bounds(north=44.6, south=44.3, east=26.3, west=25.9)


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse."""

    def __init__(self, status: int = 200, body=None, headers=None):
        self.status = status
        self.body = body
        self.headers = headers or {}

    async def json(self, content_type=None):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Records GET calls and replays one response."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        pass


class TestGatewayPipeline:
    """Tests for the shared request pipeline, exercised through WeatherGateway."""

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, make_gateway, owm_weather_response):
        gateway = make_gateway(WeatherGateway, owm_weather_response)

        first = await gateway.get_current(LAT, LON)
        second = await gateway.get_current(LAT, LON)

        assert first.success and second.success
        assert first.to_dict()["source"] == "api"
        assert second.to_dict()["source"] == "cache"
        assert second.data == first.data
        gateway._get_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_upstream_request(self, make_gateway, owm_weather_response):
        gateway = make_gateway(WeatherGateway, owm_weather_response)
        await gateway.get_current(LAT, LON, units="imperial")

        gateway._get_json.assert_awaited_once_with(
            "/weather",
            {"lat": LAT, "lon": LON, "units": "imperial", "appid": "test-key"},
        )

    @pytest.mark.asyncio
    async def test_write_through(self, make_gateway, owm_weather_response, cache, repository, clock):
        gateway = make_gateway(WeatherGateway, owm_weather_response)
        response = await gateway.get_current(LAT, LON)

        cached = cache.get_entry("weather", "current", {"lat": LAT, "lon": LON, "units": "metric"})
        assert cached.payload == response.data
        assert cached.expires_at - cached.created_at == 3600

        records = repository.get(LayerType.WEATHER, LAT, LON)
        assert len(records) == 1
        assert records[0].payload == response.data
        assert records[0].expires_at.timestamp() == clock() + 3600

    @pytest.mark.asyncio
    async def test_records_call_only_on_fetch(self, make_gateway, owm_weather_response, rate_limiter):
        gateway = make_gateway(WeatherGateway, owm_weather_response)
        await gateway.get_current(LAT, LON)
        await gateway.get_current(LAT, LON)

        assert rate_limiter.usage("weather")["minute"] == 1

    @pytest.mark.asyncio
    async def test_disabled(self, make_gateway, owm_weather_response):
        gateway = make_gateway(WeatherGateway, owm_weather_response, enabled=False)
        result = (await gateway.get_current(LAT, LON)).to_dict()

        assert result["success"] is False
        assert result["error_type"] == "DisabledServiceError"
        assert result["retryable"] is False
        assert result["state"] == "disabled"
        gateway._get_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limited_before_cache(
        self, make_gateway, owm_weather_response, rate_limiter, clock
    ):
        gateway = make_gateway(WeatherGateway, owm_weather_response)
        await gateway.get_current(LAT, LON)
        for _ in range(59):
            rate_limiter.record_call("weather")
        clock.advance(15)

        result = (await gateway.get_current(LAT, LON)).to_dict()

        assert result["error_type"] == "RateLimitExceeded"
        assert result["retryable"] is True
        assert result["retry_after"] == 45
        assert result["state"] == "rate_limited"
        gateway._get_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rate_limit_resets_next_minute(
        self, make_gateway, owm_weather_response, rate_limiter, clock
    ):
        gateway = make_gateway(WeatherGateway, owm_weather_response)
        for _ in range(60):
            rate_limiter.record_call("weather")
        assert not (await gateway.get_current(LAT, LON)).success

        clock.advance(60)
        assert (await gateway.get_current(LAT, LON)).success

    @pytest.mark.asyncio
    async def test_transport_failure_not_cached(self, make_gateway, cache, rate_limiter):
        gateway = make_gateway(WeatherGateway)
        gateway._get_json.side_effect = UpstreamTransportError(
            "weather", "https://provider.test/weather", 503
        )

        result = (await gateway.get_current(LAT, LON)).to_dict()

        assert result["error_type"] == "UpstreamTransportError"
        assert result["retryable"] is True
        assert result["state"] == "fetch_failed"
        assert cache.get_stats()["total_files"] == 0
        assert rate_limiter.usage("weather")["minute"] == 0

    @pytest.mark.asyncio
    async def test_error_body_is_transport_failure(self, make_gateway, cache):
        gateway = make_gateway(WeatherGateway, {"cod": "401", "message": "Invalid API key"})
        result = (await gateway.get_current(LAT, LON)).to_dict()

        assert result["error_type"] == "UpstreamTransportError"
        assert "Invalid API key" in result["error"]
        assert cache.get_stats()["total_files"] == 0

    @pytest.mark.asyncio
    async def test_malformed_payload_is_format_failure(self, make_gateway, cache, repository):
        gateway = make_gateway(CrimeGateway, {"unexpected": "object"})
        result = (await gateway.get_current(*LONDON)).to_dict()

        assert result["error_type"] == "UpstreamFormatError"
        assert result["state"] == "fetch_failed"
        assert cache.get_stats()["total_files"] == 0
        assert repository.count() == 0

    @pytest.mark.asyncio
    async def test_repository_failure_does_not_fail_request(self, make_gateway, owm_weather_response, repository):
        gateway = make_gateway(WeatherGateway, owm_weather_response)
        with patch.object(repository, "store", side_effect=RepositoryError("store", "disk full")):
            response = await gateway.get_current(LAT, LON)

        assert response.success
        assert response.to_dict()["source"] == "api"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lat,lon", [(0, LON), (LAT, 0), (95, LON), ("abc", LON)])
    async def test_invalid_coordinates(self, make_gateway, lat, lon):
        gateway = make_gateway(WeatherGateway)
        result = (await gateway.get_current(lat, lon)).to_dict()

        assert result["error_type"] == "ValidationError"
        assert result["state"] == "rejected"
        gateway._get_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_region_enforced(self, make_gateway, owm_weather_response):
        romania = Bounds(north=48.2653, south=43.6186, east=29.7151, west=20.2619)
        gateway = make_gateway(WeatherGateway, owm_weather_response, region=romania)

        assert (await gateway.get_current(LAT, LON)).success
        assert not (await gateway.get_current(*LONDON)).success


class TestTransport:
    """Tests for the aiohttp transport in LayerGateway._get_json."""

    def _gateway(self, session, cache, rate_limiter, repository, normalizer, clock) -> LayerGateway:
        config = ProviderConfig(enabled=True, api_key="k", base_url="https://provider.test", timeout=5)
        return WeatherGateway(
            config, cache, rate_limiter, repository, normalizer, session=session, clock=clock
        )

    @pytest.mark.asyncio
    async def test_success(self, cache, rate_limiter, repository, normalizer, clock):
        session = FakeSession(FakeResponse(body={"ok": True}))
        gateway = self._gateway(session, cache, rate_limiter, repository, normalizer, clock)

        assert await gateway._get_json("/weather", {"lat": LAT}) == {"ok": True}

        url, kwargs = session.calls[0]
        assert url == "https://provider.test/weather"
        assert kwargs["params"] == {"lat": LAT}
        assert kwargs["headers"]["User-Agent"] == f"geolayers/{__version__}"

    @pytest.mark.asyncio
    async def test_non_200(self, cache, rate_limiter, repository, normalizer, clock):
        session = FakeSession(FakeResponse(status=500))
        gateway = self._gateway(session, cache, rate_limiter, repository, normalizer, clock)

        with pytest.raises(UpstreamTransportError) as exc_info:
            await gateway._get_json("/weather", {})
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_client_error(self, cache, rate_limiter, repository, normalizer, clock):
        session = FakeSession(error=aiohttp.ClientConnectionError("refused"))
        gateway = self._gateway(session, cache, rate_limiter, repository, normalizer, clock)

        with pytest.raises(UpstreamTransportError):
            await gateway._get_json("/weather", {})

    @pytest.mark.asyncio
    async def test_undecodable_body(self, cache, rate_limiter, repository, normalizer, clock):
        session = FakeSession(FakeResponse(body=ValueError("Expecting value")))
        gateway = self._gateway(session, cache, rate_limiter, repository, normalizer, clock)

        with pytest.raises(UpstreamFormatError):
            await gateway._get_json("/weather", {})

    @pytest.mark.asyncio
    async def test_oversized_body(self, cache, rate_limiter, repository, normalizer, clock):
        response = FakeResponse(body={}, headers={"Content-Length": str(50 * 1024 * 1024)})
        gateway = self._gateway(FakeSession(response), cache, rate_limiter, repository, normalizer, clock)

        with pytest.raises(UpstreamFormatError):
            await gateway._get_json("/weather", {})

    @pytest.mark.asyncio
    async def test_borrowed_session_not_closed(self, cache, rate_limiter, repository, normalizer, clock):
        session = FakeSession()
        async with self._gateway(session, cache, rate_limiter, repository, normalizer, clock) as gateway:
            assert gateway.session is session
        assert gateway._session is session


class TestWeatherGateway:
    @pytest.mark.asyncio
    async def test_current_payload(self, make_gateway, owm_weather_response):
        response = await make_gateway(WeatherGateway, owm_weather_response).get_current(LAT, LON)

        assert response.data["type"] == "weather"
        assert response.data["source"] == "openweathermap"
        assert response.data["data"]["temperature"]["unit"] == "celsius"
        assert "analysis" not in response.data

    @pytest.mark.asyncio
    async def test_invalid_units(self, make_gateway):
        result = (await make_gateway(WeatherGateway).get_current(LAT, LON, units="kelvin")).to_dict()
        assert result["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_forecast_daily_summaries(self, make_gateway, owm_forecast_response, repository):
        gateway = make_gateway(WeatherGateway, owm_forecast_response)
        response = await gateway.get_forecast(LAT, LON, days=2)

        gateway._get_json.assert_awaited_once_with(
            "/forecast",
            {"lat": LAT, "lon": LON, "units": "metric", "cnt": 16, "appid": "test-key"},
        )
        assert response.data["type"] == "weather_forecast"
        assert response.data["units"] == "metric"

        day_one, day_two = response.data["daily_forecasts"]
        assert day_one == {
            "date": "2023-11-15",
            "temperature": {"min": 10.0, "max": 14.0, "avg": 12.0},
            "condition": "Clouds",
            "humidity_avg": 60,
            "wind_speed_avg": 3.0,
        }
        assert day_two["date"] == "2023-11-16"
        assert day_two["condition"] == "Clear"

        # Forecasts are cached but not stored
        assert repository.count() == 0

    @pytest.mark.asyncio
    async def test_forecast_cached(self, make_gateway, owm_forecast_response):
        gateway = make_gateway(WeatherGateway, owm_forecast_response)
        await gateway.get_forecast(LAT, LON, days=2)
        second = await gateway.get_forecast(LAT, LON, days=2)

        assert second.to_dict()["source"] == "cache"
        gateway._get_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_forecast_days_out_of_range(self, make_gateway):
        result = (await make_gateway(WeatherGateway).get_forecast(LAT, LON, days=6)).to_dict()
        assert result["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_malformed_forecast(self, make_gateway, cache):
        gateway = make_gateway(WeatherGateway, {"cod": "200", "list": [{"dt": 1_700_006_400}]})
        result = (await gateway.get_forecast(LAT, LON)).to_dict()

        assert result["error_type"] == "UpstreamFormatError"
        assert cache.get_stats()["total_files"] == 0

    @pytest.mark.asyncio
    async def test_area_stats_without_data(self, make_gateway):
        result = (await make_gateway(WeatherGateway).get_area_stats(BUCHAREST)).to_dict()

        assert result["success"] is False
        assert result["error_type"] == "NoDataError"

    @pytest.mark.asyncio
    async def test_area_stats_from_stored_records(self, make_gateway, owm_weather_response):
        gateway = make_gateway(WeatherGateway, owm_weather_response)
        await gateway.get_current(LAT, LON)
        await gateway.get_current(44.50, 26.20)

        result = (await gateway.get_area_stats(BUCHAREST, "24h")).to_dict()

        assert result["source"] == "database"
        assert result["data"]["area_bounds"] == BUCHAREST.to_dict()
        assert result["data"]["timeframe"] == "24h"
        assert result["data"]["statistics"]["data_points"] == 2
        assert result["data"]["data_quality"] == result["data"]["statistics"]["quality_score"]


class TestPollutionGateway:
    @pytest.mark.asyncio
    async def test_current_with_analysis(self, make_gateway, owm_pollution_response):
        gateway = make_gateway(PollutionGateway, owm_pollution_response)
        response = await gateway.get_current(LAT, LON)

        gateway._get_json.assert_awaited_once_with(
            "/air_pollution", {"lat": LAT, "lon": LON, "appid": "test-key"}
        )
        assert response.data["data"]["aqi"]["value"] == 3
        assert response.data["analysis"] == {
            "overall_quality": "Moderate",
            "health_recommendations": [HEALTH_RECOMMENDATIONS[3]],
            "main_pollutants": ["co", "o3", "pm2_5"],
            "severity_score": 50,
        }

    def test_analysis_without_aqi(self):
        analysis = PollutionGateway.analyze({"aqi": {"value": None}})
        assert analysis["overall_quality"] == "unknown"
        assert analysis["severity_score"] == 0
        assert analysis["main_pollutants"] == []

    @pytest.mark.parametrize("aqi,severity", [(1, 0), (2, 25), (5, 100)])
    def test_severity(self, aqi, severity):
        data = {"aqi": {"value": aqi, "level": "x"}}
        assert PollutionGateway.analyze(data)["severity_score"] == severity

    def test_rank_pollutants_is_weighted(self):
        # 10 * 2.0 beats 15 * 1.0
        assert rank_pollutants({"no2": 15, "pm2_5": 10, "co": None}) == ["pm2_5", "no2", "co"]

    @pytest.mark.asyncio
    async def test_hourly_forecast(self, make_gateway, owm_pollution_forecast_response):
        gateway = make_gateway(PollutionGateway, owm_pollution_forecast_response)
        response = await gateway.get_forecast(LAT, LON, hours=3)

        gateway._get_json.assert_awaited_once_with(
            "/air_pollution/forecast", {"lat": LAT, "lon": LON, "appid": "test-key"}
        )
        assert response.data["type"] == "pollution_forecast"
        assert response.data["forecast_hours"] == 3

        hourly = response.data["hourly_forecasts"]
        assert len(hourly) == 3
        assert hourly[0]["datetime"] == "2023-11-14T23:00:00+00:00"
        assert hourly[0]["timestamp"] == 1_700_002_800
        assert hourly[0]["aqi"] == {"value": 1, "level": "Good", "scale": "1-5"}
        assert hourly[0]["main_pollutant"] == "co"
        assert hourly[2]["main_pollutant"] == "pm2_5"

    @pytest.mark.asyncio
    async def test_forecast_hours_out_of_range(self, make_gateway):
        result = (await make_gateway(PollutionGateway).get_forecast(LAT, LON, hours=200)).to_dict()
        assert result["error_type"] == "ValidationError"


class TestCrimeGateway:
    @pytest.mark.asyncio
    async def test_current_with_analysis(self, make_gateway, police_crimes_response):
        gateway = make_gateway(CrimeGateway, police_crimes_response)
        response = await gateway.get_current(*LONDON, date="2024-05")

        gateway._get_json.assert_awaited_once_with(
            "/crimes-street/all-crime", {"lat": 51.5, "lng": -0.12, "date": "2024-05"}
        )
        assert response.data["data"]["total_crimes"] == 7
        assert response.data["data"]["period"] == "2024-05"
        assert response.data["analysis"] == {
            "safety_score": 86,
            "risk_level": "low",
            "recommendations": [],
        }

    @pytest.mark.asyncio
    async def test_date_defaults_to_previous_month(self, make_gateway, police_crimes_response, cache):
        gateway = make_gateway(CrimeGateway, police_crimes_response)
        await gateway.get_current(*LONDON)

        _, params = gateway._get_json.await_args.args
        assert params["date"] == "2023-10"
        assert cache.has("crime", "data", {"lat": 51.5, "lon": -0.12, "date": "2023-10"})

    @pytest.mark.asyncio
    async def test_no_crimes(self, make_gateway):
        response = await make_gateway(CrimeGateway, []).get_current(*LONDON, date="2024-05")

        assert response.data["analysis"]["safety_score"] == 100
        assert response.data["analysis"]["risk_level"] == "very_low"
        assert response.data["analysis"]["recommendations"]

    @pytest.mark.asyncio
    async def test_invalid_date(self, make_gateway):
        result = (await make_gateway(CrimeGateway).get_current(*LONDON, date="May")).to_dict()
        assert result["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_forecast_unsupported(self, make_gateway):
        result = (await make_gateway(CrimeGateway).get_forecast(*LONDON)).to_dict()

        assert result["error_type"] == "UnsupportedOperation"
        assert result["error"] == "Forecast is not available for layer: crime"
        assert result["state"] == "rejected"

    @pytest.mark.parametrize(
        "total,level",
        [(0, "very_low"), (5, "low"), (10, "medium"), (20, "high"), (34, "high"), (35, "very_high")],
    )
    def test_risk_level(self, total, level):
        assert risk_level(total) == level

    def test_safety_score_floor(self):
        assert CrimeGateway.analyze(80)["safety_score"] == 0

    @pytest.mark.asyncio
    async def test_area_stats_mock_fallback(self, make_gateway, seeded_rng):
        gateway = make_gateway(CrimeGateway, rng=seeded_rng)
        result = (await gateway.get_area_stats(BUCHAREST)).to_dict()

        assert result["success"] is True
        assert result["source"] == "mock"

        data = result["data"]
        total = data["statistics"]["total_crimes"]
        assert 5 <= total <= 25
        assert set(data["statistics"]["categories"]) == set(MOCK_CATEGORY_RANGES)
        assert data["safety_score"] == max(0, 100 - total * 3)
        assert data["risk_level"] == risk_level(total)
        assert data["data_quality"] == "mock"
        assert data["timeframe"] == "3m"

    @pytest.mark.asyncio
    async def test_area_stats_disabled(self, make_gateway):
        result = (await make_gateway(CrimeGateway, enabled=False).get_area_stats(BUCHAREST)).to_dict()
        assert result["error_type"] == "DisabledServiceError"

    @pytest.mark.asyncio
    async def test_area_stats_prefers_stored_data(self, make_gateway, police_crimes_response):
        gateway = make_gateway(CrimeGateway, police_crimes_response)
        await gateway.get_current(LAT, LON, date="2024-05")

        result = (await gateway.get_area_stats(BUCHAREST)).to_dict()
        assert result["source"] == "database"
        assert result["data"]["statistics"]["data_points"] == 1


class TestBulk:
    """Tests for sequential bulk requests."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, make_gateway, owm_weather_response):
        gateway = make_gateway(WeatherGateway)
        gateway._get_json.side_effect = [
            owm_weather_response,
            UpstreamTransportError("weather", "https://provider.test/weather", 500),
            owm_weather_response,
        ]

        result = (await gateway.get_bulk([
            {"lat": 44.43, "lon": 26.10, "name": "Bucharest"},
            {"lat": 46.77, "lon": 23.59, "name": "Cluj"},
            {"lat": 47.16, "lon": 27.58},
        ])).to_dict()

        assert result["success"] is True
        data = result["data"]
        assert list(data) == ["Bucharest", "Cluj", "47.16,27.58"]
        assert data["Bucharest"]["success"] is True
        assert data["Cluj"]["success"] is False
        assert data["Cluj"]["error_type"] == "UpstreamTransportError"
        assert data["47.16,27.58"]["success"] is True

    @pytest.mark.asyncio
    async def test_sleeps_between_calls(self, make_gateway, owm_pollution_response):
        gateway = make_gateway(PollutionGateway, owm_pollution_response)
        gateway.BULK_DELAY = PollutionGateway.BULK_DELAY

        with patch("geolayers.providers.base.asyncio.sleep") as sleep:
            await gateway.get_bulk([
                {"lat": 44.43, "lon": 26.10},
                {"lat": 46.77, "lon": 23.59},
                {"lat": 47.16, "lon": 27.58},
            ])

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.15)

    def test_delays(self):
        assert WeatherGateway.BULK_DELAY == 0.1
        assert PollutionGateway.BULK_DELAY == 0.15
        assert CrimeGateway.BULK_DELAY == 0.2

    @pytest.mark.asyncio
    async def test_empty(self, make_gateway):
        result = (await make_gateway(WeatherGateway).get_bulk([])).to_dict()
        assert result["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_too_many_locations(self, make_gateway):
        gateway = make_gateway(WeatherGateway)
        result = (await gateway.get_bulk([{"lat": 44.43, "lon": 26.10}] * 51)).to_dict()

        assert result["error_type"] == "ValidationError"
        gateway._get_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_entry_fails_on_its_own(self, make_gateway, owm_weather_response):
        gateway = make_gateway(WeatherGateway, owm_weather_response)

        result = (await gateway.get_bulk([
            {"lat": 44.43, "lon": 26.10, "name": "Bucharest"},
            {"lat": 95.0, "lon": 26.10, "name": "Bad"},
            {"lat": 46.77},
        ])).to_dict()

        assert result["success"] is True
        data = result["data"]
        assert data["Bucharest"]["success"] is True
        assert data["Bad"]["error_type"] == "ValidationError"
        assert data["Bad"]["state"] == "rejected"
        assert data["46.77,None"]["error_type"] == "ValidationError"
        gateway._get_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_location_objects_are_validated(self, make_gateway, owm_weather_response):
        gateway = make_gateway(WeatherGateway, owm_weather_response)

        result = (await gateway.get_bulk([Location(0.0, 999.0, "Nowhere")])).to_dict()

        assert result["data"]["Nowhere"]["error_type"] == "ValidationError"
        gateway._get_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_region_applies_per_entry(self, make_gateway, owm_weather_response):
        romania = Bounds(north=48.2653, south=43.6186, east=29.7151, west=20.2619)
        gateway = make_gateway(WeatherGateway, owm_weather_response, region=romania)

        result = (await gateway.get_bulk([
            {"lat": 44.43, "lon": 26.10, "name": "Bucharest"},
            {"lat": 51.50, "lon": -0.12, "name": "London"},
        ])).to_dict()

        assert result["data"]["Bucharest"]["success"] is True
        assert result["data"]["London"]["error_type"] == "ValidationError"


class TestStorageUnavailable:
    """Tests for a gateway whose storage directory has disappeared."""

    @pytest.mark.asyncio
    async def test_request_still_answered(self, tmp_path, clock, owm_weather_response):
        store = tmp_path / "store"
        normalizer = LayerNormalizer(clock=clock)
        cache = CacheLayer(db_path=store / "cache.db", cleanup_probability=0, clock=clock)
        gateway = WeatherGateway(
            ProviderConfig(enabled=True, api_key="k", base_url="https://provider.test"),
            cache,
            RateLimiter(db_path=store / "rate_limits.db", clock=clock),
            LayerRepository(db_path=store / "layers.db", normalizer=normalizer, clock=clock),
            normalizer,
            clock=clock,
        )
        gateway._get_json = AsyncMock(return_value=owm_weather_response)

        shutil.rmtree(store)

        assert cache.get("weather", "current", {"lat": LAT}) is None
        result = (await gateway.get_current(LAT, LON)).to_dict()
        assert result["success"] is True
        assert result["source"] == "api"

    @pytest.mark.asyncio
    async def test_area_stats_failure_is_an_envelope(self, tmp_path, clock):
        store = tmp_path / "store"
        normalizer = LayerNormalizer(clock=clock)
        gateway = WeatherGateway(
            ProviderConfig(enabled=True, api_key="k", base_url="https://provider.test"),
            CacheLayer(db_path=store / "cache.db", cleanup_probability=0, clock=clock),
            RateLimiter(db_path=store / "rate_limits.db", clock=clock),
            LayerRepository(db_path=store / "layers.db", normalizer=normalizer, clock=clock),
            normalizer,
            clock=clock,
        )

        shutil.rmtree(store)

        result = (await gateway.get_area_stats(BUCHAREST)).to_dict()
        assert result["success"] is False
        assert result["error_type"] == "RepositoryError"
