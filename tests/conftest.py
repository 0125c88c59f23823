"""
Pytest fixtures and configuration for geolayers tests.

Provides a controllable clock, temporary stores and sample provider payloads.
"""

import random
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from geolayers.cache.sqlite import CacheLayer
from geolayers.core.config import ProviderConfig, Settings
from geolayers.core.normalizer import LayerNormalizer
from geolayers.providers.base import LayerGateway
from geolayers.ratelimit.sqlite import RateLimiter
from geolayers.repository.sqlite import LayerRepository

# 2023-11-14T22:14:00Z, the start of a minute
START_TIME = 1_700_000_040.0


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tmp_cache_db(tmp_path: Path) -> Path:
    """Create a temporary cache database path."""
    return tmp_path / "test_cache.db"


@pytest.fixture
def tmp_rate_db(tmp_path: Path) -> Path:
    return tmp_path / "test_rate_limits.db"


@pytest.fixture
def tmp_layers_db(tmp_path: Path) -> Path:
    return tmp_path / "test_layers.db"


@pytest.fixture
def cache(tmp_cache_db: Path, clock: FakeClock) -> CacheLayer:
    return CacheLayer(db_path=tmp_cache_db, cleanup_probability=0, clock=clock)


@pytest.fixture
def rate_limiter(tmp_rate_db: Path, clock: FakeClock) -> RateLimiter:
    return RateLimiter(
        db_path=tmp_rate_db,
        limits={"weather": 60, "pollution": 60, "crime": 15},
        clock=clock,
    )


@pytest.fixture
def normalizer(clock: FakeClock) -> LayerNormalizer:
    return LayerNormalizer(clock=clock)


@pytest.fixture
def repository(tmp_layers_db: Path, normalizer: LayerNormalizer, clock: FakeClock) -> LayerRepository:
    return LayerRepository(db_path=tmp_layers_db, normalizer=normalizer, clock=clock)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with every provider enabled and storage under tmp_path."""
    return Settings.from_dict({
        "storage": {"directory": str(tmp_path / "store")},
        "cache": {"cleanup_probability": 0},
        "providers": {
            "weather": {"enabled": True, "api_key": "test-key"},
            "pollution": {"enabled": True, "api_key": "test-key"},
            "crime": {"enabled": True},
        },
    })


@pytest.fixture
def make_gateway(
    cache: CacheLayer,
    rate_limiter: RateLimiter,
    repository: LayerRepository,
    normalizer: LayerNormalizer,
    clock: FakeClock,
) -> Callable[..., LayerGateway]:
    """Build a gateway over the shared test stores.

    The upstream transport is replaced by an AsyncMock returning ``raw``.
    """

    def factory(
        gateway_cls: type[LayerGateway],
        raw: Any = None,
        enabled: bool = True,
        **kwargs: Any,
    ) -> LayerGateway:
        config = ProviderConfig(
            enabled=enabled,
            api_key="test-key",
            base_url="https://provider.test",
            cache_ttl=3600,
        )
        gateway = gateway_cls(
            config,
            cache,
            rate_limiter,
            repository,
            normalizer,
            clock=clock,
            **kwargs,
        )
        gateway.BULK_DELAY = 0
        gateway._get_json = AsyncMock(return_value=raw)
        return gateway

    return factory


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(42)


# =============================================================================
# Mock API Response Fixtures
# =============================================================================


@pytest.fixture
def owm_weather_response() -> dict[str, Any]:
    """Create a mock OpenWeatherMap /weather response (metric units)."""
    return {
        "coord": {"lon": 26.10, "lat": 44.43},
        "weather": [{"id": 800, "main": "Clear", "description": "clear sky", "icon": "01d"}],
        "main": {
            "temp": 21.5,
            "feels_like": 21.0,
            "pressure": 1015,
            "humidity": 55,
        },
        "visibility": 10000,
        "wind": {"speed": 3.6, "deg": 240},
        "dt": 1_700_000_000,
        "name": "Bucharest",
        "cod": 200,
    }


@pytest.fixture
def owm_forecast_response() -> dict[str, Any]:
    """Create a mock OpenWeatherMap /forecast response spanning two days."""

    def entry(dt: int, temp: float, condition: str, humidity: int, wind: float) -> dict:
        return {
            "dt": dt,
            "main": {"temp": temp, "humidity": humidity},
            "weather": [{"main": condition, "description": condition.lower()}],
            "wind": {"speed": wind},
        }

    # 2023-11-15 00:00 UTC
    day_one = 1_700_006_400
    day_two = day_one + 86400
    return {
        "cod": "200",
        "cnt": 4,
        "list": [
            entry(day_one, 10.0, "Clouds", 60, 2.0),
            entry(day_one + 10800, 14.0, "Clouds", 50, 4.0),
            entry(day_one + 21600, 12.0, "Rain", 70, 3.0),
            entry(day_two, 8.0, "Clear", 40, 1.0),
        ],
    }


@pytest.fixture
def owm_pollution_response() -> dict[str, Any]:
    """Create a mock OpenWeatherMap /air_pollution response."""
    return {
        "coord": {"lon": 26.10, "lat": 44.43},
        "list": [
            {
                "main": {"aqi": 3},
                "components": {
                    "co": 201.94,
                    "no": 0.02,
                    "no2": 15.0,
                    "o3": 68.66,
                    "so2": 0.64,
                    "pm2_5": 30.0,
                    "pm10": 30.0,
                    "nh3": 0.12,
                },
                "dt": 1_700_000_000,
            }
        ],
    }


@pytest.fixture
def owm_pollution_forecast_response() -> dict[str, Any]:
    """Create a mock OpenWeatherMap /air_pollution/forecast response."""
    return {
        "coord": {"lon": 26.10, "lat": 44.43},
        "list": [
            {
                "main": {"aqi": aqi},
                "components": {"co": 200.0, "no2": 10.0, "o3": 60.0, "so2": 1.0, "pm2_5": pm25, "pm10": 20.0},
                "dt": 1_700_002_800 + hour * 3600,
            }
            for hour, (aqi, pm25) in enumerate([(1, 5.0), (2, 12.0), (4, 80.0), (5, 150.0)])
        ],
    }


@pytest.fixture
def police_crimes_response() -> list[dict[str, Any]]:
    """Create a mock UK Police /crimes-street/all-crime response."""

    def crime(category: str, crime_id: int) -> dict:
        return {
            "category": category,
            "location_type": "Force",
            "location": {
                "latitude": "51.5007",
                "longitude": "-0.1246",
                "street": {"id": 1, "name": "On or near Parliament Square"},
            },
            "id": crime_id,
            "month": "2024-05",
            "outcome_status": None,
        }

    return (
        [crime("anti-social-behaviour", i) for i in range(4)]
        + [crime("burglary", 10 + i) for i in range(2)]
        + [crime("vehicle-crime", 20)]
    )
