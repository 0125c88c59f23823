"""
Layer service orchestrating the shared stores and the provider gateways.

Builds the cache, rate limiter, normalizer and repository once from the
settings and hands them to each gateway. ``handle`` is the single inbound
query surface used by the programmatic API and the CLI.
"""

import random
import time
from typing import Any, Callable, Optional

import aiohttp

from geolayers.cache.sqlite import CacheLayer
from geolayers.core.config import Settings
from geolayers.core.exceptions import CacheError, GeoLayersError, ValidationError
from geolayers.core.logging import get_logger
from geolayers.core.models import LayerResponse, LayerType, RequestState, ResponseSource
from geolayers.core.normalizer import LayerNormalizer
from geolayers.core.validation import validate_bounds, validate_layer
from geolayers.providers.base import LayerGateway
from geolayers.providers.crime import CrimeGateway
from geolayers.providers.pollution import PollutionGateway
from geolayers.providers.weather import WeatherGateway
from geolayers.ratelimit.sqlite import RateLimiter
from geolayers.repository.sqlite import LayerRepository

logger = get_logger(__name__)

ACTIONS = ("get_current", "get_forecast", "get_bulk", "get_area_stats")
CACHE_ACTIONS = ("stats", "clear", "cleanup", "check_size")

# Query keys forwarded to the gateways as layer-specific parameters
LAYER_PARAMS = ("units", "days", "hours", "date")


class LayerService:
    """Entry point tying the stores and gateways together.

    Use as an async context manager so gateway sessions are closed:

        async with LayerService(settings) as service:
            envelope = await service.handle({"action": "get_current", ...})
    """

    def __init__(
        self,
        settings: Settings,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Optional[Callable[[], float]] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the service.

        Args:
            settings: Loaded configuration.
            session: Optional aiohttp session shared by every gateway and owned
                     by the caller. If not provided, each gateway opens its own.
            clock: Callable returning the current epoch time.
            rng: Random source for the cache sweep and the crime fallback.
        """
        self.settings = settings
        self.clock = clock or time.time
        self.rng = rng or random.Random()

        self.session = session

        self.cache = CacheLayer(
            db_path=settings.cache_db,
            default_ttl=settings.cache.default_ttl,
            max_size=settings.cache.max_size_bytes,
            cleanup_probability=settings.cache.cleanup_probability,
            clock=self.clock,
            rng=self.rng,
        )
        self.rate_limiter = RateLimiter(
            db_path=settings.rate_limit_db,
            limits={
                t.value: settings.provider(t.value).rate_limit_per_minute for t in LayerType
            },
            daily_limits={
                t.value: settings.provider(t.value).rate_limit_per_day
                for t in LayerType
                if settings.provider(t.value).rate_limit_per_day is not None
            },
            enabled=settings.rate_limiting_enabled,
            clock=self.clock,
        )
        self.normalizer = LayerNormalizer(clock=self.clock)
        self.repository = LayerRepository(
            db_path=settings.layers_db,
            normalizer=self.normalizer,
            clock=self.clock,
        )

        self.gateways: dict[LayerType, LayerGateway] = {
            LayerType.WEATHER: self._build(WeatherGateway, LayerType.WEATHER),
            LayerType.POLLUTION: self._build(PollutionGateway, LayerType.POLLUTION),
            LayerType.CRIME: self._build(CrimeGateway, LayerType.CRIME, rng=self.rng),
        }

    def _build(self, gateway_cls: type[LayerGateway], layer: LayerType, **extra: Any) -> LayerGateway:
        return gateway_cls(
            self.settings.provider(layer.value),
            self.cache,
            self.rate_limiter,
            self.repository,
            self.normalizer,
            session=self.session,
            region=self.settings.geographic_bounds,
            clock=self.clock,
            **extra,
        )

    def gateway(self, layer: LayerType | str) -> LayerGateway:
        """Return the gateway serving a layer."""
        if not isinstance(layer, LayerType):
            layer = validate_layer(layer)
        return self.gateways[layer]

    async def close(self) -> None:
        """Close the sessions the gateways opened themselves."""
        for gateway in self.gateways.values():
            await gateway.close()

    async def __aenter__(self) -> "LayerService":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def handle(self, query: dict[str, Any]) -> dict[str, Any]:
        """Dispatch one inbound query and return its envelope as a dict.

        Args:
            query: Mapping with ``action`` and ``layer`` plus the parameters
                of that action, or a ``cache_action`` for maintenance.

        Returns:
            Envelope ``{success, timestamp, data | error, ...}``.
        """
        try:
            if query.get("cache_action"):
                response = self._cache_action(query["cache_action"])
            else:
                response = await self._dispatch(query)
        except GeoLayersError as e:
            response = LayerResponse.from_error(e, int(self.clock()), RequestState.REJECTED)

        logger.debug(
            "service.handled",
            action=query.get("action") or query.get("cache_action"),
            layer=query.get("layer"),
            success=response.success,
        )
        return response.to_dict()

    async def _dispatch(self, query: dict[str, Any]) -> LayerResponse:
        action = query.get("action")
        if not action:
            raise ValidationError("action", "", "Action is required")
        if action not in ACTIONS:
            raise ValidationError(
                "action",
                str(action),
                f"Unknown action (expected one of: {', '.join(ACTIONS)})",
            )

        gateway = self.gateway(query.get("layer"))
        params = {key: query[key] for key in LAYER_PARAMS if query.get(key) is not None}

        if action == "get_current":
            return await gateway.get_current(query.get("lat"), query.get("lon"), **params)
        if action == "get_forecast":
            return await gateway.get_forecast(query.get("lat"), query.get("lon"), **params)
        if action == "get_bulk":
            return await gateway.get_bulk(query.get("locations"), **params)

        bounds = validate_bounds(
            query.get("north"),
            query.get("south"),
            query.get("east"),
            query.get("west"),
        )
        if query.get("timeframe"):
            return await gateway.get_area_stats(bounds, query["timeframe"])
        return await gateway.get_area_stats(bounds)

    def _cache_action(self, action: str) -> LayerResponse:
        if action not in CACHE_ACTIONS:
            raise ValidationError(
                "cache_action",
                str(action),
                f"Unknown cache action (expected one of: {', '.join(CACHE_ACTIONS)})",
            )

        try:
            if action == "stats":
                data: dict[str, Any] = self.cache.get_stats()
            elif action == "clear":
                data = {"removed": self.cache.clear()}
            elif action == "cleanup":
                data = {"removed": self.cache.cleanup()}
            else:
                data = {"cleaned": self.cache.check_size_limit(), **self.cache.get_stats()}
        except CacheError as e:
            return LayerResponse.from_error(e, int(self.clock()))

        logger.info("service.cache_action", cache_action=action)
        return LayerResponse.ok(data, ResponseSource.CACHE, int(self.clock()))
