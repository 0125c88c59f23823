"""
Base class for provider gateways.

A gateway fronts one third-party provider for one layer type. It checks the
provider's enabled flag and call budget, serves from the cache when it can,
otherwise fetches upstream, normalizes the payload and writes it through to
the cache and the layer repository. Every public operation returns a
LayerResponse envelope; failures never escape as exceptions.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from geolayers import __version__
from geolayers.cache.sqlite import CacheLayer
from geolayers.core.config import ProviderConfig
from geolayers.core.exceptions import (
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
from geolayers.core.logging import get_logger
from geolayers.core.models import (
    Bounds,
    LayerResponse,
    LayerType,
    Location,
    RequestState,
    ResponseSource,
)
from geolayers.core.normalizer import LayerNormalizer
from geolayers.core.validation import (
    MAX_RESPONSE_SIZE,
    validate_coordinates,
    validate_locations,
    validate_response_size,
)
from geolayers.ratelimit.sqlite import RateLimiter
from geolayers.repository.sqlite import LayerRepository

logger = get_logger(__name__)


class LayerGateway(ABC):
    """Abstract gateway shared by the weather, pollution and crime providers.

    Subclasses set the layer identity and implement ``get_current``; the
    request pipeline, transport and error mapping live here.
    """

    LAYER_TYPE: LayerType
    SOURCE: str
    # Pause between locations in get_bulk
    BULK_DELAY = 0.1
    STORE_RADIUS = 1000

    MAX_RESPONSE_SIZE = MAX_RESPONSE_SIZE

    def __init__(
        self,
        config: ProviderConfig,
        cache: CacheLayer,
        rate_limiter: RateLimiter,
        repository: LayerRepository,
        normalizer: LayerNormalizer,
        session: Optional[aiohttp.ClientSession] = None,
        region: Optional[Bounds] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the gateway.

        Args:
            config: Provider settings (enabled flag, key, base URL, TTL, caps).
            cache: Shared response cache.
            rate_limiter: Shared rate limiter; this gateway uses its own window.
            repository: Shared layer repository.
            normalizer: Payload normalizer.
            session: Optional aiohttp session. If not provided, one will
                     be created when needed.
            region: Optional area every coordinate must fall inside.
            clock: Callable returning the current epoch time.
        """
        self.config = config
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.repository = repository
        self.normalizer = normalizer
        self.region = region
        self.clock = clock or time.time

        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=config.timeout)

    @property
    def name(self) -> str:
        """Provider name, used for cache keys and the rate limit window."""
        return self.LAYER_TYPE.value

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "LayerGateway":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_current(self, lat: float, lon: float, **params: Any) -> LayerResponse:
        """Fetch the current layer data for a point."""

    async def get_forecast(self, lat: float, lon: float, **params: Any) -> LayerResponse:
        """Fetch forecast data for a point. Unsupported unless overridden."""
        return self._failure(
            UnsupportedOperation(self.name, "Forecast"),
            RequestState.REJECTED,
        )

    async def get_bulk(
        self,
        locations: list[Location | dict[str, Any]],
        **params: Any,
    ) -> LayerResponse:
        """Fetch current data for several locations one after another.

        Each location gets its own envelope; a failure for one location does
        not stop the others.

        Returns:
            Envelope whose data maps location name to that location's envelope.
        """
        try:
            validated = validate_locations(locations)
        except ValidationError as e:
            return self._failure(e, RequestState.REJECTED)

        results: dict[str, dict[str, Any]] = {}
        for index, location in enumerate(validated):
            if index:
                await asyncio.sleep(self.BULK_DELAY)
            response = await self.get_current(location.lat, location.lon, **params)
            results[location.label] = response.to_dict()

        failed = sum(1 for r in results.values() if not r["success"])
        logger.info("gateway.bulk", provider=self.name, locations=len(results), failed=failed)
        return LayerResponse.ok(results, ResponseSource.API, self._timestamp())

    async def get_area_stats(self, bounds: Bounds, timeframe: str = "24h") -> LayerResponse:
        """Aggregate stored records inside an area.

        Returns:
            Envelope tagged ``source="database"``, or a NoDataError envelope
            when nothing has been stored for the area.
        """
        try:
            stats = self.repository.get_area_stats(self.LAYER_TYPE, bounds, timeframe)
        except RepositoryError as e:
            return self._failure(e)

        if not stats["data_points"]:
            return self._no_area_data(bounds, timeframe)

        return LayerResponse.ok(
            {
                "area_bounds": bounds.to_dict(),
                "timeframe": timeframe,
                "statistics": stats,
                "data_quality": stats["quality_score"],
            },
            ResponseSource.DATABASE,
            self._timestamp(),
        )

    def _no_area_data(self, bounds: Bounds, timeframe: str) -> LayerResponse:
        return self._failure(NoDataError(self.name))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(
        self,
        endpoint: str,
        cache_params: dict[str, Any],
        fetch: Callable[[], Awaitable[Any]],
        transform: Callable[[Any], dict[str, Any]],
        location: Optional[tuple[float, float]] = None,
    ) -> LayerResponse:
        """Run one request through the gateway state machine.

        Args:
            endpoint: Cache endpoint name ("current", "forecast", ...).
            cache_params: Parameters identifying the request in the cache.
            fetch: Coroutine factory performing the upstream request.
            transform: Turns the raw upstream payload into the response payload.
            location: When given, the payload is also stored in the repository
                at these coordinates.
        """
        state = RequestState.UNCHECKED
        log = logger.bind(provider=self.name, endpoint=endpoint)

        try:
            if not self.config.enabled:
                state = RequestState.DISABLED
                raise DisabledServiceError(self.name)

            if not self.rate_limiter.check_rate_limit(self.name):
                state = RequestState.RATE_LIMITED
                raise RateLimitExceeded(self.name, self.rate_limiter.retry_after(self.name))

            cached = self.cache.get(self.name, endpoint, cache_params)
            if cached is not None:
                log.debug("gateway.transition", state=RequestState.CACHE_HIT.value)
                return LayerResponse.ok(cached, ResponseSource.CACHE, self._timestamp())

            state = RequestState.FETCHING
            log.debug("gateway.transition", state=state.value)
            raw = await fetch()
            self.rate_limiter.record_call(self.name)

            payload = transform(raw)
            state = RequestState.NORMALIZED
            log.debug("gateway.transition", state=state.value)

            ttl = self.config.cache_ttl
            self.cache.set(self.name, endpoint, cache_params, payload, ttl)
            if location is not None:
                self._store(location, payload, ttl)
            state = RequestState.STORED
            log.debug("gateway.transition", state=state.value)

            return LayerResponse.ok(payload, ResponseSource.API, self._timestamp())

        except (UpstreamTransportError, UpstreamFormatError) as e:
            log.warning("gateway.fetch_failed", error=str(e))
            return self._failure(e, RequestState.FETCH_FAILED)
        except GeoLayersError as e:
            log.info("gateway.rejected", state=state.value, error=str(e))
            return self._failure(e, state)

    def _store(self, location: tuple[float, float], payload: dict[str, Any], ttl: int) -> None:
        lat, lon = location
        try:
            self.repository.store(
                self.LAYER_TYPE,
                self.SOURCE,
                lat,
                lon,
                payload,
                radius=self.STORE_RADIUS,
                expires_at=self.clock() + ttl,
            )
        except RepositoryError as e:
            logger.warning("gateway.store_failed", provider=self.name, error=str(e))

    def _normalize(self, raw: Any, **context: Any) -> dict[str, Any]:
        """Standardize a raw payload, raising UpstreamFormatError on malformed data."""
        payload = self.normalizer.standardize(raw, self.SOURCE, self.LAYER_TYPE, **context)
        if self.normalizer.is_error(payload):
            raise UpstreamFormatError(self.name, payload["error"])
        return payload

    def _validate(self, lat: Any, lon: Any) -> tuple[float, float]:
        return validate_coordinates(lat, lon, self.region)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        """Perform a GET against the provider and decode the JSON body.

        Raises:
            UpstreamTransportError: On connection errors, timeouts or a non-200 status.
            UpstreamFormatError: If the body is not valid JSON or too large.
        """
        url = f"{self.config.base_url}{path}"

        try:
            async with self.session.get(
                url,
                params=params,
                headers=self._build_headers(),
                timeout=self.timeout,
            ) as resp:
                self._check_response_size(resp)
                if resp.status != 200:
                    raise UpstreamTransportError(self.name, url, resp.status)
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise UpstreamFormatError(self.name, str(e))

        except asyncio.TimeoutError:
            raise UpstreamTransportError(
                self.name, url, details=f"Timed out after {self.config.timeout}s"
            )
        except aiohttp.ClientError as e:
            raise UpstreamTransportError(self.name, url, details=str(e))

    def _build_headers(self) -> dict[str, str]:
        """Build common request headers."""
        return {
            "User-Agent": f"geolayers/{__version__}",
            "Accept": "application/json",
        }

    def _check_response_size(self, response: aiohttp.ClientResponse) -> None:
        """Reject responses that announce a body larger than the limit."""
        content_length = response.headers.get("Content-Length")
        if content_length is None:
            return
        try:
            size = int(content_length)
        except ValueError:
            return  # Invalid Content-Length header, proceed with caution
        try:
            validate_response_size(size, self.MAX_RESPONSE_SIZE)
        except ValidationError as e:
            raise UpstreamFormatError(self.name, str(e))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _timestamp(self) -> int:
        return int(self.clock())

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def _failure(
        self,
        exc: GeoLayersError,
        state: Optional[RequestState] = None,
    ) -> LayerResponse:
        return LayerResponse.from_error(exc, self._timestamp(), state)
