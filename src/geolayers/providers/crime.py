"""
UK Police API gateway for the crime layer.
"""

import random
from typing import Any, Optional

from geolayers.core.exceptions import DisabledServiceError, ValidationError
from geolayers.core.models import Bounds, LayerResponse, LayerType, RequestState, ResponseSource
from geolayers.core.validation import validate_crime_date
from geolayers.providers.base import LayerGateway

RISK_LEVELS = (
    (5, "very_low"),
    (10, "low"),
    (20, "medium"),
    (35, "high"),
)

# Ranges for the synthetic area statistic
MOCK_TOTAL_RANGE = (5, 25)
MOCK_CATEGORY_RANGES = {
    "anti-social-behaviour": (1, 8),
    "burglary": (0, 4),
    "criminal-damage-arson": (0, 3),
    "drugs": (0, 2),
    "public-order": (0, 3),
    "shoplifting": (0, 2),
    "theft-from-the-person": (0, 2),
    "vehicle-crime": (0, 4),
    "violent-crime": (1, 5),
    "other-theft": (0, 3),
}
MOCK_NOTE = "This is demonstration data. No crime records are stored for this area."

LOW_CRIME_RECOMMENDATION = "This area appears to have very low crime rates."


def risk_level(total_crimes: int) -> str:
    for limit, label in RISK_LEVELS:
        if total_crimes < limit:
            return label
    return "very_high"


class CrimeGateway(LayerGateway):
    """Gateway for street-level crime from the UK Police API.

    Forecasts are not available for this layer. Area statistics fall back to
    a synthetic figure, flagged ``data_quality="mock"``, when nothing is stored.
    """

    LAYER_TYPE = LayerType.CRIME
    SOURCE = "police_uk"
    BULK_DELAY = 0.2

    CRIMES_PATH = "/crimes-street/all-crime"

    def __init__(self, *args: Any, rng: Optional[random.Random] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.rng = rng or random.Random()

    async def get_current(
        self,
        lat: float,
        lon: float,
        date: Optional[str] = None,
        **_: Any,
    ) -> LayerResponse:
        """Get street crimes around coordinates for one month.

        Args:
            lat: Latitude.
            lon: Longitude.
            date: Month as YYYY-MM. Defaults to the previous month.

        Returns:
            Envelope with crime totals per category and a safety analysis.
        """
        try:
            lat, lon = self._validate(lat, lon)
            date = validate_crime_date(date, self._now())
        except ValidationError as e:
            return self._failure(e, RequestState.REJECTED)

        query = {"lat": lat, "lng": lon, "date": date}

        return await self._run(
            "data",
            {"lat": lat, "lon": lon, "date": date},
            fetch=lambda: self._get_json(self.CRIMES_PATH, query),
            transform=lambda raw: self._standardize(raw, date),
            location=(lat, lon),
        )

    async def get_area_stats(self, bounds: Bounds, timeframe: str = "3m") -> LayerResponse:
        if not self.config.enabled:
            return self._failure(DisabledServiceError(self.name), RequestState.DISABLED)
        return await super().get_area_stats(bounds, timeframe)

    def _standardize(self, raw: Any, date: str) -> dict[str, Any]:
        payload = self._normalize(raw, period=date)
        payload["analysis"] = self.analyze(payload["data"]["total_crimes"])
        return payload

    @staticmethod
    def analyze(total_crimes: int) -> dict[str, Any]:
        """Score how safe an area is from its monthly crime count."""
        if not total_crimes:
            return {
                "safety_score": 100,
                "risk_level": "very_low",
                "recommendations": [LOW_CRIME_RECOMMENDATION],
            }

        return {
            "safety_score": max(0, 100 - total_crimes * 2),
            "risk_level": risk_level(total_crimes),
            "recommendations": [],
        }

    def _no_area_data(self, bounds: Bounds, timeframe: str) -> LayerResponse:
        categories = {
            category: self.rng.randint(low, high)
            for category, (low, high) in MOCK_CATEGORY_RANGES.items()
        }
        total = self.rng.randint(*MOCK_TOTAL_RANGE)

        return LayerResponse.ok(
            {
                "area_bounds": bounds.to_dict(),
                "timeframe": timeframe,
                "statistics": {"total_crimes": total, "categories": categories},
                "safety_score": max(0, 100 - total * 3),
                "risk_level": risk_level(total),
                "data_quality": "mock",
                "note": MOCK_NOTE,
            },
            ResponseSource.MOCK,
            self._timestamp(),
        )
