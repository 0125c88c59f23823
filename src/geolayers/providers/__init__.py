"""
Gateways to the upstream layer providers.
"""

from geolayers.providers.base import LayerGateway
from geolayers.providers.crime import CrimeGateway
from geolayers.providers.pollution import PollutionGateway
from geolayers.providers.weather import WeatherGateway

__all__ = [
    "LayerGateway",
    "WeatherGateway",
    "PollutionGateway",
    "CrimeGateway",
]
