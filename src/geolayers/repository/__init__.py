"""
Persistence for normalized layer data.
"""

from geolayers.repository.sqlite import LayerRepository

__all__ = ["LayerRepository"]
