"""
Cache module for storing provider responses.

Provides SQLite-based caching with TTL expiry and a size budget.
"""

from geolayers.cache.sqlite import CacheLayer

__all__ = ["CacheLayer"]
