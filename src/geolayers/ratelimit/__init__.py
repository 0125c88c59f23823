"""
Rate limiting for upstream providers.
"""

from geolayers.ratelimit.sqlite import RateLimiter

__all__ = ["RateLimiter"]
