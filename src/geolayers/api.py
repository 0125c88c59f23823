"""
High-level programmatic API for geolayers.

This module provides simple, async-friendly functions for common operations.
For more control, use LayerService and the gateways directly.

Example:
    import asyncio
    from geolayers import query

    async def main():
        envelope = await query(
            {"action": "get_current", "layer": "weather", "lat": 44.43, "lon": 26.10},
            config_path="geolayers.toml",
        )
        if envelope["success"]:
            print(envelope["data"]["data"]["temperature"])

    asyncio.run(main())
"""

import asyncio
from pathlib import Path
from typing import Any

from geolayers.core.config import Settings, load_settings
from geolayers.core.exceptions import ConfigurationError
from geolayers.service import LayerService


async def query(
    params: dict[str, Any],
    *,
    settings: Settings | None = None,
    config_path: str | Path | None = None,
) -> dict[str, Any]:
    """Run a single layer query.

    Args:
        params: Query mapping, e.g. ``{"action": "get_current", "layer":
            "pollution", "lat": 44.43, "lon": 26.10}``.
        settings: Settings to use. Takes precedence over ``config_path``.
        config_path: TOML file to load settings from when ``settings`` is not given.

    Returns:
        The response envelope as a dict.

    Raises:
        ConfigurationError: If neither argument is given or the file cannot be loaded.

    Example:
        >>> import asyncio
        >>> from geolayers import query
        >>> asyncio.run(query({"cache_action": "stats"}, config_path="geolayers.toml"))["success"]
        True
    """
    if settings is None:
        if config_path is None:
            raise ConfigurationError("settings", "Pass settings or config_path")
        settings = load_settings(config_path)

    async with LayerService(settings) as service:
        return await service.handle(params)


def query_sync(
    params: dict[str, Any],
    *,
    settings: Settings | None = None,
    config_path: str | Path | None = None,
) -> dict[str, Any]:
    """Synchronous wrapper for query().

    For use in non-async contexts. Creates a new event loop.

    Example:
        >>> from geolayers import query_sync
        >>> envelope = query_sync({"cache_action": "stats"}, config_path="geolayers.toml")
    """
    return asyncio.run(query(params, settings=settings, config_path=config_path))
