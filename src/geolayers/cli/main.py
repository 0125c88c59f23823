"""
Main CLI entry point for geolayers.

Provides commands for querying the weather, pollution and crime layers, and
for managing the cache, the stored layer records and the rate limits.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import click

from geolayers import __version__
from geolayers.cli.output import (
    print_bulk_table,
    print_cache_stats,
    print_envelope,
    print_error,
    print_failure,
    print_info,
    print_limits_table,
    print_success,
)
from geolayers.core.config import Settings, load_settings
from geolayers.core.exceptions import GeoLayersError
from geolayers.core.logging import configure_logging
from geolayers.core.models import LayerType
from geolayers.service import LayerService

DEFAULT_CONFIG = Path.home() / ".geolayers" / "config.toml"

LAYERS = [t.value for t in LayerType]


def run_async(coro):
    """Run an async coroutine in a fresh event loop."""
    return asyncio.run(coro)


async def _handle(settings: Settings, query: dict[str, Any]) -> dict[str, Any]:
    async with LayerService(settings) as service:
        return await service.handle(query)


def _emit(envelope: dict[str, Any], title: str, output_format: str) -> None:
    """Print an envelope and exit non-zero if it is a failure."""
    if output_format == "json":
        click.echo(json.dumps(envelope, indent=2))
    else:
        print_envelope(envelope, title)

    if not envelope.get("success"):
        sys.exit(1)


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


format_option = click.option(
    "--format", "-f", "output_format",
    type=click.Choice(["rich", "json"]),
    default="rich",
    help="Output format.",
)


@click.group()
@click.version_option(version=__version__, prog_name="geolayers")
@click.option(
    "--config", "-c", "config_path",
    envvar="GEOLAYERS_CONFIG",
    type=click.Path(dir_okay=False),
    default=str(DEFAULT_CONFIG),
    show_default=True,
    help="Path to the TOML configuration file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    help="Override the configured log level.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str, log_level: Optional[str]) -> None:
    """Geolayers - weather, air pollution and crime data for any point.

    Fetches environmental layer data from third-party providers, caches it
    locally and keeps normalized records for area statistics.
    """
    try:
        settings = load_settings(config_path)
    except GeoLayersError as e:
        print_error(str(e))
        sys.exit(1)

    configure_logging(log_level or settings.logging.level, settings.logging.format)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.argument("layer", type=click.Choice(LAYERS))
@click.option("--lat", type=float, required=True, help="Latitude.")
@click.option("--lon", type=float, required=True, help="Longitude.")
@click.option(
    "--units",
    type=click.Choice(["standard", "metric", "imperial"]),
    help="Weather units (default: metric).",
)
@click.option("--date", help="Crime month as YYYY-MM (default: previous month).")
@format_option
@click.pass_context
def current(
    ctx: click.Context,
    layer: str,
    lat: float,
    lon: float,
    units: Optional[str],
    date: Optional[str],
    output_format: str,
) -> None:
    """Get current data of a LAYER for a point.

    \b
    Examples:
        geolayers current weather --lat 44.43 --lon 26.10
        geolayers current pollution --lat 44.43 --lon 26.10 -f json
        geolayers current crime --lat 51.50 --lon -0.12 --date 2024-05
    """
    query = {
        "action": "get_current",
        "layer": layer,
        "lat": lat,
        "lon": lon,
        "units": units,
        "date": date,
    }
    envelope = run_async(_handle(_settings(ctx), query))
    _emit(envelope, f"Current {layer} at {lat}, {lon}", output_format)


@cli.command()
@click.argument("layer", type=click.Choice(LAYERS))
@click.option("--lat", type=float, required=True, help="Latitude.")
@click.option("--lon", type=float, required=True, help="Longitude.")
@click.option(
    "--units",
    type=click.Choice(["standard", "metric", "imperial"]),
    help="Weather units (default: metric).",
)
@click.option("--days", type=int, help="Weather forecast days, 1-5 (default: 5).")
@click.option("--hours", type=int, help="Pollution forecast hours, 1-120 (default: 24).")
@format_option
@click.pass_context
def forecast(
    ctx: click.Context,
    layer: str,
    lat: float,
    lon: float,
    units: Optional[str],
    days: Optional[int],
    hours: Optional[int],
    output_format: str,
) -> None:
    """Get a forecast of a LAYER for a point.

    \b
    Examples:
        geolayers forecast weather --lat 44.43 --lon 26.10 --days 3
        geolayers forecast pollution --lat 44.43 --lon 26.10 --hours 48
    """
    query = {
        "action": "get_forecast",
        "layer": layer,
        "lat": lat,
        "lon": lon,
        "units": units,
        "days": days,
        "hours": hours,
    }
    envelope = run_async(_handle(_settings(ctx), query))
    _emit(envelope, f"{layer.capitalize()} forecast at {lat}, {lon}", output_format)


@cli.command()
@click.argument("layer", type=click.Choice(LAYERS))
@click.argument("locations_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--units",
    type=click.Choice(["standard", "metric", "imperial"]),
    help="Weather units (default: metric).",
)
@click.option("--date", help="Crime month as YYYY-MM (default: previous month).")
@click.option(
    "--format", "-f", "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.pass_context
def bulk(
    ctx: click.Context,
    layer: str,
    locations_file: str,
    units: Optional[str],
    date: Optional[str],
    output_format: str,
) -> None:
    """Get current data of a LAYER for many points.

    LOCATIONS_FILE is a JSON list of {"lat", "lon", "name"} objects
    (at most 50).

    \b
    Examples:
        geolayers bulk weather cities.json
        geolayers bulk pollution cities.json -f json
    """
    try:
        locations = json.loads(Path(locations_file).read_text())
    except (OSError, ValueError) as e:
        print_error(f"Could not read {locations_file}: {e}")
        sys.exit(1)

    query = {
        "action": "get_bulk",
        "layer": layer,
        "locations": locations,
        "units": units,
        "date": date,
    }
    envelope = run_async(_handle(_settings(ctx), query))

    if output_format == "json":
        click.echo(json.dumps(envelope, indent=2))
    else:
        print_bulk_table(layer, envelope)

    if not envelope.get("success"):
        sys.exit(1)


@cli.command("area-stats")
@click.argument("layer", type=click.Choice(LAYERS))
@click.option("--north", type=float, required=True, help="Northern edge.")
@click.option("--south", type=float, required=True, help="Southern edge.")
@click.option("--east", type=float, required=True, help="Eastern edge.")
@click.option("--west", type=float, required=True, help="Western edge.")
@click.option("--timeframe", "-t", help="Window such as 24h, 7d or 3m.")
@format_option
@click.pass_context
def area_stats(
    ctx: click.Context,
    layer: str,
    north: float,
    south: float,
    east: float,
    west: float,
    timeframe: Optional[str],
    output_format: str,
) -> None:
    """Aggregate stored LAYER records inside a bounding box.

    \b
    Examples:
        geolayers area-stats weather --north 44.5 --south 44.3 --east 26.2 --west 26.0
        geolayers area-stats crime --north 51.6 --south 51.4 --east 0.1 --west -0.3 -t 3m
    """
    query = {
        "action": "get_area_stats",
        "layer": layer,
        "north": north,
        "south": south,
        "east": east,
        "west": west,
        "timeframe": timeframe,
    }
    envelope = run_async(_handle(_settings(ctx), query))
    _emit(envelope, f"{layer.capitalize()} area statistics", output_format)


@cli.command()
@click.option("--stats", is_flag=True, help="Show cache statistics.")
@click.option("--clear", is_flag=True, help="Clear all cached data.")
@click.option("--cleanup", is_flag=True, help="Remove expired and corrupted entries.")
@click.option("--check-size", is_flag=True, help="Enforce the configured size budget.")
@click.option("--invalidate", type=click.Choice(LAYERS), help="Remove every entry of one service.")
@click.pass_context
def cache(
    ctx: click.Context,
    stats: bool,
    clear: bool,
    cleanup: bool,
    check_size: bool,
    invalidate: Optional[str],
) -> None:
    """Manage the local response cache.

    Provider responses are cached with the TTL configured per provider
    (cache_ttl) to stay within upstream quotas.

    \b
    Examples:
        geolayers cache --stats           # Show cache statistics
        geolayers cache --clear           # Clear all cached data
        geolayers cache --cleanup         # Remove only expired entries
        geolayers cache --check-size      # Evict oldest entries if over budget
        geolayers cache --invalidate crime
    """
    settings = _settings(ctx)

    if invalidate:
        service = LayerService(settings)
        count = service.cache.invalidate_service(invalidate)
        print_success(f"Invalidated {count} {invalidate} entries.")
        return

    if clear:
        action = "clear"
    elif cleanup:
        action = "cleanup"
    elif check_size:
        action = "check_size"
    elif stats:
        action = "stats"
    else:
        # Show help if no option specified
        click.echo(ctx.get_help())
        return

    envelope = run_async(_handle(settings, {"cache_action": action}))
    if not envelope.get("success"):
        print_failure(envelope)
        sys.exit(1)

    data = envelope["data"]
    if action == "clear":
        print_success(f"Cache cleared. Removed {data['removed']} entries.")
    elif action == "cleanup":
        print_success(f"Cleanup complete. Removed {data['removed']} expired entries.")
    elif action == "check_size":
        if data["cleaned"]:
            print_success("Cache was over budget and has been trimmed.")
        else:
            print_info("Cache is within its size budget.")
        print_cache_stats(data)
    else:
        print_cache_stats(data)


@cli.command()
@click.option("--cleanup", is_flag=True, help="Delete expired layer records.")
@click.pass_context
def layers(ctx: click.Context, cleanup: bool) -> None:
    """Show or clean the stored layer records.

    \b
    Examples:
        geolayers layers            # Record counts per layer
        geolayers layers --cleanup  # Delete expired records
    """
    service = LayerService(_settings(ctx))

    try:
        if cleanup:
            removed = service.repository.cleanup()
            print_success(f"Removed {removed} expired layer records.")
            return

        click.echo("\nStored layer records:")
        for layer in LayerType:
            click.echo(f"  {layer.value}: {service.repository.count(layer)}")
    except GeoLayersError as e:
        print_error(str(e))
        sys.exit(1)


@cli.command()
@click.option("--reset", "reset_service", type=click.Choice(LAYERS), help="Clear one provider's window.")
@click.pass_context
def limits(ctx: click.Context, reset_service: Optional[str]) -> None:
    """Show rate limit usage per provider.

    \b
    Examples:
        geolayers limits
        geolayers limits --reset weather
    """
    settings = _settings(ctx)
    service = LayerService(settings)

    if reset_service:
        service.rate_limiter.reset(reset_service)
        print_success(f"Rate limit window for {reset_service} cleared.")
        return

    usage = [service.rate_limiter.usage(layer) for layer in LAYERS]
    print_limits_table(usage, settings.rate_limiting_enabled)


if __name__ == "__main__":
    cli()
