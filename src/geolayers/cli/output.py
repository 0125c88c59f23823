"""
Rich terminal output helpers for CLI.

Provides functions for printing envelopes, bulk tables, cache statistics and
rate limit usage using the Rich library.
"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

# Console instance for all output
console = Console()

SOURCE_STYLES = {
    "api": "green",
    "cache": "cyan",
    "database": "blue",
    "mock": "yellow",
}

RISK_STYLES = {
    "very_low": "bold green",
    "low": "green",
    "medium": "yellow",
    "high": "red",
    "very_high": "bold red",
}

AQI_STYLES = {
    1: "bold green",
    2: "green",
    3: "yellow",
    4: "red",
    5: "bold red",
}


def get_source_style(source: str | None) -> str:
    """Get Rich style string for a response source."""
    return SOURCE_STYLES.get(source or "", "white")


def summarize(layer: str, payload: Any) -> Text:
    """Build a one-line summary of a current-conditions payload."""
    data = (payload or {}).get("data") or {}

    if layer == "weather":
        temperature = data.get("temperature") or {}
        return Text(
            f"{temperature.get('value')} {temperature.get('unit', '')}, "
            f"{data.get('description') or 'n/a'}"
        )

    if layer == "pollution":
        aqi = data.get("aqi") or {}
        return Text(
            f"AQI {aqi.get('value')} ({aqi.get('level', 'Unknown')})",
            style=AQI_STYLES.get(aqi.get("value"), "white"),
        )

    analysis = (payload or {}).get("analysis") or {}
    risk = analysis.get("risk_level", "unknown")
    return Text(
        f"{data.get('total_crimes', 0)} crimes, risk {risk}",
        style=RISK_STYLES.get(risk, "white"),
    )


def print_envelope(envelope: dict[str, Any], title: str) -> None:
    """Print a single response envelope.

    Args:
        envelope: Envelope returned by LayerService.handle.
        title: Panel title.
    """
    if not envelope.get("success"):
        print_failure(envelope)
        return

    source = envelope.get("source")
    style = get_source_style(source)

    console.print()
    console.print(Panel(f"[bold]{title}[/]", subtitle=f"source: [{style}]{source}[/]"))
    console.print_json(data=envelope.get("data"))


def print_failure(envelope: dict[str, Any]) -> None:
    """Print a failed envelope with its error type and retry hint."""
    print_error(f"{envelope.get('error_type')}: {envelope.get('error')}")
    if envelope.get("retry_after") is not None:
        print_info(f"Retry after {envelope['retry_after']}s")
    elif envelope.get("retryable"):
        print_info("This request can be retried.")


def print_bulk_table(layer: str, envelope: dict[str, Any]) -> None:
    """Print a table of per-location results from a bulk request.

    Args:
        layer: Layer name the request was for.
        envelope: Bulk envelope whose data maps location to envelope.
    """
    if not envelope.get("success"):
        print_failure(envelope)
        return

    table = Table(
        title=f"Bulk {layer} results",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )

    table.add_column("Location", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Source")
    table.add_column("Summary")

    results = envelope.get("data") or {}
    for name, result in results.items():
        if result.get("success"):
            status = Text("OK", style="green")
            source = result.get("source")
            source_text = Text(source or "-", style=get_source_style(source))
            summary = summarize(layer, result.get("data"))
        else:
            status = Text("FAIL", style="bold red")
            source_text = Text("-", style="dim")
            summary = Text(result.get("error") or "", style="red")

        table.add_row(name, status, source_text, summary)

    failed = sum(1 for r in results.values() if not r.get("success"))

    console.print()
    console.print(table)
    console.print()
    console.print(f"[bold]Summary:[/] {len(results)} locations")
    console.print(f"  [green]Succeeded:[/] {len(results) - failed}")
    console.print(f"  [red]Failed:[/] {failed}")


def print_cache_stats(stats: dict[str, Any]) -> None:
    """Print cache statistics."""
    console.print("\n[bold cyan]Cache Statistics[/]")
    console.print(f"  Database: {stats['db_path']}")
    console.print(f"  Size: {stats['total_size'] / 1024:.1f} KB of {stats['max_size'] / (1024 * 1024):.0f} MB")
    console.print(f"  Total entries: {stats['total_files']}")
    console.print(f"  Expired entries: {stats['expired_count']}")

    if stats["per_service_counts"]:
        console.print("\n  Entries by service:")
        for service, count in stats["per_service_counts"].items():
            console.print(f"    {service}: {count}")


def print_limits_table(usage: list[dict[str, Any]], enabled: bool) -> None:
    """Print the current rate limit usage of every provider.

    Args:
        usage: One RateLimiter.usage() dict per provider.
        enabled: Whether rate limiting is switched on.
    """
    table = Table(
        title="Rate Limits",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )

    table.add_column("Provider", style="cyan")
    table.add_column("This minute", justify="right")
    table.add_column("Last 24h", justify="right")

    for row in usage:
        minute_limit = row["limit_per_minute"]
        minute_style = "red" if row["minute"] >= minute_limit else "green"
        day_limit = row["limit_per_day"]
        day = f"{row['day']} / {day_limit}" if day_limit else str(row["day"])

        table.add_row(
            row["identifier"],
            Text(f"{row['minute']} / {minute_limit}", style=minute_style),
            day,
        )

    console.print()
    console.print(table)
    if not enabled:
        print_warning("Rate limiting is disabled in the configuration.")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[cyan]Info:[/] {message}")
