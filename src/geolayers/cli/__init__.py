"""
Command-line interface for geolayers.

Provides Click-based CLI commands for querying layers and managing the
local stores.
"""

from geolayers.cli.main import cli

__all__ = ["cli"]
