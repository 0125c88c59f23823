"""
CLI entry point for running geolayers as a module.

Usage: python -m geolayers [OPTIONS] COMMAND [ARGS]...
"""

from geolayers.cli.main import cli

if __name__ == "__main__":
    cli()
