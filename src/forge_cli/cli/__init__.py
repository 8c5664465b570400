"""Command-line interface: click commands and rich rendering."""

from forge_cli.cli.app import main

__all__ = ["main"]
