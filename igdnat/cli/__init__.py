"""Command line interface for igdnat."""

from igdnat.cli.main import cli, main

__all__ = ["cli", "main"]
