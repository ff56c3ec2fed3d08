"""Command-line interface."""

from daytrace.cli.main import cli, main

__all__ = ["cli", "main"]
