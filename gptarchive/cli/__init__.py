"""Command line interface."""

from gptarchive.cli.app import cli, main

__all__ = ["cli", "main"]
