"""Command line interface for vriksh."""

from vriksh.cli.app import build_parser, main

__all__ = ["build_parser", "main"]
