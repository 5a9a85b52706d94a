"""CLI module for scriptenv.

This module provides the click command group and its entry point.
"""

from scriptenv.cli.main import cli, main

__all__ = [
    "cli",
    "main",
]
