"""
CLI module for tmplugin.

Provides the command-line interface using Click.
"""

from tmplugin.cli.main import cli, main

__all__ = ["main", "cli"]
