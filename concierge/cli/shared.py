"""Shared utilities for Concierge CLI commands."""

from rich.console import Console

console = Console()
