"""Start command."""

import asyncio
import sys

import click

from . import cli
from .shared import console


@cli.command()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def start(debug):
    """Start the Concierge agent."""
    from concierge.config import load_settings
    from concierge.main import run

    settings = load_settings()
    if debug:
        settings.debug_logs = True

    console.print("[bold blue]Starting Concierge...[/bold blue]")
    sys.exit(asyncio.run(run(settings)))
