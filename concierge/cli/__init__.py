"""Concierge CLI — command line interface."""

import sys

import click

from concierge import __version__
from .shared import console


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="concierge")
@click.pass_context
def cli(ctx):
    """Concierge — event concierge chat agent"""
    if ctx.invoked_subcommand is None:
        _show_help()


def _show_help():
    """Show all available commands grouped by category."""
    console.print(f"[bold]Concierge v{__version__}[/bold] — event concierge chat agent\n")

    groups = {
        "Usage": [
            ("start", "Start the agent (Telegram bot)"),
        ],
        "Data": [
            ("db init", "Initialize database schema"),
            ("reminders list", "List pending reminders"),
            ("reminders add", "Schedule a reminder for a chat"),
            ("reminders delete", "Delete a reminder"),
        ],
    }

    for category, commands in groups.items():
        console.print(f"  [bold cyan]{category}[/bold cyan]")
        for name, desc in commands:
            console.print(f"    [bold]concierge {name:18s}[/bold] {desc}")
        console.print()

    console.print("[dim]Run 'concierge <command> --help' for details on a specific command.[/dim]")


# Import all command modules (registers commands onto cli group)
from . import cmd_start  # noqa: E402, F401
from . import cmd_db  # noqa: E402, F401
from . import cmd_reminders  # noqa: E402, F401


@cli.command(name="help", hidden=True)
def help_cmd():
    """Show all available commands."""
    _show_help()


def main():
    """CLI entry point."""
    try:
        cli(standalone_mode=False)
    except click.UsageError as e:
        if e.ctx:
            click.echo(e.ctx.command.get_usage(e.ctx), err=True)
        click.echo("Try 'concierge help' for help.\n", err=True)
        click.echo(f"Error: {e.format_message()}", err=True)
        sys.exit(2)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.exceptions.Exit as e:
        sys.exit(e.code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
