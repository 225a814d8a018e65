"""Reminder management commands."""

import asyncio

import click
from rich.table import Table

from . import cli
from .shared import console


@cli.group()
def reminders():
    """Reminder management commands."""
    pass


async def _with_db(coro_fn):
    from concierge.config import load_settings
    from concierge.db.connection import close_db, init_db

    settings = load_settings()
    await init_db(settings.database_url)
    try:
        return await coro_fn()
    finally:
        await close_db()


@reminders.command("list")
@click.option("--user", "user_id", default=None, help="Only reminders set by this user id")
@click.option("--all", "include_sent", is_flag=True, help="Include already delivered reminders")
def reminders_list(user_id, include_sent):
    """List reminders."""
    from concierge.db.models import list_reminders

    rows = asyncio.run(_with_db(lambda: list_reminders(user_id=user_id, include_sent=include_sent)))
    if not rows:
        console.print("[dim]No reminders.[/dim]")
        return

    t = Table(title="Reminders")
    t.add_column("ID", justify="right")
    t.add_column("Due (UTC)")
    t.add_column("Chat")
    t.add_column("User")
    t.add_column("Message")
    t.add_column("Sent")
    for r in rows:
        message = r["message"][:50] + "..." if len(r["message"]) > 50 else r["message"]
        t.add_row(
            str(r["id"]),
            r["remind_at"].strftime("%Y-%m-%d %H:%M"),
            r["chat_id"],
            r["user_id"],
            message,
            "✓" if r["sent_at"] else "",
        )
    console.print(t)


@reminders.command("add")
@click.argument("chat_id")
@click.argument("request")
@click.option("--user", "user_id", default="cli", help="User id to record as creator")
def reminders_add(chat_id, request, user_id):
    """Schedule a reminder, e.g. concierge reminders add 12345 "in 10 minutes to stretch"."""
    from concierge.reminders import ReminderError, create_reminder, format_confirmation

    try:
        reminder = asyncio.run(_with_db(lambda: create_reminder(chat_id, user_id, request)))
    except ReminderError as e:
        raise click.ClickException(str(e))
    console.print(f"[green]✓ #{reminder['id']}[/green] {format_confirmation(reminder)}")


@reminders.command("delete")
@click.argument("reminder_id", type=int)
def reminders_delete(reminder_id):
    """Delete a reminder by id."""
    from concierge.db.models import delete_reminder

    deleted = asyncio.run(_with_db(lambda: delete_reminder(reminder_id)))
    if deleted:
        console.print(f"[green]✓ Reminder {reminder_id} deleted[/green]")
    else:
        console.print(f"[yellow]Reminder {reminder_id} not found[/yellow]")
