"""Database management commands."""

import asyncio

from . import cli
from .shared import console


@cli.group()
def db():
    """Database management commands."""
    pass


@db.command("init")
def db_init():
    """Initialize database schema."""
    async def _init():
        from concierge.config import load_settings
        from concierge.db.connection import apply_schema, close_db, init_db

        settings = load_settings()
        pool = await init_db(settings.database_url)
        try:
            await apply_schema(pool)
        finally:
            await close_db()

        console.print("[green]✓ Database schema initialized[/green]")

    asyncio.run(_init())
