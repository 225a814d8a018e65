"""Database query helpers for Concierge tables."""

from datetime import datetime
from typing import Optional

from .connection import get_connection


# ============================================================
# CHATS
# ============================================================

async def upsert_chat(chat_id: str, chat_type: str, title: Optional[str] = None):
    """Record a chat the bot is part of (re-activates a previously left chat)."""
    async with get_connection() as conn:
        await conn.execute("""
            INSERT INTO chats (chat_id, chat_type, title) VALUES ($1, $2, $3)
            ON CONFLICT (chat_id) DO UPDATE
            SET chat_type = $2, title = COALESCE($3, chats.title),
                active = true, last_seen = NOW()
        """, chat_id, chat_type, title)


async def deactivate_chat(chat_id: str) -> bool:
    """Mark a chat as left. Returns True if it was known."""
    async with get_connection() as conn:
        result = await conn.execute(
            "UPDATE chats SET active = false WHERE chat_id = $1", chat_id
        )
        return result != "UPDATE 0"


async def get_chat(chat_id: str) -> Optional[dict]:
    async with get_connection() as conn:
        row = await conn.fetchrow(
            "SELECT chat_id, chat_type, title, active FROM chats WHERE chat_id = $1",
            chat_id,
        )
        return dict(row) if row else None


async def list_chats(active_only: bool = True) -> list[dict]:
    async with get_connection() as conn:
        query = "SELECT chat_id, chat_type, title, active FROM chats"
        if active_only:
            query += " WHERE active = true"
        query += " ORDER BY first_seen"
        rows = await conn.fetch(query)
        return [dict(row) for row in rows]


# ============================================================
# REMINDERS
# ============================================================

async def insert_reminder(chat_id: str, user_id: str, message: str, remind_at: datetime) -> dict:
    async with get_connection() as conn:
        row = await conn.fetchrow("""
            INSERT INTO reminders (chat_id, user_id, message, remind_at)
            VALUES ($1, $2, $3, $4)
            RETURNING id, chat_id, user_id, message, remind_at
        """, chat_id, user_id, message, remind_at)
        return dict(row)


async def list_reminders(user_id: Optional[str] = None, include_sent: bool = False) -> list[dict]:
    async with get_connection() as conn:
        conditions = []
        args = []
        if user_id is not None:
            args.append(user_id)
            conditions.append(f"user_id = ${len(args)}")
        if not include_sent:
            conditions.append("sent_at IS NULL")
        query = "SELECT id, chat_id, user_id, message, remind_at, sent_at FROM reminders"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY remind_at"
        rows = await conn.fetch(query, *args)
        return [dict(row) for row in rows]


async def delete_reminder(reminder_id: int, user_id: Optional[str] = None) -> bool:
    async with get_connection() as conn:
        if user_id is None:
            result = await conn.execute("DELETE FROM reminders WHERE id = $1", reminder_id)
        else:
            result = await conn.execute(
                "DELETE FROM reminders WHERE id = $1 AND user_id = $2", reminder_id, user_id
            )
        return result != "DELETE 0"


async def due_reminders(now: datetime) -> list[dict]:
    async with get_connection() as conn:
        rows = await conn.fetch("""
            SELECT id, chat_id, user_id, message, remind_at
            FROM reminders
            WHERE sent_at IS NULL AND remind_at <= $1
            ORDER BY remind_at ASC
        """, now)
        return [dict(row) for row in rows]


async def mark_reminder_sent(reminder_id: int, sent_at: datetime):
    async with get_connection() as conn:
        await conn.execute(
            "UPDATE reminders SET sent_at = $1 WHERE id = $2", sent_at, reminder_id
        )
