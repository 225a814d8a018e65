"""Reminders — user-set one-shot reminders delivered by a background poller.

Runs as an asyncio background task alongside the transport.
Checks for due reminders every 30 seconds and sends them to the chat they
were set in. A reminder that fails to send stays due and is retried on the
next check.

Command syntax (after the configured prefix, default "remind me "):
- "in <N> <minutes|hours|days> to <text>"
- "at <ISO datetime> to <text>"   (naive times are UTC)
"""

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from .db import models

logger = logging.getLogger("concierge.reminders")

# Check interval in seconds
_CHECK_INTERVAL = 30

_UNITS = {
    "m": "minutes", "min": "minutes", "mins": "minutes", "minute": "minutes", "minutes": "minutes",
    "h": "hours", "hr": "hours", "hrs": "hours", "hour": "hours", "hours": "hours",
    "d": "days", "day": "days", "days": "days",
}

_RELATIVE_RE = re.compile(r"^in\s+(\d+)\s*([a-z]+)\s+(?:to\s+)?(.+)$", re.IGNORECASE | re.DOTALL)
_ABSOLUTE_RE = re.compile(r"^at\s+(.+?)\s+to\s+(.+)$", re.IGNORECASE | re.DOTALL)

USAGE = "Use: remind me in 30 minutes to <what>, or remind me at 2025-09-15 14:30 to <what>"


class ReminderError(Exception):
    """Reminder command could not be understood or stored."""
    pass


def is_reminder_request(request: str) -> bool:
    """True if ``request`` has the "in ..." or "at ... to ..." shape.

    Anything else after "remind me " (e.g. "what time lunch is") is an
    ordinary question, not a reminder command.
    """
    request = request.strip()
    return bool(_RELATIVE_RE.match(request) or _ABSOLUTE_RE.match(request))


def parse_reminder(request: str, now: Optional[datetime] = None) -> tuple[datetime, str]:
    """Parse the part of a reminder command after the prefix.

    Args:
        request: e.g. "in 2 hours to call home"
        now: Reference time (default: now, UTC)

    Returns:
        Tuple of (remind_at: timezone-aware UTC datetime, message)

    Raises:
        ReminderError: if the request can't be parsed or lies in the past
    """
    now = now or datetime.now(timezone.utc)
    request = request.strip()

    m = _RELATIVE_RE.match(request)
    if m:
        amount, unit, message = int(m.group(1)), m.group(2).lower(), m.group(3).strip()
        if unit not in _UNITS:
            raise ReminderError(f"Unknown time unit '{unit}'. {USAGE}")
        if amount <= 0:
            raise ReminderError(f"Reminder time must be in the future. {USAGE}")
        return now + timedelta(**{_UNITS[unit]: amount}), message

    m = _ABSOLUTE_RE.match(request)
    if m:
        when, message = m.group(1).strip(), m.group(2).strip()
        try:
            remind_at = datetime.fromisoformat(when.replace("Z", "+00:00"))
        except ValueError:
            raise ReminderError(f"Invalid date/time '{when}'. {USAGE}")
        if remind_at.tzinfo is None:
            remind_at = remind_at.replace(tzinfo=timezone.utc)
        if remind_at <= now:
            raise ReminderError(f"Reminder time must be in the future. {USAGE}")
        return remind_at, message

    raise ReminderError(USAGE)


async def create_reminder(chat_id: str, user_id: str, request: str, now: Optional[datetime] = None) -> dict:
    """Parse ``request`` and store the reminder.

    Raises:
        ReminderError: if the request is invalid
    """
    remind_at, message = parse_reminder(request, now)
    if not message:
        raise ReminderError(USAGE)
    reminder = await models.insert_reminder(chat_id, user_id, message, remind_at)
    logger.info(f"Reminder {reminder['id']} set by {user_id} for {remind_at.isoformat()}")
    return reminder


def format_confirmation(reminder: dict) -> str:
    when = reminder["remind_at"].strftime("%Y-%m-%d %H:%M UTC")
    return f"⏰ Got it! I'll remind you at {when}: {reminder['message']}"


async def describe_reminders(user_id: str) -> str:
    """Human-readable list of a user's pending reminders."""
    reminders = await models.list_reminders(user_id=user_id)
    if not reminders:
        return "You have no pending reminders."
    lines = ["⏰ Your reminders:"]
    for r in reminders:
        lines.append(f"• #{r['id']} {r['remind_at'].strftime('%Y-%m-%d %H:%M UTC')} — {r['message']}")
    return "\n".join(lines)


class ReminderDispatcher:
    """Background reminder delivery.

    Usage:
        dispatcher = ReminderDispatcher()
        await dispatcher.start(transport)
        # ... later ...
        await dispatcher.stop()
    """

    def __init__(self, interval_seconds: int = _CHECK_INTERVAL):
        self.interval = interval_seconds
        self._transport = None
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self, transport):
        """Start the dispatcher background task."""
        if self._running:
            logger.warning("Reminder dispatcher already running")
            return

        self._transport = transport
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Reminder dispatcher started")

    async def stop(self):
        """Stop the dispatcher."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Reminder dispatcher stopped")

    async def _run_loop(self):
        """Main dispatcher loop."""
        while self._running:
            try:
                await self.dispatch_due()
            except Exception as e:
                logger.error(f"Reminder dispatcher error: {e}", exc_info=True)

            await asyncio.sleep(self.interval)

    async def dispatch_due(self, now: Optional[datetime] = None) -> int:
        """Send every due reminder once.

        Returns:
            Number of reminders delivered
        """
        now = now or datetime.now(timezone.utc)
        delivered = 0
        for reminder in await models.due_reminders(now):
            try:
                conversation = await self._transport.get_conversation(reminder["chat_id"])
                await conversation.send_text(f"⏰ Reminder: {reminder['message']}")
                await models.mark_reminder_sent(reminder["id"], now)
                delivered += 1
                logger.info(f"Delivered reminder {reminder['id']} to {reminder['chat_id']}")
            except Exception as e:
                # Not marked sent, so retried on the next check
                logger.error(f"Error delivering reminder {reminder['id']}: {e}")
        return delivered
