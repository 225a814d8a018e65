"""Short-term conversation memory per sender.

Keeps the last few exchanges (user message + bot reply) for each sender so
the AI sees a little context. Entries expire after an hour and a periodic
sweep drops them; nothing is persisted across restarts.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger("concierge.memory")

# Marker separating the transcript from the message being answered
CURRENT_TURN_MARKER = "Current message: "


@dataclass(frozen=True)
class MemoryEntry:
    user_message: str
    bot_response: str
    timestamp: datetime


class ConversationMemory:
    """Bounded, time-decayed exchange log keyed by sender id.

    Invariants:
    - at most ``max_entries`` entries per sender (oldest dropped first)
    - after :meth:`sweep`, no entry older than ``max_age`` remains and no
      sender maps to an empty list
    """

    def __init__(self, max_entries: int = 3, max_age_seconds: int = 3600):
        self.max_entries = max(1, max_entries)
        self.max_age = timedelta(seconds=max_age_seconds)
        self._entries: dict[str, list[MemoryEntry]] = {}

    def record(
        self,
        sender_id: str,
        user_message: str,
        bot_response: str,
        now: Optional[datetime] = None,
    ):
        """Append an exchange for ``sender_id``, keeping only the newest entries."""
        entry = MemoryEntry(
            user_message=user_message,
            bot_response=bot_response,
            timestamp=now or datetime.now(timezone.utc),
        )
        history = self._entries.setdefault(sender_id, [])
        history.append(entry)
        if len(history) > self.max_entries:
            del history[: len(history) - self.max_entries]

    def entries(self, sender_id: str) -> list[MemoryEntry]:
        return list(self._entries.get(sender_id, ()))

    def context_for(self, sender_id: str) -> str:
        """Render stored exchanges as a transcript prefix.

        Returns an empty string when nothing is remembered for the sender.
        """
        history = self._entries.get(sender_id)
        if not history:
            return ""

        lines = ["Previous conversation:"]
        for entry in history:
            lines.append(f"User: {entry.user_message}")
            lines.append(f"Bot: {entry.bot_response}")
        lines.append("")
        lines.append(CURRENT_TURN_MARKER)
        return "\n".join(lines)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Drop expired entries and empty senders.

        Returns:
            Number of entries removed
        """
        cutoff = (now or datetime.now(timezone.utc)) - self.max_age
        removed = 0
        for sender_id in list(self._entries):
            history = self._entries[sender_id]
            kept = [e for e in history if e.timestamp >= cutoff]
            removed += len(history) - len(kept)
            if kept:
                self._entries[sender_id] = kept
            else:
                del self._entries[sender_id]
        return removed

    def clear(self, sender_id: str):
        self._entries.pop(sender_id, None)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, sender_id: str) -> bool:
        return sender_id in self._entries


class MemorySweeper:
    """Background task that sweeps a ConversationMemory on a fixed period.

    The sweep itself never awaits, so it always runs between two
    message-handling steps on the event loop, never in the middle of one.

    Usage:
        sweeper = MemorySweeper(memory, interval_seconds=1800)
        await sweeper.start()
        # ... later ...
        await sweeper.stop()
    """

    def __init__(self, memory: ConversationMemory, interval_seconds: int = 1800):
        self.memory = memory
        self.interval = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the sweep loop."""
        if self._running:
            logger.warning("Memory sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Memory sweeper started (every {self.interval}s)")

    async def stop(self):
        """Stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Memory sweeper stopped")

    async def _run_loop(self):
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                removed = self.memory.sweep()
                if removed:
                    logger.debug(f"Memory sweep removed {removed} expired exchange(s)")
            except Exception as e:
                logger.error(f"Memory sweep error: {e}", exc_info=True)
