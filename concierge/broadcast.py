"""Two-phase broadcast: preview, then confirm or cancel.

Each initiating sender holds at most one pending broadcast. Confirming
fans the body out to every other conversation one at a time with a small
delay between sends; individual failures are counted, not retried.

    (none)  --preview-->  pending  --confirm-->  (none) + fan-out
                          pending  --cancel--->  (none)
                          pending  --preview-->  pending (replaced)
    (none)  --confirm/cancel-->  NothingPendingError
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from .content import TextContent
from .transport.base import Transport

logger = logging.getLogger("concierge.broadcast")


class BroadcastError(Exception):
    """Base class for broadcast command failures."""
    pass


class NothingPendingError(BroadcastError):
    def __init__(self):
        super().__init__("nothing pending")


class EmptyBroadcastError(BroadcastError):
    def __init__(self):
        super().__init__("Broadcast message cannot be empty. Use: broadcast [your message]")


class BroadcastStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


@dataclass
class PendingBroadcast:
    body: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: BroadcastStatus = BroadcastStatus.PENDING


@dataclass(frozen=True)
class BroadcastResult:
    delivered: int
    failed: int
    total: int

    def summary(self) -> str:
        return (
            "✅ Broadcast sent!\n\n"
            "📊 Results:\n"
            f"• Delivered to: {self.delivered} conversations\n"
            f"• Failed: {self.failed}\n"
            f"• Total: {self.total}"
        )


class BroadcastWorkflow:
    """Per-sender preview/confirm/cancel state machine with fan-out."""

    def __init__(
        self,
        transport: Transport,
        header: str = "📢 BROADCAST",
        send_delay: float = 0.1,
        send_timeout: Optional[float] = None,
        allowlist: Iterable[str] = (),
        confirm_phrase: str = "yes",
        cancel_phrase: str = "no",
    ):
        self.transport = transport
        self.header = header
        self.send_delay = max(0.0, send_delay)
        self.send_timeout = send_timeout
        self.allowlist = {a.strip().lower() for a in allowlist if a.strip()}
        self.confirm_phrase = confirm_phrase
        self.cancel_phrase = cancel_phrase
        self._pending: dict[str, PendingBroadcast] = {}

    # ── access control ──────────────────────────────────────

    def is_authorized(self, sender_id: str, display_address: Optional[str] = None) -> bool:
        """Case-insensitive allowlist check on sender id or display address.

        An empty allowlist authorizes nobody.
        """
        candidates = {sender_id.lower()}
        if display_address:
            candidates.add(display_address.lower())
        return bool(self.allowlist & candidates)

    # ── state ───────────────────────────────────────────────

    def pending(self, sender_id: str) -> Optional[PendingBroadcast]:
        entry = self._pending.get(sender_id)
        if entry and entry.status == BroadcastStatus.PENDING:
            return entry
        return None

    def format_body(self, text: str) -> str:
        return f"{self.header}\n\n{text}" if self.header else text

    def preview(self, sender_id: str, text: str) -> str:
        """Store (or replace) the sender's pending broadcast and describe it.

        Nothing is sent until :meth:`confirm`.

        Raises:
            EmptyBroadcastError: if ``text`` is blank
        """
        text = text.strip()
        if not text:
            raise EmptyBroadcastError()

        replaced = self.pending(sender_id) is not None
        self._pending[sender_id] = PendingBroadcast(body=self.format_body(text))
        logger.info(f"Broadcast preview stored for {sender_id}{' (replaced previous)' if replaced else ''}")

        return (
            "📢 Broadcast preview:\n\n"
            f"{self.format_body(text)}\n\n"
            "---\n"
            f"Reply \"{self.confirm_phrase}\" to send this to all conversations, "
            f"or \"{self.cancel_phrase}\" to cancel."
        )

    def cancel(self, sender_id: str) -> str:
        """Drop the sender's pending broadcast without sending anything.

        Raises:
            NothingPendingError: if the sender has nothing pending
        """
        entry = self.pending(sender_id)
        if entry is None:
            raise NothingPendingError()
        entry.status = BroadcastStatus.CANCELLED
        del self._pending[sender_id]
        logger.info(f"Broadcast cancelled by {sender_id}")
        return "🚫 Broadcast cancelled. Nothing was sent."

    async def confirm(self, sender_id: str, origin_conversation_id: str) -> BroadcastResult:
        """Send the pending broadcast to every conversation except the origin.

        Sends are sequential with ``send_delay`` between them. A failed send
        is counted and skipped. The pending entry is removed afterwards no
        matter how the fan-out went.

        Raises:
            NothingPendingError: if the sender has nothing pending
        """
        entry = self.pending(sender_id)
        if entry is None:
            raise NothingPendingError()

        # Marked before the first await so a second confirm can't resend
        entry.status = BroadcastStatus.CONFIRMED
        try:
            conversations = await self.transport.list_conversations()
            targets = [c for c in conversations if c.id != origin_conversation_id]

            delivered = 0
            failed = 0
            for i, conversation in enumerate(targets):
                if i and self.send_delay:
                    await asyncio.sleep(self.send_delay)
                try:
                    send = conversation.send(TextContent(text=entry.body))
                    if self.send_timeout:
                        await asyncio.wait_for(send, timeout=self.send_timeout)
                    else:
                        await send
                    delivered += 1
                except Exception as e:
                    failed += 1
                    logger.error(f"Failed to send broadcast to conversation {conversation.id}: {e}")

            result = BroadcastResult(delivered=delivered, failed=failed, total=len(targets))
            logger.info(f"📢 Broadcast completed: {delivered} delivered, {failed} failed")
            return result
        finally:
            self._pending.pop(sender_id, None)
