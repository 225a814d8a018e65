"""Command routing — turn one gated text message into at most one action.

Rules are checked in order and the first match wins:

  1. broadcast preview   "broadcast <text>"        (DM, allowlisted)
  2. broadcast confirm   "yes" / "confirm" / ...   (DM, allowlisted)
  3. broadcast cancel    "no" / "cancel"           (DM, allowlisted)
  4. DM bootstrap        "... dm me ..."
  5. admin direct send   "SEND_TO:<target>:<text>" (admin ids only)
  6. reminders           "remind me in/at ...", "my reminders"
  7. welcome menu        "hi", "hello", ..., or a bare mention
  8. AI reply            everything else

Unauthorized broadcast/admin attempts are not rejected; they fall through
to the AI like any other text.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from . import reminders
from .actions import build_welcome_menu
from .agent import ResponseGenerator
from .broadcast import BroadcastWorkflow
from .content import ActionsContent, TextContent, decode_reply
from .errors import FALLBACK_MESSAGE, describe_error
from .memory import ConversationMemory
from .transport.base import Conversation, Transport

logger = logging.getLogger("concierge.router")


class Route(str, Enum):
    BROADCAST_PREVIEW = "broadcast_preview"
    BROADCAST_CONFIRM = "broadcast_confirm"
    BROADCAST_CANCEL = "broadcast_cancel"
    DM_BOOTSTRAP = "dm_bootstrap"
    ADMIN_SEND = "admin_send"
    REMINDER = "reminder"
    WELCOME = "welcome"
    AI = "ai"
    ERROR = "error"


@dataclass
class CommandGrammar:
    """Command phrases. Matching is case-insensitive."""

    broadcast_prefix: str = "broadcast "
    confirm_phrases: list[str] = field(default_factory=lambda: ["yes", "confirm", "send it"])
    cancel_phrases: list[str] = field(default_factory=lambda: ["no", "cancel"])
    dm_phrases: list[str] = field(default_factory=lambda: ["dm me", "start dm"])
    admin_send_prefix: str = "SEND_TO:"
    greeting_phrases: list[str] = field(default_factory=lambda: ["hi", "hello", "hey", "gm", "start", "/start", "menu"])
    reminder_prefix: str = "remind me "
    reminder_list_phrases: list[str] = field(default_factory=lambda: ["my reminders", "list reminders"])

    @classmethod
    def from_settings(cls, settings) -> "CommandGrammar":
        return cls(
            broadcast_prefix=settings.broadcast_prefix,
            confirm_phrases=list(settings.confirm_phrases),
            cancel_phrases=list(settings.cancel_phrases),
            dm_phrases=list(settings.dm_phrases),
            admin_send_prefix=settings.admin_send_prefix,
            greeting_phrases=list(settings.greeting_phrases),
            reminder_prefix=settings.reminder_prefix,
            reminder_list_phrases=list(settings.reminder_list_phrases),
        )

    @staticmethod
    def _exact(text: str, phrases: list[str]) -> bool:
        normalized = text.strip().lower().rstrip("!.?")
        return normalized in {p.strip().lower() for p in phrases}

    @staticmethod
    def _strip_prefix(text: str, prefix: str) -> Optional[str]:
        """Text after ``prefix`` (case-insensitive), or None if it doesn't match.

        A message that is just the prefix word yields an empty string.
        """
        stripped = text.strip()
        if stripped.lower().startswith(prefix.lower()):
            return stripped[len(prefix):]
        if prefix.strip() and stripped.lower() == prefix.strip().lower():
            return ""
        return None

    def broadcast_text(self, text: str) -> Optional[str]:
        return self._strip_prefix(text, self.broadcast_prefix)

    def is_confirm(self, text: str) -> bool:
        return self._exact(text, self.confirm_phrases)

    def is_cancel(self, text: str) -> bool:
        return self._exact(text, self.cancel_phrases)

    def is_dm_request(self, text: str) -> bool:
        lowered = text.lower()
        return any(p.lower() in lowered for p in self.dm_phrases if p)

    def admin_send(self, text: str) -> Optional[tuple[str, str]]:
        """``(target, payload)`` from "SEND_TO:<target>:<payload>", else None."""
        rest = self._strip_prefix(text, self.admin_send_prefix)
        if not rest:
            return None
        target, sep, payload = rest.partition(":")
        target, payload = target.strip(), payload.strip()
        if not sep or not target or not payload:
            return None
        return target, payload

    def reminder_request(self, text: str) -> Optional[str]:
        return self._strip_prefix(text, self.reminder_prefix)

    def is_reminder_list(self, text: str) -> bool:
        return self._exact(text, self.reminder_list_phrases)

    def is_greeting(self, text: str) -> bool:
        # A group message that was only "@handle" arrives empty
        if not text.strip():
            return True
        return self._exact(text, self.greeting_phrases)


class CommandRouter:
    """Match cleaned text against the command grammar, else ask the AI."""

    def __init__(
        self,
        transport: Transport,
        memory: ConversationMemory,
        broadcasts: BroadcastWorkflow,
        responder: ResponseGenerator,
        grammar: Optional[CommandGrammar] = None,
        admin_ids: tuple = (),
        agent_name: str = "Concierge",
        event_name: str = "Basecamp 2025",
        response_timeout: Optional[float] = 60.0,
        send_timeout: Optional[float] = 30.0,
        reminders_enabled: bool = True,
    ):
        self.transport = transport
        self.memory = memory
        self.broadcasts = broadcasts
        self.responder = responder
        self.grammar = grammar or CommandGrammar()
        self.admin_ids = {a.strip().lower() for a in admin_ids if a.strip()}
        self.agent_name = agent_name
        self.event_name = event_name
        self.response_timeout = response_timeout
        self.send_timeout = send_timeout
        self.reminders_enabled = reminders_enabled

    def is_admin(self, sender_id: str, display_address: Optional[str] = None) -> bool:
        if not self.admin_ids:
            return False
        if sender_id.lower() in self.admin_ids:
            return True
        return bool(display_address) and display_address.lower() in self.admin_ids

    async def _send(self, conversation: Conversation, content: Union[str, TextContent, ActionsContent]):
        if isinstance(content, str):
            content = TextContent(text=content)
        if self.send_timeout:
            await asyncio.wait_for(conversation.send(content), timeout=self.send_timeout)
        else:
            await conversation.send(content)

    async def handle(
        self,
        text: str,
        sender_id: str,
        conversation: Conversation,
        is_group: bool,
        display_address: Optional[str] = None,
    ) -> Route:
        """Handle one message. Never raises (except cancellation).

        Returns:
            The route that handled the message (``Route.ERROR`` if the
            generic fallback message was sent instead)
        """
        try:
            return await self._dispatch(text, sender_id, conversation, is_group, display_address)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Error generating or sending response: {e}", exc_info=True)
            try:
                await self._send(conversation, FALLBACK_MESSAGE)
            except Exception as fallback_error:
                logger.error(f"❌ Error sending fallback message: {fallback_error}")
            return Route.ERROR

    async def _dispatch(
        self,
        text: str,
        sender_id: str,
        conversation: Conversation,
        is_group: bool,
        display_address: Optional[str],
    ) -> Route:
        g = self.grammar

        # ── Broadcast (DMs only, allowlisted senders only) ──
        if not is_group and self.broadcasts.is_authorized(sender_id, display_address):
            body = g.broadcast_text(text)
            if body is not None:
                await self._broadcast_preview(sender_id, body, conversation)
                return Route.BROADCAST_PREVIEW
            if g.is_confirm(text):
                await self._broadcast_confirm(sender_id, conversation)
                return Route.BROADCAST_CONFIRM
            if g.is_cancel(text):
                await self._broadcast_cancel(sender_id, conversation)
                return Route.BROADCAST_CANCEL

        # ── DM bootstrap ──
        if g.is_dm_request(text):
            await self._start_dm(sender_id, conversation)
            return Route.DM_BOOTSTRAP

        # ── Admin direct send ──
        if self.is_admin(sender_id, display_address):
            parsed = g.admin_send(text)
            if parsed:
                await self._admin_send(*parsed, conversation)
                return Route.ADMIN_SEND

        # ── Reminders ──
        if self.reminders_enabled:
            request = g.reminder_request(text)
            if request is not None and reminders.is_reminder_request(request):
                await self._set_reminder(sender_id, request, conversation)
                return Route.REMINDER
            if g.is_reminder_list(text):
                await self._list_reminders(sender_id, conversation)
                return Route.REMINDER

        # ── Welcome menu ──
        if g.is_greeting(text):
            await self._welcome(sender_id, text, conversation)
            return Route.WELCOME

        await self._ai_reply(text, sender_id, conversation, is_group, display_address)
        return Route.AI

    # ════════════════════════════════════════════════════
    # Broadcast
    # ════════════════════════════════════════════════════

    async def _broadcast_preview(self, sender_id: str, body: str, conversation: Conversation):
        try:
            preview = self.broadcasts.preview(sender_id, body)
        except Exception as e:
            await self._send(conversation, f"❌ {describe_error(e)}")
            return
        await self._send(conversation, preview)

    async def _broadcast_confirm(self, sender_id: str, conversation: Conversation):
        logger.info(f"📢 Broadcast confirmed by {sender_id}")
        try:
            result = await self.broadcasts.confirm(sender_id, conversation.id)
        except Exception as e:
            logger.error(f"❌ Broadcast failed: {e}")
            await self._send(conversation, f"❌ Failed to send broadcast: {describe_error(e)}")
            return
        if result.total == 0:
            await self._send(conversation, "⚠️ No other conversations found to broadcast to.")
            return
        await self._send(conversation, result.summary())

    async def _broadcast_cancel(self, sender_id: str, conversation: Conversation):
        try:
            ack = self.broadcasts.cancel(sender_id)
        except Exception as e:
            await self._send(conversation, f"❌ Failed to cancel broadcast: {describe_error(e)}")
            return
        await self._send(conversation, ack)

    # ════════════════════════════════════════════════════
    # Direct conversations
    # ════════════════════════════════════════════════════

    async def _start_dm(self, sender_id: str, conversation: Conversation):
        logger.info(f"📱 DM request from {sender_id}")
        try:
            dm = await self.transport.open_direct(sender_id)
            await self._send(
                dm,
                "Hi! I'm starting this DM as requested. You can now message me directly "
                f"here for private conversations about {self.event_name}!",
            )
        except Exception as e:
            logger.error(f"❌ DM establishment failed: {e}")
            await self._send(conversation, f"❌ Failed to start DM: {describe_error(e)}")
            return
        await self._send(conversation, "✅ DM started! Check your direct messages.")

    async def _admin_send(self, target: str, payload: str, conversation: Conversation):
        logger.info(f"📤 Admin command: sending manual message to {target}")
        try:
            dm = await self.transport.open_direct(target)
            await self._send(dm, payload)
        except Exception as e:
            logger.error(f"❌ Manual send failed: {e}")
            await self._send(conversation, f"❌ Failed to send message to {target}: {describe_error(e)}")
            return
        await self._send(conversation, f'✅ Message sent to {target}: "{payload}"')

    # ════════════════════════════════════════════════════
    # Reminders
    # ════════════════════════════════════════════════════

    async def _set_reminder(self, sender_id: str, request: str, conversation: Conversation):
        try:
            reminder = await reminders.create_reminder(conversation.id, sender_id, request)
        except Exception as e:
            logger.warning(f"Reminder not set for {sender_id}: {e}")
            await self._send(conversation, f"❌ Couldn't set reminder: {describe_error(e)}")
            return
        await self._send(conversation, reminders.format_confirmation(reminder))

    async def _list_reminders(self, sender_id: str, conversation: Conversation):
        try:
            listing = await reminders.describe_reminders(sender_id)
        except Exception as e:
            await self._send(conversation, f"❌ Couldn't load reminders: {describe_error(e)}")
            return
        await self._send(conversation, listing)

    # ════════════════════════════════════════════════════
    # Welcome + AI
    # ════════════════════════════════════════════════════

    async def _send_menu(self, conversation: Conversation, menu: ActionsContent):
        """Send buttons, or the same menu as text if buttons fail."""
        try:
            await self._send(conversation, menu)
        except Exception as e:
            logger.warning(f"Interactive menu failed, sending text fallback: {e}")
            await self._send(conversation, menu.to_text())

    async def _welcome(self, sender_id: str, text: str, conversation: Conversation):
        menu = build_welcome_menu(self.agent_name, self.event_name)
        await self._send_menu(conversation, menu)
        self.memory.record(sender_id, text, menu.description)

    async def _ai_reply(
        self,
        text: str,
        sender_id: str,
        conversation: Conversation,
        is_group: bool,
        display_address: Optional[str],
    ):
        contexted = self.memory.context_for(sender_id) + text
        run = self.responder.run(contexted, sender_id, conversation.id, is_group, display_address)
        if self.response_timeout:
            response = await asyncio.wait_for(run, timeout=self.response_timeout)
        else:
            response = await run

        if not response:
            logger.info(f"No reply generated for {sender_id}")
            return

        reply = decode_reply(response)
        if isinstance(reply, ActionsContent):
            await self._send_menu(conversation, reply)
            summary = reply.description
        else:
            await self._send(conversation, reply)
            summary = reply.text

        self.memory.record(sender_id, text, summary)
        logger.info(f"✅ Sent response: {summary[:100]!r}")
