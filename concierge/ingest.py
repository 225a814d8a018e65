"""Ingestion loop — pull inbound messages one at a time and dispatch them.

Messages are handled strictly in arrival order; each message's side
effects (memory, pending broadcasts) are complete before the next one is
taken from the stream. That ordering is what keeps the shared per-sender
state safe without locks.
"""

import asyncio
import logging
from typing import Optional

from .actions import ActionContentRouter
from .content import ContentType, IntentContent
from .gating import GatingPolicy
from .router import CommandRouter, Route
from .transport.base import InboundMessage, Transport

logger = logging.getLogger("concierge.ingest")


class IngestionLoop:
    """Drives the pipeline: stream → filter → resolve → gate → route."""

    def __init__(
        self,
        transport: Transport,
        gating: GatingPolicy,
        router: CommandRouter,
        action_router: ActionContentRouter,
        show_sender_address: bool = True,
        debug_logs: bool = False,
        send_timeout: Optional[float] = 30.0,
    ):
        self.transport = transport
        self.gating = gating
        self.router = router
        self.action_router = action_router
        self.show_sender_address = show_sender_address
        self.debug_logs = debug_logs
        self.send_timeout = send_timeout
        self.processed = 0

    async def run(self):
        """Consume the transport stream until it ends or the task is cancelled."""
        logger.info("👂 Listening for messages...")
        async for message in self.transport.stream():
            try:
                await self.process(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Error processing message: {e}", exc_info=True)
        logger.info("Message stream ended.")

    def _is_own(self, message: InboundMessage) -> bool:
        return message.sender_id.lower() == str(self.transport.self_id).lower()

    async def process(self, message: InboundMessage) -> Optional[Route]:
        """Handle one inbound message.

        Returns:
            The command route taken, ``None`` if the message was skipped or
            answered through the intent path.
        """
        if self.debug_logs:
            logger.debug(
                f"📥 Received message: id={message.id} sender={message.sender_id} "
                f"conversation={message.conversation_id} type={message.content_type.value}"
            )

        if self._is_own(message):
            logger.debug("⏭️ Skipping own message")
            return None

        if message.content_type == ContentType.INTENT:
            await self._handle_intent(message)
            return None

        if message.content_type != ContentType.TEXT:
            logger.debug(f"⏭️ Skipping {message.content_type.value} message")
            return None

        try:
            conversation = await self.transport.get_conversation(message.conversation_id)
        except Exception as e:
            logger.error(f"❌ Could not find conversation {message.conversation_id}: {e}")
            return None

        decision = self.gating.evaluate(message.text, conversation.is_group)
        if not decision.respond:
            logger.debug("⏭️ Not mentioned in group, skipping")
            return None

        display_address = message.sender_id if self.show_sender_address else None
        logger.info(f"🤖 Processing message from {message.sender_id}: {decision.cleaned_text[:100]!r}")
        route = await self.router.handle(
            decision.cleaned_text,
            message.sender_id,
            conversation,
            conversation.is_group,
            display_address,
        )
        self.processed += 1
        return route

    async def _handle_intent(self, message: InboundMessage):
        """Answer a menu selection with its canned reply."""
        try:
            conversation = await self.transport.get_conversation(message.conversation_id)
        except Exception as e:
            logger.error(f"❌ Could not find conversation {message.conversation_id}: {e}")
            return

        action_id = message.content.action_id if isinstance(message.content, IntentContent) else None
        reply = self.action_router.reply_for(action_id)
        logger.info(f"🎯 Intent {action_id!r} from {message.sender_id}")
        try:
            send = conversation.send_text(reply)
            if self.send_timeout:
                await asyncio.wait_for(send, timeout=self.send_timeout)
            else:
                await send
        except Exception as e:
            logger.error(f"❌ Error sending intent reply: {e}")
        self.processed += 1
