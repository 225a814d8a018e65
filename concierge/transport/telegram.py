"""Telegram transport built on python-telegram-bot.

Update handlers only decode and enqueue; the ingestion loop consumes the
queue through :meth:`TelegramTransport.stream`, so messages are processed
one at a time in arrival order.

Mapping:
  text message          → InboundMessage(TEXT)
  callback query        → InboundMessage(INTENT), data = action id
  anything else         → InboundMessage(OTHER)
  ActionsContent (out)  → message with an inline keyboard, one button per action

Every chat the bot sees is recorded in the ``chats`` table, which is what
:meth:`list_conversations` returns.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional, Union

from telegram import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message, Update
from telegram.ext import Application, CallbackQueryHandler, ChatMemberHandler, ContextTypes, MessageHandler, filters

from ..content import ActionsContent, ContentType, IntentContent, TextContent
from ..db import models
from .base import Conversation, ConversationNotFoundError, InboundMessage, Transport, TransportError

logger = logging.getLogger("concierge.transport.telegram")

MAX_MESSAGE_LENGTH = 4096

GROUP_CHAT_TYPES = ("group", "supergroup")


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split a long message into chunks respecting Telegram's length limit.

    Tries to split at newlines first, then spaces, then hard-cuts.
    """
    if len(text) <= max_length:
        return [text]

    chunks = []
    remaining = text

    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break

        split_at = remaining.rfind("\n", 0, max_length)
        if split_at <= 0:
            split_at = remaining.rfind(" ", 0, max_length)
        if split_at <= 0:
            split_at = max_length

        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip()

    return chunks


def build_keyboard(menu: ActionsContent) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(action.label, callback_data=action.id)] for action in menu.actions]
    )


def decode_message(message: Message) -> Optional[InboundMessage]:
    """Decode a Telegram message; None for messages without a sender."""
    if message is None or message.from_user is None:
        return None
    if message.text is not None:
        content_type, content = ContentType.TEXT, TextContent(text=message.text)
    else:
        content_type, content = ContentType.OTHER, None
    return InboundMessage(
        id=f"{message.chat.id}:{message.message_id}",
        sender_id=str(message.from_user.id),
        conversation_id=str(message.chat.id),
        content_type=content_type,
        content=content,
        received_at=message.date,
    )


def decode_callback(query: CallbackQuery) -> Optional[InboundMessage]:
    """Decode a button press into an intent message."""
    if query is None or not query.data:
        return None
    # Callback from a menu message: reply in that chat; otherwise in the DM
    chat_id = query.message.chat.id if query.message else query.from_user.id
    return InboundMessage(
        id=f"cb:{query.id}",
        sender_id=str(query.from_user.id),
        conversation_id=str(chat_id),
        content_type=ContentType.INTENT,
        content=IntentContent(action_id=query.data),
    )


class TelegramConversation(Conversation):
    """A Telegram chat the bot can post to."""

    def __init__(self, bot, chat_id: str, chat_type: str = "private"):
        self._bot = bot
        self._chat_id = str(chat_id)
        self.chat_type = chat_type

    @property
    def id(self) -> str:
        return self._chat_id

    @property
    def is_group(self) -> bool:
        return self.chat_type in GROUP_CHAT_TYPES

    async def send(self, content: Union[TextContent, ActionsContent]) -> None:
        if isinstance(content, ActionsContent):
            await self._bot.send_message(
                chat_id=self._chat_id,
                text=content.description,
                reply_markup=build_keyboard(content),
            )
            return
        for chunk in split_message(content.text):
            await self._bot.send_message(chat_id=self._chat_id, text=chunk)

    def __repr__(self) -> str:
        return f"TelegramConversation({self._chat_id!r}, {self.chat_type!r})"


class TelegramTransport(Transport):
    """Long-polling Telegram client exposing the Transport boundary."""

    def __init__(self, bot_token: str):
        self.bot_token = bot_token
        self.app: Optional[Application] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._known: dict[str, str] = {}  # chat_id → chat_type

    # ── lifecycle ───────────────────────────────────────────

    async def start(self):
        """Start the Telegram bot (polling in the background)."""
        self.app = Application.builder().token(self.bot_token).build()
        self.app.add_handler(CallbackQueryHandler(self._on_callback))
        self.app.add_handler(ChatMemberHandler(self._on_my_chat_member, ChatMemberHandler.MY_CHAT_MEMBER))
        self.app.add_handler(MessageHandler(filters.ALL & ~filters.StatusUpdate.ALL, self._on_message))
        self.app.add_error_handler(self._on_error)

        logger.info("Starting Telegram bot...")
        # Retry initialization (getMe) on transient network errors
        for attempt in range(5):
            try:
                await self.app.initialize()
                break
            except Exception as e:
                if attempt < 4:
                    delay = [2, 5, 10, 15][attempt]
                    logger.warning(f"Telegram init failed (attempt {attempt + 1}/5): {type(e).__name__}: {e}. Retrying in {delay}s...")
                    await asyncio.sleep(delay)
                else:
                    raise
        await self.app.start()
        await self.app.updater.start_polling(
            drop_pending_updates=True,
            allowed_updates=["message", "callback_query", "my_chat_member"],
        )
        logger.info(f"Telegram bot @{self.username} (id {self.self_id}) is polling.")

    async def stop(self):
        """Stop the Telegram bot and end the message stream."""
        if self.app:
            if self.app.updater and self.app.updater.running:
                await self.app.updater.stop()
            if self.app.running:
                await self.app.stop()
            await self.app.shutdown()
            logger.info("Telegram bot stopped.")
        await self._queue.put(None)

    # ── identity ────────────────────────────────────────────

    @property
    def self_id(self) -> str:
        return str(self.app.bot.id)

    @property
    def username(self) -> str:
        return self.app.bot.username or ""

    # ── inbound ─────────────────────────────────────────────

    async def stream(self) -> AsyncIterator[InboundMessage]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item

    async def _remember(self, chat_id: str, chat_type: str, title: Optional[str] = None):
        if self._known.get(chat_id) == chat_type:
            return
        try:
            await models.upsert_chat(chat_id, chat_type, title)
        except Exception as e:
            # Left out of the cache so the next update retries the write
            logger.error(f"Failed to record chat {chat_id}: {e}")
            return
        self._known[chat_id] = chat_type

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        if message is None:
            return
        chat = message.chat
        await self._remember(str(chat.id), chat.type, chat.title)
        inbound = decode_message(message)
        if inbound:
            await self._queue.put(inbound)

    async def _on_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        try:
            await query.answer()
        except Exception as e:
            logger.debug(f"Callback answer failed: {e}")
        if query.message:
            chat = query.message.chat
            await self._remember(str(chat.id), chat.type, chat.title)
        inbound = decode_callback(query)
        if inbound:
            await self._queue.put(inbound)

    async def _on_my_chat_member(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Track the bot being added to / removed from chats."""
        member_update = update.my_chat_member
        chat = member_update.chat
        chat_id = str(chat.id)
        status = member_update.new_chat_member.status
        if status in ("left", "kicked"):
            self._known.pop(chat_id, None)
            try:
                await models.deactivate_chat(chat_id)
            except Exception as e:
                logger.error(f"Failed to deactivate chat {chat_id}: {e}")
            logger.info(f"Removed from chat {chat_id} ({status})")
        else:
            await self._remember(chat_id, chat.type, chat.title)
            logger.info(f"Added to chat {chat_id} ({chat.type})")

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        logger.error(f"Telegram update error: {context.error}", exc_info=context.error)

    # ── conversations ───────────────────────────────────────

    async def get_conversation(self, conversation_id: str) -> Conversation:
        chat_type = self._known.get(conversation_id)
        if chat_type is None:
            row = await models.get_chat(conversation_id)
            if not row or not row["active"]:
                raise ConversationNotFoundError(f"Unknown chat {conversation_id}")
            chat_type = row["chat_type"]
            self._known[conversation_id] = chat_type
        return TelegramConversation(self.app.bot, conversation_id, chat_type)

    async def list_conversations(self) -> list[Conversation]:
        rows = await models.list_chats(active_only=True)
        return [TelegramConversation(self.app.bot, row["chat_id"], row["chat_type"]) for row in rows]

    async def open_direct(self, identity: str) -> Conversation:
        """Direct chat with a user. In Telegram the DM chat id is the user id."""
        user_id = identity.strip()
        if not user_id.isdigit():
            raise TransportError(f"'{identity}' is not a Telegram user id")
        return TelegramConversation(self.app.bot, user_id, "private")
