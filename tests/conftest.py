"""Pytest configuration and shared fixtures."""

from typing import Optional

import pytest

from concierge.content import ActionsContent, ContentType, IntentContent, TextContent
from concierge.transport.base import (
    Conversation,
    ConversationNotFoundError,
    InboundMessage,
    Transport,
)


class FakeConversation(Conversation):
    """In-memory conversation that records what was sent."""

    def __init__(self, conversation_id: str, is_group: bool = False, fail: bool = False, fail_actions: bool = False):
        self._id = conversation_id
        self._is_group = is_group
        self.fail = fail
        self.fail_actions = fail_actions
        self.sent: list = []

    @property
    def id(self) -> str:
        return self._id

    @property
    def is_group(self) -> bool:
        return self._is_group

    async def send(self, content):
        if self.fail:
            raise RuntimeError(f"send to {self._id} failed")
        if self.fail_actions and isinstance(content, ActionsContent):
            raise RuntimeError("actions not supported")
        self.sent.append(content)

    @property
    def texts(self) -> list[str]:
        return [c.text for c in self.sent if isinstance(c, TextContent)]


class FakeTransport(Transport):
    """Transport over a fixed set of FakeConversations and queued messages."""

    def __init__(self, conversations=(), messages=(), self_id: str = "bot"):
        self._self_id = self_id
        self.conversations = {c.id: c for c in conversations}
        self.messages = list(messages)
        self.direct: dict[str, FakeConversation] = {}
        self.open_direct_error: Optional[Exception] = None
        self.list_calls = 0

    @property
    def self_id(self) -> str:
        return self._self_id

    async def stream(self):
        for message in self.messages:
            yield message

    async def get_conversation(self, conversation_id: str):
        try:
            return self.conversations[conversation_id]
        except KeyError:
            raise ConversationNotFoundError(conversation_id)

    async def list_conversations(self):
        self.list_calls += 1
        return list(self.conversations.values())

    async def open_direct(self, identity: str):
        if self.open_direct_error:
            raise self.open_direct_error
        conversation = self.direct.setdefault(identity, FakeConversation(f"dm-{identity}"))
        return conversation


def text_message(sender: str, conversation_id: str, text: str, msg_id: str = "m1") -> InboundMessage:
    return InboundMessage(
        id=msg_id,
        sender_id=sender,
        conversation_id=conversation_id,
        content_type=ContentType.TEXT,
        content=TextContent(text=text),
    )


def intent_message(sender: str, conversation_id: str, action_id: str) -> InboundMessage:
    return InboundMessage(
        id=f"cb-{action_id}",
        sender_id=sender,
        conversation_id=conversation_id,
        content_type=ContentType.INTENT,
        content=IntentContent(action_id=action_id),
    )


@pytest.fixture
def five_conversations():
    """One DM with the organizer plus four other chats."""
    return [
        FakeConversation("dm-admin"),
        FakeConversation("dm-2"),
        FakeConversation("dm-3"),
        FakeConversation("group-1", is_group=True),
        FakeConversation("group-2", is_group=True),
    ]


@pytest.fixture
def transport(five_conversations):
    return FakeTransport(five_conversations)
