"""Transport boundary — what the router needs from a messaging platform.

A transport supplies the inbound message stream and conversation handles.
Everything platform-specific (polling, markup, chat bookkeeping) lives in
the concrete implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Union

from ..content import ContentType, IntentContent, TextContent, ActionsContent


class TransportError(Exception):
    """Base class for transport failures."""
    pass


class ConversationNotFoundError(TransportError):
    """No conversation is known for the given id."""
    pass


@dataclass
class InboundMessage:
    id: str
    sender_id: str
    conversation_id: str
    content_type: ContentType
    content: Optional[Union[TextContent, IntentContent]] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def text(self) -> str:
        """Plain text of the message, empty for non-text content."""
        if isinstance(self.content, TextContent):
            return self.content.text
        return ""


class Conversation(ABC):
    """Handle to one chat (direct or group)."""

    @property
    @abstractmethod
    def id(self) -> str:
        ...

    @property
    @abstractmethod
    def is_group(self) -> bool:
        ...

    @abstractmethod
    async def send(self, content: Union[TextContent, ActionsContent]) -> None:
        """Deliver content to this conversation."""
        ...

    async def send_text(self, text: str) -> None:
        await self.send(TextContent(text=text))


class Transport(ABC):
    """Messaging platform client."""

    @property
    @abstractmethod
    def self_id(self) -> str:
        """The agent's own sender id (used to skip its own messages)."""
        ...

    @abstractmethod
    def stream(self) -> AsyncIterator[InboundMessage]:
        """Inbound messages in arrival order."""
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Resolve a conversation by id.

        Raises:
            ConversationNotFoundError: if the id is unknown
        """
        ...

    @abstractmethod
    async def list_conversations(self) -> list[Conversation]:
        """Fresh listing of every conversation the agent is part of."""
        ...

    @abstractmethod
    async def open_direct(self, identity: str) -> Conversation:
        """Create or resolve the direct conversation with ``identity``."""
        ...
