"""Messaging transports."""

from .base import (
    Conversation,
    ConversationNotFoundError,
    InboundMessage,
    Transport,
    TransportError,
)

__all__ = [
    "Conversation",
    "ConversationNotFoundError",
    "InboundMessage",
    "Transport",
    "TransportError",
]
