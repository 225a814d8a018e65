"""Error classification for user-facing messages."""

import asyncio

import asyncpg
import httpx
from telegram.error import BadRequest, Forbidden, NetworkError, RetryAfter, TimedOut

from .broadcast import BroadcastError
from .llm.provider import LLMAuthError, LLMBadRequestError, LLMEmptyResponseError, LLMRateLimitError
from .reminders import ReminderError
from .transport.base import ConversationNotFoundError, TransportError

FALLBACK_MESSAGE = "Sorry, I encountered an error while processing your request. Please try again later."


def describe_error(e: Exception) -> str:
    """Classify any exception into a short phrase suitable for the user.

    Used for command-local failures, where the user asked for something
    specific (a DM, a direct send, a broadcast) and deserves to know why it
    did not happen.
    """
    # Our own command errors already carry a readable message
    if isinstance(e, (BroadcastError, ReminderError)):
        return str(e)
    if isinstance(e, ConversationNotFoundError):
        return "conversation not found"
    if isinstance(e, TransportError):
        return str(e) or "messaging error"

    # Telegram API errors (check RetryAfter/TimedOut before NetworkError, they subclass it)
    if isinstance(e, Forbidden):
        return "the user hasn't started a chat with me or has blocked me"
    if isinstance(e, RetryAfter):
        return "rate limited by Telegram, please wait a moment and try again"
    if isinstance(e, TimedOut):
        return "request timed out"
    if isinstance(e, BadRequest):
        return f"rejected by Telegram ({e.message})"
    if isinstance(e, NetworkError):
        return "network error talking to Telegram"

    # LLM
    if isinstance(e, LLMRateLimitError):
        return "rate limited, please wait a moment and try again"
    if isinstance(e, LLMAuthError):
        return "authentication error, the owner may need to refresh credentials"
    if isinstance(e, LLMBadRequestError):
        return "the AI provider rejected the request"
    if isinstance(e, LLMEmptyResponseError):
        return "the AI provider returned an empty response"

    # Database
    if isinstance(e, asyncpg.InterfaceError):
        return "database connection pool exhausted"
    if isinstance(e, asyncpg.PostgresError):
        return "database error"

    # Network / timeout
    if isinstance(e, httpx.ConnectError):
        return "cannot connect to the AI provider"
    if isinstance(e, httpx.TimeoutException):
        return "request timed out"
    if isinstance(e, asyncio.TimeoutError):
        return "request timed out"

    if isinstance(e, ValueError) and str(e):
        return str(e)

    # Fallback: include type name
    return f"unexpected error ({type(e).__name__})"
