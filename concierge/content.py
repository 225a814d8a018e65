"""Message content types — the tagged union every component branches on.

Inbound messages are decoded into one of these at the transport boundary,
and AI replies are decoded with :func:`decode_reply`, so downstream code
checks ``content.type`` instead of probing strings.

Shapes:
  TextContent     — plain text, both directions
  ActionsContent  — interactive menu (outbound only)
  IntentContent   — a user's menu selection (inbound only)
"""

import json
import logging
import re
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger("concierge.content")


class ContentType(str, Enum):
    TEXT = "text"
    ACTIONS = "actions"
    INTENT = "intent"
    OTHER = "other"  # anything the router does not handle (photos, stickers, ...)


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class Action(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    style: str = "primary"


class ActionsContent(BaseModel):
    type: Literal["actions"] = "actions"
    id: str = Field(min_length=1)
    description: str
    actions: list[Action] = Field(min_length=1)

    def to_text(self) -> str:
        """Render the menu as plain text (fallback when buttons can't be sent)."""
        lines = [self.description, ""]
        for i, action in enumerate(self.actions, 1):
            lines.append(f"{i}. {action.label}")
        return "\n".join(lines).strip()


class IntentContent(BaseModel):
    type: Literal["intent"] = "intent"
    action_id: str


Content = Union[TextContent, ActionsContent, IntentContent]


# ============================================================
# AI REPLY DECODING
# ============================================================
# The model may answer with a menu encoded as JSON:
#   {"type": "actions", "content": {"id": ..., "description": ..., "actions": [...]}}
# optionally wrapped in a ```json fence.

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def decode_reply(text: str) -> Union[TextContent, ActionsContent]:
    """Decode an AI reply into text or an interactive menu.

    Anything that is not a well-formed ``actions`` payload is returned as
    text unchanged.
    """
    candidate = text.strip()
    fenced = _FENCE_RE.match(candidate)
    if fenced:
        candidate = fenced.group(1)

    if not candidate.startswith("{"):
        return TextContent(text=text)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        return TextContent(text=text)

    if not isinstance(data, dict) or data.get("type") != ContentType.ACTIONS.value:
        return TextContent(text=text)

    try:
        return ActionsContent.model_validate(data.get("content") or {})
    except ValidationError as e:
        logger.warning(f"Malformed actions payload from AI, sending as text: {e.error_count()} error(s)")
        return TextContent(text=text)
