"""Interactive menu content and canned replies for menu selections."""

from typing import Optional

from .content import Action, ActionsContent

WELCOME_MENU_ID = "welcome_menu"

SCHEDULE = "schedule"
SET_REMINDER = "set_reminder"
CONCIERGE_SUPPORT = "concierge_support"


def build_welcome_menu(agent_name: str = "Concierge", event_name: str = "Basecamp 2025") -> ActionsContent:
    """The greeting menu sent in reply to "hi", "hello", ..."""
    return ActionsContent(
        id=WELCOME_MENU_ID,
        description=(
            f"Hi! I'm the {event_name} {agent_name} — your helpful assistant. "
            "What can I help you with?"
        ),
        actions=[
            Action(id=SCHEDULE, label="📅 Schedule", style="primary"),
            Action(id=SET_REMINDER, label="⏰ Set Reminder", style="secondary"),
            Action(id=CONCIERGE_SUPPORT, label="💬 Concierge Support", style="secondary"),
        ],
    )


DEFAULT_REPLY = (
    "I didn't recognize that option. Send \"menu\" to see what I can help with, "
    "or just ask me a question."
)


class ActionContentRouter:
    """Static lookup from a selected action id to its reply text."""

    def __init__(self, event_name: str = "Basecamp 2025", reminder_prefix: str = "remind me "):
        prefix = reminder_prefix.strip()
        self._replies: dict[str, str] = {
            SCHEDULE: (
                f"📅 Ask me about the {event_name} schedule!\n\n"
                "Try: \"What's happening today?\", \"When is the keynote?\" "
                "or \"What's on the agenda tomorrow?\""
            ),
            SET_REMINDER: (
                "⏰ I can remind you about sessions and activities.\n\n"
                f"• {prefix} in 30 minutes to grab a seat for the keynote\n"
                f"• {prefix} at 2025-09-15 14:30 to join the workshop\n\n"
                "Send \"my reminders\" to see what you've set."
            ),
            CONCIERGE_SUPPORT: (
                "💬 Concierge support is here to help!\n\n"
                f"Ask me anything about {event_name} — logistics, venues, "
                "food, transport or FAQs — and I'll do my best to answer."
            ),
        }

    def reply_for(self, action_id: Optional[str]) -> str:
        """Canned reply for ``action_id``; unknown ids get the default reply."""
        if not action_id:
            return DEFAULT_REPLY
        return self._replies.get(action_id.strip(), DEFAULT_REPLY)

    @property
    def known_actions(self) -> list[str]:
        return list(self._replies)
