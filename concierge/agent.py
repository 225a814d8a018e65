"""AI response generation — the conversational fallback for free-form text."""

import logging
from typing import Optional

from .llm.provider import ChatMessage, LLMProvider

logger = logging.getLogger("concierge.agent")


SYSTEM_PROMPT = """You are {agent_name}, the concierge assistant for {event_name}.
You help attendees with the event schedule, logistics, venues, food, transport,
reminders and general questions. Keep answers short, friendly and practical.
If you don't know something, say so and suggest who to ask.

{channel_context}

When the user would benefit from choosing between a few options, you may answer
with ONLY a JSON object of this exact shape instead of text:
{{"type": "actions", "content": {{"id": "<menu id>", "description": "<question>",
"actions": [{{"id": "schedule", "label": "📅 Schedule", "style": "primary"}}]}}}}
Valid action ids are: schedule, set_reminder, concierge_support.
Otherwise answer in plain text."""


class ResponseGenerator:
    """Produce a reply for a message that matched no command."""

    def __init__(
        self,
        provider: LLMProvider,
        agent_name: str = "Concierge",
        event_name: str = "Basecamp 2025",
        temperature: float = 0.5,
        max_tokens: Optional[int] = 800,
    ):
        self.provider = provider
        self.agent_name = agent_name
        self.event_name = event_name
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_system_prompt(self, is_group: bool, display_address: Optional[str] = None) -> str:
        if is_group:
            channel_context = "You are replying in a group chat; the user addressed you by name."
        else:
            channel_context = "You are replying in a private direct message."
        if display_address:
            channel_context += f"\nThe user's address is {display_address}."
        return SYSTEM_PROMPT.format(
            agent_name=self.agent_name,
            event_name=self.event_name,
            channel_context=channel_context,
        )

    async def run(
        self,
        text: str,
        sender_id: str,
        conversation_id: str,
        is_group: bool,
        display_address: Optional[str] = None,
    ) -> str:
        """Return the reply text (plain or an encoded menu); empty means no reply."""
        messages = [
            ChatMessage(role="system", content=self.build_system_prompt(is_group, display_address)),
            ChatMessage(role="user", content=text),
        ]
        response = await self.provider.chat(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        logger.debug(
            f"AI reply for {sender_id} in {conversation_id}: "
            f"{response.input_tokens} in / {response.output_tokens} out tokens"
        )
        return response.content.strip()
