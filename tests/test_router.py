"""Tests for command routing."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from concierge.broadcast import BroadcastWorkflow
from concierge.content import ActionsContent, TextContent
from concierge.errors import FALLBACK_MESSAGE
from concierge.memory import ConversationMemory
from concierge.router import CommandGrammar, CommandRouter, Route

from conftest import FakeConversation, FakeTransport


ADMIN = "1001"
USER = "2002"


def _make_router(transport, ai_reply="AI answer", **kwargs):
    """Router with an allowlisted organizer and a mocked AI."""
    memory = ConversationMemory()
    broadcasts = BroadcastWorkflow(transport, send_delay=0, allowlist=[ADMIN])
    responder = MagicMock()
    responder.run = AsyncMock(return_value=ai_reply)
    kwargs.setdefault("admin_ids", (ADMIN,))
    kwargs.setdefault("response_timeout", None)
    kwargs.setdefault("send_timeout", None)
    router = CommandRouter(transport, memory, broadcasts, responder, **kwargs)
    return router, memory, broadcasts, responder


class TestCommandGrammar:

    def setup_method(self):
        self.g = CommandGrammar()

    def test_broadcast_prefix_case_insensitive(self):
        """The broadcast prefix matches in any case; a bare prefix gives empty text."""
        assert self.g.broadcast_text("Broadcast hi all") == "hi all"
        assert self.g.broadcast_text("broadcast") == ""
        assert self.g.broadcast_text("broadcasting is fun") is None

    def test_exact_phrases(self):
        """Confirm and cancel phrases must match the whole message."""
        assert self.g.is_confirm("YES")
        assert self.g.is_confirm(" yes! ")
        assert not self.g.is_confirm("yes please send it")
        assert self.g.is_cancel("Cancel")

    def test_dm_phrase_contained(self):
        """The DM phrase may appear anywhere in the message."""
        assert self.g.is_dm_request("could you DM me the agenda")
        assert not self.g.is_dm_request("dmme")

    def test_admin_send_parsing(self):
        """SEND_TO keeps colons in the payload and rejects missing parts."""
        assert self.g.admin_send("SEND_TO:12345:hello: world") == ("12345", "hello: world")
        assert self.g.admin_send("send_to: 12345 : hi") == ("12345", "hi")
        assert self.g.admin_send("SEND_TO:12345") is None
        assert self.g.admin_send("SEND_TO::hi") is None

    def test_custom_phrases(self):
        """Configured phrases replace the defaults."""
        g = CommandGrammar(confirm_phrases=["go"], greeting_phrases=["yo"])
        assert g.is_confirm("GO")
        assert not g.is_confirm("yes")
        assert g.is_greeting("yo")

    def test_from_settings(self):
        """The grammar is built from settings fields."""
        settings = MagicMock(
            broadcast_prefix="announce ",
            confirm_phrases=["ok"],
            cancel_phrases=["stop"],
            dm_phrases=["pm me"],
            admin_send_prefix="DIRECT:",
            greeting_phrases=["hola"],
            reminder_prefix="ping me ",
            reminder_list_phrases=["pings"],
        )
        g = CommandGrammar.from_settings(settings)
        assert g.broadcast_text("announce x") == "x"
        assert g.is_cancel("stop")
        assert g.admin_send("DIRECT:1:x") == ("1", "x")


class TestWelcome:

    @pytest.mark.asyncio
    async def test_hello_sends_menu_and_records(self):
        """DM "hello" → three-action menu, and memory mentions "hello"."""
        transport = FakeTransport([FakeConversation("c1")])
        router, memory, _, responder = _make_router(transport)
        conversation = transport.conversations["c1"]

        route = await router.handle("hello", "alice", conversation, is_group=False)

        assert route == Route.WELCOME
        assert len(conversation.sent) == 1
        menu = conversation.sent[0]
        assert isinstance(menu, ActionsContent)
        assert [a.id for a in menu.actions] == ["schedule", "set_reminder", "concierge_support"]
        assert "hello" in memory.context_for("alice")
        responder.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_menu_falls_back_to_text(self):
        """If buttons fail, the same menu is sent as numbered text."""
        transport = FakeTransport([FakeConversation("c1", fail_actions=True)])
        router, memory, _, _ = _make_router(transport)
        conversation = transport.conversations["c1"]

        route = await router.handle("hi", "alice", conversation, is_group=False)

        assert route == Route.WELCOME
        assert len(conversation.sent) == 1
        assert isinstance(conversation.sent[0], TextContent)
        assert "1. 📅 Schedule" in conversation.sent[0].text
        assert memory.entries("alice")

    @pytest.mark.asyncio
    async def test_bare_group_mention_gets_menu(self):
        """A group message that was only the mention (empty after gating) gets the menu."""
        transport = FakeTransport([FakeConversation("group-1", is_group=True)])
        router, _, _, responder = _make_router(transport)
        group = transport.conversations["group-1"]

        route = await router.handle("", USER, group, True)

        assert route == Route.WELCOME
        assert isinstance(group.sent[0], ActionsContent)
        responder.run.assert_not_called()


class TestBroadcastRouting:

    @pytest.mark.asyncio
    async def test_preview_confirm_flow(self, transport):
        """broadcast → yes fans out to the 4 other chats; a second yes finds nothing."""
        router, _, broadcasts, _ = _make_router(transport)
        origin = transport.conversations["dm-admin"]

        assert await router.handle("broadcast hi everyone", ADMIN, origin, False) == Route.BROADCAST_PREVIEW
        assert "Broadcast preview" in origin.texts[-1]
        assert broadcasts.pending(ADMIN) is not None

        assert await router.handle("yes", ADMIN, origin, False) == Route.BROADCAST_CONFIRM
        summary = origin.texts[-1]
        assert "Delivered to: 4" in summary
        assert "Failed: 0" in summary
        assert "Total: 4" in summary
        for cid in ("dm-2", "dm-3", "group-1", "group-2"):
            assert "hi everyone" in transport.conversations[cid].texts[0]

        assert await router.handle("yes", ADMIN, origin, False) == Route.BROADCAST_CONFIRM
        assert "nothing pending" in origin.texts[-1]
        assert len(transport.conversations["dm-2"].sent) == 1

    @pytest.mark.asyncio
    async def test_cancel(self, transport):
        """Cancel drops the draft and sends nothing to other chats."""
        router, _, broadcasts, _ = _make_router(transport)
        origin = transport.conversations["dm-admin"]

        await router.handle("broadcast hi", ADMIN, origin, False)
        assert await router.handle("cancel", ADMIN, origin, False) == Route.BROADCAST_CANCEL

        assert broadcasts.pending(ADMIN) is None
        assert "cancelled" in origin.texts[-1].lower()
        assert transport.conversations["dm-2"].sent == []

    @pytest.mark.asyncio
    async def test_empty_broadcast_reports_error(self, transport):
        """An empty broadcast is reported back and not stored."""
        router, _, broadcasts, _ = _make_router(transport)
        origin = transport.conversations["dm-admin"]

        await router.handle("broadcast   ", ADMIN, origin, False)

        assert "cannot be empty" in origin.texts[-1]
        assert broadcasts.pending(ADMIN) is None

    @pytest.mark.asyncio
    async def test_unauthorized_falls_through_to_ai(self, transport):
        """A non-allowlisted broadcast is answered by the AI."""
        router, _, broadcasts, responder = _make_router(transport)
        origin = transport.conversations["dm-2"]

        route = await router.handle("broadcast hi everyone", USER, origin, False)

        assert route == Route.AI
        assert broadcasts.pending(USER) is None
        responder.run.assert_awaited_once()
        assert origin.texts == ["AI answer"]

    @pytest.mark.asyncio
    async def test_unauthorized_yes_goes_to_ai(self, transport):
        """A non-allowlisted "yes" is ordinary text."""
        router, _, _, responder = _make_router(transport)
        route = await router.handle("yes", USER, transport.conversations["dm-2"], False)
        assert route == Route.AI
        responder.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_broadcast_ignored_in_groups(self, transport):
        """Broadcast commands only work in direct messages."""
        router, _, broadcasts, _ = _make_router(transport)
        route = await router.handle("broadcast hi", ADMIN, transport.conversations["group-1"], True)
        assert route == Route.AI
        assert broadcasts.pending(ADMIN) is None

    @pytest.mark.asyncio
    async def test_authorized_by_display_address(self, transport):
        """The display address can authorize a broadcast."""
        router, _, broadcasts, _ = _make_router(transport)
        router.broadcasts.allowlist = {"0xorganizer"}
        origin = transport.conversations["dm-admin"]

        route = await router.handle("broadcast hi", "inbox-9", origin, False, display_address="0xORGANIZER")

        assert route == Route.BROADCAST_PREVIEW
        assert broadcasts.pending("inbox-9") is not None


class TestDirectConversations:

    @pytest.mark.asyncio
    async def test_dm_bootstrap(self):
        """A "dm me" request greets the sender privately and acknowledges in the group."""
        transport = FakeTransport([FakeConversation("group-1", is_group=True)])
        router, _, _, _ = _make_router(transport)
        group = transport.conversations["group-1"]

        route = await router.handle("please dm me", USER, group, True)

        assert route == Route.DM_BOOTSTRAP
        assert "starting this DM" in transport.direct[USER].texts[0]
        assert group.texts == ["✅ DM started! Check your direct messages."]

    @pytest.mark.asyncio
    async def test_dm_bootstrap_failure_reported(self):
        """A failed DM is reported in the original chat."""
        transport = FakeTransport([FakeConversation("group-1", is_group=True)])
        transport.open_direct_error = RuntimeError("no route")
        router, _, _, _ = _make_router(transport)
        group = transport.conversations["group-1"]

        route = await router.handle("start dm", USER, group, True)

        assert route == Route.DM_BOOTSTRAP
        assert group.texts[-1].startswith("❌ Failed to start DM")

    @pytest.mark.asyncio
    async def test_admin_send(self):
        """An admin's SEND_TO delivers the payload and confirms."""
        transport = FakeTransport([FakeConversation("dm-admin")])
        router, _, _, _ = _make_router(transport)
        origin = transport.conversations["dm-admin"]

        route = await router.handle("SEND_TO:3003:Your badge is ready: desk B", ADMIN, origin, False)

        assert route == Route.ADMIN_SEND
        assert transport.direct["3003"].texts == ["Your badge is ready: desk B"]
        assert origin.texts[-1].startswith("✅ Message sent to 3003")

    @pytest.mark.asyncio
    async def test_admin_send_failure_reported(self):
        """A failed direct send is reported to the admin."""
        transport = FakeTransport([FakeConversation("dm-admin")])
        transport.open_direct_error = RuntimeError("blocked")
        router, _, _, _ = _make_router(transport)
        origin = transport.conversations["dm-admin"]

        await router.handle("SEND_TO:3003:hello", ADMIN, origin, False)

        assert origin.texts[-1].startswith("❌ Failed to send message to 3003")

    @pytest.mark.asyncio
    async def test_non_admin_send_falls_through(self):
        """SEND_TO from a non-admin goes to the AI."""
        transport = FakeTransport([FakeConversation("dm-2")])
        router, _, _, responder = _make_router(transport)

        route = await router.handle("SEND_TO:3003:hello", USER, transport.conversations["dm-2"], False)

        assert route == Route.AI
        assert transport.direct == {}
        responder.run.assert_awaited_once()


class TestReminderRouting:

    @pytest.mark.asyncio
    async def test_set_reminder(self):
        """A reminder command is stored and confirmed."""
        transport = FakeTransport([FakeConversation("c1")])
        router, _, _, _ = _make_router(transport)
        conversation = transport.conversations["c1"]
        stored = {
            "id": 7,
            "message": "grab a seat",
            "remind_at": datetime(2025, 9, 15, 9, 0, tzinfo=timezone.utc),
        }

        with patch("concierge.router.reminders.create_reminder", new=AsyncMock(return_value=stored)) as create:
            route = await router.handle("remind me in 30 minutes to grab a seat", USER, conversation, False)

        assert route == Route.REMINDER
        create.assert_awaited_once_with("c1", USER, "in 30 minutes to grab a seat")
        assert "2025-09-15 09:00 UTC" in conversation.texts[-1]

    @pytest.mark.asyncio
    async def test_bad_reminder_reported(self):
        """An invalid reminder is reported with its reason."""
        transport = FakeTransport([FakeConversation("c1")])
        router, _, _, _ = _make_router(transport)
        conversation = transport.conversations["c1"]

        route = await router.handle("remind me in 3 fortnights to rest", USER, conversation, False)

        assert route == Route.REMINDER
        assert conversation.texts[-1].startswith("❌ Couldn't set reminder: Unknown time unit 'fortnights'")

    @pytest.mark.asyncio
    async def test_reminder_question_goes_to_ai(self):
        """A question after "remind me", with no time given, is answered by the AI."""
        transport = FakeTransport([FakeConversation("c1")])
        router, _, _, responder = _make_router(transport, ai_reply="Lunch is at 12:30.")
        conversation = transport.conversations["c1"]

        with patch("concierge.router.reminders.create_reminder", new=AsyncMock()) as create:
            route = await router.handle("remind me what time lunch is", USER, conversation, False)

        assert route == Route.AI
        create.assert_not_called()
        responder.run.assert_awaited_once()
        assert conversation.texts == ["Lunch is at 12:30."]

    @pytest.mark.asyncio
    async def test_list_reminders(self):
        """The "my reminders" phrase lists the sender's reminders."""
        transport = FakeTransport([FakeConversation("c1")])
        router, _, _, _ = _make_router(transport)
        conversation = transport.conversations["c1"]

        with patch("concierge.router.reminders.describe_reminders", new=AsyncMock(return_value="You have no pending reminders.")):
            route = await router.handle("my reminders", USER, conversation, False)

        assert route == Route.REMINDER
        assert conversation.texts == ["You have no pending reminders."]

    @pytest.mark.asyncio
    async def test_reminders_disabled(self):
        """With reminders disabled the text goes to the AI."""
        transport = FakeTransport([FakeConversation("c1")])
        router, _, _, responder = _make_router(transport, reminders_enabled=False)

        route = await router.handle("remind me in 5 minutes to stretch", USER, transport.conversations["c1"], False)

        assert route == Route.AI


class TestAIReply:

    @pytest.mark.asyncio
    async def test_ai_reply_recorded(self):
        """The AI reply is sent and recorded in memory."""
        transport = FakeTransport([FakeConversation("c1")])
        router, memory, _, responder = _make_router(transport, ai_reply="Lunch is at noon.")
        conversation = transport.conversations["c1"]

        route = await router.handle("when is lunch?", USER, conversation, False, display_address=USER)

        assert route == Route.AI
        assert conversation.texts == ["Lunch is at noon."]
        responder.run.assert_awaited_once_with("when is lunch?", USER, "c1", False, USER)
        entry = memory.entries(USER)[0]
        assert entry.user_message == "when is lunch?"
        assert entry.bot_response == "Lunch is at noon."

    @pytest.mark.asyncio
    async def test_memory_context_prefixed(self):
        """Earlier exchanges are prefixed to the AI input."""
        transport = FakeTransport([FakeConversation("c1")])
        router, memory, _, responder = _make_router(transport)
        memory.record(USER, "earlier question", "earlier answer")

        await router.handle("follow up", USER, transport.conversations["c1"], False)

        contexted = responder.run.await_args.args[0]
        assert contexted.startswith("Previous conversation:")
        assert "User: earlier question" in contexted
        assert contexted.endswith("follow up")

    @pytest.mark.asyncio
    async def test_missing_display_address_is_fine(self):
        """No display address is passed as None."""
        transport = FakeTransport([FakeConversation("c1")])
        router, _, _, responder = _make_router(transport)

        await router.handle("question", USER, transport.conversations["c1"], False, display_address=None)

        assert responder.run.await_args.args[4] is None

    @pytest.mark.asyncio
    async def test_empty_ai_reply_sends_nothing(self):
        """An empty AI reply sends and records nothing."""
        transport = FakeTransport([FakeConversation("c1")])
        router, memory, _, _ = _make_router(transport, ai_reply="")
        conversation = transport.conversations["c1"]

        route = await router.handle("hmm", USER, conversation, False)

        assert route == Route.AI
        assert conversation.sent == []
        assert memory.entries(USER) == []

    @pytest.mark.asyncio
    async def test_ai_menu_payload_sent_as_actions(self):
        """An AI menu payload is sent as buttons and summarized in memory."""
        payload = json.dumps({
            "type": "actions",
            "content": {
                "id": "help",
                "description": "What do you need?",
                "actions": [{"id": "schedule", "label": "Schedule"}],
            },
        })
        transport = FakeTransport([FakeConversation("c1")])
        router, memory, _, _ = _make_router(transport, ai_reply=payload)
        conversation = transport.conversations["c1"]

        await router.handle("help", USER, conversation, False)

        assert isinstance(conversation.sent[0], ActionsContent)
        assert memory.entries(USER)[0].bot_response == "What do you need?"

    @pytest.mark.asyncio
    async def test_ai_error_sends_single_fallback(self):
        """An AI failure sends exactly one fallback message."""
        transport = FakeTransport([FakeConversation("c1")])
        router, memory, _, responder = _make_router(transport)
        responder.run.side_effect = RuntimeError("provider down")
        conversation = transport.conversations["c1"]

        route = await router.handle("question", USER, conversation, False)

        assert route == Route.ERROR
        assert conversation.texts == [FALLBACK_MESSAGE]
        assert memory.entries(USER) == []

    @pytest.mark.asyncio
    async def test_fallback_failure_swallowed(self):
        """A failing fallback send does not raise."""
        transport = FakeTransport([FakeConversation("c1", fail=True)])
        router, _, _, _ = _make_router(transport)

        route = await router.handle("question", USER, transport.conversations["c1"], False)

        assert route == Route.ERROR

    @pytest.mark.asyncio
    async def test_ai_timeout_sends_fallback(self):
        """A slow AI reply times out into the fallback message."""
        transport = FakeTransport([FakeConversation("c1")])
        router, _, _, responder = _make_router(transport, response_timeout=0.01)

        async def _slow(*args):
            await asyncio.sleep(1)
            return "too late"

        responder.run = _slow
        conversation = transport.conversations["c1"]

        route = await router.handle("question", USER, conversation, False)

        assert route == Route.ERROR
        assert conversation.texts == [FALLBACK_MESSAGE]
