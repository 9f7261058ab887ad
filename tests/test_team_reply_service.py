from unittest.mock import AsyncMock, Mock, patch

import pytest

from message_hub.config import RoutingConfig
from message_hub.models import RoutingDecision
from message_hub.services.session_store import SessionStore
from message_hub.services.team_reply_service import TeamReplyRelay, format_team_reply
from message_hub.services.telegram_service import TelegramService

from conftest import DEPARTMENT_CHATS, T0, FakeSender


@pytest.fixture
def store(clock):
    return SessionStore(RoutingConfig(), clock=clock)


@pytest.fixture
def telegram():
    telegram = Mock(spec=TelegramService)
    telegram.send_message = AsyncMock(return_value={"ok": True, "result": {"message_id": 9}})
    return telegram


@pytest.fixture
def relay(store, sender, telegram, clock):
    return TeamReplyRelay(store, sender, DEPARTMENT_CHATS, telegram, clock=clock)


async def _routed_session(store, identity, category: str = "sales", thread_ref: str = "101"):
    session = await store.get_or_create(identity)
    decision = RoutingDecision(category=category, confidence=1.0, justification="Keyword match: price", decided_at=T0)
    await store.record_routing_decision(session.session_id, decision)
    await store.set_external_thread(session.session_id, thread_ref)
    return session


class TestFormatTeamReply:
    def test_with_staff_name(self):
        text = format_team_reply("  We can do 20% off.  ", "sales", "Nok P.")
        assert text == "💬 Reply from our sales team:\n\nWe can do 20% off.\n\n👤 Nok P."

    def test_without_staff_name(self):
        assert "👤" not in format_team_reply("Hi", "design")


class TestTeamReplyRelay:
    @pytest.mark.asyncio
    async def test_reply_reaches_customer(self, relay, store, sender, identity):
        session = await _routed_session(store, identity)

        result = await relay.relay("-1001", "101", "We can do 20% off.", "Nok P.")

        assert result.ok is True
        assert result.value == session.session_id
        sent_identity, text = sender.sent[0]
        assert sent_identity == identity
        assert "We can do 20% off." in text
        recorded = (await store.get(session.session_id)).messages[-1]
        assert recorded.content == "We can do 20% off."
        assert recorded.from_customer is False
        assert recorded.author == "Nok P."
        assert recorded.role == "team"

    @pytest.mark.asyncio
    async def test_unknown_chat(self, relay, store, sender, identity):
        await _routed_session(store, identity)

        result = await relay.relay("-999", "101", "hello")

        assert result.error_code == "unknown_chat"
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_topic_of_another_department(self, relay, store, sender, identity, telegram):
        await _routed_session(store, identity, category="sales")

        result = await relay.relay("-1002", "101", "hello")

        assert result.error_code == "session_not_found"
        assert sender.sent == []
        telegram.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_session_posts_notice(self, relay, store, sender, identity, telegram, clock):
        await _routed_session(store, identity)
        clock.advance(minutes=16)

        result = await relay.relay("-1001", "101", "Are you still there?")

        assert result.ok is False
        assert result.error_code == "session_not_found"
        assert sender.sent == []
        kwargs = telegram.send_message.call_args[1]
        assert kwargs["chat_id"] == "-1001"
        assert kwargs["message_thread_id"] == 101
        assert "expired" in kwargs["text"]

    @pytest.mark.asyncio
    @patch("message_hub.services.team_reply_service.alert_delivery_failure", new_callable=AsyncMock)
    async def test_sender_failure(self, mock_alert, store, identity, telegram, clock):
        session = await _routed_session(store, identity)
        relay = TeamReplyRelay(store, FakeSender(ok=False), DEPARTMENT_CHATS, telegram, clock=clock)

        result = await relay.relay("-1001", "101", "We can do 20% off.")

        assert result.error_code == "send_failed"
        assert "could not be delivered" in telegram.send_message.call_args[1]["text"]
        mock_alert.assert_awaited_once()
        assert len((await store.get(session.session_id)).messages) == 0

    @pytest.mark.asyncio
    @patch("message_hub.services.team_reply_service.alert_delivery_failure", new_callable=AsyncMock)
    async def test_sender_exception_is_contained(self, mock_alert, store, identity, clock):
        await _routed_session(store, identity)
        sender = FakeSender()
        sender.send_reply = AsyncMock(side_effect=RuntimeError("connection reset"))
        relay = TeamReplyRelay(store, sender, DEPARTMENT_CHATS, clock=clock)

        result = await relay.relay("-1001", "101", "hello")

        assert result.error_code == "send_failed"
        mock_alert.assert_awaited_once()
