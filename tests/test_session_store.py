import asyncio
from datetime import timedelta

import pytest

from message_hub.config import RoutingConfig
from message_hub.models import Identity, Message, RoutingDecision
from message_hub.services.session_store import (
    AlreadyRoutedError,
    ClarificationNotAllowedError,
    SessionNotFoundError,
    SessionStore,
)
from message_hub.services.state_machine import InvalidTransitionError, SessionState

from conftest import T0


def _decision(category: str = "sales") -> RoutingDecision:
    return RoutingDecision(category=category, confidence=0.9, justification="test", decided_at=T0)


@pytest.fixture
def store(clock):
    return SessionStore(RoutingConfig(), clock=clock)


class TestGetOrCreate:
    @pytest.mark.asyncio
    async def test_creates_new_session(self, store, identity):
        session = await store.get_or_create(identity, sender_name="Somchai")

        assert session.state == SessionState.NEW
        assert session.identity == identity
        assert session.sender_name == "Somchai"
        assert session.created_at == T0
        assert session.expires_at == T0 + timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_returns_existing_session(self, store, identity):
        first = await store.get_or_create(identity)
        second = await store.get_or_create(identity)
        assert first.session_id == second.session_id

    @pytest.mark.asyncio
    async def test_identities_are_isolated(self, store, identity):
        other = Identity(platform="line", sender_id=identity.sender_id)
        first = await store.get_or_create(identity)
        second = await store.get_or_create(other)
        assert first.session_id != second.session_id
        assert store.active_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_one_session(self, store, identity):
        sessions = await asyncio.gather(*(store.get_or_create(identity) for _ in range(20)))

        assert len({session.session_id for session in sessions}) == 1
        assert store.active_count == 1

    @pytest.mark.asyncio
    async def test_expired_session_is_recreated(self, store, identity, clock):
        first = await store.get_or_create(identity)
        clock.advance(minutes=15)

        second = await store.get_or_create(identity)

        assert second.session_id != first.session_id
        assert second.state == SessionState.NEW
        with pytest.raises(SessionNotFoundError):
            await store.get(first.session_id)

    @pytest.mark.asyncio
    async def test_returned_session_is_a_snapshot(self, store, identity):
        session = await store.get_or_create(identity)
        session.messages.append(Message(content="not stored", timestamp=T0))
        session.state = SessionState.ROUTED

        stored = await store.get(session.session_id)
        assert stored.messages == []
        assert stored.state == SessionState.NEW


class TestMutations:
    @pytest.mark.asyncio
    async def test_append_message_refreshes_expiry(self, store, identity, clock):
        session = await store.get_or_create(identity)
        clock.advance(minutes=10)

        updated = await store.append_message(session.session_id, Message(content="hello", timestamp=clock.now))

        assert [m.content for m in updated.messages] == ["hello"]
        assert updated.updated_at == clock.now
        assert updated.expires_at == clock.now + timedelta(minutes=15)
        assert updated.created_at == T0

    @pytest.mark.asyncio
    async def test_language_set_once_from_customer_message(self, store, identity):
        session = await store.get_or_create(identity)
        sid = session.session_id
        await store.append_message(sid, Message(content="hi", timestamp=T0, from_customer=False, detected_language="en"))
        await store.append_message(sid, Message(content="สวัสดี", timestamp=T0, detected_language="th"))
        updated = await store.append_message(sid, Message(content="hello", timestamp=T0, detected_language="en"))

        assert updated.language == "th"

    @pytest.mark.asyncio
    async def test_append_to_unknown_session(self, store):
        with pytest.raises(SessionNotFoundError):
            await store.append_message("missing", Message(content="hello", timestamp=T0))

    @pytest.mark.asyncio
    async def test_append_to_expired_session(self, store, identity, clock):
        session = await store.get_or_create(identity)
        clock.advance(minutes=16)
        with pytest.raises(SessionNotFoundError):
            await store.append_message(session.session_id, Message(content="late", timestamp=clock.now))
        assert await store.find(identity) is None

    @pytest.mark.asyncio
    async def test_invalid_transition_leaves_session_unchanged(self, store, identity):
        session = await store.get_or_create(identity)
        with pytest.raises(InvalidTransitionError):
            await store.transition(session.session_id, SessionState.CLARIFIED)
        assert (await store.get(session.session_id)).state == SessionState.NEW

    @pytest.mark.asyncio
    async def test_transition_to_expired_tears_down(self, store, identity):
        session = await store.get_or_create(identity)
        expired = await store.transition(session.session_id, SessionState.EXPIRED)

        assert expired.state == SessionState.EXPIRED
        assert await store.find(identity) is None
        fresh = await store.get_or_create(identity)
        assert fresh.session_id != session.session_id

    @pytest.mark.asyncio
    async def test_set_external_thread(self, store, identity):
        session = await store.get_or_create(identity)
        updated = await store.set_external_thread(session.session_id, "4242")
        assert updated.external_thread_ref == "4242"


class TestRoutingDecision:
    @pytest.mark.asyncio
    async def test_record_once(self, store, identity):
        session = await store.get_or_create(identity)
        routed = await store.record_routing_decision(session.session_id, _decision("sales"))

        assert routed.state == SessionState.ROUTED
        assert routed.routing_decision.category == "sales"

    @pytest.mark.asyncio
    async def test_second_decision_rejected(self, store, identity):
        session = await store.get_or_create(identity)
        await store.record_routing_decision(session.session_id, _decision("sales"))

        with pytest.raises(AlreadyRoutedError) as exc_info:
            await store.record_routing_decision(session.session_id, _decision("technical"))

        assert exc_info.value.decision.category == "sales"
        assert (await store.get(session.session_id)).routing_decision.category == "sales"

    @pytest.mark.asyncio
    async def test_concurrent_decisions_only_one_wins(self, store, identity):
        session = await store.get_or_create(identity)
        results = await asyncio.gather(
            *(store.record_routing_decision(session.session_id, _decision(c)) for c in ["sales", "technical"]),
            return_exceptions=True,
        )
        assert sum(isinstance(result, AlreadyRoutedError) for result in results) == 1


class TestClarificationAttempts:
    @pytest.mark.asyncio
    async def test_increment_up_to_max(self, store, identity):
        session = await store.get_or_create(identity)
        counts = [await store.increment_clarification(session.session_id) for _ in range(3)]
        assert counts == [1, 2, 3]

        with pytest.raises(ClarificationNotAllowedError):
            await store.increment_clarification(session.session_id)
        assert (await store.get(session.session_id)).clarification_attempts == 3

    @pytest.mark.asyncio
    async def test_concurrent_increments_never_exceed_max(self, store, identity):
        session = await store.get_or_create(identity)
        results = await asyncio.gather(
            *(store.increment_clarification(session.session_id) for _ in range(10)),
            return_exceptions=True,
        )
        assert sorted(r for r in results if isinstance(r, int)) == [1, 2, 3]
        assert (await store.get(session.session_id)).clarification_attempts == 3

    @pytest.mark.asyncio
    async def test_not_allowed_after_routing(self, store, identity):
        session = await store.get_or_create(identity)
        await store.record_routing_decision(session.session_id, _decision())
        with pytest.raises(ClarificationNotAllowedError):
            await store.increment_clarification(session.session_id)

    @pytest.mark.asyncio
    async def test_unknown_session(self, store):
        with pytest.raises(SessionNotFoundError):
            await store.increment_clarification("missing")


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_scenario_d(self, store, identity, clock):
        session = await store.get_or_create(identity)
        clock.advance(minutes=16)

        assert await store.sweep_expired() == 1
        assert store.active_count == 0

        fresh = await store.get_or_create(identity)
        assert fresh.session_id != session.session_id
        assert fresh.state == SessionState.NEW

    @pytest.mark.asyncio
    async def test_sweep_keeps_live_sessions(self, store, identity, clock):
        await store.get_or_create(identity)
        clock.advance(minutes=14)
        assert await store.sweep_expired() == 0
        assert store.active_count == 1

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, store, identity, clock):
        await store.get_or_create(identity)
        clock.advance(minutes=20)
        assert await store.sweep_expired() == 1
        assert await store.sweep_expired() == 0
        assert await store.sweep_expired() == 0

    @pytest.mark.asyncio
    async def test_sweep_removes_routed_sessions(self, store, identity, clock):
        session = await store.get_or_create(identity)
        await store.record_routing_decision(session.session_id, _decision())
        clock.advance(minutes=15, seconds=1)
        assert await store.sweep_expired() == 1

    @pytest.mark.asyncio
    async def test_update_config_changes_timeout(self, store, identity, clock):
        store.update_config(RoutingConfig(session_timeout_ms=60_000))
        await store.get_or_create(identity)
        clock.advance(minutes=2)
        assert await store.sweep_expired() == 1


class TestSweeperTask:
    @pytest.mark.asyncio
    async def test_background_sweep_runs(self, identity, clock):
        store = SessionStore(RoutingConfig(), sweep_interval_seconds=0.1, clock=clock)
        await store.get_or_create(identity)
        clock.advance(minutes=30)

        await store.start()
        try:
            await asyncio.sleep(0.35)
            # Already removed by the background task.
            assert await store.sweep_expired() == 0
            assert await store.find(identity) is None
        finally:
            await store.stop()

    @pytest.mark.asyncio
    async def test_stop_drops_all_sessions(self, store, identity):
        await store.start()
        session = await store.get_or_create(identity)
        await store.stop()

        assert store.list_sessions() == []
        with pytest.raises(SessionNotFoundError):
            await store.get(session.session_id)


class TestFindByThread:
    @pytest.mark.asyncio
    async def test_finds_routed_session(self, store, identity):
        session = await store.get_or_create(identity)
        await store.record_routing_decision(session.session_id, _decision("sales"))
        await store.set_external_thread(session.session_id, "101")

        found = await store.find_by_thread("101", ["sales"])

        assert found.session_id == session.session_id
        assert await store.find_by_thread("101", ["technical"]) is None
        assert await store.find_by_thread("102") is None

    @pytest.mark.asyncio
    async def test_ignores_expired_session(self, store, identity, clock):
        session = await store.get_or_create(identity)
        await store.record_routing_decision(session.session_id, _decision())
        await store.set_external_thread(session.session_id, "101")

        clock.advance(minutes=16)

        assert await store.find_by_thread("101") is None
