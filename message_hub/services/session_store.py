"""In-memory session store.

Owns every conversation session, keyed by customer identity. All mutations of
one identity's session are serialized through a per-identity lock; the
periodic sweep takes the same lock before removing an expired session.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Iterable, Optional

from message_hub.config import RoutingConfig
from message_hub.logging_config import get_logger
from message_hub.models.session import Identity, Message, RoutingDecision, Session
from message_hub.services.keyed_locks import KeyedLocks
from message_hub.services.state_machine import CLARIFIABLE_STATES, SessionState, route, transition

logger = get_logger("session_store")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStoreError(Exception):
    pass


class SessionNotFoundError(SessionStoreError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found or expired")


class AlreadyRoutedError(SessionStoreError):
    def __init__(self, session_id: str, decision: RoutingDecision):
        self.session_id = session_id
        self.decision = decision
        super().__init__(f"Session {session_id} already routed to {decision.category}")


class ClarificationNotAllowedError(SessionStoreError):
    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Cannot request clarification for session {session_id}: {reason}")


def _snapshot(session: Session) -> Session:
    return replace(session, messages=list(session.messages))


class SessionStore:
    def __init__(
        self,
        config: RoutingConfig,
        *,
        sweep_interval_seconds: float = 60.0,
        clock: Clock = utc_now,
    ):
        self.config = config
        self.sweep_interval_seconds = max(sweep_interval_seconds, 0.1)
        self._clock = clock
        self._sessions: dict[str, Session] = {}  # identity key -> session
        self._index: dict[str, str] = {}  # session_id -> identity key
        self._locks = KeyedLocks()
        self._sweep_task: Optional[asyncio.Task] = None

    def update_config(self, config: RoutingConfig) -> None:
        self.config = config

    @property
    def session_timeout(self) -> timedelta:
        return timedelta(milliseconds=self.config.session_timeout_ms)

    @property
    def active_count(self) -> int:
        now = self._clock()
        return sum(1 for session in self._sessions.values() if not session.is_expired(now))

    def list_sessions(self) -> list[Session]:
        now = self._clock()
        return [_snapshot(s) for s in self._sessions.values() if not s.is_expired(now)]

    async def get_or_create(self, identity: Identity, sender_name: Optional[str] = None) -> Session:
        """Return the live session for identity, creating a NEW one if absent or expired."""
        async with self._locks.hold(identity.key):
            now = self._clock()
            session = self._sessions.get(identity.key)
            if session is not None and session.is_expired(now):
                logger.info(
                    "Session expired, recreating",
                    extra={"context": {"session_id": session.session_id, "identity": identity.key}},
                )
                self._remove(identity.key, session)
                session = None

            if session is None:
                session = Session(
                    identity=identity,
                    created_at=now,
                    updated_at=now,
                    expires_at=now + self.session_timeout,
                    sender_name=sender_name,
                )
                self._sessions[identity.key] = session
                self._index[session.session_id] = identity.key
                logger.info(
                    "Session created",
                    extra={"context": {"session_id": session.session_id, "identity": identity.key}},
                )
            elif sender_name and not session.sender_name:
                session.sender_name = sender_name
            return _snapshot(session)

    async def find(self, identity: Identity) -> Optional[Session]:
        session = self._sessions.get(identity.key)
        if session is None or session.is_expired(self._clock()):
            return None
        return _snapshot(session)

    async def find_by_thread(self, thread_ref: str, categories: Optional[Iterable[str]] = None) -> Optional[Session]:
        """Live routed session whose downstream thread is `thread_ref`.

        Topic ids are only unique per department chat, so callers narrow the
        match to the categories served by the chat the reply came from.
        """
        now = self._clock()
        allowed = set(categories) if categories is not None else None
        for session in self._sessions.values():
            if session.external_thread_ref != thread_ref or session.routing_decision is None:
                continue
            if session.is_expired(now):
                continue
            if allowed is not None and session.routing_decision.category not in allowed:
                continue
            return _snapshot(session)
        return None

    async def get(self, session_id: str) -> Session:
        async with self._locked(session_id) as session:
            return _snapshot(session)

    async def append_message(self, session_id: str, message: Message) -> Session:
        async with self._locked(session_id) as session:
            session.messages.append(message)
            if message.from_customer and message.detected_language and not session.language:
                session.language = message.detected_language
            self._touch(session)
            logger.debug(
                "Message appended",
                extra={
                    "context": {
                        "session_id": session_id,
                        "from_customer": message.from_customer,
                        "message_count": len(session.messages),
                    }
                },
            )
            return _snapshot(session)

    async def transition(self, session_id: str, new_state: SessionState) -> Session:
        """Move the session along the state graph. Requesting EXPIRED tears it down."""
        async with self._locked(session_id) as session:
            old_state = session.state
            session.state = transition(old_state, new_state)
            self._log_transition(session, old_state)
            if new_state == SessionState.EXPIRED:
                self._remove(session.identity.key, session)
            else:
                self._touch(session)
            return _snapshot(session)

    async def record_routing_decision(self, session_id: str, decision: RoutingDecision) -> Session:
        async with self._locked(session_id) as session:
            if session.routing_decision is not None:
                raise AlreadyRoutedError(session_id, session.routing_decision)
            old_state = session.state
            session.state = route(old_state)
            session.routing_decision = decision
            self._touch(session)
            self._log_transition(session, old_state)
            logger.info(
                "Routing decision recorded",
                extra={
                    "context": {
                        "session_id": session_id,
                        "category": decision.category,
                        "confidence": decision.confidence,
                        "method": decision.method,
                    }
                },
            )
            return _snapshot(session)

    async def increment_clarification(self, session_id: str) -> int:
        async with self._locked(session_id) as session:
            if session.state not in CLARIFIABLE_STATES:
                raise ClarificationNotAllowedError(session_id, f"state is {session.state.value}")
            if session.clarification_attempts >= self.config.max_clarification_attempts:
                raise ClarificationNotAllowedError(session_id, "maximum attempts reached")
            session.clarification_attempts += 1
            self._touch(session)
            return session.clarification_attempts

    async def set_external_thread(self, session_id: str, thread_ref: str) -> Session:
        async with self._locked(session_id) as session:
            session.external_thread_ref = thread_ref
            self._touch(session)
            return _snapshot(session)

    async def sweep_expired(self) -> int:
        """Remove every session whose expiry has passed. Returns the number removed."""
        now = self._clock()
        candidates = [key for key, session in self._sessions.items() if session.is_expired(now)]
        removed = 0
        for key in candidates:
            async with self._locks.hold(key):
                session = self._sessions.get(key)
                if session is None or not session.is_expired(self._clock()):
                    continue
                self._remove(key, session)
                removed += 1
        if removed:
            logger.info("Expired sessions swept", extra={"context": {"removed": removed}})
        return removed

    async def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(
                "Session sweeper started",
                extra={"context": {"interval_seconds": self.sweep_interval_seconds}},
            )

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        dropped = len(self._sessions)
        for key, session in list(self._sessions.items()):
            self._remove(key, session)
        logger.info("Session store stopped", extra={"context": {"dropped_sessions": dropped}})

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.sweep_interval_seconds)
                await self.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Session sweep failed", extra={"context": {"error": str(exc)}})

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[Session]:
        key = self._index.get(session_id)
        if key is None:
            raise SessionNotFoundError(session_id)
        async with self._locks.hold(key):
            session = self._sessions.get(key)
            if session is None or session.session_id != session_id:
                raise SessionNotFoundError(session_id)
            if session.is_expired(self._clock()):
                self._remove(key, session)
                raise SessionNotFoundError(session_id)
            yield session

    def _touch(self, session: Session) -> None:
        now = self._clock()
        session.updated_at = now
        session.expires_at = now + self.session_timeout

    def _remove(self, key: str, session: Session) -> None:
        session.state = SessionState.EXPIRED
        self._index.pop(session.session_id, None)
        if self._sessions.get(key) is session:
            del self._sessions[key]

    def _log_transition(self, session: Session, old_state: SessionState) -> None:
        logger.info(
            "Session state changed",
            extra={
                "context": {
                    "session_id": session.session_id,
                    "identity": session.identity.key,
                    "from": old_state.value,
                    "to": session.state.value,
                }
            },
        )
