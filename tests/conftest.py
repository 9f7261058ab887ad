import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from message_hub.config import RoutingConfig
from message_hub.models import Identity, InboundMessage
from message_hub.services.channel_sender import ReplySender
from message_hub.services.llm import AIScore, AIScorer
from message_hub.services.notifier import Notifier
from message_hub.services.result import Result

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

DEPARTMENT_CHATS = {"technical": "-1002", "sales": "-1001", "design": "-1003"}


class ManualClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeScorer(AIScorer):
    """Returns queued scores in order; repeats the last one when the queue runs dry."""

    def __init__(self, *scores: AIScore, delay: float = 0.0, error: Optional[Exception] = None):
        self.scores = list(scores)
        self.delay = delay
        self.error = error
        self.prompts: list[str] = []
        self.categories: list[list[str]] = []

    async def score(self, prompt, categories):
        self.prompts.append(prompt)
        self.categories.append(list(categories))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if len(self.scores) > 1:
            return self.scores.pop(0)
        return self.scores[0] if self.scores else AIScore(category=None, confidence_percent=0)


class FakeNotifier(Notifier):
    def __init__(self, thread_ref: str = "101", ok: bool = True):
        self.thread_ref = thread_ref
        self.ok = ok
        self.notified: list[tuple] = []
        self.follow_ups: list[tuple] = []

    async def notify(self, session_id, decision, context):
        self.notified.append((session_id, decision, context))
        if not self.ok:
            return Result.failure("chat unavailable", "send_failed")
        return Result.success(self.thread_ref)

    async def forward_follow_up(self, session_id, decision, thread_ref, context):
        self.follow_ups.append((session_id, decision, thread_ref, context))
        return Result.success(thread_ref or self.thread_ref)


class FakeSender(ReplySender):
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: list[tuple[Identity, str]] = []

    async def send_reply(self, identity, text):
        self.sent.append((identity, text))
        return self.ok


def inbound(text: str, **kwargs) -> InboundMessage:
    return InboundMessage(text=text, timestamp=kwargs.pop("timestamp", T0), **kwargs)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def routing_config():
    return RoutingConfig(
        keyword_sets={
            "technical": ["error", "bug", "not working"],
            "sales": ["price", "quote"],
            "design": ["playlist", "branding"],
        },
    )


@pytest.fixture
def identity():
    return Identity(platform="whatsapp", sender_id="66812345678")


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def hub(routing_config, notifier, sender):
    from message_hub.hub import MessageHub

    return MessageHub(
        routing_config,
        scorer=FakeScorer(AIScore(category="technical", confidence_percent=45)),
        notifier=notifier,
        sender=sender,
        sweeper_enabled=False,
        department_chats=DEPARTMENT_CHATS,
    )


@pytest.fixture
def client(hub):
    from fastapi.testclient import TestClient

    from message_hub.dependencies import get_hub
    from message_hub.main import app

    app.dependency_overrides[get_hub] = lambda: hub
    yield TestClient(app)
    app.dependency_overrides.clear()
