"""Downstream notification of routing decisions.

A routed session is posted into its department's Telegram supergroup, one
forum topic per session; follow-up messages of the customer go to the same
topic. The topic id is the session's external thread reference.
"""

import html
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from message_hub.logging_config import get_logger
from message_hub.models.session import Identity, RoutingDecision, Session
from message_hub.services.result import Result
from message_hub.services.telegram_service import TelegramService, is_missing_thread_error

logger = get_logger("notifier")

PLATFORM_LABELS = {"whatsapp": "📱 WhatsApp", "line": "💬 LINE"}


@dataclass(frozen=True)
class NotificationContext:
    """What the department needs to see about the customer and the conversation."""

    identity: Identity
    latest_message: str
    sender_name: Optional[str] = None
    language: Optional[str] = None
    history: list[str] = field(default_factory=list)

    @classmethod
    def from_session(cls, session: Session, latest_message: str, history_limit: int = 5) -> "NotificationContext":
        history = [
            f"{item['role']}: {item['content']}"
            for item in (message.to_context() for message in session.recent_messages(history_limit + 1)[:-1])
        ]
        return cls(
            identity=session.identity,
            latest_message=latest_message,
            sender_name=session.sender_name,
            language=session.language,
            history=history,
        )

    @property
    def display_name(self) -> str:
        return self.sender_name or self.identity.sender_id


def _confidence_marker(confidence: float) -> str:
    if confidence >= 0.8:
        return "✅"
    if confidence >= 0.6:
        return "⚠️"
    return "❓"


def format_routing_message(context: NotificationContext, decision: RoutingDecision) -> str:
    platform = PLATFORM_LABELS.get(context.identity.platform, context.identity.platform)
    lines = [
        f"🔔 <b>New message from {html.escape(platform)}</b>",
        "",
        f"<b>From:</b> {html.escape(context.display_name)}",
        f"<b>Sender ID:</b> {html.escape(context.identity.sender_id)}",
    ]
    if context.language:
        lines.append(f"<b>Language:</b> {html.escape(context.language)}")
    if context.history:
        lines += ["", "<b>Earlier:</b>"] + [html.escape(item) for item in context.history]
    lines += [
        "",
        "<b>Message:</b>",
        html.escape(context.latest_message),
        "",
        f"{_confidence_marker(decision.confidence)} <b>Routing:</b> {html.escape(decision.justification)} "
        f"({round(decision.confidence * 100)}% confidence, {decision.method})",
    ]
    return "\n".join(lines)


def format_follow_up_message(context: NotificationContext) -> str:
    platform = PLATFORM_LABELS.get(context.identity.platform, context.identity.platform)
    return f"{html.escape(platform)} <b>{html.escape(context.display_name)}:</b>\n{html.escape(context.latest_message)}"


def topic_name(context: NotificationContext) -> str:
    return f"{context.display_name} [{context.identity.platform}]"


class Notifier(ABC):
    @abstractmethod
    async def notify(self, session_id: str, decision: RoutingDecision, context: NotificationContext) -> Result[str]:
        """Deliver a new routing decision. Returns the external thread reference."""

    @abstractmethod
    async def forward_follow_up(
        self,
        session_id: str,
        decision: RoutingDecision,
        thread_ref: Optional[str],
        context: NotificationContext,
    ) -> Result[str]:
        """Deliver a follow-up message to the thread of an already routed session."""


class LoggingNotifier(Notifier):
    """Notifier that only logs. Used when no Telegram bot is configured."""

    async def notify(self, session_id: str, decision: RoutingDecision, context: NotificationContext) -> Result[str]:
        logger.info(
            "Routing decision (log only)",
            extra={
                "context": {
                    "session_id": session_id,
                    "identity": context.identity.key,
                    "category": decision.category,
                    "confidence": decision.confidence,
                }
            },
        )
        return Result.success(f"log:{session_id}")

    async def forward_follow_up(
        self,
        session_id: str,
        decision: RoutingDecision,
        thread_ref: Optional[str],
        context: NotificationContext,
    ) -> Result[str]:
        logger.info(
            "Follow-up (log only)",
            extra={"context": {"session_id": session_id, "thread_ref": thread_ref, "category": decision.category}},
        )
        return Result.success(thread_ref or f"log:{session_id}")


class TelegramNotifier(Notifier):
    def __init__(self, telegram: TelegramService, department_chats: dict[str, str]):
        self.telegram = telegram
        self.department_chats = dict(department_chats)

    def _chat_for(self, category: str) -> Optional[str]:
        return self.department_chats.get(category)

    async def notify(self, session_id: str, decision: RoutingDecision, context: NotificationContext) -> Result[str]:
        chat_id = self._chat_for(decision.category)
        if not chat_id:
            logger.warning(f"No department chat for category {decision.category}")
            return Result.failure(f"No department chat for {decision.category}", "not_configured")

        topic_id = await self.telegram.create_forum_topic(chat_id, topic_name(context))
        if topic_id is None:
            return Result.failure("Could not create forum topic", "topic_failed")

        result = await self.telegram.send_message(
            chat_id=chat_id,
            text=format_routing_message(context, decision),
            message_thread_id=topic_id,
        )
        if not result.get("ok"):
            logger.error(f"Telegram send error: {result}", extra={"context": {"session_id": session_id}})
            return Result.from_api_payload(result, "send_failed")

        await self.telegram.pin_message(chat_id, result["result"]["message_id"])
        logger.info(
            "Routing decision delivered",
            extra={"context": {"session_id": session_id, "chat_id": chat_id, "topic_id": topic_id}},
        )
        return Result.success(str(topic_id))

    async def forward_follow_up(
        self,
        session_id: str,
        decision: RoutingDecision,
        thread_ref: Optional[str],
        context: NotificationContext,
    ) -> Result[str]:
        chat_id = self._chat_for(decision.category)
        if not chat_id:
            return Result.failure(f"No department chat for {decision.category}", "not_configured")

        topic_id: Optional[int] = None
        if thread_ref:
            try:
                topic_id = int(thread_ref)
            except ValueError:
                logger.warning(f"Ignoring non-numeric thread ref {thread_ref!r}")

        text = format_follow_up_message(context)
        result: dict = {"ok": False, "description": "message thread not found"}
        if topic_id is not None:
            result = await self.telegram.send_message(chat_id=chat_id, text=text, message_thread_id=topic_id)

        # Topic deleted in Telegram or never created: open a fresh one with the full context.
        if not result.get("ok") and is_missing_thread_error(result):
            logger.warning(f"Topic {topic_id} not found, creating new one")
            topic_id = await self.telegram.create_forum_topic(chat_id, topic_name(context))
            if topic_id is None:
                return Result.failure("Could not create forum topic", "topic_failed")
            result = await self.telegram.send_message(
                chat_id=chat_id,
                text=format_routing_message(context, decision),
                message_thread_id=topic_id,
            )

        if not result.get("ok"):
            logger.error(f"Telegram follow-up error: {result}", extra={"context": {"session_id": session_id}})
            return Result.from_api_payload(result, "send_failed")
        return Result.success(str(topic_id))
