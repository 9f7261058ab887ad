"""Department replies back to the customer.

Staff answer inside the forum topic the notifier opened for a routed session.
The topic id is the session's external thread reference, so a reply in that
topic is relayed to the identity that started the session.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from message_hub.logging_config import get_logger
from message_hub.models.session import Message
from message_hub.services.alert_service import alert_delivery_failure
from message_hub.services.channel_sender import ReplySender
from message_hub.services.result import Result
from message_hub.services.session_store import SessionStore, SessionStoreError
from message_hub.services.telegram_service import TelegramService

logger = get_logger("team_reply_service")

TEAM_REPLY_TEXT = "💬 Reply from our {team} team:\n\n{text}"
SESSION_GONE_NOTICE = "⚠️ This conversation has expired. The reply was not delivered to the customer."
UNDELIVERED_NOTICE = "⚠️ The reply could not be delivered to the customer."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_team_reply(text: str, team: str, staff_name: Optional[str] = None) -> str:
    reply = TEAM_REPLY_TEXT.format(team=team, text=text.strip())
    if staff_name:
        reply += f"\n\n👤 {staff_name}"
    return reply


class TeamReplyRelay:
    def __init__(
        self,
        store: SessionStore,
        sender: Optional[ReplySender],
        department_chats: dict[str, str],
        telegram: Optional[TelegramService] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.store = store
        self.sender = sender
        self.department_chats = dict(department_chats)
        self.telegram = telegram
        self._clock = clock

    def categories_for_chat(self, chat_id: str) -> list[str]:
        return [category for category, chat in self.department_chats.items() if str(chat) == str(chat_id)]

    async def relay(
        self,
        chat_id: str,
        thread_ref: str,
        text: str,
        staff_name: Optional[str] = None,
    ) -> Result[str]:
        """Send a staff reply to the customer of the session behind `thread_ref`.

        Returns the session id on success. Failures are reported back into the
        topic so staff know the customer did not get the message.
        """
        categories = self.categories_for_chat(chat_id)
        if not categories:
            logger.info("Reply from a chat that serves no department", extra={"context": {"chat_id": chat_id}})
            return Result.failure(f"Chat {chat_id} is not a department chat", "unknown_chat")

        session = await self.store.find_by_thread(thread_ref, categories)
        if session is None:
            logger.info(
                "No live session for topic",
                extra={"context": {"chat_id": chat_id, "thread_ref": thread_ref}},
            )
            await self._notice(chat_id, thread_ref, SESSION_GONE_NOTICE)
            return Result.failure("No live session for this topic", "session_not_found")

        reply = format_team_reply(text, session.routing_decision.category, staff_name)
        sent = False
        if self.sender is not None:
            try:
                sent = await self.sender.send_reply(session.identity, reply)
            except Exception as exc:
                logger.error(
                    "Reply sender raised",
                    extra={"context": {"session_id": session.session_id, "error": str(exc)}},
                )
        if not sent:
            await self._notice(chat_id, thread_ref, UNDELIVERED_NOTICE)
            await alert_delivery_failure(f"customer {session.identity.key}", session.session_id, "team reply not sent")
            return Result.failure("Reply not delivered to the customer", "send_failed")

        try:
            await self.store.append_message(
                session.session_id,
                Message(content=text, timestamp=self._clock(), from_customer=False, author=staff_name or "team"),
            )
        except SessionStoreError as exc:
            logger.warning(
                "Team reply sent but not recorded",
                extra={"context": {"session_id": session.session_id, "error": str(exc)}},
            )

        logger.info(
            "Team reply relayed",
            extra={
                "context": {
                    "session_id": session.session_id,
                    "identity": session.identity.key,
                    "thread_ref": thread_ref,
                }
            },
        )
        return Result.success(session.session_id)

    async def _notice(self, chat_id: str, thread_ref: str, text: str) -> None:
        if self.telegram is None:
            return
        try:
            topic_id = int(thread_ref)
        except ValueError:
            return
        result = await self.telegram.send_message(chat_id=chat_id, text=text, message_thread_id=topic_id)
        if not result.get("ok"):
            logger.warning(f"Could not post notice into topic {thread_ref}: {result.get('description')}")
