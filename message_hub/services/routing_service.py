"""Routing coordinator: one inbound customer message in, one routing outcome out.

The per-identity pipeline (session lookup, classification, state update) runs
under a pipeline lock so concurrent messages of the same customer can neither
double-route nor over-count clarification attempts. Outbound side effects
(department notification, replies, alerts) run after that lock is released.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from message_hub.config import RoutingConfig
from message_hub.logging_config import SessionLoggerAdapter, get_logger
from message_hub.models.outcome import ClarificationRequested, Escalated, Routed, RoutingOutcome
from message_hub.models.session import Identity, InboundMessage, Message, RoutingDecision, Session
from message_hub.services.alert_service import alert_delivery_failure, alert_escalation
from message_hub.services.channel_sender import ReplySender
from message_hub.services.classifier import ClassificationMethod, ClassificationResult, Classifier, is_greeting
from message_hub.services.keyed_locks import KeyedLocks
from message_hub.services.notifier import LoggingNotifier, NotificationContext, Notifier
from message_hub.services.session_store import SessionStore, SessionStoreError
from message_hub.services.state_machine import SessionState

logger = get_logger("routing_service")

MAX_ATTEMPTS_JUSTIFICATION = "max clarification attempts exhausted"

GREETING_PROMPT = "Hello! Welcome. How can I assist you today? Are you looking for {options}?"
UNKNOWN_PROMPT = "I'd be happy to help! Could you tell me if you need:\n{bullets}"
CATEGORY_PROMPT = (
    "I see you might need help with {label}. Could you provide more details about what you're looking for?"
)
CONFIRMATION_TEXT = "Thank you! I've forwarded your message to our {team} team. They will get back to you shortly."
APOLOGY_TEXT = "I'm experiencing technical difficulties. Our team will get back to you soon."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _join_options(labels: list[str]) -> str:
    if len(labels) <= 1:
        return "".join(labels)
    return ", ".join(labels[:-1]) + " or " + labels[-1]


def build_clarification_prompt(text: str, result: ClassificationResult, config: RoutingConfig) -> str:
    """Pick the disambiguation question for a message that could not be routed confidently."""
    labels = [config.label_for(category) for category in config.categories]
    if is_greeting(text):
        return GREETING_PROMPT.format(options=_join_options(labels))

    guess = result.category
    if guess is None:
        matched = result.extracted_entities.get("matched_categories") or []
        if len(matched) == 1:
            guess = matched[0]
    if guess:
        return CATEGORY_PROMPT.format(label=config.label_for(guess))

    bullets = "\n".join(f"• {label[:1].upper()}{label[1:]}" for label in labels)
    return UNKNOWN_PROMPT.format(bullets=bullets)


def describe_classification(result: ClassificationResult) -> str:
    if result.method == ClassificationMethod.KEYWORD:
        keywords = result.extracted_entities.get("matched_keywords", [])
        return "Keyword match: " + ", ".join(keywords)
    return f"AI classification ({round(result.confidence * 100)}% confidence)"


class RoutingCoordinator:
    def __init__(
        self,
        config: RoutingConfig,
        store: SessionStore,
        classifier: Classifier,
        notifier: Optional[Notifier] = None,
        sender: Optional[ReplySender] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.config = config
        self.store = store
        self.classifier = classifier
        self.notifier = notifier or LoggingNotifier()
        self.sender = sender
        self._clock = clock
        self._pipeline_locks = KeyedLocks()
        self._delivery_locks = KeyedLocks()

    def update_config(self, config: RoutingConfig) -> None:
        self.config = config
        self.classifier.update_config(config)
        self.store.update_config(config)
        logger.info(
            "Routing config reloaded",
            extra={
                "context": {
                    "confidence_threshold": config.confidence_threshold,
                    "max_clarification_attempts": config.max_clarification_attempts,
                    "fallback_category": config.fallback_category,
                    "categories": config.categories,
                }
            },
        )

    async def handle_inbound_message(self, identity: Identity, message: InboundMessage) -> RoutingOutcome:
        """Handle one customer message. Always returns an outcome, never raises."""
        log = SessionLoggerAdapter(logger, {"identity": identity.key})
        session: Optional[Session] = None
        trace: dict[str, str] = {}

        async with self._pipeline_locks.hold(identity.key):
            try:
                outcome, session = await self._run_pipeline(identity, message, log, trace)
            except Exception as exc:
                log.exception("Routing pipeline failed", context={"error": str(exc)})
                outcome = Escalated(reason=f"{type(exc).__name__}: {exc}", session_id=trace.get("session_id"))

        # Taken before any await so deliveries for one identity keep arrival order.
        async with self._delivery_locks.hold(identity.key):
            try:
                await self._dispatch(identity, message, outcome, session, log)
            except Exception as exc:
                log.exception("Outcome side effects failed", context={"error": str(exc), "outcome": outcome.kind})

        log.info("Message handled", context=outcome.to_dict())
        return outcome

    async def _run_pipeline(
        self,
        identity: Identity,
        message: InboundMessage,
        log: SessionLoggerAdapter,
        trace: dict[str, str],
    ) -> tuple[RoutingOutcome, Session]:
        config = self.config
        store = self.store

        session = await store.get_or_create(identity, message.sender_name)
        session_id = session.session_id
        trace["session_id"] = session_id
        session = await store.append_message(
            session_id,
            Message(
                content=message.text,
                timestamp=message.timestamp,
                from_customer=True,
                translated_content=message.translated_text,
                detected_language=message.detected_language,
            ),
        )

        if session.state == SessionState.ROUTED and session.routing_decision is not None:
            log.info("Follow-up for routed session", context={"session_id": session_id})
            return Routed(session_id=session_id, decision=session.routing_decision, follow_up=True), session

        text = message.translated_text or message.text
        result = await self.classifier.classify(
            text,
            context_messages=session.recent_messages(config.context_messages_limit + 1)[:-1],
        )
        log.info(
            "Message classified",
            context={
                "session_id": session_id,
                "category": result.category,
                "confidence": result.confidence,
                "method": result.method.value,
            },
        )

        if result.category and result.confidence >= config.confidence_threshold:
            if session.state == SessionState.AWAITING_CLARIFICATION:
                await store.transition(session_id, SessionState.CLARIFIED)
            decision = RoutingDecision(
                category=result.category,
                confidence=result.confidence,
                justification=describe_classification(result),
                decided_at=self._clock(),
                method=result.method.value,
            )
            session = await store.record_routing_decision(session_id, decision)
            return Routed(session_id=session_id, decision=decision), session

        attempts = session.clarification_attempts
        if attempts < config.max_clarification_attempts:
            attempts = await store.increment_clarification(session_id)
        if attempts >= config.max_clarification_attempts:
            log.warning(
                "Max clarification attempts reached, routing to fallback",
                context={"session_id": session_id, "attempts": attempts, "fallback": config.fallback_category},
            )
            decision = RoutingDecision(
                category=config.fallback_category,
                confidence=0.0,
                justification=MAX_ATTEMPTS_JUSTIFICATION,
                decided_at=self._clock(),
                method="fallback",
            )
            session = await store.record_routing_decision(session_id, decision)
            return Routed(session_id=session_id, decision=decision), session

        if session.state == SessionState.NEW:
            await store.transition(session_id, SessionState.AWAITING_CLARIFICATION)
        prompt = build_clarification_prompt(text, result, config)
        session = await store.append_message(
            session_id,
            Message(content=prompt, timestamp=self._clock(), from_customer=False),
        )
        log.info("Clarification requested", context={"session_id": session_id, "attempts": attempts})
        return ClarificationRequested(session_id=session_id, prompt_text=prompt, attempts=attempts), session

    async def _dispatch(
        self,
        identity: Identity,
        message: InboundMessage,
        outcome: RoutingOutcome,
        session: Optional[Session],
        log: SessionLoggerAdapter,
    ) -> None:
        if isinstance(outcome, Routed) and session is not None:
            context = NotificationContext.from_session(session, message.text, self.config.context_messages_limit)
            if outcome.follow_up:
                await self._forward_follow_up(identity, outcome, session, context, log)
            else:
                await self._notify(outcome, context, log)
                if self.config.send_routing_confirmation:
                    await self._send_reply(identity, CONFIRMATION_TEXT.format(team=outcome.decision.category), log)
        elif isinstance(outcome, ClarificationRequested):
            await self._send_reply(identity, outcome.prompt_text, log)
        elif isinstance(outcome, Escalated):
            await alert_escalation(outcome.reason, identity.key, outcome.session_id)
            await self._send_reply(identity, APOLOGY_TEXT, log)

    async def _notify(self, outcome: Routed, context: NotificationContext, log: SessionLoggerAdapter) -> None:
        result = await self.notifier.notify(outcome.session_id, outcome.decision, context)
        if not result.ok:
            log.error(
                "Routing notification failed",
                context={"session_id": outcome.session_id, "error": result.error, "code": result.error_code},
            )
            await alert_delivery_failure(f"department {outcome.decision.category}", outcome.session_id, result.error)
            return
        await self._store_thread_ref(outcome.session_id, result.value, log)

    async def _forward_follow_up(
        self,
        identity: Identity,
        outcome: Routed,
        session: Session,
        context: NotificationContext,
        log: SessionLoggerAdapter,
    ) -> None:
        # The thread ref of the first delivery may have been stored after this snapshot was taken.
        current = await self.store.find(identity)
        thread_ref = current.external_thread_ref if current else session.external_thread_ref
        result = await self.notifier.forward_follow_up(outcome.session_id, outcome.decision, thread_ref, context)
        if not result.ok:
            log.error(
                "Follow-up forwarding failed",
                context={"session_id": outcome.session_id, "error": result.error, "thread_ref": thread_ref},
            )
            return
        if result.value and result.value != thread_ref:
            await self._store_thread_ref(outcome.session_id, result.value, log)

    async def _store_thread_ref(self, session_id: str, thread_ref: Optional[str], log: SessionLoggerAdapter) -> None:
        if not thread_ref:
            return
        try:
            await self.store.set_external_thread(session_id, thread_ref)
        except SessionStoreError as exc:
            log.warning("Could not store thread ref", context={"session_id": session_id, "error": str(exc)})

    async def _send_reply(self, identity: Identity, text: str, log: SessionLoggerAdapter) -> bool:
        if self.sender is None:
            log.debug("No reply sender configured", context={"reply": text[:100]})
            return False
        try:
            sent = await self.sender.send_reply(identity, text)
        except Exception as exc:
            log.error("Reply sender raised", context={"error": str(exc)})
            sent = False
        if not sent:
            log.warning("Reply not delivered", context={"platform": identity.platform})
        return sent
