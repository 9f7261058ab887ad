"""Component wiring for the message hub."""

from typing import Optional

from message_hub.config import RoutingConfig, Settings
from message_hub.logging_config import get_logger
from message_hub.services.channel_sender import ChannelReplyRouter, LineSender, ReplySender, WhatsAppCloudSender
from message_hub.services.classifier import Classifier
from message_hub.services.llm import AIScorer, LLMScorer, OpenAIProvider
from message_hub.services.notifier import LoggingNotifier, Notifier, TelegramNotifier
from message_hub.services.routing_service import RoutingCoordinator
from message_hub.services.session_store import SessionStore
from message_hub.services.team_reply_service import TeamReplyRelay
from message_hub.services.telegram_service import TelegramService

logger = get_logger("hub")


class MessageHub:
    """Owns the session store, classifier and coordinator of one process."""

    def __init__(
        self,
        config: RoutingConfig,
        *,
        scorer: Optional[AIScorer] = None,
        notifier: Optional[Notifier] = None,
        sender: Optional[ReplySender] = None,
        sweep_interval_seconds: float = 60.0,
        sweeper_enabled: bool = True,
        department_chats: Optional[dict[str, str]] = None,
        telegram: Optional[TelegramService] = None,
    ):
        self.store = SessionStore(config, sweep_interval_seconds=sweep_interval_seconds)
        self.classifier = Classifier(config, scorer)
        self.coordinator = RoutingCoordinator(
            config,
            self.store,
            self.classifier,
            notifier=notifier,
            sender=sender,
        )
        self.team_replies = TeamReplyRelay(self.store, sender, department_chats or {}, telegram)
        self.sweeper_enabled = sweeper_enabled

    @classmethod
    def from_settings(cls, settings: Settings) -> "MessageHub":
        scorer = None
        if settings.openai_api_key:
            scorer = LLMScorer(OpenAIProvider(api_key=settings.openai_api_key, default_model=settings.ai_model))
        else:
            logger.warning("OPENAI_API_KEY not set, AI classification disabled")

        telegram = None
        if settings.telegram_bot_token and settings.department_chats:
            telegram = TelegramService(settings.telegram_bot_token)
            notifier: Notifier = TelegramNotifier(telegram, settings.department_chats)
        else:
            logger.warning("Telegram notifier not configured, routing decisions are only logged")
            notifier = LoggingNotifier()

        sender = ChannelReplyRouter(
            {
                "whatsapp": WhatsAppCloudSender(
                    settings.whatsapp_api_url,
                    settings.whatsapp_access_token,
                    settings.whatsapp_phone_number_id,
                ),
                "line": LineSender(settings.line_api_url, settings.line_channel_access_token),
            }
        )
        return cls(
            settings.routing_config(),
            scorer=scorer,
            notifier=notifier,
            sender=sender,
            sweep_interval_seconds=settings.sweep_interval_seconds,
            sweeper_enabled=settings.session_sweeper_enabled,
            department_chats=settings.department_chats,
            telegram=telegram,
        )

    @property
    def config(self) -> RoutingConfig:
        return self.coordinator.config

    def update_routing_config(self, updates: dict) -> RoutingConfig:
        """Apply a partial update. Raises pydantic.ValidationError on invalid values."""
        # model_copy(update=...) would skip validation.
        config = RoutingConfig.model_validate({**self.config.model_dump(), **updates})
        self.coordinator.update_config(config)
        return config

    async def start(self) -> None:
        if self.sweeper_enabled:
            await self.store.start()

    async def stop(self) -> None:
        await self.store.stop()
