from message_hub.schemas.admin import RoutingConfigUpdate, SessionListResponse, SweepResponse
from message_hub.schemas.message import MessageRequest, MessageResponse
from message_hub.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from message_hub.schemas.webhook import LineWebhook, WebhookResponse, WhatsAppWebhook

__all__ = [
    "LineWebhook",
    "MessageRequest",
    "MessageResponse",
    "RoutingConfigUpdate",
    "SessionListResponse",
    "SweepResponse",
    "TelegramUpdate",
    "TelegramWebhookResponse",
    "WebhookResponse",
    "WhatsAppWebhook",
]
