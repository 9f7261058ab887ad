"""Platform webhook payloads (only the fields the hub reads)."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


# === WhatsApp Cloud API ===


class WhatsAppText(_Lenient):
    body: str


class WhatsAppButton(_Lenient):
    text: Optional[str] = None
    payload: Optional[str] = None


class WhatsAppReply(_Lenient):
    id: Optional[str] = None
    title: Optional[str] = None


class WhatsAppInteractive(_Lenient):
    type: Optional[str] = None
    button_reply: Optional[WhatsAppReply] = None
    list_reply: Optional[WhatsAppReply] = None


class WhatsAppMessage(_Lenient):
    id: Optional[str] = None
    from_: str = Field(alias="from")
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[WhatsAppText] = None
    button: Optional[WhatsAppButton] = None
    interactive: Optional[WhatsAppInteractive] = None

    def extract_text(self) -> Optional[str]:
        if self.type == "text" and self.text:
            return self.text.body
        if self.type == "button" and self.button:
            return self.button.text or self.button.payload
        if self.type == "interactive" and self.interactive:
            reply = self.interactive.button_reply or self.interactive.list_reply
            if reply:
                return reply.title or reply.id
        return None


class WhatsAppProfile(_Lenient):
    name: Optional[str] = None


class WhatsAppContact(_Lenient):
    wa_id: Optional[str] = None
    profile: Optional[WhatsAppProfile] = None


class WhatsAppStatus(_Lenient):
    id: Optional[str] = None
    status: Optional[str] = None
    recipient_id: Optional[str] = None


class WhatsAppValue(_Lenient):
    messaging_product: Optional[str] = None
    contacts: list[WhatsAppContact] = []
    messages: list[WhatsAppMessage] = []
    statuses: list[WhatsAppStatus] = []

    def contact_name(self, wa_id: str) -> Optional[str]:
        for contact in self.contacts:
            if contact.wa_id == wa_id and contact.profile:
                return contact.profile.name
        return None


class WhatsAppChange(_Lenient):
    field: Optional[str] = None
    value: WhatsAppValue


class WhatsAppEntry(_Lenient):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = []


class WhatsAppWebhook(_Lenient):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = []


# === LINE Messaging API ===


class LineSource(_Lenient):
    type: str = "user"
    userId: Optional[str] = None
    groupId: Optional[str] = None
    roomId: Optional[str] = None

    @property
    def sender_id(self) -> Optional[str]:
        return self.userId or self.groupId or self.roomId


class LineEventMessage(_Lenient):
    id: Optional[str] = None
    type: str
    text: Optional[str] = None


class LineEvent(_Lenient):
    type: str
    timestamp: Optional[int] = None
    replyToken: Optional[str] = None
    source: LineSource
    message: Optional[LineEventMessage] = None


class LineWebhook(_Lenient):
    destination: Optional[str] = None
    events: list[LineEvent] = []


class WebhookResponse(BaseModel):
    success: bool
    message: str
    handled: int = 0
    outcomes: list[dict] = []
