"""Telegram Bot API updates, as far as department replies need them."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TelegramUser(_Lenient):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None

    @property
    def full_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or (self.username or str(self.id))


class TelegramChat(_Lenient):
    id: int
    type: str = "supergroup"  # private, group, supergroup, channel
    title: Optional[str] = None
    is_forum: Optional[bool] = None


class TelegramMessage(_Lenient):
    message_id: int
    date: Optional[int] = None
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    sender_chat: Optional[TelegramChat] = None
    text: Optional[str] = None
    message_thread_id: Optional[int] = None  # forum topic id
    is_topic_message: Optional[bool] = None

    @property
    def staff_name(self) -> Optional[str]:
        if self.from_user:
            return self.from_user.full_name
        if self.sender_chat:
            return self.sender_chat.title
        return None


class TelegramUpdate(_Lenient):
    update_id: int
    message: Optional[TelegramMessage] = None


class TelegramWebhookResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    session_id: Optional[str] = None
