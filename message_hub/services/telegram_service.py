from typing import Optional

import httpx

from message_hub.logging_config import get_logger

logger = get_logger("telegram_service")


class TelegramService:
    """Async client for the parts of the Telegram Bot API the hub needs."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str, timeout: float = 15.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout = timeout

    async def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Call a Bot API method. Transport errors come back as `{"ok": False}`."""
        url = f"{self.base_url}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=data or {})
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram API error: {e}", extra={"context": {"method": method}})
            return {"ok": False, "description": str(e)}

    async def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: str = "HTML",
        message_thread_id: Optional[int] = None,
        reply_markup: Optional[dict] = None,
    ) -> dict:
        data = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
        }
        if message_thread_id:
            data["message_thread_id"] = message_thread_id
        if reply_markup:
            data["reply_markup"] = reply_markup
        return await self._make_request("sendMessage", data)

    async def pin_message(self, chat_id: str, message_id: int) -> dict:
        data = {
            "chat_id": chat_id,
            "message_id": message_id,
            "disable_notification": True,
        }
        return await self._make_request("pinChatMessage", data)

    async def create_forum_topic(self, chat_id: str, name: str) -> Optional[int]:
        """Create forum topic in supergroup. Returns topic_id or None."""
        # Telegram caps topic names at 128 characters.
        result = await self._make_request("createForumTopic", {"chat_id": chat_id, "name": name[:128]})
        if result.get("ok"):
            return result["result"]["message_thread_id"]
        logger.warning(f"Failed to create topic: {result}")
        return None


def is_missing_thread_error(result: dict) -> bool:
    description = str(result.get("description", "")).lower()
    return "thread not found" in description or "message_thread_id" in description
