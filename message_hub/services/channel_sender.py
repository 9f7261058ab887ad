"""Outbound replies to the customer on the platform the message came from."""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from message_hub.logging_config import get_logger
from message_hub.models.session import Identity

logger = get_logger("channel_sender")


class ReplySender(ABC):
    @abstractmethod
    async def send_reply(self, identity: Identity, text: str) -> bool:
        """Send text to the customer. Returns False on any delivery failure."""


class WhatsAppCloudSender(ReplySender):
    """WhatsApp Cloud API text sender."""

    def __init__(
        self,
        api_url: str,
        access_token: Optional[str],
        phone_number_id: Optional[str],
        timeout: float = 15.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    async def send_reply(self, identity: Identity, text: str) -> bool:
        if not self.configured:
            logger.error("WhatsApp sender is not configured (WHATSAPP_ACCESS_TOKEN / WHATSAPP_PHONE_NUMBER_ID)")
            return False
        if not text:
            logger.warning(f"send_reply: empty text for {identity.key}")
            return False

        url = f"{self.api_url}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": identity.sender_id.lstrip("+"),
            "type": "text",
            "text": {"body": text},
        }
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e}", extra={"context": {"to": identity.sender_id}})
            return False

        logger.info(
            f"WhatsApp response: status={response.status_code}, to={identity.sender_id}, body={response.text[:200]}"
        )
        return response.status_code == 200


class LineSender(ReplySender):
    """LINE Messaging API push sender."""

    def __init__(self, api_url: str, channel_access_token: Optional[str], timeout: float = 15.0):
        self.api_url = api_url.rstrip("/")
        self.channel_access_token = channel_access_token
        self.timeout = timeout

    async def send_reply(self, identity: Identity, text: str) -> bool:
        if not self.channel_access_token:
            logger.error("LINE sender is not configured (LINE_CHANNEL_ACCESS_TOKEN)")
            return False
        if not text:
            logger.warning(f"send_reply: empty text for {identity.key}")
            return False

        payload = {"to": identity.sender_id, "messages": [{"type": "text", "text": text}]}
        headers = {"Authorization": f"Bearer {self.channel_access_token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.api_url}/message/push", json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Error sending LINE message: {e}", extra={"context": {"to": identity.sender_id}})
            return False

        logger.info(f"LINE response: status={response.status_code}, to={identity.sender_id}")
        return response.status_code == 200


class ChannelReplyRouter(ReplySender):
    """Dispatches a reply to the sender registered for the identity's platform."""

    def __init__(self, senders: Optional[dict[str, ReplySender]] = None):
        self.senders: dict[str, ReplySender] = dict(senders or {})

    def register(self, platform: str, sender: ReplySender) -> None:
        self.senders[platform] = sender

    async def send_reply(self, identity: Identity, text: str) -> bool:
        sender = self.senders.get(identity.platform)
        if sender is None:
            logger.warning(f"No reply sender for platform {identity.platform}")
            return False
        return await sender.send_reply(identity, text)
