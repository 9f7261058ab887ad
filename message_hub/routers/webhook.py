"""Platform webhooks: WhatsApp Cloud API and LINE Messaging API."""

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from message_hub.config import settings
from message_hub.dependencies import get_hub
from message_hub.hub import MessageHub
from message_hub.logging_config import get_logger
from message_hub.models import Identity, InboundMessage
from message_hub.schemas.webhook import LineWebhook, WebhookResponse, WhatsAppWebhook

logger = get_logger("webhook")

router = APIRouter(prefix="/webhook", tags=["webhook"])


def verify_whatsapp_signature(raw_body: bytes, signature: Optional[str], app_secret: str) -> bool:
    """Check Meta's `X-Hub-Signature-256: sha256=<hex>` header."""
    if not signature:
        return False
    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    received = signature.strip()
    if received.startswith("sha256="):
        received = received[len("sha256=") :]
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def verify_line_signature(raw_body: bytes, signature: Optional[str], channel_secret: str) -> bool:
    """Check LINE's `X-Line-Signature` header (base64 HMAC-SHA256)."""
    if not signature:
        return False
    digest = hmac.new(channel_secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest)
    return hmac.compare_digest(expected, signature.strip().encode("utf-8"))


def _from_epoch(value: Optional[object], *, millis: bool = False) -> datetime:
    try:
        seconds = int(value) / (1000 if millis else 1)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(timezone.utc)


@router.get("/whatsapp")
async def verify_whatsapp_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge when the verify token matches."""
    expected = settings.whatsapp_verify_token
    if mode == "subscribe" and token and expected and hmac.compare_digest(token, expected):
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(challenge or "")
    logger.warning("WhatsApp webhook verification failed", extra={"context": {"mode": mode}})
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/whatsapp", response_model=WebhookResponse)
async def handle_whatsapp_webhook(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(default=None),
    hub: MessageHub = Depends(get_hub),
):
    raw_body = await request.body()
    if settings.whatsapp_app_secret and not verify_whatsapp_signature(
        raw_body, x_hub_signature_256, settings.whatsapp_app_secret
    ):
        logger.warning("WhatsApp webhook signature verification failed")
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        payload = WhatsAppWebhook.model_validate_json(raw_body)
    except ValidationError as exc:
        logger.warning("Invalid WhatsApp payload", extra={"context": {"errors": exc.error_count()}})
        return WebhookResponse(success=False, message="Invalid payload")

    outcomes = []
    for entry in payload.entry:
        for change in entry.changes:
            value = change.value
            for status in value.statuses:
                logger.info(
                    "WhatsApp status update",
                    extra={"context": {"message_id": status.id, "status": status.status}},
                )
            for message in value.messages:
                text = message.extract_text()
                if not text:
                    logger.info(
                        "Skipping unsupported WhatsApp message",
                        extra={"context": {"type": message.type, "message_id": message.id}},
                    )
                    continue
                identity = Identity(platform="whatsapp", sender_id=message.from_)
                inbound = InboundMessage(
                    text=text,
                    timestamp=_from_epoch(message.timestamp),
                    sender_name=value.contact_name(message.from_),
                )
                outcome = await hub.coordinator.handle_inbound_message(identity, inbound)
                outcomes.append(outcome.to_dict())

    return WebhookResponse(success=True, message="OK", handled=len(outcomes), outcomes=outcomes)


@router.post("/line", response_model=WebhookResponse)
async def handle_line_webhook(
    request: Request,
    x_line_signature: Optional[str] = Header(default=None),
    hub: MessageHub = Depends(get_hub),
):
    raw_body = await request.body()
    if settings.line_channel_secret and not verify_line_signature(
        raw_body, x_line_signature, settings.line_channel_secret
    ):
        logger.warning("LINE webhook signature verification failed")
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        payload = LineWebhook.model_validate_json(raw_body)
    except ValidationError as exc:
        logger.warning("Invalid LINE payload", extra={"context": {"errors": exc.error_count()}})
        return WebhookResponse(success=False, message="Invalid payload")

    outcomes = []
    for event in payload.events:
        sender_id = event.source.sender_id
        if event.type != "message" or event.message is None or event.message.type != "text" or not sender_id:
            logger.info("Skipping LINE event", extra={"context": {"type": event.type}})
            continue
        if not event.message.text:
            continue
        identity = Identity(platform="line", sender_id=sender_id)
        inbound = InboundMessage(text=event.message.text, timestamp=_from_epoch(event.timestamp, millis=True))
        outcome = await hub.coordinator.handle_inbound_message(identity, inbound)
        outcomes.append(outcome.to_dict())

    return WebhookResponse(success=True, message="OK", handled=len(outcomes), outcomes=outcomes)
