"""Telegram webhook: staff replies in a session topic go back to the customer."""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from message_hub.config import settings
from message_hub.dependencies import get_hub
from message_hub.hub import MessageHub
from message_hub.logging_config import get_logger
from message_hub.schemas.telegram import TelegramUpdate, TelegramWebhookResponse

logger = get_logger("telegram_webhook")

router = APIRouter(prefix="/webhook", tags=["webhook"])


def verify_telegram_secret(provided: Optional[str], expected: str) -> bool:
    """Check the `X-Telegram-Bot-Api-Secret-Token` header set via setWebhook."""
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@router.post("/telegram", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
    hub: MessageHub = Depends(get_hub),
):
    secret = settings.telegram_webhook_secret
    if secret and not verify_telegram_secret(x_telegram_bot_api_secret_token, secret):
        logger.warning("Telegram webhook secret mismatch")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    try:
        update = TelegramUpdate.model_validate_json(await request.body())
    except ValidationError as exc:
        logger.warning("Invalid Telegram payload", extra={"context": {"errors": exc.error_count()}})
        return TelegramWebhookResponse(success=False, message="Invalid payload")

    message = update.message
    if message is None or not message.text:
        return TelegramWebhookResponse(success=True, message="No actionable content")

    # Our own routing cards and notices come back as updates too.
    if message.from_user and message.from_user.is_bot:
        return TelegramWebhookResponse(success=True, message="Ignoring bot message")

    if message.text.startswith("/"):
        return TelegramWebhookResponse(success=True, message="Ignoring command")

    if message.message_thread_id is None:
        return TelegramWebhookResponse(success=True, message="Not in a session topic")

    logger.info(
        "Team reply received",
        extra={
            "context": {
                "chat_id": message.chat.id,
                "thread_id": message.message_thread_id,
                "staff": message.staff_name,
            }
        },
    )
    result = await hub.team_replies.relay(
        str(message.chat.id),
        str(message.message_thread_id),
        message.text,
        message.staff_name,
    )
    if not result.ok:
        return TelegramWebhookResponse(success=False, message=result.error)
    return TelegramWebhookResponse(success=True, message="Reply forwarded to customer", session_id=result.value)
