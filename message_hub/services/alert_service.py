"""Operator alerts sent to a Telegram chat.

Used for conditions a human has to look at: escalated messages and
notifications that could not be delivered to a department.
"""

from typing import Optional

import httpx

from message_hub.config import settings
from message_hub.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = settings.alert_bot_token
ALERT_CHAT_ID = settings.alert_chat_id

LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_EMOJI.get(level, '📢')} *{level}*\n\n{message}"
    if context:
        lines = "\n".join(f"  {key}: {value}" for key, value in context.items() if value is not None)
        if lines:
            text += f"\n\n```\n{lines}\n```"
    return text


async def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send alert to the operator chat.

    Args:
        level: INFO, WARNING, ERROR, CRITICAL
        message: Alert message
        context: Optional context dict, rendered as a code block

    Returns:
        True if Telegram accepted the message
    """
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(
            "Alert not configured",
            extra={"context": {"level": level, "alert": message}},
        )
        return False

    payload = {
        "chat_id": ALERT_CHAT_ID,
        "text": format_alert(level, message, context),
        "parse_mode": "Markdown",
    }
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json=payload,
            )
    except httpx.HTTPError as exc:
        logger.error("Failed to send alert", extra={"context": {"level": level, "error": str(exc)}})
        return False
    if response.status_code != 200:
        logger.error(
            "Alert rejected by Telegram",
            extra={"context": {"level": level, "status": response.status_code}},
        )
        return False
    return True


async def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return await send_alert("ERROR", message, context)


async def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return await send_alert("CRITICAL", message, context)


async def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return await send_alert("WARNING", message, context)


async def alert_escalation(reason: str, identity_key: str, session_id: Optional[str] = None) -> bool:
    """Message could not be routed automatically and needs a human."""
    return await alert_error(
        "Message escalated to operators",
        {"identity": identity_key, "session_id": session_id, "reason": reason},
    )


async def alert_delivery_failure(target: str, session_id: str, error: Optional[str]) -> bool:
    """Routing decision or reply could not be delivered."""
    return await alert_warning(
        f"Delivery to {target} failed",
        {"session_id": session_id, "error": error},
    )
