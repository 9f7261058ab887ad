from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from message_hub.dependencies import get_hub
from message_hub.hub import MessageHub
from message_hub.models import Escalated, Identity, InboundMessage
from message_hub.schemas.message import MessageRequest, MessageResponse

router = APIRouter()


def to_inbound(request: MessageRequest) -> InboundMessage:
    return InboundMessage(
        text=request.text,
        timestamp=request.timestamp or datetime.now(timezone.utc),
        detected_language=request.detected_language,
        translated_text=request.translated_text,
        sender_name=request.sender_name,
    )


@router.post("/message", response_model=MessageResponse)
async def handle_message(request: MessageRequest, hub: MessageHub = Depends(get_hub)):
    """Handle a normalized inbound message from any channel adapter."""
    identity = Identity(platform=request.platform.strip().lower(), sender_id=request.sender_id.strip())
    outcome = await hub.coordinator.handle_inbound_message(identity, to_inbound(request))
    payload = outcome.to_dict()
    return MessageResponse(
        success=not isinstance(outcome, Escalated),
        outcome=payload.pop("outcome"),
        **payload,
    )
