"""Admin API endpoints for inspecting sessions and reloading routing config."""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import ValidationError

from message_hub.config import settings
from message_hub.dependencies import get_hub
from message_hub.hub import MessageHub
from message_hub.logging_config import get_logger
from message_hub.models import Identity
from message_hub.schemas.admin import RoutingConfigUpdate, SessionListResponse, SweepResponse

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    x_admin_token: Optional[str] = Header(default=None),
    hub: MessageHub = Depends(get_hub),
):
    _require_admin_token(x_admin_token)
    sessions = hub.store.list_sessions()
    return SessionListResponse(active=len(sessions), sessions=[session.summary() for session in sessions])


@router.get("/sessions/{platform}/{sender_id}")
async def get_session(
    platform: str,
    sender_id: str,
    x_admin_token: Optional[str] = Header(default=None),
    hub: MessageHub = Depends(get_hub),
):
    _require_admin_token(x_admin_token)
    session = await hub.store.find(Identity(platform=platform, sender_id=sender_id))
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    summary = session.summary()
    summary["history"] = [
        {
            "content": message.content,
            "from_customer": message.from_customer,
            "timestamp": message.timestamp.isoformat(),
            "detected_language": message.detected_language,
            "author": message.author,
        }
        for message in session.messages
    ]
    return summary


@router.post("/sessions/sweep", response_model=SweepResponse)
async def sweep_sessions(
    x_admin_token: Optional[str] = Header(default=None),
    hub: MessageHub = Depends(get_hub),
):
    _require_admin_token(x_admin_token)
    removed = await hub.store.sweep_expired()
    return SweepResponse(removed=removed, active=hub.store.active_count)


@router.get("/routing-config")
async def get_routing_config(
    x_admin_token: Optional[str] = Header(default=None),
    hub: MessageHub = Depends(get_hub),
):
    _require_admin_token(x_admin_token)
    return {**hub.config.model_dump(), "categories": hub.config.categories}


@router.put("/routing-config")
async def update_routing_config(
    update: RoutingConfigUpdate,
    x_admin_token: Optional[str] = Header(default=None),
    hub: MessageHub = Depends(get_hub),
):
    _require_admin_token(x_admin_token)
    changes = update.changes()
    if not changes:
        raise HTTPException(status_code=400, detail="No changes provided")
    try:
        config = hub.update_routing_config(changes)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
    logger.info("Routing config updated", extra={"context": {"fields": sorted(changes)}})
    return {**config.model_dump(), "categories": config.categories}
