"""In-memory conversation session models.

A session belongs to exactly one identity (platform + sender) and lives only
as long as its sliding expiry keeps being refreshed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from message_hub.services.state_machine import SessionState


@dataclass(frozen=True)
class Identity:
    """Customer identity on one chat platform."""

    platform: str  # whatsapp, line, ...
    sender_id: str

    @property
    def key(self) -> str:
        return f"{self.platform}:{self.sender_id}"


@dataclass(frozen=True)
class InboundMessage:
    """Message as handed over by a channel adapter."""

    text: str
    timestamp: datetime
    detected_language: Optional[str] = None
    translated_text: Optional[str] = None
    sender_name: Optional[str] = None


@dataclass
class Message:
    content: str
    timestamp: datetime
    from_customer: bool = True
    translated_content: Optional[str] = None
    detected_language: Optional[str] = None
    author: Optional[str] = None  # staff member for department replies

    @property
    def role(self) -> str:
        if self.from_customer:
            return "customer"
        return "team" if self.author else "bot"

    def to_context(self) -> dict[str, str]:
        return {
            "role": self.role,
            "content": self.translated_content or self.content,
        }


@dataclass(frozen=True)
class RoutingDecision:
    category: str
    confidence: float
    justification: str
    decided_at: datetime
    method: str = "keyword"  # keyword, ai, fallback

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "confidence": self.confidence,
            "justification": self.justification,
            "decided_at": self.decided_at.isoformat(),
            "method": self.method,
        }


@dataclass
class Session:
    identity: Identity
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.NEW
    messages: list[Message] = field(default_factory=list)
    clarification_attempts: int = 0
    routing_decision: Optional[RoutingDecision] = None
    language: Optional[str] = None
    external_thread_ref: Optional[str] = None
    sender_name: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.state == SessionState.EXPIRED or self.expires_at <= now

    def recent_messages(self, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        return self.messages[-limit:]

    def summary(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "platform": self.identity.platform,
            "sender_id": self.identity.sender_id,
            "sender_name": self.sender_name,
            "state": self.state.value,
            "messages": len(self.messages),
            "clarification_attempts": self.clarification_attempts,
            "language": self.language,
            "routing_decision": self.routing_decision.to_dict() if self.routing_decision else None,
            "external_thread_ref": self.external_thread_ref,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
