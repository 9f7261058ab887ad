from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from message_hub.models.session import RoutingDecision


@dataclass(frozen=True)
class RoutingOutcome:
    """Result of handling one inbound message."""

    kind = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": self.kind}


@dataclass(frozen=True)
class Routed(RoutingOutcome):
    session_id: str
    decision: RoutingDecision
    follow_up: bool = False

    kind = "routed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.kind,
            "session_id": self.session_id,
            "decision": self.decision.to_dict(),
            "follow_up": self.follow_up,
        }


@dataclass(frozen=True)
class ClarificationRequested(RoutingOutcome):
    session_id: str
    prompt_text: str
    attempts: int

    kind = "clarification_requested"

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.kind,
            "session_id": self.session_id,
            "prompt_text": self.prompt_text,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class Escalated(RoutingOutcome):
    reason: str
    session_id: Optional[str] = None

    kind = "escalated"

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": self.kind, "session_id": self.session_id, "reason": self.reason}
