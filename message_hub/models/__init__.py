from message_hub.models.outcome import ClarificationRequested, Escalated, Routed, RoutingOutcome
from message_hub.models.session import (
    Identity,
    InboundMessage,
    Message,
    RoutingDecision,
    Session,
)

__all__ = [
    "Identity",
    "InboundMessage",
    "Message",
    "RoutingDecision",
    "Session",
    "RoutingOutcome",
    "Routed",
    "ClarificationRequested",
    "Escalated",
]
