from enum import Enum


class SessionState(str, Enum):
    NEW = "new"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    CLARIFIED = "clarified"
    ROUTED = "routed"
    EXPIRED = "expired"


VALID_TRANSITIONS = {
    SessionState.NEW: [
        SessionState.AWAITING_CLARIFICATION,
        SessionState.ROUTED,
        SessionState.EXPIRED,
    ],
    SessionState.AWAITING_CLARIFICATION: [
        SessionState.CLARIFIED,
        SessionState.ROUTED,
        SessionState.EXPIRED,
    ],
    SessionState.CLARIFIED: [SessionState.ROUTED, SessionState.EXPIRED],
    SessionState.ROUTED: [],
    SessionState.EXPIRED: [],
}

# Clarification attempts may only grow while the session is still being triaged.
CLARIFIABLE_STATES = {SessionState.NEW, SessionState.AWAITING_CLARIFICATION}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: SessionState, to_state: SessionState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: SessionState, to_state: SessionState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: SessionState, to_state: SessionState) -> SessionState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def route(current_state: SessionState) -> SessionState:
    """Session received its routing decision."""
    return transition(current_state, SessionState.ROUTED)
