from message_hub.services.result import Result
from message_hub.services.state_machine import (
    InvalidTransitionError,
    SessionState,
    can_transition,
    route,
    transition,
)
