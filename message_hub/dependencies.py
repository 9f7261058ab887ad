from typing import Optional

from message_hub.config import settings
from message_hub.hub import MessageHub

_hub: Optional[MessageHub] = None


def get_hub() -> MessageHub:
    """FastAPI dependency returning the process-wide hub, built on first use."""
    global _hub
    if _hub is None:
        _hub = MessageHub.from_settings(settings)
    return _hub


def set_hub(hub: Optional[MessageHub]) -> None:
    global _hub
    _hub = hub
