from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class MessageRequest(BaseModel):
    platform: str = Field(min_length=1)
    sender_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    timestamp: Optional[datetime] = None
    detected_language: Optional[str] = None
    translated_text: Optional[str] = None
    sender_name: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool
    outcome: str
    session_id: Optional[str] = None
    decision: Optional[dict[str, Any]] = None
    follow_up: bool = False
    prompt_text: Optional[str] = None
    attempts: Optional[int] = None
    reason: Optional[str] = None
