from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RoutingConfigUpdate(BaseModel):
    """Partial routing config update; omitted fields keep their current value."""

    model_config = ConfigDict(extra="forbid")

    session_timeout_ms: Optional[int] = Field(default=None, gt=0)
    max_clarification_attempts: Optional[int] = Field(default=None, ge=1)
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    ai_timeout_ms: Optional[int] = Field(default=None, gt=0)
    context_messages_limit: Optional[int] = Field(default=None, ge=0)
    ai_prompt_max_chars: Optional[int] = Field(default=None, gt=0)
    fallback_category: Optional[str] = None
    category_priority: Optional[list[str]] = None
    keyword_sets: Optional[dict[str, list[str]]] = None
    category_labels: Optional[dict[str, str]] = None
    ai_on_keyword_conflict: Optional[bool] = None
    send_routing_confirmation: Optional[bool] = None

    @field_validator("keyword_sets", mode="before")
    @classmethod
    def normalize_keyword_sets(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        normalized: dict[str, list[str]] = {}
        for category, keywords in value.items():
            items = keywords.split(",") if isinstance(keywords, str) else list(keywords or [])
            seen: set[str] = set()
            cleaned = []
            for item in items:
                keyword = str(item).strip().lower()
                if keyword and keyword not in seen:
                    cleaned.append(keyword)
                    seen.add(keyword)
            normalized[str(category).strip()] = cleaned
        return normalized

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SessionListResponse(BaseModel):
    active: int
    sessions: list[dict[str, Any]]


class SweepResponse(BaseModel):
    removed: int
    active: int
