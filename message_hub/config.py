from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings

DEFAULT_KEYWORD_SETS: Dict[str, List[str]] = {
    "technical": [
        "support",
        "help",
        "issue",
        "problem",
        "technical",
        "error",
        "bug",
        "not working",
        "broken",
        "fix",
        "troubleshoot",
        "crash",
        "fail",
        "cant",
        "can't",
        "cannot",
        "doesnt work",
        "doesn't work",
    ],
    "sales": [
        "quote",
        "quotation",
        "price",
        "pricing",
        "cost",
        "purchase",
        "buy",
        "order",
        "discount",
        "payment",
        "invoice",
        "subscription",
        "plan",
        "package",
        "deal",
        "offer",
        "proposal",
    ],
    "design": [
        "design",
        "music",
        "soundtrack",
        "playlist",
        "branding",
        "audio",
        "sound",
        "atmosphere",
        "mood",
        "vibe",
        "tempo",
        "genre",
        "track",
        "song",
        "artist",
        "custom",
        "brand identity",
    ],
}

DEFAULT_CATEGORY_LABELS: Dict[str, str] = {
    "technical": "technical support",
    "sales": "a price quote or sales information",
    "design": "music and design services",
}


class RoutingConfig(BaseModel):
    """Hot-reloadable routing parameters shared by the store, classifier and coordinator."""

    model_config = ConfigDict(frozen=True)

    session_timeout_ms: int = Field(default=15 * 60 * 1000, gt=0)
    max_clarification_attempts: int = Field(default=3, ge=1)
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    ai_timeout_ms: int = Field(default=500, gt=0)
    context_messages_limit: int = Field(default=5, ge=0)
    ai_prompt_max_chars: int = Field(default=1000, gt=0)
    fallback_category: str = "sales"
    category_priority: List[str] = Field(default_factory=lambda: ["technical", "sales", "design"])
    keyword_sets: Dict[str, List[str]] = Field(default_factory=lambda: dict(DEFAULT_KEYWORD_SETS))
    category_labels: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CATEGORY_LABELS))
    ai_on_keyword_conflict: bool = False
    send_routing_confirmation: bool = True

    @model_validator(mode="after")
    def _check_fallback_category(self) -> "RoutingConfig":
        if self.fallback_category not in self.categories:
            raise ValueError(f"fallback_category '{self.fallback_category}' is not a known category")
        return self

    @property
    def categories(self) -> List[str]:
        """All known categories, priority order first."""
        ordered = list(dict.fromkeys(self.category_priority))
        for category in list(self.keyword_sets) + list(self.category_labels):
            if category not in ordered:
                ordered.append(category)
        return ordered

    @property
    def ai_timeout_seconds(self) -> float:
        return self.ai_timeout_ms / 1000

    def label_for(self, category: Optional[str]) -> str:
        if not category:
            return "our team"
        return self.category_labels.get(category, category)


class Settings(BaseSettings):
    # Sessions and routing
    session_timeout_ms: int = 15 * 60 * 1000
    sweep_interval_seconds: float = 60.0
    session_sweeper_enabled: bool = True
    max_clarification_attempts: int = 3
    confidence_threshold: float = 0.7
    ai_timeout_ms: int = 500
    context_messages_limit: int = 5
    ai_prompt_max_chars: int = 1000
    fallback_category: str = "sales"
    category_priority: List[str] = ["technical", "sales", "design"]
    keyword_sets: Dict[str, List[str]] = DEFAULT_KEYWORD_SETS
    category_labels: Dict[str, str] = DEFAULT_CATEGORY_LABELS
    ai_on_keyword_conflict: bool = False
    send_routing_confirmation: bool = True

    # AI scorer
    openai_api_key: Optional[str] = None
    ai_model: str = "gpt-5-mini"

    # Downstream notification (Telegram forum topics per department)
    telegram_bot_token: Optional[str] = None
    department_chats: Dict[str, str] = {}
    telegram_webhook_secret: Optional[str] = None

    # Channels
    whatsapp_api_url: str = "https://graph.facebook.com/v19.0"
    whatsapp_access_token: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None
    whatsapp_verify_token: Optional[str] = None
    whatsapp_app_secret: Optional[str] = None
    line_api_url: str = "https://api.line.me/v2/bot"
    line_channel_access_token: Optional[str] = None
    line_channel_secret: Optional[str] = None

    # Operations
    alert_bot_token: Optional[str] = None
    alert_chat_id: Optional[str] = None
    admin_token: Optional[str] = None
    log_level: str = "INFO"
    debug: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"

    def routing_config(self) -> RoutingConfig:
        return RoutingConfig(
            session_timeout_ms=self.session_timeout_ms,
            max_clarification_attempts=self.max_clarification_attempts,
            confidence_threshold=self.confidence_threshold,
            ai_timeout_ms=self.ai_timeout_ms,
            context_messages_limit=self.context_messages_limit,
            ai_prompt_max_chars=self.ai_prompt_max_chars,
            fallback_category=self.fallback_category,
            category_priority=self.category_priority,
            keyword_sets=self.keyword_sets,
            category_labels=self.category_labels,
            ai_on_keyword_conflict=self.ai_on_keyword_conflict,
            send_routing_confirmation=self.send_routing_confirmation,
        )


settings = Settings()
