import json
import math
import re
from typing import List, Optional

from message_hub.logging_config import get_logger
from message_hub.services.llm.base import AIScore, AIScorer, LLMProvider

logger = get_logger("llm.scorer")

JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)

# Confidence assumed when the model names a category without a parseable score.
TEXT_MATCH_CONFIDENCE_PERCENT = 50.0


class ScoringError(Exception):
    pass


def _match_category(raw: object, categories: List[str]) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    normalized = raw.strip().casefold()
    for category in categories:
        if category.casefold() == normalized:
            return category
    return None


def _parse_percent(raw: object) -> float:
    # The prompt asks for 0-100; the number is taken on that scale as written.
    if isinstance(raw, bool):
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return value


def parse_score_response(text: str, categories: List[str]) -> AIScore:
    """Parse the model reply into an AIScore.

    Expects a JSON object `{"category": ..., "confidence": 0-100}`; falls back
    to scanning plain text for a category name.
    """
    if not text or not text.strip():
        raise ScoringError("Empty scorer response")

    match = JSON_OBJECT_PATTERN.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return AIScore(
                category=_match_category(data.get("category"), categories),
                confidence_percent=_parse_percent(data.get("confidence")),
            )

    lowered = text.casefold()
    for category in categories:
        if category.casefold() in lowered:
            return AIScore(category=category, confidence_percent=TEXT_MATCH_CONFIDENCE_PERCENT)
    return AIScore(category=None, confidence_percent=0.0)


class LLMScorer(AIScorer):
    """AI scorer backed by a chat-completion LLM provider."""

    def __init__(self, provider: LLMProvider, model: Optional[str] = None, max_tokens: int = 100):
        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens

    async def score(self, prompt: str, categories: List[str]) -> AIScore:
        response = await self.provider.generate(
            [{"role": "user", "content": prompt}],
            model=self.model,
            temperature=0.0,
            max_tokens=self.max_tokens,
        )
        result = parse_score_response(response.content, categories)
        logger.debug(
            "AI score parsed",
            extra={
                "context": {
                    "category": result.category,
                    "confidence_percent": result.confidence_percent,
                    "model": response.model,
                }
            },
        )
        return result
