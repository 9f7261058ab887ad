import asyncio
import math
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Iterable, Optional, Sequence

from message_hub.config import RoutingConfig
from message_hub.logging_config import get_logger
from message_hub.models.session import Message
from message_hub.services.llm.base import AIScorer

logger = get_logger("classifier")


class ClassificationMethod(str, Enum):
    KEYWORD = "keyword"
    AI = "ai"
    AI_FAILED = "ai-failed"


@dataclass
class ClassificationResult:
    category: Optional[str]
    confidence: float
    method: ClassificationMethod
    extracted_entities: dict[str, Any] = field(default_factory=dict)

    @property
    def classified(self) -> bool:
        return self.category is not None


class ClassificationUnavailableError(Exception):
    """AI scorer could not produce a score (missing, failed or timed out)."""


GREETING_PHRASES = (
    "hello",
    "hi",
    "hey",
    "good morning",
    "good afternoon",
    "good evening",
    "greetings",
    "howdy",
    "hola",
    "bonjour",
    "sawadee",
    "สวัสดี",
    "你好",
    "こんにちは",
)

CLASSIFY_PROMPT = """You route customer messages of a business chat to the right department.

Departments:
{categories}

{context}Message: "{message}"

Answer with JSON only: {{"category": "<one department id from the list, or unknown>", "confidence": <0-100>}}
Be conservative with confidence when the message is a greeting or unclear."""


def normalize_for_matching(text: str) -> str:
    if not text:
        return ""
    normalized = text.strip().casefold()
    normalized = re.sub(r"[^\w\s]", " ", normalized)
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized.strip()


@lru_cache(maxsize=1024)
def _keyword_pattern(keyword: str) -> Optional[re.Pattern]:
    normalized = normalize_for_matching(keyword)
    if not normalized:
        return None
    # Stem match: the keyword must start a word, its tail may continue ("price" -> "prices").
    return re.compile(r"(?<!\w)" + re.escape(normalized))


def match_keywords(
    text: str,
    keyword_sets: dict[str, list[str]],
    categories: Iterable[str],
) -> dict[str, list[str]]:
    """Return matched keywords per category, in the order of `categories`."""
    normalized = normalize_for_matching(text)
    if not normalized:
        return {}
    matched: dict[str, list[str]] = {}
    for category in categories:
        hits = []
        for keyword in keyword_sets.get(category, []):
            pattern = _keyword_pattern(keyword)
            if pattern is not None and pattern.search(normalized):
                hits.append(keyword)
        if hits:
            matched[category] = hits
    return matched


def top_priority_categories(matched: Iterable[str], priority: Sequence[str]) -> list[str]:
    """Matched categories sharing the best priority rank.

    Categories missing from `priority` share the lowest rank.
    """
    ranks = {category: index for index, category in enumerate(priority)}
    lowest = len(priority)
    ranked = [(ranks.get(category, lowest), category) for category in matched]
    if not ranked:
        return []
    best = min(rank for rank, _ in ranked)
    return [category for rank, category in ranked if rank == best]


def is_greeting(text: str) -> bool:
    normalized = (text or "").strip().casefold()
    if not normalized:
        return False
    for phrase in GREETING_PHRASES:
        if not normalized.startswith(phrase):
            continue
        rest = normalized[len(phrase) :]
        # Latin greetings must end at a word boundary ("hi" but not "hilton").
        if not rest or not phrase.isascii() or not rest[0].isalnum():
            return True
    return False


def _score_percent(raw: object) -> float:
    """Clamp a scorer's percentage to [0, 100]; malformed values make the AI stage unavailable."""
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ClassificationUnavailableError(f"AI scorer returned invalid confidence: {raw!r}") from exc
    if not math.isfinite(value):
        raise ClassificationUnavailableError(f"AI scorer returned invalid confidence: {raw!r}")
    return min(max(value, 0.0), 100.0)


def _trim_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max(max_chars - 3, 0)].rstrip() + "..."


def build_classification_prompt(
    text: str,
    categories: Sequence[str],
    context_messages: Sequence[Message],
    labels: dict[str, str],
    max_chars: int,
) -> str:
    category_lines = "\n".join(
        f"- {category}: {labels[category]}" if category in labels else f"- {category}" for category in categories
    )
    context = ""
    if context_messages:
        lines = []
        for message in context_messages:
            item = message.to_context()
            lines.append(f"{item['role']}: {_trim_text(item['content'], max_chars)}")
        context = "Recent conversation:\n" + "\n".join(lines) + "\n\n"
    message = _trim_text(text, max_chars).replace('"', "'")
    return CLASSIFY_PROMPT.format(categories=category_lines, context=context, message=message)


class Classifier:
    """Keyword-first classifier with an AI scorer fallback."""

    def __init__(self, config: RoutingConfig, scorer: Optional[AIScorer] = None):
        self.config = config
        self.scorer = scorer

    def update_config(self, config: RoutingConfig) -> None:
        self.config = config

    def keyword_stage(self, text: str, categories: Sequence[str]) -> tuple[Optional[ClassificationResult], list[str]]:
        """Run the deterministic keyword stage.

        Returns the keyword result (or None) and the candidate categories the
        AI stage should choose from when no unambiguous match was found.
        """
        matched = match_keywords(text, self.config.keyword_sets, categories)
        if not matched:
            return None, list(categories)

        top = top_priority_categories(matched, self.config.category_priority)
        conflict = len(top) > 1 or (self.config.ai_on_keyword_conflict and len(matched) > 1)
        if conflict:
            candidates = top if len(top) > 1 else list(matched)
            logger.info(
                "Keyword conflict, deferring to AI",
                extra={"context": {"matched": matched, "candidates": candidates}},
            )
            return None, candidates

        category = top[0]
        return (
            ClassificationResult(
                category=category,
                confidence=1.0,
                method=ClassificationMethod.KEYWORD,
                extracted_entities={
                    "matched_keywords": matched[category],
                    "matched_categories": list(matched),
                },
            ),
            [category],
        )

    async def classify(
        self,
        text: str,
        available_categories: Optional[Sequence[str]] = None,
        context_messages: Sequence[Message] = (),
    ) -> ClassificationResult:
        """Classify message text into one of the available categories. Never raises."""
        categories = list(available_categories) if available_categories else self.config.categories

        keyword_result, candidates = self.keyword_stage(text, categories)
        if keyword_result is not None:
            logger.info(
                "Keyword match",
                extra={
                    "context": {
                        "category": keyword_result.category,
                        "keywords": keyword_result.extracted_entities["matched_keywords"],
                    }
                },
            )
            return keyword_result

        try:
            return await self._ai_stage(text, candidates, context_messages)
        except ClassificationUnavailableError as exc:
            logger.warning(f"AI classification unavailable: {exc}")
            entities = {"error": str(exc)}
            if candidates != categories:
                entities["matched_categories"] = candidates
            return ClassificationResult(
                category=None,
                confidence=0.0,
                method=ClassificationMethod.AI_FAILED,
                extracted_entities=entities,
            )

    async def _ai_stage(
        self,
        text: str,
        candidates: list[str],
        context_messages: Sequence[Message],
    ) -> ClassificationResult:
        if self.scorer is None:
            raise ClassificationUnavailableError("No AI scorer configured")

        limit = self.config.context_messages_limit
        context = list(context_messages)[-limit:] if limit > 0 else []
        prompt = build_classification_prompt(
            text,
            candidates,
            context,
            self.config.category_labels,
            self.config.ai_prompt_max_chars,
        )
        timeout_seconds = self.config.ai_timeout_seconds

        started = time.monotonic()
        try:
            score = await asyncio.wait_for(self.scorer.score(prompt, candidates), timeout=timeout_seconds)
        except asyncio.TimeoutError as exc:
            self._log_timing(started, timeout=True)
            raise ClassificationUnavailableError(f"AI scorer timed out after {timeout_seconds}s") from exc
        except Exception as exc:
            self._log_timing(started, timeout=False)
            raise ClassificationUnavailableError(f"AI scorer failed: {exc}") from exc
        self._log_timing(started, timeout=False)

        percent = _score_percent(score.confidence_percent)
        category = score.category if score.category in candidates else None
        confidence = percent / 100 if category else 0.0
        return ClassificationResult(
            category=category,
            confidence=confidence,
            method=ClassificationMethod.AI,
            extracted_entities={"candidates": candidates, "raw_category": score.category},
        )

    def _log_timing(self, started: float, *, timeout: bool) -> None:
        logger.info(
            "Timing",
            extra={
                "context": {
                    "stage": "classifier_ai_ms",
                    "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                    "timeout": timeout,
                    "timeout_ms": self.config.ai_timeout_ms,
                }
            },
        )
