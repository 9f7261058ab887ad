from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


@dataclass
class AIScore:
    category: Optional[str]
    confidence_percent: float


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 200,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        """Generate response from LLM."""
        pass


class AIScorer(ABC):
    """Scores a classification prompt against the offered categories."""

    @abstractmethod
    async def score(self, prompt: str, categories: List[str]) -> AIScore:
        pass
