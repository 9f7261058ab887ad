from message_hub.services.llm.base import AIScore, AIScorer, LLMProvider, LLMResponse
from message_hub.services.llm.openai_provider import OpenAIProvider
from message_hub.services.llm.scorer import LLMScorer

__all__ = ["AIScore", "AIScorer", "LLMProvider", "LLMResponse", "LLMScorer", "OpenAIProvider"]
