from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from message_hub.services.llm import LLMResponse, LLMScorer, OpenAIProvider
from message_hub.services.llm.openai_provider import OpenAIError
from message_hub.services.llm.scorer import ScoringError, parse_score_response

CATEGORIES = ["technical", "sales", "design"]


class TestParseScoreResponse:
    def test_json_answer(self):
        score = parse_score_response('{"category": "sales", "confidence": 82}', CATEGORIES)
        assert score.category == "sales"
        assert score.confidence_percent == 82.0

    def test_json_wrapped_in_prose(self):
        text = 'Sure! Here it is:\n```json\n{"category": "Technical", "confidence": 64}\n```'
        score = parse_score_response(text, CATEGORIES)
        assert score.category == "technical"
        assert score.confidence_percent == 64.0

    def test_fractional_confidence_is_read_as_percent(self):
        score = parse_score_response('{"category": "design", "confidence": 0.85}', CATEGORIES)
        assert score.confidence_percent == pytest.approx(0.85)

    def test_float_and_integer_one_agree(self):
        as_float = parse_score_response('{"category": "design", "confidence": 1.0}', CATEGORIES)
        as_int = parse_score_response('{"category": "design", "confidence": 1}', CATEGORIES)
        assert as_float.confidence_percent == as_int.confidence_percent == 1.0

    def test_nan_confidence_becomes_zero(self):
        score = parse_score_response('{"category": "design", "confidence": NaN}', CATEGORIES)
        assert score.category == "design"
        assert score.confidence_percent == 0.0

    def test_unknown_category(self):
        score = parse_score_response('{"category": "unknown", "confidence": 30}', CATEGORIES)
        assert score.category is None

    def test_plain_text_fallback(self):
        score = parse_score_response("I think this is SALES related", CATEGORIES)
        assert score.category == "sales"
        assert score.confidence_percent == 50.0

    def test_no_category_in_text(self):
        score = parse_score_response("no idea", CATEGORIES)
        assert score.category is None
        assert score.confidence_percent == 0.0

    def test_empty_response_raises(self):
        with pytest.raises(ScoringError):
            parse_score_response("   ", CATEGORIES)


class TestLLMScorer:
    @pytest.mark.asyncio
    async def test_score_uses_provider(self):
        provider = Mock()
        provider.generate = AsyncMock(
            return_value=LLMResponse(content='{"category": "sales", "confidence": 91}', model="gpt-5-mini")
        )
        scorer = LLMScorer(provider, model="gpt-5-mini")

        score = await scorer.score("prompt text", CATEGORIES)

        assert score.category == "sales"
        assert score.confidence_percent == 91.0
        messages = provider.generate.call_args[0][0]
        assert messages == [{"role": "user", "content": "prompt text"}]
        assert provider.generate.call_args[1]["temperature"] == 0.0


class TestOpenAIProvider:
    @pytest.mark.asyncio
    @patch("message_hub.services.llm.openai_provider.httpx.AsyncClient")
    async def test_generate_posts_chat_completion(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__aenter__.return_value = mock_client
        response = Mock()
        response.status_code = 200
        response.json.return_value = {
            "model": "gpt-5-mini",
            "choices": [{"message": {"content": '{"category": "sales", "confidence": 70}'}}],
            "usage": {"total_tokens": 42},
        }
        mock_client.post = AsyncMock(return_value=response)

        provider = OpenAIProvider(api_key="test-key")
        result = await provider.generate([{"role": "user", "content": "hi"}], max_tokens=50)

        assert result.content == '{"category": "sales", "confidence": 70}'
        assert result.usage == {"total_tokens": 42}
        call = mock_client.post.call_args
        assert call[0][0] == "https://api.openai.com/v1/chat/completions"
        assert call[1]["headers"]["Authorization"] == "Bearer test-key"
        assert call[1]["json"]["max_completion_tokens"] == 50

    @pytest.mark.asyncio
    @patch("message_hub.services.llm.openai_provider.httpx.AsyncClient")
    async def test_generate_raises_on_http_error(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__aenter__.return_value = mock_client
        response = Mock()
        response.status_code = 429
        response.text = "rate limited"
        mock_client.post = AsyncMock(return_value=response)

        with pytest.raises(OpenAIError) as exc_info:
            await OpenAIProvider(api_key="test-key").generate([{"role": "user", "content": "hi"}])
        assert exc_info.value.status_code == 429
