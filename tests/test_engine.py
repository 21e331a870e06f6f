"""Tests for the inference engine with stubbed OpenAI / Anthropic clients."""
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.settings import LLMConfig
from core.engine import FALLBACK_REPLY, InferenceEngine
from core.errors import InferenceError
from models.schemas import AnalysisResult, Priority, Sentiment
from tests.fakes import make_email


def openai_client(content: str):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
    ))
    return client


class TestParseAnalysis:
    def test_full_response(self):
        result = InferenceEngine.parse_analysis(json.dumps({
            "category": "complaint",
            "sentiment": "negative",
            "priority": "high",
            "summary": "Customer reports an outage.",
            "keywords": ["outage", "server"],
            "suggestedResponse": "Apologize and give an ETA.",
        }))
        assert result.category == "complaint"
        assert result.sentiment == Sentiment.NEGATIVE
        assert result.priority == Priority.HIGH
        assert result.keywords == ["outage", "server"]
        assert result.suggested_response == "Apologize and give an ETA."

    def test_missing_fields_use_defaults(self):
        assert InferenceEngine.parse_analysis("{}") == AnalysisResult()

    def test_unknown_enum_values_normalise(self):
        result = InferenceEngine.parse_analysis('{"priority": "URGENT!!", "sentiment": "Positive"}')
        assert result.priority == Priority.MEDIUM
        assert result.sentiment == Sentiment.POSITIVE

    def test_code_fence_is_stripped(self):
        result = InferenceEngine.parse_analysis('```json\n{"priority": "low"}\n```')
        assert result.priority == Priority.LOW

    def test_keywords_truncated(self):
        raw = json.dumps({"keywords": ["a", "b", "c", "d", "e", "f", "g"]})
        assert InferenceEngine.parse_analysis(raw).keywords == ["a", "b", "c", "d", "e"]

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]"])
    def test_invalid_output_raises(self, raw):
        with pytest.raises(InferenceError):
            InferenceEngine.parse_analysis(raw)


class TestOpenAI:
    @pytest.mark.asyncio
    async def test_analyze_uses_json_mode(self):
        client = openai_client('{"priority": "high", "category": "request"}')
        engine = InferenceEngine(LLMConfig(model="gpt-4"), client=client)

        result = await engine.analyze(make_email("e1", subject="Need access"))

        assert result.priority == Priority.HIGH
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4"
        assert kwargs["temperature"] == 0.3
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Subject: Need access" in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_generate_reply(self):
        client = openai_client("Hi Alice, we're on it.")
        engine = InferenceEngine(LLMConfig(), client=client)

        reply = await engine.generate(make_email("e1"), AnalysisResult(priority=Priority.HIGH))

        assert reply == "Hi Alice, we're on it."
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.7
        assert "response_format" not in kwargs
        assert "priority (high)" in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_empty_reply_falls_back(self):
        engine = InferenceEngine(LLMConfig(), client=openai_client(""))
        assert await engine.generate(make_email("e1"), AnalysisResult()) == FALLBACK_REPLY

    @pytest.mark.asyncio
    async def test_provider_error_becomes_inference_error(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=RuntimeError("429 rate limit"))
        engine = InferenceEngine(LLMConfig(), client=client)

        with pytest.raises(InferenceError) as exc:
            await engine.analyze(make_email("e1"))
        assert exc.value.retryable is True
        assert exc.value.collaborator == "inference"


class TestAnthropic:
    @pytest.mark.asyncio
    async def test_analyze_with_claude(self):
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=SimpleNamespace(
            content=[SimpleNamespace(text='{"priority": "low"}')],
        ))
        engine = InferenceEngine(
            LLMConfig(provider="anthropic", model="claude-3-haiku-20240307"), client=client,
        )

        result = await engine.analyze(make_email("e1"))

        assert result.priority == Priority.LOW
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-3-haiku-20240307"
        assert kwargs["temperature"] == 0.3
        assert kwargs["system"].startswith("You are an email analysis assistant")
