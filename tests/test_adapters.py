"""
Tests for provider adapters: error classification, timeouts, payload
validation and the LangChain-backed adapter.
"""

import asyncio
import json

import httpx
import pytest
from langchain_core.messages import AIMessage

from cognitive_profiler.adapters import (
    LangChainProviderAdapter,
    ProviderAdapter,
    classify_error,
    make_adapter,
)
from cognitive_profiler.adapters.langchain_adapter import message_text, parse_json_payload
from cognitive_profiler.adapters.registry import ADAPTERS, list_available_adapters
from cognitive_profiler.exceptions import MalformedResponseError, ProviderNotConfiguredError
from cognitive_profiler.models.contracts import (
    AnalysisKind,
    Failure,
    FailureKind,
    ProviderId,
    Success,
)

from tests.conftest import FakeAdapter, payload_for


class StubChatModel:
    """Minimal async chat model returning canned content."""

    def __init__(self, content=None, error=None, delay=0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.messages = None

    async def ainvoke(self, messages):
        self.messages = messages
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return AIMessage(content=self.content)


def _http_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.example.test/v1/chat")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class TestClassifyError:
    @pytest.mark.parametrize("exc, expected", [
        (asyncio.TimeoutError(), FailureKind.TIMEOUT),
        (httpx.ReadTimeout("slow"), FailureKind.TIMEOUT),
        (httpx.ConnectError("refused"), FailureKind.UNAVAILABLE),
        (ConnectionResetError(), FailureKind.UNAVAILABLE),
        (ProviderNotConfiguredError("no key"), FailureKind.UNAVAILABLE),
        (MalformedResponseError("bad"), FailureKind.MALFORMED),
        (json.JSONDecodeError("x", "doc", 0), FailureKind.MALFORMED),
        (_http_error(429), FailureKind.QUOTA_EXCEEDED),
        (_http_error(402), FailureKind.QUOTA_EXCEEDED),
        (_http_error(504), FailureKind.TIMEOUT),
        (_http_error(503), FailureKind.UNAVAILABLE),
        (_http_error(401), FailureKind.UNAVAILABLE),
        (_http_error(418), FailureKind.UNKNOWN),
        (RuntimeError("boom"), FailureKind.UNKNOWN),
    ])
    def test_classification(self, exc, expected):
        assert classify_error(exc) == expected


@pytest.mark.asyncio
class TestBaseAdapterInvoke:
    async def test_success_carries_payload_and_elapsed_time(self):
        adapter = FakeAdapter(ProviderId.OPENAI)

        outcome = await adapter.invoke("text", None, AnalysisKind.COGNITIVE, timeout=1.0)

        assert isinstance(outcome, Success)
        assert outcome.payload == payload_for(AnalysisKind.COGNITIVE)
        assert outcome.elapsed_seconds >= 0
        assert adapter.calls == 1

    async def test_timeout_becomes_failure(self):
        adapter = FakeAdapter(ProviderId.OPENAI, delay=1.0)

        outcome = await adapter.invoke("text", None, AnalysisKind.COGNITIVE, timeout=0.05)

        assert isinstance(outcome, Failure)
        assert outcome.kind == FailureKind.TIMEOUT
        assert adapter.cancelled

    async def test_backend_errors_are_classified_not_raised(self):
        adapter = FakeAdapter(ProviderId.DEEPSEEK, behavior=_http_error(429))

        outcome = await adapter.invoke("text", None, AnalysisKind.COGNITIVE, timeout=1.0)

        assert isinstance(outcome, Failure)
        assert outcome.kind == FailureKind.QUOTA_EXCEEDED

    async def test_missing_required_keys_is_malformed(self):
        adapter = FakeAdapter(ProviderId.ANTHROPIC, behavior={"intelligence_score": 90})

        outcome = await adapter.invoke("text", None, AnalysisKind.COGNITIVE, timeout=1.0)

        assert isinstance(outcome, Failure)
        assert outcome.kind == FailureKind.MALFORMED
        assert "characteristics" in outcome.message

    async def test_cancellation_propagates(self):
        adapter = FakeAdapter(ProviderId.OPENAI, delay=5.0)
        task = asyncio.create_task(adapter.invoke("text", None, AnalysisKind.COGNITIVE, timeout=10.0))
        await adapter.started.wait()

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert adapter.cancelled

    async def test_fake_adapter_satisfies_protocol(self):
        assert isinstance(FakeAdapter(ProviderId.OPENAI), ProviderAdapter)


class TestJsonParsing:
    def test_extracts_object_from_fenced_prose(self):
        raw = 'Here you go:\n```json\n{"summary": "ok", "n": 1}\n```'

        assert parse_json_payload(raw) == {"summary": "ok", "n": 1}

    @pytest.mark.parametrize("raw", ["", "   ", "no json here", "{not: valid}", "[1, 2]"])
    def test_unparsable_output_is_malformed(self, raw):
        with pytest.raises(MalformedResponseError):
            parse_json_payload(raw)

    def test_message_text_joins_content_blocks(self):
        content = [{"type": "text", "text": '{"a": '}, {"type": "tool_use"}, {"type": "text", "text": "1}"}]

        assert message_text(content) == '{"a": 1}'


@pytest.mark.asyncio
class TestLangChainAdapter:
    async def test_parses_model_response(self):
        payload = payload_for(AnalysisKind.PSYCHOLOGICAL)
        llm = StubChatModel(content=json.dumps(payload))
        adapter = LangChainProviderAdapter(ProviderId.ANTHROPIC, llm=llm)

        outcome = await adapter.invoke("sample", "a diary entry", AnalysisKind.PSYCHOLOGICAL, timeout=1.0)

        assert isinstance(outcome, Success)
        assert outcome.payload == payload
        system, human = llm.messages
        assert "emotional_profile" in system.content
        assert "a diary entry" in human.content
        assert "sample" in human.content

    async def test_prose_response_is_malformed(self):
        llm = StubChatModel(content="I cannot analyze this text.")
        adapter = LangChainProviderAdapter(ProviderId.OPENAI, llm=llm)

        outcome = await adapter.invoke("sample", None, AnalysisKind.COGNITIVE, timeout=1.0)

        assert isinstance(outcome, Failure)
        assert outcome.kind == FailureKind.MALFORMED

    async def test_slow_model_times_out(self):
        llm = StubChatModel(content="{}", delay=1.0)
        adapter = LangChainProviderAdapter(ProviderId.PERPLEXITY, llm=llm)

        outcome = await adapter.invoke("sample", None, AnalysisKind.COGNITIVE, timeout=0.05)

        assert isinstance(outcome, Failure)
        assert outcome.kind == FailureKind.TIMEOUT


class TestRegistry:
    def test_every_provider_has_a_registered_adapter(self):
        assert set(ADAPTERS) == set(ProviderId)
        assert list_available_adapters()["deepseek"] == "DeepSeekAdapter"

    def test_make_adapter_uses_registered_class(self):
        adapter = make_adapter(ProviderId.DEEPSEEK, llm=StubChatModel(content="{}"))

        assert adapter.provider == ProviderId.DEEPSEEK
        assert type(adapter).__name__ == "DeepSeekAdapter"
