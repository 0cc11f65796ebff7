"""
QA engine tests: threshold filtering, grounded vs fallback prompts, and
the streaming event sequence.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from confluence_qa.core.errors import ConfigurationError, ValidationError
from confluence_qa.providers.models import ChatCompletion, ChatMessage, ProviderName
from confluence_qa.pipeline.events import QAEvent, stream_answer_events
from confluence_qa.pipeline.qa import NO_ANSWER_MESSAGE, QAEngine, format_chat_history

from conftest import FakeStore, make_result


def _completion(text: str) -> ChatCompletion:
    return ChatCompletion(text=text, provider=ProviderName.OPENAI, model="gpt-4o-mini")


def _user_prompt(mock: AsyncMock) -> str:
    messages = mock.await_args.args[0]
    return messages[-1].content


async def _tokens(*values):
    for value in values:
        yield value


class TestAnswerQuestion:
    @pytest.mark.asyncio
    async def test_grounded_path_keeps_results_above_threshold(self):
        store = FakeStore([
            make_result("Deploy Guide", 0.9, url="https://wiki/deploy", content="Run make deploy."),
            make_result("Old Notes", 0.5, content="Unrelated."),
        ])
        engine = QAEngine(store=store, threshold=0.75, provider="openai")

        with patch(
            "confluence_qa.providers.registry.chat_completion",
            new=AsyncMock(return_value=_completion(" Use make deploy [1]. ")),
        ) as chat:
            response = await engine.answer_question("How do I deploy?")

        assert response.answer == "Use make deploy [1]."
        assert [r.model_dump() for r in response.references] == [
            {"index": 1, "title": "Deploy Guide", "url": "https://wiki/deploy"}
        ]
        prompt = _user_prompt(chat)
        assert "Reference [1]: Deploy Guide" in prompt
        assert "Source: https://wiki/deploy" in prompt
        assert "Run make deploy." in prompt
        assert "Unrelated." not in prompt
        assert chat.await_args.kwargs["provider"] is ProviderName.OPENAI

    @pytest.mark.asyncio
    async def test_fallback_names_threshold(self):
        store = FakeStore([make_result("A", 0.1), make_result("B", 0.1)])
        engine = QAEngine(store=store, threshold=0.75)

        with patch(
            "confluence_qa.providers.registry.chat_completion",
            new=AsyncMock(return_value=_completion("General answer.")),
        ) as chat:
            response = await engine.answer_question("Anything?")

        assert response.references == []
        prompt = _user_prompt(chat)
        assert "0.75" in prompt
        assert "No relevant context was found" in prompt
        assert "Reference [" not in prompt

    @pytest.mark.asyncio
    async def test_empty_question_is_rejected_before_retrieval(self):
        store = FakeStore([make_result("A", 0.9)])
        engine = QAEngine(store=store)

        with pytest.raises(ValidationError):
            await engine.answer_question("   ")
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_empty_completion_uses_static_answer(self):
        engine = QAEngine(store=FakeStore([make_result("A", 0.9)]), threshold=0.5)
        with patch(
            "confluence_qa.providers.registry.chat_completion",
            new=AsyncMock(return_value=_completion("")),
        ):
            response = await engine.answer_question("Question?")
        assert response.answer == NO_ANSWER_MESSAGE

    @pytest.mark.asyncio
    async def test_references_are_deduplicated_and_match_prompt(self):
        store = FakeStore([
            make_result("Guide", 0.95, url="https://wiki/guide", content="part one"),
            make_result("FAQ", 0.9, url="https://wiki/faq", content="faq text"),
            make_result("Guide", 0.85, url="https://wiki/guide", content="part two"),
        ])
        engine = QAEngine(store=store, threshold=0.75)

        with patch(
            "confluence_qa.providers.registry.chat_completion",
            new=AsyncMock(return_value=_completion("ok")),
        ) as chat:
            response = await engine.answer_question("q")

        assert [(r.index, r.title) for r in response.references] == [(1, "Guide"), (2, "FAQ")]
        prompt = _user_prompt(chat)
        assert "Reference [1]: Guide" in prompt
        assert "Reference [2]: FAQ" in prompt
        assert "Reference [3]" not in prompt
        assert "part one\n\npart two" in prompt

    @pytest.mark.asyncio
    async def test_threshold_is_clamped(self):
        engine = QAEngine(store=FakeStore(), threshold=3.0)
        assert engine.threshold == 1.0

    @pytest.mark.asyncio
    async def test_chat_history_is_included(self):
        engine = QAEngine(store=FakeStore(), threshold=0.75)
        history = [
            ChatMessage(role="user", content="hi"),
            {"role": "assistant", "content": "hello"},
        ]
        with patch(
            "confluence_qa.providers.registry.chat_completion",
            new=AsyncMock(return_value=_completion("ok")),
        ) as chat:
            await engine.answer_question("next?", chat_history=history)

        assert "user: hi\nassistant: hello" in _user_prompt(chat)


class TestFormatChatHistory:
    def test_role_prefixed_lines(self):
        assert format_chat_history([{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}]) == (
            "user: a\nassistant: b"
        )


class TestStreaming:
    @pytest.mark.asyncio
    async def test_create_streaming_completion(self):
        engine = QAEngine(store=FakeStore([make_result("Guide", 0.8)]), threshold=0.75)
        with patch(
            "confluence_qa.providers.registry.chat_completion_stream",
            new=AsyncMock(return_value=_tokens("a", "b")),
        ):
            completion = await engine.create_streaming_completion("q", provider="qwen")

        assert [r.title for r in completion.references] == ["Guide"]
        assert completion.provider is ProviderName.QWEN
        assert [t async for t in completion.stream] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_event_sequence(self):
        engine = QAEngine(store=FakeStore([make_result("Guide", 0.8, url="https://wiki/g")]), threshold=0.75)
        with patch(
            "confluence_qa.providers.registry.chat_completion_stream",
            new=AsyncMock(return_value=_tokens("Hel", "", "lo")),
        ):
            events = [e async for e in stream_answer_events(engine, "q", provider="openai", request_id="r1")]

        assert [e.type for e in events] == ["metadata", "content", "content", "done"]
        metadata = json.loads(events[0].data)
        assert metadata["request_id"] == "r1"
        assert metadata["provider"] == "openai"
        assert metadata["references"] == [{"index": 1, "title": "Guide", "url": "https://wiki/g"}]
        assert [e.data for e in events[1:3]] == ["Hel", "lo"]
        assert events[1].id == "r1-chunk-0"
        assert events[-1].id == "r1-done"

    @pytest.mark.asyncio
    async def test_failure_becomes_error_then_done(self):
        engine = QAEngine(store=FakeStore(), threshold=0.75)
        with patch(
            "confluence_qa.providers.registry.chat_completion_stream",
            new=AsyncMock(side_effect=ConfigurationError("QWEN_API_KEY missing")),
        ):
            events = [e async for e in stream_answer_events(engine, "q", request_id="r2")]

        assert [e.type for e in events] == ["error", "done"]
        assert "QWEN_API_KEY" in events[0].data

    @pytest.mark.asyncio
    async def test_mid_stream_failure(self):
        async def broken():
            yield "partial"
            raise RuntimeError("connection reset")

        engine = QAEngine(store=FakeStore(), threshold=0.75)
        with patch(
            "confluence_qa.providers.registry.chat_completion_stream",
            new=AsyncMock(return_value=broken()),
        ):
            events = [e async for e in stream_answer_events(engine, "q", request_id="r3")]

        assert [e.type for e in events] == ["metadata", "content", "error", "done"]
        assert events[2].data == "connection reset"

    def test_sse_rendering(self):
        event = QAEvent(type="content", data="hi", id="r-chunk-0")
        assert event.to_sse() == 'data: {"type": "content", "data": "hi", "id": "r-chunk-0"}\n\n'
        assert QAEvent(type="done").to_sse() == 'data: {"type": "done", "data": ""}\n\n'
