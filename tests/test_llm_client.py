"""Tests for the streaming provider adapters."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import openai
import pytest

from mentor.config import ProviderConfig
from mentor.errors import ConfigurationError, ProviderError
from mentor.llm_client import (
    AnthropicProvider,
    ChatOptions,
    OpenAICompatibleProvider,
    ToolSpec,
    _temperature_for_model,
    _to_anthropic_messages,
    create_provider,
    validate_provider_config,
)
from mentor.models.events import Finish, TextDelta, ToolCallResult, ToolCallStart


class FakeStream:
    def __init__(self, chunks):
        self._chunks = chunks

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk


def _chunk(content=None, tool_calls=None, finish_reason=None, usage=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        usage=usage,
        choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)],
    )


def _tool_delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _config(**overrides) -> ProviderConfig:
    values = {"name": "gpt", "provider_type": "openai", "api_key": "sk-test", "model": "gpt-4o"}
    values.update(overrides)
    return ProviderConfig(**values)


def _search_tool(handler) -> ToolSpec:
    return ToolSpec(
        name="search_the_web",
        description="search",
        parameters={"type": "object", "properties": {"query": {"type": "string"}}},
        handler=handler,
    )


async def _collect(stream):
    return [event async for event in stream]


class TestProviderConfig:
    def test_validate_normalizes_type(self):
        assert validate_provider_config(_config(provider_type=" OpenRouter ")) == "openrouter"

    @pytest.mark.parametrize(
        "overrides",
        [{"provider_type": "cohere"}, {"api_key": ""}, {"model": " "}],
    )
    def test_validate_rejects_bad_config(self, overrides):
        with pytest.raises(ConfigurationError):
            validate_provider_config(_config(**overrides))

    def test_create_provider_picks_adapter(self):
        assert isinstance(create_provider(_config(provider_type="anthropic")), AnthropicProvider)
        assert isinstance(create_provider(_config(provider_type="perplexity")), OpenAICompatibleProvider)

    def test_temperature_dropped_for_reasoning_models(self):
        assert _temperature_for_model("openai/gpt-5-mini", 0.7) is None
        assert _temperature_for_model("gpt-4o", 0.7) == 0.7


class TestOpenAICompatibleProvider:
    @pytest.mark.asyncio
    async def test_streams_text_and_finishes(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            return_value=FakeStream(
                [
                    _chunk(content="Hel"),
                    _chunk(content="lo", finish_reason="stop"),
                    SimpleNamespace(usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3), choices=[]),
                ]
            )
        )
        provider = OpenAICompatibleProvider(_config(), client=client)

        events = await _collect(provider.stream_chat([{"role": "user", "content": "hi"}], ChatOptions()))

        assert [e.text for e in events if isinstance(e, TextDelta)] == ["Hel", "lo"]
        finish = events[-1]
        assert isinstance(finish, Finish)
        assert finish.text == ""
        assert (finish.input_tokens, finish.output_tokens) == (12, 3)
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["stream"] is True
        assert "tools" not in kwargs

    @pytest.mark.asyncio
    async def test_accumulates_tool_call_deltas_and_runs_handler(self):
        handler = AsyncMock(return_value="digest of results")
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            side_effect=[
                FakeStream(
                    [
                        _chunk(tool_calls=[_tool_delta(0, "call_1", "search_the_web", '{"que')]),
                        _chunk(tool_calls=[_tool_delta(0, arguments='ry": "mods"}')], finish_reason="tool_calls"),
                    ]
                ),
                FakeStream([_chunk(content="{}", finish_reason="stop")]),
            ]
        )
        provider = OpenAICompatibleProvider(_config(), client=client)

        events = await _collect(
            provider.stream_chat(
                [{"role": "user", "content": "hi"}], ChatOptions(tools=[_search_tool(handler)])
            )
        )

        handler.assert_awaited_once_with({"query": "mods"})
        start, result = events[0], events[1]
        assert isinstance(start, ToolCallStart) and start.call_id == "call_1"
        assert isinstance(result, ToolCallResult) and result.content == "digest of results"
        assert not result.is_error
        second_messages = client.chat.completions.create.await_args_list[1].kwargs["messages"]
        assert second_messages[1]["tool_calls"][0]["function"]["arguments"] == '{"query": "mods"}'
        assert second_messages[2] == {"role": "tool", "tool_call_id": "call_1", "content": "digest of results"}

    @pytest.mark.asyncio
    async def test_handler_failure_becomes_error_result(self):
        handler = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            side_effect=[
                FakeStream([_chunk(tool_calls=[_tool_delta(0, "call_1", "search_the_web", "{}")])]),
                FakeStream([_chunk(content="done")]),
            ]
        )
        provider = OpenAICompatibleProvider(_config(), client=client)

        events = await _collect(
            provider.stream_chat([{"role": "user", "content": "hi"}], ChatOptions(tools=[_search_tool(handler)]))
        )

        result = next(e for e in events if isinstance(e, ToolCallResult))
        assert result.is_error
        assert "quota exceeded" in result.content
        second_messages = client.chat.completions.create.await_args_list[1].kwargs["messages"]
        assert second_messages[-1]["content"].startswith("ERROR:")

    @pytest.mark.asyncio
    async def test_non_streaming_mode_wraps_reply_in_finish(self):
        message = SimpleNamespace(content='{"Confidence": 0.5}', tool_calls=None)
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=message, finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=5, completion_tokens=7),
            citations=["https://source.example"],
        )
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response)
        provider = OpenAICompatibleProvider(
            _config(provider_type="perplexity", streaming=False, server_side_search=True), client=client
        )

        events = await _collect(provider.stream_chat([{"role": "user", "content": "hi"}], ChatOptions()))

        assert len(events) == 1
        assert events[0].text == '{"Confidence": 0.5}'
        assert events[0].citations == ["https://source.example"]

    @pytest.mark.asyncio
    async def test_openrouter_server_search_enables_web_plugin(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=FakeStream([_chunk(content="ok")]))
        provider = OpenAICompatibleProvider(_config(provider_type="openrouter"), client=client)

        await _collect(provider.stream_chat([], ChatOptions(server_side_search=True)))

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["extra_body"] == {"plugins": [{"id": "web"}]}

    @pytest.mark.asyncio
    async def test_sdk_errors_become_provider_errors(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=openai.OpenAIError("invalid api key"))
        provider = OpenAICompatibleProvider(_config(), client=client)

        with pytest.raises(ProviderError):
            await _collect(provider.stream_chat([], ChatOptions()))


class TestAnthropicProvider:
    def test_messages_are_split_and_images_converted(self):
        system, messages = _to_anthropic_messages(
            [
                {"role": "system", "content": "be helpful"},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "what now"},
                        {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,QUJD"}},
                    ],
                },
            ]
        )

        assert system == "be helpful"
        assert messages[0]["content"][1] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/jpeg", "data": "QUJD"},
        }

    @pytest.mark.asyncio
    async def test_non_streaming_tool_loop(self):
        tool_message = SimpleNamespace(
            content=[
                SimpleNamespace(type="tool_use", id="toolu_1", name="search_the_web", input={"query": "mods"})
            ],
            stop_reason="tool_use",
            usage=SimpleNamespace(input_tokens=10, output_tokens=2),
        )
        final_message = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="{}", citations=None)],
            stop_reason="end_turn",
            usage=SimpleNamespace(input_tokens=20, output_tokens=4),
        )
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=[tool_message, final_message])
        handler = AsyncMock(return_value="digest")
        provider = AnthropicProvider(_config(provider_type="anthropic", streaming=False), client=client)

        events = await _collect(
            provider.stream_chat(
                [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
                ChatOptions(tools=[_search_tool(handler)]),
            )
        )

        assert [type(e) for e in events] == [ToolCallStart, ToolCallResult, Finish]
        assert events[-1].text == "{}"
        assert events[-1].input_tokens == 30
        second_call = client.messages.create.await_args_list[1].kwargs
        assert second_call["system"] == "sys"
        assert second_call["messages"][-1]["content"][0] == {
            "type": "tool_result",
            "tool_use_id": "toolu_1",
            "content": "digest",
        }


class FakeAnthropicStream:
    """Async context manager shaped like `messages.stream(...)`."""

    def __init__(self, texts, message):
        self._texts = texts
        self._message = message

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def text_stream(self):
        return self._iterate()

    async def _iterate(self):
        for text in self._texts:
            yield text

    async def get_final_message(self):
        return self._message


class TestAnthropicStreaming:
    @pytest.mark.asyncio
    async def test_streamed_tool_round_then_answer_with_citations(self):
        tool_message = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Checking the wiki. ", citations=None),
                SimpleNamespace(type="tool_use", id="toolu_1", name="search_the_web", input={"query": "arcanes"}),
            ],
            stop_reason="tool_use",
            usage=SimpleNamespace(input_tokens=10, output_tokens=5),
        )
        cited = [
            SimpleNamespace(url="https://wiki.example/arcanes"),
            SimpleNamespace(url="https://wiki.example/arcanes"),
            SimpleNamespace(url="https://forum.example/energize"),
        ]
        final_message = SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"Confidence": 0.9}', citations=cited)],
            stop_reason="end_turn",
            usage=SimpleNamespace(input_tokens=30, output_tokens=8),
        )
        client = MagicMock()
        client.messages.stream = MagicMock(
            side_effect=[
                FakeAnthropicStream(["Checking the wiki. "], tool_message),
                FakeAnthropicStream(['{"Confidence"', ": 0.9}"], final_message),
            ]
        )
        handler = AsyncMock(return_value="digest")
        provider = AnthropicProvider(_config(provider_type="anthropic", model="claude-sonnet-4-5"), client=client)

        events = await _collect(
            provider.stream_chat(
                [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
                ChatOptions(tools=[_search_tool(handler)]),
            )
        )

        assert [type(e) for e in events] == [TextDelta, ToolCallStart, ToolCallResult, TextDelta, TextDelta, Finish]
        assert "".join(e.text for e in events[3:5]) == '{"Confidence": 0.9}'
        handler.assert_awaited_once_with({"query": "arcanes"})
        finish = events[-1]
        assert finish.text == ""
        assert finish.citations == ["https://wiki.example/arcanes", "https://forum.example/energize"]
        assert (finish.input_tokens, finish.output_tokens) == (40, 13)
        second_call = client.messages.stream.call_args_list[1].kwargs
        assistant_turn = second_call["messages"][-2]
        assert assistant_turn["content"][0] == {"type": "text", "text": "Checking the wiki. "}
        assert assistant_turn["content"][1]["type"] == "tool_use"
        assert second_call["messages"][-1]["content"][0]["tool_use_id"] == "toolu_1"

    @pytest.mark.asyncio
    async def test_server_side_search_adds_web_search_tool(self):
        message = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="{}", citations=None)],
            stop_reason="end_turn",
            usage=None,
        )
        client = MagicMock()
        client.messages.stream = MagicMock(return_value=FakeAnthropicStream(["{}"], message))
        provider = AnthropicProvider(_config(provider_type="anthropic"), client=client)

        events = await _collect(provider.stream_chat([], ChatOptions(server_side_search=True)))

        assert isinstance(events[-1], Finish) and events[-1].citations == []
        tools = client.messages.stream.call_args.kwargs["tools"]
        assert tools == [{"type": "web_search_20250305", "name": "web_search", "max_uses": 5}]
        assert "tool_choice" not in client.messages.stream.call_args.kwargs
