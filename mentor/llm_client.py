"""Streaming chat adapters for OpenAI-compatible gateways and Anthropic."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from loguru import logger

from mentor.config import ProviderConfig, settings
from mentor.errors import ConfigurationError, ProviderError
from mentor.models.events import Finish, StreamEvent, TextDelta, ToolCallResult, ToolCallStart
from mentor.services import logger as log_service

OPENAI_COMPATIBLE_TYPES = ("openai", "openrouter", "perplexity", "local")
PROVIDER_TYPES = OPENAI_COMPATIBLE_TYPES + ("anthropic",)

DEFAULT_BASE_URLS = {
    "openrouter": "https://openrouter.ai/api/v1",
    "perplexity": "https://api.perplexity.ai",
    "local": "http://localhost:1234/v1",
}

ToolHandler = Callable[[dict[str, Any]], Awaitable[str]]


@dataclass
class ToolSpec:
    """A function the model may call. `parameters` is a JSON schema object."""

    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler


@dataclass
class ChatOptions:
    tools: list[ToolSpec] = field(default_factory=list)
    max_output_tokens: int = field(default_factory=lambda: settings.max_output_tokens)
    temperature: float | None = field(default_factory=lambda: settings.temperature)
    server_side_search: bool = False


class ChatProvider(Protocol):
    name: str
    model: str

    def stream_chat(self, messages: list[dict[str, Any]], options: ChatOptions) -> AsyncIterator[StreamEvent]: ...


def validate_provider_config(config: ProviderConfig) -> str:
    """Return the normalized provider type or raise ConfigurationError."""
    kind = (config.provider_type or "").strip().lower()
    if kind not in PROVIDER_TYPES:
        raise ConfigurationError(
            f"Unknown provider type {config.provider_type!r} for {config.name!r}. "
            f"Expected one of: {', '.join(PROVIDER_TYPES)}"
        )
    if kind != "local" and not config.api_key.strip():
        raise ConfigurationError(f"Provider {config.name!r} ({kind}) requires an API key")
    if not config.model.strip():
        raise ConfigurationError(f"Provider {config.name!r} has no model configured")
    return kind


def _temperature_for_model(model: str, requested: float | None) -> float | None:
    # Reasoning model families reject any temperature but the default.
    lowered = (model or "").lower()
    if any(marker in lowered for marker in ("gpt-5", "/o1", "/o3", "o1-", "o3-")):
        return None
    return requested


def _parse_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Model sent malformed tool arguments: {}", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


async def _run_tool(tools: dict[str, ToolSpec], name: str, arguments: dict[str, Any]) -> tuple[str, bool]:
    """Execute one tool call. Handler failures are returned to the model, not raised."""
    spec = tools.get(name)
    if spec is None:
        return f"Unknown tool: {name}", True
    try:
        return await spec.handler(arguments), False
    except Exception as e:
        logger.warning("Tool {} failed: {}", name, e)
        return f"Error: {e}", True


# --- OpenAI-compatible (OpenAI, OpenRouter, Perplexity, local servers) ---


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class OpenAICompatibleProvider:
    """Chat-completions client with a local tool loop.

    Streaming mode yields a TextDelta per content chunk. With `streaming`
    disabled each round is a single request and the final reply arrives as the
    text of the Finish event.
    """

    def __init__(self, config: ProviderConfig, client: Any | None = None):
        self.config = config
        self.provider_type = config.provider_type.strip().lower()
        self.name = config.name
        self.model = config.model
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI

            base_url = self.config.base_url.strip() or DEFAULT_BASE_URLS.get(self.provider_type)
            self._client = AsyncOpenAI(
                api_key=self.config.api_key or "not-needed",
                base_url=base_url or None,
                timeout=self.config.timeout,
            )
        return self._client

    def _request_kwargs(
        self, messages: list[dict[str, Any]], options: ChatOptions, allow_tool_calls: bool
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": options.max_output_tokens,
        }
        temperature = _temperature_for_model(self.model, options.temperature)
        if temperature is not None:
            kwargs["temperature"] = temperature
        if options.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in options.tools
            ]
            kwargs["tool_choice"] = "auto" if allow_tool_calls else "none"
        if options.server_side_search:
            if self.provider_type == "openrouter":
                kwargs["extra_body"] = {"plugins": [{"id": "web"}]}
            elif self.provider_type == "openai":
                kwargs["web_search_options"] = {}
        return kwargs

    async def stream_chat(self, messages: list[dict[str, Any]], options: ChatOptions) -> AsyncIterator[StreamEvent]:
        from openai import OpenAIError

        conversation = list(messages)
        tools = {tool.name: tool for tool in options.tools}
        rounds = max(int(settings.max_tool_rounds), 0)
        input_tokens = output_tokens = 0
        citations: list[str] = []

        for round_index in range(rounds + 1):
            kwargs = self._request_kwargs(conversation, options, allow_tool_calls=round_index < rounds)
            t0 = time.monotonic()
            text_parts: list[str] = []
            calls: list[_PendingCall] = []
            finish_reason = "stop"

            try:
                if self.config.streaming:
                    stream = await self.client.chat.completions.create(
                        **kwargs, stream=True, stream_options={"include_usage": True}
                    )
                    pending: dict[int, _PendingCall] = {}
                    async for chunk in stream:
                        usage = getattr(chunk, "usage", None)
                        if usage:
                            input_tokens += getattr(usage, "prompt_tokens", 0) or 0
                            output_tokens += getattr(usage, "completion_tokens", 0) or 0
                        for url in getattr(chunk, "citations", None) or []:
                            if url not in citations:
                                citations.append(url)

                        choices = getattr(chunk, "choices", None) or []
                        if not choices:
                            continue
                        choice = choices[0]
                        if getattr(choice, "finish_reason", None):
                            finish_reason = choice.finish_reason
                        delta = getattr(choice, "delta", None)
                        if not delta:
                            continue
                        if delta.content:
                            text_parts.append(delta.content)
                            yield TextDelta(text=delta.content)
                        for tc in getattr(delta, "tool_calls", None) or []:
                            call = pending.setdefault(tc.index, _PendingCall())
                            if tc.id:
                                call.id = tc.id
                            function = getattr(tc, "function", None)
                            if function is not None:
                                if function.name:
                                    call.name = function.name
                                if function.arguments:
                                    call.arguments += function.arguments
                    calls = [pending[index] for index in sorted(pending)]
                else:
                    response = await self.client.chat.completions.create(**kwargs)
                    usage = getattr(response, "usage", None)
                    if usage:
                        input_tokens += getattr(usage, "prompt_tokens", 0) or 0
                        output_tokens += getattr(usage, "completion_tokens", 0) or 0
                    for url in getattr(response, "citations", None) or []:
                        if url not in citations:
                            citations.append(url)
                    choice = response.choices[0]
                    finish_reason = choice.finish_reason or "stop"
                    if choice.message.content:
                        text_parts.append(choice.message.content)
                    calls = [
                        _PendingCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "")
                        for tc in choice.message.tool_calls or []
                    ]
            except OpenAIError as e:
                log_service.log_llm_call(
                    model=self.model,
                    caller=self.name,
                    duration_ms=int((time.monotonic() - t0) * 1000),
                    status="error",
                    error=str(e),
                )
                raise ProviderError(f"{self.name} request failed: {e}") from e

            log_service.log_llm_call(
                model=self.model,
                caller=self.name,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )

            text = "".join(text_parts)
            if not calls:
                yield Finish(
                    reason=finish_reason,
                    text="" if self.config.streaming else text,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    citations=citations,
                )
                return

            conversation.append(
                {
                    "role": "assistant",
                    "content": text or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments or "{}"},
                        }
                        for call in calls
                    ],
                }
            )
            for call in calls:
                arguments = _parse_arguments(call.arguments)
                yield ToolCallStart(call_id=call.id, name=call.name, arguments=arguments)
                content, is_error = await _run_tool(tools, call.name, arguments)
                yield ToolCallResult(call_id=call.id, name=call.name, content=content, is_error=is_error)
                conversation.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": f"ERROR: {content}" if is_error else content,
                    }
                )

        logger.warning("{} hit the tool round limit ({})", self.name, rounds)
        yield Finish(
            reason="max_tool_rounds",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            citations=citations,
        )


# --- Anthropic ---


def _to_anthropic_messages(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
    """Split OpenAI-style messages into an Anthropic system prompt and turns."""
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []
    for message in messages:
        role = message["role"]
        content = message["content"]
        if role == "system":
            system_parts.append(content if isinstance(content, str) else str(content))
            continue
        if isinstance(content, str):
            converted.append({"role": role, "content": content})
            continue

        blocks: list[dict[str, Any]] = []
        for part in content:
            if part.get("type") == "text":
                blocks.append({"type": "text", "text": part["text"]})
            elif part.get("type") == "image_url":
                url = part["image_url"]["url"]
                header, _, data = url.partition(",")
                media_type = header.removeprefix("data:").split(";")[0] or "image/png"
                blocks.append(
                    {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}}
                )
        converted.append({"role": role, "content": blocks})
    return "\n\n".join(system_parts), converted


class AnthropicProvider:
    """Messages API client with the same local tool loop as the OpenAI adapter."""

    def __init__(self, config: ProviderConfig, client: Any | None = None):
        self.config = config
        self.name = config.name
        self.model = config.model
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            import anthropic

            self._client = anthropic.AsyncAnthropic(
                api_key=self.config.api_key,
                base_url=self.config.base_url.strip() or None,
                timeout=self.config.timeout,
            )
        return self._client

    def _request_kwargs(
        self, system: str, conversation: list[dict[str, Any]], options: ChatOptions, allow_tool_calls: bool
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_output_tokens,
            "system": system,
            "messages": conversation,
        }
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        tools: list[dict[str, Any]] = []
        tools.extend(
            {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
            for tool in options.tools
        )
        if options.server_side_search:
            tools.append({"type": "web_search_20250305", "name": "web_search", "max_uses": 5})
        if tools:
            kwargs["tools"] = tools
            if options.tools and not allow_tool_calls:
                kwargs["tool_choice"] = {"type": "none"}
        return kwargs

    async def stream_chat(self, messages: list[dict[str, Any]], options: ChatOptions) -> AsyncIterator[StreamEvent]:
        import anthropic

        system, conversation = _to_anthropic_messages(messages)
        tools = {tool.name: tool for tool in options.tools}
        rounds = max(int(settings.max_tool_rounds), 0)
        input_tokens = output_tokens = 0
        citations: list[str] = []

        for round_index in range(rounds + 1):
            kwargs = self._request_kwargs(system, conversation, options, allow_tool_calls=round_index < rounds)
            t0 = time.monotonic()
            try:
                if self.config.streaming:
                    async with self.client.messages.stream(**kwargs) as stream:
                        async for text in stream.text_stream:
                            yield TextDelta(text=text)
                        message = await stream.get_final_message()
                else:
                    message = await self.client.messages.create(**kwargs)
            except anthropic.AnthropicError as e:
                log_service.log_llm_call(
                    model=self.model,
                    caller=self.name,
                    duration_ms=int((time.monotonic() - t0) * 1000),
                    status="error",
                    error=str(e),
                )
                raise ProviderError(f"{self.name} request failed: {e}") from e

            usage = getattr(message, "usage", None)
            if usage:
                input_tokens += getattr(usage, "input_tokens", 0) or 0
                output_tokens += getattr(usage, "output_tokens", 0) or 0
            log_service.log_llm_call(
                model=self.model,
                caller=self.name,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )

            text_blocks = [block for block in message.content if block.type == "text"]
            tool_blocks = [block for block in message.content if block.type == "tool_use"]
            for block in text_blocks:
                for citation in getattr(block, "citations", None) or []:
                    url = getattr(citation, "url", None)
                    if url and url not in citations:
                        citations.append(url)

            if not tool_blocks:
                text = "".join(block.text for block in text_blocks)
                yield Finish(
                    reason=message.stop_reason or "stop",
                    text="" if self.config.streaming else text,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    citations=citations,
                )
                return

            assistant_content: list[dict[str, Any]] = [
                {"type": "text", "text": block.text} for block in text_blocks if block.text
            ]
            assistant_content.extend(
                {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
                for block in tool_blocks
            )
            conversation.append({"role": "assistant", "content": assistant_content})

            tool_results = []
            for block in tool_blocks:
                arguments = _parse_arguments(block.input)
                yield ToolCallStart(call_id=block.id, name=block.name, arguments=arguments)
                content, is_error = await _run_tool(tools, block.name, arguments)
                yield ToolCallResult(call_id=block.id, name=block.name, content=content, is_error=is_error)
                result: dict[str, Any] = {"type": "tool_result", "tool_use_id": block.id, "content": content}
                if is_error:
                    result["is_error"] = True
                tool_results.append(result)
            conversation.append({"role": "user", "content": tool_results})

        logger.warning("{} hit the tool round limit ({})", self.name, rounds)
        yield Finish(
            reason="max_tool_rounds",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            citations=citations,
        )


def create_provider(config: ProviderConfig) -> ChatProvider:
    kind = validate_provider_config(config)
    if kind == "anthropic":
        return AnthropicProvider(config)
    return OpenAICompatibleProvider(config)
