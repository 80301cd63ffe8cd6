from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class EventType(str, Enum):
    TEXT_DELTA = "text_delta"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_RESULT = "tool_call_result"
    FINISH = "finish"


@dataclass
class TextDelta:
    text: str
    event: EventType = field(default=EventType.TEXT_DELTA, init=False)


@dataclass
class ToolCallStart:
    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    event: EventType = field(default=EventType.TOOL_CALL_START, init=False)


@dataclass
class ToolCallResult:
    call_id: str
    name: str
    content: str
    is_error: bool = False
    event: EventType = field(default=EventType.TOOL_CALL_RESULT, init=False)


@dataclass
class Finish:
    """Terminal stream event.

    `text` is empty for streaming providers; a provider answering in one
    non-streamed response puts the whole reply here instead. `citations` holds
    source URLs reported by providers that search on their own.
    """

    reason: str = "stop"
    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    citations: list[str] = field(default_factory=list)
    event: EventType = field(default=EventType.FINISH, init=False)


StreamEvent = Union[TextDelta, ToolCallStart, ToolCallResult, Finish]
