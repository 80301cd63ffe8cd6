from __future__ import annotations

from contextlib import aclosing
from typing import Any, AsyncIterator, Callable

from loguru import logger

from mentor.models.events import Finish, StreamEvent, TextDelta, ToolCallResult, ToolCallStart
from mentor.models.progress import JobStatus, JobTag
from mentor.services.cancellation import CancellationToken
from mentor.services.progress import ProgressReporter

StreamSink = Callable[[StreamEvent], Any]


def describe_tool_call(name: str, arguments: dict[str, Any]) -> str:
    for key in ("query", "url"):
        value = str(arguments.get(key) or "").strip()
        if value:
            return f"{name}: {value[:120]}"
    return name


class StreamConsumer:
    """Drain one model stream, turning events into text and progress updates.

    Each event is merged and reported before the next one is read. `answer_text`
    is the text produced after the last tool result, which is where the final
    JSON answer lives when the model thinks out loud before calling tools.
    """

    def __init__(
        self,
        reporter: ProgressReporter,
        token: CancellationToken,
        *,
        label: str = "Analyzing",
        stream_sink: StreamSink | None = None,
    ):
        self.reporter = reporter
        self.token = token
        self.label = label
        self.stream_sink = stream_sink
        self.finish: Finish | None = None
        self.tool_calls = 0
        self._text: list[str] = []
        self._answer: list[str] = []
        self._saw_text = False

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def answer_text(self) -> str:
        return "".join(self._answer)

    def _append_text(self, text: str) -> None:
        if not text:
            return
        self._text.append(text)
        self._answer.append(text)
        if not self._saw_text:
            self._saw_text = True
            self.reporter.job(JobTag.LLM_ANALYSIS, self.label, JobStatus.IN_PROGRESS, 50)

    async def consume(self, stream: AsyncIterator[StreamEvent]) -> str:
        self.reporter.job(JobTag.LLM_ANALYSIS, self.label, JobStatus.IN_PROGRESS, 0)

        async with aclosing(stream) as events:
            async for event in events:
                self.token.raise_if_cancelled()
                if self.stream_sink is not None:
                    self.stream_sink(event)

                if isinstance(event, TextDelta):
                    self._append_text(event.text)
                elif isinstance(event, ToolCallStart):
                    self.tool_calls += 1
                    self._answer = []
                    tag = JobTag.tool_call(event.call_id)
                    name = describe_tool_call(event.name, event.arguments)
                    self.reporter.job(tag, name, JobStatus.PENDING)
                    self.reporter.job(tag, name, JobStatus.IN_PROGRESS)
                elif isinstance(event, ToolCallResult):
                    tag = JobTag.tool_call(event.call_id)
                    current = self.reporter.progress.get(tag)
                    name = current.name if current else event.name
                    self.reporter.job(
                        tag,
                        name,
                        JobStatus.FAILED if event.is_error else JobStatus.COMPLETED,
                        100,
                    )
                elif isinstance(event, Finish):
                    self._append_text(event.text)
                    self.finish = event
                    break

        if self.finish is None:
            logger.warning("Model stream ended without a finish event")
        return self.answer_text
