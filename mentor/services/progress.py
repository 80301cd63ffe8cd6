from __future__ import annotations

from typing import Callable, Protocol, Union, runtime_checkable

from mentor.models.progress import AnalysisProgress, JobStatus


@runtime_checkable
class SupportsReport(Protocol):
    def report(self, progress: AnalysisProgress) -> None: ...


ProgressSink = Union[SupportsReport, Callable[[AnalysisProgress], None]]


def emit(sink: ProgressSink | None, progress: AnalysisProgress) -> None:
    """Hand a snapshot to a sink. The sink never sees a live accumulator."""
    if sink is None:
        return
    snapshot = progress.snapshot()
    if isinstance(sink, SupportsReport):
        sink.report(snapshot)
    else:
        sink(snapshot)


class ProgressReporter:
    """Single-writer owner of one request's progress accumulator."""

    def __init__(self, sink: ProgressSink | None = None, progress: AnalysisProgress | None = None):
        self.sink = sink
        self.progress = progress if progress is not None else AnalysisProgress()

    def update(self, delta: AnalysisProgress | None) -> AnalysisProgress:
        self.progress.merge(delta)
        emit(self.sink, self.progress)
        return self.progress

    def job(self, tag: str, name: str, status: JobStatus, progress: int = 0) -> AnalysisProgress:
        return self.update(AnalysisProgress.single(tag, name, status, progress))

    def as_sink(self) -> Callable[[AnalysisProgress], None]:
        """Sink that merges another producer's snapshots into this accumulator."""
        return self.update


class CollectingSink:
    """Keeps every reported snapshot in order."""

    def __init__(self) -> None:
        self.snapshots: list[AnalysisProgress] = []

    def report(self, progress: AnalysisProgress) -> None:
        self.snapshots.append(progress)

    @property
    def latest(self) -> AnalysisProgress | None:
        return self.snapshots[-1] if self.snapshots else None
