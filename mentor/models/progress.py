from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class JobTag:
    """Stable job tags. One tag names one logical unit of work per request."""

    LLM_ANALYSIS = "analyze-llm"
    WEB_SEARCH = "search-web"
    ARTICLE_PREFIX = "article-"
    TOOL_PREFIX = "tool-"

    @staticmethod
    def article(index: int) -> str:
        return f"{JobTag.ARTICLE_PREFIX}{index}"

    @staticmethod
    def tool_call(call_id: str) -> str:
        return f"{JobTag.TOOL_PREFIX}{call_id}"


@dataclass
class Job:
    tag: str
    name: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0

    def __post_init__(self) -> None:
        self.progress = max(0, min(int(self.progress), 100))

    def to_dict(self) -> dict[str, object]:
        return {
            "tag": self.tag,
            "name": self.name,
            "status": self.status.value,
            "progress": self.progress,
        }


@dataclass
class AnalysisProgress:
    """Ordered jobs of one request plus their mean progress.

    Only `merge` mutates an accumulator. Producers build a small delta and
    merge it; they never edit a Job that is already inside another progress.
    """

    jobs: list[Job] = field(default_factory=list)
    total_percentage: float = 0.0

    def __post_init__(self) -> None:
        self._recompute()

    @classmethod
    def single(
        cls,
        tag: str,
        name: str,
        status: JobStatus,
        progress: int = 0,
    ) -> "AnalysisProgress":
        return cls(jobs=[Job(tag=tag, name=name, status=status, progress=progress)])

    def merge(self, incoming: "AnalysisProgress | None") -> "AnalysisProgress":
        """Replace jobs with matching tags in place, append unseen ones, recompute the mean."""
        if incoming is None or not incoming.jobs:
            return self

        positions = {job.tag: index for index, job in enumerate(self.jobs)}
        for job in incoming.jobs:
            replacement = copy.copy(job)
            index = positions.get(job.tag)
            if index is None:
                positions[job.tag] = len(self.jobs)
                self.jobs.append(replacement)
            else:
                self.jobs[index] = replacement

        self._recompute()
        return self

    def get(self, tag: str) -> Job | None:
        for job in self.jobs:
            if job.tag == tag:
                return job
        return None

    def failed_jobs(self) -> list[Job]:
        return [job for job in self.jobs if job.status == JobStatus.FAILED]

    def snapshot(self) -> "AnalysisProgress":
        return AnalysisProgress(jobs=[copy.copy(job) for job in self.jobs])

    def to_dict(self) -> dict[str, object]:
        return {
            "total_percentage": self.total_percentage,
            "jobs": [job.to_dict() for job in self.jobs],
        }

    def _recompute(self) -> None:
        if not self.jobs:
            self.total_percentage = 0.0
            return
        self.total_percentage = sum(job.progress for job in self.jobs) / len(self.jobs)
