from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from mentor.errors import InvalidRequestError
from mentor.services.image import detect_mime_type


class ResearchMode(str, Enum):
    FULL_ARTICLE = "full_article"
    SUMMARY_ONLY = "summary_only"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class SearchResult:
    title: str
    url: str
    content: str
    score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "url": self.url, "content": self.content, "score": self.score}


@dataclass
class ResearchResult:
    title: str
    url: str
    content: str

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()


# --- Requests ---


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    image_data: bytes
    prompt: str
    domain: str = ""
    mime_type: str = ""
    rule_files: tuple[str, ...] = ()
    provider: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_mime_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("mime_type"):
            data = {**data, "mime_type": detect_mime_type(data.get("image_data") or b"")}
        return data

    def validate_request(self) -> None:
        if not self.image_data:
            raise InvalidRequestError("Image data is required")
        if not self.prompt.strip():
            raise InvalidRequestError("A question/prompt is required")


# --- Responses ---


class RecommendationItem(BaseModel):
    priority: Priority
    action: str = ""
    reasoning: str = ""
    reference_link: str = ""
    context: str = ""

    @property
    def has_reference_link(self) -> bool:
        link = self.reference_link.strip()
        return bool(link) and link.lower().startswith("https")


class Recommendation(BaseModel):
    analysis: str = ""
    summary: str = ""
    recommendations: list[RecommendationItem] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    provider_used: str = ""
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    search_results: list[dict[str, Any]] = Field(default_factory=list)
