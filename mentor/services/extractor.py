from __future__ import annotations

import json
import re
from typing import Any

from loguru import logger
from pydantic import ValidationError

from mentor.errors import ExtractionError
from mentor.models.analysis import Priority, Recommendation, RecommendationItem

_FINDINGS_RE = re.compile(r"<findings>(.*?)</findings>", re.IGNORECASE | re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\r?\n?(.*?)```", re.IGNORECASE | re.DOTALL)

_PRIORITIES = {priority.value for priority in Priority}


def _fold(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


def unwrap_json(raw_text: str) -> str:
    """Strip `<findings>` tags or a fenced code block around the JSON payload."""
    match = _FINDINGS_RE.search(raw_text)
    if match and match.group(1).strip():
        logger.debug("Extracted JSON from <findings> tags")
        return match.group(1).strip()
    match = _FENCE_RE.search(raw_text)
    if match and match.group(1).strip():
        logger.debug("Extracted JSON from fenced block")
        return match.group(1).strip()
    return raw_text.strip()


def _normalize_keys(payload: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    by_folded = {_fold(name): name for name in fields}
    normalized: dict[str, Any] = {}
    for key, value in payload.items():
        target = by_folded.get(_fold(str(key)))
        if target is None or value is None:
            continue
        normalized[target] = value
    return normalized


class ResponseExtractor:
    """Turn the model's final text into a validated Recommendation.

    Only the analytical fields come from the model. provider_used, generated_at
    and search_results are filled in by the caller.
    """

    top_level_fields = ("analysis", "summary", "recommendations", "confidence")

    def extract(self, raw_text: str) -> Recommendation:
        if not raw_text or not raw_text.strip():
            raise ExtractionError("Model returned an empty response", raw_text or "")

        candidate = unwrap_json(raw_text)
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Response is not valid JSON: {e}", raw_text) from e

        if not isinstance(payload, dict):
            raise ExtractionError(
                f"Expected a JSON object, got {type(payload).__name__}", raw_text
            )

        data = _normalize_keys(payload, {name: None for name in self.top_level_fields})
        items = data.get("recommendations", [])
        if not isinstance(items, list):
            raise ExtractionError("recommendations must be a list", raw_text)
        data["recommendations"] = [self._item(item, index, raw_text) for index, item in enumerate(items)]

        try:
            recommendation = Recommendation.model_validate(data)
        except ValidationError as e:
            raise ExtractionError(f"Response does not match the recommendation schema: {e}", raw_text) from e

        logger.info(
            "Extracted recommendation: {} items, confidence {:.2f}",
            len(recommendation.recommendations),
            recommendation.confidence,
        )
        return recommendation

    def _item(self, item: Any, index: int, raw_text: str) -> RecommendationItem:
        if not isinstance(item, dict):
            raise ExtractionError(f"Recommendation {index + 1} is not an object", raw_text)

        data = _normalize_keys(item, RecommendationItem.model_fields)
        priority = data.get("priority")
        if not isinstance(priority, str) or priority.strip().lower() not in _PRIORITIES:
            raise ExtractionError(
                f"Recommendation {index + 1} has invalid priority {priority!r}", raw_text
            )
        data["priority"] = priority.strip().lower()

        try:
            return RecommendationItem.model_validate(data)
        except ValidationError as e:
            raise ExtractionError(f"Recommendation {index + 1} is malformed: {e}", raw_text) from e
