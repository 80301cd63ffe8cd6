from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator


def _fold(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


class DomainRule(BaseModel):
    """One piece of static domain guidance, optionally with nested sub-rules.

    Rule files are written by hand and by other tools, so property names are
    matched case-insensitively (`RuleText`, `ruleText`, `rule_text`).
    """

    rule_id: str = ""
    category: str = ""
    rule_text: str = ""
    confidence: float = 0.0
    children: list["DomainRule"] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _match_keys_case_insensitively(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        by_folded = {_fold(name): name for name in cls.model_fields}
        normalized: dict[str, Any] = {}
        for key, value in data.items():
            target = by_folded.get(_fold(str(key)))
            if target is not None:
                normalized[target] = value
        if normalized.get("children") is None:
            normalized.pop("children", None)
        return normalized
