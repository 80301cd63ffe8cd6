from __future__ import annotations

import json
from itertools import groupby
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from mentor.config import settings
from mentor.errors import ConfigurationError, RuleFileNotFoundError
from mentor.models.rules import DomainRule
from mentor.services.prompt_store import render_prompt


class DomainRuleRepository:
    """Static domain guidance stored as JSON files under `<rules_dir>/<domain>/`.

    A rule file is a JSON array of rules. Files may sit in any subfolder of the
    domain directory and are addressed by bare name (no extension).
    """

    def __init__(self, rules_dir: str | Path | None = None):
        self.rules_dir = Path(rules_dir if rules_dir is not None else settings.rules_dir)

    def domain_dir(self, domain: str) -> Path:
        return self.rules_dir / domain.strip()

    def _find_rule_file(self, domain: str, rule_file: str) -> Path:
        directory = self.domain_dir(domain)
        pattern = f"{rule_file}.json"
        matches = sorted(directory.rglob(pattern)) if directory.is_dir() else []
        if not matches:
            logger.error("Rules file not found: {} in {}", pattern, directory)
            raise RuleFileNotFoundError(
                f"Could not find rules file {pattern} under {directory}"
            )
        if len(matches) > 1:
            logger.warning(
                "Multiple files found for {}: {}. Using first match.",
                pattern,
                ", ".join(str(path) for path in matches),
            )
        return matches[0]

    def load_rules(self, domain: str, rule_files: list[str] | tuple[str, ...] | None) -> list[DomainRule]:
        if not rule_files:
            return []

        logger.info("Loading domain rules from {} file(s): {}", len(rule_files), ", ".join(rule_files))
        rules: list[DomainRule] = []
        for rule_file in rule_files:
            path = self._find_rule_file(domain, rule_file)
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(payload, list):
                    raise ValueError("expected a JSON array of rules")
                loaded = [DomainRule.model_validate(item) for item in payload]
            except (ValueError, ValidationError) as e:
                raise ConfigurationError(f"Invalid rules file {path}: {e}") from e
            logger.info("Loaded {} rules from {}", len(loaded), path)
            rules.extend(loaded)

        logger.info("Total rules loaded: {}", len(rules))
        return rules

    def get_formatted_rules(self, domain: str, rule_files: list[str] | tuple[str, ...] | None) -> str:
        return format_rules(domain, self.load_rules(domain, rule_files))

    def save_rules(self, domain: str, rule_type: str, name: str, rules: list[DomainRule]) -> Path:
        """Write rules to `<rules_dir>/<domain>/<rule_type>/<name>.json`."""
        for label, value in (("domain", domain), ("rule type", rule_type), ("name", name)):
            if not value or not value.strip():
                raise ValueError(f"{label} cannot be empty")
        if not rules:
            raise ValueError("rules cannot be empty")

        directory = self.domain_dir(domain) / rule_type
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{name}.json"
        payload = [rule.model_dump() for rule in rules]
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Saved {} rules to {}", len(rules), path)
        return path


def _format_rule(rule: DomainRule, depth: int, lines: list[str]) -> None:
    lines.append(f"{'  ' * depth}- {rule.rule_text}")
    for child in rule.children:
        _format_rule(child, depth + 1, lines)


def format_rules(domain: str, rules: list[DomainRule]) -> str:
    """Render rules grouped by category, categories sorted, children indented."""
    if not rules:
        return ""

    lines = ["", render_prompt("analysis.rules_header", domain=domain), ""]
    ordered = sorted(rules, key=lambda rule: rule.category)
    for category, group in groupby(ordered, key=lambda rule: rule.category):
        lines.append(f"## {category}")
        for rule in group:
            _format_rule(rule, 0, lines)
        lines.append("")
    return "\n".join(lines) + "\n"
