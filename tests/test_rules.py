from __future__ import annotations

import json

import pytest

from mentor.errors import ConfigurationError, RuleFileNotFoundError
from mentor.models.rules import DomainRule
from mentor.services.rules import DomainRuleRepository, format_rules


def _write(path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_load_rules_finds_file_in_subfolder(tmp_path):
    _write(
        tmp_path / "Warframe" / "weapons" / "melee.json",
        [{"RuleId": "m1", "Category": "Melee", "RuleText": "Use heavy attacks", "Confidence": 0.9}],
    )
    repo = DomainRuleRepository(tmp_path)

    rules = repo.load_rules("Warframe", ["melee"])

    assert len(rules) == 1
    assert rules[0].rule_id == "m1"
    assert rules[0].rule_text == "Use heavy attacks"
    assert rules[0].confidence == 0.9


def test_load_rules_without_files_returns_empty(tmp_path):
    assert DomainRuleRepository(tmp_path).load_rules("Warframe", []) == []


def test_missing_rule_file_raises(tmp_path):
    (tmp_path / "Warframe").mkdir()

    with pytest.raises(RuleFileNotFoundError):
        DomainRuleRepository(tmp_path).load_rules("Warframe", ["nope"])


def test_invalid_rule_file_raises_configuration_error(tmp_path):
    (tmp_path / "Warframe").mkdir()
    (tmp_path / "Warframe" / "broken.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        DomainRuleRepository(tmp_path).load_rules("Warframe", ["broken"])


def test_format_rules_groups_sorts_and_indents():
    rules = [
        DomainRule(category="Mods", rule_text="Max Serration first"),
        DomainRule(
            category="Abilities",
            rule_text="Energy matters",
            children=[DomainRule(rule_text="Use Zenurik", children=[DomainRule(rule_text="Take Energy Overflow")])],
        ),
        DomainRule(category="Mods", rule_text="Add elemental mods"),
    ]

    text = format_rules("Warframe", rules)

    assert "=== GAME KNOWLEDGE RULES ===" in text
    assert "specific guidance for Warframe" in text
    assert text.index("## Abilities") < text.index("## Mods")
    assert "- Energy matters\n  - Use Zenurik\n    - Take Energy Overflow\n" in text
    assert text.index("Max Serration first") < text.index("Add elemental mods")


def test_format_rules_empty_is_blank():
    assert format_rules("Warframe", []) == ""


def test_save_rules_round_trips_through_loader(tmp_path):
    repo = DomainRuleRepository(tmp_path)
    path = repo.save_rules("Warframe", "frames", "rhino", [DomainRule(category="Frames", rule_text="Iron Skin")])

    assert path == tmp_path / "Warframe" / "frames" / "rhino.json"
    assert repo.load_rules("Warframe", ["rhino"])[0].rule_text == "Iron Skin"


def test_save_rules_rejects_empty_name(tmp_path):
    with pytest.raises(ValueError):
        DomainRuleRepository(tmp_path).save_rules("Warframe", "frames", " ", [DomainRule(rule_text="x")])
