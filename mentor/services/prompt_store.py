from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any


PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    """Dotted-key lookup over prompts.json, reloaded when the file changes on disk.

    An entry is either a string or a list of lines; lists are joined with
    newlines before substitution.
    """

    def __init__(self, path: Path = PROMPTS_PATH):
        self.path = path
        self._entries: dict[str, Any] = {}
        self._loaded_mtime: int | None = None

    def _entries_fresh(self) -> dict[str, Any]:
        mtime = self.path.stat().st_mtime_ns
        if mtime != self._loaded_mtime:
            loaded = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(loaded, dict):
                raise ValueError(f"{self.path.name} must hold a JSON object")
            self._entries = loaded
            self._loaded_mtime = mtime
        return self._entries

    def template(self, key: str) -> Template:
        node: Any = self._entries_fresh()
        for segment in key.split("."):
            try:
                node = node[segment]
            except (KeyError, TypeError) as e:
                raise KeyError(f"Unknown prompt: {key}") from e

        if isinstance(node, list):
            node = "\n".join(str(line) for line in node)
        elif not isinstance(node, str):
            raise TypeError(f"Prompt {key} is neither text nor a list of lines")
        return Template(node)

    def render(self, key: str, **values: Any) -> str:
        template = self.template(key)
        try:
            return template.substitute(values)
        except KeyError as e:
            raise KeyError(f"Prompt {key} needs a value for {e.args[0]!r}") from e


_catalog = PromptCatalog()


def render_prompt(key: str, **values: Any) -> str:
    return _catalog.render(key, **values)
