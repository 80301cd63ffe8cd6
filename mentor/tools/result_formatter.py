from __future__ import annotations

from mentor.models.analysis import ResearchResult, SearchResult


def format_as_summary(results: list[SearchResult], additional_context: str | None = None) -> str:
    """Short digest of search results handed back to the model as a tool result."""
    if not results:
        return "No results found."

    lines: list[str] = []
    if additional_context and additional_context.strip():
        lines.append(additional_context.strip())
        lines.append("")

    lines.append(f"Found {len(results)} result(s):")
    lines.append("")
    for result in results:
        snippet = " ".join(result.content.split())
        if not snippet:
            continue
        lines.append(f"- [{result.title}]({result.url}): {snippet[:300]}")
    return "\n".join(lines).rstrip()


def format_research_block(results: list[ResearchResult]) -> str:
    """Concatenate research results as title, URL and content blocks."""
    blocks = [
        f"{result.title}\n{result.url}\n{result.content}"
        for result in results
        if not result.is_empty
    ]
    return "\n\n".join(blocks)
