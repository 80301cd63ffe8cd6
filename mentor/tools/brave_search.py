"""Brave Web Search client.

Brave caps a query at 50 words and 400 characters, so queries are squeezed to
fit rather than sent and rejected. Results carry no relevance score; rank
order is turned into one.
"""
from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from mentor.config import settings
from mentor.models.analysis import SearchResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
MAX_QUERY_CHARS = 400
MAX_QUERY_WORDS = 50


def _validate_query(query: str) -> str:
    words = query.split()
    if not words:
        raise ValueError("Query cannot be empty")

    words = words[:MAX_QUERY_WORDS]
    while len(words) > 1 and len(" ".join(words)) > MAX_QUERY_CHARS:
        words.pop()
    return " ".join(words)[:MAX_QUERY_CHARS]


def _to_result(item: dict[str, Any], rank: int, total: int) -> SearchResult:
    parts = [item.get("description") or "", *(item.get("extra_snippets") or [])]
    return SearchResult(
        title=item.get("title") or "",
        url=item.get("url") or "",
        content=" ".join(part.strip() for part in parts if part and part.strip()),
        score=round(1.0 - rank / total, 4),
    )


async def search(query: str, *, max_results: int = 10) -> list[SearchResult]:
    api_key = settings.brave_api_key
    if not api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    q = _validate_query(query)
    if q != " ".join(query.split()):
        logger.debug("Brave query shortened to {} chars", len(q))

    async with httpx.AsyncClient(
        timeout=settings.search_timeout,
        headers={"Accept": "application/json", "X-Subscription-Token": api_key},
    ) as client:
        response = await client.get(BRAVE_SEARCH_URL, params={"q": q, "count": max_results})
    response.raise_for_status()

    items = (response.json().get("web") or {}).get("results") or []
    items = items[:max_results]
    return [_to_result(item, rank, len(items)) for rank, item in enumerate(items)]
