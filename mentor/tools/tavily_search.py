from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from mentor.config import settings
from mentor.models.analysis import SearchResult
from mentor.tools.web_utils import SOCIAL_MEDIA_DOMAINS


def _to_result(item: dict[str, Any]) -> SearchResult:
    return SearchResult(
        title=item.get("title") or "",
        url=item.get("url") or "",
        content=item.get("content") or "",
        score=float(item.get("score") or 0.0),
    )


async def search(
    query: str,
    *,
    max_results: int = 10,
    search_depth: str = "basic",
    exclude_domains: list[str] | None = None,
) -> list[SearchResult]:
    """Tavily web search with social media excluded unless told otherwise.

    Tavily sometimes returns the same page twice under different scores; only
    the first copy is kept.
    """
    if not settings.tavily_api_key:
        raise RuntimeError("TAVILY_API_KEY is not configured")

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)
    response = await client.search(
        query=query,
        search_depth=search_depth,
        max_results=max_results,
        include_answer=False,
        include_images=False,
        exclude_domains=list(SOCIAL_MEDIA_DOMAINS if exclude_domains is None else exclude_domains),
        timeout=int(settings.search_timeout),
    )

    results: list[SearchResult] = []
    seen: set[str] = set()
    for item in response.get("results") or []:
        result = _to_result(item)
        if result.url in seen:
            continue
        seen.add(result.url)
        results.append(result)
    return results[:max_results]
