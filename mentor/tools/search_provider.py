from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from loguru import logger

from mentor.config import settings
from mentor.errors import ConfigurationError, SearchError
from mentor.models.analysis import SearchResult
from mentor.tools import brave_search, tavily_search
from mentor.tools.web_utils import is_social_media, is_valid_url

SEARCH_PROVIDERS = ("brave", "tavily")


@dataclass
class SearchResponse:
    results: list[SearchResult]
    provider: str


class RateLimiter:
    """Spaces calls at least `min_interval` seconds apart.

    Slots are reserved without awaiting, so concurrent callers on one event
    loop queue up in call order.
    """

    def __init__(self, min_interval: float):
        self.min_interval = max(float(min_interval), 0.0)
        self._next_slot = 0.0

    async def acquire(self) -> None:
        now = time.monotonic()
        slot = max(now, self._next_slot)
        self._next_slot = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            logger.debug("Search rate limit: waiting {:.2f}s", delay)
            await asyncio.sleep(delay)


# One limiter per provider and API key, shared by every caller in the process.
_limiters: dict[str, RateLimiter] = {}


def _provider_name() -> str:
    provider = settings.search_provider.lower().strip()
    if provider not in SEARCH_PROVIDERS:
        raise ConfigurationError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")
    return provider


def _api_key(provider: str) -> str:
    return settings.brave_api_key if provider == "brave" else settings.tavily_api_key


def validate_search_config() -> str:
    """Check the configured search provider and its key without touching the network."""
    provider = _provider_name()
    if not str(_api_key(provider) or "").strip():
        raise ConfigurationError(f"{provider.upper()}_API_KEY is not configured")
    return provider


def limiter_for(provider: str) -> RateLimiter:
    key = f"{provider}:{_api_key(provider)}"
    limiter = _limiters.get(key)
    if limiter is None:
        limiter = _limiters[key] = RateLimiter(settings.search_min_interval)
    return limiter


async def search(query: str, *, max_results: int = 10) -> SearchResponse:
    """Run one web search through the configured provider.

    Transport and auth failures are raised as SearchError; there is no
    fallback to a second provider.
    """
    provider = _provider_name()
    await limiter_for(provider).acquire()

    logger.info("Searching via {} for: {}", provider, query)
    try:
        if provider == "brave":
            raw = await brave_search.search(query, max_results=max_results)
        else:
            raw = await tavily_search.search(query, max_results=max_results)
    except Exception as e:
        logger.error("Search via {} failed: {}", provider, e)
        raise SearchError(f"{provider} search failed: {e}") from e

    results = [r for r in raw if is_valid_url(r.url) and not is_social_media(r.url)]
    logger.info("Search via {} returned {} usable results", provider, len(results))
    return SearchResponse(results=results[:max_results], provider=provider)
