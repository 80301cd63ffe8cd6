from __future__ import annotations

import httpx
from loguru import logger

from mentor.config import settings
from mentor.tools.web_utils import is_valid_url

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


async def fetch(url: str, *, timeout: float | None = None) -> str:
    """Fetch a page and return its raw markup. Raises on transport or HTTP errors."""
    if not is_valid_url(url):
        raise ValueError(f"Not a valid http(s) URL: {url!r}")

    logger.info("Fetching article content from {}", url)
    async with httpx.AsyncClient(
        timeout=timeout if timeout is not None else settings.article_timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"},
    ) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.text

