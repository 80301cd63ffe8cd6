from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from mentor.config import settings
from mentor.errors import MentorError, SearchError
from mentor.models.analysis import AnalysisRequest, ResearchMode, ResearchResult, SearchResult
from mentor.models.progress import JobStatus, JobTag
from mentor.services.cancellation import CancellationToken, ensure_token
from mentor.services.progress import ProgressReporter, ProgressSink
from mentor.services.prompt_store import render_prompt
from mentor.tools import article_reader, content_extractor, search_provider
from mentor.tools.result_formatter import format_as_summary

SearchFn = Callable[..., Awaitable[search_provider.SearchResponse]]
FetchFn = Callable[..., Awaitable[str]]
NormalizeFn = Callable[[str], str]


def build_search_query(request: AnalysisRequest) -> str:
    return render_prompt(
        "research.search_query",
        domain=request.domain.strip(),
        question=" ".join(request.prompt.split()),
    )


class ResearchPipeline:
    """Search once, then turn each hit into a ResearchResult.

    Articles are processed one after another. Every article is its own unit of
    failure: a fetch or conversion error marks that article's job failed and the
    loop moves on. Only the search call itself is fatal.
    """

    def __init__(
        self,
        *,
        search: SearchFn | None = None,
        fetch: FetchFn | None = None,
        normalize: NormalizeFn | None = None,
        max_results: int | None = None,
        article_timeout: float | None = None,
    ):
        self._search = search or search_provider.search
        self._fetch = fetch or article_reader.fetch
        self._normalize = normalize or content_extractor.normalize
        self.max_results = max(int(max_results or settings.research_max_results), 1)
        self.article_timeout = float(article_timeout or settings.article_timeout)

    async def perform_research(
        self,
        request: AnalysisRequest,
        mode: ResearchMode = ResearchMode.SUMMARY_ONLY,
        progress_sink: ProgressSink | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[ResearchResult]:
        token = ensure_token(cancel_token)
        reporter = ProgressReporter(progress_sink)
        token.raise_if_cancelled()

        reporter.job(JobTag.WEB_SEARCH, "Searching web", JobStatus.PENDING)
        query = build_search_query(request)
        reporter.job(JobTag.WEB_SEARCH, "Searching web", JobStatus.IN_PROGRESS)
        try:
            response = await self._search(query, max_results=self.max_results)
        except Exception as e:
            reporter.job(JobTag.WEB_SEARCH, "Web search failed", JobStatus.FAILED, 100)
            if isinstance(e, MentorError):
                raise
            raise SearchError(f"Web search failed: {e}") from e

        search_results = list(response.results)[: self.max_results]
        reporter.job(
            JobTag.WEB_SEARCH,
            f"Found {len(search_results)} search results",
            JobStatus.COMPLETED,
            100,
        )
        logger.info(
            "Research search via {} returned {} results (mode={})", response.provider, len(search_results), mode.value
        )

        if not search_results:
            return []

        if mode == ResearchMode.SUMMARY_ONLY:
            return self._process_summaries(search_results, reporter, token)
        return await self._process_articles(search_results, reporter, token)

    def _register_pending(self, results: list[SearchResult], reporter: ProgressReporter, label: str) -> None:
        for index, result in enumerate(results):
            reporter.job(
                JobTag.article(index),
                f"{label} {index + 1}: {result.title}",
                JobStatus.PENDING,
            )

    def _process_summaries(
        self,
        results: list[SearchResult],
        reporter: ProgressReporter,
        token: CancellationToken,
    ) -> list[ResearchResult]:
        self._register_pending(results, reporter, "Processing summary")
        research: list[ResearchResult] = []

        for index, result in enumerate(results):
            token.raise_if_cancelled()
            tag = JobTag.article(index)
            reporter.job(tag, f"Processing summary {index + 1}: {result.title}", JobStatus.IN_PROGRESS)

            if not result.content or not result.content.strip():
                reporter.job(
                    tag,
                    f"No content for summary {index + 1}: {result.title}",
                    JobStatus.FAILED,
                    100,
                )
                continue

            research.append(ResearchResult(title=result.title, url=result.url, content=result.content))
            reporter.job(tag, f"Processed summary {index + 1}: {result.title}", JobStatus.COMPLETED, 100)

        return research

    async def _process_articles(
        self,
        results: list[SearchResult],
        reporter: ProgressReporter,
        token: CancellationToken,
    ) -> list[ResearchResult]:
        self._register_pending(results, reporter, "Processing article")
        research: list[ResearchResult] = []

        for index, result in enumerate(results):
            token.raise_if_cancelled()
            tag = JobTag.article(index)
            reporter.job(tag, f"Reading article {index + 1}: {result.title}", JobStatus.IN_PROGRESS)

            try:
                raw = await self._fetch(result.url, timeout=self.article_timeout)
                reporter.job(
                    tag,
                    f"Converting article {index + 1}: {result.title}",
                    JobStatus.IN_PROGRESS,
                    50,
                )
                text = await asyncio.to_thread(self._normalize, raw)
                if not text or not text.strip():
                    raise ValueError("no readable content")
            except Exception as e:
                logger.warning("Article {} ({}) failed: {}", index + 1, result.url, e)
                reporter.job(tag, f"Error with article {index + 1}: {result.title}", JobStatus.FAILED, 100)
                continue

            research.append(ResearchResult(title=result.title, url=result.url, content=text))
            reporter.job(tag, f"Converted article {index + 1}: {result.title}", JobStatus.COMPLETED, 100)

        return research

    # --- Callables exposed to the model in the direct strategy ---

    async def search_digest(self, query: str, *, domain: str = "") -> tuple[str, list[SearchResult]]:
        """Search and return a short text digest plus the raw hits."""
        full_query = (
            render_prompt("research.tool_search_query", domain=domain.strip(), query=query.strip())
            if domain.strip()
            else query.strip()
        )
        response = await self._search(full_query, max_results=settings.tool_search_max_results)
        results = list(response.results)
        context = f"Results from {response.provider} for: {full_query}"
        return format_as_summary(results, additional_context=context), results

    async def read_article(self, url: str) -> str:
        raw = await self._fetch(url, timeout=self.article_timeout)
        text = await asyncio.to_thread(self._normalize, raw)
        if not text or not text.strip():
            raise ValueError(f"No readable content at {url}")
        return text
