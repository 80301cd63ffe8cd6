from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from loguru import logger

from mentor.config import ProviderConfig, settings
from mentor.errors import (
    AnalysisCancelled,
    AnalysisExtractionError,
    ConfigurationError,
    ExtractionError,
    MentorError,
    ProviderError,
)
from mentor.llm_client import ChatOptions, ChatProvider, ToolSpec, create_provider, validate_provider_config
from mentor.models.analysis import AnalysisRequest, Recommendation, ResearchMode, ResearchResult
from mentor.models.progress import JobStatus, JobTag
from mentor.services import logger as log_service
from mentor.services.cancellation import CancellationToken, ensure_token
from mentor.services.extractor import ResponseExtractor
from mentor.services.image import to_data_url
from mentor.services.progress import ProgressReporter, ProgressSink
from mentor.services.prompt_store import render_prompt
from mentor.services.research import ResearchPipeline
from mentor.services.rules import DomainRuleRepository
from mentor.services.streaming import StreamConsumer, StreamSink
from mentor.tools import search_provider
from mentor.tools.result_formatter import format_research_block

SEARCH_TOOL = "search_the_web"
READ_TOOL = "read_article"


class AnalysisStrategy(str, Enum):
    DIRECT = "direct"
    RETRIEVAL_AUGMENTED = "retrieval_augmented"
    DELEGATED = "delegated"


class AnalysisState(str, Enum):
    IDLE = "idle"
    RESEARCHING = "researching"
    PROMPT_ASSEMBLY = "prompt_assembly"
    STREAMING = "streaming"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


def select_strategy(config: ProviderConfig) -> AnalysisStrategy:
    """Pick the research strategy from the provider's capability flags."""
    if config.retrieval_augmented_generation and config.server_side_search:
        raise ConfigurationError(
            f"Provider {config.name!r} enables both retrieval_augmented_generation and server_side_search"
        )
    if config.provider_type.strip().lower() == "perplexity" and not config.server_side_search:
        raise ConfigurationError(
            f"Provider {config.name!r} is a perplexity provider and must set server_side_search"
        )
    if config.server_side_search:
        return AnalysisStrategy.DELEGATED
    if config.retrieval_augmented_generation:
        return AnalysisStrategy.RETRIEVAL_AUGMENTED
    return AnalysisStrategy.DIRECT


def build_messages(system_prompt: str, request: AnalysisRequest) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": system_prompt},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": request.prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": to_data_url(request.image_data, request.mime_type)},
                },
            ],
        },
    ]


class AnalysisOrchestrator:
    """Runs one screenshot analysis end to end.

    The strategy is fixed at construction. DIRECT hands the model two tools,
    RETRIEVAL_AUGMENTED researches first and injects the findings, DELEGATED
    lets the provider search on its own. All three share the stream consumer
    and the response extractor.
    """

    def __init__(
        self,
        provider_config: ProviderConfig,
        *,
        provider: ChatProvider | None = None,
        research: ResearchPipeline | None = None,
        rules: DomainRuleRepository | None = None,
        extractor: ResponseExtractor | None = None,
        research_mode: ResearchMode | str | None = None,
    ):
        validate_provider_config(provider_config)
        self.config = provider_config
        self.strategy = select_strategy(provider_config)
        try:
            self.research_mode = ResearchMode(research_mode or settings.research_mode)
        except ValueError as e:
            raise ConfigurationError(f"Unknown research mode: {research_mode or settings.research_mode}") from e
        if research is None and self.strategy != AnalysisStrategy.DELEGATED:
            search_provider.validate_search_config()
        self.provider = provider or create_provider(provider_config)
        self.research = research or ResearchPipeline()
        self.rules = rules or DomainRuleRepository()
        self.extractor = extractor or ResponseExtractor()
        self.state = AnalysisState.IDLE

    @property
    def provider_name(self) -> str:
        return self.config.name

    def _transition(self, request_id: str, state: AnalysisState, **data: Any) -> None:
        logger.debug("Analysis {}: {} -> {}", request_id, self.state.value, state.value)
        self.state = state
        log_service.log_research_step(
            request_id=request_id,
            step_type="analysis_state",
            status=state.value,
            data={"strategy": self.strategy.value, "provider": self.provider_name, **data},
        )

    # --- Prompt assembly ---

    def build_system_prompt(
        self,
        request: AnalysisRequest,
        rules_text: str = "",
        research: list[ResearchResult] | None = None,
    ) -> str:
        intro = [render_prompt("analysis.role")]
        if request.domain.strip():
            intro.append(render_prompt("analysis.domain", domain=request.domain.strip()))
        intro.append(render_prompt("analysis.instructions"))
        sections = [" ".join(intro)]

        if rules_text.strip():
            sections.append(rules_text.strip())

        if self.strategy == AnalysisStrategy.RETRIEVAL_AUGMENTED:
            block = format_research_block(research or [])
            if block:
                sections.append(f"{render_prompt('analysis.research_intro')}\n\n{block}")
        elif self.strategy == AnalysisStrategy.DIRECT:
            sections.append(
                render_prompt(
                    "analysis.direct_tools",
                    search_tool=SEARCH_TOOL,
                    read_tool=READ_TOOL,
                    max_results=settings.tool_search_max_results,
                )
            )
        else:
            sections.append(render_prompt("analysis.delegated", domain=request.domain.strip() or "the game"))

        sections.append(render_prompt("analysis.response_format"))
        return "\n\n".join(sections)

    def build_tools(self, request: AnalysisRequest, collected: list[dict[str, Any]]) -> list[ToolSpec]:
        """Callable functions for the DIRECT strategy. Other strategies get none."""
        if self.strategy != AnalysisStrategy.DIRECT:
            return []

        async def search_the_web(arguments: dict[str, Any]) -> str:
            query = str(arguments.get("query") or "").strip()
            if not query:
                raise ValueError("query is required")
            digest, results = await self.research.search_digest(query, domain=request.domain)
            collected.extend(result.to_dict() for result in results)
            return digest

        async def read_article(arguments: dict[str, Any]) -> str:
            url = str(arguments.get("url") or "").strip()
            if not url:
                raise ValueError("url is required")
            text = await self.research.read_article(url)
            collected.append({"title": "", "url": url, "content": text})
            return text

        return [
            ToolSpec(
                name=SEARCH_TOOL,
                description=render_prompt("tools.search_the_web", max_results=settings.tool_search_max_results),
                parameters={
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": render_prompt("tools.search_the_web_query")}
                    },
                    "required": ["query"],
                },
                handler=search_the_web,
            ),
            ToolSpec(
                name=READ_TOOL,
                description=render_prompt("tools.read_article"),
                parameters={
                    "type": "object",
                    "properties": {
                        "url": {"type": "string", "description": render_prompt("tools.read_article_url")}
                    },
                    "required": ["url"],
                },
                handler=read_article,
            ),
        ]

    # --- Run ---

    async def analyze(
        self,
        request: AnalysisRequest,
        progress_sink: ProgressSink | None = None,
        cancel_token: CancellationToken | None = None,
        stream_sink: StreamSink | None = None,
    ) -> Recommendation:
        request.validate_request()
        token = ensure_token(cancel_token)
        reporter = ProgressReporter(progress_sink)
        request_id = uuid4().hex[:12]
        self.state = AnalysisState.IDLE
        collected: list[dict[str, Any]] = []

        logger.info(
            "Analysis {} started: domain={!r} provider={} strategy={}",
            request_id,
            request.domain,
            self.provider_name,
            self.strategy.value,
        )

        try:
            research: list[ResearchResult] = []
            if self.strategy == AnalysisStrategy.RETRIEVAL_AUGMENTED:
                self._transition(request_id, AnalysisState.RESEARCHING, mode=self.research_mode.value)
                research = await self.research.perform_research(
                    request,
                    self.research_mode,
                    progress_sink=reporter.as_sink(),
                    cancel_token=token,
                )
                collected.extend(
                    {"title": item.title, "url": item.url, "content": item.content}
                    for item in research
                    if not item.is_empty
                )

            self._transition(request_id, AnalysisState.PROMPT_ASSEMBLY)
            rules_text = self.rules.get_formatted_rules(request.domain, request.rule_files)
            messages = build_messages(self.build_system_prompt(request, rules_text, research), request)
            options = ChatOptions(
                tools=self.build_tools(request, collected),
                server_side_search=self.strategy == AnalysisStrategy.DELEGATED,
            )

            token.raise_if_cancelled()
            self._transition(request_id, AnalysisState.STREAMING, tools=len(options.tools))
            consumer = StreamConsumer(
                reporter,
                token,
                label=f"Analyzing with {self.provider_name}",
                stream_sink=stream_sink,
            )
            try:
                raw_text = await consumer.consume(self.provider.stream_chat(messages, options))
            except AnalysisCancelled:
                raise
            except MentorError:
                reporter.job(JobTag.LLM_ANALYSIS, f"Analysis with {self.provider_name} failed", JobStatus.FAILED, 100)
                raise
            except Exception as e:
                reporter.job(JobTag.LLM_ANALYSIS, f"Analysis with {self.provider_name} failed", JobStatus.FAILED, 100)
                raise ProviderError(f"{self.provider_name} stream failed: {e}") from e
            reporter.job(JobTag.LLM_ANALYSIS, f"Analyzed with {self.provider_name}", JobStatus.COMPLETED, 100)

            self._transition(request_id, AnalysisState.EXTRACTING, chars=len(raw_text), tool_calls=consumer.tool_calls)
            try:
                extracted = self.extractor.extract(raw_text)
            except ExtractionError as e:
                log_service.log_event(
                    event_type="extraction_failed",
                    message=str(e),
                    request_id=request_id,
                    provider=self.provider_name,
                    raw_preview=e.raw_text[:500],
                )
                raise AnalysisExtractionError(str(e), e.raw_text, self.provider_name) from e

            if consumer.finish is not None:
                known = {item.get("url") for item in collected}
                collected.extend(
                    {"title": "", "url": url, "content": ""}
                    for url in consumer.finish.citations
                    if url not in known
                )

            recommendation = extracted.model_copy(
                update={
                    "provider_used": self.provider_name,
                    "generated_at": datetime.now(timezone.utc),
                    "search_results": collected,
                }
            )
        except AnalysisCancelled:
            self._transition(request_id, AnalysisState.CANCELLED)
            raise
        except Exception as e:
            self._transition(request_id, AnalysisState.FAILED, error=str(e))
            raise

        self._transition(
            request_id,
            AnalysisState.DONE,
            recommendations=len(recommendation.recommendations),
            failed_jobs=len(reporter.progress.failed_jobs()),
            progress=reporter.progress.to_dict(),
        )
        return recommendation


async def analyze(
    request: AnalysisRequest,
    progress_sink: ProgressSink | None = None,
    cancel_token: CancellationToken | None = None,
    stream_sink: StreamSink | None = None,
) -> Recommendation:
    """Analyze a screenshot with the provider named on the request (or the default one)."""
    orchestrator = AnalysisOrchestrator(settings.get_provider(request.provider))
    return await orchestrator.analyze(
        request,
        progress_sink=progress_sink,
        cancel_token=cancel_token,
        stream_sink=stream_sink,
    )
