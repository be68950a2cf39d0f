"""Report pipeline — research, verification, streaming generation and quality control."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Union

from boardroom.backends.claude import ClaudeVerifier
from boardroom.backends.gemini import GeminiBackend, GeminiVerifier
from boardroom.backends.perplexity import PerplexityBackend
from boardroom.cache import ReportCache, content_digest, make_cache_key
from boardroom.config import Settings
from boardroom.db.database import Database
from boardroom.models.brief import ResearchContext
from boardroom.models.report import PipelineResult, QCResult
from boardroom.orchestrator.fallback import FallbackExecutor
from boardroom.orchestrator.generator import ChunkCallback, StreamingGenerator
from boardroom.orchestrator.quality import QualityController, quick_validate_section
from boardroom.orchestrator.rate_limiter import RateLimiter
from boardroom.orchestrator.research import ResearchAggregator, build_research_queries
from boardroom.orchestrator.verifier import DualVerifier
from boardroom.telemetry import LogTelemetry, TelemetrySink, WebhookTelemetry

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], Union[None, Awaitable[None]]]

REPORT_PROMPT = """You are a synthetic advisory board of senior {audience} giving candid feedback.

TOPIC CONTEXT:
{context}

VERIFIED RESEARCH DATA:
{corpus}

Write a long-form analysis report in Markdown with these sections:

## Executive Summary
## Market Context
## Audience Priorities & Pain Points
## Competitive Landscape
## Board Feedback
## Recommendations

Ground every statistic, percentage and factual claim in the research data above.
Where the research does not support a specific number, describe the trend qualitatively instead of inventing one.
Use tables where they make comparisons clearer."""


def build_report_prompt(context: ResearchContext, corpus: str) -> str:
    audience = ", ".join(context.audience_titles) or "executives"
    return REPORT_PROMPT.format(
        audience=audience,
        context=context.describe(),
        corpus=corpus.strip() or "No research data available. Avoid specific statistics.",
    )


class ReportPipeline:
    """End-to-end report production for one topic context."""

    def __init__(
        self,
        research: ResearchAggregator,
        verifier: DualVerifier,
        generator: StreamingGenerator,
        quality: QualityController,
        chain: list[str],
        cache: ReportCache | None = None,
    ) -> None:
        self.research = research
        self.verifier = verifier
        self.generator = generator
        self.quality = quality
        self.chain = chain
        self.cache = cache

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        db: Database | None = None,
        telemetry: TelemetrySink | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> ReportPipeline:
        """Wire every component from one resolved ``Settings``.

        Pass the process-wide ``rate_limiter`` so that concurrent reports
        draw on one request budget; a fresh limiter is built only when none
        is given.
        """
        if rate_limiter is None:
            rate_limiter = RateLimiter(config.requests_per_minute)
        if telemetry is None:
            if config.telemetry_webhook_url:
                telemetry = WebhookTelemetry(config.telemetry_webhook_url)
            else:
                telemetry = LogTelemetry()

        chain = list(config.generation_chain)
        executor = FallbackExecutor(rate_limiter, telemetry, config.telemetry_timeout)
        gemini = GeminiBackend(api_key=config.gemini_api_key)

        perplexity = PerplexityBackend(api_key=config.perplexity_api_key)
        research = ResearchAggregator(
            perplexity if perplexity.available else None,
            batch_size=config.research_batch_size,
            batch_timeout=config.research_timeout,
            max_results=config.research_max_results,
            recency=config.research_recency,
        )

        verifiers = [GeminiVerifier(gemini, executor, chain)]
        if config.anthropic_api_key:
            verifiers.append(ClaudeVerifier(api_key=config.anthropic_api_key))
        verifier = DualVerifier(
            verifiers, config.verification_timeout, telemetry, config.telemetry_timeout
        )

        cache = None
        if db is not None:
            cache = ReportCache(db, ttls={
                "report": config.report_cache_ttl,
                "quality-control": config.report_cache_ttl,
            })

        generator = StreamingGenerator(
            gemini, executor, cache=cache, replay_chunk_size=config.replay_chunk_size
        )
        quality = QualityController(
            gemini,
            executor,
            chain,
            batch_size=config.qc_batch_size,
            max_attempts=config.qc_max_attempts,
            base_delay=config.qc_retry_base_delay,
            accuracy_threshold=config.qc_accuracy_threshold,
            correction_threshold=config.qc_correction_threshold,
            fallback_accuracy_threshold=config.qc_fallback_accuracy_threshold,
            overlap_threshold=config.qc_term_overlap_threshold,
        )
        return cls(research, verifier, generator, quality, chain, cache)

    async def run(
        self,
        context: ResearchContext,
        on_chunk: ChunkCallback,
        on_status: StatusCallback | None = None,
    ) -> PipelineResult:
        """Produce, stream and fact-check one report.

        Raises ``GenerationError`` only when generation produced nothing at
        all; every other stage degrades instead of failing.
        """
        async def status(stage: str) -> None:
            if on_status is None:
                return
            result = on_status(stage)
            if asyncio.iscoroutine(result):
                await result

        report_key = make_cache_key("report", **context.cache_fields())
        verified_by: list[str] = []

        generation = await self.generator.lookup(report_key)
        if generation is not None:
            logger.info("Serving cached report for %s", report_key)
            await status("cached")
            await self.generator.replay(generation.text, on_chunk)
        else:
            await status("researching")
            corpus = await self.research.gather(build_research_queries(context))

            await status("verifying")
            verified = await self.verifier.verify(corpus, context)
            verified_by = verified.contributors

            await status("generating")
            generation = await self.generator.generate(
                self.chain,
                build_report_prompt(context, verified.text),
                on_chunk,
                research_data=verified.text,
                cache_key=report_key,
            )

        warnings = quick_validate_section(generation.text, generation.research_data)
        for warning in warnings:
            logger.warning("Early check: %s", warning)

        await status("quality-control")
        qc = await self._quality_control(generation.text, generation.research_data, context)

        await status("done")
        return PipelineResult(
            report=generation.text,
            research_data=generation.research_data,
            qc=qc,
            verified_by=verified_by,
            warnings=warnings,
            cached=generation.cached,
            partial=generation.partial,
        )

    async def _quality_control(
        self, report: str, corpus: str, context: ResearchContext
    ) -> QCResult:
        qc_key = make_cache_key(
            "quality-control", report=content_digest(report), corpus=content_digest(corpus)
        )
        if self.cache is not None:
            cached = await self.cache.get(qc_key)
            if isinstance(cached, dict):
                try:
                    return QCResult.from_dict(cached)
                except (KeyError, ValueError) as exc:
                    logger.warning("Discarding unreadable cached QC result: %s", exc)

        qc = await self.quality.perform(report, corpus, context)
        if self.cache is not None and not qc.used_fallback:
            await self.cache.set(qc_key, qc.to_dict())
        return qc
