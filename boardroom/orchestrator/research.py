"""Research aggregator — fans query batches out to the research backend."""

from __future__ import annotations

import asyncio
import logging

from boardroom.backends.base import ResearchBackend
from boardroom.models.brief import ResearchContext

logger = logging.getLogger(__name__)

RESULT_SEPARATOR = "\n\n"
BATCH_SEPARATOR = "\n\n---\n\n"


def partition(queries: list[str], batch_size: int) -> list[list[str]]:
    return [queries[i:i + batch_size] for i in range(0, len(queries), batch_size)]


class ResearchAggregator:
    """Turns a list of queries into one best-effort research corpus.

    Batches run concurrently, each bounded by its own timeout.  A batch
    that fails or times out leaves a gap in the corpus and is logged; it
    never aborts its siblings.
    """

    def __init__(
        self,
        backend: ResearchBackend | None,
        batch_size: int = 10,
        batch_timeout: float = 60.0,
        max_results: int = 10,
        recency: str | None = "month",
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.backend = backend
        self.batch_size = batch_size
        self.batch_timeout = batch_timeout
        self.max_results = max_results
        self.recency = recency

    async def gather(self, queries: list[str]) -> str:
        """Return the joined corpus; empty when nothing could be researched."""
        if not queries:
            return ""
        if self.backend is None:
            logger.warning("No research backend configured, continuing without research")
            return ""

        batches = partition(queries, self.batch_size)
        logger.info(
            "Dispatching %d queries in %d batches to %s",
            len(queries), len(batches), self.backend.name,
        )

        outcomes = await asyncio.gather(
            *[self._run_batch(i, batch) for i, batch in enumerate(batches, 1)],
            return_exceptions=True,
        )

        sections: list[str] = []
        for index, outcome in enumerate(outcomes, 1):
            if isinstance(outcome, BaseException):
                logger.warning("Research batch %d dropped: %s", index, outcome)
            elif outcome.strip():
                sections.append(outcome)

        return BATCH_SEPARATOR.join(sections)

    async def _run_batch(self, index: int, batch: list[str]) -> str:
        try:
            results = await asyncio.wait_for(
                self.backend.search(batch, max_results=self.max_results, recency=self.recency),
                timeout=self.batch_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TimeoutError(
                f"research batch {index} timed out after {self.batch_timeout}s"
            ) from exc

        formatted = [r.format() for r in results]
        logger.info("Research batch %d returned %d results", index, len(results))
        return RESULT_SEPARATOR.join(f for f in formatted if f.strip())


def build_research_queries(context: ResearchContext) -> list[str]:
    """Derive the research query list from the topic context."""
    queries: list[str] = []
    industry = context.industry.strip() or "B2B"

    website = context.company_website.strip()
    if website:
        queries += [
            f"{website} company overview, products, services and value propositions",
            f"{website} target market, customer base and case studies",
            f"{website} competitive positioning and differentiation",
            f"{website} pricing strategy and business model",
            f"{website} customer reviews and market sentiment",
        ]

    if context.industry.strip():
        queries += [
            f"Latest trends, market analysis and growth drivers in the {industry} industry",
            f"{industry} market size, growth rate and key market players",
            f"{industry} industry challenges, pain points and opportunities",
            f"{industry} buyer behavior and purchasing patterns",
            f"{industry} competitive landscape and differentiation strategies",
        ]

    for title in context.audience_titles:
        queries += [
            f"{title} responsibilities, daily challenges and key priorities in {industry}",
            f"{title} decision-making process, budget authority and vendor evaluation criteria in {industry}",
            f"{title} common pain points, goals and success metrics in {industry} companies",
        ]

    for competitor in context.competitors:
        queries += [
            f"{competitor} company overview, products and market position",
            f"{competitor} strengths, weaknesses, pricing and customer reviews",
            f"{competitor} marketing messaging and brand positioning",
        ]

    if context.seo_keywords:
        keywords = ", ".join(context.seo_keywords)
        queries += [
            f"Search volume and buyer intent for keywords: {keywords}",
            f"User questions and pain points behind keywords: {keywords}",
        ]

    if context.company_size:
        sizes = " or ".join(context.company_size)
        queries += [
            f"Business challenges and priorities for companies with {sizes} employees",
            f"Decision-making structure and buying process for {sizes} employee organizations",
        ]

    if context.company_revenue:
        revenue = " or ".join(context.company_revenue)
        queries += [
            f"Budget considerations and ROI expectations for companies with {revenue} annual revenue",
            f"Technology spending patterns for {revenue} revenue organizations",
        ]

    feedback = context.feedback_type.lower()
    if "pricing" in feedback or "packaging" in feedback:
        queries.append(f"{industry} pricing models, benchmarks and packaging strategies")
        queries += [f"{c} pricing tiers and packaging structure" for c in context.competitors]
    if any(word in feedback for word in ("branding", "positioning", "messaging")):
        queries.append(f"{industry} messaging best practices and brand positioning strategies")
    if "product" in feedback or "feature" in feedback:
        queries.append(f"{industry} product trends and feature expectations")

    if context.industry.strip() and context.audience_titles and context.company_size:
        queries.append(
            f"{industry} industry: {', '.join(context.audience_titles)} priorities at companies "
            f"with {' or '.join(context.company_size)} employees"
        )
    if context.industry.strip() and context.competitors:
        queries.append(
            f"Competitive landscape analysis: {', '.join(context.competitors)} "
            f"vs other players in the {industry} market"
        )

    return queries
