"""Perplexity research backend — Search API via httpx."""

from __future__ import annotations

import logging

import httpx

from boardroom.backends.base import raise_for_status
from boardroom.config import settings
from boardroom.errors import ConfigurationError
from boardroom.models.source import SearchResult

logger = logging.getLogger(__name__)

PERPLEXITY_SEARCH_URL = "https://api.perplexity.ai/search"


class PerplexityBackend:
    """Research backend using Perplexity's web search."""

    name: str = "Perplexity"

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.perplexity_api_key
        self._transport = transport

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def search(
        self, queries: list[str], *, max_results: int = 10, recency: str | None = "month"
    ) -> list[SearchResult]:
        """Run one batch of queries in a single request."""
        if not self.api_key:
            raise ConfigurationError("PERPLEXITY_API_KEY is not configured", backend=self.name)

        payload = {
            "query": queries[0] if len(queries) == 1 else queries,
            "max_results": max_results,
            "search_mode": "web",
        }
        if recency:
            payload["search_recency_filter"] = recency

        # No client timeout: the aggregator bounds each batch itself.
        async with httpx.AsyncClient(timeout=None, transport=self._transport) as client:
            response = await client.post(
                PERPLEXITY_SEARCH_URL,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
            raise_for_status(response, self.name)

        return self._parse_results(response.json())

    def _parse_results(self, data: dict) -> list[SearchResult]:
        """Flatten single- and multi-query result shapes."""
        results: list[SearchResult] = []
        for item in data.get("results") or []:
            if isinstance(item, list):
                results.extend(SearchResult.from_dict(r) for r in item if isinstance(r, dict))
            elif isinstance(item, dict):
                results.append(SearchResult.from_dict(item))
        logger.debug("Perplexity returned %d results", len(results))
        return results
