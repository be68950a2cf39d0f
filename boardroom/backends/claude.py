"""Claude verification backend — Anthropic API via httpx."""

from __future__ import annotations

import logging

import httpx

from boardroom.backends.base import raise_for_status
from boardroom.config import settings
from boardroom.errors import BackendError, ConfigurationError
from boardroom.models.brief import ResearchContext

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-sonnet-4-5"

SYSTEM_PROMPT = """\
You are a fact-checker, research validation expert and copy editor. \
Verify the research data you are given, remove or correct hallucinations and \
unverifiable claims, flag logical inconsistencies, and add missing context that \
strengthens the analysis. Never invent statistics or sources. Keep the original \
structure, use proper Markdown, and return only the corrected research data.\
"""


class ClaudeVerifier:
    """Verification backend using Anthropic's Claude API."""

    name: str = "Claude"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model
        self._transport = transport

    async def verify(self, corpus: str, context: ResearchContext) -> str:
        """Return Claude's verified and enhanced version of ``corpus``."""
        if not self.api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not configured", backend=self.name)

        user_content = self._build_user_message(corpus, context)

        async with httpx.AsyncClient(timeout=120.0, transport=self._transport) as client:
            response = await client.post(
                ANTHROPIC_API_URL,
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": self.model,
                    "max_tokens": 8000,
                    "temperature": 0.3,
                    "system": SYSTEM_PROMPT,
                    "messages": [{"role": "user", "content": user_content}],
                },
            )
            raise_for_status(response, self.name)

        data = response.json()
        for block in data.get("content", []):
            if block.get("type") == "text" and block.get("text", "").strip():
                logger.info("Research verified by Claude (%d chars)", len(block["text"]))
                return block["text"]
        raise BackendError("Claude verification returned no text", backend=self.name)

    def _build_user_message(self, corpus: str, context: ResearchContext) -> str:
        return "\n".join([
            "RESEARCH DATA:",
            corpus,
            "",
            "CONTEXT:",
            context.describe(),
        ])
