"""Gemini backend — Generative Language REST API via httpx."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from boardroom.backends.base import PayloadShape, raise_for_status
from boardroom.config import settings
from boardroom.errors import BackendError, ConfigurationError
from boardroom.models.brief import ResearchContext
from boardroom.orchestrator.fallback import FallbackExecutor

logger = logging.getLogger(__name__)

API_ROOT = "https://generativelanguage.googleapis.com/v1beta/models"
MAX_OUTPUT_TOKENS = 32000

VERIFICATION_PROMPT = """\
You are a fact-checker and research validation expert. Your task is to:

1. VERIFY the veracity of the research data provided below.
2. CHECK for hallucinations, false information, or random/incorrect data.
3. CORRECT inaccuracies or remove unverifiable claims.
4. ADD depth with adjacent context, but never introduce new facts you cannot verify.

RESEARCH DATA:
{corpus}

CONTEXT:
{context}

Return the VERIFIED, ENHANCED and CORRECTED research data. Keep the structure \
and organisation of the original research.\
"""


def extract_text(payload: dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate."""
    parts: list[str] = []
    for candidate in payload.get("candidates") or []:
        content = candidate.get("content") or {}
        for part in content.get("parts") or []:
            if isinstance(part, dict) and part.get("text"):
                parts.append(str(part["text"]))
        if parts:
            break
    return "".join(parts)


class GeminiBackend:
    """Generation backend addressed by Gemini model name."""

    name: str = "Gemini"

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY is not configured. Set it in the environment or .env file.",
                backend=self.name,
            )
        return {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

    def _payload(
        self, prompt: str, shape: PayloadShape, temperature: float, json_output: bool = False
    ) -> dict[str, Any]:
        config: dict[str, Any] = {"temperature": temperature}
        if json_output:
            config["responseMimeType"] = "application/json"
        if shape is PayloadShape.TEXT:
            config["maxOutputTokens"] = MAX_OUTPUT_TOKENS
            return {"contents": [{"parts": [{"text": prompt}]}], "generationConfig": config}
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": config,
        }

    async def generate(
        self,
        model: str,
        prompt: str,
        *,
        shape: PayloadShape = PayloadShape.TEXT,
        temperature: float = 0.7,
        json_output: bool = False,
    ) -> str:
        """Single blocking call returning the full text."""
        headers = self._headers()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{API_ROOT}/{model}:generateContent",
                headers=headers,
                json=self._payload(prompt, shape, temperature, json_output),
            )
            raise_for_status(response, f"{self.name} {model}")

        text = extract_text(response.json())
        if not text:
            raise BackendError(f"No text returned from {model}", backend=self.name)
        return text

    async def open_stream(
        self,
        model: str,
        prompt: str,
        *,
        shape: PayloadShape = PayloadShape.TEXT,
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        """Open a server-sent-events stream; fails here if the request is rejected."""
        headers = self._headers()
        client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        try:
            request = client.build_request(
                "POST",
                f"{API_ROOT}/{model}:streamGenerateContent",
                params={"alt": "sse"},
                headers=headers,
                json=self._payload(prompt, shape, temperature),
            )
            response = await client.send(request, stream=True)
            if response.is_error:
                await response.aread()
                await response.aclose()
                raise_for_status(response, f"{self.name} {model}")
        except BaseException:
            await client.aclose()
            raise
        return self._iter_events(client, response)

    async def _iter_events(
        self, client: httpx.AsyncClient, response: httpx.Response
    ) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if not data or data == "[DONE]":
                    continue
                try:
                    text = extract_text(json.loads(data))
                except json.JSONDecodeError as exc:
                    logger.debug("Skipping malformed stream event: %s", exc)
                    continue
                if text:
                    yield text
        finally:
            await response.aclose()
            await client.aclose()


class GeminiVerifier:
    """Verification pass run through the generation fallback chain."""

    name: str = "Gemini"

    def __init__(
        self, backend: GeminiBackend, executor: FallbackExecutor, chain: list[str]
    ) -> None:
        self.backend = backend
        self.executor = executor
        self.chain = chain

    async def verify(self, corpus: str, context: ResearchContext) -> str:
        prompt = VERIFICATION_PROMPT.format(corpus=corpus, context=context.describe())
        return await self.executor.execute(
            self.chain,
            lambda model: self.backend.generate(model, prompt, temperature=0.1),
            "verify-research",
        )
