"""Protocols for the upstream services the pipeline consumes."""

from __future__ import annotations

import json
from enum import Enum
from typing import AsyncIterator, Protocol, runtime_checkable

import httpx

from boardroom.errors import BackendError, error_codes_from_body
from boardroom.models.brief import ResearchContext
from boardroom.models.source import SearchResult


class PayloadShape(Enum):
    """Alternate request bodies accepted by a generation endpoint."""

    TEXT = "text"
    MESSAGES = "messages"


@runtime_checkable
class GenerationBackend(Protocol):
    """A text generation service addressed by model identifier."""

    name: str

    async def generate(
        self,
        model: str,
        prompt: str,
        *,
        shape: PayloadShape = PayloadShape.TEXT,
        temperature: float = 0.7,
        json_output: bool = False,
    ) -> str:
        """Return the full completion for ``prompt``."""
        ...

    async def open_stream(
        self,
        model: str,
        prompt: str,
        *,
        shape: PayloadShape = PayloadShape.TEXT,
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        """Open a stream and return an iterator of text chunks.

        Raises if the stream cannot be opened; errors while iterating
        surface from the iterator itself.
        """
        ...


@runtime_checkable
class ResearchBackend(Protocol):
    name: str

    async def search(
        self, queries: list[str], *, max_results: int = 10, recency: str | None = "month"
    ) -> list[SearchResult]:
        ...


@runtime_checkable
class VerificationBackend(Protocol):
    name: str

    async def verify(self, corpus: str, context: ResearchContext) -> str:
        """Return a corrected and enhanced version of ``corpus``."""
        ...


def raise_for_status(response: httpx.Response, backend: str) -> None:
    """Raise ``BackendError`` with structured fields for an error response."""
    if not response.is_error:
        return

    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        body = None

    codes = error_codes_from_body(body)
    message = response.text[:500]
    retry_after: float | None = None
    code = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]
        code = error.get("status") or error.get("type")
        message = str(error.get("message") or message)
        for detail in error.get("details") or []:
            delay = detail.get("retryDelay") if isinstance(detail, dict) else None
            if isinstance(delay, str) and delay.endswith("s"):
                try:
                    retry_after = float(delay[:-1])
                except ValueError:
                    pass

    header = response.headers.get("retry-after")
    if header and retry_after is None:
        try:
            retry_after = float(header)
        except ValueError:
            pass

    raise BackendError(
        f"{backend} returned HTTP {response.status_code}: {message}",
        status=response.status_code,
        code=code if isinstance(code, str) else None,
        retry_after=retry_after,
        backend=backend,
        codes=codes,
    )


def strip_code_fence(raw_text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    text = raw_text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]
    return text.strip()
