"""Streaming generator — stream if possible, degrade to replayed single-shot output."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import AsyncIterator, Awaitable, Callable, Union

from boardroom.backends.base import GenerationBackend, PayloadShape
from boardroom.cache import ReportCache
from boardroom.errors import (
    BackendError,
    ErrorKind,
    classify_error,
    to_generation_error,
)
from boardroom.models.report import GenerationResult
from boardroom.orchestrator.fallback import FallbackExecutor

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]

_HEADER = re.compile(r"^(#{1,6})\s+\S")


async def _deliver(on_chunk: ChunkCallback, chunk: str) -> None:
    result = on_chunk(chunk)
    if asyncio.iscoroutine(result):
        await result


def tidy_report(text: str) -> str:
    """Drop empty sections and normalise whitespace in a streamed report.

    A header is dropped when no content follows it before the next header
    of the same or a higher level.
    """
    lines = text.split("\n")
    kept: list[str] = []
    for i, line in enumerate(lines):
        match = _HEADER.match(line)
        if not match:
            kept.append(line)
            continue
        level = len(match.group(1))
        has_content = False
        reached_end = True
        for following in lines[i + 1:]:
            next_match = _HEADER.match(following)
            if next_match and len(next_match.group(1)) <= level:
                reached_end = False
                break
            if following.strip():
                has_content = True
                reached_end = False
                break
        if has_content or reached_end:
            kept.append(line)

    tidied = "\n".join(line.rstrip() for line in kept)
    tidied = re.sub(r"\n{3,}", "\n\n", tidied)
    return tidied.strip()


class StreamingGenerator:
    """Produces long-form text, preferring a stream and degrading gracefully.

    Stream attempts walk the chain in order, trying both payload shapes on
    each backend.  If nothing can stream, or a stream completes empty, one
    blocking call runs through the fallback executor and its output is
    replayed in chunks.  Partial streamed text is returned rather than
    discarded when a stream dies midway.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        executor: FallbackExecutor,
        cache: ReportCache | None = None,
        replay_chunk_size: int = 50,
        replay_delay: float = 0.0,
    ) -> None:
        self.backend = backend
        self.executor = executor
        self.cache = cache
        self.replay_chunk_size = replay_chunk_size
        self.replay_delay = replay_delay

    async def lookup(self, cache_key: str | None) -> GenerationResult | None:
        if self.cache is None or cache_key is None:
            return None
        cached = await self.cache.get(cache_key)
        if not isinstance(cached, dict) or not cached.get("text"):
            return None
        return GenerationResult(
            text=cached["text"],
            research_data=cached.get("research_data", ""),
            model=cached.get("model"),
            streamed=False,
            cached=True,
        )

    async def generate(
        self,
        chain: list[str],
        prompt: str,
        on_chunk: ChunkCallback,
        *,
        research_data: str = "",
        cache_key: str | None = None,
    ) -> GenerationResult:
        if not chain:
            raise ValueError("Backend chain must contain at least one backend")

        cached = await self.lookup(cache_key)
        if cached is not None:
            logger.info("Using cached generation for %s", cache_key)
            await self.replay(cached.text, on_chunk)
            return cached

        result = await self._generate(chain, prompt, on_chunk, research_data)

        if self.cache is not None and cache_key is not None and not result.partial:
            await self.cache.set(cache_key, {
                "text": result.text,
                "research_data": result.research_data,
                "model": result.model,
            })
        return result

    async def _generate(
        self, chain: list[str], prompt: str, on_chunk: ChunkCallback, research_data: str
    ) -> GenerationResult:
        await self.executor.throttle()

        opened = await self._open_stream(chain, prompt)
        if opened is None:
            logger.warning("Streaming unavailable on every backend, using non-streaming fallback")
            return await self._nonstreaming(chain, prompt, on_chunk, research_data)

        model, stream = opened
        accumulated: list[str] = []
        try:
            async for chunk in stream:
                if not chunk:
                    continue
                accumulated.append(chunk)
                await _deliver(on_chunk, chunk)
        except Exception as exc:
            partial = "".join(accumulated)
            if partial.strip():
                logger.warning(
                    "Stream from %s failed after %d chars, returning partial report: %s",
                    model, len(partial), exc,
                )
                return GenerationResult(
                    text=partial, research_data=research_data, model=model, partial=True
                )
            logger.warning("Stream from %s failed before any text: %s", model, exc)
            return await self._nonstreaming(chain, prompt, on_chunk, research_data)

        full_text = "".join(accumulated)
        if not full_text.strip():
            logger.warning("Stream from %s completed empty, using non-streaming fallback", model)
            return await self._nonstreaming(chain, prompt, on_chunk, research_data)

        logger.info("Report streamed from %s (%d chars)", model, len(full_text))
        return GenerationResult(
            text=tidy_report(full_text), research_data=research_data, model=model
        )

    async def _open_stream(
        self, chain: list[str], prompt: str
    ) -> tuple[str, AsyncIterator[str]] | None:
        """Try each backend with both payload shapes; ``None`` if nothing streams."""
        first_error: BaseException | None = None
        for index, model in enumerate(chain):
            error: BaseException | None = None
            for shape in (PayloadShape.TEXT, PayloadShape.MESSAGES):
                try:
                    stream = await self.backend.open_stream(model, prompt, shape=shape)
                except Exception as exc:
                    error = exc
                    logger.warning(
                        "Could not open stream on %s (%s payload): %s", model, shape.value, exc
                    )
                    if classify_error(exc) is ErrorKind.AUTH_OR_CONFIG:
                        break
                    continue
                if index > 0 and first_error is not None:
                    await self.executor.report_fallback(
                        chain[0], model, first_error, "generate-streaming"
                    )
                return model, stream

            first_error = first_error or error
            kind = classify_error(error)
            if kind is ErrorKind.AUTH_OR_CONFIG:
                raise to_generation_error(error) from error
            if not kind.advances:
                return None
        return None

    async def _nonstreaming(
        self, chain: list[str], prompt: str, on_chunk: ChunkCallback, research_data: str
    ) -> GenerationResult:
        used: list[str] = []

        async def call(model: str) -> str:
            used.append(model)
            text = await self.backend.generate(model, prompt)
            if not text.strip():
                raise BackendError(f"No text returned from {model}")
            return text

        try:
            text = await self.executor.execute(chain, call, "generate-nonstreaming")
        except Exception as exc:
            return await self._last_resort(chain, prompt, on_chunk, research_data, exc)

        logger.info("Report generated via non-streaming fallback (%s, %d chars)", used[-1], len(text))
        await self.replay(text, on_chunk)
        return GenerationResult(
            text=text, research_data=research_data, model=used[-1], streamed=False
        )

    async def _last_resort(
        self,
        chain: list[str],
        prompt: str,
        on_chunk: ChunkCallback,
        research_data: str,
        error: BaseException,
    ) -> GenerationResult:
        """One direct call on the preferred backend, unless the failure rules it out."""
        failure = to_generation_error(error)
        if failure.kind is not ErrorKind.OTHER:
            raise failure from error

        logger.warning("Attempting single last-resort generation on %s", chain[0])
        try:
            text = await self.backend.generate(chain[0], prompt)
        except Exception as exc:
            logger.error("Last-resort generation failed: %s", exc)
            raise failure from error
        if not text.strip():
            raise failure from error

        await _deliver(on_chunk, text)
        return GenerationResult(
            text=text, research_data=research_data, model=chain[0], streamed=False
        )

    async def replay(self, text: str, on_chunk: ChunkCallback) -> None:
        """Feed a complete text to ``on_chunk`` in fixed-size pieces."""
        size = max(1, self.replay_chunk_size)
        for start in range(0, len(text), size):
            await _deliver(on_chunk, text[start:start + size])
            if self.replay_delay:
                await asyncio.sleep(self.replay_delay)
