"""Fire-and-forget event reporting.

Sinks may fail or hang; ``emit`` bounds the wait and swallows every failure
so that reporting can never break the operation that triggered it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)


@dataclass
class TelemetryEvent:
    """A single reportable occurrence inside the pipeline."""

    name: str
    message: str
    context: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


@runtime_checkable
class TelemetrySink(Protocol):
    async def report(self, event: TelemetryEvent) -> None:
        ...


class LogTelemetry:
    """Sink that writes events to the application log."""

    async def report(self, event: TelemetryEvent) -> None:
        logger.info("[%s] %s (%s) %s", event.name, event.message, event.context, event.details)


class WebhookTelemetry:
    """Sink that POSTs events as JSON to an operator-configured URL."""

    def __init__(self, url: str, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self._transport = transport

    async def report(self, event: TelemetryEvent) -> None:
        async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
            response = await client.post(self.url, json=asdict(event))
            response.raise_for_status()


async def emit(sink: TelemetrySink | None, event: TelemetryEvent, timeout: float = 5.0) -> None:
    """Report an event, ignoring any failure of the sink itself."""
    if sink is None:
        return
    try:
        await asyncio.wait_for(sink.report(event), timeout=timeout)
    except Exception as exc:
        logger.warning("Telemetry sink failed for %s: %s", event.name, exc)
