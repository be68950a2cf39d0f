"""Backend fallback executor — one ordered chain, strictly sequential attempts."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from boardroom.errors import AllBackendsFailedError, ErrorKind, classify_error
from boardroom.orchestrator.rate_limiter import RateLimiter
from boardroom.telemetry import TelemetryEvent, TelemetrySink, emit

logger = logging.getLogger(__name__)

T = TypeVar("T")

WorkUnit = Callable[[str], Awaitable[T]]


class FallbackExecutor:
    """Runs a unit of work against each backend of a chain until one succeeds.

    ``not-found`` and ``limit-exceeded`` failures move on to the next
    backend.  ``auth-or-config`` and ``other`` failures are re-raised
    unchanged; a failure on the last backend raises
    ``AllBackendsFailedError``, except auth/config failures, which always
    surface as themselves.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        telemetry: TelemetrySink | None = None,
        telemetry_timeout: float = 5.0,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.telemetry = telemetry
        self.telemetry_timeout = telemetry_timeout

    async def throttle(self) -> None:
        if self.rate_limiter is not None:
            await self.rate_limiter.wait_if_needed()

    async def report_fallback(
        self, first: str, used: str, error: BaseException, context: str
    ) -> None:
        """Emit the best-effort event recording that a later backend served a call."""
        logger.info("Fallback successful: %s -> %s for %s", first, used, context)
        await emit(
            self.telemetry,
            TelemetryEvent(
                name="backend_fallback",
                message=f"Backend fallback triggered: {first} -> {used}",
                context=context,
                details={"from": first, "to": used, "error": str(error)},
            ),
            self.telemetry_timeout,
        )

    async def execute(self, chain: Sequence[str], work: WorkUnit[T], context: str) -> T:
        if not chain:
            raise ValueError("Backend chain must contain at least one backend")

        await self.throttle()

        first = chain[0]
        last_index = len(chain) - 1
        last_error: BaseException | None = None

        for index, backend in enumerate(chain):
            try:
                result = await work(backend)
            except Exception as exc:
                kind = classify_error(exc)
                last_error = exc

                if kind is ErrorKind.AUTH_OR_CONFIG:
                    logger.error("%s: %s rejected the call (%s): %s", context, backend, kind.value, exc)
                    raise

                if kind.advances and index < last_index:
                    logger.warning(
                        "%s: backend %s failed (%s), trying %s",
                        context, backend, kind.value, chain[index + 1],
                    )
                    continue

                if index < last_index:
                    logger.error("%s: backend %s failed (%s): %s", context, backend, kind.value, exc)
                    raise

                failure = AllBackendsFailedError(context, list(chain), exc)
                logger.error("%s", failure)
                await emit(
                    self.telemetry,
                    TelemetryEvent(
                        name="all_backends_failed",
                        message=str(failure),
                        context=context,
                        details={"chain": list(chain), "kind": kind.value},
                    ),
                    self.telemetry_timeout,
                )
                raise failure from exc

            if index > 0 and last_error is not None:
                await self.report_fallback(first, backend, last_error, context)
            return result

        raise RuntimeError("unreachable")  # pragma: no cover
