"""Dual verifier — two independent passes over the research corpus, merged."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from boardroom.backends.base import VerificationBackend
from boardroom.models.brief import ResearchContext
from boardroom.telemetry import TelemetryEvent, TelemetrySink, emit

logger = logging.getLogger(__name__)

ADDITIONAL_HEADER = "=== ADDITIONAL VERIFICATION FROM SECOND VERIFIER ==="
ADDITIONAL_FOOTER = "=== END ADDITIONAL VERIFICATION ==="


@dataclass
class VerifiedCorpus:
    """Research corpus after verification, with the verifiers that contributed."""

    text: str
    contributors: list[str] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return bool(self.contributors)


def _paragraphs(text: str) -> list[str]:
    return [p.strip() for p in text.split("\n\n") if p.strip()]


def _normalise(paragraph: str) -> str:
    return " ".join(paragraph.lower().split())


def merge_verifications(original: str, outputs: list[tuple[str, str]]) -> VerifiedCorpus:
    """Combine zero, one or two verifier outputs with the original corpus.

    Two outputs: the longer one is the base and the other contributes only
    the paragraphs the base does not already contain.  Ties go to the
    first listed verifier.  One output is used as is.  None leaves the
    original corpus unchanged.
    """
    usable = [(name, text.strip()) for name, text in outputs if text and text.strip()]

    if not usable:
        return VerifiedCorpus(text=original)
    if len(usable) == 1:
        name, text = usable[0]
        return VerifiedCorpus(text=text, contributors=[name])

    (first_name, first), (second_name, second) = usable[:2]
    if len(second) > len(first):
        base, extra = second, first
    else:
        base, extra = first, second

    seen = {_normalise(p) for p in _paragraphs(base)}
    novel = [p for p in _paragraphs(extra) if _normalise(p) not in seen]
    contributors = [first_name, second_name]
    if not novel:
        return VerifiedCorpus(text=base, contributors=contributors)

    combined = "\n\n".join([base, ADDITIONAL_HEADER, *novel, ADDITIONAL_FOOTER])
    return VerifiedCorpus(text=combined, contributors=contributors)


class DualVerifier:
    """Runs two verifiers concurrently and merges whatever succeeds.

    Neither verifier can cancel or delay the other, and verification
    failure never blocks the pipeline: with both verifiers down the
    original corpus passes through unchanged.
    """

    def __init__(
        self,
        verifiers: list[VerificationBackend],
        timeout: float = 30.0,
        telemetry: TelemetrySink | None = None,
        telemetry_timeout: float = 5.0,
    ) -> None:
        self.verifiers = verifiers[:2]
        self.timeout = timeout
        self.telemetry = telemetry
        self.telemetry_timeout = telemetry_timeout

    async def verify(self, corpus: str, context: ResearchContext) -> VerifiedCorpus:
        if not corpus.strip():
            return VerifiedCorpus(text=corpus)
        if not self.verifiers:
            return VerifiedCorpus(text=corpus)

        logger.info(
            "Verifying research with %s",
            " and ".join(v.name for v in self.verifiers),
        )
        outcomes = await asyncio.gather(
            *[self._run(v, corpus, context) for v in self.verifiers],
            return_exceptions=True,
        )

        outputs: list[tuple[str, str]] = []
        for verifier, outcome in zip(self.verifiers, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Verifier %s failed: %s", verifier.name, outcome)
            elif not outcome.strip():
                logger.warning("Verifier %s returned empty output", verifier.name)
            else:
                outputs.append((verifier.name, outcome))

        result = merge_verifications(corpus, outputs)
        if result.verified:
            logger.info("Research verified by %s", " and ".join(result.contributors))
        else:
            logger.warning("All verifications failed, using original research")

        await emit(
            self.telemetry,
            TelemetryEvent(
                name="verification",
                message=f"Research verified by {', '.join(result.contributors) or 'none'}",
                context="verify-research",
                details={"contributors": result.contributors},
            ),
            self.telemetry_timeout,
        )
        return result

    async def _run(
        self, verifier: VerificationBackend, corpus: str, context: ResearchContext
    ) -> str:
        try:
            return await asyncio.wait_for(verifier.verify(corpus, context), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"{verifier.name} verification timed out") from exc
