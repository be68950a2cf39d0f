"""Quality control — extract checkable claims and fact-check them against the corpus."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_exponential

from boardroom.backends.base import GenerationBackend, strip_code_fence
from boardroom.models.brief import ResearchContext
from boardroom.models.report import IssueKind, IssueSeverity, QCIssue, QCResult
from boardroom.orchestrator.fallback import FallbackExecutor

logger = logging.getLogger(__name__)

STAT_PATTERN = re.compile(r"\d+(?:\.\d+)?[%x]?")
FACTUAL_VERB = re.compile(r"\b(?:is|are|has|have|was|were)\b", re.IGNORECASE)
MAGNITUDE_WORD = re.compile(
    r"\b(?:million|billion|thousand|trillion|percent|majority|half|double|triple|most)\b",
    re.IGNORECASE,
)
SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
SEPARATOR_ROW = re.compile(r"^\|?[\s:\-|]+\|?$")
LINE_MARKER = re.compile(r"^(?:#{1,6}\s+|>\s*|[-*+]\s+|\d+\.\s+)")
KEY_TERM = re.compile(r"\d+%?|\b\w{4,}\b")

SUSPICIOUS_PATTERNS = (
    re.compile(r"\d+% (?:increase|decrease|growth|reduction)", re.IGNORECASE),
    re.compile(r"\$\d+[KMB]?", re.IGNORECASE),
    re.compile(r"\d+ (?:million|billion|thousand)", re.IGNORECASE),
)

VALIDATION_PROMPT = """You are a fact-checker and data validation expert. Verify whether each claim below is accurate and supported by the research data.

CLAIMS TO VERIFY:
{claims}

RESEARCH DATA AVAILABLE:
{corpus}

CONTEXT:
{context}

For EACH claim decide whether it is supported by the research data, and if not whether it is:
- "hallucination": completely made up or contradicted by the research
- "statistic_mismatch": numbers that do not match the research
- "unverified_claim": plausible but not supported by the research

Return ONLY valid JSON with this structure:
{{
  "validations": [
    {{
      "claimIndex": 0,
      "isValid": true,
      "issueType": "none" | "hallucination" | "unverified_claim" | "statistic_mismatch",
      "confidence": "high" | "medium" | "low",
      "explanation": "Brief explanation",
      "suggestedCorrection": "Optional replacement text"
    }}
  ]
}}

Include one entry per claim. Be strict: specific numbers that are not in the research data are problematic."""

CORRECTION_PROMPT = """You are a fact-checker correcting a report to remove hallucinations and unverified claims.

ORIGINAL REPORT:
{report}

QUALITY CONTROL ISSUES FOUND:
{issues}

RESEARCH DATA (verified sources):
{corpus}

Remove or correct every flagged span, replacing it with verified information from the research data where possible and removing it otherwise. Change nothing else: preserve the structure, formatting, tone and style, and do not add new unverified claims.

Return the corrected report only."""


def _is_claim(unit: str) -> bool:
    if len(unit) < 10:
        return False
    if STAT_PATTERN.search(unit):
        return True
    return (
        len(unit) > 20
        and FACTUAL_VERB.search(unit) is not None
        and (any(c.isdigit() for c in unit) or MAGNITUDE_WORD.search(unit) is not None)
    )


def _table_cells(row: str) -> list[str]:
    cells = []
    for cell in row.strip().strip("|").split("|"):
        cell = cell.strip()
        if not cell or not any(c.isalnum() for c in cell):
            continue
        if len(cell) > 15 and (STAT_PATTERN.search(cell) or FACTUAL_VERB.search(cell)):
            cells.append(cell)
    return cells


def extract_claims(text: str) -> list[str]:
    """Pull sentence-sized units that carry a checkable factual assertion.

    Prose is split into sentences; markdown table rows are scanned cell by
    cell, and pure separator rows such as ``|---|---|`` are ignored.
    Exact repeats are returned once, in first-seen order.
    """
    claims: list[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("|"):
            if SEPARATOR_ROW.match(line):
                continue
            claims.extend(_table_cells(line))
            continue
        line = LINE_MARKER.sub("", line).strip()
        for unit in SENTENCE_BREAK.split(line):
            unit = unit.strip()
            if _is_claim(unit):
                claims.append(unit)
    return list(dict.fromkeys(claims))


@dataclass
class ClaimVerdict:
    claim: str
    is_valid: bool
    issue: QCIssue | None = None


@dataclass
class _Tally:
    verified: int = 0
    issues: list[QCIssue] = field(default_factory=list)


def _verdict_issue(claim: str, index: int, entry: dict) -> QCIssue:
    issue_type = str(entry.get("issueType", "unverified_claim"))
    explanation = entry.get("explanation") or "Claim is not supported by the research data"
    if issue_type == "hallucination":
        severity, kind = IssueSeverity.ERROR, IssueKind.HALLUCINATION
    elif issue_type == "statistic_mismatch":
        severity, kind = IssueSeverity.WARNING, IssueKind.STATISTIC_MISMATCH
    else:
        severity, kind = IssueSeverity.WARNING, IssueKind.UNVERIFIED
    return QCIssue(
        severity=severity,
        kind=kind,
        location=f"Claim {index + 1}",
        original_text=claim,
        explanation=explanation,
        suggested_fix=entry.get("suggestedCorrection") or None,
    )


def heuristic_validation(
    report: str,
    corpus: str,
    overlap_threshold: float = 0.3,
    accuracy_threshold: int = 50,
) -> QCResult:
    """Offline validator: a claim counts as verified when enough of its key terms occur in the corpus."""
    claims = extract_claims(report)
    if not claims:
        return QCResult(is_valid=True, used_fallback=True)

    corpus_lower = corpus.lower()
    has_corpus = bool(corpus.strip())
    verified = 0
    issues: list[QCIssue] = []
    for index, claim in enumerate(claims):
        location = f"Claim {index + 1}"
        if not has_corpus:
            issues.append(QCIssue(
                severity=IssueSeverity.WARNING,
                kind=IssueKind.SOURCE_MISSING,
                location=location,
                original_text=claim,
                explanation="No research data available for verification (fallback validation)",
            ))
            continue
        terms = KEY_TERM.findall(claim.lower())
        matched = [term for term in terms if term in corpus_lower]
        if len(matched) / max(len(terms), 1) >= overlap_threshold:
            verified += 1
        else:
            issues.append(QCIssue(
                severity=IssueSeverity.WARNING,
                kind=IssueKind.UNVERIFIED,
                location=location,
                original_text=claim,
                explanation="Claim could not be verified against research data (fallback validation)",
            ))

    score = round(verified / len(claims) * 100)
    return QCResult(
        is_valid=score >= accuracy_threshold,
        issues=tuple(issues),
        verified_count=verified,
        total_count=len(claims),
        accuracy_score=score,
        used_fallback=True,
    )


def quick_validate_section(section: str, corpus: str) -> list[str]:
    """Cheap check for specific statistics that nothing could back up."""
    if corpus.strip():
        return []
    if any(pattern.search(section) for pattern in SUSPICIOUS_PATTERNS):
        return ["Section contains specific statistics but no research data available for verification"]
    return []


class QualityController:
    """Fact-checks a generated report and always produces a ``QCResult``.

    Claims go to the validator in batches so one call covers many claims.
    The whole pass is retried with exponential backoff; when every attempt
    fails, the offline heuristic produces the result instead.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        executor: FallbackExecutor,
        chain: list[str],
        batch_size: int = 20,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        accuracy_threshold: int = 90,
        correction_threshold: int = 85,
        fallback_accuracy_threshold: int = 50,
        overlap_threshold: float = 0.3,
    ) -> None:
        self.backend = backend
        self.executor = executor
        self.chain = chain
        self.batch_size = max(1, batch_size)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.accuracy_threshold = accuracy_threshold
        self.correction_threshold = correction_threshold
        self.fallback_accuracy_threshold = fallback_accuracy_threshold
        self.overlap_threshold = overlap_threshold

    async def validate_claims_batch(
        self, claims: list[str], corpus: str, context: str, offset: int = 0
    ) -> list[ClaimVerdict]:
        """Check a whole batch of claims with a single validator call.

        ``offset`` is the position of the first claim within the report, so
        issue locations number claims across every batch.
        """
        if not claims:
            return []

        prompt = VALIDATION_PROMPT.format(
            claims="\n".join(f'{i + 1}. "{claim}"' for i, claim in enumerate(claims)),
            corpus=corpus or "No research data provided",
            context=context,
        )

        async def call(model: str) -> str:
            return await self.backend.generate(model, prompt, temperature=0.1, json_output=True)

        raw = await self.executor.execute(self.chain, call, "validate-claims")
        data = json.loads(strip_code_fence(raw))
        entries = data.get("validations", []) if isinstance(data, dict) else data

        by_index: dict[int, dict] = {}
        for position, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            try:
                index = int(entry.get("claimIndex", position))
            except (TypeError, ValueError):
                index = position
            by_index.setdefault(index, entry)

        verdicts = []
        for index, claim in enumerate(claims):
            entry = by_index.get(index)
            if entry is None:
                verdicts.append(ClaimVerdict(claim, False, QCIssue(
                    severity=IssueSeverity.WARNING,
                    kind=IssueKind.UNVERIFIED,
                    location=f"Claim {offset + index + 1}",
                    original_text=claim,
                    explanation="Validator returned no verdict for this claim",
                )))
            elif entry.get("isValid") is True:
                verdicts.append(ClaimVerdict(claim, True))
            else:
                verdicts.append(ClaimVerdict(claim, False, _verdict_issue(claim, offset + index, entry)))
        return verdicts

    async def perform(self, report: str, corpus: str, context: ResearchContext) -> QCResult:
        claims = extract_claims(report)
        if not claims:
            logger.info("No checkable claims in report, skipping validation")
            return QCResult(is_valid=True)

        logger.info("Validating %d claims in batches of %d", len(claims), self.batch_size)
        try:
            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.base_delay),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    result = await self._validate(report, claims, corpus, context)
            return result
        except Exception as exc:
            logger.error("Quality control failed after %d attempts, using fallback validation: %s",
                         self.max_attempts, exc)
            return self._fallback(report, corpus, exc)

    async def _validate(
        self, report: str, claims: list[str], corpus: str, context: ResearchContext
    ) -> QCResult:
        tally = _Tally()
        for start in range(0, len(claims), self.batch_size):
            batch = claims[start:start + self.batch_size]
            description = f"Report section containing {len(batch)} claims\n{context.describe()}"
            for verdict in await self.validate_claims_batch(
                batch, corpus, description, offset=start
            ):
                if verdict.is_valid:
                    tally.verified += 1
                elif verdict.issue is not None:
                    tally.issues.append(verdict.issue)

        score = round(tally.verified / len(claims) * 100)
        has_errors = any(i.severity is IssueSeverity.ERROR for i in tally.issues)

        corrections = None
        if score < self.correction_threshold and has_errors:
            corrections = await self._correct(report, tally.issues, corpus)

        logger.info("QC complete: %d/%d claims verified (%d%%)", tally.verified, len(claims), score)
        return QCResult(
            is_valid=not has_errors and score >= self.accuracy_threshold,
            issues=tuple(tally.issues),
            verified_count=tally.verified,
            total_count=len(claims),
            accuracy_score=score,
            corrections=corrections,
        )

    async def _correct(self, report: str, issues: list[QCIssue], corpus: str) -> str | None:
        """One corrected rewrite touching only the flagged spans; ``None`` if it fails."""
        critical = [i for i in issues if i.severity is IssueSeverity.ERROR]
        listing = "\n".join(
            f'{n + 1}. [{issue.kind.value.upper()}] {issue.location}\n'
            f'   Original: "{issue.original_text}"\n'
            f'   Issue: {issue.explanation}'
            + (f"\n   Suggestion: {issue.suggested_fix}" if issue.suggested_fix else "")
            for n, issue in enumerate(critical)
        )
        prompt = CORRECTION_PROMPT.format(
            report=report, issues=listing, corpus=corpus or "No research data available"
        )

        async def call(model: str) -> str:
            return await self.backend.generate(model, prompt, temperature=0.1)

        try:
            corrected = await self.executor.execute(self.chain, call, "correct-report")
        except Exception as exc:
            logger.warning("Correction generation failed, continuing without corrections: %s", exc)
            return None
        return corrected.strip() or None

    def _fallback(self, report: str, corpus: str, error: BaseException) -> QCResult:
        result = heuristic_validation(
            report, corpus, self.overlap_threshold, self.fallback_accuracy_threshold
        )
        notice = QCIssue(
            severity=IssueSeverity.WARNING,
            kind=IssueKind.INCONSISTENCY,
            location="QC process",
            original_text="",
            explanation=(
                "QC validation calls failed, used fallback validation. "
                f"Full validation unavailable: {error}"
            ),
        )
        return QCResult(
            is_valid=result.is_valid,
            issues=(notice, *result.issues),
            verified_count=result.verified_count,
            total_count=result.total_count,
            accuracy_score=result.accuracy_score,
            used_fallback=True,
        )
