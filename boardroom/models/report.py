"""Generation and quality-control result models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueKind(str, Enum):
    HALLUCINATION = "hallucination"
    UNVERIFIED = "unverified"
    STATISTIC_MISMATCH = "statistic-mismatch"
    SOURCE_MISSING = "source-missing"
    INCONSISTENCY = "inconsistency"


@dataclass(frozen=True)
class QCIssue:
    """A problem found while fact-checking a report."""

    severity: IssueSeverity
    kind: IssueKind
    location: str
    original_text: str
    explanation: str
    suggested_fix: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> QCIssue:
        return cls(
            severity=IssueSeverity(data["severity"]),
            kind=IssueKind(data["kind"]),
            location=data.get("location", ""),
            original_text=data.get("original_text", ""),
            explanation=data.get("explanation", ""),
            suggested_fix=data.get("suggested_fix"),
        )


@dataclass(frozen=True)
class QCResult:
    """Outcome of one quality-control pass over one generated report."""

    is_valid: bool
    issues: tuple[QCIssue, ...] = ()
    verified_count: int = 0
    total_count: int = 0
    accuracy_score: int = 100
    corrections: str | None = None
    used_fallback: bool = False

    @property
    def has_errors(self) -> bool:
        return any(issue.severity is IssueSeverity.ERROR for issue in self.issues)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["issues"] = [
            {**asdict(issue), "severity": issue.severity.value, "kind": issue.kind.value}
            for issue in self.issues
        ]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> QCResult:
        return cls(
            is_valid=bool(data["is_valid"]),
            issues=tuple(QCIssue.from_dict(i) for i in data.get("issues", [])),
            verified_count=int(data.get("verified_count", 0)),
            total_count=int(data.get("total_count", 0)),
            accuracy_score=int(data.get("accuracy_score", 100)),
            corrections=data.get("corrections"),
            used_fallback=bool(data.get("used_fallback", False)),
        )


@dataclass
class GenerationResult:
    """Text produced by the streaming generator."""

    text: str
    research_data: str = ""
    model: str | None = None
    streamed: bool = True
    partial: bool = False
    cached: bool = False


@dataclass
class PipelineResult:
    """Everything the pipeline hands back for one report."""

    report: str
    research_data: str
    qc: QCResult
    verified_by: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cached: bool = False
    partial: bool = False
