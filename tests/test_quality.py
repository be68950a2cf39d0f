"""Tests for claim extraction and the quality controller."""

import json

import pytest

from boardroom.errors import BackendError
from boardroom.models.brief import ResearchContext
from boardroom.models.report import IssueKind, IssueSeverity
from boardroom.orchestrator.fallback import FallbackExecutor
from boardroom.orchestrator.quality import (
    QualityController,
    extract_claims,
    heuristic_validation,
    quick_validate_section,
)
from tests.fakes import ScriptedBackend


def _verdicts(*entries):
    return json.dumps({"validations": [
        {"claimIndex": i, **entry} for i, entry in enumerate(entries)
    ]})


def _controller(backend, **kwargs):
    kwargs.setdefault("base_delay", 0)
    return QualityController(backend, FallbackExecutor(), ["m1"], **kwargs)


def _claims_report(n):
    return "\n".join(f"Segment {i} grew {i + 1}% in the last quarter." for i in range(n))


class TestExtractClaims:

    def test_percentage_sentence(self):
        claims = extract_claims("Revenue grew 40% last year.")
        assert len(claims) == 1
        assert "40%" in claims[0]

    def test_separator_row_yields_nothing(self):
        assert extract_claims("|---|---|---|") == []

    def test_table_cells_are_scanned(self):
        table = "| Metric | Finding |\n|:---|---:|\n| Market share | Acme holds 35% of the market |"
        assert extract_claims(table) == ["Acme holds 35% of the market"]

    def test_factual_verb_with_magnitude(self):
        claims = extract_claims("The addressable market is worth several billion dollars.")
        assert claims == ["The addressable market is worth several billion dollars."]

    def test_plain_opinion_is_not_a_claim(self):
        assert extract_claims("The board was impressed with the onboarding flow.") == []

    def test_exact_repeats_are_deduplicated(self):
        text = "Churn fell to 3% in 2024. Churn fell to 3% in 2024."
        assert extract_claims(text) == ["Churn fell to 3% in 2024."]

    def test_markdown_markers_are_stripped(self):
        assert extract_claims("- **Adoption** reached 62% among CFOs.") == [
            "**Adoption** reached 62% among CFOs."
        ]


@pytest.mark.asyncio
async def test_no_claims_skips_every_call():
    backend = ScriptedBackend()

    result = await _controller(backend).perform("A calm qualitative report.", "", ResearchContext())

    assert result.is_valid
    assert result.accuracy_score == 100
    assert result.total_count == 0
    assert backend.calls == []


@pytest.mark.asyncio
async def test_claims_are_validated_in_batches():
    backend = ScriptedBackend(responder=lambda model, prompt: _verdicts(*[{"isValid": True}] * 20))

    result = await _controller(backend, batch_size=20).perform(
        _claims_report(45), "corpus", ResearchContext()
    )

    assert len(backend.calls) == 3
    assert result.total_count == 45
    assert result.verified_count == 45
    assert result.accuracy_score == 100
    assert result.is_valid
    assert not result.used_fallback


@pytest.mark.asyncio
async def test_issue_locations_count_claims_across_batches():
    backend = ScriptedBackend(responder=lambda model, prompt: _verdicts(
        {"isValid": False, "issueType": "statistic_mismatch"}, {"isValid": True},
    ))

    result = await _controller(backend, batch_size=2).perform(
        _claims_report(3), "corpus", ResearchContext()
    )

    assert len(backend.calls) == 2
    assert [issue.location for issue in result.issues] == ["Claim 1", "Claim 3"]
    assert result.issues[1].original_text.startswith("Segment 2 grew 3%")


@pytest.mark.asyncio
async def test_verdicts_map_to_issue_severity():
    backend = ScriptedBackend(responder=lambda model, prompt: _verdicts(
        {"isValid": True},
        {"isValid": False, "issueType": "hallucination", "explanation": "made up"},
        {"isValid": False, "issueType": "statistic_mismatch"},
        {"isValid": False, "issueType": "unverified_claim", "suggestedCorrection": "say 'most'"},
    ))

    result = await _controller(backend, correction_threshold=0).perform(
        _claims_report(5), "corpus", ResearchContext()
    )

    kinds = [(i.severity, i.kind) for i in result.issues]
    assert kinds == [
        (IssueSeverity.ERROR, IssueKind.HALLUCINATION),
        (IssueSeverity.WARNING, IssueKind.STATISTIC_MISMATCH),
        (IssueSeverity.WARNING, IssueKind.UNVERIFIED),
        # claim 5 got no verdict at all
        (IssueSeverity.WARNING, IssueKind.UNVERIFIED),
    ]
    assert result.issues[2].suggested_fix == "say 'most'"
    assert result.accuracy_score == 20
    assert not result.is_valid


@pytest.mark.asyncio
async def test_validity_threshold_is_configurable():
    backend = ScriptedBackend(responder=lambda model, prompt: _verdicts(
        *[{"isValid": True}] * 4, {"isValid": False, "issueType": "unverified_claim"},
    ))

    strict = await _controller(backend).perform(_claims_report(5), "corpus", ResearchContext())
    lenient = await _controller(backend, accuracy_threshold=80).perform(
        _claims_report(5), "corpus", ResearchContext()
    )

    assert strict.accuracy_score == 80 and not strict.is_valid
    assert lenient.is_valid


@pytest.mark.asyncio
async def test_low_score_with_errors_requests_one_correction():
    def respond(model, prompt):
        if "correcting a report" in prompt:
            return "Corrected report."
        return _verdicts({"isValid": True}, {"isValid": False, "issueType": "hallucination"})

    backend = ScriptedBackend(responder=respond)

    result = await _controller(backend).perform(_claims_report(2), "corpus", ResearchContext())

    assert result.accuracy_score == 50
    assert result.corrections == "Corrected report."
    assert sum("correcting a report" in prompt for _, prompt in backend.calls) == 1


@pytest.mark.asyncio
async def test_correction_failure_keeps_the_result():
    def respond(model, prompt):
        if "correcting a report" in prompt:
            raise BackendError("internal", status=500)
        return _verdicts({"isValid": True}, {"isValid": False, "issueType": "hallucination"})

    backend = ScriptedBackend(responder=respond)

    result = await _controller(backend).perform(_claims_report(2), "corpus", ResearchContext())

    assert result.corrections is None
    assert result.has_errors
    assert not result.used_fallback


@pytest.mark.asyncio
async def test_no_correction_without_errors():
    backend = ScriptedBackend(responder=lambda model, prompt: _verdicts(
        {"isValid": False, "issueType": "unverified_claim"},
        {"isValid": False, "issueType": "unverified_claim"},
    ))

    result = await _controller(backend).perform(_claims_report(2), "corpus", ResearchContext())

    assert result.accuracy_score == 0
    assert result.corrections is None
    assert len(backend.calls) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_fall_back_to_heuristic():
    backend = ScriptedBackend(responses={"m1": [BackendError("internal", status=500)]})
    corpus = "Segment 0 grew 1% in the last quarter according to the survey."

    result = await _controller(backend, max_attempts=3).perform(
        _claims_report(2), corpus, ResearchContext()
    )

    assert len(backend.calls) == 3
    assert result.used_fallback
    assert result.total_count == 2
    notice = result.issues[0]
    assert notice.severity is IssueSeverity.WARNING
    assert "fallback validation" in notice.explanation


@pytest.mark.asyncio
async def test_unparseable_verdicts_are_retried_then_fall_back():
    backend = ScriptedBackend(responses={"m1": ["not json at all"]})

    result = await _controller(backend, max_attempts=2).perform(
        _claims_report(1), "", ResearchContext()
    )

    assert len(backend.calls) == 2
    assert result.used_fallback
    assert any(i.kind is IssueKind.SOURCE_MISSING for i in result.issues)


@pytest.mark.asyncio
async def test_retry_recovers_on_later_attempt():
    backend = ScriptedBackend(responses={"m1": [
        BackendError("internal", status=500),
        _verdicts({"isValid": True}),
    ]})

    result = await _controller(backend).perform(_claims_report(1), "corpus", ResearchContext())

    assert not result.used_fallback
    assert result.accuracy_score == 100


class TestHeuristicValidation:

    def test_overlapping_terms_count_as_verified(self):
        report = "Cloud spending grew 20% across enterprises."
        corpus = "Analysts report cloud spending grew 20% across large enterprises."

        result = heuristic_validation(report, corpus)

        assert result.verified_count == 1
        assert result.accuracy_score == 100
        assert result.is_valid

    def test_unrelated_corpus_leaves_claim_unverified(self):
        result = heuristic_validation("Robot sales jumped 70% overnight.", "Gardening tips for spring.")

        assert result.verified_count == 0
        assert result.issues[0].kind is IssueKind.UNVERIFIED
        assert not result.is_valid

    def test_missing_corpus_flags_source_missing(self):
        result = heuristic_validation("Robot sales jumped 70% overnight.", "")

        assert result.issues[0].kind is IssueKind.SOURCE_MISSING

    def test_overlap_threshold_is_tunable(self):
        report = "Robot sales jumped 70% overnight in Ohio."
        corpus = "robot"

        assert heuristic_validation(report, corpus, overlap_threshold=0.1).verified_count == 1
        assert heuristic_validation(report, corpus, overlap_threshold=0.5).verified_count == 0


class TestQuickValidateSection:

    def test_flags_statistics_without_corpus(self):
        assert quick_validate_section("Costs fell by $5M after a 12% reduction in staff.", "")

    def test_silent_with_corpus(self):
        assert quick_validate_section("A 12% increase.", "some research") == []

    def test_silent_without_statistics(self):
        assert quick_validate_section("Qualitative notes only.", "") == []
