"""Tests for error classification and the user-visible generation error."""

import httpx
import pytest

from boardroom.errors import (
    AllBackendsFailedError,
    BackendError,
    ConfigurationError,
    ErrorKind,
    classify_error,
    error_codes_from_body,
    to_generation_error,
)


def _status_error(status: int, body: dict) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://example.test/v1/generate")
    response = httpx.Response(status, json=body, request=request)
    return httpx.HTTPStatusError("upstream error", request=request, response=response)


class TestClassifyError:

    def test_429_is_limit(self):
        assert classify_error(BackendError("slow down", status=429)) is ErrorKind.LIMIT_EXCEEDED

    def test_resource_exhausted_code_is_limit(self):
        error = BackendError("bad request", status=400, code="RESOURCE_EXHAUSTED")
        assert classify_error(error) is ErrorKind.LIMIT_EXCEEDED

    def test_auth_status_wins_over_limit_wording(self):
        """A 403 that mentions quota is still an auth failure, never a limit."""
        error = BackendError("quota exceeded for this key", status=403)
        assert classify_error(error) is ErrorKind.AUTH_OR_CONFIG

    def test_configuration_error_is_auth(self):
        assert classify_error(ConfigurationError("GEMINI_API_KEY is not set")) is ErrorKind.AUTH_OR_CONFIG

    def test_auth_phrase_forces_auth_even_with_status(self):
        assert classify_error(BackendError("API key not valid", status=400)) is ErrorKind.AUTH_OR_CONFIG

    def test_not_found_status(self):
        assert classify_error(BackendError("no such model", status=404)) is ErrorKind.NOT_FOUND

    def test_not_found_phrase_without_structure(self):
        error = RuntimeError("models/gemini-9 is not found for API version v1beta")
        assert classify_error(error) is ErrorKind.NOT_FOUND

    def test_limit_phrase_only_without_structure(self):
        assert classify_error(RuntimeError("Daily quota exceeded")) is ErrorKind.LIMIT_EXCEEDED

    def test_limit_phrase_ignored_when_status_present(self):
        error = BackendError("upstream said the quota was exceeded", status=500)
        assert classify_error(error) is ErrorKind.OTHER

    def test_single_word_is_not_a_limit(self):
        assert classify_error(RuntimeError("see the rate limit documentation")) is ErrorKind.OTHER

    def test_unknown_is_other(self):
        assert classify_error(RuntimeError("boom")) is ErrorKind.OTHER

    def test_reads_httpx_status_error_body(self):
        error = _status_error(400, {"error": {"status": "RESOURCE_EXHAUSTED", "message": "x"}})
        assert classify_error(error) is ErrorKind.LIMIT_EXCEEDED

    def test_httpx_401_is_auth(self):
        error = _status_error(401, {"error": {"type": "authentication_error"}})
        assert classify_error(error) is ErrorKind.AUTH_OR_CONFIG

    def test_advancing_kinds(self):
        assert ErrorKind.NOT_FOUND.advances
        assert ErrorKind.LIMIT_EXCEEDED.advances
        assert not ErrorKind.AUTH_OR_CONFIG.advances
        assert not ErrorKind.OTHER.advances


class TestErrorCodesFromBody:

    def test_google_details(self):
        body = {
            "error": {
                "status": "RESOURCE_EXHAUSTED",
                "details": [
                    {"@type": "type.googleapis.com/google.rpc.QuotaFailure"},
                    {"reason": "RATE_LIMIT_EXCEEDED"},
                ],
            }
        }
        assert error_codes_from_body(body) == {
            "RESOURCE_EXHAUSTED", "QuotaFailure", "RATE_LIMIT_EXCEEDED",
        }

    def test_anthropic_type(self):
        assert error_codes_from_body({"type": "error", "error": {"type": "rate_limit_error"}}) == {
            "rate_limit_error",
        }

    @pytest.mark.parametrize("body", [None, "oops", {"error": "flat string"}, {}])
    def test_unstructured_bodies(self, body):
        assert error_codes_from_body(body) == set()


class TestToGenerationError:

    def test_rate_limit_with_retry_hint(self):
        last = BackendError("Too many requests", status=429, retry_after=30)
        error = to_generation_error(AllBackendsFailedError("generate", ["m1", "m2"], last))
        assert error.kind is ErrorKind.LIMIT_EXCEEDED
        assert error.retry_after == 30
        assert "Rate limit" in str(error)
        assert "30 seconds" in str(error)

    def test_quota_exhaustion_is_distinguished(self):
        last = BackendError("Resource has been exhausted", status=429, code="RESOURCE_EXHAUSTED")
        error = to_generation_error(AllBackendsFailedError("generate", ["m1"], last))
        assert error.kind is ErrorKind.LIMIT_EXCEEDED
        assert "quota" in str(error).lower()
        assert "a few minutes" in str(error)

    def test_auth_has_remediation(self):
        error = to_generation_error(ConfigurationError("GEMINI_API_KEY is not set"))
        assert error.kind is ErrorKind.AUTH_OR_CONFIG
        assert "API key" in str(error)

    def test_generic_failure(self):
        error = to_generation_error(RuntimeError("connection reset"))
        assert error.kind is ErrorKind.OTHER
        assert str(error) == "Report generation failed: connection reset"
