"""Error taxonomy for upstream failures and the single classification function."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Iterable

import httpx


class ErrorKind(str, Enum):
    NOT_FOUND = "not-found"
    LIMIT_EXCEEDED = "limit-exceeded"
    AUTH_OR_CONFIG = "auth-or-config"
    OTHER = "other"

    @property
    def advances(self) -> bool:
        """Whether a failure of this kind moves on to the next backend."""
        return self in (ErrorKind.NOT_FOUND, ErrorKind.LIMIT_EXCEEDED)


class BackendError(Exception):
    """An upstream failure with whatever structured detail the service exposed."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        reason: str | None = None,
        retry_after: float | None = None,
        backend: str | None = None,
        codes: Iterable[str] = (),
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.reason = reason
        self.codes = frozenset(codes)
        self.retry_after = retry_after
        self.backend = backend


class ConfigurationError(BackendError):
    """A backend cannot be used because it is not configured (e.g. no API key)."""


class AllBackendsFailedError(Exception):
    """Every backend in a chain was tried and none succeeded."""

    def __init__(self, context: str, chain: list[str], last_error: BaseException) -> None:
        self.context = context
        self.chain = list(chain)
        self.last_error = last_error
        self.kind = classify_error(last_error)
        super().__init__(
            f"All backends failed for {context} ({', '.join(chain)}). "
            f"Last error: {last_error}"
        )


class GenerationError(Exception):
    """The single user-visible failure of report generation."""

    def __init__(self, message: str, kind: ErrorKind, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.retry_after = retry_after


# Structured signals.  Codes are compared exactly, never as substrings.
AUTH_STATUSES = {401, 403}
AUTH_CODES = {
    "UNAUTHENTICATED",
    "PERMISSION_DENIED",
    "API_KEY_INVALID",
    "authentication_error",
    "permission_error",
    "invalid_api_key",
}
LIMIT_STATUSES = {429}
LIMIT_CODES = {
    "RESOURCE_EXHAUSTED",
    "QuotaFailure",
    "RATE_LIMIT_EXCEEDED",
    "TokenLimitExceeded",
    "rate_limit_error",
}
NOT_FOUND_STATUSES = {404}
NOT_FOUND_CODES = {"NOT_FOUND", "not_found_error"}

# Phrase fallbacks.  Each entry is a combination that must appear in full.
AUTH_PHRASES = (
    ("api key",),
    ("api_key",),
    ("unauthorized",),
    ("unauthenticated",),
    ("authentication",),
    ("permission denied",),
    ("not configured",),
)
LIMIT_PHRASES = (
    ("quota", "exceeded"),
    ("quota", "reached"),
    ("rate limit", "exceeded"),
    ("token limit", "exceeded"),
    ("token limit", "too many"),
)
NOT_FOUND_PHRASES = (
    ("model", "is not found"),
    ("is not supported for", "generatecontent"),
)


def _status_of(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _codes_of(error: BaseException) -> set[str]:
    codes: set[str] = set()
    for attr in ("code", "reason"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and value:
            codes.add(value)
    codes |= set(getattr(error, "codes", ()) or ())
    if isinstance(error, httpx.HTTPStatusError):
        codes |= error_codes_from_body(_safe_json(error.response))
    return codes


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return None


def error_codes_from_body(body: Any) -> set[str]:
    """Collect structured error codes from a JSON error body.

    Understands the Google shape (``error.status`` / ``error.details[].reason``)
    and the Anthropic shape (``error.type``).
    """
    codes: set[str] = set()
    if not isinstance(body, dict):
        return codes
    error = body.get("error")
    if not isinstance(error, dict):
        return codes
    for key in ("status", "type", "code"):
        value = error.get(key)
        if isinstance(value, str) and value:
            codes.add(value)
    for detail in error.get("details") or []:
        if isinstance(detail, dict):
            reason = detail.get("reason")
            if isinstance(reason, str) and reason:
                codes.add(reason)
            type_url = detail.get("@type", "")
            if isinstance(type_url, str) and type_url.endswith("QuotaFailure"):
                codes.add("QuotaFailure")
    return codes


def _matches(message: str, phrases: tuple[tuple[str, ...], ...]) -> bool:
    return any(all(part in message for part in combo) for combo in phrases)


def classify_error(error: BaseException) -> ErrorKind:
    """Classify an upstream failure.

    Structured signals (HTTP status, error codes) decide whenever present.
    Free-text matching is a last resort: authentication phrases may still
    force ``auth-or-config``, but limit and not-found phrases only count
    when the error carries no status or code at all.
    """
    if isinstance(error, ConfigurationError):
        return ErrorKind.AUTH_OR_CONFIG

    status = _status_of(error)
    codes = _codes_of(error)
    message = str(error).lower()

    if status in AUTH_STATUSES or codes & AUTH_CODES:
        return ErrorKind.AUTH_OR_CONFIG
    if status in LIMIT_STATUSES or codes & LIMIT_CODES:
        return ErrorKind.LIMIT_EXCEEDED
    if status in NOT_FOUND_STATUSES or codes & NOT_FOUND_CODES:
        return ErrorKind.NOT_FOUND

    if _matches(message, AUTH_PHRASES):
        return ErrorKind.AUTH_OR_CONFIG
    if status is not None or codes:
        return ErrorKind.OTHER

    if _matches(message, LIMIT_PHRASES):
        return ErrorKind.LIMIT_EXCEEDED
    if _matches(message, NOT_FOUND_PHRASES):
        return ErrorKind.NOT_FOUND
    return ErrorKind.OTHER


def retry_after_of(error: BaseException) -> float | None:
    """Seconds the upstream asked us to wait, if it said."""
    if isinstance(error, AllBackendsFailedError):
        return retry_after_of(error.last_error)
    value = getattr(error, "retry_after", None)
    return float(value) if isinstance(value, (int, float)) else None


def to_generation_error(error: BaseException) -> GenerationError:
    """Turn a terminal generation failure into the user-visible error."""
    kind = error.kind if isinstance(error, AllBackendsFailedError) else classify_error(error)
    root = error.last_error if isinstance(error, AllBackendsFailedError) else error
    retry_after = retry_after_of(error)

    if kind is ErrorKind.LIMIT_EXCEEDED:
        wait = f"{int(retry_after)} seconds" if retry_after else "a few minutes"
        codes = _codes_of(root)
        temporary = retry_after is not None or "RATE_LIMIT_EXCEEDED" in codes or (
            "rate limit" in str(root).lower() or "too many requests" in str(root).lower()
        )
        if temporary:
            message = (
                "Rate limit exceeded: too many requests to the generation service. "
                f"Please wait {wait} before trying again."
            )
        else:
            message = (
                "API quota exceeded: the daily request quota for the generation service "
                f"has been reached. Please wait {wait} before trying again, or check the "
                "usage dashboard if you are on a paid plan."
            )
        return GenerationError(message, kind, retry_after)

    if kind is ErrorKind.AUTH_OR_CONFIG:
        return GenerationError(
            "Generation service configuration error: check that the API key is set "
            f"and valid, then restart the service. ({root})",
            kind,
        )

    return GenerationError(f"Report generation failed: {root}", kind)
