"""Error taxonomy for submission, polling and result handling."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL_FORMAT = "invalid_credential_format"
    UPSTREAM_AUTH_FAILURE = "upstream_auth_failure"
    UPSTREAM_RATE_LIMITED = "upstream_rate_limited"
    UPSTREAM_BAD_REQUEST = "upstream_bad_request"
    UPSTREAM_UNKNOWN = "upstream_unknown"
    RESULT_PARSE_FAILURE = "result_parse_failure"
    SANITIZATION_FAILURE = "sanitization_failure"
    TRANSPORT_FAILURE = "transport_failure"
    JOB_NOT_FOUND = "job_not_found"
    JOB_TIMEOUT = "job_timeout"


class ScribeError(RuntimeError):
    """Base error; `kind` tells callers how to react."""

    kind: ErrorKind = ErrorKind.UPSTREAM_UNKNOWN
    retryable: bool = False

    def __init__(self, message: str, status: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class MissingCredential(ScribeError):
    kind = ErrorKind.MISSING_CREDENTIAL


class InvalidCredentialFormat(ScribeError):
    kind = ErrorKind.INVALID_CREDENTIAL_FORMAT


class ProviderError(ScribeError):
    """Provider call failed."""


class UpstreamAuthFailure(ProviderError):
    kind = ErrorKind.UPSTREAM_AUTH_FAILURE


class UpstreamRateLimited(ProviderError):
    kind = ErrorKind.UPSTREAM_RATE_LIMITED
    retryable = True


class UpstreamBadRequest(ProviderError):
    kind = ErrorKind.UPSTREAM_BAD_REQUEST


class UpstreamUnknown(ProviderError):
    kind = ErrorKind.UPSTREAM_UNKNOWN
    retryable = True


class TransportFailure(ProviderError):
    kind = ErrorKind.TRANSPORT_FAILURE
    retryable = True


class ResultParseFailure(ScribeError):
    kind = ErrorKind.RESULT_PARSE_FAILURE


class SanitizationFailure(ScribeError):
    """Sanitized text fell below the minimum length.

    `marker` is the `Error:`-prefixed text stored as the result content.
    """

    kind = ErrorKind.SANITIZATION_FAILURE

    def __init__(self, message: str, marker: str) -> None:
        super().__init__(message)
        self.marker = marker


class JobNotFound(ScribeError):
    kind = ErrorKind.JOB_NOT_FOUND


class JobTimeout(ScribeError):
    kind = ErrorKind.JOB_TIMEOUT


_STATUS_ERRORS = {
    401: (UpstreamAuthFailure, "Authentication failed. Verify the Anthropic API key."),
    429: (UpstreamRateLimited, "Rate limit exceeded. Try again later."),
    400: (UpstreamBadRequest, "Invalid request format. Check the project configuration."),
}


def error_for_status(status: int, body: str = "") -> ProviderError:
    """Maps a non-2xx HTTP status onto the matching provider error."""
    error_cls, message = _STATUS_ERRORS.get(
        status, (UpstreamUnknown, f"Upstream request failed with status {status}")
    )
    detail = (body or "").strip()[:400]
    if detail:
        message = f"{message} ({detail})"
    return error_cls(message, status=status, body=body)
