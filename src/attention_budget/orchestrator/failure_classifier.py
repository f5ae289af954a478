"""Deterministic remote-analysis failure classification for the poll retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from attention_budget.orchestrator.models import FailureClass

REMOTE_FAILURE_CLASSIFIER_VERSION = 1

_RETRYABLE_CLASSES = frozenset(
    {
        FailureClass.TIMEOUT,
        FailureClass.RATE_LIMITED,
        FailureClass.BACKEND_TRANSIENT,
    },
)
_TRANSIENT_STATUS_CODES: tuple[int, ...] = (500, 502, 503, 504)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "try again later",
    "please retry",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "could not resolve host",
    "dns",
)
_INVALID_RESPONSE_PATTERNS: tuple[str, ...] = (
    "unknown status",
    "invalid json",
    "invalid classification",
    "expecting value",
)


@dataclass(slots=True)
class RemoteFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        return self.failure_class in _RETRYABLE_CLASSES

    def to_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for logs and task debug info."""

        return {
            "classifier_version": REMOTE_FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_remote_failure(
    *,
    status_code: int | None,
    message: str,
    timed_out: bool = False,
    remote_reported: bool = False,
) -> RemoteFailureClassification:
    """Classify a failed remote call into a deterministic retry class."""

    if timed_out:
        return RemoteFailureClassification(
            failure_class=FailureClass.TIMEOUT,
            reason_code="remote_timeout",
            matched_rule="timeout",
            matched_pattern=None,
        )

    if remote_reported:
        return RemoteFailureClassification(
            failure_class=FailureClass.REMOTE_ERROR,
            reason_code="remote_reported_error",
            matched_rule="remote_status_error",
            matched_pattern=None,
        )

    haystack = message.lower()

    pattern = _first_match(haystack, _RATE_LIMIT_PATTERNS)
    if status_code == 429 or pattern is not None:
        return RemoteFailureClassification(
            failure_class=FailureClass.RATE_LIMITED,
            reason_code="remote_rate_limited",
            matched_rule="rate_limit_status" if status_code == 429 else "rate_limit_pattern",
            matched_pattern=pattern,
        )

    if status_code in _TRANSIENT_STATUS_CODES:
        return RemoteFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"remote_http_{status_code}",
            matched_rule="transient_status_code",
            matched_pattern=None,
        )

    pattern = _first_match(haystack, _INVALID_RESPONSE_PATTERNS)
    if pattern is not None:
        return RemoteFailureClassification(
            failure_class=FailureClass.INVALID_RESPONSE,
            reason_code="remote_invalid_response",
            matched_rule="invalid_response",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    if pattern is not None or status_code is None:
        return RemoteFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code="remote_transport_transient",
            matched_rule="generic_transient" if pattern is not None else "transport_error",
            matched_pattern=pattern,
        )

    return RemoteFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code=f"remote_http_{status_code}",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
