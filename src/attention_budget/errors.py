"""Domain exceptions shared across the package."""

from __future__ import annotations


class AttentionBudgetError(Exception):
    """Base class for package errors."""


class StoreError(AttentionBudgetError):
    """Persistent store read or write failed."""


class ClassificationError(AttentionBudgetError):
    """Classification adapter could not produce a result."""


class ClassificationPayloadError(ClassificationError):
    """Classification payload does not match the expected structure."""


class RemoteAnalysisError(AttentionBudgetError):
    """Authoritative remote analysis failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteAnalysisTimeout(RemoteAnalysisError):
    """Remote analysis did not complete within the polling budget."""
