"""
Classification Errors
=====================

Exceptions raised by the classification engine. Every error carries the
contractor (when known) and the pipeline stage so callers can log, audit
and decide on retries.

Version: 0.1.0
"""

from enum import Enum


class Stage(str, Enum):
    """Pipeline stage where an error occurred."""

    SUBMISSION = "submission"
    ELIGIBILITY = "eligibility"
    DERIVATION = "derivation"
    FACTOR_READ = "factor_read"
    PERSISTENCE = "persistence"
    HISTORY = "history"
    AGGREGATE = "aggregate"


class ClassificationError(Exception):
    """Base error for the classification engine."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        contractor_id: str | None = None,
        stage: Stage | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.contractor_id = contractor_id
        self.stage = stage

    def to_dict(self) -> dict[str, str | bool | None]:
        """Structured form for logs and audit records."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "contractor_id": self.contractor_id,
            "stage": self.stage.value if self.stage else None,
            "retryable": self.retryable,
        }


class FactorValidationError(ClassificationError):
    """Factor submission does not match its category's value contract."""

    def __init__(
        self,
        message: str,
        *,
        contractor_id: str | None = None,
        category: str | None = None,
    ) -> None:
        super().__init__(message, contractor_id=contractor_id, stage=Stage.SUBMISSION)
        self.category = category


class ContractorNotEligibleError(ClassificationError):
    """Contractor is unknown or not active."""


class UpstreamDataError(ClassificationError):
    """Time-tracking, engagement or contractor data could not be read."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        source: str,
        contractor_id: str | None = None,
        stage: Stage | None = None,
    ) -> None:
        super().__init__(message, contractor_id=contractor_id, stage=stage)
        self.source = source

    def to_dict(self) -> dict[str, str | bool | None]:
        return {**super().to_dict(), "source": self.source}


class StorageError(ClassificationError):
    """Factor, assessment or snapshot data could not be read or written."""

    retryable = True


class AggregateRebuildError(ClassificationError):
    """Aggregate rebuild failed; the previously published snapshot stays live."""

    retryable = True
