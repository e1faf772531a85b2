"""Job failure taxonomy shared by the queue, the runner and the pipelines.

The runner only looks at the two branches below ``JobError``: a
``FatalJobError`` closes the job as failed, anything else (including
exceptions outside this hierarchy) returns the job to its waiting status.
"""

from typing import Any


class JobError(Exception):
    """Base exception for job processing failures.

    ``row_fields`` carries diagnostic columns (raw or corrected text) to keep
    on the row when the failure becomes terminal.
    """

    def __init__(self, message: str = "", *, row_fields: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.row_fields = dict(row_fields or {})


class RetryableJobError(JobError):
    """Transient failure: the job goes back to waiting with attempts incremented."""


class FatalJobError(JobError):
    """Non-retryable failure: the job is closed as failed immediately."""


class JobValidationError(FatalJobError):
    """Raised when a job payload is missing or has inconsistent lookup fields."""


class SanitizationError(FatalJobError):
    """Raised when corrected OCR text cannot be parsed even partially."""


class RateBudgetExhaustedError(RetryableJobError):
    """Raised when the shared rate budget stays saturated past the back-off budget."""


class ExtractionFailedError(RetryableJobError):
    """Raised when the page-automation collaborator could not download the document."""
