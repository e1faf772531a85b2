from abc import ABC, abstractmethod
from dataclasses import dataclass

from registry_worker.database.models import JobRecord


@dataclass
class ExtractionOutcome:
    """Result reported by the page-automation layer for one job."""

    success: bool
    source_path: str | None = None
    error: str | None = None
    retryable: bool = True


class BaseDocumentExtractor(ABC):
    """Contract for the page-automation layer that downloads registry documents."""

    @abstractmethod
    def extract(self, job: JobRecord) -> ExtractionOutcome:
        """Download the document described by ``job``.

        Returns:
            ExtractionOutcome with the storage path of the downloaded file on
            success, or a structured failure (``retryable=False`` for lookups
            the registry will never satisfy, such as an unknown document number).
        """
