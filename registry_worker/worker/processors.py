from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from registry_worker.config.settings import Settings
from registry_worker.database.models import DocumentSource, JobRecord, JobStatus
from registry_worker.exceptions import ExtractionFailedError, FatalJobError
from registry_worker.extraction.base import BaseDocumentExtractor
from registry_worker.logging.logger import Log
from registry_worker.ocr.exceptions import PartialDocumentError
from registry_worker.ocr.pipeline import OCRPipeline


@dataclass
class JobOutcome:
    """Status and result columns to write when a job succeeds."""

    status: str
    fields: dict[str, Any] = field(default_factory=dict)


class BaseJobProcessor(ABC):
    """Contract for the per-kind work done on a claimed job."""

    @abstractmethod
    def process(self, job: JobRecord) -> JobOutcome:
        """Do the work for one job.

        Raises:
            FatalJobError: for failures that must not be retried.
            Exception: anything else is treated as retryable.
        """


class OcrJobProcessor(BaseJobProcessor):
    """Runs the OCR pipeline and applies the partial-result policy."""

    def __init__(self, pipeline: OCRPipeline, settings: Settings) -> None:
        self._pipeline = pipeline
        self._settings = settings

    def process(self, job: JobRecord) -> JobOutcome:
        document = self._pipeline.process(job)
        fields = {
            "file_content": document.raw_text,
            "boosted_file_content": document.corrected_text,
        }
        if not document.complete:
            if job.document_source not in self._settings.ocr_partial_result_sources:
                raise PartialDocumentError(
                    f"Pages {document.failed_pages} incomplete and partial results are not "
                    f"accepted for {job.document_source}",
                    row_fields=fields,
                )
            Log.warning(f"[{job.label}] Accepting partial document, incomplete pages {document.failed_pages}")
        return JobOutcome(status=JobStatus.DONE, fields={**fields, "ocr_result": document.to_dict()})


class ExtractionJobProcessor(BaseJobProcessor):
    """Calls the page-automation layer and hands the job to OCR when needed."""

    def __init__(self, extractor: BaseDocumentExtractor) -> None:
        self._extractor = extractor

    def process(self, job: JobRecord) -> JobOutcome:
        outcome = self._extractor.extract(job)
        if not outcome.success:
            message = outcome.error or "Extraction failed without an error message"
            if outcome.retryable:
                raise ExtractionFailedError(message)
            raise FatalJobError(message)
        if not outcome.source_path:
            raise ExtractionFailedError("Extractor reported success without a source_path")

        if job.document_source in DocumentSource.NEEDS_OCR:
            status = JobStatus.READY_FOR_OCR
        else:
            status = JobStatus.DONE
        return JobOutcome(status=status, fields={"source_path": outcome.source_path})
