from dataclasses import dataclass
from datetime import datetime
from typing import Any


class JobStatus:
    """Status values stored in extraction_queue.status."""

    WAITING = "waiting"
    EXTRACTING = "extracting"
    READY_FOR_OCR = "ready_for_ocr"
    OCR_PROCESSING = "ocr_processing"
    DONE = "done"
    FAILED = "failed"


class DocumentSource:
    """Closed set of registry document sources."""

    INDEX = "index"
    ACTE = "acte"
    PLAN_CADASTRAUX = "plan_cadastraux"

    ALL = (INDEX, ACTE, PLAN_CADASTRAUX)
    NEEDS_OCR = (INDEX, ACTE)


ACTE_TYPES = ("Acte", "Avis d'adresse", "Radiation", "Acte divers")


@dataclass(frozen=True)
class ClaimStage:
    """A claimable hop of the job lifecycle: waiting status -> in-progress status."""

    name: str
    waiting_status: str
    processing_status: str


EXTRACTION_STAGE = ClaimStage("extraction", JobStatus.WAITING, JobStatus.EXTRACTING)
OCR_STAGE = ClaimStage("ocr", JobStatus.READY_FOR_OCR, JobStatus.OCR_PROCESSING)

CLAIM_STAGES: dict[str, ClaimStage] = {
    EXTRACTION_STAGE.name: EXTRACTION_STAGE,
    OCR_STAGE.name: OCR_STAGE,
}


@dataclass
class JobPayload:
    """Kind-specific lookup fields submitted with a job."""

    document_source: str
    document_number: str
    circonscription_fonciere: str
    cadastre: str | None = None
    designation_secondaire: str | None = None
    acte_type: str | None = None


@dataclass
class JobRecord:
    """Represents a row from the extraction_queue table.

    ``environment`` is not stored: it names the datastore the row was read from.
    """

    id: str
    document_source: str
    document_number: str
    circonscription_fonciere: str
    status: str
    attempts: int
    environment: str = ""
    cadastre: str | None = None
    designation_secondaire: str | None = None
    acte_type: str | None = None
    worker_id: str | None = None
    error_message: str | None = None
    source_path: str | None = None
    file_content: str | None = None
    boosted_file_content: str | None = None
    ocr_result: Any = None
    created_at: datetime | None = None
    processing_started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any], environment: str) -> "JobRecord":
        return cls(
            id=str(row["id"]),
            document_source=row["document_source"],
            document_number=row["document_number"],
            circonscription_fonciere=row["circonscription_fonciere"],
            status=row["status"],
            attempts=row["attempts"],
            environment=environment,
            cadastre=row.get("cadastre"),
            designation_secondaire=row.get("designation_secondaire"),
            acte_type=row.get("acte_type"),
            worker_id=row.get("worker_id"),
            error_message=row.get("error_message"),
            source_path=row.get("source_path"),
            file_content=row.get("file_content"),
            boosted_file_content=row.get("boosted_file_content"),
            ocr_result=row.get("ocr_result"),
            created_at=row.get("created_at"),
            processing_started_at=row.get("processing_started_at"),
            completed_at=row.get("completed_at"),
            updated_at=row.get("updated_at"),
        )

    def payload(self) -> JobPayload:
        return JobPayload(
            document_source=self.document_source,
            document_number=self.document_number,
            circonscription_fonciere=self.circonscription_fonciere,
            cadastre=self.cadastre,
            designation_secondaire=self.designation_secondaire,
            acte_type=self.acte_type,
        )

    @property
    def label(self) -> str:
        """Short identifier used in log lines."""
        return f"{self.environment}:{self.id}" if self.environment else self.id
