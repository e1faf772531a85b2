import re
from dataclasses import replace

from registry_worker.database.models import ACTE_TYPES, DocumentSource, JobPayload
from registry_worker.exceptions import JobValidationError

_WHITESPACE_RE = re.compile(r"\s+")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = _WHITESPACE_RE.sub(" ", value).strip()
    return value or None


def validate_job_payload(payload: JobPayload) -> JobPayload:
    """Validate the lookup fields of a job as a unit.

    Returns a copy with whitespace collapsed in every text field.

    Raises:
        JobValidationError: if a field required by the document source is
            missing or a field the source forbids is present.
    """
    source = (payload.document_source or "").strip().lower()
    if source not in DocumentSource.ALL:
        raise JobValidationError(
            f"Unknown document_source {payload.document_source!r}. "
            f"Choose from: {list(DocumentSource.ALL)}"
        )

    cleaned = replace(
        payload,
        document_source=source,
        document_number=_clean(payload.document_number) or "",
        circonscription_fonciere=_clean(payload.circonscription_fonciere) or "",
        cadastre=_clean(payload.cadastre),
        designation_secondaire=_clean(payload.designation_secondaire),
        acte_type=_clean(payload.acte_type),
    )

    if not cleaned.document_number:
        raise JobValidationError("document_number is required")
    if not cleaned.circonscription_fonciere:
        raise JobValidationError("circonscription_fonciere is required")

    if source in (DocumentSource.INDEX, DocumentSource.PLAN_CADASTRAUX):
        if not cleaned.cadastre:
            raise JobValidationError(f"cadastre is required for document_source={source}")
        if cleaned.acte_type is not None:
            raise JobValidationError(f"acte_type is not allowed for document_source={source}")
    else:
        if cleaned.acte_type not in ACTE_TYPES:
            raise JobValidationError(
                f"acte_type must be one of {list(ACTE_TYPES)} for document_source=acte, "
                f"got {payload.acte_type!r}"
            )
        if cleaned.cadastre is not None:
            raise JobValidationError("cadastre is not allowed for document_source=acte")

    return cleaned
