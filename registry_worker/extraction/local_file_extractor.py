"""Example extractor adapter.

Use this module as a reference when implementing the real page-automation
adapter. It performs no browser work: documents are looked up in a local
directory by source and document number.
"""

import re
from pathlib import Path

from registry_worker.database.models import JobRecord
from registry_worker.extraction.base import BaseDocumentExtractor, ExtractionOutcome

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def document_file_name(job: JobRecord) -> str:
    """Build ``{source}_{document_number}.pdf`` with filesystem-safe characters."""
    number = _UNSAFE_RE.sub("_", job.document_number).strip("_")
    return f"{job.document_source}_{number}.pdf"


class LocalFileExtractor(BaseDocumentExtractor):
    """Resolves documents already present under a root directory."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    def extract(self, job: JobRecord) -> ExtractionOutcome:
        path = self._root / document_file_name(job)
        if not path.exists():
            return ExtractionOutcome(
                success=False,
                error=f"Document not found: {path}",
                retryable=False,
            )
        return ExtractionOutcome(success=True, source_path=path.resolve().as_uri())
