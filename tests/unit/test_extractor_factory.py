from unittest.mock import MagicMock

import pytest

from registry_worker.database.models import JobRecord
from registry_worker.extraction.base import BaseDocumentExtractor, ExtractionOutcome
from registry_worker.extraction.factory import ExtractorFactory
from registry_worker.extraction.local_file_extractor import LocalFileExtractor


class RecordingExtractor(BaseDocumentExtractor):
    def __init__(self, settings) -> None:
        self.settings = settings

    def extract(self, job: JobRecord) -> ExtractionOutcome:
        return ExtractionOutcome(success=True, source_path="/tmp/x.pdf")


def _make_settings(extractor_class: str = "", storage_root: str = "") -> MagicMock:
    return MagicMock(extractor_class=extractor_class, storage_root=storage_root)


class TestExtractorFactory:
    def test_defaults_to_local_files(self, tmp_path) -> None:
        extractor = ExtractorFactory.create(_make_settings(storage_root=str(tmp_path)))
        assert isinstance(extractor, LocalFileExtractor)

    def test_default_needs_storage_root(self) -> None:
        with pytest.raises(ValueError, match="storage_root is required"):
            ExtractorFactory.create(_make_settings())

    def test_loads_configured_class_with_settings(self) -> None:
        settings = _make_settings(extractor_class=f"{__name__}:RecordingExtractor")

        extractor = ExtractorFactory.create(settings)

        assert type(extractor).__name__ == "RecordingExtractor"
        assert extractor.settings is settings

    def test_rejects_malformed_target(self) -> None:
        with pytest.raises(ValueError, match="must look like"):
            ExtractorFactory.create(_make_settings(extractor_class="some.module.Class"))

    def test_rejects_non_extractor_class(self) -> None:
        with pytest.raises(ValueError, match="is not a BaseDocumentExtractor"):
            ExtractorFactory.create(
                _make_settings(extractor_class="registry_worker.extraction.base:ExtractionOutcome")
            )
