import importlib

from registry_worker.config.settings import Settings
from registry_worker.extraction.base import BaseDocumentExtractor
from registry_worker.extraction.local_file_extractor import LocalFileExtractor


class ExtractorFactory:
    """Creates the configured page-automation adapter."""

    @classmethod
    def create(cls, settings: Settings) -> BaseDocumentExtractor:
        """Load ``extractor_class`` (``module:Class``); default to the local file adapter."""
        target = settings.extractor_class.strip()
        if not target:
            if not settings.storage_root:
                raise ValueError("extractor_class or storage_root is required for extraction workers")
            return LocalFileExtractor(settings.storage_root)

        module_name, _, class_name = target.partition(":")
        if not class_name:
            raise ValueError(f"extractor_class must look like 'package.module:Class', got {target!r}")
        module = importlib.import_module(module_name)
        extractor_cls = getattr(module, class_name)
        if not (isinstance(extractor_cls, type) and issubclass(extractor_cls, BaseDocumentExtractor)):
            raise ValueError(f"{target} is not a BaseDocumentExtractor")
        return extractor_cls(settings)
