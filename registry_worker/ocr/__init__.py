from registry_worker.ocr.pipeline import OCRPipeline, build_ocr_pipeline
from registry_worker.ocr.sanitizer import sanitize

__all__ = ["OCRPipeline", "build_ocr_pipeline", "sanitize"]
