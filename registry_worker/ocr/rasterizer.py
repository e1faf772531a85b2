import pymupdf

from registry_worker.ocr.exceptions import RasterizeError
from registry_worker.ocr.models import PageImage


class PdfRasterizer:
    """Renders every page of a PDF to PNG using PyMuPDF."""

    def __init__(self, dpi: int = 200) -> None:
        self._dpi = dpi

    def rasterize(self, pdf_bytes: bytes) -> list[PageImage]:
        """Return one PNG per page, numbered from 1.

        Raises:
            RasterizeError: if the bytes are not a readable PDF or it has no pages.
        """
        try:
            with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                images = [
                    PageImage(page_number=index + 1, png=page.get_pixmap(dpi=self._dpi).tobytes("png"))
                    for index, page in enumerate(doc)
                ]
        except Exception as exc:
            raise RasterizeError(f"pymupdf rasterization failed: {exc}") from exc
        if not images:
            raise RasterizeError("PDF has no pages")
        return images
