from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class ProviderRequest:
    """One vision call: an instruction, an optional page image and an optional continuation."""

    prompt: str
    image_png: bytes | None = None
    temperature: float = 0.1
    max_output_tokens: int = 16384
    previous_output: str | None = None
    continuation_prompt: str | None = None


@dataclass
class ProviderResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class PageImage:
    page_number: int
    png: bytes


@dataclass
class StageResult:
    """Text produced for one page by one stage, with the provider that produced it."""

    text: str
    provider: str
    complete: bool
    continued: bool = False


@dataclass
class PageOutcome:
    """Per-page progress through the AI stages."""

    page_number: int
    raw_text: str | None = None
    corrected_text: str | None = None
    line_count: int | None = None
    extracted: bool = False
    boosted: bool = False
    truncated: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.extracted and self.boosted and not self.truncated


@dataclass
class Party:
    name: str
    role: str | None = None


@dataclass
class Inscription:
    acte_publication_date: str | None = None
    acte_publication_number: str | None = None
    acte_nature: str | None = None
    parties: list[Party] = field(default_factory=list)
    remarques: str | None = None
    radiation_number: str | None = None


@dataclass
class PageMetadata:
    circonscription: str | None = None
    cadastre: str | None = None
    lot_number: str | None = None

    def is_empty(self) -> bool:
        return self.circonscription is None and self.cadastre is None and self.lot_number is None


@dataclass
class PageResult:
    """Structured content of one page.

    ``diagnostics`` keeps raw text blocks the parser could not turn into
    inscriptions, plus notes from the pipeline (failed stages, count mismatches).
    """

    page_number: int
    metadata: PageMetadata = field(default_factory=PageMetadata)
    inscriptions: list[Inscription] = field(default_factory=list)
    complete: bool = True
    text: str | None = None
    diagnostics: list[str] = field(default_factory=list)


@dataclass
class PipelineDocument:
    pages: list[PageResult] = field(default_factory=list)
    raw_text: str = ""
    corrected_text: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.pages) and all(page.complete for page in self.pages)

    @property
    def failed_pages(self) -> list[int]:
        return [page.page_number for page in self.pages if not page.complete]

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready structure stored in extraction_queue.ocr_result."""
        return {
            "complete": self.complete,
            "pages": [asdict(page) for page in self.pages],
        }
