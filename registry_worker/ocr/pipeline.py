"""OCR pipeline: fetch -> rasterize -> count -> extract -> boost -> sanitize."""

import re

import redis

from registry_worker.config.settings import Settings
from registry_worker.database.models import DocumentSource, JobRecord
from registry_worker.exceptions import (
    RateBudgetExhaustedError,
    RetryableJobError,
    SanitizationError,
)
from registry_worker.logging.logger import Log
from registry_worker.ocr.exceptions import ProviderError
from registry_worker.ocr.factory import VisionClientFactory
from registry_worker.ocr.fetcher import SourceFetcher
from registry_worker.ocr.models import PageImage, PageOutcome, PageResult, PipelineDocument
from registry_worker.ocr.prompt_loader import render_prompt
from registry_worker.ocr.rasterizer import PdfRasterizer
from registry_worker.ocr.sanitizer import sanitize
from registry_worker.ocr.stage_executor import ProviderRoute, StageExecutor, strip_marker
from registry_worker.ratelimit.budget import RateBudget, build_rate_budgets

EXTRACTION_MARKER = "EXTRACTION_COMPLETE"
BOOST_MARKER = "BOOST_COMPLETE"

_LINE_COUNT_RE = re.compile(r"NOMBRE_DE_LIGNES\s*:\s*(\d+)", re.IGNORECASE)
_BARE_COUNT_RE = re.compile(r"\s*(\d+)\s*")


def page_delimiter(page_number: int) -> str:
    return f"--- Page {page_number} ---"


def combine_pages(texts: list[tuple[int, str]]) -> str:
    return "\n\n".join(f"{page_delimiter(number)}\n{text}" for number, text in texts)


def parse_line_count(text: str) -> int | None:
    """Read the labelled count, or a reply that is only a number; anything else is no hint."""
    match = _LINE_COUNT_RE.search(text) or _BARE_COUNT_RE.fullmatch(text)
    if match is None:
        return None
    return int(match.group(1))


class OCRPipeline:
    """Turns a job's source document into a ``PipelineDocument``.

    Provider failures on a page are recorded on that page and never abort
    the document. Only a fetch or rasterize failure, a document where no
    page could be extracted, or a sanitizer failure propagate.
    """

    def __init__(
        self,
        *,
        fetcher: SourceFetcher,
        rasterizer: PdfRasterizer,
        extract_executor: StageExecutor,
        boost_executor: StageExecutor,
        settings: Settings,
    ) -> None:
        self._fetcher = fetcher
        self._rasterizer = rasterizer
        self._extract = extract_executor
        self._boost = boost_executor
        self._settings = settings

    def close(self) -> None:
        self._fetcher.close()

    def process(self, job: JobRecord) -> PipelineDocument:
        pdf_bytes = self._fetcher.fetch(job.source_path)
        images = self._rasterizer.rasterize(pdf_bytes)
        Log.info(f"[{job.label}] Rasterized {len(images)} page(s) at {self._settings.ocr_dpi} dpi")

        outcomes = [self._process_page(job, image) for image in images]
        extracted = [outcome for outcome in outcomes if outcome.extracted]
        if not extracted:
            errors = "; ".join(error for outcome in outcomes for error in outcome.errors)
            raise RetryableJobError(f"No page could be extracted: {errors}")

        raw_text = combine_pages([(o.page_number, o.raw_text or "") for o in extracted])
        corrected_text = combine_pages(
            [(o.page_number, o.corrected_text or o.raw_text or "") for o in extracted]
        )

        if self._is_structured(job):
            document = self._structured_document(job, outcomes, raw_text, corrected_text)
        else:
            document = PipelineDocument(
                pages=[
                    PageResult(
                        page_number=o.page_number,
                        complete=o.complete,
                        text=o.corrected_text or o.raw_text,
                        diagnostics=list(o.errors),
                    )
                    for o in outcomes
                ],
                raw_text=raw_text,
                corrected_text=corrected_text,
            )

        Log.info(
            f"[{job.label}] OCR finished: {len(document.pages)} page(s), "
            f"incomplete pages {document.failed_pages or 'none'}"
        )
        return document

    def _is_structured(self, job: JobRecord) -> bool:
        return job.document_source in self._settings.ocr_structured_sources

    def _structured_document(
        self,
        job: JobRecord,
        outcomes: list[PageOutcome],
        raw_text: str,
        corrected_text: str,
    ) -> PipelineDocument:
        try:
            document = sanitize(corrected_text)
        except SanitizationError as exc:
            raise SanitizationError(
                str(exc),
                row_fields={"file_content": raw_text, "boosted_file_content": corrected_text},
            ) from exc
        document.raw_text = raw_text

        by_number = {outcome.page_number: outcome for outcome in outcomes}
        seen = set()
        for page in document.pages:
            outcome = by_number.get(page.page_number)
            if outcome is None:
                continue
            seen.add(page.page_number)
            page.complete = outcome.complete
            page.diagnostics.extend(outcome.errors)
            if outcome.line_count is not None and outcome.line_count != len(page.inscriptions):
                page.diagnostics.append(
                    f"Line count mismatch: counted {outcome.line_count}, "
                    f"parsed {len(page.inscriptions)}"
                )
        for outcome in outcomes:
            if outcome.page_number not in seen:
                document.pages.append(
                    PageResult(
                        page_number=outcome.page_number,
                        complete=False,
                        diagnostics=list(outcome.errors),
                    )
                )
        document.pages.sort(key=lambda page: page.page_number)
        return document

    def _prompt_names(self, job: JobRecord) -> tuple[str, str]:
        prefix = "acte" if job.document_source == DocumentSource.ACTE else "index"
        return f"{prefix}_extract", f"{prefix}_boost"

    def _process_page(self, job: JobRecord, image: PageImage) -> PageOutcome:
        label = f"[{job.label}] page {image.page_number}"
        outcome = PageOutcome(page_number=image.page_number)
        extract_prompt, boost_prompt = self._prompt_names(job)

        if self._settings.ocr_count_lines and self._is_structured(job):
            outcome.line_count = self._count_lines(image, label)

        hint = ""
        if outcome.line_count:
            hint = (
                f"- La page contient {outcome.line_count} lignes d'inscription: "
                "assurez-vous de toutes les extraire."
            )
        try:
            extraction = self._extract.run(
                prompt=render_prompt(
                    extract_prompt, line_count_hint=hint, acte_type=job.acte_type or "Acte"
                ),
                image=image.png,
                temperature=self._settings.ocr_extract_temperature,
                estimated_tokens=self._settings.ocr_estimated_tokens_extract,
                marker=EXTRACTION_MARKER,
                label=f"{label} extract",
            )
        except ProviderError as exc:
            outcome.errors.append(f"Extraction failed: {exc}")
            Log.error(f"{label}: extraction failed on every provider: {exc}")
            return outcome

        outcome.extracted = True
        outcome.raw_text = strip_marker(extraction.text, EXTRACTION_MARKER)
        if not extraction.complete:
            outcome.truncated = True
            outcome.errors.append(f"Extraction truncated on {extraction.provider}")

        try:
            boost = self._boost.run(
                prompt=render_prompt(boost_prompt, raw_text=outcome.raw_text),
                image=None,
                temperature=self._settings.ocr_boost_temperature,
                estimated_tokens=self._settings.ocr_estimated_tokens_boost,
                marker=BOOST_MARKER,
                label=f"{label} boost",
            )
        except ProviderError as exc:
            outcome.errors.append(f"Boost failed, raw text kept: {exc}")
            Log.error(f"{label}: boost failed on every provider, keeping raw text: {exc}")
            return outcome

        outcome.corrected_text = strip_marker(boost.text, BOOST_MARKER)
        outcome.boosted = True
        if not boost.complete:
            outcome.truncated = True
            outcome.errors.append(f"Boost truncated on {boost.provider}")
        return outcome

    def _count_lines(self, image: PageImage, label: str) -> int | None:
        try:
            result = self._extract.run(
                prompt=render_prompt("line_count"),
                image=image.png,
                temperature=0.0,
                estimated_tokens=self._settings.ocr_estimated_tokens_count,
                marker=None,
                label=f"{label} count",
            )
        except (ProviderError, RateBudgetExhaustedError) as exc:
            Log.warning(f"{label}: line count failed, continuing without hint: {exc}")
            return None
        count = parse_line_count(result.text)
        Log.debug(f"{label}: counted {count} line(s)")
        return count


def _provider_order(*names: str) -> list[str]:
    return [name for name in dict.fromkeys(names) if name]


def build_ocr_pipeline(settings: Settings, redis_client: redis.Redis) -> tuple[OCRPipeline, list[RateBudget]]:
    """Build an OCRPipeline with all required adapters and the budgets it draws from."""
    primary = settings.ocr_primary_provider.lower()
    secondary = settings.ocr_secondary_provider.lower()
    boost = (settings.ocr_boost_provider or primary).lower()

    extract_order = _provider_order(primary, secondary)
    boost_order = _provider_order(boost, secondary)
    providers = _provider_order(*extract_order, *boost_order)

    clients = VisionClientFactory.create_many(providers, settings)
    budgets = build_rate_budgets(redis_client, settings, providers)

    def executor(order: list[str]) -> StageExecutor:
        return StageExecutor(
            [ProviderRoute(name, clients[name], budgets[name]) for name in order],
            max_attempts=settings.provider_max_attempts,
            max_output_tokens=settings.ocr_max_output_tokens,
        )

    pipeline = OCRPipeline(
        fetcher=SourceFetcher.from_settings(settings),
        rasterizer=PdfRasterizer(dpi=settings.ocr_dpi),
        extract_executor=executor(extract_order),
        boost_executor=executor(boost_order),
        settings=settings,
    )
    return pipeline, list(budgets.values())
