"""Tests for ExampleClientAdapter (template/reference adapter)."""

from registry_worker.ocr.example_client_adapter import ExampleClientAdapter
from registry_worker.ocr.models import ProviderRequest
from registry_worker.ocr.prompt_loader import render_prompt
from registry_worker.ocr.sanitizer import sanitize


class TestExampleClientAdapter:
    def test_extraction_carries_marker(self) -> None:
        adapter = ExampleClientAdapter()
        response = adapter.generate(
            ProviderRequest(prompt=render_prompt("index_extract", line_count_hint=""), image_png=b"png")
        )
        assert "EXTRACTION_COMPLETE" in response.text
        assert response.total_tokens > 0

    def test_boost_carries_boost_marker(self) -> None:
        adapter = ExampleClientAdapter()
        response = adapter.generate(ProviderRequest(prompt=render_prompt("index_boost", raw_text="x")))
        assert "BOOST_COMPLETE" in response.text

    def test_line_count(self) -> None:
        response = ExampleClientAdapter().generate(ProviderRequest(prompt=render_prompt("line_count")))
        assert response.text == "NOMBRE_DE_LIGNES: 1"

    def test_page_text_is_parseable(self) -> None:
        document = sanitize(ExampleClientAdapter.PAGE_TEXT)
        assert document.pages[0].inscriptions[0].acte_publication_number == "5 123 456"
