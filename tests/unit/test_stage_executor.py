from unittest.mock import MagicMock

import pytest

from registry_worker.exceptions import RateBudgetExhaustedError
from registry_worker.ocr.exceptions import (
    ProviderError,
    ProviderNetworkError,
    ProviderResponseError,
)
from registry_worker.ocr.models import ProviderResponse
from registry_worker.ocr.stage_executor import ProviderRoute, StageExecutor, strip_marker

MARKER = "EXTRACTION_COMPLETE"


def _make_route(name: str, *responses) -> ProviderRoute:
    client = MagicMock()
    client.provider = name
    client.generate.side_effect = list(responses)
    return ProviderRoute(name=name, client=client, budget=MagicMock())


def _make_executor(*routes: ProviderRoute, max_attempts: int = 2) -> StageExecutor:
    return StageExecutor(list(routes), max_attempts=max_attempts, max_output_tokens=4096, sleep=lambda _s: None)


def _run(executor: StageExecutor, marker: str | None = MARKER):
    return executor.run(
        prompt="Extrais la page",
        image=b"png",
        temperature=0.1,
        estimated_tokens=500,
        marker=marker,
        label="[dev:job-1] page 1 extract",
    )


class TestStripMarker:
    def test_removes_marker_lines(self) -> None:
        text = "Ligne 1: x\n✅ EXTRACTION_COMPLETE: [1] lignes\n"
        assert strip_marker(text, MARKER) == "Ligne 1: x"


class TestSingleRoute:
    def test_complete_response(self) -> None:
        route = _make_route("gemini", ProviderResponse(f"texte\n{MARKER}", 100, 50))

        result = _run(_make_executor(route))

        assert result.complete
        assert not result.continued
        assert result.provider == "gemini"
        route.budget.acquire.assert_called_once_with(500)
        route.budget.commit.assert_called_once_with(150)

    def test_request_carries_image_and_limits(self) -> None:
        route = _make_route("gemini", ProviderResponse(MARKER))

        _run(_make_executor(route))

        request = route.client.generate.call_args.args[0]
        assert request.image_png == b"png"
        assert request.max_output_tokens == 4096
        assert request.previous_output is None

    def test_no_marker_expected(self) -> None:
        route = _make_route("gemini", ProviderResponse("12"))
        result = _run(_make_executor(route), marker=None)
        assert result.complete
        assert result.text == "12"

    def test_retries_transient_error_on_same_route(self) -> None:
        route = _make_route("gemini", ProviderNetworkError("timeout"), ProviderResponse(MARKER))

        result = _run(_make_executor(route))

        assert result.complete
        assert route.client.generate.call_count == 2
        assert [c.args[0] for c in route.budget.commit.call_args_list] == [0, 0]

    def test_response_error_is_not_retried(self) -> None:
        route = _make_route("gemini", ProviderResponseError("empty"), ProviderResponse(MARKER))

        with pytest.raises(ProviderError, match="all providers failed"):
            _run(_make_executor(route))

        assert route.client.generate.call_count == 1
        route.budget.commit.assert_called_once_with(0)


class TestContinuation:
    def test_one_continuation_completes_text(self) -> None:
        route = _make_route(
            "gemini",
            ProviderResponse("Ligne 1: a\n"),
            ProviderResponse(f"Ligne 2: b\n{MARKER}"),
        )

        result = _run(_make_executor(route))

        assert result.complete
        assert result.continued
        assert result.text == f"Ligne 1: a\nLigne 2: b\n{MARKER}"
        continuation = route.client.generate.call_args_list[1].args[0]
        assert continuation.previous_output == "Ligne 1: a\n"
        assert MARKER in continuation.continuation_prompt

    def test_at_most_one_continuation(self) -> None:
        route = _make_route(
            "gemini",
            ProviderResponse("partie 1 "),
            ProviderResponse("partie 2"),
            ProviderResponse(MARKER),
        )

        result = _run(_make_executor(route))

        assert not result.complete
        assert result.text == "partie 1 partie 2"
        assert route.client.generate.call_count == 2

    def test_failed_continuation_keeps_first_text(self) -> None:
        route = _make_route(
            "gemini",
            ProviderResponse("partie 1"),
            ProviderResponseError("empty"),
        )

        result = _run(_make_executor(route))

        assert not result.complete
        assert result.text == "partie 1"
        assert result.provider == "gemini"


class TestFallback:
    def test_secondary_used_after_primary_fails(self) -> None:
        primary = _make_route("gemini", ProviderNetworkError("down"), ProviderNetworkError("down"))
        secondary = _make_route("anthropic", ProviderResponse(MARKER, 10, 10))

        result = _run(_make_executor(primary, secondary))

        assert result.provider == "anthropic"
        assert primary.client.generate.call_count == 2
        secondary.budget.commit.assert_called_once_with(20)

    def test_secondary_used_when_primary_budget_exhausted(self) -> None:
        primary = _make_route("gemini")
        primary.budget.acquire.side_effect = RateBudgetExhaustedError("saturated")
        secondary = _make_route("anthropic", ProviderResponse(MARKER))

        result = _run(_make_executor(primary, secondary))

        assert result.provider == "anthropic"
        primary.client.generate.assert_not_called()

    def test_all_budgets_exhausted_propagates(self) -> None:
        primary = _make_route("gemini")
        secondary = _make_route("anthropic")
        primary.budget.acquire.side_effect = RateBudgetExhaustedError("gemini saturated")
        secondary.budget.acquire.side_effect = RateBudgetExhaustedError("anthropic saturated")

        with pytest.raises(RateBudgetExhaustedError, match="anthropic saturated"):
            _run(_make_executor(primary, secondary))

    def test_all_routes_failing_raises_provider_error(self) -> None:
        primary = _make_route("gemini", ProviderResponseError("empty"))
        secondary = _make_route("anthropic")
        secondary.budget.acquire.side_effect = RateBudgetExhaustedError("saturated")

        with pytest.raises(ProviderError, match="all providers failed"):
            _run(_make_executor(primary, secondary))

    def test_requires_a_route(self) -> None:
        with pytest.raises(ValueError):
            StageExecutor([])
