"""Budgeted provider calls with retry, fallback and bounded continuation."""

import time
from collections.abc import Callable
from dataclasses import dataclass

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from registry_worker.exceptions import RateBudgetExhaustedError
from registry_worker.logging.logger import Log
from registry_worker.ocr.client_base import BaseVisionClient
from registry_worker.ocr.exceptions import (
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimitedError,
)
from registry_worker.ocr.models import ProviderRequest, ProviderResponse, StageResult
from registry_worker.ocr.prompt_loader import render_prompt
from registry_worker.ratelimit.budget import RateBudget


@dataclass(frozen=True)
class ProviderRoute:
    """A provider client paired with the shared budget it draws from."""

    name: str
    client: BaseVisionClient
    budget: RateBudget


def strip_marker(text: str, marker: str) -> str:
    """Drop every line carrying the completion marker."""
    return "\n".join(line for line in text.splitlines() if marker not in line).strip()


class StageExecutor:
    """Runs one pipeline stage call for a page.

    Routes are tried in order: the first is the primary provider, the next
    one is the fallback. Each provider gets ``max_attempts`` tries for
    transient errors before the next route is used.
    """

    def __init__(
        self,
        routes: list[ProviderRoute],
        *,
        max_attempts: int = 2,
        max_output_tokens: int = 16384,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not routes:
            raise ValueError("StageExecutor needs at least one provider route")
        self._routes = routes
        self._max_attempts = max(1, max_attempts)
        self._max_output_tokens = max_output_tokens
        self._sleep = sleep

    @property
    def routes(self) -> list[ProviderRoute]:
        return list(self._routes)

    def run(
        self,
        *,
        prompt: str,
        image: bytes | None,
        temperature: float,
        estimated_tokens: int,
        marker: str | None,
        label: str,
    ) -> StageResult:
        """Produce text for one page, falling back across routes.

        Raises:
            RateBudgetExhaustedError: if every route was refused by its budget.
            ProviderError: if every route failed.
        """
        request = ProviderRequest(
            prompt=prompt,
            image_png=image,
            temperature=temperature,
            max_output_tokens=self._max_output_tokens,
        )
        errors: list[Exception] = []
        for index, route in enumerate(self._routes):
            if index > 0:
                Log.warning(f"{label}: falling back to {route.name} after {errors[-1]}")
            try:
                return self._run_on_route(route, request, estimated_tokens, marker, label)
            except (ProviderError, RateBudgetExhaustedError) as exc:
                Log.warning(f"{label}: {route.name} failed: {exc}")
                errors.append(exc)

        if all(isinstance(exc, RateBudgetExhaustedError) for exc in errors):
            raise errors[-1]
        summary = "; ".join(str(exc) for exc in errors)
        raise ProviderError(f"{label}: all providers failed ({summary})")

    def _run_on_route(
        self,
        route: ProviderRoute,
        request: ProviderRequest,
        estimated_tokens: int,
        marker: str | None,
        label: str,
    ) -> StageResult:
        response = self._call_with_retry(route, request, estimated_tokens)
        text = response.text
        if marker is None or marker in text:
            return StageResult(text=text, provider=route.name, complete=True)

        Log.warning(f"{label}: {route.name} response has no {marker}, requesting one continuation")
        continuation = ProviderRequest(
            prompt=request.prompt,
            image_png=request.image_png,
            temperature=request.temperature,
            max_output_tokens=request.max_output_tokens,
            previous_output=text,
            continuation_prompt=render_prompt("continuation", marker=marker),
        )
        try:
            extra = self._call_with_retry(route, continuation, estimated_tokens)
        except ProviderError as exc:
            Log.warning(f"{label}: continuation on {route.name} failed, keeping truncated text: {exc}")
            return StageResult(text=text, provider=route.name, complete=False, continued=True)

        combined = text + extra.text
        complete = marker in combined
        if not complete:
            Log.warning(f"{label}: still no {marker} after continuation, keeping text as is")
        return StageResult(text=combined, provider=route.name, complete=complete, continued=True)

    def _call_with_retry(
        self,
        route: ProviderRoute,
        request: ProviderRequest,
        estimated_tokens: int,
    ) -> ProviderResponse:
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_random_exponential(multiplier=1, max=20),
            retry=retry_if_exception_type((ProviderNetworkError, ProviderRateLimitedError)),
            sleep=self._sleep,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._call(route, request, estimated_tokens)
        raise AssertionError("unreachable")

    @staticmethod
    def _call(route: ProviderRoute, request: ProviderRequest, estimated_tokens: int) -> ProviderResponse:
        route.budget.acquire(estimated_tokens)
        try:
            response = route.client.generate(request)
        except ProviderError:
            route.budget.commit(0)
            raise
        route.budget.commit(response.total_tokens)
        return response
