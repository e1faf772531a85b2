import base64

import httpx
import openai

from registry_worker.ocr.client_base import BaseVisionClient
from registry_worker.ocr.exceptions import (
    ProviderNetworkError,
    ProviderRateLimitedError,
    ProviderResponseError,
)
from registry_worker.ocr.models import ProviderRequest, ProviderResponse


class OpenAIClientAdapter(BaseVisionClient):
    """Vision client built on the OpenAI-compatible chat API.

    Gemini and Anthropic both expose OpenAI-compatible endpoints, so one
    adapter serves every configured provider.
    """

    def __init__(
        self,
        *,
        provider: str,
        api_key: str,
        model: str,
        timeout_seconds: int,
        base_url: str | None = None,
    ) -> None:
        self.provider = provider
        self._model = model
        self._client = openai.OpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            base_url=base_url,
            max_retries=0,
        )

    @staticmethod
    def _build_messages(request: ProviderRequest) -> list[dict[str, object]]:
        content: list[dict[str, object]] = [{"type": "text", "text": request.prompt}]
        if request.image_png is not None:
            encoded = base64.b64encode(request.image_png).decode("ascii")
            content.append(
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}}
            )
        messages: list[dict[str, object]] = [{"role": "user", "content": content}]
        if request.previous_output is not None:
            messages.append({"role": "assistant", "content": request.previous_output})
            messages.append({"role": "user", "content": request.continuation_prompt or ""})
        return messages

    def generate(self, request: ProviderRequest) -> ProviderResponse:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                temperature=request.temperature,
                max_tokens=request.max_output_tokens,
                messages=self._build_messages(request),
            )
        except openai.RateLimitError as exc:
            raise ProviderRateLimitedError(f"{self.provider} rate limited the call: {exc}") from exc
        except (openai.APIConnectionError, httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ProviderNetworkError(f"{self.provider} network error: {exc}") from exc
        except openai.APIStatusError as exc:
            if exc.status_code >= 500:
                raise ProviderNetworkError(
                    f"{self.provider} server error {exc.status_code}: {exc}"
                ) from exc
            raise ProviderResponseError(
                f"{self.provider} rejected the call ({exc.status_code}): {exc}"
            ) from exc
        except openai.APIError as exc:
            raise ProviderResponseError(f"{self.provider} API error: {exc}") from exc

        if not response.choices:
            raise ProviderResponseError(f"{self.provider} returned no choices")
        text = response.choices[0].message.content
        if not text or not text.strip():
            raise ProviderResponseError(f"{self.provider} returned an empty response")

        usage = response.usage
        return ProviderResponse(
            text=text,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
