from abc import ABC, abstractmethod

from registry_worker.ocr.models import ProviderRequest, ProviderResponse


class BaseVisionClient(ABC):
    """Contract for provider-specific vision clients."""

    provider: str = ""

    @abstractmethod
    def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Return the generated text and token usage for one request.

        Raises:
            ProviderRateLimitedError: when the provider throttles the call.
            ProviderNetworkError: on timeouts, connection errors and 5xx.
            ProviderResponseError: when the response carries no usable text.
        """
