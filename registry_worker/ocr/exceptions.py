from registry_worker.exceptions import FatalJobError, RetryableJobError


class FetchError(RetryableJobError):
    """Raised when the source document cannot be downloaded or read."""


class RasterizeError(FatalJobError):
    """Raised when the source bytes are not a readable PDF."""


class ProviderError(RetryableJobError):
    """Raised when an AI provider call fails."""


class ProviderNetworkError(ProviderError):
    """Timeouts, connection failures and 5xx responses."""


class ProviderRateLimitedError(ProviderError):
    """The provider answered 429."""


class ProviderResponseError(ProviderError):
    """The provider returned an empty or unusable response."""


class PartialDocumentError(RetryableJobError):
    """Raised when some pages failed and the document source does not accept partial results."""
