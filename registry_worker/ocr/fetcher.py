from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from registry_worker.config.settings import Settings
from registry_worker.logging.logger import Log
from registry_worker.ocr.exceptions import FetchError


class _TransientFetchError(Exception):
    pass


class SourceFetcher:
    """Loads source document bytes from a URL, the storage service or local disk."""

    def __init__(
        self,
        *,
        storage_root: str = "",
        storage_base_url: str = "",
        storage_api_key: str = "",
        timeout_seconds: float = 60,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._storage_root = Path(storage_root) if storage_root else None
        self._storage_base_url = storage_base_url.rstrip("/")
        self._storage_api_key = storage_api_key
        self._client = httpx.Client(timeout=timeout_seconds, transport=transport, follow_redirects=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SourceFetcher":
        return cls(
            storage_root=settings.storage_root,
            storage_base_url=settings.storage_base_url,
            storage_api_key=settings.storage_api_key,
            timeout_seconds=settings.fetch_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def fetch(self, source_path: str | None) -> bytes:
        """Return the document bytes.

        Raises:
            FetchError: if the path is missing, unreachable or the payload is empty.
        """
        if not source_path:
            raise FetchError("Job has no source_path to fetch")

        scheme = urlparse(source_path).scheme
        if scheme in ("http", "https"):
            data = self._download(source_path, headers={})
        elif scheme == "file":
            data = self._read(Path(unquote(urlparse(source_path).path)))
        elif self._storage_base_url:
            # Storage keys may carry a leading slash; local files use file:// here.
            headers = {}
            if self._storage_api_key:
                headers["Authorization"] = f"Bearer {self._storage_api_key}"
            data = self._download(f"{self._storage_base_url}/{source_path.lstrip('/')}", headers)
        elif Path(source_path).is_absolute():
            data = self._read(Path(source_path))
        elif self._storage_root is not None:
            data = self._read(self._storage_root / source_path)
        else:
            raise FetchError(
                f"Cannot resolve relative source_path {source_path!r}: "
                "set storage_base_url or storage_root"
            )

        if not data:
            raise FetchError(f"Source {source_path} is empty")
        Log.debug(f"Fetched {len(data)} bytes from {source_path}")
        return data

    @staticmethod
    def _read(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise FetchError(f"Cannot read {path}: {exc}") from exc

    def _download(self, url: str, headers: dict[str, str]) -> bytes:
        try:
            return self._download_with_retry(url, headers)
        except _TransientFetchError as exc:
            raise FetchError(f"Download of {url} failed after retries: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise FetchError(f"Download of {url} failed: HTTP {exc.response.status_code}") from exc

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1.0, max=8.0),
        retry=retry_if_exception_type(_TransientFetchError),
        reraise=True,
    )
    def _download_with_retry(self, url: str, headers: dict[str, str]) -> bytes:
        try:
            response = self._client.get(url, headers=headers)
        except httpx.TransportError as exc:
            raise _TransientFetchError(str(exc)) from exc
        if response.status_code >= 500 or response.status_code == 429:
            raise _TransientFetchError(f"HTTP {response.status_code}")
        response.raise_for_status()
        return response.content
