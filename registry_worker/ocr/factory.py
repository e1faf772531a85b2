from typing import ClassVar

from registry_worker.config.settings import Settings
from registry_worker.ocr.client_base import BaseVisionClient
from registry_worker.ocr.example_client_adapter import ExampleClientAdapter
from registry_worker.ocr.openai_client_adapter import OpenAIClientAdapter


class VisionClientFactory:
    """Creates vision clients for the configured providers."""

    OPENAI_COMPATIBLE_BASE_URLS: ClassVar[dict[str, str]] = {
        "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
        "anthropic": "https://api.anthropic.com/v1/",
    }

    @classmethod
    def supported(cls) -> list[str]:
        return ["example", "openai", "openai_compatible", *sorted(cls.OPENAI_COMPATIBLE_BASE_URLS)]

    @classmethod
    def create(cls, provider: str, settings: Settings) -> BaseVisionClient:
        """Create a client for one provider name from application settings."""
        provider = provider.lower()
        if provider == "example":
            return ExampleClientAdapter()
        return OpenAIClientAdapter(
            provider=provider,
            api_key=cls._setting(provider, "api_key", settings),
            model=cls._setting(provider, "model_name", settings),
            timeout_seconds=int(cls._setting(provider, "timeout_seconds", settings) or 120),
            base_url=cls._resolve_base_url(provider, settings),
        )

    @classmethod
    def create_many(cls, providers: list[str], settings: Settings) -> dict[str, BaseVisionClient]:
        return {name: cls.create(name, settings) for name in dict.fromkeys(providers) if name}

    @classmethod
    def _resolve_base_url(cls, provider: str, settings: Settings) -> str | None:
        if provider == "openai":
            return None
        if provider == "openai_compatible":
            url = (settings.openai_compatible_base_url or "").strip()
            if not url:
                raise ValueError(
                    "openai_compatible_base_url is required for provider openai_compatible"
                )
            return url
        default_base_url = cls.OPENAI_COMPATIBLE_BASE_URLS.get(provider)
        if default_base_url is not None:
            return default_base_url
        raise ValueError(f"Unknown OCR provider '{provider}'. Choose from: {cls.supported()}")

    @staticmethod
    def _setting(provider: str, name: str, settings: Settings) -> str:
        return getattr(settings, f"{provider}_{name}", "") or ""
