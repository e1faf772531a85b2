import os
import socket
import uuid
from typing import ClassVar

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_ENVIRONMENTS = ("prod", "staging", "dev")
WORKER_KINDS = ("ocr", "extraction")


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Hard provider ceilings (requests/minute, tokens/minute) used when no override is set.
    DEFAULT_PROVIDER_LIMITS: ClassVar[dict[str, tuple[int, int]]] = {
        "gemini": (2000, 8_000_000),
        "anthropic": (4000, 2_000_000),
        "openai": (500, 800_000),
    }

    app_env: str = "dev"
    log_level: str = "INFO"

    worker_kind: str = "ocr"
    worker_id: str = ""
    worker_environments: list[str] = ["dev"]
    job_poll_interval_seconds: float = 5
    heartbeat_interval_seconds: float = 10
    worker_liveness_threshold_seconds: float = 30
    recovery_interval_seconds: float = 60
    max_job_attempts: int = 3
    claim_race_retries: int = 5
    stale_job_timeout_seconds: float = 0

    db_prod_dsn: str = ""
    db_staging_dsn: str = ""
    db_dev_dsn: str = "host=localhost port=5432 dbname=registry user=registry password=secret"
    db_pool_max_size: int = 5

    redis_url: str = "redis://localhost:6379/0"

    rate_window_seconds: int = 60
    rate_safe_fraction: float = 0.8
    rate_backoff_seconds: float = 2.0
    rate_max_wait_seconds: float = 120

    ocr_primary_provider: str = "gemini"
    ocr_secondary_provider: str = "anthropic"
    ocr_boost_provider: str = ""

    gemini_api_key: str = ""
    gemini_model_name: str = "gemini-2.5-pro"
    gemini_timeout_seconds: int = 180
    gemini_rpm_limit: int | None = None
    gemini_tpm_limit: int | None = None

    anthropic_api_key: str = ""
    anthropic_model_name: str = "claude-sonnet-4-5"
    anthropic_timeout_seconds: int = 180
    anthropic_rpm_limit: int | None = None
    anthropic_tpm_limit: int | None = None

    openai_api_key: str = ""
    openai_model_name: str = "gpt-4o"
    openai_timeout_seconds: int = 120
    openai_rpm_limit: int | None = None
    openai_tpm_limit: int | None = None

    openai_compatible_base_url: str = ""
    openai_compatible_api_key: str = ""
    openai_compatible_model_name: str = ""
    openai_compatible_timeout_seconds: int = 120
    openai_compatible_rpm_limit: int | None = None
    openai_compatible_tpm_limit: int | None = None

    ocr_extract_temperature: float = 0.1
    ocr_boost_temperature: float = 0.2
    ocr_max_output_tokens: int = 16384
    provider_max_attempts: int = 2
    ocr_estimated_tokens_extract: int = 15000
    ocr_estimated_tokens_boost: int = 10000
    ocr_estimated_tokens_count: int = 1500

    ocr_dpi: int = 200
    ocr_count_lines: bool = True
    ocr_partial_result_sources: list[str] = ["index"]
    ocr_structured_sources: list[str] = ["index"]

    storage_root: str = ""
    storage_base_url: str = ""
    storage_api_key: str = ""
    fetch_timeout_seconds: int = 60

    extractor_class: str = ""

    @field_validator("worker_kind")
    @classmethod
    def _check_worker_kind(cls, value: str) -> str:
        value = value.lower()
        if value not in WORKER_KINDS:
            raise ValueError(f"worker_kind must be one of {list(WORKER_KINDS)}, got {value!r}")
        return value

    @field_validator("worker_environments")
    @classmethod
    def _check_environments(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("worker_environments must name at least one environment")
        normalized = [env.lower() for env in value]
        unknown = [env for env in normalized if env not in KNOWN_ENVIRONMENTS]
        if unknown:
            raise ValueError(
                f"Unknown environments {unknown}. Choose from: {list(KNOWN_ENVIRONMENTS)}"
            )
        if len(set(normalized)) != len(normalized):
            raise ValueError("worker_environments must not repeat an environment")
        return normalized

    @field_validator("rate_safe_fraction")
    @classmethod
    def _check_safe_fraction(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("rate_safe_fraction must be in (0, 1]")
        return value

    @model_validator(mode="after")
    def _check_environment_dsns(self) -> "Settings":
        missing = [env for env in self.worker_environments if not self.dsn_for(env)]
        if missing:
            raise ValueError(
                f"No DSN configured for environments {missing} "
                f"(set {', '.join(f'DB_{env.upper()}_DSN' for env in missing)})"
            )
        return self

    def dsn_for(self, environment: str) -> str:
        """Return the libpq conninfo string for an environment."""
        return str(getattr(self, f"db_{environment}_dsn", "") or "")

    def resolved_worker_id(self) -> str:
        """Return the configured worker id or generate a unique one."""
        if self.worker_id:
            return self.worker_id
        return f"{self.worker_kind}-{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"

    def provider_limits(self, provider: str) -> tuple[int, int]:
        """Hard (rpm, tpm) ceilings for a provider, applying overrides."""
        default_rpm, default_tpm = self.DEFAULT_PROVIDER_LIMITS.get(provider, (60, 100_000))
        rpm = getattr(self, f"{provider}_rpm_limit", None) or default_rpm
        tpm = getattr(self, f"{provider}_tpm_limit", None) or default_tpm
        return int(rpm), int(tpm)
