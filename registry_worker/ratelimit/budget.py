"""Shared requests/tokens-per-minute budget for an external AI provider.

The counters live in Redis so every worker process sees the same window.
Checks are optimistic: ``try_reserve`` reads, the caller makes its call, then
``commit`` increments. Two workers may pass the check at the same moment, so
the enforced ceiling is a safe fraction of the provider's hard limit and the
difference absorbs that race.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import redis

from registry_worker.config.settings import Settings
from registry_worker.exceptions import RateBudgetExhaustedError
from registry_worker.logging.logger import Log


@dataclass(frozen=True)
class RateLimits:
    """Hard provider ceilings and the fraction of them this pool may use."""

    rpm: int
    tpm: int
    safe_fraction: float = 0.8

    @property
    def safe_rpm(self) -> int:
        return math.floor(self.rpm * self.safe_fraction)

    @property
    def safe_tpm(self) -> int:
        return math.floor(self.tpm * self.safe_fraction)


@dataclass(frozen=True)
class ReservationResult:
    allowed: bool
    current_rpm: int
    current_tpm: int


class RateBudget:
    """Requests/tokens window for one provider, shared by all workers."""

    def __init__(
        self,
        client: redis.Redis,
        provider: str,
        limits: RateLimits,
        *,
        window_seconds: float = 60,
        backoff_seconds: float = 2.0,
        max_wait_seconds: float = 120,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._provider = provider
        self._limits = limits
        self._window_seconds = window_seconds
        self._backoff_seconds = backoff_seconds
        self._max_wait_seconds = max_wait_seconds
        self._clock = clock
        self._sleep = sleep

        prefix = f"ratebudget:{provider}"
        self._requests_key = f"{prefix}:requests"
        self._tokens_key = f"{prefix}:tokens"
        self._last_reset_key = f"{prefix}:last_reset"

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def limits(self) -> RateLimits:
        return self._limits

    def initialize(self) -> None:
        """Seed the counters without clobbering a window another worker already started."""
        pipe = self._client.pipeline()
        pipe.set(self._requests_key, 0, nx=True)
        pipe.set(self._tokens_key, 0, nx=True)
        pipe.set(self._last_reset_key, self._clock(), nx=True)
        pipe.execute()

    def _read_counters(self) -> tuple[int, int]:
        requests, tokens = self._client.mget(self._requests_key, self._tokens_key)
        return int(requests or 0), int(tokens or 0)

    def try_reserve(self, estimated_tokens: int) -> ReservationResult:
        """Check whether one more call of ``estimated_tokens`` fits under the safe ceilings."""
        current_rpm, current_tpm = self._read_counters()
        allowed = (
            current_rpm + 1 <= self._limits.safe_rpm
            and current_tpm + estimated_tokens <= self._limits.safe_tpm
        )
        return ReservationResult(allowed=allowed, current_rpm=current_rpm, current_tpm=current_tpm)

    def commit(self, actual_tokens: int) -> None:
        """Record one completed call with the token usage the provider reported."""
        pipe = self._client.pipeline()
        pipe.incr(self._requests_key)
        pipe.incrby(self._tokens_key, max(int(actual_tokens), 0))
        pipe.execute()

    def reset_window(self) -> None:
        """Zero both counters and stamp the reset time. Idempotent."""
        pipe = self._client.pipeline()
        pipe.set(self._requests_key, 0)
        pipe.set(self._tokens_key, 0)
        pipe.set(self._last_reset_key, self._clock())
        pipe.execute()
        Log.debug(f"Rate window reset for {self._provider}")

    def reset_if_due(self) -> bool:
        """Reset the window if it is older than ``window_seconds``.

        Every worker calls this on a timer. The read and the reset run under
        WATCH on the reset timestamp, so when several workers see the window
        expire together only one of them zeroes the counters.
        """
        with self._client.pipeline() as pipe:
            try:
                pipe.watch(self._last_reset_key)
                last_reset = pipe.get(self._last_reset_key)
                now = self._clock()
                if last_reset is not None and now - float(last_reset) < self._window_seconds:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(self._requests_key, 0)
                pipe.set(self._tokens_key, 0)
                pipe.set(self._last_reset_key, now)
                pipe.execute()
            except redis.WatchError:
                return False
        Log.debug(f"Rate window rolled over for {self._provider}")
        return True

    def acquire(self, estimated_tokens: int) -> ReservationResult:
        """Wait until a call fits in the window.

        Raises:
            RateBudgetExhaustedError: if the budget stays saturated longer
                than ``max_wait_seconds``.
        """
        deadline = self._clock() + self._max_wait_seconds
        while True:
            result = self.try_reserve(estimated_tokens)
            if result.allowed:
                return result
            if self._clock() + self._backoff_seconds > deadline:
                raise RateBudgetExhaustedError(
                    f"Rate budget for {self._provider} still saturated after "
                    f"{self._max_wait_seconds:.0f}s "
                    f"(rpm {result.current_rpm}/{self._limits.safe_rpm}, "
                    f"tpm {result.current_tpm}/{self._limits.safe_tpm})"
                )
            Log.info(
                f"Rate budget for {self._provider} denied "
                f"(rpm {result.current_rpm}/{self._limits.safe_rpm}, "
                f"tpm {result.current_tpm}/{self._limits.safe_tpm}), "
                f"backing off {self._backoff_seconds}s"
            )
            self._sleep(self._backoff_seconds)

    def status(self) -> dict[str, Any]:
        current_rpm, current_tpm = self._read_counters()
        last_reset = self._client.get(self._last_reset_key)
        return {
            "provider": self._provider,
            "requests": current_rpm,
            "tokens": current_tpm,
            "safe_rpm": self._limits.safe_rpm,
            "safe_tpm": self._limits.safe_tpm,
            "rpm_usage_percent": round(100 * current_rpm / max(self._limits.safe_rpm, 1), 1),
            "tpm_usage_percent": round(100 * current_tpm / max(self._limits.safe_tpm, 1), 1),
            "last_reset": float(last_reset) if last_reset is not None else None,
        }


def build_rate_budgets(
    client: redis.Redis,
    settings: Settings,
    providers: list[str],
) -> dict[str, RateBudget]:
    """Create one budget per distinct provider name."""
    budgets: dict[str, RateBudget] = {}
    for provider in providers:
        if not provider or provider in budgets:
            continue
        rpm, tpm = settings.provider_limits(provider)
        budgets[provider] = RateBudget(
            client,
            provider,
            RateLimits(rpm=rpm, tpm=tpm, safe_fraction=settings.rate_safe_fraction),
            window_seconds=settings.rate_window_seconds,
            backoff_seconds=settings.rate_backoff_seconds,
            max_wait_seconds=settings.rate_max_wait_seconds,
        )
    return budgets
