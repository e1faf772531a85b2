"""State machine for one worker process.

INITIALIZING -> POLLING <-> PROCESSING -> STOPPING -> STOPPED

One job is processed at a time; throughput comes from running more
processes. A stop request during PROCESSING waits for the job to be settled
(no time cap), a stop request during POLLING interrupts the idle wait.
"""

import threading
import time
from collections.abc import Callable, Sequence
from enum import Enum

import redis

from registry_worker.config.settings import Settings
from registry_worker.logging.logger import Log
from registry_worker.queue.job_queue import JobQueue
from registry_worker.ratelimit.budget import RateBudget
from registry_worker.ratelimit.registry import WorkerRecord, WorkerRegistry
from registry_worker.worker.job_runner import JobRunner
from registry_worker.worker.timers import RepeatingTimer

# Upper bound on waiting for an in-flight heartbeat or window-reset tick.
TIMER_JOIN_TIMEOUT_SECONDS = 5.0


class WorkerState(str, Enum):
    INITIALIZING = "initializing"
    POLLING = "polling"
    PROCESSING = "processing"
    STOPPING = "stopping"
    STOPPED = "stopped"


class WorkerLifecycle:
    """Drives claim -> process -> settle for a single worker."""

    def __init__(
        self,
        *,
        queue: JobQueue,
        runner: JobRunner,
        registry: WorkerRegistry,
        record: WorkerRecord,
        budgets: Sequence[RateBudget],
        settings: Settings,
        timer_factory: Callable[[float, Callable[[], None], str], RepeatingTimer] = RepeatingTimer,
        clock: Callable[[], float] = time.monotonic,
        shutdown_hooks: Sequence[Callable[[], None]] = (),
    ) -> None:
        self._queue = queue
        self._runner = runner
        self._registry = registry
        self._record = record
        self._budgets = list(budgets)
        self._settings = settings
        self._timer_factory = timer_factory
        self._clock = clock
        self._shutdown_hooks = list(shutdown_hooks)

        self._state = WorkerState.INITIALIZING
        self._initialized = False
        self._stop_requested = threading.Event()
        self._timers: list[RepeatingTimer] = []
        self._last_recovery = 0.0

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def _transition(self, state: WorkerState) -> None:
        if state != self._state:
            Log.debug(f"Worker state {self._state.value} -> {state.value}")
            self._state = state

    def initialize(self) -> None:
        """Register, start timers and run the startup recovery scan."""
        Log.info(
            f"Initializing {self._record.kind} worker {self._record.worker_id} "
            f"for environments {self._queue.environments}"
        )
        self._registry.register(self._record)
        for budget in self._budgets:
            budget.initialize()

        self._timers = [
            self._timer_factory(
                self._settings.heartbeat_interval_seconds, self._heartbeat, "heartbeat"
            ),
            self._timer_factory(
                max(1.0, self._settings.rate_window_seconds / 12), self._roll_windows, "rate-window"
            ),
        ]
        for timer in self._timers:
            timer.start()

        self.recover()
        self._initialized = True
        self._transition(WorkerState.POLLING)

    def _heartbeat(self) -> None:
        self._registry.heartbeat(self._record)

    def _roll_windows(self) -> None:
        for budget in self._budgets:
            budget.reset_if_due()

    def recover(self) -> int:
        """Reset jobs held by workers that are no longer alive.

        Skipped when the registry cannot be read: an outage must not look
        like every other worker being dead.
        """
        self._last_recovery = self._clock()
        try:
            live_ids = self._registry.live_worker_ids()
        except redis.RedisError as exc:
            Log.warning(f"Skipping crash recovery, worker registry unavailable: {exc}")
            return 0
        recovered = self._queue.recover_abandoned(live_ids)
        if recovered:
            Log.warning(f"Crash recovery reset {recovered} abandoned job(s)")
        return recovered

    def _recovery_due(self) -> bool:
        return self._clock() - self._last_recovery >= self._settings.recovery_interval_seconds

    def request_stop(self) -> None:
        """Ask the worker to stop; an in-flight job is finished first."""
        if not self._stop_requested.is_set():
            Log.info(f"Stop requested while {self._state.value}")
        self._stop_requested.set()

    def step(self) -> bool:
        """Run one poll cycle. Returns True if a job was processed."""
        if self._stop_requested.is_set():
            return False
        self._transition(WorkerState.POLLING)
        if self._recovery_due():
            self.recover()

        job = self._queue.claim_next()
        if job is None:
            Log.debug("No jobs available, sleeping")
            self._stop_requested.wait(self._settings.job_poll_interval_seconds)
            return False

        self._transition(WorkerState.PROCESSING)
        try:
            self._runner.run(job)
        except Exception as exc:
            Log.exception(f"[{job.label}] Unhandled error while settling job: {exc}")
        finally:
            self._transition(WorkerState.POLLING)
        return True

    def run(self, max_jobs: int | None = None) -> int:
        """Run until stopped. If max_jobs is set, stop after that many jobs.

        Returns the number of jobs processed.
        """
        processed = 0
        try:
            if not self._initialized:
                self.initialize()
            while not self._stop_requested.is_set():
                if max_jobs is not None and processed >= max_jobs:
                    break
                if self.step():
                    processed += 1
        finally:
            self.stop()
        return processed

    def stop(self) -> None:
        """Cancel timers, leave the registry and release resources."""
        if self._state in (WorkerState.STOPPING, WorkerState.STOPPED):
            return
        self._transition(WorkerState.STOPPING)
        for timer in self._timers:
            timer.cancel()
        # A tick still running could re-register the worker after unregister.
        for timer in self._timers:
            timer.join(TIMER_JOIN_TIMEOUT_SECONDS)
        self._timers = []
        try:
            self._registry.unregister(self._record.worker_id)
        except redis.RedisError as exc:
            Log.warning(f"Could not unregister worker {self._record.worker_id}: {exc}")
        for hook in self._shutdown_hooks:
            try:
                hook()
            except Exception as exc:
                Log.error(f"Shutdown hook failed: {exc}")
        self._transition(WorkerState.STOPPED)
        Log.info(f"Worker {self._record.worker_id} stopped")
