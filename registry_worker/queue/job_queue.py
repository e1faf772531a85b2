"""Claiming and settling jobs across several environments.

Environments are tried in the configured order on every poll, so a busy
higher-priority environment can starve a lower one. That ordering is a
policy, not a fairness guarantee.
"""

from collections.abc import Iterable
from typing import Any

import psycopg

from registry_worker.config.settings import Settings
from registry_worker.database.models import CLAIM_STAGES, ClaimStage, JobRecord
from registry_worker.database.repositories.job_repository import JobRepository
from registry_worker.logging.logger import Log


class JobQueue:
    """Per-worker claim logic over one ``JobRepository`` per environment."""

    def __init__(
        self,
        repositories: list[JobRepository],
        stage: ClaimStage,
        worker_id: str,
        settings: Settings,
    ) -> None:
        self._repositories = {repo.environment: repo for repo in repositories}
        self._order = [repo.environment for repo in repositories]
        self._stage = stage
        self._worker_id = worker_id
        self._settings = settings

    @property
    def stage(self) -> ClaimStage:
        return self._stage

    @property
    def environments(self) -> list[str]:
        return list(self._order)

    def claim_next(self) -> JobRecord | None:
        """Claim the oldest waiting job from the first environment that has one."""
        for environment in self._order:
            try:
                job = self._claim_in(self._repositories[environment])
            except psycopg.Error as exc:
                Log.warning(f"[{environment}] Database error while claiming, skipping: {exc}")
                continue
            if job is not None:
                return job
        return None

    def _claim_in(self, repo: JobRepository) -> JobRecord | None:
        attempts = self._settings.claim_race_retries + 1
        for _ in range(attempts):
            candidate = repo.select_candidate(self._stage.waiting_status)
            if candidate is None:
                return None
            job = repo.try_claim(candidate, self._stage, self._worker_id)
            if job is not None:
                Log.info(
                    f"[{repo.environment}] Claimed job {job.id} "
                    f"({job.document_source} {job.document_number}, attempt {job.attempts + 1})"
                )
                return job
            Log.debug(f"[{repo.environment}] Lost claim race for job {candidate}, reselecting")
        Log.debug(f"[{repo.environment}] Gave up after {attempts} lost claim races")
        return None

    def complete(self, job: JobRecord, new_status: str, fields: dict[str, Any] | None = None) -> bool:
        """Write a successful outcome for an owned job."""
        written = self._repositories[job.environment].complete(
            job.id, self._worker_id, self._stage.processing_status, new_status, fields
        )
        if written:
            Log.info(f"[{job.environment}] Job {job.id} -> {new_status}")
        else:
            Log.warning(
                f"[{job.environment}] Job {job.id} was no longer owned by "
                f"{self._worker_id}; result discarded"
            )
        return written

    def release(self, job: JobRecord, error: str) -> bool:
        """Return an owned job to its waiting status so another worker can retry it."""
        written = self._repositories[job.environment].release(
            job.id, self._worker_id, self._stage, error
        )
        if written:
            Log.warning(
                f"[{job.environment}] Job {job.id} released to {self._stage.waiting_status}: {error}"
            )
        else:
            Log.warning(f"[{job.environment}] Job {job.id} could not be released (not owned)")
        return written

    def fail(self, job: JobRecord, error: str, fields: dict[str, Any] | None = None) -> bool:
        """Close an owned job as permanently failed."""
        written = self._repositories[job.environment].mark_failed(
            job.id, self._worker_id, self._stage.processing_status, error, fields
        )
        if written:
            Log.error(f"[{job.environment}] Job {job.id} failed permanently: {error}")
        else:
            Log.warning(f"[{job.environment}] Job {job.id} could not be failed (not owned)")
        return written

    def recover_abandoned(
        self,
        live_worker_ids: Iterable[str],
        stages: Iterable[ClaimStage] | None = None,
    ) -> int:
        """Reset in-progress rows owned by dead workers in every environment and stage.

        The caller is responsible for passing a trustworthy live set: an empty
        set caused by a registry outage would reset every in-progress row.
        """
        live = sorted(set(live_worker_ids) | {self._worker_id})
        total = 0
        for environment in self._order:
            repo = self._repositories[environment]
            for stage in stages or CLAIM_STAGES.values():
                try:
                    reset_ids = repo.reset_abandoned(
                        stage, live, self._settings.stale_job_timeout_seconds
                    )
                except psycopg.Error as exc:
                    Log.warning(f"[{environment}] Recovery scan failed for {stage.name}: {exc}")
                    continue
                for job_id in reset_ids:
                    Log.warning(
                        f"[{environment}] Recovered abandoned job {job_id} -> {stage.waiting_status}"
                    )
                total += len(reset_ids)
        return total
