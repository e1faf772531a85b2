import threading
from unittest.mock import MagicMock

import psycopg

from registry_worker.database.models import (
    EXTRACTION_STAGE,
    OCR_STAGE,
    JobRecord,
    JobStatus,
)
from registry_worker.queue.job_queue import JobQueue


def _make_job(job_id: str = "job-1", environment: str = "prod", status: str = JobStatus.EXTRACTING) -> JobRecord:
    return JobRecord(
        id=job_id,
        document_source="index",
        document_number="123",
        circonscription_fonciere="Montréal",
        status=status,
        attempts=0,
        environment=environment,
        cadastre="Cadastre du Québec",
    )


def _make_settings(**overrides) -> MagicMock:
    settings = MagicMock()
    settings.claim_race_retries = overrides.get("claim_race_retries", 3)
    settings.stale_job_timeout_seconds = overrides.get("stale_job_timeout_seconds", 0)
    return settings


def _make_repo(environment: str) -> MagicMock:
    repo = MagicMock()
    repo.environment = environment
    repo.select_candidate.return_value = None
    return repo


class TestClaimNext:
    def test_prefers_first_environment(self) -> None:
        prod, dev = _make_repo("prod"), _make_repo("dev")
        prod.select_candidate.return_value = "p1"
        prod.try_claim.return_value = _make_job("p1", "prod")
        dev.select_candidate.return_value = "d1"

        queue = JobQueue([prod, dev], EXTRACTION_STAGE, "w1", _make_settings())
        job = queue.claim_next()

        assert job.id == "p1"
        dev.select_candidate.assert_not_called()

    def test_falls_through_to_next_environment(self) -> None:
        prod, dev = _make_repo("prod"), _make_repo("dev")
        dev.select_candidate.return_value = "d1"
        dev.try_claim.return_value = _make_job("d1", "dev")

        queue = JobQueue([prod, dev], EXTRACTION_STAGE, "w1", _make_settings())
        job = queue.claim_next()

        assert job.environment == "dev"
        prod.select_candidate.assert_called_once_with(JobStatus.WAITING)
        dev.try_claim.assert_called_once_with("d1", EXTRACTION_STAGE, "w1")

    def test_returns_none_when_nothing_waiting(self) -> None:
        queue = JobQueue([_make_repo("prod")], OCR_STAGE, "w1", _make_settings())
        assert queue.claim_next() is None

    def test_uses_stage_waiting_status(self) -> None:
        repo = _make_repo("prod")
        JobQueue([repo], OCR_STAGE, "w1", _make_settings()).claim_next()
        repo.select_candidate.assert_called_once_with(JobStatus.READY_FOR_OCR)

    def test_reselects_after_lost_race(self) -> None:
        repo = _make_repo("prod")
        repo.select_candidate.side_effect = ["a", "b"]
        repo.try_claim.side_effect = [None, _make_job("b")]

        job = JobQueue([repo], EXTRACTION_STAGE, "w1", _make_settings()).claim_next()

        assert job.id == "b"
        assert repo.try_claim.call_count == 2

    def test_gives_up_after_race_retries(self) -> None:
        repo = _make_repo("prod")
        repo.select_candidate.return_value = "a"
        repo.try_claim.return_value = None

        job = JobQueue([repo], EXTRACTION_STAGE, "w1", _make_settings(claim_race_retries=2)).claim_next()

        assert job is None
        assert repo.try_claim.call_count == 3

    def test_skips_environment_on_database_error(self) -> None:
        prod, dev = _make_repo("prod"), _make_repo("dev")
        prod.select_candidate.side_effect = psycopg.OperationalError("connection refused")
        dev.select_candidate.return_value = "d1"
        dev.try_claim.return_value = _make_job("d1", "dev")

        job = JobQueue([prod, dev], EXTRACTION_STAGE, "w1", _make_settings()).claim_next()

        assert job.id == "d1"


class TestSettle:
    def test_complete_routes_to_job_environment(self) -> None:
        prod, dev = _make_repo("prod"), _make_repo("dev")
        dev.complete.return_value = True
        queue = JobQueue([prod, dev], EXTRACTION_STAGE, "w1", _make_settings())

        written = queue.complete(_make_job(environment="dev"), JobStatus.READY_FOR_OCR, {"source_path": "/x.pdf"})

        assert written is True
        dev.complete.assert_called_once_with(
            "job-1", "w1", JobStatus.EXTRACTING, JobStatus.READY_FOR_OCR, {"source_path": "/x.pdf"}
        )
        prod.complete.assert_not_called()

    def test_complete_reports_lost_ownership(self) -> None:
        repo = _make_repo("prod")
        repo.complete.return_value = False
        queue = JobQueue([repo], EXTRACTION_STAGE, "w1", _make_settings())
        assert queue.complete(_make_job(), JobStatus.DONE) is False

    def test_release_passes_stage(self) -> None:
        repo = _make_repo("prod")
        repo.release.return_value = True
        queue = JobQueue([repo], OCR_STAGE, "w1", _make_settings())

        assert queue.release(_make_job(status=JobStatus.OCR_PROCESSING), "boom") is True
        repo.release.assert_called_once_with("job-1", "w1", OCR_STAGE, "boom")

    def test_fail_passes_fields(self) -> None:
        repo = _make_repo("prod")
        repo.mark_failed.return_value = True
        queue = JobQueue([repo], OCR_STAGE, "w1", _make_settings())

        queue.fail(_make_job(), "bad", {"file_content": "raw"})

        repo.mark_failed.assert_called_once_with(
            "job-1", "w1", JobStatus.OCR_PROCESSING, "bad", {"file_content": "raw"}
        )


class TestRecoverAbandoned:
    def test_scans_every_environment_and_stage(self) -> None:
        prod, dev = _make_repo("prod"), _make_repo("dev")
        prod.reset_abandoned.return_value = ["a"]
        dev.reset_abandoned.return_value = []
        queue = JobQueue([prod, dev], EXTRACTION_STAGE, "w1", _make_settings())

        recovered = queue.recover_abandoned({"w2"})

        assert recovered == 2
        assert prod.reset_abandoned.call_count == 2
        assert dev.reset_abandoned.call_count == 2
        stages = [call.args[0] for call in prod.reset_abandoned.call_args_list]
        assert stages == [EXTRACTION_STAGE, OCR_STAGE]

    def test_own_id_is_always_live(self) -> None:
        repo = _make_repo("prod")
        repo.reset_abandoned.return_value = []
        queue = JobQueue([repo], EXTRACTION_STAGE, "w1", _make_settings(stale_job_timeout_seconds=600))

        queue.recover_abandoned(set(), stages=[EXTRACTION_STAGE])

        repo.reset_abandoned.assert_called_once_with(EXTRACTION_STAGE, ["w1"], 600)

    def test_database_error_skips_one_scan(self) -> None:
        repo = _make_repo("prod")
        repo.reset_abandoned.side_effect = [psycopg.OperationalError("down"), ["b"]]
        queue = JobQueue([repo], EXTRACTION_STAGE, "w1", _make_settings())

        assert queue.recover_abandoned(["w2"]) == 1


class InMemoryRepository:
    """Compare-and-set claims over a dict, mimicking the conditional UPDATE."""

    def __init__(self, environment: str, job_ids: list[str]) -> None:
        self.environment = environment
        self._lock = threading.Lock()
        self._rows = {job_id: {"status": JobStatus.WAITING, "worker_id": None} for job_id in job_ids}
        self.claims: list[tuple[str, str]] = []

    def select_candidate(self, waiting_status: str) -> str | None:
        with self._lock:
            for job_id, row in self._rows.items():
                if row["status"] == waiting_status and row["worker_id"] is None:
                    return job_id
        return None

    def try_claim(self, job_id: str, stage, worker_id: str) -> JobRecord | None:
        with self._lock:
            row = self._rows[job_id]
            if row["status"] != stage.waiting_status or row["worker_id"] is not None:
                return None
            row["status"] = stage.processing_status
            row["worker_id"] = worker_id
            self.claims.append((job_id, worker_id))
        return _make_job(job_id, self.environment)


class TestConcurrentClaims:
    def test_no_job_is_claimed_twice(self) -> None:
        repo = InMemoryRepository("prod", [f"job-{i}" for i in range(50)])
        settings = _make_settings(claim_race_retries=100)

        def drain(worker_id: str) -> None:
            queue = JobQueue([repo], EXTRACTION_STAGE, worker_id, settings)
            while queue.claim_next() is not None:
                pass

        threads = [threading.Thread(target=drain, args=(f"w{i}",)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        claimed_ids = [job_id for job_id, _ in repo.claims]
        assert len(claimed_ids) == 50
        assert len(set(claimed_ids)) == 50
