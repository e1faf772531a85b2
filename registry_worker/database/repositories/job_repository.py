from typing import Any

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from registry_worker.database.connection import get_connection
from registry_worker.database.models import ClaimStage, JobPayload, JobRecord, JobStatus
from registry_worker.database.validation import validate_job_payload

_COLUMNS = """
    id, document_source, document_number, circonscription_fonciere, cadastre,
    designation_secondaire, acte_type, status, worker_id, attempts, error_message,
    source_path, file_content, boosted_file_content, ocr_result, created_at,
    processing_started_at, completed_at, updated_at
"""

# Columns a worker may write when it closes a job.
_RESULT_COLUMNS = ("source_path", "file_content", "boosted_file_content", "ocr_result")


class JobRepository:
    """Database operations for the extraction_queue table of one environment.

    Every write that touches a claimed row is guarded by ``worker_id = <self>``
    so a worker can never overwrite a row it does not own.
    """

    def __init__(self, environment: str) -> None:
        self._environment = environment

    @property
    def environment(self) -> str:
        return self._environment

    def select_candidate(self, waiting_status: str) -> str | None:
        """Return the id of the oldest unowned row in ``waiting_status``.

        This is a plain read: the row is not reserved until ``try_claim`` succeeds.
        """
        with get_connection(self._environment) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id
                    FROM extraction_queue
                    WHERE status = %s
                      AND worker_id IS NULL
                    ORDER BY created_at, id
                    LIMIT 1
                    """,
                    (waiting_status,),
                )
                row = cur.fetchone()
            conn.commit()
        return None if row is None else str(row[0])

    def try_claim(self, job_id: str, stage: ClaimStage, worker_id: str) -> JobRecord | None:
        """Conditionally take ownership of a row.

        Returns the claimed row, or None when another worker won the race.
        """
        with get_connection(self._environment) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    UPDATE extraction_queue
                    SET status = %s, worker_id = %s,
                        processing_started_at = NOW(), updated_at = NOW()
                    WHERE id = %s
                      AND status = %s
                      AND worker_id IS NULL
                    RETURNING {_COLUMNS}
                    """,
                    (stage.processing_status, worker_id, job_id, stage.waiting_status),
                )
                row = cur.fetchone()
            conn.commit()
        return None if row is None else JobRecord.from_row(row, self._environment)

    def complete(
        self,
        job_id: str,
        worker_id: str,
        expected_status: str,
        new_status: str,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Write a successful outcome and release ownership.

        ``new_status`` is either a terminal status or the next stage's waiting
        status. A hand-off resets ``attempts`` so each stage gets its own retry
        allowance. Returns False if the row is no longer owned by ``worker_id``.
        """
        fields = dict(fields or {})
        unknown = set(fields) - set(_RESULT_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot write columns {sorted(unknown)} on completion")
        if "ocr_result" in fields and fields["ocr_result"] is not None:
            fields["ocr_result"] = Jsonb(fields["ocr_result"])

        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder(name))
            for name in fields
        ]
        terminal = new_status in (JobStatus.DONE, JobStatus.FAILED)
        query = sql.SQL(
            """
            UPDATE extraction_queue
            SET status = %(new_status)s, worker_id = NULL, error_message = NULL,
                processing_started_at = NULL,
                completed_at = CASE WHEN %(terminal)s THEN NOW() ELSE completed_at END,
                attempts = CASE WHEN %(terminal)s THEN attempts ELSE 0 END,
                updated_at = NOW(){extra}
            WHERE id = %(job_id)s
              AND worker_id = %(worker_id)s
              AND status = %(expected_status)s
            """
        ).format(
            extra=sql.SQL("").join(sql.SQL(", ") + a for a in assignments),
        )
        params = {
            **fields,
            "new_status": new_status,
            "terminal": terminal,
            "job_id": job_id,
            "worker_id": worker_id,
            "expected_status": expected_status,
        }
        with get_connection(self._environment) as conn:
            cur = conn.execute(query, params)
            conn.commit()
            return cur.rowcount == 1

    def release(
        self,
        job_id: str,
        worker_id: str,
        stage: ClaimStage,
        error: str,
    ) -> bool:
        """Return an owned row to the stage's waiting status and bump attempts."""
        with get_connection(self._environment) as conn:
            cur = conn.execute(
                """
                UPDATE extraction_queue
                SET status = %s, worker_id = NULL, attempts = attempts + 1,
                    error_message = %s, processing_started_at = NULL, updated_at = NOW()
                WHERE id = %s
                  AND worker_id = %s
                  AND status = %s
                """,
                (stage.waiting_status, error, job_id, worker_id, stage.processing_status),
            )
            conn.commit()
            return cur.rowcount == 1

    def mark_failed(
        self,
        job_id: str,
        worker_id: str,
        expected_status: str,
        error: str,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Close an owned row as permanently failed, keeping any diagnostic text."""
        fields = dict(fields or {})
        with get_connection(self._environment) as conn:
            cur = conn.execute(
                """
                UPDATE extraction_queue
                SET status = %s, worker_id = NULL, attempts = attempts + 1,
                    error_message = %s,
                    file_content = COALESCE(%s, file_content),
                    boosted_file_content = COALESCE(%s, boosted_file_content),
                    processing_started_at = NULL, completed_at = NOW(), updated_at = NOW()
                WHERE id = %s
                  AND worker_id = %s
                  AND status = %s
                """,
                (
                    JobStatus.FAILED,
                    error,
                    fields.get("file_content"),
                    fields.get("boosted_file_content"),
                    job_id,
                    worker_id,
                    expected_status,
                ),
            )
            conn.commit()
            return cur.rowcount == 1

    def reset_abandoned(
        self,
        stage: ClaimStage,
        live_worker_ids: list[str],
        stale_after_seconds: float = 0,
    ) -> list[str]:
        """Reset in-progress rows whose owner is gone (or stuck) back to waiting.

        A row is abandoned when its worker id is not in ``live_worker_ids`` or,
        when ``stale_after_seconds`` > 0, when it has been in progress longer
        than that. Returns the ids that were reset.
        """
        with get_connection(self._environment) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE extraction_queue
                    SET status = %s, worker_id = NULL, processing_started_at = NULL,
                        error_message = 'Reset by crash recovery: owner ' ||
                            COALESCE(worker_id, '<none>') || ' abandoned the job',
                        updated_at = NOW()
                    WHERE status = %s
                      AND (
                        worker_id IS NULL
                        OR NOT (worker_id = ANY(%s::text[]))
                        OR (
                          %s > 0
                          AND processing_started_at < NOW() - make_interval(secs => %s)
                        )
                      )
                    RETURNING id
                    """,
                    (
                        stage.waiting_status,
                        stage.processing_status,
                        list(live_worker_ids),
                        float(stale_after_seconds),
                        float(stale_after_seconds),
                    ),
                )
                rows = cur.fetchall()
            conn.commit()
        return [str(row[0]) for row in rows]

    def insert_job(self, payload: JobPayload, status: str = JobStatus.WAITING) -> JobRecord:
        """Validate and insert a new job row."""
        payload = validate_job_payload(payload)
        with get_connection(self._environment) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO extraction_queue
                    (document_source, document_number, circonscription_fonciere,
                     cadastre, designation_secondaire, acte_type, status)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (
                        payload.document_source,
                        payload.document_number,
                        payload.circonscription_fonciere,
                        payload.cadastre,
                        payload.designation_secondaire,
                        payload.acte_type,
                        status,
                    ),
                )
                row = cur.fetchone()
            conn.commit()
        assert row is not None
        return JobRecord.from_row(row, self._environment)

    def find_by_id(self, job_id: str) -> JobRecord | None:
        """Find a job by ID. Useful for tests and operator commands."""
        with get_connection(self._environment) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM extraction_queue
                    WHERE id = %s
                    """,
                    (job_id,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return JobRecord.from_row(row, self._environment)
