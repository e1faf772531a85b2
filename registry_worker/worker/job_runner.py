from registry_worker.config.settings import Settings
from registry_worker.database.models import JobRecord
from registry_worker.database.validation import validate_job_payload
from registry_worker.exceptions import FatalJobError, JobError
from registry_worker.logging.logger import Log
from registry_worker.queue.job_queue import JobQueue
from registry_worker.worker.processors import BaseJobProcessor


class JobRunner:
    """Run one claimed job and always leave it settled.

    Every path ends in exactly one write: complete, fail or release. The
    ``finally`` block releases the job if processing was interrupted by
    something that escaped the handlers (e.g. KeyboardInterrupt).
    """

    def __init__(
        self,
        processor: BaseJobProcessor,
        queue: JobQueue,
        settings: Settings,
    ) -> None:
        self._processor = processor
        self._queue = queue
        self._settings = settings

    def run(self, job: JobRecord) -> None:
        """Execute a single job with error handling."""
        Log.info(f"[{job.label}] Running job (attempt {job.attempts + 1})")
        settled = False
        try:
            validate_job_payload(job.payload())
            outcome = self._processor.process(job)
            settled = True
            self._queue.complete(job, outcome.status, outcome.fields)
        except FatalJobError as exc:
            settled = True
            self._queue.fail(job, self._describe(exc), exc.row_fields)
        except Exception as exc:
            settled = True
            self._handle_retryable(job, exc)
        finally:
            if not settled:
                self._queue.release(job, "Interrupted before a terminal write")

    def _handle_retryable(self, job: JobRecord, exc: Exception) -> None:
        """Return to waiting, or fail once the attempt budget is spent."""
        error = self._describe(exc)
        if job.attempts + 1 >= self._settings.max_job_attempts:
            row_fields = exc.row_fields if isinstance(exc, JobError) else {}
            self._queue.fail(job, f"{error} (after {job.attempts + 1} attempts)", row_fields)
        else:
            self._queue.release(job, error)

    @staticmethod
    def _describe(exc: BaseException) -> str:
        message = str(exc) or "no message"
        return f"{type(exc).__name__}: {message}"
