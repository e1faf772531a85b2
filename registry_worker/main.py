import os
import socket

import redis

from registry_worker.config.settings import Settings
from registry_worker.database.connection import close_pools, init_pools
from registry_worker.database.models import CLAIM_STAGES
from registry_worker.database.repositories.job_repository import JobRepository
from registry_worker.extraction.factory import ExtractorFactory
from registry_worker.logging.logger import Log
from registry_worker.ocr.pipeline import build_ocr_pipeline
from registry_worker.queue.job_queue import JobQueue
from registry_worker.ratelimit.budget import RateBudget
from registry_worker.ratelimit.redis_client import create_redis_client
from registry_worker.ratelimit.registry import WorkerRecord, WorkerRegistry
from registry_worker.worker.job_runner import JobRunner
from registry_worker.worker.lifecycle import WorkerLifecycle
from registry_worker.worker.processors import (
    BaseJobProcessor,
    ExtractionJobProcessor,
    OcrJobProcessor,
)
from registry_worker.worker.signals import SignalHandler


def build_lifecycle(
    settings: Settings,
    redis_client: redis.Redis,
    worker_id: str,
) -> WorkerLifecycle:
    """Wire queue, processor, runner and registry for the configured worker kind."""
    queue = JobQueue(
        [JobRepository(environment) for environment in settings.worker_environments],
        CLAIM_STAGES[settings.worker_kind],
        worker_id,
        settings,
    )

    processor: BaseJobProcessor
    budgets: list[RateBudget] = []
    shutdown_hooks = []
    if settings.worker_kind == "ocr":
        pipeline, budgets = build_ocr_pipeline(settings, redis_client)
        processor = OcrJobProcessor(pipeline, settings)
        shutdown_hooks.append(pipeline.close)
    else:
        processor = ExtractionJobProcessor(ExtractorFactory.create(settings))
    shutdown_hooks.extend([close_pools, redis_client.close])

    record = WorkerRecord(
        worker_id=worker_id,
        kind=settings.worker_kind,
        environments=list(settings.worker_environments),
        hostname=socket.gethostname(),
        pid=os.getpid(),
    )
    return WorkerLifecycle(
        queue=queue,
        runner=JobRunner(processor, queue, settings),
        registry=WorkerRegistry(redis_client, settings.worker_liveness_threshold_seconds),
        record=record,
        budgets=budgets,
        settings=settings,
        shutdown_hooks=shutdown_hooks,
    )


def main() -> None:
    """Entry point: load settings -> open stores -> run the worker until stopped."""
    settings = Settings()
    Log.configure(settings.log_level)
    worker_id = settings.resolved_worker_id()
    Log.bind_worker(worker_id)
    Log.info(f"Starting {settings.worker_kind} worker ({settings.app_env})")

    init_pools(settings)
    redis_client = create_redis_client(settings)
    try:
        lifecycle = build_lifecycle(settings, redis_client, worker_id)
        SignalHandler(lifecycle).install()
        lifecycle.run()
    finally:
        close_pools()
        redis_client.close()


if __name__ == "__main__":
    main()
