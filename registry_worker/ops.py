"""Operator commands for the worker pool."""

import socket
import time

import click
import redis

from registry_worker.config.settings import Settings
from registry_worker.database.connection import close_pools, init_pools
from registry_worker.database.models import CLAIM_STAGES
from registry_worker.database.repositories.job_repository import JobRepository
from registry_worker.logging.logger import Log
from registry_worker.queue.job_queue import JobQueue
from registry_worker.ratelimit.budget import build_rate_budgets
from registry_worker.ratelimit.redis_client import create_redis_client
from registry_worker.ratelimit.registry import WorkerRegistry


def _settings() -> Settings:
    settings = Settings()
    Log.configure(settings.log_level)
    return settings


def _configured_providers(settings: Settings) -> list[str]:
    names = [
        settings.ocr_primary_provider,
        settings.ocr_secondary_provider,
        settings.ocr_boost_provider,
    ]
    return [name.lower() for name in dict.fromkeys(names) if name]


@click.group()
def cli() -> None:
    """Registry worker pool maintenance."""


@cli.command()
def workers() -> None:
    """List registered workers and reap the stale ones."""
    settings = _settings()
    client = create_redis_client(settings)
    try:
        registry = WorkerRegistry(client, settings.worker_liveness_threshold_seconds)
        live = registry.live_workers()
    except redis.RedisError as exc:
        raise click.ClickException(f"Worker registry unavailable: {exc}") from exc
    finally:
        client.close()

    if not live:
        click.echo("No live workers")
        return
    now = time.time()
    for record in sorted(live, key=lambda r: r.worker_id):
        click.echo(
            f"{record.worker_id}  kind={record.kind}  envs={','.join(record.environments)}  "
            f"host={record.hostname}  pid={record.pid}  "
            f"up={now - record.started_at:.0f}s  heartbeat={now - record.last_heartbeat:.0f}s ago"
        )


@cli.command()
def budget() -> None:
    """Print the rate budget of every configured provider."""
    settings = _settings()
    client = create_redis_client(settings)
    try:
        budgets = build_rate_budgets(client, settings, _configured_providers(settings))
        for provider_budget in budgets.values():
            status = provider_budget.status()
            click.echo(
                f"{status['provider']}: requests {status['requests']}/{status['safe_rpm']} "
                f"({status['rpm_usage_percent']}%), tokens {status['tokens']}/{status['safe_tpm']} "
                f"({status['tpm_usage_percent']}%)"
            )
    except redis.RedisError as exc:
        raise click.ClickException(f"Rate budget store unavailable: {exc}") from exc
    finally:
        client.close()


@cli.command()
def recover() -> None:
    """Run one crash-recovery scan across all configured environments."""
    settings = _settings()
    client = create_redis_client(settings)
    try:
        live_ids = WorkerRegistry(client, settings.worker_liveness_threshold_seconds).live_worker_ids()
    except redis.RedisError as exc:
        raise click.ClickException(
            f"Worker registry unavailable, refusing to recover: {exc}"
        ) from exc
    finally:
        client.close()

    init_pools(settings)
    try:
        queue = JobQueue(
            [JobRepository(environment) for environment in settings.worker_environments],
            CLAIM_STAGES[settings.worker_kind],
            f"ops-{socket.gethostname()}",
            settings,
        )
        recovered = queue.recover_abandoned(live_ids)
    finally:
        close_pools()
    click.echo(f"Recovered {recovered} abandoned job(s); {len(live_ids)} live worker(s)")


@cli.command("reset-window")
@click.argument("provider")
def reset_window(provider: str) -> None:
    """Zero the request and token counters of PROVIDER."""
    settings = _settings()
    client = create_redis_client(settings)
    try:
        budgets = build_rate_budgets(client, settings, [provider.lower()])
        budgets[provider.lower()].reset_window()
    except redis.RedisError as exc:
        raise click.ClickException(f"Rate budget store unavailable: {exc}") from exc
    finally:
        client.close()
    click.echo(f"Rate window reset for {provider.lower()}")


if __name__ == "__main__":
    cli()
