from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg_pool import ConnectionPool

from registry_worker.config.settings import Settings

_pools: dict[str, ConnectionPool] = {}


def init_pools(settings: Settings) -> None:
    """Open one connection pool per configured environment."""
    for environment in settings.worker_environments:
        if environment in _pools:
            continue
        _pools[environment] = ConnectionPool(
            settings.dsn_for(environment),
            min_size=1,
            max_size=settings.db_pool_max_size,
            name=f"registry-{environment}",
            open=True,
        )


def close_pools() -> None:
    """Close every environment pool. Safe to call more than once."""
    while _pools:
        _environment, pool = _pools.popitem()
        pool.close()


def configured_environments() -> list[str]:
    return list(_pools)


@contextmanager
def get_connection(environment: str) -> Generator[psycopg.Connection[Any], None, None]:
    """Yield a connection for an environment. Caller manages commit/rollback."""
    pool = _pools.get(environment)
    if pool is None:
        raise RuntimeError(
            f"Connection pool for environment {environment!r} not initialized. "
            "Call init_pools() first."
        )
    with pool.connection() as conn:
        yield conn
