import os
from collections.abc import Generator
from pathlib import Path
from typing import Any

import psycopg
import pytest

from registry_worker.config.settings import Settings
from registry_worker.database.connection import close_pools, get_connection, init_pools
from registry_worker.database.models import JobPayload

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"

DEFAULT_TEST_DSN = "host=localhost port=5432 dbname=registry_test user=registry password=secret"


def _test_settings() -> Settings:
    dsn = os.environ.get("TEST_DB_DSN", DEFAULT_TEST_DSN)
    return Settings(worker_environments=["dev"], db_dev_dsn=dsn, claim_race_retries=50)


def _apply_migrations(dsn: str) -> None:
    with psycopg.connect(dsn, autocommit=True) as conn:
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            conn.execute(path.read_text(encoding="utf-8"))


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    dsn = test_settings.dsn_for("dev")
    try:
        with psycopg.connect(dsn, connect_timeout=3) as conn:
            conn.execute("SELECT 1")
    except psycopg.Error as e:
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. "
            "Set TEST_DB_DSN to a disposable database."
        )
    _apply_migrations(dsn)
    init_pools(test_settings)
    try:
        yield
    finally:
        close_pools()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection("dev") as conn:
        conn.execute("TRUNCATE extraction_queue")
        conn.commit()
        yield conn
        conn.rollback()
        conn.execute("TRUNCATE extraction_queue")
        conn.commit()


@pytest.fixture
def index_payload() -> JobPayload:
    return JobPayload(
        document_source="index",
        document_number="1 234 567",
        circonscription_fonciere="Montréal",
        cadastre="Cadastre du Québec",
    )
