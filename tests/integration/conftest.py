import os
import random
from collections.abc import Generator
from datetime import date
from typing import Any

import psycopg
import pytest

from nfse_ingest.config.settings import Settings
from nfse_ingest.database.connection import apply_schema, close_pool, get_connection, init_pool
from nfse_ingest.database.models import JobRecord


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "nfse_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        with get_connection() as conn:
            apply_schema(conn)
    except Exception as e:
        close_pool()
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to point at it")
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def tenant_id(integration_pool: None) -> Generator[int, None, None]:
    """A tenant id no other test uses; its rows are removed afterwards."""
    tenant = random.randint(1_000_000, 2_000_000_000)
    yield tenant
    with get_connection() as conn:
        conn.execute("DELETE FROM nfse_documents WHERE tenant_id = %s", (tenant,))
        conn.execute("DELETE FROM ingestion_jobs WHERE tenant_id = %s", (tenant,))
        conn.commit()


@pytest.fixture
def seed_job(db_conn: psycopg.Connection[Any], tenant_id: int) -> JobRecord:
    with db_conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO ingestion_jobs (tenant_id, start_date, end_date, status, attempts)
            VALUES (%s, %s, %s, 'pending', 0)
            RETURNING id
            """,
            (tenant_id, date(2025, 8, 1), date(2025, 8, 31)),
        )
        row = cur.fetchone()
        assert row is not None
    db_conn.commit()
    return JobRecord(
        id=row[0],
        tenant_id=tenant_id,
        start_date=date(2025, 8, 1),
        end_date=date(2025, 8, 31),
        status="pending",
        attempts=0,
    )
