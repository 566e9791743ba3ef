"""
Pytest configuration for the claim ledger.

Provides fixtures for:
- Database connection management
- Schema initialization from db/init.sql
- Per-test table cleanup for integration tests
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator

import psycopg
import pytest

from claimledger.config import Settings

LEDGER_TABLES = ("claim_record", "settlement", "allocation", "pool")


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "claim_ledger"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    return test_settings.dsn


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection) -> bool:
    """Apply db/init.sql; every statement in it is idempotent."""
    init_sql_path = Path(__file__).parent.parent / "db" / "init.sql"
    with db_connection.cursor() as cur:
        cur.execute(init_sql_path.read_text())
    db_connection.commit()
    return True


def _truncate(conn: psycopg.Connection) -> None:
    tables = ", ".join(f"public.{name}" for name in LEDGER_TABLES)
    with conn.cursor() as cur:
        cur.execute(f"TRUNCATE TABLE {tables} RESTART IDENTITY CASCADE;")
        cur.execute("UPDATE public.platform_config SET claims_enabled = TRUE, claim_fee_usd = 10.00;")
    conn.commit()


@pytest.fixture(scope="function")
def clean_ledger_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty the ledger tables before and after each test function.

    This ensures test isolation by starting with an empty ledger.
    """
    _truncate(db_connection)
    yield
    _truncate(db_connection)
