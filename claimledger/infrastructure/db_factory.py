"""
Database connection factory utilities for the claim ledger.

Provides centralized management of the async PostgreSQL connection pool used
by the ledger store. The PoolManager singleton ensures the pool is created
once per process and closed on shutdown.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import threading
from typing import Optional

import psycopg
from psycopg_pool import AsyncConnectionPool
from tenacity import (
    AsyncRetrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from claimledger.config import get_settings
from claimledger.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn() -> str:
    """Compose a DSN string from settings."""
    return get_settings().dsn


class PoolManager:
    """
    Thread-safe singleton owning the process' async connection pool.

    The pool is opened lazily by `open_async_pool` and must be closed with
    `close_async_pool` from the same event loop (the API lifespan and the CLI
    commands both do this).
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._async_pool = None
            return cls._instance

    async def open_async_pool(
        self,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        dsn: Optional[str] = None,
    ) -> AsyncConnectionPool:
        """
        Get or create the asynchronous connection pool.

        Parameters
        ----------
        min_size : int, optional
            Minimum number of idle connections to keep (default from settings).
        max_size : int, optional
            Maximum total connections in the pool (default from settings).
        dsn : str, optional
            Override the DSN composed from settings.

        Returns
        -------
        AsyncConnectionPool
            The managed, opened async pool instance.
        """
        if self._async_pool is not None:
            return self._async_pool

        settings = get_settings()
        pool = AsyncConnectionPool(
            conninfo=dsn or build_dsn(),
            min_size=min_size or settings.db_pool_min_size,
            max_size=max_size or settings.db_pool_max_size,
            open=False,
        )
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((psycopg.OperationalError, OSError)),
            reraise=True,
        ):
            with attempt:
                await pool.open(wait=True)
        log.info("Database pool opened", extra={"min_size": pool.min_size, "max_size": pool.max_size})
        self._async_pool = pool
        return pool

    async def close_async_pool(self) -> None:
        """Close the managed pool and release resources."""
        pool, self._async_pool = self._async_pool, None
        if pool is not None:
            await pool.close()
            log.info("Database pool closed")


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> psycopg.Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection
    errors. Used by the seeding script and schema bootstrap, which run outside
    any event loop.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn())


__all__ = ["PoolManager", "build_dsn", "get_sync_connection"]
