#!/usr/bin/env python3
"""Database Utilities for the Ledger Sync Engine.

This module provides database utilities including:
    - Transaction context managers with automatic commit/rollback
    - Connection pool management
    - Conversion of driver errors into the LedgerError hierarchy

Quantity guards live in the schema (CHECK constraints), so a write that
would over-allocate a batch or drive a package below zero is rejected by
the store and surfaces here as InvariantViolation.

Example:
    async with database_transaction(pool) as conn:
        await conn.execute("INSERT INTO waste_logs ...")
        await conn.execute("UPDATE packages SET quantity = quantity - $2 ...")
        # Automatic commit on success, rollback on exception

Author: Ledger Sync Team
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from .exceptions import (
    ConnectionPoolError,
    DatabaseError,
    IntegrityError,
    InvariantViolation,
    LedgerError,
    TransactionError,
)

logger = logging.getLogger(__name__)

ACQUIRE_TIMEOUT_SECONDS = 30.0


# ============================================
# Transaction Context Managers
# ============================================

@asynccontextmanager
async def database_transaction(
    pool,
    isolation: str = "read_committed",
) -> AsyncIterator[Any]:
    """Context manager for database transactions with automatic commit/rollback.

    Args:
        pool: asyncpg connection pool
        isolation: Transaction isolation level
            ("serializable", "repeatable_read", "read_committed")

    Yields:
        Database connection within transaction

    Raises:
        ConnectionPoolError: If connection cannot be acquired
        TransactionError: If transaction fails
        InvariantViolation: If a quantity CHECK constraint rejects the write
        IntegrityError: If another integrity constraint is violated
    """
    if pool is None:
        raise ConnectionPoolError("Database connection pool is not initialized")

    conn = None
    try:
        try:
            conn = await asyncio.wait_for(
                pool.acquire(),
                timeout=ACQUIRE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            raise ConnectionPoolError(
                "Timeout acquiring database connection",
                details={"timeout_seconds": ACQUIRE_TIMEOUT_SECONDS},
            )
        except Exception as e:
            raise ConnectionPoolError(
                f"Failed to acquire database connection: {e}",
                cause=e,
            )

        transaction = conn.transaction(isolation=isolation)

        try:
            await transaction.start()
        except Exception as e:
            raise TransactionError(
                f"Failed to start transaction: {e}",
                cause=e,
            )

        try:
            yield conn
            await transaction.commit()
            logger.debug("Transaction committed successfully")

        except Exception as e:
            try:
                await transaction.rollback()
                logger.debug("Transaction rolled back due to exception")
            except Exception as rollback_error:
                logger.error(f"Rollback failed: {rollback_error}")

            raise convert_db_exception(e)

    finally:
        if conn:
            await pool.release(conn)


# ============================================
# Error Conversion
# ============================================

def convert_db_exception(e: Exception) -> LedgerError:
    """Convert a driver exception to the appropriate LedgerError subtype."""
    # Domain errors raised inside a transaction pass through untouched
    if isinstance(e, LedgerError):
        return e

    error_str = str(e).lower()

    if "check constraint" in error_str:
        return InvariantViolation(
            f"Quantity constraint rejected the write: {e}",
            details={"constraint": "check"},
            cause=e,
        )

    if "unique" in error_str or "duplicate" in error_str:
        return IntegrityError(
            f"Duplicate entry: {e}",
            constraint="unique",
            cause=e,
        )

    if "foreign key" in error_str:
        return IntegrityError(
            f"Foreign key violation: {e}",
            constraint="foreign_key",
            cause=e,
        )

    if "not null" in error_str:
        return IntegrityError(
            f"Not null violation: {e}",
            constraint="not_null",
            cause=e,
        )

    if "append-only" in error_str:
        return IntegrityError(
            f"Audit log is append-only: {e}",
            constraint="append_only",
            cause=e,
        )

    if "deadlock" in error_str:
        return TransactionError(
            f"Deadlock detected: {e}",
            operation="transaction",
            cause=e,
        )

    if "timeout" in error_str or "timed out" in error_str:
        return TransactionError(
            f"Database operation timed out: {e}",
            operation="query",
            cause=e,
        )

    return DatabaseError(
        f"Database operation failed: {e}",
        cause=e,
    )


# ============================================
# Connection Pool Helpers
# ============================================

async def create_pool(
    database_url: str,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    **kwargs,
):
    """Create a database connection pool with error handling.

    Args:
        database_url: PostgreSQL connection string
        min_size: Minimum pool connections
        max_size: Maximum pool connections
        command_timeout: Default query timeout in seconds
        **kwargs: Additional asyncpg.create_pool arguments

    Returns:
        asyncpg.Pool instance

    Raises:
        ConnectionPoolError: If pool creation fails
    """
    import asyncpg

    try:
        pool = await asyncpg.create_pool(
            database_url,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
            **kwargs,
        )
        logger.info(f"Database pool created (min={min_size}, max={max_size})")
        return pool

    except Exception as e:
        raise ConnectionPoolError(
            f"Failed to create database pool: {e}",
            cause=e,
        )


async def close_pool(pool, timeout: float = 10.0):
    """Close database pool gracefully.

    Args:
        pool: asyncpg pool to close
        timeout: Maximum time to wait for connections to close
    """
    if pool is None:
        return

    try:
        await asyncio.wait_for(pool.close(), timeout=timeout)
        logger.info("Database pool closed")
    except asyncio.TimeoutError:
        logger.warning(f"Pool close timed out after {timeout}s, terminating")
        pool.terminate()


async def check_database_health(pool) -> dict[str, Any]:
    """Check database connection health.

    Returns:
        Dict with health status information
    """
    if pool is None:
        return {"healthy": False, "error": "Pool not initialized"}

    try:
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
            pool_size = pool.get_size()
            pool_free = pool.get_idle_size()

            return {
                "healthy": result == 1,
                "pool_size": pool_size,
                "pool_free": pool_free,
                "pool_used": pool_size - pool_free,
            }

    except Exception as e:
        return {"healthy": False, "error": str(e)}


__all__ = [
    "database_transaction",
    "convert_db_exception",
    "create_pool",
    "close_pool",
    "check_database_health",
]
