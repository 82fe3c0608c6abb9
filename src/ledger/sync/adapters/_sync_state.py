"""Shared SQL for the per-entity sync mutex and write-once external links.

Cultivars, batches and rooms all carry the same four columns
(``sync_status``, ``sync_error``, ``sync_started_at`` and an external id
column), so the compare-and-swap and link statements are built once here
from trusted table/column names.
"""

import logging
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from ...api.exceptions import LinkConflictError, ValidationError
from ..domain.entities import ACQUIRABLE_STATUSES

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SECONDS = 600


class SyncStateTable:
    """Sync mutex operations for one table."""

    def __init__(
        self,
        pool: "asyncpg.Pool",
        table: str,
        external_column: str,
        entity_type: str,
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
    ):
        self.pool = pool
        self.table = table
        self.external_column = external_column
        self.entity_type = entity_type
        self.stale_after_seconds = stale_after_seconds

    async def try_begin(self, entity_id: UUID) -> bool:
        """Move into SYNCING if the row is acquirable or its SYNCING mark is stale."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {self.table}
                SET sync_status = 'syncing', sync_started_at = NOW(), sync_error = NULL
                WHERE id = $1
                  AND (
                    sync_status = ANY($2::text[])
                    OR (sync_status = 'syncing'
                        AND sync_started_at < NOW() - make_interval(secs => $3))
                  )
                RETURNING id
                """,
                entity_id,
                [s.value for s in ACQUIRABLE_STATUSES],
                float(self.stale_after_seconds),
            )
        if row is None:
            logger.debug(f"{self.entity_type} {entity_id} sync mutex not acquired")
        return row is not None

    async def complete(self, entity_id: UUID, external_id: str, extra_set: str = "") -> None:
        """Write the external id once and mark SYNCED.

        ``extra_set`` is an optional trusted SQL fragment appended to the SET
        list (e.g. ``", last_synced_at = NOW()"``).
        """
        column = self.external_column
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {self.table}
                SET {column} = $2, sync_status = 'synced', sync_error = NULL,
                    sync_started_at = NULL{extra_set}
                WHERE id = $1 AND ({column} IS NULL OR {column} = $2)
                RETURNING id
                """,
                entity_id,
                external_id,
            )
            if row is not None:
                return
            existing = await conn.fetchval(f"SELECT {column} FROM {self.table} WHERE id = $1", entity_id)

        if existing is None:
            raise ValidationError(f"{self.entity_type} {entity_id} not found")
        raise LinkConflictError(self.entity_type, entity_id, existing_id=existing, new_id=external_id)

    async def fail(self, entity_id: UUID, error: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {self.table}
                SET sync_status = 'sync_failed', sync_error = $2, sync_started_at = NULL
                WHERE id = $1
                """,
                entity_id,
                error[:2000],
            )

    async def unlink(self, entity_id: UUID) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {self.table}
                SET {self.external_column} = NULL, sync_status = 'not_synced',
                    sync_error = NULL, sync_started_at = NULL
                WHERE id = $1
                """,
                entity_id,
            )
        logger.info(f"Unlinked {self.entity_type} {entity_id}")


async def link_write_once(
    conn: "asyncpg.Connection",
    table: str,
    column: str,
    entity_type: str,
    entity_id: UUID,
    external_id: str,
) -> None:
    """Set an external id column that may only ever hold one value."""
    row = await conn.fetchrow(
        f"""
        UPDATE {table} SET {column} = $2
        WHERE id = $1 AND ({column} IS NULL OR {column} = $2)
        RETURNING id
        """,
        entity_id,
        external_id,
    )
    if row is not None:
        return
    existing: Optional[str] = await conn.fetchval(f"SELECT {column} FROM {table} WHERE id = $1", entity_id)
    if existing is None:
        raise ValidationError(f"{entity_type} {entity_id} not found")
    raise LinkConflictError(entity_type, entity_id, existing_id=existing, new_id=external_id)


__all__ = ["SyncStateTable", "link_write_once", "DEFAULT_STALE_AFTER_SECONDS"]
