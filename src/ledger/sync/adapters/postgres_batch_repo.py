"""PostgreSQL adapter for batches and their tracked plants.

Plants are reserved before the ledger is called: ``reserve_plants`` moves
them into ``allocated_count`` with an UPDATE that only matches rows with
enough unallocated plants, and the batches table CHECKs
``allocated_count <= plant_count``. The later package or growth phase
write consumes the reservation; a failed ledger call releases it.
"""

import logging
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from ...api.database import database_transaction
from ...api.exceptions import InvariantViolation, ValidationError
from ..domain.entities import Batch, GrowthPhase, Package, Plant
from ..domain.ports import IBatchRepository
from ._rows import insert_package, row_to_batch
from ._sync_state import DEFAULT_STALE_AFTER_SECONDS, SyncStateTable

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class PostgresBatchRepository(IBatchRepository):
    def __init__(self, pool: "asyncpg.Pool", stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS):
        self.pool = pool
        self._state = SyncStateTable(pool, "batches", "external_batch_id", "batch", stale_after_seconds)

    async def get(self, batch_id: UUID) -> Optional[Batch]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM batches WHERE id = $1", batch_id)
        return row_to_batch(row) if row else None

    async def list_for_site(self, site_id: UUID) -> list[Batch]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM batches WHERE site_id = $1 ORDER BY batch_number",
                site_id,
            )
        return [row_to_batch(r) for r in rows]

    # ============================================
    # Sync Mutex
    # ============================================

    async def try_begin_sync(self, batch_id: UUID) -> bool:
        return await self._state.try_begin(batch_id)

    async def complete_sync(self, batch_id: UUID, external_batch_id: str) -> None:
        await self._state.complete(batch_id, external_batch_id)

    async def fail_sync(self, batch_id: UUID, error: str) -> None:
        await self._state.fail(batch_id, error)

    async def unlink(self, batch_id: UUID) -> None:
        await self._state.unlink(batch_id)


    async def list_plant_tags(self, batch_id: UUID) -> list[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT tag FROM plants WHERE batch_id = $1 ORDER BY created_at, tag",
                batch_id,
            )
        return [r["tag"] for r in rows]

    # ============================================
    # Quantity-Guarded Writes
    # ============================================

    async def reserve_plants(self, batch_id: UUID, count: int) -> Batch:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE batches SET allocated_count = allocated_count + $2
                WHERE id = $1 AND plant_count - allocated_count >= $2
                RETURNING *
                """,
                batch_id,
                count,
            )
            if row is None:
                available = await conn.fetchval(
                    "SELECT plant_count - allocated_count FROM batches WHERE id = $1",
                    batch_id,
                )
        if row is None:
            if available is None:
                raise ValidationError(f"Batch {batch_id} not found")
            raise InvariantViolation(
                f"Cannot reserve {count} plants; only {available} available",
                details={"requested": count, "available": available},
            )
        logger.debug(f"Reserved {count} plants of batch {batch_id}")
        return row_to_batch(row)

    async def release_plants(self, batch_id: UUID, count: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE batches SET allocated_count = GREATEST(allocated_count - $2, 0) WHERE id = $1",
                batch_id,
                count,
            )
        logger.debug(f"Released {count} reserved plants of batch {batch_id}")

    async def record_growth_phase(
        self,
        batch_id: UUID,
        phase: GrowthPhase,
        plants: list[Plant],
    ) -> Batch:
        async with database_transaction(self.pool) as conn:
            row = await conn.fetchrow("SELECT * FROM batches WHERE id = $1 FOR UPDATE", batch_id)
            if row is None:
                raise ValidationError(f"Batch {batch_id} not found")
            batch = row_to_batch(row)

            if phase.order < batch.growth_phase.order:
                raise InvariantViolation(
                    f"Batch {batch.batch_number} cannot move back from "
                    f"{batch.growth_phase.value} to {phase.value}",
                    details={"batch_id": str(batch_id)},
                )

            updated = await conn.fetchrow(
                "UPDATE batches SET growth_phase = $2 WHERE id = $1 RETURNING *",
                batch_id,
                phase.value,
            )

            if plants:
                await conn.executemany(
                    """
                    INSERT INTO plants (id, batch_id, tag, growth_phase, created_at)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    [(p.id, p.batch_id, p.tag, p.growth_phase.value, p.created_at) for p in plants],
                )

        logger.debug(f"Batch {batch_id} now {phase.value} with {len(plants)} new plants")
        return row_to_batch(updated)

    async def allocate_package(self, batch_id: UUID, package: Package, decrement: bool) -> Batch:
        count = int(package.quantity)
        async with database_transaction(self.pool) as conn:
            if decrement:
                # The plants leave the batch, taking their reservation with them
                row = await conn.fetchrow(
                    """
                    UPDATE batches
                    SET plant_count = plant_count - $2, allocated_count = allocated_count - $2
                    WHERE id = $1 AND allocated_count >= $2
                    RETURNING *
                    """,
                    batch_id,
                    count,
                )
            else:
                row = await conn.fetchrow(
                    "SELECT * FROM batches WHERE id = $1 AND allocated_count >= $2",
                    batch_id,
                    count,
                )
            if row is None:
                raise InvariantViolation(
                    f"Batch {batch_id} has no reservation of {count} plants for package {package.tag}",
                    details={"requested": count, "tag": package.tag},
                )
            await insert_package(conn, package)

        return row_to_batch(row)


__all__ = ["PostgresBatchRepository"]
