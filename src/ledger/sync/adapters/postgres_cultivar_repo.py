"""PostgreSQL adapters for cultivars and the ledger strain cache.

The strain cache is a pure mirror: every strain sync overwrites rows by
(site_id, external_strain_id) in one executemany call.
"""

import logging
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from ..domain.entities import Cultivar, ExternalStrainCacheEntry
from ..domain.ports import ICultivarRepository, IStrainCacheRepository
from ._rows import dec, dump_json, row_to_cultivar, row_to_strain_cache
from ._sync_state import DEFAULT_STALE_AFTER_SECONDS, SyncStateTable

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class PostgresCultivarRepository(ICultivarRepository):
    """Cultivars scoped to an organization."""

    def __init__(self, pool: "asyncpg.Pool", stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS):
        self.pool = pool
        self._state = SyncStateTable(pool, "cultivars", "external_strain_id", "cultivar", stale_after_seconds)

    async def get(self, cultivar_id: UUID) -> Optional[Cultivar]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM cultivars WHERE id = $1", cultivar_id)
        return row_to_cultivar(row) if row else None

    async def list_for_organization(self, organization_id: UUID) -> list[Cultivar]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM cultivars WHERE organization_id = $1 ORDER BY name",
                organization_id,
            )
        return [row_to_cultivar(r) for r in rows]

    async def create(self, cultivar: Cultivar) -> Cultivar:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO cultivars (
                    id, organization_id, name, strain_type,
                    indica_percentage, sativa_percentage, thc_level, cbd_level,
                    is_active, external_strain_id, sync_status, last_synced_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                RETURNING *
                """,
                cultivar.id,
                cultivar.organization_id,
                cultivar.name,
                cultivar.strain_type.value,
                dec(cultivar.indica_percentage),
                dec(cultivar.sativa_percentage),
                dec(cultivar.thc_level),
                dec(cultivar.cbd_level),
                cultivar.is_active,
                cultivar.external_strain_id,
                cultivar.sync_status.value,
                cultivar.last_synced_at,
            )
        return row_to_cultivar(row)

    async def try_begin_sync(self, cultivar_id: UUID) -> bool:
        return await self._state.try_begin(cultivar_id)

    async def complete_sync(self, cultivar_id: UUID, external_strain_id: str) -> None:
        await self._state.complete(cultivar_id, external_strain_id, ", last_synced_at = NOW()")

    async def fail_sync(self, cultivar_id: UUID, error: str) -> None:
        await self._state.fail(cultivar_id, error)

    async def unlink(self, cultivar_id: UUID) -> None:
        await self._state.unlink(cultivar_id)


class PostgresStrainCacheRepository(IStrainCacheRepository):
    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def upsert_strains(self, entries: list[ExternalStrainCacheEntry]) -> int:
        if not entries:
            return 0

        records = [
            (
                e.site_id,
                e.external_strain_id,
                e.name,
                e.testing_status,
                dec(e.thc_level),
                dec(e.cbd_level),
                dec(e.indica_percentage),
                dec(e.sativa_percentage),
                e.is_active,
                e.is_used,
                dump_json(e.raw_data),
                e.last_synced_at,
            )
            for e in entries
        ]

        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO external_strain_cache (
                    site_id, external_strain_id, name, testing_status,
                    thc_level, cbd_level, indica_percentage, sativa_percentage,
                    is_active, is_used, raw_data, last_synced_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb, $12)
                ON CONFLICT (site_id, external_strain_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    testing_status = EXCLUDED.testing_status,
                    thc_level = EXCLUDED.thc_level,
                    cbd_level = EXCLUDED.cbd_level,
                    indica_percentage = EXCLUDED.indica_percentage,
                    sativa_percentage = EXCLUDED.sativa_percentage,
                    is_active = EXCLUDED.is_active,
                    is_used = EXCLUDED.is_used,
                    raw_data = EXCLUDED.raw_data,
                    last_synced_at = EXCLUDED.last_synced_at
                """,
                records,
            )

        logger.debug(f"Upserted {len(records)} cached strains")
        return len(records)

    async def list_for_site(self, site_id: UUID) -> list[ExternalStrainCacheEntry]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM external_strain_cache WHERE site_id = $1 ORDER BY name",
                site_id,
            )
        return [row_to_strain_cache(r) for r in rows]


__all__ = ["PostgresCultivarRepository", "PostgresStrainCacheRepository"]
