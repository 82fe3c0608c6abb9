"""PostgreSQL adapters for the ledger item cache and the tag inventory.

Both tables are snapshots of ledger lists, keyed by site. They are only
written by the pull use cases and read by the pre-checks that run before
anything is sent to the ledger.
"""

import logging
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from ...api.database import database_transaction
from ..domain.entities import ExternalItemCacheEntry, TagInventoryEntry, TagType
from ..domain.ports import IItemCacheRepository, ITagInventoryRepository
from ._rows import dump_json, row_to_item_cache

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class PostgresItemCacheRepository(IItemCacheRepository):
    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def upsert_items(self, entries: list[ExternalItemCacheEntry]) -> int:
        if not entries:
            return 0

        records = [
            (
                e.site_id,
                e.external_item_id,
                e.name,
                e.product_category_name,
                e.product_category_type,
                e.quantity_type,
                e.unit_of_measure,
                e.approval_status,
                e.requires_strain,
                e.strain_name,
                e.is_active,
                dump_json(e.raw_data),
                e.last_synced_at,
            )
            for e in entries
        ]

        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO external_item_cache (
                    site_id, external_item_id, name, product_category_name,
                    product_category_type, quantity_type, unit_of_measure,
                    approval_status, requires_strain, strain_name, is_active,
                    raw_data, last_synced_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12::jsonb, $13)
                ON CONFLICT (site_id, external_item_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    product_category_name = EXCLUDED.product_category_name,
                    product_category_type = EXCLUDED.product_category_type,
                    quantity_type = EXCLUDED.quantity_type,
                    unit_of_measure = EXCLUDED.unit_of_measure,
                    approval_status = EXCLUDED.approval_status,
                    requires_strain = EXCLUDED.requires_strain,
                    strain_name = EXCLUDED.strain_name,
                    is_active = EXCLUDED.is_active,
                    raw_data = EXCLUDED.raw_data,
                    last_synced_at = EXCLUDED.last_synced_at
                """,
                records,
            )

        logger.debug(f"Upserted {len(records)} cached items")
        return len(records)

    async def list_for_site(self, site_id: UUID) -> list[ExternalItemCacheEntry]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM external_item_cache WHERE site_id = $1 ORDER BY name",
                site_id,
            )
        return [row_to_item_cache(r) for r in rows]


class PostgresTagInventoryRepository(ITagInventoryRepository):
    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def replace_available(self, site_id: UUID, tag_type: TagType, entries: list[TagInventoryEntry]) -> int:
        labels = [e.label for e in entries]
        async with database_transaction(self.pool) as conn:
            if entries:
                await conn.executemany(
                    """
                    INSERT INTO tag_inventory (
                        site_id, label, tag_type, external_tag_id, status,
                        commissioned_at, last_synced_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                    ON CONFLICT (site_id, label) DO UPDATE SET
                        tag_type = EXCLUDED.tag_type,
                        external_tag_id = EXCLUDED.external_tag_id,
                        status = EXCLUDED.status,
                        commissioned_at = EXCLUDED.commissioned_at,
                        last_synced_at = EXCLUDED.last_synced_at
                    """,
                    [
                        (e.site_id, e.label, e.tag_type.value, e.external_tag_id, e.status,
                         e.commissioned_at, e.last_synced_at)
                        for e in entries
                    ],
                )
            await conn.execute(
                """
                UPDATE tag_inventory SET status = 'used', last_synced_at = NOW()
                WHERE site_id = $1 AND tag_type = $2 AND status = 'available'
                  AND NOT (label = ANY($3::text[]))
                """,
                site_id,
                tag_type.value,
                labels,
            )

        logger.debug(f"Stored {len(entries)} available {tag_type.value} tags for site {site_id}")
        return len(entries)

    async def is_available(self, site_id: UUID, tag_type: TagType, label: str) -> Optional[bool]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    EXISTS (SELECT 1 FROM tag_inventory WHERE site_id = $1 AND tag_type = $2) AS synced,
                    EXISTS (
                        SELECT 1 FROM tag_inventory
                        WHERE site_id = $1 AND tag_type = $2 AND label = $3 AND status = 'available'
                    ) AS available
                """,
                site_id,
                tag_type.value,
                label,
            )
        if not row["synced"]:
            return None
        return row["available"]


__all__ = ["PostgresItemCacheRepository", "PostgresTagInventoryRepository"]
