"""PostgreSQL adapters for site-level records.

Covers ledger credentials, rooms/locations, the transfer manifest cache and
the sync log. The sync log has no update or delete path here, and the
table trigger rejects both.
"""

import logging
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from ..domain.entities import Room, SiteCredentials, SyncLogEntry, TransferManifest
from ..domain.ports import (
    ICredentialRepository,
    ILocationRepository,
    ISyncLogRepository,
    ITransferRepository,
)
from ._rows import dump_json, row_to_credentials, row_to_room, row_to_sync_log
from ._sync_state import DEFAULT_STALE_AFTER_SECONDS, SyncStateTable

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class PostgresCredentialRepository(ICredentialRepository):
    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def get_site_credentials(self, site_id: UUID) -> Optional[SiteCredentials]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM ledger_credentials WHERE site_id = $1", site_id)
        return row_to_credentials(row) if row else None

    async def list_sync_enabled(self) -> list[SiteCredentials]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM ledger_credentials WHERE sync_enabled ORDER BY site_id")
        return [row_to_credentials(r) for r in rows]

    async def disable_sync(self, site_id: UUID, reason: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE ledger_credentials
                SET sync_enabled = FALSE, disabled_reason = $2, disabled_at = NOW(), updated_at = NOW()
                WHERE site_id = $1
                """,
                site_id,
                reason[:2000],
            )
        logger.warning(f"Ledger sync disabled for site {site_id}: {reason}")


class PostgresLocationRepository(ILocationRepository):
    def __init__(self, pool: "asyncpg.Pool", stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS):
        self.pool = pool
        self._state = SyncStateTable(pool, "rooms", "external_location_id", "room", stale_after_seconds)

    async def get_room(self, room_id: UUID) -> Optional[Room]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM rooms WHERE id = $1", room_id)
        return row_to_room(row) if row else None

    async def list_rooms(self, site_id: UUID) -> list[Room]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM rooms WHERE site_id = $1 ORDER BY name", site_id)
        return [row_to_room(r) for r in rows]

    async def get_site_default_location(self, site_id: UUID) -> Optional[str]:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT default_location_name FROM sites WHERE id = $1", site_id)

    async def try_begin_sync(self, room_id: UUID) -> bool:
        return await self._state.try_begin(room_id)

    async def complete_sync(self, room_id: UUID, external_location_id: str) -> None:
        # A linked room keeps the name it was linked under
        await self._state.complete(
            room_id, external_location_id, ", external_location_name = COALESCE(external_location_name, name)"
        )

    async def fail_sync(self, room_id: UUID, error: str) -> None:
        await self._state.fail(room_id, error)


class PostgresTransferRepository(ITransferRepository):
    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def upsert_manifests(self, manifests: list[TransferManifest]) -> int:
        if not manifests:
            return 0

        records = [
            (
                m.site_id,
                m.external_transfer_id,
                m.manifest_number,
                m.direction,
                m.shipper_facility_name,
                m.recipient_facility_name,
                m.package_count,
                m.last_modified,
            )
            for m in manifests
        ]
        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO transfer_manifests (
                    site_id, external_transfer_id, manifest_number, direction,
                    shipper_facility_name, recipient_facility_name, package_count,
                    last_modified, synced_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, NOW())
                ON CONFLICT (site_id, external_transfer_id) DO UPDATE SET
                    manifest_number = EXCLUDED.manifest_number,
                    direction = EXCLUDED.direction,
                    shipper_facility_name = EXCLUDED.shipper_facility_name,
                    recipient_facility_name = EXCLUDED.recipient_facility_name,
                    package_count = EXCLUDED.package_count,
                    last_modified = EXCLUDED.last_modified,
                    synced_at = NOW()
                """,
                records,
            )
        return len(records)


class PostgresSyncLogRepository(ISyncLogRepository):
    """Append-only audit sink."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO sync_logs (
                    id, organization_id, site_id, sync_type, direction, status,
                    detail, error_message, performed_by, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10)
                """,
                entry.id,
                entry.organization_id,
                entry.site_id,
                entry.sync_type.value,
                entry.direction.value,
                entry.status.value,
                dump_json(entry.detail),
                entry.error_message,
                entry.performed_by,
                entry.created_at,
            )
        return entry

    async def list_entries(self, site_id: Optional[UUID] = None, limit: int = 100) -> list[SyncLogEntry]:
        async with self.pool.acquire() as conn:
            if site_id is None:
                rows = await conn.fetch("SELECT * FROM sync_logs ORDER BY created_at DESC LIMIT $1", limit)
            else:
                rows = await conn.fetch(
                    "SELECT * FROM sync_logs WHERE site_id = $1 ORDER BY created_at DESC LIMIT $2",
                    site_id,
                    limit,
                )
        return [row_to_sync_log(r) for r in rows]


__all__ = [
    "PostgresCredentialRepository",
    "PostgresLocationRepository",
    "PostgresTransferRepository",
    "PostgresSyncLogRepository",
]
