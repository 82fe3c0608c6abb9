"""PostgreSQL adapters for packages, harvests, lab tests and waste logs.

Every write that draws down inventory is guarded in its WHERE clause.
Destructions decrement and insert their waste log in one transaction.
Packages from a harvest reserve their weight first, before the ledger is
called, and insert the package once the ledger has accepted it.
"""

import logging
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from ...api.database import database_transaction
from ...api.exceptions import InvariantViolation, LinkConflictError, ValidationError
from ..domain.entities import (
    Harvest,
    LabTest,
    LabTestStatus,
    Package,
    WasteLog,
    WasteSourceType,
)
from ..domain.ports import (
    IHarvestRepository,
    ILabTestRepository,
    IPackageRepository,
    IWasteRepository,
)
from ._rows import (
    dec,
    dump_json,
    insert_package,
    row_to_harvest,
    row_to_lab_test,
    row_to_package,
    row_to_waste_log,
)
from ._sync_state import DEFAULT_STALE_AFTER_SECONDS, SyncStateTable, link_write_once

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


# ============================================
# Packages
# ============================================

class PostgresPackageRepository(IPackageRepository):
    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def get(self, package_id: UUID) -> Optional[Package]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM packages WHERE id = $1", package_id)
        return row_to_package(row) if row else None

    async def find_by_tag(self, tag: str) -> Optional[Package]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM packages WHERE tag = $1", tag)
        return row_to_package(row) if row else None

    async def list_for_site(self, site_id: UUID) -> list[Package]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM packages WHERE site_id = $1 ORDER BY created_at",
                site_id,
            )
        return [row_to_package(r) for r in rows]

    async def link_external(self, package_id: UUID, external_package_id: str) -> None:
        async with self.pool.acquire() as conn:
            await link_write_once(conn, "packages", "external_package_id", "package", package_id, external_package_id)

    async def update_test_status(self, package_ids: list[UUID], status: LabTestStatus) -> None:
        if not package_ids:
            return
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE packages SET test_status = $2 WHERE id = ANY($1::uuid[])",
                list(package_ids),
                status.value,
            )


# ============================================
# Harvests
# ============================================

class PostgresHarvestRepository(IHarvestRepository):
    def __init__(self, pool: "asyncpg.Pool", stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS):
        self.pool = pool
        self._state = SyncStateTable(pool, "harvests", "external_harvest_id", "harvest", stale_after_seconds)

    async def get(self, harvest_id: UUID) -> Optional[Harvest]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM harvests WHERE id = $1", harvest_id)
        return row_to_harvest(row) if row else None

    async def list_for_site(self, site_id: UUID) -> list[Harvest]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM harvests WHERE site_id = $1 ORDER BY name", site_id)
        return [row_to_harvest(r) for r in rows]

    async def link_external(self, harvest_id: UUID, external_harvest_id: str) -> None:
        await self._state.complete(harvest_id, external_harvest_id)

    async def try_begin_sync(self, harvest_id: UUID) -> bool:
        return await self._state.try_begin(harvest_id)

    async def complete_sync(self, harvest_id: UUID, external_harvest_id: str) -> None:
        await self._state.complete(harvest_id, external_harvest_id)

    async def fail_sync(self, harvest_id: UUID, error: str) -> None:
        await self._state.fail(harvest_id, error)

    async def reserve_weight(self, harvest_id: UUID, weight: float) -> Harvest:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE harvests SET packaged_weight = packaged_weight + $2
                WHERE id = $1 AND dry_weight - packaged_weight >= $2
                RETURNING *
                """,
                harvest_id,
                dec(weight),
            )
            if row is None:
                remaining = await conn.fetchval(
                    "SELECT dry_weight - packaged_weight FROM harvests WHERE id = $1",
                    harvest_id,
                )
        if row is None:
            if remaining is None:
                raise ValidationError(f"Harvest {harvest_id} not found")
            raise InvariantViolation(
                f"Cannot package {weight}; harvest has {float(remaining)} remaining",
                details={"requested": weight, "remaining": float(remaining)},
            )
        return row_to_harvest(row)

    async def release_weight(self, harvest_id: UUID, weight: float) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE harvests SET packaged_weight = GREATEST(packaged_weight - $2, 0) WHERE id = $1",
                harvest_id,
                dec(weight),
            )

    async def allocate_package(self, harvest_id: UUID, package: Package) -> Harvest:
        async with database_transaction(self.pool) as conn:
            row = await conn.fetchrow("SELECT * FROM harvests WHERE id = $1", harvest_id)
            if row is None:
                raise ValidationError(f"Harvest {harvest_id} not found")
            await insert_package(conn, package)
        return row_to_harvest(row)


# ============================================
# Lab Tests
# ============================================

_LAB_TEST_PREFIXED = """
    lt.id AS lt_id, lt.organization_id AS lt_organization_id, lt.site_id AS lt_site_id,
    lt.lab_name AS lt_lab_name, lt.test_date AS lt_test_date, lt.coa_url AS lt_coa_url,
    lt.results AS lt_results, lt.status AS lt_status,
    lt.lab_license_number AS lt_lab_license_number, lt.created_by AS lt_created_by,
    lt.created_at AS lt_created_at
"""


class PostgresLabTestRepository(ILabTestRepository):
    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def create(self, lab_test: LabTest) -> LabTest:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO lab_tests (
                    id, organization_id, site_id, lab_name, test_date, coa_url,
                    results, status, lab_license_number, created_by, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11)
                RETURNING *
                """,
                lab_test.id,
                lab_test.organization_id,
                lab_test.site_id,
                lab_test.lab_name,
                lab_test.test_date,
                lab_test.coa_url,
                dump_json(lab_test.results),
                lab_test.status.value,
                lab_test.lab_license_number,
                lab_test.created_by,
                lab_test.created_at,
            )
        return row_to_lab_test(row)

    async def get(self, lab_test_id: UUID) -> Optional[LabTest]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM lab_tests WHERE id = $1", lab_test_id)
        return row_to_lab_test(row) if row else None

    async def update_status(self, lab_test_id: UUID, status: LabTestStatus) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute("UPDATE lab_tests SET status = $2 WHERE id = $1", lab_test_id, status.value)

    async def link_package(self, lab_test_id: UUID, package_id: UUID) -> bool:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO package_lab_tests (package_id, lab_test_id)
                VALUES ($1, $2)
                ON CONFLICT (package_id, lab_test_id) DO NOTHING
                RETURNING package_id
                """,
                package_id,
                lab_test_id,
            )
        return row is not None

    async def list_linked_package_ids(self, lab_test_id: UUID) -> list[UUID]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT package_id FROM package_lab_tests WHERE lab_test_id = $1 ORDER BY linked_at",
                lab_test_id,
            )
        return [r["package_id"] for r in rows]

    async def list_unrecorded_links(self, site_id: UUID) -> list[tuple[LabTest, Package]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_LAB_TEST_PREFIXED}, p.*
                FROM package_lab_tests plt
                JOIN lab_tests lt ON lt.id = plt.lab_test_id
                JOIN packages p ON p.id = plt.package_id
                WHERE lt.site_id = $1
                  AND NOT plt.recorded_externally
                  AND lt.status IN ('passed', 'failed')
                ORDER BY plt.linked_at
                """,
                site_id,
            )
        return [(row_to_lab_test(r, prefix="lt_"), row_to_package(r)) for r in rows]

    async def mark_recorded(self, lab_test_id: UUID, package_id: UUID) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE package_lab_tests
                SET recorded_externally = TRUE, recorded_at = NOW()
                WHERE lab_test_id = $1 AND package_id = $2
                """,
                lab_test_id,
                package_id,
            )


# ============================================
# Waste
# ============================================

class PostgresWasteRepository(IWasteRepository):
    """Waste logs are immutable apart from their sync marker columns.

    The table trigger rejects any other UPDATE and every DELETE.
    """

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def record_destruction(self, waste_log: WasteLog) -> WasteLog:
        async with database_transaction(self.pool) as conn:
            if waste_log.source_type == WasteSourceType.PACKAGE:
                decremented = await conn.fetchval(
                    """
                    UPDATE packages
                    SET quantity = quantity - $2,
                        status = CASE WHEN quantity - $2 = 0 THEN 'destroyed' ELSE status END
                    WHERE id = $1 AND status = 'active' AND quantity >= $2
                    RETURNING id
                    """,
                    waste_log.source_id,
                    dec(waste_log.weight),
                )
                shortfall = f"package {waste_log.source_label} has less than {waste_log.weight} remaining"
            else:
                decremented = await conn.fetchval(
                    """
                    UPDATE batches SET plant_count = plant_count - $2
                    WHERE id = $1 AND plant_count - allocated_count >= $2
                    RETURNING id
                    """,
                    waste_log.source_id,
                    waste_log.plants_destroyed,
                )
                shortfall = (
                    f"batch {waste_log.source_label} has fewer than "
                    f"{waste_log.plants_destroyed} unallocated plants"
                )

            if decremented is None:
                raise InvariantViolation(
                    f"Cannot destroy: {shortfall}",
                    details={"source_id": str(waste_log.source_id), "waste_number": waste_log.waste_number},
                )

            row = await conn.fetchrow(
                """
                INSERT INTO waste_logs (
                    id, organization_id, site_id, waste_number, source_type, source_id,
                    source_label, weight, unit, reason, rendering_method, destruction_date,
                    plants_destroyed, witness, inert_material_weight, evidence, notes,
                    external_transaction_id, sync_status, sync_attempts, created_by, created_at,
                    submitted_at
                ) VALUES (
                    $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                    $13, $14, $15, $16::jsonb, $17, $18, $19, $20, $21, $22,
                    CASE WHEN $19 = 'submitting' THEN NOW() END
                )
                RETURNING *
                """,
                waste_log.id,
                waste_log.organization_id,
                waste_log.site_id,
                waste_log.waste_number,
                waste_log.source_type.value,
                waste_log.source_id,
                waste_log.source_label,
                dec(waste_log.weight),
                waste_log.unit,
                waste_log.reason,
                waste_log.rendering_method,
                waste_log.destruction_date,
                waste_log.plants_destroyed,
                waste_log.witness,
                dec(waste_log.inert_material_weight),
                dump_json(waste_log.evidence),
                waste_log.notes,
                waste_log.external_transaction_id,
                waste_log.sync_status.value,
                waste_log.sync_attempts,
                waste_log.created_by,
                waste_log.created_at,
            )

        logger.info(f"Recorded destruction {waste_log.waste_number} for {waste_log.source_type.value}")
        return row_to_waste_log(row)

    async def get(self, waste_log_id: UUID) -> Optional[WasteLog]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM waste_logs WHERE id = $1", waste_log_id)
        return row_to_waste_log(row) if row else None

    async def claim_pending(self, waste_log_id: UUID) -> bool:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE waste_logs SET sync_status = 'submitting', submitted_at = NOW()
                WHERE id = $1 AND sync_status = 'pending_external_sync'
                RETURNING id
                """,
                waste_log_id,
            )
        return row is not None

    async def mark_synced(self, waste_log_id: UUID, external_transaction_id: str) -> None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE waste_logs
                SET external_transaction_id = $2, sync_status = 'synced',
                    last_sync_error = NULL, submitted_at = NULL
                WHERE id = $1 AND (external_transaction_id IS NULL OR external_transaction_id = $2)
                RETURNING id
                """,
                waste_log_id,
                external_transaction_id,
            )
            if row is None:
                existing = await conn.fetchval(
                    "SELECT external_transaction_id FROM waste_logs WHERE id = $1",
                    waste_log_id,
                )
                raise LinkConflictError("waste", waste_log_id, existing_id=existing, new_id=external_transaction_id)

    async def mark_attempt_failed(self, waste_log_id: UUID, error: str) -> WasteLog:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE waste_logs
                SET sync_status = 'pending_external_sync',
                    sync_attempts = sync_attempts + 1,
                    last_sync_error = $2,
                    submitted_at = NULL
                WHERE id = $1 AND sync_status IN ('submitting', 'pending_external_sync')
                RETURNING *
                """,
                waste_log_id,
                error[:2000],
            )
            if row is None:
                row = await conn.fetchrow("SELECT * FROM waste_logs WHERE id = $1", waste_log_id)
        if row is None:
            raise ValidationError(f"Waste log {waste_log_id} not found")
        return row_to_waste_log(row)

    async def escalate(self, waste_log_id: UUID, reason: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE waste_logs
                SET sync_status = 'manual_review', last_sync_error = $2, submitted_at = NULL
                WHERE id = $1 AND sync_status IN ('submitting', 'pending_external_sync')
                """,
                waste_log_id,
                reason[:2000],
            )

    async def escalate_stale_submissions(self, site_id: UUID, stale_after_seconds: float) -> list[WasteLog]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                UPDATE waste_logs
                SET sync_status = 'manual_review',
                    last_sync_error = 'Ledger submission was interrupted; outcome unknown',
                    submitted_at = NULL
                WHERE site_id = $1 AND sync_status = 'submitting'
                  AND submitted_at < NOW() - make_interval(secs => $2)
                RETURNING *
                """,
                site_id,
                float(stale_after_seconds),
            )
        return [row_to_waste_log(r) for r in rows]

    async def list_pending(self, site_id: UUID) -> list[WasteLog]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM waste_logs
                WHERE site_id = $1 AND sync_status = 'pending_external_sync'
                ORDER BY created_at
                """,
                site_id,
            )
        return [row_to_waste_log(r) for r in rows]


__all__ = [
    "PostgresPackageRepository",
    "PostgresHarvestRepository",
    "PostgresLabTestRepository",
    "PostgresWasteRepository",
]
