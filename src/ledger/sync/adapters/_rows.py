"""Row <-> entity mapping shared by the PostgreSQL adapters."""

import json
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from ..domain.entities import (
    Batch,
    Cultivar,
    ExternalItemCacheEntry,
    ExternalStrainCacheEntry,
    GrowthPhase,
    Harvest,
    LabTest,
    LabTestStatus,
    Package,
    PackageSource,
    PackageStatus,
    Room,
    SiteCredentials,
    StrainType,
    SyncDirection,
    SyncLogEntry,
    SyncLogStatus,
    SyncStatus,
    SyncType,
    WasteLog,
    WasteSourceType,
    WasteSyncStatus,
)

if TYPE_CHECKING:
    import asyncpg


def num(value: Any) -> Optional[float]:
    """NUMERIC columns come back as Decimal."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return float(value)
    return value


def dec(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def load_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def dump_json(value: Any) -> str:
    return json.dumps(value, default=str)


# ============================================
# Mappers
# ============================================

def row_to_cultivar(row: "asyncpg.Record") -> Cultivar:
    return Cultivar(
        id=row["id"],
        organization_id=row["organization_id"],
        name=row["name"],
        strain_type=StrainType(row["strain_type"]),
        indica_percentage=num(row["indica_percentage"]),
        sativa_percentage=num(row["sativa_percentage"]),
        thc_level=num(row["thc_level"]),
        cbd_level=num(row["cbd_level"]),
        is_active=row["is_active"],
        external_strain_id=row["external_strain_id"],
        sync_status=SyncStatus(row["sync_status"]),
        sync_error=row["sync_error"],
        sync_started_at=row["sync_started_at"],
        last_synced_at=row["last_synced_at"],
    )


def row_to_strain_cache(row: "asyncpg.Record") -> ExternalStrainCacheEntry:
    return ExternalStrainCacheEntry(
        site_id=row["site_id"],
        external_strain_id=row["external_strain_id"],
        name=row["name"],
        testing_status=row["testing_status"],
        thc_level=num(row["thc_level"]),
        cbd_level=num(row["cbd_level"]),
        indica_percentage=num(row["indica_percentage"]),
        sativa_percentage=num(row["sativa_percentage"]),
        is_active=row["is_active"],
        is_used=row["is_used"],
        last_synced_at=row["last_synced_at"],
        raw_data=load_json(row["raw_data"], {}),
    )


def row_to_item_cache(row: "asyncpg.Record") -> ExternalItemCacheEntry:
    return ExternalItemCacheEntry(
        site_id=row["site_id"],
        external_item_id=row["external_item_id"],
        name=row["name"],
        product_category_name=row["product_category_name"],
        product_category_type=row["product_category_type"],
        quantity_type=row["quantity_type"],
        unit_of_measure=row["unit_of_measure"],
        approval_status=row["approval_status"],
        requires_strain=row["requires_strain"],
        strain_name=row["strain_name"],
        is_active=row["is_active"],
        last_synced_at=row["last_synced_at"],
        raw_data=load_json(row["raw_data"], {}),
    )


def row_to_batch(row: "asyncpg.Record") -> Batch:
    return Batch(
        id=row["id"],
        organization_id=row["organization_id"],
        site_id=row["site_id"],
        batch_number=row["batch_number"],
        cultivar_id=row["cultivar_id"],
        domain_type=row["domain_type"],
        propagation_type=row["propagation_type"],
        plant_count=row["plant_count"],
        allocated_count=row["allocated_count"],
        growth_phase=GrowthPhase(row["growth_phase"]),
        room_id=row["room_id"],
        location_override=row["location_override"],
        source_package_tag=row["source_package_tag"],
        planted_at=row["planted_at"],
        external_batch_id=row["external_batch_id"],
        sync_status=SyncStatus(row["sync_status"]),
        sync_error=row["sync_error"],
        sync_started_at=row["sync_started_at"],
    )


def row_to_harvest(row: "asyncpg.Record") -> Harvest:
    return Harvest(
        id=row["id"],
        site_id=row["site_id"],
        batch_id=row["batch_id"],
        name=row["name"],
        wet_weight=num(row["wet_weight"]),
        dry_weight=num(row["dry_weight"]),
        packaged_weight=num(row["packaged_weight"]),
        unit_of_weight=row["unit_of_weight"],
        plant_count=row["plant_count"],
        harvested_at=row["harvested_at"],
        external_harvest_id=row["external_harvest_id"],
        sync_status=SyncStatus(row["sync_status"]),
        sync_error=row["sync_error"],
        sync_started_at=row["sync_started_at"],
    )


def row_to_package(row: "asyncpg.Record") -> Package:
    return Package(
        id=row["id"],
        site_id=row["site_id"],
        tag=row["tag"],
        quantity=num(row["quantity"]),
        unit_of_measure=row["unit_of_measure"],
        item_name=row["item_name"],
        source_type=PackageSource(row["source_type"]),
        source_batch_id=row["source_batch_id"],
        source_harvest_id=row["source_harvest_id"],
        status=PackageStatus(row["status"]),
        test_status=LabTestStatus(row["test_status"]),
        external_package_id=row["external_package_id"],
        created_at=row["created_at"],
    )


def row_to_lab_test(row: "asyncpg.Record", prefix: str = "") -> LabTest:
    return LabTest(
        id=row[f"{prefix}id"],
        organization_id=row[f"{prefix}organization_id"],
        site_id=row[f"{prefix}site_id"],
        lab_name=row[f"{prefix}lab_name"],
        test_date=row[f"{prefix}test_date"],
        coa_url=row[f"{prefix}coa_url"],
        results=load_json(row[f"{prefix}results"], {}),
        status=LabTestStatus(row[f"{prefix}status"]),
        lab_license_number=row[f"{prefix}lab_license_number"],
        created_by=row[f"{prefix}created_by"],
        created_at=row[f"{prefix}created_at"],
    )


def row_to_waste_log(row: "asyncpg.Record") -> WasteLog:
    return WasteLog(
        id=row["id"],
        organization_id=row["organization_id"],
        site_id=row["site_id"],
        waste_number=row["waste_number"],
        source_type=WasteSourceType(row["source_type"]),
        source_id=row["source_id"],
        source_label=row["source_label"],
        weight=num(row["weight"]),
        unit=row["unit"],
        reason=row["reason"],
        rendering_method=row["rendering_method"],
        destruction_date=row["destruction_date"],
        plants_destroyed=row["plants_destroyed"],
        witness=row["witness"],
        inert_material_weight=num(row["inert_material_weight"]),
        evidence=load_json(row["evidence"], []),
        notes=row["notes"],
        external_transaction_id=row["external_transaction_id"],
        sync_status=WasteSyncStatus(row["sync_status"]),
        sync_attempts=row["sync_attempts"],
        last_sync_error=row["last_sync_error"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        submitted_at=row["submitted_at"],
    )


def row_to_room(row: "asyncpg.Record") -> Room:
    return Room(
        id=row["id"],
        site_id=row["site_id"],
        name=row["name"],
        external_location_name=row["external_location_name"],
        external_location_id=row["external_location_id"],
        sync_status=SyncStatus(row["sync_status"]),
        sync_started_at=row["sync_started_at"],
    )


def row_to_credentials(row: "asyncpg.Record") -> SiteCredentials:
    return SiteCredentials(
        site_id=row["site_id"],
        organization_id=row["organization_id"],
        state_code=row["state_code"],
        vendor_key=row["vendor_key"],
        user_key=row["user_key"],
        license_number=row["license_number"],
        is_sandbox=row["is_sandbox"],
        sync_enabled=row["sync_enabled"],
    )


def row_to_sync_log(row: "asyncpg.Record") -> SyncLogEntry:
    return SyncLogEntry(
        id=row["id"],
        organization_id=row["organization_id"],
        site_id=row["site_id"],
        sync_type=SyncType(row["sync_type"]),
        direction=SyncDirection(row["direction"]),
        status=SyncLogStatus(row["status"]),
        detail=load_json(row["detail"], {}),
        error_message=row["error_message"],
        performed_by=row["performed_by"],
        created_at=row["created_at"],
    )


# ============================================
# Shared Writes
# ============================================

PACKAGE_COLUMNS = """
    id, site_id, tag, quantity, unit_of_measure, item_name, source_type,
    source_batch_id, source_harvest_id, status, test_status,
    external_package_id, created_at
"""


async def insert_package(conn: "asyncpg.Connection", package: Package) -> None:
    await conn.execute(
        f"""
        INSERT INTO packages ({PACKAGE_COLUMNS})
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
        """,
        package.id,
        package.site_id,
        package.tag,
        dec(package.quantity),
        package.unit_of_measure,
        package.item_name,
        package.source_type.value,
        package.source_batch_id,
        package.source_harvest_id,
        package.status.value,
        package.test_status.value,
        package.external_package_id,
        package.created_at,
    )


__all__ = [
    "num",
    "dec",
    "load_json",
    "dump_json",
    "row_to_cultivar",
    "row_to_strain_cache",
    "row_to_item_cache",
    "row_to_batch",
    "row_to_harvest",
    "row_to_package",
    "row_to_lab_test",
    "row_to_waste_log",
    "row_to_room",
    "row_to_credentials",
    "row_to_sync_log",
    "insert_package",
    "PACKAGE_COLUMNS",
]
