"""Domain entities for ledger sync operations.

These are pure data structures with no infrastructure dependencies.
They represent the cultivation records that are mirrored to the external
regulatory ledger, the audit trail of every sync attempt, and the results
returned to callers.
"""

import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def canonical_name(name: str) -> str:
    """Lookup key used to match local records with ledger records by name.

    Whitespace runs collapse to one space and case is folded; the ledger
    treats names differing only in case as the same record.
    """
    return " ".join((name or "").split()).casefold()


# ============================================
# Enumerations
# ============================================

class SyncStatus(str, Enum):
    """Per-entity sync state; also the create-or-link mutex."""

    NOT_SYNCED = "not_synced"
    SYNCING = "syncing"
    SYNCED = "synced"
    SYNC_FAILED = "sync_failed"


# States from which a caller may enter SYNCING
ACQUIRABLE_STATUSES = (SyncStatus.NOT_SYNCED, SyncStatus.SYNC_FAILED)


class SyncType(str, Enum):
    STRAINS = "strains"
    BATCHES = "batches"
    HARVESTS = "harvests"
    PACKAGES = "packages"
    LABTESTS = "labtests"
    WASTE = "waste"
    TRANSFERS = "transfers"
    LOCATIONS = "locations"
    ITEMS = "items"
    TAGS = "tags"


class SyncDirection(str, Enum):
    INTERNAL_TO_EXTERNAL = "internal_to_external"
    EXTERNAL_TO_INTERNAL = "external_to_internal"


class SyncLogStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class SyncAction(str, Enum):
    CREATED = "created"
    LINKED = "linked"
    UPDATED = "updated"
    DESTROYED = "destroyed"
    FAILED = "failed"


class GrowthPhase(str, Enum):
    """Batch lifecycle; only ever moves forward."""

    PROPAGATION = "propagation"
    VEGETATIVE = "vegetative"
    FLOWERING = "flowering"
    HARVESTED = "harvested"

    @property
    def order(self) -> int:
        return _PHASE_ORDER[self]

    @property
    def ledger_name(self) -> Optional[str]:
        """Growth phase name used by the ledger, if the phase exists there."""
        return _LEDGER_PHASE_NAMES.get(self)

    def can_advance_to(self, target: "GrowthPhase") -> bool:
        return target.order > self.order


_PHASE_ORDER = {
    GrowthPhase.PROPAGATION: 0,
    GrowthPhase.VEGETATIVE: 1,
    GrowthPhase.FLOWERING: 2,
    GrowthPhase.HARVESTED: 3,
}

_LEDGER_PHASE_NAMES = {
    GrowthPhase.PROPAGATION: "Clone",
    GrowthPhase.VEGETATIVE: "Vegetative",
    GrowthPhase.FLOWERING: "Flowering",
}


class StrainType(str, Enum):
    INDICA = "indica"
    SATIVA = "sativa"
    HYBRID = "hybrid"
    INDICA_DOMINANT = "indica_dominant"
    SATIVA_DOMINANT = "sativa_dominant"
    UNKNOWN = "unknown"


def derive_strain_type(
    indica_percentage: Optional[float],
    sativa_percentage: Optional[float],
) -> StrainType:
    """Classify a strain from its genetics split."""
    indica = indica_percentage or 0
    sativa = sativa_percentage or 0

    if indica == 0 and sativa == 0:
        return StrainType.UNKNOWN
    if indica >= 80:
        return StrainType.INDICA
    if sativa >= 80:
        return StrainType.SATIVA
    if indica > sativa:
        return StrainType.INDICA_DOMINANT
    if sativa > indica:
        return StrainType.SATIVA_DOMINANT
    return StrainType.HYBRID


class PackageSource(str, Enum):
    BATCH = "batch"
    MOTHER = "mother"
    HARVEST = "harvest"


class PackageStatus(str, Enum):
    ACTIVE = "active"
    DESTROYED = "destroyed"


class LabTestStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    FAILED = "failed"
    CONDITIONAL = "conditional"
    RETESTING = "retesting"

    @property
    def is_final(self) -> bool:
        return self in (LabTestStatus.PASSED, LabTestStatus.FAILED)


def derive_lab_test_status(results: dict[str, Any]) -> LabTestStatus:
    """Overall status from per-category results.

    Any tested category that did not pass fails the whole test; otherwise
    any tested category passes it; with nothing tested it stays pending.
    """
    tested = [r for r in (results or {}).values() if isinstance(r, dict) and r.get("tested")]
    if any(r.get("passed") is False for r in tested):
        return LabTestStatus.FAILED
    if tested:
        return LabTestStatus.PASSED
    return LabTestStatus.PENDING


class WasteSourceType(str, Enum):
    PLANT_BATCH = "plant_batch"
    PACKAGE = "package"


class WasteSyncStatus(str, Enum):
    LOCAL_ONLY = "local_only"
    # Claimed by one submitter; nobody else may send it to the ledger
    SUBMITTING = "submitting"
    PENDING_EXTERNAL_SYNC = "pending_external_sync"
    SYNCED = "synced"
    MANUAL_REVIEW = "manual_review"


class LocationSource(str, Enum):
    OVERRIDE = "override"
    ROOM = "room"
    SITE_DEFAULT = "site_default"
    NONE = "none"


class TagType(str, Enum):
    PLANT = "plant"
    PACKAGE = "package"


def generate_waste_number(when: Optional[date] = None) -> str:
    """Human-facing waste reference, e.g. ``WST-2026-10-4F2A9``."""
    when = when or utcnow().date()
    return f"WST-{when.year:04d}-{when.month:02d}-{secrets.token_hex(3)[:5].upper()}"


# ============================================
# Context and Credentials
# ============================================

@dataclass(frozen=True)
class SyncContext:
    """Who is syncing what; carried into every audit entry."""

    organization_id: UUID
    site_id: UUID
    actor_id: Optional[UUID] = None


@dataclass
class SiteCredentials:
    """Per-site ledger credentials."""

    site_id: UUID
    organization_id: UUID
    state_code: str
    vendor_key: str
    user_key: str
    license_number: str
    is_sandbox: bool = True
    sync_enabled: bool = True

    def __repr__(self) -> str:
        return (
            f"SiteCredentials(site_id={self.site_id}, state_code={self.state_code!r}, "
            f"license_number={self.license_number!r}, is_sandbox={self.is_sandbox}, "
            f"sync_enabled={self.sync_enabled}, vendor_key='***', user_key='***')"
        )


# ============================================
# Cultivation Records
# ============================================

@dataclass
class Cultivar:
    """Internal genetic/strain record (organization scoped)."""

    id: UUID
    organization_id: UUID
    name: str
    strain_type: StrainType = StrainType.UNKNOWN
    indica_percentage: Optional[float] = None
    sativa_percentage: Optional[float] = None
    thc_level: Optional[float] = None
    cbd_level: Optional[float] = None
    is_active: bool = True
    external_strain_id: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.NOT_SYNCED
    sync_error: Optional[str] = None
    sync_started_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None

    @property
    def lookup_key(self) -> str:
        return canonical_name(self.name)

    @property
    def is_linked(self) -> bool:
        return self.external_strain_id is not None


@dataclass
class Room:
    """A grow room mapped (optionally) to a ledger facility location."""

    id: UUID
    site_id: UUID
    name: str
    external_location_name: Optional[str] = None
    external_location_id: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.NOT_SYNCED
    sync_started_at: Optional[datetime] = None

    @property
    def ledger_location_name(self) -> str:
        return self.external_location_name or self.name


@dataclass
class Batch:
    """A cohort of plants under cultivation.

    ``allocated_count`` counts plants still inside ``plant_count`` that are
    already spoken for: individually tagged plants and packages taken from
    mother stock. Packages from the batch itself leave the batch and
    decrement ``plant_count`` instead.
    """

    id: UUID
    organization_id: UUID
    site_id: UUID
    batch_number: str
    cultivar_id: Optional[UUID] = None
    domain_type: str = "cannabis"
    propagation_type: str = "Clone"
    plant_count: int = 0
    allocated_count: int = 0
    growth_phase: GrowthPhase = GrowthPhase.PROPAGATION
    room_id: Optional[UUID] = None
    location_override: Optional[str] = None
    source_package_tag: Optional[str] = None
    planted_at: Optional[date] = None
    external_batch_id: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.NOT_SYNCED
    sync_error: Optional[str] = None
    sync_started_at: Optional[datetime] = None

    @property
    def available_count(self) -> int:
        return self.plant_count - self.allocated_count

    @property
    def is_linked(self) -> bool:
        return self.external_batch_id is not None

    @property
    def is_cannabis(self) -> bool:
        return self.domain_type == "cannabis"


@dataclass
class Plant:
    """An individually tagged plant created from a batch."""

    id: UUID
    batch_id: UUID
    tag: str
    growth_phase: GrowthPhase
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Harvest:
    """Drying/curing output of a batch."""

    id: UUID
    site_id: UUID
    batch_id: Optional[UUID]
    name: str
    wet_weight: float = 0
    dry_weight: float = 0
    packaged_weight: float = 0
    unit_of_weight: str = "Grams"
    plant_count: int = 0
    harvested_at: Optional[date] = None
    external_harvest_id: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.NOT_SYNCED
    sync_error: Optional[str] = None
    sync_started_at: Optional[datetime] = None

    @property
    def is_linked(self) -> bool:
        return self.external_harvest_id is not None

    @property
    def is_packaged(self) -> bool:
        return self.packaged_weight > 0

    @property
    def remaining_weight(self) -> float:
        return self.dry_weight - self.packaged_weight


@dataclass
class Package:
    """A physical, externally tagged unit of product."""

    id: UUID
    site_id: UUID
    tag: str
    quantity: float
    unit_of_measure: str
    item_name: str
    source_type: PackageSource
    source_batch_id: Optional[UUID] = None
    source_harvest_id: Optional[UUID] = None
    status: PackageStatus = PackageStatus.ACTIVE
    test_status: LabTestStatus = LabTestStatus.PENDING
    external_package_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class LabTest:
    """A certificate-of-analysis record."""

    id: UUID
    organization_id: UUID
    site_id: UUID
    lab_name: str
    test_date: date
    coa_url: str
    results: dict[str, Any] = field(default_factory=dict)
    status: LabTestStatus = LabTestStatus.PENDING
    lab_license_number: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class PackageTestLink:
    """Association of a package with a lab test."""

    package_id: UUID
    lab_test_id: UUID
    recorded_externally: bool = False


@dataclass
class WasteLog:
    """A destruction event. Immutable apart from its sync marker."""

    id: UUID
    organization_id: UUID
    site_id: UUID
    waste_number: str
    source_type: WasteSourceType
    source_id: UUID
    source_label: Optional[str]
    weight: float
    unit: str
    reason: str
    rendering_method: str
    destruction_date: date
    plants_destroyed: int = 0
    witness: Optional[str] = None
    inert_material_weight: Optional[float] = None
    evidence: list[str] = field(default_factory=list)
    notes: Optional[str] = None
    external_transaction_id: Optional[str] = None
    sync_status: WasteSyncStatus = WasteSyncStatus.SUBMITTING
    sync_attempts: int = 0
    last_sync_error: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime = field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None


@dataclass
class TransferManifest:
    """Cached ledger transfer manifest."""

    site_id: UUID
    external_transfer_id: str
    manifest_number: str
    direction: str
    shipper_facility_name: Optional[str] = None
    recipient_facility_name: Optional[str] = None
    package_count: int = 0
    last_modified: Optional[datetime] = None


# ============================================
# Ledger Mirrors and Audit
# ============================================

@dataclass
class ExternalStrainCacheEntry:
    """Locally cached snapshot of one ledger strain."""

    site_id: UUID
    external_strain_id: str
    name: str
    testing_status: Optional[str] = None
    thc_level: Optional[float] = None
    cbd_level: Optional[float] = None
    indica_percentage: Optional[float] = None
    sativa_percentage: Optional[float] = None
    is_active: bool = True
    is_used: bool = False
    last_synced_at: datetime = field(default_factory=utcnow)
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def lookup_key(self) -> str:
        return canonical_name(self.name)


@dataclass
class ExternalItemCacheEntry:
    """Locally cached snapshot of one ledger item (an approved product name)."""

    site_id: UUID
    external_item_id: str
    name: str
    product_category_name: Optional[str] = None
    product_category_type: Optional[str] = None
    quantity_type: Optional[str] = None
    unit_of_measure: Optional[str] = None
    approval_status: Optional[str] = None
    requires_strain: bool = False
    strain_name: Optional[str] = None
    is_active: bool = True
    last_synced_at: datetime = field(default_factory=utcnow)
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def lookup_key(self) -> str:
        return canonical_name(self.name)


@dataclass
class TagInventoryEntry:
    """One ledger tag as last seen in the site's available tag list."""

    site_id: UUID
    label: str
    tag_type: TagType
    external_tag_id: Optional[str] = None
    status: str = "available"
    commissioned_at: Optional[datetime] = None
    last_synced_at: datetime = field(default_factory=utcnow)


@dataclass
class SyncLogEntry:
    """Audit record of one sync attempt. Append-only."""

    organization_id: UUID
    site_id: UUID
    sync_type: SyncType
    direction: SyncDirection
    status: SyncLogStatus
    detail: dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    performed_by: Optional[UUID] = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def action(self) -> Optional[str]:
        return self.detail.get("action")


@dataclass
class LocationResolution:
    """Outcome of resolving a batch's ledger location."""

    location_name: Optional[str]
    source: LocationSource
    requires_manual_input: bool = False


# ============================================
# Results
# ============================================

@dataclass
class OperationResult:
    """Result of one entity operation (push, package, destroy, ...)."""

    success: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    created_ids: list[str] = field(default_factory=list)
    error_kind: Optional[str] = None
    external_id: Optional[str] = None
    sync_log_id: Optional[UUID] = None
    # How a create-or-link push ended; None for other operations
    action: Optional[SyncAction] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "createdIds": list(self.created_ids),
            "errorKind": self.error_kind,
            "externalId": self.external_id,
        }


@dataclass
class SyncResult:
    """Result of one orchestrated sync run.

    Contains counts and any errors/warnings encountered.
    """

    success: bool
    sync_type: SyncType
    created: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def finish(self) -> "SyncResult":
        self.completed_at = utcnow()
        self.success = self.success and not self.errors
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses and logs."""
        return {
            "success": self.success,
            "syncType": self.sync_type.value,
            "created": self.created,
            "updated": self.updated,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "durationSeconds": self.duration_seconds,
        }
