"""Shared in-memory ports for the sync use case tests.

The repositories keep the same atomicity the PostgreSQL adapters give:
compare-and-swap on sync status, write-once external ids and guarded
quantity decrements all happen without an await in between, so concurrent
tasks see them as single operations. The fake ledger yields to the event
loop on every call so concurrent callers interleave the way they would
against the real API.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date, timedelta
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

import pytest

from src.ledger.api.exceptions import (
    AuthError,
    ConflictError,
    InvariantViolation,
    LinkConflictError,
    ValidationError,
)
from src.ledger.api.schemas import (
    Harvest as LedgerHarvest,
    Item,
    ItemCategory,
    LabTestType,
    Location,
    LocationType,
    Package as LedgerPackage,
    PlantBatch,
    Strain,
    Tag,
    Transfer,
    WasteTransaction,
)
from src.ledger.config import SyncSettings
from src.ledger.sync.domain.entities import (
    ACQUIRABLE_STATUSES,
    Batch,
    Cultivar,
    Harvest,
    Package,
    PackageSource,
    PackageStatus,
    Room,
    SiteCredentials,
    SyncContext,
    SyncStatus,
    TagType,
    WasteSourceType,
    WasteSyncStatus,
    canonical_name,
    utcnow,
)
from src.ledger.sync.domain.ports import (
    IBatchRepository,
    ICredentialRepository,
    ICultivarRepository,
    IHarvestRepository,
    IHarvestsAPI,
    IItemCacheRepository,
    IItemsAPI,
    ILabTestRepository,
    ILabTestsAPI,
    ILedgerConnector,
    ILocationRepository,
    ILocationsAPI,
    IPackageRepository,
    IPackagesAPI,
    IPlantBatchesAPI,
    IStrainCacheRepository,
    IStrainsAPI,
    ISyncLogRepository,
    ITagInventoryRepository,
    ITagsAPI,
    ITransferRepository,
    ITransfersAPI,
    IWasteAPI,
    IWasteRepository,
    LedgerAPI,
    SyncRepositories,
)
from src.ledger.sync.services.audit import AuditTrail
from src.ledger.sync.services.create_or_link import CreateOrLinkResolver
from src.ledger.sync.services.location_resolver import LocationResolver
from src.ledger.sync.use_cases.orchestrator import SyncOrchestrator


# ============================================
# Fake Ledger
# ============================================

class FakeLedger:
    """In-memory ledger state shared by every resource API."""

    def __init__(self):
        self.strains: list[Strain] = []
        self.inactive_strains: list[Strain] = []
        self.locations: list[Location] = []
        self.location_types: list[LocationType] = [
            LocationType(id=1, name="Grow Room", for_plant_batches=True, for_plants=True),
        ]
        self.plant_batches: list[PlantBatch] = []
        self.packages: list[LedgerPackage] = []
        self.harvests: list[LedgerHarvest] = []
        self.lab_test_types: list[LabTestType] = []
        self.incoming: list[Transfer] = []
        self.outgoing: list[Transfer] = []
        self.items: list[Item] = []
        self.inactive_items: list[Item] = []
        self.item_categories: list[ItemCategory] = []
        self.available_tags: dict[TagType, list[Tag]] = {t: [] for t in TagType}

        self.calls: list[tuple[str, Any]] = []
        self.failures: dict[str, Exception] = {}
        self.hooks: dict[str, Callable[[Any], None]] = {}
        # When set, creates are accepted but never show up in lookups
        self.silent_creates = False
        self.on_auth_failure = None
        self._next_id = 1000

    def next_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def fail(self, name: str, error: Exception) -> None:
        self.failures[name] = error

    def recover(self, name: Optional[str] = None) -> None:
        if name is None:
            self.failures.clear()
        else:
            self.failures.pop(name, None)

    def called(self, name: str) -> list[Any]:
        return [payload for call, payload in self.calls if call == name]

    async def hit(self, name: str, payload: Any = None) -> None:
        await asyncio.sleep(0)
        self.calls.append((name, payload))
        hook = self.hooks.get(name)
        if hook:
            hook(payload)
        failure = self.failures.get(name)
        if failure is not None:
            if isinstance(failure, AuthError) and self.on_auth_failure is not None:
                await self.on_auth_failure(failure)
            raise failure

    def api(self) -> LedgerAPI:
        return LedgerAPI(
            strains=FakeStrainsAPI(self),
            locations=FakeLocationsAPI(self),
            plant_batches=FakePlantBatchesAPI(self),
            packages=FakePackagesAPI(self),
            harvests=FakeHarvestsAPI(self),
            lab_tests=FakeLabTestsAPI(self),
            waste=FakeWasteAPI(self),
            transfers=FakeTransfersAPI(self),
            items=FakeItemsAPI(self),
            tags=FakeTagsAPI(self),
        )


def _by_name(records: list, name: str):
    wanted = canonical_name(name)
    return next((r for r in records if canonical_name(r.name) == wanted), None)


class FakeStrainsAPI(IStrainsAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def list_active(self):
        await self.ledger.hit("strains.list_active")
        return list(self.ledger.strains)

    async def list_inactive(self):
        await self.ledger.hit("strains.list_inactive")
        return list(self.ledger.inactive_strains)

    async def find_by_name(self, name):
        await self.ledger.hit("strains.find_by_name", name)
        return _by_name(self.ledger.strains, name) or _by_name(self.ledger.inactive_strains, name)

    async def create(self, payload):
        await self.ledger.hit("strains.create", payload)
        if _by_name(self.ledger.strains + self.ledger.inactive_strains, payload.name):
            raise ConflictError(f"Strain {payload.name} already exists", status_code=400)
        if not self.ledger.silent_creates:
            self.ledger.strains.append(Strain(id=self.ledger.next_id(), name=payload.name))


class FakeLocationsAPI(ILocationsAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def list_active(self):
        await self.ledger.hit("locations.list_active")
        return list(self.ledger.locations)

    async def list_types(self):
        await self.ledger.hit("locations.list_types")
        return list(self.ledger.location_types)

    async def find_by_name(self, name):
        await self.ledger.hit("locations.find_by_name", name)
        return _by_name(self.ledger.locations, name)

    async def create(self, payload):
        await self.ledger.hit("locations.create", payload)
        if _by_name(self.ledger.locations, payload.name):
            raise ConflictError(f"Location {payload.name} already exists", status_code=400)
        if not self.ledger.silent_creates:
            self.ledger.locations.append(Location(
                id=self.ledger.next_id(), name=payload.name, location_type_id=payload.location_type_id,
            ))


class FakePlantBatchesAPI(IPlantBatchesAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def list_active(self, window=None):
        await self.ledger.hit("plant_batches.list_active", window)
        return list(self.ledger.plant_batches)

    async def find_by_name(self, name):
        await self.ledger.hit("plant_batches.find_by_name", name)
        return _by_name(self.ledger.plant_batches, name)

    async def create_plantings(self, payload):
        await self.ledger.hit("plant_batches.create_plantings", payload)
        if _by_name(self.ledger.plant_batches, payload.name):
            raise ConflictError(f"Plant batch {payload.name} already exists", status_code=400)
        if not self.ledger.silent_creates:
            self.ledger.plant_batches.append(PlantBatch(
                id=self.ledger.next_id(),
                name=payload.name,
                strain_name=payload.strain,
                location_name=payload.location,
                untracked_count=payload.count,
            ))

    async def change_growth_phase(self, payload):
        await self.ledger.hit("plant_batches.change_growth_phase", payload)

    async def create_packages(self, payload):
        await self.ledger.hit("plant_batches.create_packages", payload)
        self.ledger.packages.append(LedgerPackage(id=self.ledger.next_id(), label=payload.tag, quantity=payload.count))

    async def create_packages_from_mother(self, payload):
        await self.ledger.hit("plant_batches.create_packages_from_mother", payload)
        self.ledger.packages.append(LedgerPackage(id=self.ledger.next_id(), label=payload.tag, quantity=payload.count))


class FakePackagesAPI(IPackagesAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def list_active(self, window=None):
        await self.ledger.hit("packages.list_active", window)
        return list(self.ledger.packages)

    async def find_by_label(self, label):
        await self.ledger.hit("packages.find_by_label", label)
        return next((p for p in self.ledger.packages if p.label == label), None)


class FakeHarvestsAPI(IHarvestsAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def list_active(self, window=None):
        await self.ledger.hit("harvests.list_active", window)
        return list(self.ledger.harvests)

    async def list_inactive(self, window=None):
        await self.ledger.hit("harvests.list_inactive", window)
        return []

    async def find_by_name(self, name):
        await self.ledger.hit("harvests.find_by_name", name)
        return _by_name(self.ledger.harvests, name)

    async def create_from_plants(self, payload):
        await self.ledger.hit("harvests.create_from_plants", payload)
        if _by_name(self.ledger.harvests, payload.harvest_name):
            raise ConflictError(f"Harvest {payload.harvest_name} already exists", status_code=400)
        if not self.ledger.silent_creates:
            self.ledger.harvests.append(LedgerHarvest(
                id=self.ledger.next_id(),
                name=payload.harvest_name,
                total_wet_weight=payload.weight,
                plant_count=len(payload.plant_labels),
            ))

    async def create_packages(self, payload):
        await self.ledger.hit("harvests.create_packages", payload)
        weight = sum(i.weight for i in payload.ingredients)
        self.ledger.packages.append(LedgerPackage(id=self.ledger.next_id(), label=payload.tag, quantity=weight))


class FakeLabTestsAPI(ILabTestsAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def list_types(self):
        await self.ledger.hit("lab_tests.list_types")
        return list(self.ledger.lab_test_types)

    async def record(self, payload):
        await self.ledger.hit("lab_tests.record", payload)


class FakeWasteAPI(IWasteAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def destroy_plant_batch(self, payload, reference):
        await self.ledger.hit("waste.destroy_plant_batch", payload)
        return WasteTransaction(transaction_id=str(self.ledger.next_id()), source_label=payload.plant_batch)

    async def destroy_package(self, payload, reference):
        await self.ledger.hit("waste.destroy_package", payload)
        return WasteTransaction(transaction_id=str(self.ledger.next_id()), source_label=payload.label)


class FakeTransfersAPI(ITransfersAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def list_incoming(self, window=None):
        await self.ledger.hit("transfers.list_incoming", window)
        return list(self.ledger.incoming)

    async def list_outgoing(self, window=None):
        await self.ledger.hit("transfers.list_outgoing", window)
        return list(self.ledger.outgoing)


class FakeItemsAPI(IItemsAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def list_active(self):
        await self.ledger.hit("items.list_active")
        return list(self.ledger.items)

    async def list_inactive(self):
        await self.ledger.hit("items.list_inactive")
        return list(self.ledger.inactive_items)

    async def list_categories(self):
        await self.ledger.hit("items.list_categories")
        return list(self.ledger.item_categories)


class FakeTagsAPI(ITagsAPI):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger

    async def list_available(self, tag_type):
        await self.ledger.hit(f"tags.list_available.{tag_type.value}")
        return list(self.ledger.available_tags[tag_type])


class FakeConnector(ILedgerConnector):
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger
        self.sessions: list[SiteCredentials] = []

    @asynccontextmanager
    async def session(self, credentials, on_auth_failure=None):
        self.sessions.append(credentials)
        self.ledger.on_auth_failure = on_auth_failure
        try:
            yield self.ledger.api()
        finally:
            self.ledger.on_auth_failure = None


# ============================================
# Fake Repositories
# ============================================

def _begin(record) -> bool:
    if record is None or record.sync_status not in ACQUIRABLE_STATUSES:
        return False
    record.sync_status = SyncStatus.SYNCING
    record.sync_started_at = utcnow()
    return True


def _link(record, column: str, entity_type: str, external_id: str) -> None:
    if record is None:
        raise ValidationError(f"{entity_type} not found")
    existing = getattr(record, column)
    if existing is not None and existing != external_id:
        raise LinkConflictError(entity_type, record.id, existing, external_id)
    setattr(record, column, external_id)


def _fail(record, error: str) -> None:
    if record is not None:
        record.sync_status = SyncStatus.SYNC_FAILED
        if hasattr(record, "sync_error"):
            record.sync_error = error


class FakeCultivarRepository(ICultivarRepository):
    def __init__(self):
        self.items: dict[UUID, Cultivar] = {}

    def add(self, cultivar: Cultivar) -> Cultivar:
        self.items[cultivar.id] = cultivar
        return cultivar

    async def get(self, cultivar_id):
        item = self.items.get(cultivar_id)
        return replace(item) if item else None

    async def list_for_organization(self, organization_id):
        return [replace(c) for c in self.items.values() if c.organization_id == organization_id]

    async def create(self, cultivar):
        self.items[cultivar.id] = replace(cultivar)
        return cultivar

    async def try_begin_sync(self, cultivar_id):
        return _begin(self.items.get(cultivar_id))

    async def complete_sync(self, cultivar_id, external_strain_id):
        cultivar = self.items.get(cultivar_id)
        _link(cultivar, "external_strain_id", "cultivar", external_strain_id)
        cultivar.sync_status = SyncStatus.SYNCED
        cultivar.sync_error = None
        cultivar.last_synced_at = utcnow()

    async def fail_sync(self, cultivar_id, error):
        _fail(self.items.get(cultivar_id), error)

    async def unlink(self, cultivar_id):
        cultivar = self.items[cultivar_id]
        cultivar.external_strain_id = None
        cultivar.sync_status = SyncStatus.NOT_SYNCED


class FakeStrainCacheRepository(IStrainCacheRepository):
    def __init__(self):
        self.entries = {}

    async def upsert_strains(self, entries):
        for entry in entries:
            self.entries[(entry.site_id, entry.external_strain_id)] = entry
        return len(entries)

    async def list_for_site(self, site_id):
        return [e for (site, _), e in self.entries.items() if site == site_id]


class FakePackageRepository(IPackageRepository):
    def __init__(self):
        self.items: dict[UUID, Package] = {}

    def add(self, package: Package) -> Package:
        if any(p.tag == package.tag for p in self.items.values()):
            raise InvariantViolation(f"Package tag {package.tag} already exists")
        self.items[package.id] = replace(package)
        return package

    async def get(self, package_id):
        item = self.items.get(package_id)
        return replace(item) if item else None

    async def find_by_tag(self, tag):
        item = next((p for p in self.items.values() if p.tag == tag), None)
        return replace(item) if item else None

    async def list_for_site(self, site_id):
        return [replace(p) for p in self.items.values() if p.site_id == site_id]

    async def link_external(self, package_id, external_package_id):
        _link(self.items.get(package_id), "external_package_id", "package", external_package_id)

    async def update_test_status(self, package_ids, status):
        for package_id in package_ids:
            if package_id in self.items:
                self.items[package_id].test_status = status


class FakeBatchRepository(IBatchRepository):
    def __init__(self, packages: FakePackageRepository):
        self.items: dict[UUID, Batch] = {}
        self.plants = []
        self.packages = packages

    def add(self, batch: Batch) -> Batch:
        self.items[batch.id] = batch
        return batch

    async def get(self, batch_id):
        item = self.items.get(batch_id)
        return replace(item) if item else None

    async def list_for_site(self, site_id):
        return [replace(b) for b in self.items.values() if b.site_id == site_id]

    async def try_begin_sync(self, batch_id):
        return _begin(self.items.get(batch_id))

    async def complete_sync(self, batch_id, external_batch_id):
        batch = self.items.get(batch_id)
        _link(batch, "external_batch_id", "batch", external_batch_id)
        batch.sync_status = SyncStatus.SYNCED
        batch.sync_error = None

    async def fail_sync(self, batch_id, error):
        _fail(self.items.get(batch_id), error)

    async def unlink(self, batch_id):
        batch = self.items[batch_id]
        batch.external_batch_id = None
        batch.sync_status = SyncStatus.NOT_SYNCED

    async def list_plant_tags(self, batch_id):
        plants = sorted((p for p in self.plants if p.batch_id == batch_id), key=lambda p: (p.created_at, p.tag))
        return [p.tag for p in plants]

    async def reserve_plants(self, batch_id, count):
        batch = self.items.get(batch_id)
        if batch is None:
            raise ValidationError(f"Batch {batch_id} not found")
        if count > batch.available_count:
            raise InvariantViolation(
                f"Batch {batch.batch_number} has {batch.available_count} unallocated plants",
                details={"requested": count, "available": batch.available_count},
            )
        batch.allocated_count += count
        return replace(batch)

    async def release_plants(self, batch_id, count):
        batch = self.items[batch_id]
        batch.allocated_count = max(batch.allocated_count - count, 0)

    async def record_growth_phase(self, batch_id, phase, plants):
        batch = self.items[batch_id]
        if phase.order < batch.growth_phase.order:
            raise InvariantViolation(f"Growth phase cannot regress to {phase.value}")
        batch.growth_phase = phase
        self.plants.extend(plants)
        return replace(batch)

    async def allocate_package(self, batch_id, package, decrement):
        batch = self.items[batch_id]
        count = int(package.quantity)
        if count > batch.allocated_count:
            raise InvariantViolation(f"Batch {batch.batch_number} has no reservation for {count} plants")
        self.packages.add(package)
        if decrement:
            batch.plant_count -= count
            batch.allocated_count -= count
        return replace(batch)


class FakeHarvestRepository(IHarvestRepository):
    def __init__(self, packages: FakePackageRepository):
        self.items: dict[UUID, Harvest] = {}
        self.packages = packages

    def add(self, harvest: Harvest) -> Harvest:
        self.items[harvest.id] = harvest
        return harvest

    async def get(self, harvest_id):
        item = self.items.get(harvest_id)
        return replace(item) if item else None

    async def list_for_site(self, site_id):
        return [replace(h) for h in self.items.values() if h.site_id == site_id]

    async def link_external(self, harvest_id, external_harvest_id):
        harvest = self.items.get(harvest_id)
        _link(harvest, "external_harvest_id", "harvest", external_harvest_id)
        harvest.sync_status = SyncStatus.SYNCED

    async def try_begin_sync(self, harvest_id):
        return _begin(self.items.get(harvest_id))

    async def complete_sync(self, harvest_id, external_harvest_id):
        await self.link_external(harvest_id, external_harvest_id)
        self.items[harvest_id].sync_error = None

    async def fail_sync(self, harvest_id, error):
        _fail(self.items.get(harvest_id), error)

    async def reserve_weight(self, harvest_id, weight):
        harvest = self.items.get(harvest_id)
        if harvest is None:
            raise ValidationError(f"Harvest {harvest_id} not found")
        if weight > harvest.remaining_weight + 1e-9:
            raise InvariantViolation(
                f"Harvest {harvest.name} has {harvest.remaining_weight} unpackaged",
                details={"requested": weight, "remaining": harvest.remaining_weight},
            )
        harvest.packaged_weight += weight
        return replace(harvest)

    async def release_weight(self, harvest_id, weight):
        harvest = self.items[harvest_id]
        harvest.packaged_weight = max(harvest.packaged_weight - weight, 0)

    async def allocate_package(self, harvest_id, package):
        self.packages.add(package)
        return replace(self.items[harvest_id])


class FakeLabTestRepository(ILabTestRepository):
    def __init__(self, packages: FakePackageRepository):
        self.items = {}
        self.links: dict[tuple[UUID, UUID], bool] = {}
        self.packages = packages

    async def create(self, lab_test):
        self.items[lab_test.id] = replace(lab_test)
        return lab_test

    async def get(self, lab_test_id):
        item = self.items.get(lab_test_id)
        return replace(item) if item else None

    async def update_status(self, lab_test_id, status):
        self.items[lab_test_id].status = status

    async def link_package(self, lab_test_id, package_id):
        if (lab_test_id, package_id) in self.links:
            return False
        self.links[(lab_test_id, package_id)] = False
        return True

    async def list_linked_package_ids(self, lab_test_id):
        return [package_id for (test_id, package_id) in self.links if test_id == lab_test_id]

    async def list_unrecorded_links(self, site_id):
        pairs = []
        for (test_id, package_id), recorded in self.links.items():
            lab_test = self.items[test_id]
            if recorded or lab_test.site_id != site_id or not lab_test.status.is_final:
                continue
            pairs.append((replace(lab_test), replace(self.packages.items[package_id])))
        return pairs

    async def mark_recorded(self, lab_test_id, package_id):
        self.links[(lab_test_id, package_id)] = True


class FakeWasteRepository(IWasteRepository):
    def __init__(self, batches: FakeBatchRepository, packages: FakePackageRepository):
        self.items = {}
        self.batches = batches
        self.packages = packages

    async def record_destruction(self, waste_log):
        if waste_log.source_type == WasteSourceType.PACKAGE:
            package = self.packages.items[waste_log.source_id]
            if package.status == PackageStatus.DESTROYED or waste_log.weight > package.quantity + 1e-9:
                raise InvariantViolation("Package quantity would go below zero")
            package.quantity = max(package.quantity - waste_log.weight, 0)
            if package.quantity <= 1e-9:
                package.quantity = 0
                package.status = PackageStatus.DESTROYED
        else:
            batch = self.batches.items[waste_log.source_id]
            if waste_log.plants_destroyed > batch.available_count:
                raise InvariantViolation("Not enough unallocated plants")
            batch.plant_count -= waste_log.plants_destroyed
        if waste_log.sync_status == WasteSyncStatus.SUBMITTING:
            waste_log.submitted_at = utcnow()
        self.items[waste_log.id] = replace(waste_log)
        return replace(waste_log)

    async def get(self, waste_log_id):
        item = self.items.get(waste_log_id)
        return replace(item) if item else None

    async def claim_pending(self, waste_log_id):
        log = self.items.get(waste_log_id)
        if log is None or log.sync_status != WasteSyncStatus.PENDING_EXTERNAL_SYNC:
            return False
        log.sync_status = WasteSyncStatus.SUBMITTING
        log.submitted_at = utcnow()
        return True

    async def mark_synced(self, waste_log_id, external_transaction_id):
        log = self.items[waste_log_id]
        _link(log, "external_transaction_id", "waste_log", external_transaction_id)
        log.sync_status = WasteSyncStatus.SYNCED
        log.last_sync_error = None
        log.submitted_at = None

    async def mark_attempt_failed(self, waste_log_id, error):
        log = self.items[waste_log_id]
        if log.sync_status in (WasteSyncStatus.SUBMITTING, WasteSyncStatus.PENDING_EXTERNAL_SYNC):
            log.sync_status = WasteSyncStatus.PENDING_EXTERNAL_SYNC
            log.sync_attempts += 1
            log.last_sync_error = error
            log.submitted_at = None
        return replace(log)

    async def escalate(self, waste_log_id, reason):
        log = self.items[waste_log_id]
        if log.sync_status in (WasteSyncStatus.SUBMITTING, WasteSyncStatus.PENDING_EXTERNAL_SYNC):
            log.sync_status = WasteSyncStatus.MANUAL_REVIEW
            log.last_sync_error = reason
            log.submitted_at = None

    async def escalate_stale_submissions(self, site_id, stale_after_seconds):
        cutoff = utcnow() - timedelta(seconds=stale_after_seconds)
        stale = []
        for log in self.items.values():
            if log.site_id != site_id or log.sync_status != WasteSyncStatus.SUBMITTING:
                continue
            if log.submitted_at is None or log.submitted_at >= cutoff:
                continue
            log.sync_status = WasteSyncStatus.MANUAL_REVIEW
            log.last_sync_error = "Ledger submission was interrupted; outcome unknown"
            log.submitted_at = None
            stale.append(replace(log))
        return stale

    async def list_pending(self, site_id):
        pending = [
            log for log in self.items.values()
            if log.site_id == site_id and log.sync_status == WasteSyncStatus.PENDING_EXTERNAL_SYNC
        ]
        return [replace(log) for log in sorted(pending, key=lambda log: log.created_at)]


class FakeSyncLogRepository(ISyncLogRepository):
    def __init__(self):
        self.entries = []

    async def append(self, entry):
        self.entries.append(entry)
        return entry

    async def list_entries(self, site_id=None, limit=100):
        rows = [e for e in self.entries if site_id is None or e.site_id == site_id]
        return list(reversed(rows))[:limit]

    def actions(self) -> list[Optional[str]]:
        return [e.action for e in self.entries]


class FakeCredentialRepository(ICredentialRepository):
    def __init__(self):
        self.items: dict[UUID, SiteCredentials] = {}
        self.disabled: dict[UUID, str] = {}

    def add(self, credentials: SiteCredentials) -> SiteCredentials:
        self.items[credentials.site_id] = credentials
        return credentials

    async def get_site_credentials(self, site_id):
        item = self.items.get(site_id)
        return replace(item) if item else None

    async def list_sync_enabled(self):
        return [replace(c) for c in self.items.values() if c.sync_enabled]

    async def disable_sync(self, site_id, reason):
        self.items[site_id].sync_enabled = False
        self.disabled[site_id] = reason


class FakeLocationRepository(ILocationRepository):
    def __init__(self):
        self.rooms: dict[UUID, Room] = {}
        self.site_defaults: dict[UUID, str] = {}

    def add(self, room: Room) -> Room:
        self.rooms[room.id] = room
        return room

    async def get_room(self, room_id):
        item = self.rooms.get(room_id)
        return replace(item) if item else None

    async def list_rooms(self, site_id):
        return [replace(r) for r in self.rooms.values() if r.site_id == site_id]

    async def get_site_default_location(self, site_id):
        return self.site_defaults.get(site_id)

    async def try_begin_sync(self, room_id):
        return _begin(self.rooms.get(room_id))

    async def complete_sync(self, room_id, external_location_id):
        room = self.rooms.get(room_id)
        _link(room, "external_location_id", "room", external_location_id)
        room.sync_status = SyncStatus.SYNCED
        room.external_location_name = room.external_location_name or room.name

    async def fail_sync(self, room_id, error):
        _fail(self.rooms.get(room_id), error)


class FakeTransferRepository(ITransferRepository):
    def __init__(self):
        self.manifests = {}

    async def upsert_manifests(self, manifests):
        for manifest in manifests:
            self.manifests[(manifest.site_id, manifest.external_transfer_id)] = manifest
        return len(manifests)


class FakeItemCacheRepository(IItemCacheRepository):
    def __init__(self):
        self.entries = {}

    async def upsert_items(self, entries):
        for entry in entries:
            self.entries[(entry.site_id, entry.external_item_id)] = entry
        return len(entries)

    async def list_for_site(self, site_id):
        return [e for (site, _), e in self.entries.items() if site == site_id]


class FakeTagInventoryRepository(ITagInventoryRepository):
    def __init__(self):
        self.entries = {}

    async def replace_available(self, site_id, tag_type, entries):
        labels = {e.label for e in entries}
        for (site, label), entry in self.entries.items():
            if site == site_id and entry.tag_type == tag_type and label not in labels:
                entry.status = "used"
        for entry in entries:
            self.entries[(site_id, entry.label)] = replace(entry)
        return len(entries)

    async def is_available(self, site_id, tag_type, label):
        synced = [e for (site, _), e in self.entries.items() if site == site_id and e.tag_type == tag_type]
        if not synced:
            return None
        return any(e.label == label and e.status == "available" for e in synced)


def build_fake_repositories() -> SyncRepositories:
    packages = FakePackageRepository()
    batches = FakeBatchRepository(packages)
    return SyncRepositories(
        cultivars=FakeCultivarRepository(),
        strain_cache=FakeStrainCacheRepository(),
        batches=batches,
        packages=packages,
        harvests=FakeHarvestRepository(packages),
        lab_tests=FakeLabTestRepository(packages),
        waste=FakeWasteRepository(batches, packages),
        sync_logs=FakeSyncLogRepository(),
        credentials=FakeCredentialRepository(),
        locations=FakeLocationRepository(),
        transfers=FakeTransferRepository(),
        items=FakeItemCacheRepository(),
        tags=FakeTagInventoryRepository(),
    )


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def ctx() -> SyncContext:
    return SyncContext(organization_id=uuid4(), site_id=uuid4(), actor_id=uuid4())


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def api(ledger) -> LedgerAPI:
    return ledger.api()


@pytest.fixture
def repos() -> SyncRepositories:
    return build_fake_repositories()


@pytest.fixture
def audit(repos) -> AuditTrail:
    return AuditTrail(repos.sync_logs)


@pytest.fixture
def resolver(audit) -> CreateOrLinkResolver:
    return CreateOrLinkResolver(audit, wait_timeout=1.0, poll_interval=0.01)


@pytest.fixture
def location_resolver(repos) -> LocationResolver:
    return LocationResolver(repos.batches, repos.locations)


@pytest.fixture
def credentials(repos, ctx) -> SiteCredentials:
    return repos.credentials.add(SiteCredentials(
        site_id=ctx.site_id,
        organization_id=ctx.organization_id,
        state_code="CA",
        vendor_key="vendor-key",
        user_key="user-key",
        license_number="LIC-0001",
    ))


@pytest.fixture
def connector(ledger) -> FakeConnector:
    return FakeConnector(ledger)


@pytest.fixture
def settings() -> SyncSettings:
    settings = SyncSettings()
    settings.lock_wait_seconds = 1.0
    settings.lock_poll_seconds = 0.01
    settings.waste_reconcile_max_attempts = 3
    return settings


@pytest.fixture
def orchestrator(repos, connector, settings, credentials) -> SyncOrchestrator:
    return SyncOrchestrator(repos, connector, settings)


@pytest.fixture
def add_cultivar(repos, ctx):
    def _add(name: str = "Blue Dream", **overrides) -> Cultivar:
        fields = dict(
            id=uuid4(),
            organization_id=ctx.organization_id,
            name=name,
            indica_percentage=40.0,
            sativa_percentage=60.0,
        )
        fields.update(overrides)
        return repos.cultivars.add(Cultivar(**fields))
    return _add


@pytest.fixture
def add_room(repos, ctx):
    def _add(name: str = "Flower Room 1", **overrides) -> Room:
        fields = dict(id=uuid4(), site_id=ctx.site_id, name=name)
        fields.update(overrides)
        return repos.locations.add(Room(**fields))
    return _add


@pytest.fixture
def add_batch(repos, ctx):
    def _add(batch_number: str = "BD-2026-001", **overrides) -> Batch:
        fields = dict(
            id=uuid4(),
            organization_id=ctx.organization_id,
            site_id=ctx.site_id,
            batch_number=batch_number,
            plant_count=10,
            planted_at=date(2026, 9, 1),
        )
        fields.update(overrides)
        return repos.batches.add(Batch(**fields))
    return _add


@pytest.fixture
def add_package(repos, ctx):
    def _add(tag: str = "1A4FF0100000022000000100", **overrides) -> Package:
        fields = dict(
            id=uuid4(),
            site_id=ctx.site_id,
            tag=tag,
            quantity=50.0,
            unit_of_measure="Grams",
            item_name="Blue Dream Flower",
            source_type=PackageSource.HARVEST,
        )
        fields.update(overrides)
        package = Package(**fields)
        repos.packages.add(package)
        return package
    return _add


@pytest.fixture
def add_harvest(repos, ctx):
    def _add(name: str = "BD-H-001", **overrides) -> Harvest:
        fields = dict(
            id=uuid4(),
            site_id=ctx.site_id,
            batch_id=None,
            name=name,
            wet_weight=1000.0,
            dry_weight=200.0,
        )
        fields.update(overrides)
        return repos.harvests.add(Harvest(**fields))
    return _add

