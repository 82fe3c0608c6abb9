"""Port interfaces for ledger sync operations.

Ports define the contracts between the domain/use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations

Two families of ports exist here:
- Repositories: the internal data store. Writes that guard an invariant
  (compare-and-swap on sync status, write-once external ids, quantity
  decrements) are single atomic operations on the port.
- Ledger APIs: one port per external resource family, returning the typed
  records from ``src.ledger.api.schemas``.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import UUID

from ...api.exceptions import AuthError
from ...api.schemas import (
    Harvest as LedgerHarvest,
    HarvestCreate,
    HarvestPackageCreate,
    Item,
    ItemCategory,
    LabTestRecord,
    LabTestType,
    Location,
    LocationCreate,
    LocationType,
    Package as LedgerPackage,
    PackageAdjustment,
    PlantBatch,
    PlantBatchCreate,
    PlantBatchDestroy,
    PlantBatchGrowthPhase,
    PlantBatchPackage,
    Strain,
    StrainCreate,
    Tag,
    Transfer,
    WasteTransaction,
)
from .entities import (
    Batch,
    Cultivar,
    ExternalItemCacheEntry,
    ExternalStrainCacheEntry,
    GrowthPhase,
    Harvest,
    LabTest,
    LabTestStatus,
    Package,
    Plant,
    Room,
    SiteCredentials,
    SyncLogEntry,
    TagInventoryEntry,
    TagType,
    TransferManifest,
    WasteLog,
)


# ============================================
# Repository Ports
# ============================================

class ICultivarRepository(ABC):
    """Port for cultivar persistence and the cultivar sync mutex."""

    @abstractmethod
    async def get(self, cultivar_id: UUID) -> Optional[Cultivar]:
        ...

    @abstractmethod
    async def list_for_organization(self, organization_id: UUID) -> list[Cultivar]:
        ...

    @abstractmethod
    async def create(self, cultivar: Cultivar) -> Cultivar:
        ...

    @abstractmethod
    async def try_begin_sync(self, cultivar_id: UUID) -> bool:
        """Compare-and-swap into SYNCING.

        Succeeds only from not_synced/sync_failed (or a stale syncing mark).

        Returns:
            True if this caller now owns the sync
        """
        ...

    @abstractmethod
    async def complete_sync(self, cultivar_id: UUID, external_strain_id: str) -> None:
        """Write the external id (write-once) and mark SYNCED.

        Raises:
            LinkConflictError: If already linked to a different id
        """
        ...

    @abstractmethod
    async def fail_sync(self, cultivar_id: UUID, error: str) -> None:
        ...

    @abstractmethod
    async def unlink(self, cultivar_id: UUID) -> None:
        """Explicitly clear the external link and reset to NOT_SYNCED."""
        ...


class IStrainCacheRepository(ABC):
    """Port for the ledger strain snapshot cache."""

    @abstractmethod
    async def upsert_strains(self, entries: list[ExternalStrainCacheEntry]) -> int:
        """Overwrite-on-conflict by (site_id, external_strain_id)."""
        ...

    @abstractmethod
    async def list_for_site(self, site_id: UUID) -> list[ExternalStrainCacheEntry]:
        ...


class IItemCacheRepository(ABC):
    """Port for the ledger item snapshot cache."""

    @abstractmethod
    async def upsert_items(self, entries: list[ExternalItemCacheEntry]) -> int:
        """Overwrite-on-conflict by (site_id, external_item_id)."""
        ...

    @abstractmethod
    async def list_for_site(self, site_id: UUID) -> list[ExternalItemCacheEntry]:
        ...


class ITagInventoryRepository(ABC):
    """Port for the site's snapshot of available ledger tags."""

    @abstractmethod
    async def replace_available(self, site_id: UUID, tag_type: TagType, entries: list[TagInventoryEntry]) -> int:
        """Upsert ``entries`` and mark every other tag of ``tag_type`` used.

        Returns:
            Number of available tags stored
        """
        ...

    @abstractmethod
    async def is_available(self, site_id: UUID, tag_type: TagType, label: str) -> Optional[bool]:
        """None when no tags of that type have been synced for the site."""
        ...


class IBatchRepository(ABC):
    """Port for batches, their tracked plants and the batch sync mutex."""

    @abstractmethod
    async def get(self, batch_id: UUID) -> Optional[Batch]:
        ...

    @abstractmethod
    async def list_for_site(self, site_id: UUID) -> list[Batch]:
        ...

    @abstractmethod
    async def try_begin_sync(self, batch_id: UUID) -> bool:
        ...

    @abstractmethod
    async def complete_sync(self, batch_id: UUID, external_batch_id: str) -> None:
        ...

    @abstractmethod
    async def fail_sync(self, batch_id: UUID, error: str) -> None:
        ...

    @abstractmethod
    async def unlink(self, batch_id: UUID) -> None:
        ...

    @abstractmethod
    async def list_plant_tags(self, batch_id: UUID) -> list[str]:
        """Tags of the batch's tracked plants, oldest first."""
        ...

    @abstractmethod
    async def reserve_plants(self, batch_id: UUID, count: int) -> Batch:
        """Move ``count`` unallocated plants into the allocated count.

        The guard and the increment are one statement, so two concurrent
        reservations can never both draw the same plants.

        Raises:
            ValidationError: If the batch does not exist
            InvariantViolation: If fewer than ``count`` plants are unallocated
        """
        ...

    @abstractmethod
    async def release_plants(self, batch_id: UUID, count: int) -> None:
        """Return plants reserved by ``reserve_plants`` that were never used."""
        ...

    @abstractmethod
    async def record_growth_phase(
        self,
        batch_id: UUID,
        phase: GrowthPhase,
        plants: list[Plant],
    ) -> Batch:
        """Advance the phase and add tracked plants in one atomic write.

        The plants must already be reserved with ``reserve_plants``.

        Raises:
            InvariantViolation: If the phase would regress
        """
        ...

    @abstractmethod
    async def allocate_package(self, batch_id: UUID, package: Package, decrement: bool) -> Batch:
        """Insert a package drawn from plants already reserved for it.

        ``decrement=True`` removes the reserved plants from the batch
        (package from batch); otherwise they stay allocated (package from
        mother).
        """
        ...


class IPackageRepository(ABC):
    """Port for package persistence."""

    @abstractmethod
    async def get(self, package_id: UUID) -> Optional[Package]:
        ...

    @abstractmethod
    async def find_by_tag(self, tag: str) -> Optional[Package]:
        ...

    @abstractmethod
    async def list_for_site(self, site_id: UUID) -> list[Package]:
        ...

    @abstractmethod
    async def link_external(self, package_id: UUID, external_package_id: str) -> None:
        """Write-once link; raises LinkConflictError on mismatch."""
        ...

    @abstractmethod
    async def update_test_status(self, package_ids: list[UUID], status: LabTestStatus) -> None:
        ...


class IHarvestRepository(ABC):
    """Port for harvests, their packaged weight and the harvest sync mutex."""

    @abstractmethod
    async def get(self, harvest_id: UUID) -> Optional[Harvest]:
        ...

    @abstractmethod
    async def list_for_site(self, site_id: UUID) -> list[Harvest]:
        ...

    @abstractmethod
    async def link_external(self, harvest_id: UUID, external_harvest_id: str) -> None:
        """Write-once link that also marks the harvest SYNCED."""
        ...

    @abstractmethod
    async def try_begin_sync(self, harvest_id: UUID) -> bool:
        ...

    @abstractmethod
    async def complete_sync(self, harvest_id: UUID, external_harvest_id: str) -> None:
        ...

    @abstractmethod
    async def fail_sync(self, harvest_id: UUID, error: str) -> None:
        ...

    @abstractmethod
    async def reserve_weight(self, harvest_id: UUID, weight: float) -> Harvest:
        """Move ``weight`` of unpackaged dry weight into the packaged weight.

        Raises:
            ValidationError: If the harvest does not exist
            InvariantViolation: If weight exceeds the remaining dry weight
        """
        ...

    @abstractmethod
    async def release_weight(self, harvest_id: UUID, weight: float) -> None:
        ...

    @abstractmethod
    async def allocate_package(self, harvest_id: UUID, package: Package) -> Harvest:
        """Insert a package whose weight was reserved with ``reserve_weight``."""
        ...


class ILabTestRepository(ABC):
    """Port for lab tests and their package links."""

    @abstractmethod
    async def create(self, lab_test: LabTest) -> LabTest:
        ...

    @abstractmethod
    async def get(self, lab_test_id: UUID) -> Optional[LabTest]:
        ...

    @abstractmethod
    async def update_status(self, lab_test_id: UUID, status: LabTestStatus) -> None:
        ...

    @abstractmethod
    async def link_package(self, lab_test_id: UUID, package_id: UUID) -> bool:
        """Returns False if the link already existed."""
        ...

    @abstractmethod
    async def list_linked_package_ids(self, lab_test_id: UUID) -> list[UUID]:
        ...

    @abstractmethod
    async def list_unrecorded_links(self, site_id: UUID) -> list[tuple[LabTest, Package]]:
        """Links to final tests whose results are not yet in the ledger."""
        ...

    @abstractmethod
    async def mark_recorded(self, lab_test_id: UUID, package_id: UUID) -> None:
        ...


class IWasteRepository(ABC):
    """Port for waste logs; creation and inventory decrement are one write."""

    @abstractmethod
    async def record_destruction(self, waste_log: WasteLog) -> WasteLog:
        """Insert the log and decrement its source atomically.

        Package sources lose ``weight`` from quantity (destroyed at zero);
        plant-batch sources lose ``plants_destroyed`` from plant count.
        Logs bound for the ledger are stored ``submitting`` so that the
        reconciliation pass cannot pick them up while the first
        submission is in flight.

        Raises:
            InvariantViolation: If the source no longer has enough inventory
        """
        ...

    @abstractmethod
    async def get(self, waste_log_id: UUID) -> Optional[WasteLog]:
        ...

    @abstractmethod
    async def claim_pending(self, waste_log_id: UUID) -> bool:
        """Move a pending row to ``submitting``.

        Returns:
            False if another caller claimed it first or it is no longer pending
        """
        ...

    @abstractmethod
    async def mark_synced(self, waste_log_id: UUID, external_transaction_id: str) -> None:
        """Attach the ledger transaction id (write-once) and mark SYNCED.

        Raises:
            LinkConflictError: If a different transaction id is already attached
        """
        ...

    @abstractmethod
    async def mark_attempt_failed(self, waste_log_id: UUID, error: str) -> WasteLog:
        """Increment the attempt counter and return the row to pending."""
        ...

    @abstractmethod
    async def escalate(self, waste_log_id: UUID, reason: str) -> None:
        """Move the row to manual review."""
        ...

    @abstractmethod
    async def escalate_stale_submissions(self, site_id: UUID, stale_after_seconds: float) -> list[WasteLog]:
        """Move rows stuck in ``submitting`` past the cutoff to manual review.

        A submitter that died mid-call leaves the ledger outcome unknown,
        so these rows are never retried automatically.
        """
        ...

    @abstractmethod
    async def list_pending(self, site_id: UUID) -> list[WasteLog]:
        ...


class ISyncLogRepository(ABC):
    """Append-only audit sink. There is deliberately no update or delete."""

    @abstractmethod
    async def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        ...

    @abstractmethod
    async def list_entries(
        self,
        site_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> list[SyncLogEntry]:
        ...


class ICredentialRepository(ABC):
    """Port for per-site ledger credentials."""

    @abstractmethod
    async def get_site_credentials(self, site_id: UUID) -> Optional[SiteCredentials]:
        ...

    @abstractmethod
    async def list_sync_enabled(self) -> list[SiteCredentials]:
        ...

    @abstractmethod
    async def disable_sync(self, site_id: UUID, reason: str) -> None:
        ...


class ILocationRepository(ABC):
    """Port for rooms and site default locations."""

    @abstractmethod
    async def get_room(self, room_id: UUID) -> Optional[Room]:
        ...

    @abstractmethod
    async def list_rooms(self, site_id: UUID) -> list[Room]:
        ...

    @abstractmethod
    async def get_site_default_location(self, site_id: UUID) -> Optional[str]:
        ...

    @abstractmethod
    async def try_begin_sync(self, room_id: UUID) -> bool:
        ...

    @abstractmethod
    async def complete_sync(self, room_id: UUID, external_location_id: str) -> None:
        ...

    @abstractmethod
    async def fail_sync(self, room_id: UUID, error: str) -> None:
        ...


class ITransferRepository(ABC):
    """Port for the transfer manifest cache."""

    @abstractmethod
    async def upsert_manifests(self, manifests: list[TransferManifest]) -> int:
        ...


@dataclass
class SyncRepositories:
    """Bundle of every repository the engine needs."""

    cultivars: ICultivarRepository
    strain_cache: IStrainCacheRepository
    batches: IBatchRepository
    packages: IPackageRepository
    harvests: IHarvestRepository
    lab_tests: ILabTestRepository
    waste: IWasteRepository
    sync_logs: ISyncLogRepository
    credentials: ICredentialRepository
    locations: ILocationRepository
    transfers: ITransferRepository
    items: IItemCacheRepository
    tags: ITagInventoryRepository


# ============================================
# Ledger API Ports
# ============================================

@dataclass
class TimeWindow:
    """lastModified window for incremental list calls."""

    start: datetime
    end: datetime


class IStrainsAPI(ABC):
    @abstractmethod
    async def list_active(self) -> list[Strain]:
        ...

    @abstractmethod
    async def list_inactive(self) -> list[Strain]:
        ...

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[Strain]:
        ...

    @abstractmethod
    async def create(self, payload: StrainCreate) -> None:
        """Create a strain. The ledger does not return the new id."""
        ...


class ILocationsAPI(ABC):
    @abstractmethod
    async def list_active(self) -> list[Location]:
        ...

    @abstractmethod
    async def list_types(self) -> list[LocationType]:
        ...

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[Location]:
        ...

    @abstractmethod
    async def create(self, payload: LocationCreate) -> None:
        ...


class IPlantBatchesAPI(ABC):
    @abstractmethod
    async def list_active(self, window: Optional[TimeWindow] = None) -> list[PlantBatch]:
        ...

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[PlantBatch]:
        ...

    @abstractmethod
    async def create_plantings(self, payload: PlantBatchCreate) -> None:
        ...

    @abstractmethod
    async def change_growth_phase(self, payload: PlantBatchGrowthPhase) -> None:
        """Move plants into a tracked phase, creating one tagged plant each."""
        ...

    @abstractmethod
    async def create_packages(self, payload: PlantBatchPackage) -> None:
        ...

    @abstractmethod
    async def create_packages_from_mother(self, payload: PlantBatchPackage) -> None:
        ...


class IPackagesAPI(ABC):
    @abstractmethod
    async def list_active(self, window: Optional[TimeWindow] = None) -> list[LedgerPackage]:
        ...

    @abstractmethod
    async def find_by_label(self, label: str) -> Optional[LedgerPackage]:
        ...


class IHarvestsAPI(ABC):
    @abstractmethod
    async def list_active(self, window: Optional[TimeWindow] = None) -> list[LedgerHarvest]:
        ...

    @abstractmethod
    async def list_inactive(self, window: Optional[TimeWindow] = None) -> list[LedgerHarvest]:
        ...

    @abstractmethod
    async def create_packages(self, payload: HarvestPackageCreate) -> None:
        ...

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[LedgerHarvest]:
        ...

    @abstractmethod
    async def create_from_plants(self, payload: HarvestCreate) -> None:
        """Harvest tagged plants into a new harvest. The ledger returns no id."""
        ...


class IItemsAPI(ABC):
    @abstractmethod
    async def list_active(self) -> list[Item]:
        ...

    @abstractmethod
    async def list_inactive(self) -> list[Item]:
        ...

    @abstractmethod
    async def list_categories(self) -> list[ItemCategory]:
        ...


class ITagsAPI(ABC):
    @abstractmethod
    async def list_available(self, tag_type: TagType) -> list[Tag]:
        ...


class ILabTestsAPI(ABC):
    @abstractmethod
    async def list_types(self) -> list[LabTestType]:
        ...

    @abstractmethod
    async def record(self, payload: LabTestRecord) -> None:
        """Record results against a package label."""
        ...


class IWasteAPI(ABC):
    @abstractmethod
    async def destroy_plant_batch(self, payload: PlantBatchDestroy, reference: str) -> WasteTransaction:
        ...

    @abstractmethod
    async def destroy_package(self, payload: PackageAdjustment, reference: str) -> WasteTransaction:
        ...


class ITransfersAPI(ABC):
    @abstractmethod
    async def list_incoming(self, window: Optional[TimeWindow] = None) -> list[Transfer]:
        ...

    @abstractmethod
    async def list_outgoing(self, window: Optional[TimeWindow] = None) -> list[Transfer]:
        ...


@dataclass
class LedgerAPI:
    """One site's view of the ledger, grouped by resource family."""

    strains: IStrainsAPI
    locations: ILocationsAPI
    plant_batches: IPlantBatchesAPI
    packages: IPackagesAPI
    harvests: IHarvestsAPI
    lab_tests: ILabTestsAPI
    waste: IWasteAPI
    transfers: ITransfersAPI
    items: IItemsAPI
    tags: ITagsAPI


AuthFailureCallback = Callable[[AuthError], Awaitable[None]]


class ILedgerConnector(ABC):
    """Builds a LedgerAPI scoped to one site's credentials."""

    @abstractmethod
    def session(
        self,
        credentials: SiteCredentials,
        on_auth_failure: Optional[AuthFailureCallback] = None,
    ) -> AbstractAsyncContextManager[LedgerAPI]:
        ...


__all__ = [
    "ICultivarRepository",
    "IStrainCacheRepository",
    "IBatchRepository",
    "IPackageRepository",
    "IHarvestRepository",
    "ILabTestRepository",
    "IWasteRepository",
    "ISyncLogRepository",
    "ICredentialRepository",
    "ILocationRepository",
    "ITransferRepository",
    "IItemCacheRepository",
    "ITagInventoryRepository",
    "SyncRepositories",
    "TimeWindow",
    "IStrainsAPI",
    "ILocationsAPI",
    "IPlantBatchesAPI",
    "IPackagesAPI",
    "IHarvestsAPI",
    "ILabTestsAPI",
    "IWasteAPI",
    "ITransfersAPI",
    "IItemsAPI",
    "ITagsAPI",
    "LedgerAPI",
    "AuthFailureCallback",
    "ILedgerConnector",
]
