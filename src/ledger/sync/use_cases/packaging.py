"""Packaging use cases.

Three sources:
- from batch: plants leave the batch, so the batch plant count drops
- from mother: the batch stays as propagation stock, so the plants are
  counted as allocated instead
- from harvest: dry weight is drawn from the harvest's unpackaged weight

Every check that can reject a request (tag in use, unknown item, source
not linked, quantity above what is left) runs before the ledger is called.
The plants or weight are then reserved locally with a guarded update, so
two requests can never both pass the quantity check against the same
stock. A ledger failure releases the reservation. When the ledger accepts
a package but the local write fails afterwards, the reservation is kept
and the result is a failure that names the package tag so the split can be
repaired.
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID, uuid4

from ...api.exceptions import InvariantViolation, LedgerError, SyncError, ValidationError
from ...api.schemas import HarvestIngredient, HarvestPackageCreate, PlantBatchPackage
from ..domain.entities import (
    OperationResult,
    Package,
    PackageSource,
    SyncAction,
    SyncContext,
    SyncType,
    TagType,
    utcnow,
)
from ..domain.ports import (
    IBatchRepository,
    IHarvestRepository,
    IHarvestsAPI,
    IItemCacheRepository,
    IPackageRepository,
    IPlantBatchesAPI,
    ITagInventoryRepository,
)
from ..services.audit import AuditTrail
from ..services.location_resolver import LocationResolver
from ..services.validation import (
    ValidationResult,
    validate_harvest_package,
    validate_package_item,
    validate_package_request,
)
from .base import reject

logger = logging.getLogger(__name__)

PLANT_UNIT = "Each"


class PackagingUseCase:
    """Create ledger packages from batches, mother plants and harvests."""

    def __init__(
        self,
        batch_repo: IBatchRepository,
        harvest_repo: IHarvestRepository,
        package_repo: IPackageRepository,
        plant_batches_api: IPlantBatchesAPI,
        harvests_api: IHarvestsAPI,
        location_resolver: LocationResolver,
        audit: AuditTrail,
        item_cache: IItemCacheRepository,
        tag_inventory: ITagInventoryRepository,
    ):
        self.batches = batch_repo
        self.harvests = harvest_repo
        self.packages = package_repo
        self.plant_batches_api = plant_batches_api
        self.harvests_api = harvests_api
        self.locations = location_resolver
        self.audit = audit
        self.items = item_cache
        self.tags = tag_inventory

    async def _precheck(self, site_id: UUID, tag: str, quantity: float, item_name: str) -> ValidationResult:
        check = validate_package_request(tag, quantity, item_name)
        if not check.is_valid:
            return check
        if await self.packages.find_by_tag(tag.strip()) is not None:
            check.error(f"Package tag {tag} is already in use")
        check.merge(validate_package_item(item_name, await self.items.list_for_site(site_id)))
        if await self.tags.is_available(site_id, TagType.PACKAGE, tag.strip()) is False:
            check.warn(f"Tag {tag.strip()} is not in the site's available package tags")
        return check

    async def from_batch(
        self,
        ctx: SyncContext,
        batch_id: UUID,
        tag: str,
        count: int,
        item_name: str,
        location_override: Optional[str] = None,
        actual_date: Optional[date] = None,
        note: Optional[str] = None,
    ) -> OperationResult:
        return await self._from_plants(
            ctx, PackageSource.BATCH, batch_id, tag, count, item_name, location_override, actual_date, note
        )

    async def from_mother(
        self,
        ctx: SyncContext,
        batch_id: UUID,
        tag: str,
        count: int,
        item_name: str,
        location_override: Optional[str] = None,
        actual_date: Optional[date] = None,
        note: Optional[str] = None,
    ) -> OperationResult:
        return await self._from_plants(
            ctx, PackageSource.MOTHER, batch_id, tag, count, item_name, location_override, actual_date, note
        )

    async def _from_plants(
        self,
        ctx: SyncContext,
        source: PackageSource,
        batch_id: UUID,
        tag: str,
        count: int,
        item_name: str,
        location_override: Optional[str],
        actual_date: Optional[date],
        note: Optional[str],
    ) -> OperationResult:
        batch = await self.batches.get(batch_id)
        if batch is None:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [batch_id],
                ValidationError(f"Batch {batch_id} not found"),
            )

        check = await self._precheck(batch.site_id, tag, count, item_name)
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [batch.id],
                ValidationError("; ".join(check.errors), field="tag"), check.warnings,
            )
        tag = tag.strip()

        if count > batch.available_count:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [batch.id],
                InvariantViolation(
                    f"Cannot package {count} plants; batch {batch.batch_number} has "
                    f"{batch.available_count} unallocated of {batch.plant_count}",
                    details={
                        "requested": count,
                        "plant_count": batch.plant_count,
                        "allocated": batch.allocated_count,
                    },
                ),
                check.warnings, tag=tag,
            )

        if not batch.is_linked:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [batch.id],
                ValidationError(f"Batch {batch.batch_number} must be pushed to the ledger before packaging"),
                check.warnings, tag=tag,
            )

        location = await self.locations.resolve_for(batch, location_override)
        if location.requires_manual_input:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [batch.id],
                ValidationError("A ledger location is required to create a package", field="location"),
                check.warnings, tag=tag,
            )

        payload = PlantBatchPackage(
            plant_batch=batch.batch_number,
            count=count,
            location=location.location_name,
            item=item_name.strip(),
            tag=tag,
            note=note,
            actual_date=actual_date or utcnow().date(),
        )
        try:
            await self.batches.reserve_plants(batch.id, count)
        except LedgerError as e:
            return await reject(self.audit, ctx, SyncType.PACKAGES, "package", [batch.id], e, check.warnings, tag=tag)

        try:
            if source == PackageSource.MOTHER:
                await self.plant_batches_api.create_packages_from_mother(payload)
            else:
                await self.plant_batches_api.create_packages(payload)
        except LedgerError as e:
            await self.batches.release_plants(batch.id, count)
            return await reject(self.audit, ctx, SyncType.PACKAGES, "package", [batch.id], e, check.warnings, tag=tag)

        package = Package(
            id=uuid4(),
            site_id=batch.site_id,
            tag=tag,
            quantity=count,
            unit_of_measure=PLANT_UNIT,
            item_name=payload.item,
            source_type=source,
            source_batch_id=batch.id,
        )
        try:
            await self.batches.allocate_package(batch.id, package, decrement=source == PackageSource.BATCH)
        except LedgerError as e:
            return await self._partial(ctx, package, [batch.id], e, check.warnings)

        return await self._created(ctx, package, [batch.id], check.warnings, source=source.value, count=count)

    async def from_harvest(
        self,
        ctx: SyncContext,
        harvest_id: UUID,
        tag: str,
        weight: float,
        item_name: str,
        location_override: Optional[str] = None,
        actual_date: Optional[date] = None,
    ) -> OperationResult:
        harvest = await self.harvests.get(harvest_id)
        if harvest is None:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [harvest_id],
                ValidationError(f"Harvest {harvest_id} not found"),
            )

        check = validate_harvest_package(harvest, weight)
        if check.is_valid:
            check.merge(await self._precheck(harvest.site_id, tag, weight, item_name))
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [harvest.id],
                ValidationError("; ".join(check.errors)), check.warnings,
            )
        tag = tag.strip()

        if weight > harvest.remaining_weight:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [harvest.id],
                InvariantViolation(
                    f"Cannot package {weight} {harvest.unit_of_weight}; harvest {harvest.name} has "
                    f"{harvest.remaining_weight} unpackaged",
                    details={"requested": weight, "remaining": harvest.remaining_weight},
                ),
                check.warnings, tag=tag,
            )

        if harvest.external_harvest_id is None:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [harvest.id],
                ValidationError(f"Harvest {harvest.name} is not linked to a ledger harvest"),
                check.warnings, tag=tag,
            )

        if harvest.batch_id is not None:
            location = await self.locations.resolve(harvest.batch_id, location_override)
        else:
            location = await self.locations.resolve_for_site(harvest.site_id, location_override)
        if location.requires_manual_input:
            return await reject(
                self.audit, ctx, SyncType.PACKAGES, "package", [harvest.id],
                ValidationError("A ledger location is required to create a package", field="location"),
                check.warnings, tag=tag,
            )

        external_id = harvest.external_harvest_id
        payload = HarvestPackageCreate(
            tag=tag,
            location=location.location_name,
            item=item_name.strip(),
            unit_of_weight=harvest.unit_of_weight,
            ingredients=[HarvestIngredient(
                harvest_id=int(external_id) if external_id.isdigit() else None,
                harvest_name=harvest.name,
                weight=weight,
                unit_of_weight=harvest.unit_of_weight,
            )],
            actual_date=actual_date or utcnow().date(),
        )
        try:
            await self.harvests.reserve_weight(harvest.id, weight)
        except LedgerError as e:
            return await reject(self.audit, ctx, SyncType.PACKAGES, "package", [harvest.id], e, check.warnings, tag=tag)

        try:
            await self.harvests_api.create_packages(payload)
        except LedgerError as e:
            await self.harvests.release_weight(harvest.id, weight)
            return await reject(self.audit, ctx, SyncType.PACKAGES, "package", [harvest.id], e, check.warnings, tag=tag)

        package = Package(
            id=uuid4(),
            site_id=harvest.site_id,
            tag=tag,
            quantity=weight,
            unit_of_measure=harvest.unit_of_weight,
            item_name=payload.item,
            source_type=PackageSource.HARVEST,
            source_batch_id=harvest.batch_id,
            source_harvest_id=harvest.id,
        )
        try:
            await self.harvests.allocate_package(harvest.id, package)
        except LedgerError as e:
            return await self._partial(ctx, package, [harvest.id], e, check.warnings)

        return await self._created(
            ctx, package, [harvest.id], check.warnings, source=PackageSource.HARVEST.value, weight=weight
        )

    async def _created(self, ctx, package: Package, source_ids: list, warnings: list[str], **extra) -> OperationResult:
        entry = await self.audit.record(
            ctx, SyncType.PACKAGES, SyncAction.CREATED, "package",
            [package.id, *source_ids], tag=package.tag, **extra,
        )
        logger.info(f"Created package {package.tag} ({package.quantity} {package.unit_of_measure})")
        return OperationResult(
            success=True,
            warnings=warnings,
            created_ids=[str(package.id)],
            sync_log_id=entry.id,
        )

    async def _partial(self, ctx, package: Package, source_ids: list, error: LedgerError, warnings: list[str]):
        partial = SyncError(
            f"Package {package.tag} was created in the ledger but could not be saved locally: {error.message}",
            details={"tag": package.tag},
            cause=error,
        )
        logger.error(partial.message)
        return await reject(
            self.audit, ctx, SyncType.PACKAGES, "package", [package.id, *source_ids], partial, warnings,
            tag=package.tag, external_created=True,
        )


__all__ = ["PackagingUseCase"]
