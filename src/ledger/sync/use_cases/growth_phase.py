"""Growth phase transition for a batch.

Phases only move forward. Moving into vegetative or flowering may also tag
individual plants: one ledger plant per requested count, starting at a
caller-supplied tag. Tagging needs the batch to be linked already and the
plants to fit in the unallocated count; both are checked before the ledger
is called, and no local state changes when either check fails. The tagged
plants are reserved against the batch before the ledger call and released
if the ledger rejects the change.
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID, uuid4

from ...api.exceptions import InvariantViolation, LedgerError, SyncError, ValidationError
from ...api.schemas import PlantBatchGrowthPhase
from ..domain.entities import (
    GrowthPhase,
    OperationResult,
    Plant,
    SyncAction,
    SyncContext,
    SyncType,
    utcnow,
)
from ..domain.ports import IBatchRepository, IPlantBatchesAPI
from ..services.audit import AuditTrail
from ..services.location_resolver import LocationResolver
from ..services.tags import generate_tag_range
from ..services.validation import validate_growth_phase_change
from .base import reject

logger = logging.getLogger(__name__)


class ChangeGrowthPhaseUseCase:
    def __init__(
        self,
        batch_repo: IBatchRepository,
        plant_batches_api: IPlantBatchesAPI,
        location_resolver: LocationResolver,
        audit: AuditTrail,
    ):
        self.batches = batch_repo
        self.api = plant_batches_api
        self.locations = location_resolver
        self.audit = audit

    async def execute(
        self,
        ctx: SyncContext,
        batch_id: UUID,
        target: GrowthPhase,
        plant_count: int = 0,
        starting_tag: Optional[str] = None,
        location_override: Optional[str] = None,
        phase_date: Optional[date] = None,
    ) -> OperationResult:
        """Advance ``batch_id`` to ``target``, tagging ``plant_count`` plants.

        Returns:
            OperationResult whose ``created_ids`` are the new plant ids
        """
        batch = await self.batches.get(batch_id)
        if batch is None:
            return await reject(
                self.audit, ctx, SyncType.BATCHES, "batch", [batch_id],
                ValidationError(f"Batch {batch_id} not found"),
            )

        check = validate_growth_phase_change(batch, target, plant_count, starting_tag)
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.BATCHES, "batch", [batch.id],
                ValidationError("; ".join(check.errors), field="growth_phase"), check.warnings,
            )

        if plant_count > batch.available_count:
            return await reject(
                self.audit, ctx, SyncType.BATCHES, "batch", [batch.id],
                InvariantViolation(
                    f"Cannot tag {plant_count} plants; batch {batch.batch_number} has "
                    f"{batch.available_count} unallocated of {batch.plant_count}",
                    details={"requested": plant_count, "available": batch.available_count},
                ),
                check.warnings,
            )

        plants: list[Plant] = []
        location_name = None
        if plant_count > 0:
            if not batch.is_linked:
                return await reject(
                    self.audit, ctx, SyncType.BATCHES, "batch", [batch.id],
                    ValidationError(
                        f"Batch {batch.batch_number} must be pushed to the ledger before plants are tagged",
                        field="batch_id",
                    ),
                    check.warnings,
                )

            location = await self.locations.resolve_for(batch, location_override)
            if location.requires_manual_input:
                return await reject(
                    self.audit, ctx, SyncType.BATCHES, "batch", [batch.id],
                    ValidationError("A ledger location is required to tag plants", field="location"),
                    check.warnings,
                )
            location_name = location.location_name

            try:
                tags = generate_tag_range(starting_tag, plant_count)
            except ValidationError as e:
                return await reject(self.audit, ctx, SyncType.BATCHES, "batch", [batch.id], e, check.warnings)

            payload = PlantBatchGrowthPhase(
                name=batch.batch_number,
                count=plant_count,
                starting_tag=tags[0],
                growth_phase=target.ledger_name,
                new_location=location_name,
                growth_date=phase_date or utcnow().date(),
            )
            try:
                await self.batches.reserve_plants(batch.id, plant_count)
            except LedgerError as e:
                return await reject(self.audit, ctx, SyncType.BATCHES, "batch", [batch.id], e, check.warnings)

            try:
                await self.api.change_growth_phase(payload)
            except LedgerError as e:
                await self.batches.release_plants(batch.id, plant_count)
                return await reject(
                    self.audit, ctx, SyncType.BATCHES, "batch", [batch.id], e, check.warnings,
                    phase=target.value, plant_count=plant_count,
                )
            plants = [Plant(id=uuid4(), batch_id=batch.id, tag=tag, growth_phase=target) for tag in tags]

        try:
            updated = await self.batches.record_growth_phase(batch.id, target, plants)
        except LedgerError as e:
            if not plants:
                return await reject(self.audit, ctx, SyncType.BATCHES, "batch", [batch.id], e, check.warnings)
            # The ledger already holds the tagged plants; report the split state
            partial = SyncError(
                f"Ledger tagged {plant_count} plants for batch {batch.batch_number} "
                f"({plants[0].tag}..{plants[-1].tag}) but the local update failed: {e.message}",
                details={"tags": [p.tag for p in plants]},
                cause=e,
            )
            logger.error(partial.message)
            return await reject(self.audit, ctx, SyncType.BATCHES, "batch", [batch.id], partial, check.warnings)

        entry = await self.audit.record(
            ctx, SyncType.BATCHES, SyncAction.UPDATED, "batch",
            [batch.id, *(p.id for p in plants)],
            phase_from=batch.growth_phase.value,
            phase_to=updated.growth_phase.value,
            plants_tagged=len(plants),
            location=location_name,
            external=bool(plants),
        )
        logger.info(
            f"Batch {batch.batch_number} moved to {target.value}"
            + (f" with {len(plants)} tagged plants" if plants else "")
        )
        return OperationResult(
            success=True,
            warnings=check.warnings,
            created_ids=[str(p.id) for p in plants],
            external_id=batch.external_batch_id,
            sync_log_id=entry.id,
        )


__all__ = ["ChangeGrowthPhaseUseCase"]
