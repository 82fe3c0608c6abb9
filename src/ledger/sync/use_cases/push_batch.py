"""Plant batch use cases.

Push follows validate -> resolve location -> create-or-link. A batch can
only be pushed once its cultivar is linked to a ledger strain, because the
ledger names the strain on the planting.

Pull links unlinked local batches to active ledger plant batches with the
same name and can push the remaining pending batches.
"""

import logging
from typing import Optional
from uuid import UUID

from ...api.exceptions import LedgerError, ValidationError
from ...api.schemas import PlantBatchCreate
from ..domain.entities import (
    Batch,
    OperationResult,
    SyncAction,
    SyncContext,
    SyncResult,
    SyncType,
    canonical_name,
    utcnow,
)
from ..domain.ports import (
    IBatchRepository,
    ICultivarRepository,
    IPlantBatchesAPI,
    TimeWindow,
)
from ..services.audit import AuditTrail
from ..services.create_or_link import BatchLinkTarget, CreateOrLinkResolver
from ..services.location_resolver import LocationResolver
from ..services.validation import validate_batch_push
from .base import from_link_outcome, record_pull, reject

logger = logging.getLogger(__name__)


class PushBatchUseCase:
    """Create-or-link one local batch as a ledger plant batch."""

    def __init__(
        self,
        batch_repo: IBatchRepository,
        cultivar_repo: ICultivarRepository,
        plant_batches_api: IPlantBatchesAPI,
        location_resolver: LocationResolver,
        resolver: CreateOrLinkResolver,
        audit: AuditTrail,
    ):
        self.batches = batch_repo
        self.cultivars = cultivar_repo
        self.api = plant_batches_api
        self.locations = location_resolver
        self.resolver = resolver
        self.audit = audit

    async def execute(
        self,
        ctx: SyncContext,
        batch_id: UUID,
        location_override: Optional[str] = None,
    ) -> OperationResult:
        batch = await self.batches.get(batch_id)
        if batch is None:
            return await reject(
                self.audit, ctx, SyncType.BATCHES, "batch", [batch_id],
                ValidationError(f"Batch {batch_id} not found"),
            )

        if batch.is_linked:
            entry = await self.audit.record(
                ctx, SyncType.BATCHES, SyncAction.LINKED, "batch", [batch.id],
                name=batch.batch_number, external_id=batch.external_batch_id, already_linked=True,
            )
            return OperationResult(
                success=True,
                created_ids=[str(batch.id)],
                external_id=batch.external_batch_id,
                sync_log_id=entry.id,
                action=SyncAction.LINKED,
            )

        strain_name = None
        if batch.cultivar_id is not None:
            cultivar = await self.cultivars.get(batch.cultivar_id)
            if cultivar is not None and cultivar.is_linked:
                strain_name = cultivar.name.strip()

        location = await self.locations.resolve_for(batch, location_override)
        check = validate_batch_push(batch, strain_name, location.location_name)
        if location.requires_manual_input:
            check.warn("No room or site default location is configured; choose a location manually")
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.BATCHES, "batch", [batch.id],
                ValidationError("; ".join(check.errors)), check.warnings,
                location_source=location.source.value,
            )

        payload = PlantBatchCreate(
            name=batch.batch_number.strip(),
            type=batch.propagation_type,
            count=batch.plant_count,
            strain=strain_name,
            location=location.location_name,
            actual_date=batch.planted_at or utcnow().date(),
            source_package=batch.source_package_tag,
        )
        outcome = await self.resolver.resolve(
            BatchLinkTarget(self.batches, self.api, batch, payload),
            ctx,
            SyncType.BATCHES,
        )
        return from_link_outcome(outcome, batch.id, check.warnings)


class SyncPlantBatchesUseCase:
    """Link local batches to ledger plant batches, optionally pushing the rest."""

    def __init__(
        self,
        plant_batches_api: IPlantBatchesAPI,
        batch_repo: IBatchRepository,
        audit: AuditTrail,
        push: Optional[PushBatchUseCase] = None,
    ):
        self.api = plant_batches_api
        self.batches = batch_repo
        self.audit = audit
        self.push = push

    async def execute(
        self,
        ctx: SyncContext,
        window: Optional[TimeWindow] = None,
        push_pending: bool = False,
    ) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.BATCHES)

        try:
            external = await self.api.list_active(window)
        except LedgerError as e:
            logger.error(f"Failed to fetch plant batches from ledger: {e}")
            result.errors.append(f"Plant batch fetch failed: {e.message}")
            await record_pull(self.audit, ctx, SyncType.BATCHES, "batch", 0, 0, result.errors, error=e)
            return result.finish()

        by_name = {canonical_name(b.name): b for b in external}
        pending: list[Batch] = []

        for batch in await self.batches.list_for_site(ctx.site_id):
            if batch.is_linked or not batch.is_cannabis:
                continue
            match = by_name.get(canonical_name(batch.batch_number))
            if match is None:
                pending.append(batch)
                continue
            if match.untracked_count + match.tracked_count != batch.plant_count:
                result.warnings.append(
                    f"Batch {batch.batch_number} has {batch.plant_count} plants locally but "
                    f"{match.untracked_count + match.tracked_count} in the ledger"
                )
            if not await self.batches.try_begin_sync(batch.id):
                result.warnings.append(f"Batch {batch.batch_number} is being synced elsewhere; skipped")
                continue
            try:
                await self.batches.complete_sync(batch.id, str(match.id))
                result.updated += 1
            except LedgerError as e:
                await self.batches.fail_sync(batch.id, e.message)
                result.errors.append(f"Linking batch {batch.batch_number} failed: {e.message}")

        await record_pull(
            self.audit, ctx, SyncType.BATCHES, "batch",
            0, result.updated, result.errors, fetched=len(external),
        )

        if push_pending and self.push is not None:
            for batch in pending:
                if batch.plant_count <= 0:
                    continue
                pushed = await self.push.execute(ctx, batch.id)
                if not pushed.success:
                    result.errors.extend(f"Batch {batch.batch_number}: {e}" for e in pushed.errors)
                elif pushed.action == SyncAction.CREATED:
                    result.created += 1
                else:
                    # Another caller created it first; we only linked
                    result.updated += 1
                result.warnings.extend(pushed.warnings)

        logger.info(
            f"Plant batch sync complete: {result.updated} linked, {result.created} pushed, "
            f"{len(result.errors)} errors"
        )
        return result.finish()


__all__ = ["PushBatchUseCase", "SyncPlantBatchesUseCase"]
