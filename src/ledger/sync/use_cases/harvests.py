"""Harvest use cases.

Push creates the ledger harvest for a local harvest by harvesting the
batch's tagged plants into it; the harvest name is the link key. Pull
links local harvests to ledger harvests by name.
"""

import logging
from typing import Optional
from uuid import UUID

from ...api.exceptions import LedgerError, ValidationError
from ...api.schemas import HarvestCreate
from ..domain.entities import (
    OperationResult,
    SyncAction,
    SyncContext,
    SyncResult,
    SyncType,
    canonical_name,
    utcnow,
)
from ..domain.ports import IBatchRepository, IHarvestRepository, IHarvestsAPI, TimeWindow
from ..services.audit import AuditTrail
from ..services.create_or_link import CreateOrLinkResolver, HarvestLinkTarget
from ..services.location_resolver import LocationResolver
from ..services.validation import validate_harvest_push
from .base import from_link_outcome, record_pull, reject

logger = logging.getLogger(__name__)

# Tolerance for wet weight comparisons, in the harvest's unit
WEIGHT_TOLERANCE = 0.01


class PushHarvestUseCase:
    """Create-or-link one local harvest as a ledger harvest."""

    def __init__(
        self,
        harvest_repo: IHarvestRepository,
        batch_repo: IBatchRepository,
        harvests_api: IHarvestsAPI,
        location_resolver: LocationResolver,
        resolver: CreateOrLinkResolver,
        audit: AuditTrail,
    ):
        self.harvests = harvest_repo
        self.batches = batch_repo
        self.api = harvests_api
        self.locations = location_resolver
        self.resolver = resolver
        self.audit = audit

    async def execute(
        self,
        ctx: SyncContext,
        harvest_id: UUID,
        drying_location: Optional[str] = None,
        waste_weight: float = 0,
    ) -> OperationResult:
        harvest = await self.harvests.get(harvest_id)
        if harvest is None:
            return await reject(
                self.audit, ctx, SyncType.HARVESTS, "harvest", [harvest_id],
                ValidationError(f"Harvest {harvest_id} not found"),
            )

        if harvest.is_linked:
            entry = await self.audit.record(
                ctx, SyncType.HARVESTS, SyncAction.LINKED, "harvest", [harvest.id],
                name=harvest.name, external_id=harvest.external_harvest_id, already_linked=True,
            )
            return OperationResult(
                success=True,
                created_ids=[str(harvest.id)],
                external_id=harvest.external_harvest_id,
                sync_log_id=entry.id,
                action=SyncAction.LINKED,
            )

        batch = await self.batches.get(harvest.batch_id) if harvest.batch_id else None
        labels: list[str] = []
        if batch is not None:
            labels = await self.batches.list_plant_tags(batch.id)
            location = await self.locations.resolve_for(batch, drying_location)
        else:
            location = await self.locations.resolve_for_site(harvest.site_id, drying_location)

        check = validate_harvest_push(harvest, batch, labels, location.location_name)
        if waste_weight < 0:
            check.error("Harvest waste weight cannot be negative")
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.HARVESTS, "harvest", [harvest.id],
                ValidationError("; ".join(check.errors)), check.warnings,
                name=harvest.name, location_source=location.source.value,
            )

        if harvest.plant_count:
            labels = labels[:harvest.plant_count]

        payload = HarvestCreate(
            harvest_name=harvest.name.strip(),
            plant_labels=labels,
            weight=harvest.wet_weight,
            unit_of_weight=harvest.unit_of_weight,
            drying_location=location.location_name,
            waste_weight=waste_weight,
            harvest_date=harvest.harvested_at or utcnow().date(),
        )
        outcome = await self.resolver.resolve(
            HarvestLinkTarget(self.harvests, self.api, harvest, payload),
            ctx,
            SyncType.HARVESTS,
        )
        if outcome.success:
            logger.info(f"Harvest {harvest.name} {outcome.action.value} as {outcome.external_id}")
        return from_link_outcome(outcome, harvest.id, check.warnings)


class SyncHarvestsUseCase:
    def __init__(self, harvests_api: IHarvestsAPI, harvest_repo: IHarvestRepository, audit: AuditTrail):
        self.api = harvests_api
        self.harvests = harvest_repo
        self.audit = audit

    async def execute(self, ctx: SyncContext, window: Optional[TimeWindow] = None) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.HARVESTS)

        try:
            external = list(await self.api.list_active(window))
            external += await self.api.list_inactive(window)
        except LedgerError as e:
            logger.error(f"Failed to fetch harvests from ledger: {e}")
            result.errors.append(f"Harvest fetch failed: {e.message}")
            await record_pull(self.audit, ctx, SyncType.HARVESTS, "harvest", 0, 0, result.errors, error=e)
            return result.finish()

        by_name = {canonical_name(h.name): h for h in external}

        for harvest in await self.harvests.list_for_site(ctx.site_id):
            match = by_name.get(canonical_name(harvest.name))
            if match is None:
                continue
            if harvest.external_harvest_id == str(match.id):
                continue
            if abs(match.total_wet_weight - harvest.wet_weight) > WEIGHT_TOLERANCE:
                result.warnings.append(
                    f"Harvest {harvest.name} wet weight is {harvest.wet_weight} locally but "
                    f"{match.total_wet_weight} in the ledger"
                )
            try:
                await self.harvests.link_external(harvest.id, str(match.id))
                result.updated += 1
            except LedgerError as e:
                result.errors.append(f"Linking harvest {harvest.name} failed: {e.message}")

        await record_pull(
            self.audit, ctx, SyncType.HARVESTS, "harvest",
            0, result.updated, result.errors, fetched=len(external),
        )
        logger.info(f"Harvest sync complete: {result.updated} linked of {len(external)} ledger harvests")
        return result.finish()


__all__ = ["PushHarvestUseCase", "SyncHarvestsUseCase"]
