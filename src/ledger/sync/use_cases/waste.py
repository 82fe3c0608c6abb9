"""Waste destruction use cases.

The sequence is validate -> record locally -> report to the ledger. The
local record and its inventory decrement are one write. Once that write
has happened the material is gone, so a failed ledger call never rolls it
back: the waste log stays ``pending_external_sync`` and the reconciliation
pass retries it until it is synced or escalated to manual review.

Only one caller may send a given log to the ledger. New logs are stored
``submitting``, owned by the request that created them; reconciliation
claims a pending log with a guarded update before submitting it. A log
left ``submitting`` by a crashed submitter has an unknown ledger outcome
and goes to manual review instead of being retried.
"""

import logging
from datetime import date
from typing import Optional, Union
from uuid import UUID, uuid4

from ...api.exceptions import AuthError, InvariantViolation, LedgerError, ValidationError
from ...api.schemas import PackageAdjustment, PlantBatchDestroy, WasteTransaction
from ..domain.entities import (
    OperationResult,
    PackageStatus,
    SyncAction,
    SyncContext,
    SyncLogEntry,
    SyncResult,
    SyncType,
    WasteLog,
    WasteSourceType,
    WasteSyncStatus,
    generate_waste_number,
)
from ..domain.ports import IBatchRepository, IPackageRepository, IWasteAPI, IWasteRepository
from ..services.audit import AuditTrail
from ..services.validation import validate_waste
from .base import reject

logger = logging.getLogger(__name__)

PENDING_WARNING = "pending_external_sync"

# Weight fractions below this are treated as rounding noise
WEIGHT_EPSILON = 1e-9


def build_destroy_payload(log: WasteLog) -> Union[PlantBatchDestroy, PackageAdjustment]:
    """Ledger payload for a recorded destruction."""
    note = f"{log.waste_number}: {log.reason}"
    if log.notes:
        note = f"{note}. {log.notes}"

    if log.source_type == WasteSourceType.PLANT_BATCH:
        return PlantBatchDestroy(
            plant_batch=log.source_label,
            count=log.plants_destroyed,
            waste_method_name=log.rendering_method,
            waste_material_mixed="Inert material" if log.inert_material_weight else None,
            waste_reason_name=log.reason,
            reason_note=note,
            waste_weight=log.weight,
            waste_unit_of_measure_name=log.unit,
            actual_date=log.destruction_date,
        )
    return PackageAdjustment(
        label=log.source_label,
        quantity=-log.weight,
        unit_of_measure=log.unit,
        adjustment_date=log.destruction_date,
        reason_note=f"{note} ({log.rendering_method})",
    )


async def submit_destruction(api: IWasteAPI, log: WasteLog) -> WasteTransaction:
    payload = build_destroy_payload(log)
    if isinstance(payload, PlantBatchDestroy):
        return await api.destroy_plant_batch(payload, log.waste_number)
    return await api.destroy_package(payload, log.waste_number)


async def confirm_submission(
    waste_repo: IWasteRepository,
    audit: AuditTrail,
    ctx: SyncContext,
    log: WasteLog,
    txn: WasteTransaction,
    **extra,
) -> tuple[Optional[LedgerError], SyncLogEntry]:
    """Attach the ledger transaction to ``log`` and write its audit row.

    Returns the error when the local update failed; the ledger already
    holds the destruction, so the caller reports it instead of retrying.
    """
    try:
        await waste_repo.mark_synced(log.id, txn.transaction_id)
    except LedgerError as e:
        logger.error(
            f"Ledger accepted destruction {log.waste_number} as {txn.transaction_id} "
            f"but the local update failed: {e}"
        )
        entry = await audit.record(
            ctx, SyncType.WASTE, SyncAction.FAILED, "waste", [log.id, log.source_id],
            error=e, waste_number=log.waste_number, external_id=txn.transaction_id,
            external_created=True, **extra,
        )
        return e, entry

    entry = await audit.record(
        ctx, SyncType.WASTE, SyncAction.DESTROYED, "waste", [log.id, log.source_id],
        waste_number=log.waste_number, external_id=txn.transaction_id, **extra,
    )
    return None, entry


class DestroyWasteUseCase:
    """Record a destruction locally and report it to the ledger."""

    def __init__(
        self,
        waste_repo: IWasteRepository,
        batch_repo: IBatchRepository,
        package_repo: IPackageRepository,
        waste_api: IWasteAPI,
        audit: AuditTrail,
    ):
        self.waste = waste_repo
        self.batches = batch_repo
        self.packages = package_repo
        self.api = waste_api
        self.audit = audit

    async def destroy_plant_batch(
        self,
        ctx: SyncContext,
        batch_id: UUID,
        plants_destroyed: int,
        weight: float,
        unit: str,
        reason: str,
        rendering_method: str,
        destruction_date: date,
        witness: Optional[str] = None,
        evidence: Optional[list[str]] = None,
        inert_material_weight: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> OperationResult:
        batch = await self.batches.get(batch_id)
        if batch is None:
            return await reject(
                self.audit, ctx, SyncType.WASTE, "waste", [batch_id],
                ValidationError(f"Batch {batch_id} not found"),
            )

        check = validate_waste(
            WasteSourceType.PLANT_BATCH, weight, unit, reason, rendering_method, destruction_date,
            witness, plants_destroyed, inert_material_weight, evidence,
        )
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.WASTE, "waste", [batch.id],
                ValidationError("; ".join(check.errors)), check.warnings,
            )

        if plants_destroyed > batch.available_count:
            return await reject(
                self.audit, ctx, SyncType.WASTE, "waste", [batch.id],
                InvariantViolation(
                    f"Cannot destroy {plants_destroyed} plants; batch {batch.batch_number} has "
                    f"{batch.available_count} unallocated",
                    details={"requested": plants_destroyed, "available": batch.available_count},
                ),
                check.warnings,
            )

        log = self._new_log(
            ctx, WasteSourceType.PLANT_BATCH, batch.id, batch.batch_number, weight, unit, reason,
            rendering_method, destruction_date, witness, evidence, inert_material_weight, notes,
            plants_destroyed=plants_destroyed,
        )
        if not batch.is_linked:
            log.sync_status = WasteSyncStatus.LOCAL_ONLY
        return await self._record_and_submit(ctx, log, check.warnings)

    async def destroy_package(
        self,
        ctx: SyncContext,
        package_id: UUID,
        weight: float,
        unit: str,
        reason: str,
        rendering_method: str,
        destruction_date: date,
        witness: Optional[str] = None,
        evidence: Optional[list[str]] = None,
        inert_material_weight: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> OperationResult:
        package = await self.packages.get(package_id)
        if package is None:
            return await reject(
                self.audit, ctx, SyncType.WASTE, "waste", [package_id],
                ValidationError(f"Package {package_id} not found"),
            )

        check = validate_waste(
            WasteSourceType.PACKAGE, weight, unit, reason, rendering_method, destruction_date,
            witness, 0, inert_material_weight, evidence,
        )
        if package.status == PackageStatus.DESTROYED:
            check.error(f"Package {package.tag} is already destroyed")
        elif unit and unit != package.unit_of_measure:
            check.error(f"Package {package.tag} is measured in {package.unit_of_measure}, not {unit}")
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.WASTE, "waste", [package.id],
                ValidationError("; ".join(check.errors)), check.warnings,
            )

        if weight > package.quantity + WEIGHT_EPSILON:
            return await reject(
                self.audit, ctx, SyncType.WASTE, "waste", [package.id],
                InvariantViolation(
                    f"Cannot destroy {weight} {unit}; package {package.tag} has {package.quantity} remaining",
                    details={"requested": weight, "remaining": package.quantity},
                ),
                check.warnings,
            )

        log = self._new_log(
            ctx, WasteSourceType.PACKAGE, package.id, package.tag, weight, unit, reason,
            rendering_method, destruction_date, witness, evidence, inert_material_weight, notes,
        )
        return await self._record_and_submit(ctx, log, check.warnings)

    def _new_log(
        self,
        ctx: SyncContext,
        source_type: WasteSourceType,
        source_id: UUID,
        source_label: str,
        weight: float,
        unit: str,
        reason: str,
        rendering_method: str,
        destruction_date: date,
        witness: Optional[str],
        evidence: Optional[list[str]],
        inert_material_weight: Optional[float],
        notes: Optional[str],
        plants_destroyed: int = 0,
    ) -> WasteLog:
        return WasteLog(
            id=uuid4(),
            organization_id=ctx.organization_id,
            site_id=ctx.site_id,
            waste_number=generate_waste_number(destruction_date),
            source_type=source_type,
            source_id=source_id,
            source_label=source_label,
            weight=weight,
            unit=unit,
            reason=reason.strip(),
            rendering_method=rendering_method,
            destruction_date=destruction_date,
            plants_destroyed=plants_destroyed,
            witness=witness,
            inert_material_weight=inert_material_weight,
            evidence=list(evidence or []),
            notes=notes,
            created_by=ctx.actor_id,
        )

    async def _record_and_submit(self, ctx: SyncContext, log: WasteLog, warnings: list[str]) -> OperationResult:
        try:
            log = await self.waste.record_destruction(log)
        except LedgerError as e:
            return await reject(self.audit, ctx, SyncType.WASTE, "waste", [log.source_id], e, warnings)

        entity_ids = [log.id, log.source_id]
        created = [str(log.id)]

        if log.sync_status == WasteSyncStatus.LOCAL_ONLY:
            entry = await self.audit.record(
                ctx, SyncType.WASTE, SyncAction.DESTROYED, "waste", entity_ids,
                waste_number=log.waste_number, local_only=True,
            )
            warnings.append(
                f"{log.source_label} is not linked to the ledger; destruction {log.waste_number} was recorded locally only"
            )
            return OperationResult(success=True, warnings=warnings, created_ids=created, sync_log_id=entry.id)

        try:
            txn = await submit_destruction(self.api, log)
        except LedgerError as e:
            await self.waste.mark_attempt_failed(log.id, e.message)
            entry = await self.audit.record(
                ctx, SyncType.WASTE, SyncAction.FAILED, "waste", entity_ids,
                error=e, waste_number=log.waste_number, sync_status=WasteSyncStatus.PENDING_EXTERNAL_SYNC.value,
            )
            logger.warning(f"Waste {log.waste_number} recorded locally; ledger submission failed: {e}")
            warnings.append(
                f"{PENDING_WARNING}: destruction {log.waste_number} was recorded locally and will be "
                f"retried against the ledger"
            )
            return OperationResult(
                success=False,
                errors=[f"Ledger destruction failed: {e.message}"],
                warnings=warnings,
                created_ids=created,
                error_kind=e.kind.value,
                sync_log_id=entry.id,
            )

        error, entry = await confirm_submission(self.waste, self.audit, ctx, log, txn)
        if error is not None:
            return OperationResult(
                success=False,
                errors=[
                    f"Ledger recorded destruction {log.waste_number} as {txn.transaction_id} "
                    f"but the local update failed: {error.message}"
                ],
                warnings=warnings,
                created_ids=created,
                error_kind=error.kind.value,
                external_id=txn.transaction_id,
                sync_log_id=entry.id,
            )
        logger.info(f"Waste {log.waste_number} destroyed and reported as {txn.transaction_id}")
        return OperationResult(
            success=True,
            warnings=warnings,
            created_ids=created,
            external_id=txn.transaction_id,
            sync_log_id=entry.id,
        )


class ReconcilePendingWasteUseCase:
    """Retry ledger submission for waste logs left pending.

    Success attaches the ledger transaction id. Each failure bumps the
    attempt counter; at ``max_attempts`` the row moves to manual review.
    """

    def __init__(
        self,
        waste_repo: IWasteRepository,
        waste_api: IWasteAPI,
        audit: AuditTrail,
        max_attempts: int = 5,
        stale_after_seconds: float = 600.0,
    ):
        self.waste = waste_repo
        self.api = waste_api
        self.audit = audit
        self.max_attempts = max_attempts
        self.stale_after_seconds = stale_after_seconds

    async def execute(self, ctx: SyncContext) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.WASTE)

        for log in await self.waste.escalate_stale_submissions(ctx.site_id, self.stale_after_seconds):
            logger.error(f"Waste {log.waste_number} submission was interrupted; moved to manual review")
            result.errors.append(f"{log.waste_number} needs manual review: {log.last_sync_error}")
            await self.audit.record(
                ctx, SyncType.WASTE, SyncAction.FAILED, "waste", [log.id, log.source_id],
                waste_number=log.waste_number, reconcile=True, escalated=True, interrupted=True,
            )

        pending = await self.waste.list_pending(ctx.site_id)
        if not pending:
            logger.info(f"No pending waste for site {ctx.site_id}")
            return result.finish()

        logger.info(f"Reconciling {len(pending)} pending waste logs for site {ctx.site_id}")
        for log in pending:
            if not await self.waste.claim_pending(log.id):
                logger.info(f"Waste {log.waste_number} was claimed by another submitter; skipped")
                continue

            entity_ids = [log.id, log.source_id]
            try:
                txn = await submit_destruction(self.api, log)
            except LedgerError as e:
                failed = await self.waste.mark_attempt_failed(log.id, e.message)
                escalate = failed.sync_attempts >= self.max_attempts
                if escalate:
                    await self.waste.escalate(log.id, e.message)
                    logger.error(
                        f"Waste {log.waste_number} failed {failed.sync_attempts} ledger submissions; "
                        f"moved to manual review"
                    )
                    result.errors.append(f"{log.waste_number} needs manual review: {e.message}")
                else:
                    result.warnings.append(
                        f"{log.waste_number} still pending after attempt {failed.sync_attempts}: {e.message}"
                    )
                await self.audit.record(
                    ctx, SyncType.WASTE, SyncAction.FAILED, "waste", entity_ids,
                    error=e, waste_number=log.waste_number, attempts=failed.sync_attempts,
                    reconcile=True, escalated=escalate,
                )
                if isinstance(e, AuthError):
                    break
                continue

            error, _ = await confirm_submission(self.waste, self.audit, ctx, log, txn, reconcile=True)
            if error is not None:
                result.errors.append(
                    f"{log.waste_number} was recorded in the ledger as {txn.transaction_id} "
                    f"but the local update failed: {error.message}"
                )
                continue
            result.updated += 1

        logger.info(f"Waste reconciliation: {result.updated} synced, {len(result.errors)} errors")
        return result.finish()


__all__ = [
    "DestroyWasteUseCase",
    "ReconcilePendingWasteUseCase",
    "build_destroy_payload",
    "submit_destruction",
    "confirm_submission",
    "PENDING_WARNING",
]
