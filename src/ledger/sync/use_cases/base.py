"""Helpers shared by the entity operations."""

from typing import Any, Iterable, Optional

from ...api.exceptions import LedgerError, classify_error
from ..domain.entities import (
    OperationResult,
    SyncAction,
    SyncContext,
    SyncDirection,
    SyncType,
)
from ..services.audit import AuditTrail
from ..services.create_or_link import LinkOutcome


async def reject(
    audit: AuditTrail,
    ctx: SyncContext,
    sync_type: SyncType,
    entity_type: str,
    entity_ids: Iterable[Any],
    error: LedgerError,
    warnings: Optional[list[str]] = None,
    **extra: Any,
) -> OperationResult:
    """Write the failed audit row for ``error`` and build the caller's result."""
    entry = await audit.record(ctx, sync_type, SyncAction.FAILED, entity_type, entity_ids, error=error, **extra)
    return OperationResult(
        success=False,
        errors=[error.message],
        warnings=list(warnings or []),
        error_kind=classify_error(error).value,
        sync_log_id=entry.id,
    )


def from_link_outcome(outcome: LinkOutcome, entity_id: Any, warnings: Optional[list[str]] = None) -> OperationResult:
    result = OperationResult(
        success=outcome.success,
        warnings=list(warnings or []),
        external_id=outcome.external_id,
        sync_log_id=outcome.audit_entry.id if outcome.audit_entry else None,
        action=outcome.action,
    )
    if outcome.success:
        result.created_ids.append(str(entity_id))
        if outcome.waited:
            result.warnings.append("Another sync of this record finished first; its result was reused")
    elif outcome.error is not None:
        result.errors.append(outcome.error.message)
        result.error_kind = classify_error(outcome.error).value
    return result


async def record_pull(
    audit: AuditTrail,
    ctx: SyncContext,
    sync_type: SyncType,
    entity_type: str,
    created: int,
    updated: int,
    errors: list[str],
    error: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """One summary row for a ledger-to-local pull."""
    action = SyncAction.FAILED if error is not None or errors else SyncAction.UPDATED
    await audit.record(
        ctx,
        sync_type,
        action,
        entity_type,
        direction=SyncDirection.EXTERNAL_TO_INTERNAL,
        error=error,
        created=created,
        updated=updated,
        error_count=len(errors),
        **extra,
    )
