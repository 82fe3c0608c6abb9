"""Audit trail writer.

Every sync attempt ends in exactly one call to ``AuditTrail.record``. The
underlying repository only appends; nothing here can edit or remove an
entry once written.
"""

import logging
from typing import Any, Iterable, Optional

from ...api.exceptions import LedgerError, classify_error
from ..domain.entities import (
    SyncAction,
    SyncContext,
    SyncDirection,
    SyncLogEntry,
    SyncLogStatus,
    SyncType,
)
from ..domain.ports import ISyncLogRepository

logger = logging.getLogger(__name__)


class AuditTrail:
    """Builds SyncLogEntry rows and appends them to the sync log."""

    def __init__(self, repo: ISyncLogRepository):
        self.repo = repo

    async def record(
        self,
        ctx: SyncContext,
        sync_type: SyncType,
        action: SyncAction,
        entity_type: str,
        entity_ids: Iterable[Any] = (),
        direction: SyncDirection = SyncDirection.INTERNAL_TO_EXTERNAL,
        error: Optional[BaseException] = None,
        **extra: Any,
    ) -> SyncLogEntry:
        """Append one audit row.

        The row is ``failed`` whenever an error is given or the action is
        FAILED; the classified error kind and message are stored with it.
        """
        failed = error is not None or action == SyncAction.FAILED
        detail: dict[str, Any] = {
            "action": action.value,
            "entity_type": entity_type,
            "entity_ids": [str(i) for i in entity_ids],
        }
        if error is not None:
            detail["error_kind"] = classify_error(error).value
            if isinstance(error, LedgerError) and error.details:
                detail["error_details"] = {k: str(v) for k, v in error.details.items()}
        detail.update(extra)

        entry = SyncLogEntry(
            organization_id=ctx.organization_id,
            site_id=ctx.site_id,
            sync_type=sync_type,
            direction=direction,
            status=SyncLogStatus.FAILED if failed else SyncLogStatus.SUCCESS,
            detail=detail,
            error_message=_error_message(error) if error is not None else None,
            performed_by=ctx.actor_id,
        )
        saved = await self.repo.append(entry)

        if failed:
            logger.warning(
                f"{sync_type.value} {entity_type} {action.value} failed "
                f"for site {ctx.site_id}: {entry.error_message}"
            )
        else:
            logger.info(f"{sync_type.value} {entity_type} {action.value} for site {ctx.site_id}")
        return saved


def _error_message(error: BaseException) -> str:
    if isinstance(error, LedgerError):
        return error.message
    return f"{type(error).__name__}: {error}"
