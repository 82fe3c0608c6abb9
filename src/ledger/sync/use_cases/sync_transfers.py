"""Transfer manifest pull into the local manifest cache."""

import logging
from typing import Optional

from ...api.exceptions import LedgerError
from ...api.schemas import Transfer
from ..domain.entities import SyncContext, SyncResult, SyncType, TransferManifest
from ..domain.ports import ITransferRepository, ITransfersAPI, TimeWindow
from ..services.audit import AuditTrail
from .base import record_pull

logger = logging.getLogger(__name__)


def _manifest(ctx: SyncContext, transfer: Transfer, direction: str) -> TransferManifest:
    return TransferManifest(
        site_id=ctx.site_id,
        external_transfer_id=str(transfer.id),
        manifest_number=transfer.manifest_number,
        direction=direction,
        shipper_facility_name=transfer.shipper_facility_name,
        recipient_facility_name=transfer.recipient_facility_name,
        package_count=transfer.package_count,
        last_modified=transfer.last_modified,
    )


class SyncTransfersUseCase:
    def __init__(self, transfers_api: ITransfersAPI, transfer_repo: ITransferRepository, audit: AuditTrail):
        self.api = transfers_api
        self.transfers = transfer_repo
        self.audit = audit

    async def execute(self, ctx: SyncContext, window: Optional[TimeWindow] = None) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.TRANSFERS)

        try:
            incoming = await self.api.list_incoming(window)
            outgoing = await self.api.list_outgoing(window)
        except LedgerError as e:
            logger.error(f"Failed to fetch transfers from ledger: {e}")
            result.errors.append(f"Transfer fetch failed: {e.message}")
            await record_pull(self.audit, ctx, SyncType.TRANSFERS, "transfer", 0, 0, result.errors, error=e)
            return result.finish()

        manifests = [_manifest(ctx, t, "incoming") for t in incoming]
        manifests += [_manifest(ctx, t, "outgoing") for t in outgoing]
        result.updated = await self.transfers.upsert_manifests(manifests) if manifests else 0

        await record_pull(
            self.audit, ctx, SyncType.TRANSFERS, "transfer",
            0, result.updated, result.errors, incoming=len(incoming), outgoing=len(outgoing),
        )
        logger.info(f"Cached {result.updated} transfer manifests ({len(incoming)} in, {len(outgoing)} out)")
        return result.finish()


__all__ = ["SyncTransfersUseCase"]
