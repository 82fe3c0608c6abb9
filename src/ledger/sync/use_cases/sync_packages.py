"""Package pull: link local packages to ledger packages by tag.

Quantities are only compared, never copied; a pull must not raise a local
package quantity.
"""

import logging
from typing import Optional

from ...api.exceptions import LedgerError
from ..domain.entities import SyncContext, SyncResult, SyncType
from ..domain.ports import IPackageRepository, IPackagesAPI, TimeWindow
from ..services.audit import AuditTrail
from .base import record_pull

logger = logging.getLogger(__name__)

QUANTITY_TOLERANCE = 0.001


class SyncPackagesUseCase:
    def __init__(self, packages_api: IPackagesAPI, package_repo: IPackageRepository, audit: AuditTrail):
        self.api = packages_api
        self.packages = package_repo
        self.audit = audit

    async def execute(self, ctx: SyncContext, window: Optional[TimeWindow] = None) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.PACKAGES)

        try:
            external = await self.api.list_active(window)
        except LedgerError as e:
            logger.error(f"Failed to fetch packages from ledger: {e}")
            result.errors.append(f"Package fetch failed: {e.message}")
            await record_pull(self.audit, ctx, SyncType.PACKAGES, "package", 0, 0, result.errors, error=e)
            return result.finish()

        unknown = 0
        for remote in external:
            local = await self.packages.find_by_tag(remote.label)
            if local is None or local.site_id != ctx.site_id:
                unknown += 1
                continue

            if abs(local.quantity - remote.quantity) > QUANTITY_TOLERANCE:
                result.warnings.append(
                    f"Package {remote.label} quantity is {local.quantity} {local.unit_of_measure} locally "
                    f"but {remote.quantity} {remote.unit_of_measure_name or ''} in the ledger".rstrip()
                )

            if local.external_package_id == str(remote.id):
                continue
            try:
                await self.packages.link_external(local.id, str(remote.id))
                result.updated += 1
            except LedgerError as e:
                result.errors.append(f"Linking package {remote.label} failed: {e.message}")

        if unknown:
            logger.info(f"{unknown} ledger packages have no local record")

        await record_pull(
            self.audit, ctx, SyncType.PACKAGES, "package",
            0, result.updated, result.errors, fetched=len(external), unknown=unknown,
        )
        return result.finish()


__all__ = ["SyncPackagesUseCase"]
