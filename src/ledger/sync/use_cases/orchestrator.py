"""Sync orchestrator: the engine's entry point.

Selects an operation by sync type, resolves the site's ledger credentials,
opens one ledger session scoped to those credentials, runs the operation
and returns a structured result. ``run_sync`` never raises; anything that
escapes an operation is logged and recorded as a failed audit row.

Entity operations (push a batch, package, destroy waste, ...) are exposed
here too so every caller goes through the same credential and session
handling.

Example:
    orchestrator = SyncOrchestrator(repos, MetrcLedgerConnector(settings), settings)
    result = await orchestrator.run_sync(SyncType.STRAINS, site_id, org_id)
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import UUID

from ...api.exceptions import AuthError, ConfigurationError, LedgerError, classify_error
from ...config import SyncSettings
from ..domain.entities import (
    GrowthPhase,
    LabTestStatus,
    OperationResult,
    SyncAction,
    SyncContext,
    SyncDirection,
    SyncResult,
    SyncType,
    utcnow,
)
from ..domain.ports import ILedgerConnector, LedgerAPI, SyncRepositories, TimeWindow
from ..services.audit import AuditTrail
from ..services.create_or_link import CreateOrLinkResolver
from ..services.location_resolver import LocationResolver
from .growth_phase import ChangeGrowthPhaseUseCase
from .harvests import PushHarvestUseCase, SyncHarvestsUseCase
from .lab_tests import (
    CreateLabTestUseCase,
    LinkPackageToTestUseCase,
    RecordLabResultsUseCase,
    UpdateLabTestStatusUseCase,
)
from .packaging import PackagingUseCase
from .push_batch import PushBatchUseCase, SyncPlantBatchesUseCase
from .sync_catalog import SyncItemsUseCase, SyncTagsUseCase
from .sync_locations import PushRoomLocationUseCase, SyncLocationsUseCase
from .sync_packages import SyncPackagesUseCase
from .sync_strains import PushCultivarUseCase, SyncStrainsUseCase
from .sync_transfers import SyncTransfersUseCase
from .waste import DestroyWasteUseCase, ReconcilePendingWasteUseCase

logger = logging.getLogger(__name__)


@dataclass
class SyncOptions:
    """Per-run options for ``run_sync``."""

    last_modified_start: Optional[datetime] = None
    last_modified_end: Optional[datetime] = None
    push_pending: bool = False
    import_unmatched: bool = False


def default_sync_window(days: int, now: Optional[datetime] = None) -> TimeWindow:
    end = now or utcnow()
    return TimeWindow(start=end - timedelta(days=days), end=end)


class SyncOrchestrator:
    def __init__(
        self,
        repos: SyncRepositories,
        connector: ILedgerConnector,
        settings: Optional[SyncSettings] = None,
    ):
        self.repos = repos
        self.connector = connector
        self.settings = settings or SyncSettings()
        self.audit = AuditTrail(repos.sync_logs)
        self.resolver = CreateOrLinkResolver(
            self.audit,
            wait_timeout=self.settings.lock_wait_seconds,
            poll_interval=self.settings.lock_poll_seconds,
        )
        self.locations = LocationResolver(repos.batches, repos.locations)

    # ============================================
    # Sessions
    # ============================================

    @asynccontextmanager
    async def _session(self, site_id: UUID) -> AsyncIterator[LedgerAPI]:
        credentials = await self.repos.credentials.get_site_credentials(site_id)
        if credentials is None:
            raise ConfigurationError(
                f"No ledger credentials configured for site {site_id}",
                missing_keys=["vendor_key", "user_key", "license_number"],
            )
        if not credentials.sync_enabled:
            raise ConfigurationError(f"Ledger sync is disabled for site {site_id}")

        async def on_auth_failure(error: AuthError) -> None:
            reason = f"Ledger rejected credentials: {error.message}"
            logger.critical(f"Disabling ledger sync for site {site_id}: {reason}")
            await self.repos.credentials.disable_sync(site_id, reason)

        async with self.connector.session(credentials, on_auth_failure) as api:
            yield api

    def _window(self, options: SyncOptions) -> TimeWindow:
        if options.last_modified_start is None and options.last_modified_end is None:
            return default_sync_window(self.settings.sync_window_days)
        end = options.last_modified_end or utcnow()
        start = options.last_modified_start or end - timedelta(days=self.settings.sync_window_days)
        return TimeWindow(start=start, end=end)

    # ============================================
    # Runs
    # ============================================

    async def run_sync(
        self,
        sync_type: SyncType,
        site_id: UUID,
        organization_id: UUID,
        actor_id: Optional[UUID] = None,
        options: Optional[SyncOptions] = None,
    ) -> SyncResult:
        """Run one sync type for one site. Never raises."""
        ctx = SyncContext(organization_id, site_id, actor_id)
        options = options or SyncOptions()
        started = utcnow()
        logger.info(f"Starting {sync_type.value} sync for site {site_id}")

        try:
            async with self._session(site_id) as api:
                result = await self._dispatch(sync_type, ctx, api, options)
        except Exception as e:
            logger.error(f"{sync_type.value} sync failed for site {site_id}: {e}", exc_info=not isinstance(e, LedgerError))
            result = SyncResult(success=False, sync_type=sync_type, started_at=started)
            result.errors.append(e.message if isinstance(e, LedgerError) else f"Internal error: {e}")
            await self._record_run_failure(ctx, result.sync_type, e)
            return result.finish()

        result.started_at = started
        logger.info(
            f"{sync_type.value} sync for site {site_id} finished: "
            f"success={result.success}, created={result.created}, updated={result.updated}, "
            f"errors={len(result.errors)}"
        )
        return result

    async def run_multiple(
        self,
        sync_types: list[SyncType],
        site_id: UUID,
        organization_id: UUID,
        actor_id: Optional[UUID] = None,
        options: Optional[SyncOptions] = None,
    ) -> dict[SyncType, SyncResult]:
        """Run several sync types in order; a failure does not stop the rest."""
        results = {}
        for sync_type in sync_types:
            results[sync_type] = await self.run_sync(sync_type, site_id, organization_id, actor_id, options)
        return results

    async def _dispatch(self, sync_type: SyncType, ctx: SyncContext, api: LedgerAPI, options: SyncOptions) -> SyncResult:
        repos = self.repos
        window = self._window(options)

        if sync_type == SyncType.STRAINS:
            return await SyncStrainsUseCase(api.strains, repos.strain_cache, repos.cultivars, self.audit).execute(
                ctx, import_unmatched=options.import_unmatched
            )
        if sync_type == SyncType.BATCHES:
            push = PushBatchUseCase(
                repos.batches, repos.cultivars, api.plant_batches, self.locations, self.resolver, self.audit
            )
            return await SyncPlantBatchesUseCase(api.plant_batches, repos.batches, self.audit, push).execute(
                ctx, window, push_pending=options.push_pending
            )
        if sync_type == SyncType.HARVESTS:
            return await SyncHarvestsUseCase(api.harvests, repos.harvests, self.audit).execute(ctx, window)
        if sync_type == SyncType.PACKAGES:
            return await SyncPackagesUseCase(api.packages, repos.packages, self.audit).execute(ctx, window)
        if sync_type == SyncType.LABTESTS:
            return await RecordLabResultsUseCase(api.lab_tests, repos.lab_tests, self.audit).execute(ctx)
        if sync_type == SyncType.WASTE:
            return await self._reconcile(ctx, api)
        if sync_type == SyncType.TRANSFERS:
            return await SyncTransfersUseCase(api.transfers, repos.transfers, self.audit).execute(ctx, window)
        if sync_type == SyncType.LOCATIONS:
            return await SyncLocationsUseCase(api.locations, repos.locations, self.audit).execute(ctx)
        if sync_type == SyncType.ITEMS:
            return await SyncItemsUseCase(api.items, repos.items, self.audit).execute(ctx)
        if sync_type == SyncType.TAGS:
            return await SyncTagsUseCase(api.tags, repos.tags, self.audit).execute(ctx)
        raise ConfigurationError(f"Unsupported sync type: {sync_type}")

    async def _reconcile(self, ctx: SyncContext, api: LedgerAPI) -> SyncResult:
        return await ReconcilePendingWasteUseCase(
            self.repos.waste, api.waste, self.audit,
            max_attempts=self.settings.waste_reconcile_max_attempts,
            stale_after_seconds=self.settings.stale_after_seconds,
        ).execute(ctx)

    async def _record_run_failure(self, ctx: SyncContext, sync_type: SyncType, error: BaseException) -> None:
        try:
            await self.audit.record(
                ctx, sync_type, SyncAction.FAILED, "sync_run",
                direction=SyncDirection.EXTERNAL_TO_INTERNAL, error=error,
            )
        except Exception as audit_error:
            logger.error(f"Could not write audit entry for failed {sync_type.value} sync: {audit_error}")

    # ============================================
    # Entity Operations
    # ============================================

    async def _entity_op(
        self,
        ctx: SyncContext,
        sync_type: SyncType,
        operation: Callable[[LedgerAPI], Awaitable[OperationResult]],
    ) -> OperationResult:
        """Open a session and run one entity operation, converting failures to a result."""
        try:
            async with self._session(ctx.site_id) as api:
                return await operation(api)
        except Exception as e:
            logger.error(f"{sync_type.value} operation failed for site {ctx.site_id}: {e}",
                         exc_info=not isinstance(e, LedgerError))
            await self._record_run_failure(ctx, sync_type, e)
            return OperationResult(
                success=False,
                errors=[e.message if isinstance(e, LedgerError) else f"Internal error: {e}"],
                error_kind=classify_error(e).value,
            )

    async def push_cultivar(self, ctx: SyncContext, cultivar_id: UUID) -> OperationResult:
        return await self._entity_op(ctx, SyncType.STRAINS, lambda api: PushCultivarUseCase(
            self.repos.cultivars, api.strains, self.resolver, self.audit,
        ).execute(ctx, cultivar_id))

    async def push_batch(
        self, ctx: SyncContext, batch_id: UUID, location_override: Optional[str] = None
    ) -> OperationResult:
        return await self._entity_op(ctx, SyncType.BATCHES, lambda api: PushBatchUseCase(
            self.repos.batches, self.repos.cultivars, api.plant_batches, self.locations, self.resolver, self.audit,
        ).execute(ctx, batch_id, location_override))

    async def change_growth_phase(
        self,
        ctx: SyncContext,
        batch_id: UUID,
        target: GrowthPhase,
        plant_count: int = 0,
        starting_tag: Optional[str] = None,
        location_override: Optional[str] = None,
        phase_date: Optional[date] = None,
    ) -> OperationResult:
        return await self._entity_op(ctx, SyncType.BATCHES, lambda api: ChangeGrowthPhaseUseCase(
            self.repos.batches, api.plant_batches, self.locations, self.audit,
        ).execute(ctx, batch_id, target, plant_count, starting_tag, location_override, phase_date))

    async def push_harvest(
        self,
        ctx: SyncContext,
        harvest_id: UUID,
        drying_location: Optional[str] = None,
        waste_weight: float = 0,
    ) -> OperationResult:
        return await self._entity_op(ctx, SyncType.HARVESTS, lambda api: PushHarvestUseCase(
            self.repos.harvests, self.repos.batches, api.harvests, self.locations, self.resolver, self.audit,
        ).execute(ctx, harvest_id, drying_location, waste_weight))

    def _packaging(self, api: LedgerAPI) -> PackagingUseCase:
        return PackagingUseCase(
            self.repos.batches, self.repos.harvests, self.repos.packages,
            api.plant_batches, api.harvests, self.locations, self.audit,
            self.repos.items, self.repos.tags,
        )

    async def create_package_from_batch(self, ctx: SyncContext, batch_id: UUID, tag: str, count: int,
                                        item_name: str, **kwargs) -> OperationResult:
        return await self._entity_op(ctx, SyncType.PACKAGES, lambda api: self._packaging(api).from_batch(
            ctx, batch_id, tag, count, item_name, **kwargs
        ))

    async def create_package_from_mother(self, ctx: SyncContext, batch_id: UUID, tag: str, count: int,
                                         item_name: str, **kwargs) -> OperationResult:
        return await self._entity_op(ctx, SyncType.PACKAGES, lambda api: self._packaging(api).from_mother(
            ctx, batch_id, tag, count, item_name, **kwargs
        ))

    async def create_package_from_harvest(self, ctx: SyncContext, harvest_id: UUID, tag: str, weight: float,
                                          item_name: str, **kwargs) -> OperationResult:
        return await self._entity_op(ctx, SyncType.PACKAGES, lambda api: self._packaging(api).from_harvest(
            ctx, harvest_id, tag, weight, item_name, **kwargs
        ))

    def _waste(self, api: LedgerAPI) -> DestroyWasteUseCase:
        return DestroyWasteUseCase(
            self.repos.waste, self.repos.batches, self.repos.packages, api.waste, self.audit,
        )

    async def destroy_plant_batch_waste(self, ctx: SyncContext, batch_id: UUID, **kwargs) -> OperationResult:
        return await self._entity_op(ctx, SyncType.WASTE, lambda api: self._waste(api).destroy_plant_batch(
            ctx, batch_id, **kwargs
        ))

    async def destroy_package_waste(self, ctx: SyncContext, package_id: UUID, **kwargs) -> OperationResult:
        return await self._entity_op(ctx, SyncType.WASTE, lambda api: self._waste(api).destroy_package(
            ctx, package_id, **kwargs
        ))

    async def sync_room_location(
        self, ctx: SyncContext, room_id: UUID, location_type_name: Optional[str] = None
    ) -> OperationResult:
        return await self._entity_op(ctx, SyncType.LOCATIONS, lambda api: PushRoomLocationUseCase(
            self.repos.locations, api.locations, self.resolver, self.audit,
        ).execute(ctx, room_id, location_type_name))

    async def reconcile_waste(self, ctx: SyncContext) -> SyncResult:
        return await self.run_sync(SyncType.WASTE, ctx.site_id, ctx.organization_id, ctx.actor_id)

    # Lab tests are created and linked locally; no ledger session is needed

    async def create_lab_test(self, ctx: SyncContext, lab_name: str, test_date: date, coa_url: str,
                              results: Optional[dict] = None, **kwargs) -> OperationResult:
        return await CreateLabTestUseCase(self.repos.lab_tests, self.audit).execute(
            ctx, lab_name, test_date, coa_url, results, **kwargs
        )

    async def link_package_to_test(self, ctx: SyncContext, lab_test_id: UUID, package_ids: list[UUID]) -> OperationResult:
        return await LinkPackageToTestUseCase(self.repos.lab_tests, self.repos.packages, self.audit).execute(
            ctx, lab_test_id, package_ids
        )

    async def update_lab_test_status(self, ctx: SyncContext, lab_test_id: UUID, status: LabTestStatus) -> OperationResult:
        return await UpdateLabTestStatusUseCase(self.repos.lab_tests, self.repos.packages).execute(
            ctx, lab_test_id, status
        )


__all__ = ["SyncOrchestrator", "SyncOptions", "default_sync_window"]
