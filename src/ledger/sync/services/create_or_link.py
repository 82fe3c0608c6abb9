"""Create-or-link resolution for records pushed to the ledger.

The ledger keys strains, plant batches, locations and harvests on name and
does not return ids from its create endpoints, so every push follows the
same steps:

1. Take the sync mutex (compare-and-swap on the stored sync status)
2. Look the record up by name; if found, link it and stop
3. Otherwise create it; on a conflict, look it up once more
4. After a create, look it up again to learn the generated id
5. Link, mark synced and write one audit row

A caller that loses the compare-and-swap never creates anything. It polls
the stored status until the winner finishes and reports the winner's
outcome, or gives up with SyncInProgressError after ``wait_timeout``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ...api.exceptions import (
    ConflictError,
    LedgerError,
    SyncError,
    SyncInProgressError,
)
from ...api.schemas import HarvestCreate, LocationCreate, PlantBatchCreate, StrainCreate
from ..domain.entities import (
    Batch,
    Cultivar,
    Harvest,
    Room,
    SyncAction,
    SyncContext,
    SyncLogEntry,
    SyncStatus,
    SyncType,
)
from ..domain.ports import (
    IBatchRepository,
    ICultivarRepository,
    IHarvestRepository,
    IHarvestsAPI,
    ILocationRepository,
    ILocationsAPI,
    IPlantBatchesAPI,
    IStrainsAPI,
)
from .audit import AuditTrail

logger = logging.getLogger(__name__)


# ============================================
# Targets
# ============================================

class LinkTarget(ABC):
    """One local record that should exist in the ledger exactly once."""

    entity_type: str

    @property
    @abstractmethod
    def entity_id(self) -> Any:
        ...

    @property
    @abstractmethod
    def lookup_name(self) -> str:
        ...

    @abstractmethod
    async def current_link(self) -> tuple[SyncStatus, Optional[str]]:
        """Re-read the stored sync status and external id."""
        ...

    @abstractmethod
    async def try_begin(self) -> bool:
        ...

    @abstractmethod
    async def find_external(self) -> Optional[str]:
        ...

    @abstractmethod
    async def create_external(self) -> None:
        ...

    @abstractmethod
    async def complete(self, external_id: str) -> None:
        ...

    @abstractmethod
    async def fail(self, error: str) -> None:
        ...


class CultivarLinkTarget(LinkTarget):
    entity_type = "cultivar"

    def __init__(self, repo: ICultivarRepository, api: IStrainsAPI, cultivar: Cultivar, payload: StrainCreate):
        self.repo = repo
        self.api = api
        self.cultivar = cultivar
        self.payload = payload

    @property
    def entity_id(self):
        return self.cultivar.id

    @property
    def lookup_name(self) -> str:
        return self.payload.name

    async def current_link(self):
        current = await self.repo.get(self.cultivar.id)
        if current is None:
            return SyncStatus.NOT_SYNCED, None
        return current.sync_status, current.external_strain_id

    async def try_begin(self) -> bool:
        return await self.repo.try_begin_sync(self.cultivar.id)

    async def find_external(self) -> Optional[str]:
        strain = await self.api.find_by_name(self.lookup_name)
        return str(strain.id) if strain else None

    async def create_external(self) -> None:
        await self.api.create(self.payload)

    async def complete(self, external_id: str) -> None:
        await self.repo.complete_sync(self.cultivar.id, external_id)

    async def fail(self, error: str) -> None:
        await self.repo.fail_sync(self.cultivar.id, error)


class BatchLinkTarget(LinkTarget):
    entity_type = "batch"

    def __init__(self, repo: IBatchRepository, api: IPlantBatchesAPI, batch: Batch, payload: PlantBatchCreate):
        self.repo = repo
        self.api = api
        self.batch = batch
        self.payload = payload

    @property
    def entity_id(self):
        return self.batch.id

    @property
    def lookup_name(self) -> str:
        return self.payload.name

    async def current_link(self):
        current = await self.repo.get(self.batch.id)
        if current is None:
            return SyncStatus.NOT_SYNCED, None
        return current.sync_status, current.external_batch_id

    async def try_begin(self) -> bool:
        return await self.repo.try_begin_sync(self.batch.id)

    async def find_external(self) -> Optional[str]:
        found = await self.api.find_by_name(self.lookup_name)
        return str(found.id) if found else None

    async def create_external(self) -> None:
        await self.api.create_plantings(self.payload)

    async def complete(self, external_id: str) -> None:
        await self.repo.complete_sync(self.batch.id, external_id)

    async def fail(self, error: str) -> None:
        await self.repo.fail_sync(self.batch.id, error)


class RoomLocationTarget(LinkTarget):
    entity_type = "room"

    def __init__(self, repo: ILocationRepository, api: ILocationsAPI, room: Room, payload: LocationCreate):
        self.repo = repo
        self.api = api
        self.room = room
        self.payload = payload

    @property
    def entity_id(self):
        return self.room.id

    @property
    def lookup_name(self) -> str:
        return self.payload.name

    async def current_link(self):
        current = await self.repo.get_room(self.room.id)
        if current is None:
            return SyncStatus.NOT_SYNCED, None
        return current.sync_status, current.external_location_id

    async def try_begin(self) -> bool:
        return await self.repo.try_begin_sync(self.room.id)

    async def find_external(self) -> Optional[str]:
        found = await self.api.find_by_name(self.lookup_name)
        return str(found.id) if found else None

    async def create_external(self) -> None:
        await self.api.create(self.payload)

    async def complete(self, external_id: str) -> None:
        await self.repo.complete_sync(self.room.id, external_id)

    async def fail(self, error: str) -> None:
        await self.repo.fail_sync(self.room.id, error)


class HarvestLinkTarget(LinkTarget):
    """Harvests are created by harvesting tagged plants, not on their own resource."""

    entity_type = "harvest"

    def __init__(self, repo: IHarvestRepository, api: IHarvestsAPI, harvest: Harvest, payload: HarvestCreate):
        self.repo = repo
        self.api = api
        self.harvest = harvest
        self.payload = payload

    @property
    def entity_id(self):
        return self.harvest.id

    @property
    def lookup_name(self) -> str:
        return self.payload.harvest_name

    async def current_link(self):
        current = await self.repo.get(self.harvest.id)
        if current is None:
            return SyncStatus.NOT_SYNCED, None
        return current.sync_status, current.external_harvest_id

    async def try_begin(self) -> bool:
        return await self.repo.try_begin_sync(self.harvest.id)

    async def find_external(self) -> Optional[str]:
        found = await self.api.find_by_name(self.lookup_name)
        return str(found.id) if found else None

    async def create_external(self) -> None:
        await self.api.create_from_plants(self.payload)

    async def complete(self, external_id: str) -> None:
        await self.repo.complete_sync(self.harvest.id, external_id)

    async def fail(self, error: str) -> None:
        await self.repo.fail_sync(self.harvest.id, error)


# ============================================
# Resolver
# ============================================

@dataclass
class LinkOutcome:
    """How a create-or-link attempt ended."""

    action: SyncAction
    external_id: Optional[str] = None
    error: Optional[LedgerError] = None
    waited: bool = False
    audit_entry: Optional[SyncLogEntry] = None

    @property
    def success(self) -> bool:
        return self.action != SyncAction.FAILED


class CreateOrLinkResolver:
    """Runs the create-or-link steps for any LinkTarget.

    Example:
        resolver = CreateOrLinkResolver(AuditTrail(sync_log_repo))
        outcome = await resolver.resolve(
            CultivarLinkTarget(cultivar_repo, api.strains, cultivar, payload),
            ctx,
            SyncType.STRAINS,
        )
    """

    def __init__(
        self,
        audit: AuditTrail,
        wait_timeout: float = 30.0,
        poll_interval: float = 0.5,
    ):
        self.audit = audit
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval

    async def resolve(self, target: LinkTarget, ctx: SyncContext, sync_type: SyncType) -> LinkOutcome:
        """Link ``target`` to its ledger record, creating it at most once.

        LedgerErrors end as a FAILED outcome with a failed audit row and the
        record left ``sync_failed``. Anything else is a bug: the record is
        marked failed and the exception propagates.
        """
        _, existing = await target.current_link()
        if existing:
            return await self._finish(target, ctx, sync_type, SyncAction.LINKED, existing, already_linked=True)

        if not await target.try_begin():
            return await self._await_winner(target, ctx, sync_type)

        try:
            external_id = await target.find_external()
            action = SyncAction.LINKED

            if external_id is None:
                external_id, action = await self._create(target)

            await target.complete(external_id)
        except LedgerError as e:
            await target.fail(e.message)
            entry = await self.audit.record(
                ctx, sync_type, SyncAction.FAILED, target.entity_type, [target.entity_id],
                error=e, name=target.lookup_name,
            )
            return LinkOutcome(SyncAction.FAILED, error=e, audit_entry=entry)
        except Exception as e:
            logger.error(f"Unexpected error linking {target.entity_type} {target.entity_id}: {e}")
            await target.fail(f"{type(e).__name__}: {e}")
            raise

        return await self._finish(target, ctx, sync_type, action, external_id)

    async def _create(self, target: LinkTarget) -> tuple[str, SyncAction]:
        try:
            await target.create_external()
        except ConflictError:
            # Someone else created it between our lookup and create
            logger.info(f"{target.entity_type} {target.lookup_name!r} already exists in ledger, re-querying")
            external_id = await target.find_external()
            if external_id is None:
                raise
            return external_id, SyncAction.LINKED

        external_id = await target.find_external()
        if external_id is None:
            raise SyncError(
                f"{target.entity_type} {target.lookup_name!r} was created in the ledger "
                f"but could not be found by name",
                details={"name": target.lookup_name},
            )
        return external_id, SyncAction.CREATED

    async def _await_winner(self, target: LinkTarget, ctx: SyncContext, sync_type: SyncType) -> LinkOutcome:
        loop = asyncio.get_running_loop()
        started = loop.time()
        logger.info(f"{target.entity_type} {target.entity_id} is already syncing, waiting for outcome")

        while True:
            status, external_id = await target.current_link()
            if external_id:
                return await self._finish(target, ctx, sync_type, SyncAction.LINKED, external_id, waited=True)
            if status != SyncStatus.SYNCING:
                error: LedgerError = SyncError(
                    f"Concurrent sync of {target.entity_type} {target.entity_id} ended as {status.value}",
                    details={"status": status.value},
                )
                break
            waited = loop.time() - started
            if waited >= self.wait_timeout:
                error = SyncInProgressError(target.entity_type, target.entity_id, round(waited, 2))
                break
            await asyncio.sleep(self.poll_interval)

        entry = await self.audit.record(
            ctx, sync_type, SyncAction.FAILED, target.entity_type, [target.entity_id],
            error=error, name=target.lookup_name,
        )
        return LinkOutcome(SyncAction.FAILED, error=error, waited=True, audit_entry=entry)

    async def _finish(
        self,
        target: LinkTarget,
        ctx: SyncContext,
        sync_type: SyncType,
        action: SyncAction,
        external_id: str,
        waited: bool = False,
        already_linked: bool = False,
    ) -> LinkOutcome:
        extra = {"name": target.lookup_name, "external_id": external_id}
        if already_linked:
            extra["already_linked"] = True
        if waited:
            extra["waited_for_concurrent_sync"] = True
        entry = await self.audit.record(
            ctx, sync_type, action, target.entity_type, [target.entity_id], **extra
        )
        return LinkOutcome(action, external_id=external_id, waited=waited, audit_entry=entry)


__all__ = [
    "LinkTarget",
    "CultivarLinkTarget",
    "BatchLinkTarget",
    "RoomLocationTarget",
    "HarvestLinkTarget",
    "LinkOutcome",
    "CreateOrLinkResolver",
]
