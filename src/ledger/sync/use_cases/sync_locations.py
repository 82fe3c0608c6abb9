"""Location use cases.

Pull links rooms to active ledger locations by name. Push creates (or
links) the ledger location for one room through the create-or-link
resolver, using the room's configured ledger name or, failing that, the
room name.
"""

import logging
from typing import Optional
from uuid import UUID

from ...api.exceptions import LedgerError, ValidationError
from ...api.schemas import LocationCreate, LocationType
from ..domain.entities import OperationResult, SyncContext, SyncResult, SyncType, canonical_name
from ..domain.ports import ILocationRepository, ILocationsAPI
from ..services.audit import AuditTrail
from ..services.create_or_link import CreateOrLinkResolver, RoomLocationTarget
from ..services.validation import validate_location_name
from .base import from_link_outcome, record_pull, reject

logger = logging.getLogger(__name__)


class SyncLocationsUseCase:
    def __init__(self, locations_api: ILocationsAPI, location_repo: ILocationRepository, audit: AuditTrail):
        self.api = locations_api
        self.locations = location_repo
        self.audit = audit

    async def execute(self, ctx: SyncContext) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.LOCATIONS)

        try:
            external = await self.api.list_active()
        except LedgerError as e:
            logger.error(f"Failed to fetch locations from ledger: {e}")
            result.errors.append(f"Location fetch failed: {e.message}")
            await record_pull(self.audit, ctx, SyncType.LOCATIONS, "room", 0, 0, result.errors, error=e)
            return result.finish()

        by_name = {canonical_name(loc.name): loc for loc in external}

        for room in await self.locations.list_rooms(ctx.site_id):
            if room.external_location_id:
                continue
            match = by_name.get(canonical_name(room.ledger_location_name))
            if match is None:
                continue
            if not await self.locations.try_begin_sync(room.id):
                result.warnings.append(f"Room {room.name} is being synced elsewhere; skipped")
                continue
            try:
                await self.locations.complete_sync(room.id, str(match.id))
                result.updated += 1
            except LedgerError as e:
                await self.locations.fail_sync(room.id, e.message)
                result.errors.append(f"Linking room {room.name} failed: {e.message}")

        await record_pull(
            self.audit, ctx, SyncType.LOCATIONS, "room",
            0, result.updated, result.errors, fetched=len(external),
        )
        return result.finish()


class PushRoomLocationUseCase:
    """Create-or-link the ledger location for one room."""

    def __init__(
        self,
        location_repo: ILocationRepository,
        locations_api: ILocationsAPI,
        resolver: CreateOrLinkResolver,
        audit: AuditTrail,
    ):
        self.locations = location_repo
        self.api = locations_api
        self.resolver = resolver
        self.audit = audit

    async def execute(
        self,
        ctx: SyncContext,
        room_id: UUID,
        location_type_name: Optional[str] = None,
    ) -> OperationResult:
        room = await self.locations.get_room(room_id)
        if room is None:
            return await reject(
                self.audit, ctx, SyncType.LOCATIONS, "room", [room_id],
                ValidationError(f"Room {room_id} not found"),
            )

        check = validate_location_name(room.ledger_location_name)
        if not check.is_valid:
            return await reject(
                self.audit, ctx, SyncType.LOCATIONS, "room", [room.id],
                ValidationError("; ".join(check.errors), field="name"), check.warnings,
            )

        location_type = None
        if not room.external_location_id:
            try:
                location_type = _pick_location_type(await self.api.list_types(), location_type_name)
            except LedgerError as e:
                return await reject(self.audit, ctx, SyncType.LOCATIONS, "room", [room.id], e, check.warnings)
            if location_type is None:
                return await reject(
                    self.audit, ctx, SyncType.LOCATIONS, "room", [room.id],
                    ValidationError(
                        f"No ledger location type named {location_type_name!r}"
                        if location_type_name else "The ledger has no location type for plants",
                        field="location_type",
                    ),
                    check.warnings,
                )

        payload = LocationCreate(
            name=room.ledger_location_name.strip(),
            location_type_id=location_type.id if location_type else 1,
        )
        outcome = await self.resolver.resolve(
            RoomLocationTarget(self.locations, self.api, room, payload),
            ctx,
            SyncType.LOCATIONS,
        )
        return from_link_outcome(outcome, room.id, check.warnings)


def _pick_location_type(types: list[LocationType], name: Optional[str]) -> Optional[LocationType]:
    if name:
        wanted = canonical_name(name)
        return next((t for t in types if canonical_name(t.name) == wanted), None)
    return next((t for t in types if t.for_plants or t.for_plant_batches), None)


__all__ = ["SyncLocationsUseCase", "PushRoomLocationUseCase"]
