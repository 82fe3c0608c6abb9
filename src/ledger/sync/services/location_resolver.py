"""Resolve the ledger location for a batch.

Fallback chain, first match wins:
1. An explicit override supplied with the request
2. The override stored on the batch
3. The batch's room, when that room has a configured ledger location
4. The site's default ledger location

When nothing matches the resolver reports ``requires_manual_input``; it
never invents a location.
"""

import logging
from typing import Optional
from uuid import UUID

from ..domain.entities import Batch, LocationResolution, LocationSource
from ..domain.ports import IBatchRepository, ILocationRepository

logger = logging.getLogger(__name__)


class LocationResolver:
    def __init__(self, batch_repo: IBatchRepository, location_repo: ILocationRepository):
        self.batches = batch_repo
        self.locations = location_repo

    async def resolve(self, batch_id: UUID, override: Optional[str] = None) -> LocationResolution:
        batch = await self.batches.get(batch_id)
        if batch is None:
            logger.warning(f"Cannot resolve location: batch {batch_id} not found")
            return LocationResolution(None, LocationSource.NONE, requires_manual_input=True)
        return await self.resolve_for(batch, override)

    async def resolve_for(self, batch: Batch, override: Optional[str] = None) -> LocationResolution:
        for candidate in (override, batch.location_override):
            if candidate and candidate.strip():
                return LocationResolution(candidate.strip(), LocationSource.OVERRIDE)

        if batch.room_id is not None:
            room = await self.locations.get_room(batch.room_id)
            if room is not None and room.external_location_name:
                return LocationResolution(room.external_location_name, LocationSource.ROOM)

        resolution = await self.resolve_for_site(batch.site_id)
        if resolution.requires_manual_input:
            logger.info(f"No ledger location configured for batch {batch.batch_number}")
        return resolution

    async def resolve_for_site(self, site_id: UUID, override: Optional[str] = None) -> LocationResolution:
        """Resolution for records without a room, such as harvests."""
        if override and override.strip():
            return LocationResolution(override.strip(), LocationSource.OVERRIDE)

        default = await self.locations.get_site_default_location(site_id)
        if default:
            return LocationResolution(default, LocationSource.SITE_DEFAULT)
        return LocationResolution(None, LocationSource.NONE, requires_manual_input=True)
