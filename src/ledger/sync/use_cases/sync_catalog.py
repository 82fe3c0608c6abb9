"""Item and tag pulls.

Items are the approved product names a package may carry; the cache lets
packaging reject an unknown item before the ledger does. Tags are the
site's unused plant and package tags; a tag missing from the last pulled
list has been used or retired.
"""

import logging
from uuid import UUID

from ...api.exceptions import LedgerError
from ...api.schemas import Item, Tag
from ..domain.entities import (
    ExternalItemCacheEntry,
    SyncContext,
    SyncResult,
    SyncType,
    TagInventoryEntry,
    TagType,
)
from ..domain.ports import IItemCacheRepository, IItemsAPI, ITagInventoryRepository, ITagsAPI
from ..services.audit import AuditTrail
from .base import record_pull

logger = logging.getLogger(__name__)


def _item_entry(site_id: UUID, item: Item, is_active: bool, requires_strain: bool) -> ExternalItemCacheEntry:
    return ExternalItemCacheEntry(
        site_id=site_id,
        external_item_id=str(item.id),
        name=item.name,
        product_category_name=item.product_category_name,
        product_category_type=item.product_category_type,
        quantity_type=item.quantity_type,
        unit_of_measure=item.unit_of_measure_name,
        approval_status=item.approval_status,
        requires_strain=requires_strain,
        strain_name=item.strain_name,
        is_active=is_active,
        raw_data=item.model_dump(by_alias=True, mode="json"),
    )


class SyncItemsUseCase:
    """Refresh the site's item cache from the ledger."""

    def __init__(self, items_api: IItemsAPI, item_cache: IItemCacheRepository, audit: AuditTrail):
        self.api = items_api
        self.cache = item_cache
        self.audit = audit

    async def execute(self, ctx: SyncContext) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.ITEMS)

        try:
            active = await self.api.list_active()
            inactive = await self.api.list_inactive()
            categories = await self.api.list_categories()
        except LedgerError as e:
            logger.error(f"Failed to fetch items from ledger: {e}")
            result.errors.append(f"Item fetch failed: {e.message}")
            await record_pull(self.audit, ctx, SyncType.ITEMS, "item", 0, 0, result.errors, error=e)
            return result.finish()

        needs_strain = {c.name for c in categories if c.requires_strain}
        entries = [
            _item_entry(ctx.site_id, i, True, i.product_category_name in needs_strain) for i in active
        ]
        entries += [
            _item_entry(ctx.site_id, i, False, i.product_category_name in needs_strain) for i in inactive
        ]
        result.updated = await self.cache.upsert_items(entries)

        for entry in entries:
            if entry.is_active and entry.requires_strain and not entry.strain_name:
                result.warnings.append(f"Item {entry.name} is in a strain-specific category but has no strain")

        await record_pull(
            self.audit, ctx, SyncType.ITEMS, "item",
            0, result.updated, result.errors, active=len(active), inactive=len(inactive),
        )
        logger.info(f"Cached {result.updated} ledger items ({len(active)} active, {len(inactive)} inactive)")
        return result.finish()


class SyncTagsUseCase:
    """Replace the site's available tag lists with the ledger's."""

    def __init__(self, tags_api: ITagsAPI, tag_inventory: ITagInventoryRepository, audit: AuditTrail):
        self.api = tags_api
        self.inventory = tag_inventory
        self.audit = audit

    async def execute(self, ctx: SyncContext) -> SyncResult:
        result = SyncResult(success=True, sync_type=SyncType.TAGS)
        counts: dict[str, int] = {}

        for tag_type in TagType:
            try:
                tags = await self.api.list_available(tag_type)
            except LedgerError as e:
                logger.error(f"Failed to fetch available {tag_type.value} tags: {e}")
                result.errors.append(f"{tag_type.value.title()} tag fetch failed: {e.message}")
                continue
            entries = [self._entry(ctx.site_id, tag_type, t) for t in tags]
            counts[tag_type.value] = await self.inventory.replace_available(ctx.site_id, tag_type, entries)
            result.updated += counts[tag_type.value]

        await record_pull(self.audit, ctx, SyncType.TAGS, "tag", 0, result.updated, result.errors, **counts)
        logger.info(f"Tag sync complete: {counts}")
        return result.finish()

    @staticmethod
    def _entry(site_id: UUID, tag_type: TagType, tag: Tag) -> TagInventoryEntry:
        return TagInventoryEntry(
            site_id=site_id,
            label=tag.label,
            tag_type=tag_type,
            external_tag_id=str(tag.id),
            commissioned_at=tag.commissioned_date_time,
        )


__all__ = ["SyncItemsUseCase", "SyncTagsUseCase"]
