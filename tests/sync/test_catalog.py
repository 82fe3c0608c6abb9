"""Tests for the item and tag pulls."""

import pytest

from src.ledger.api.exceptions import RateLimitError, ServerError
from src.ledger.api.schemas import Item, ItemCategory, Tag
from src.ledger.sync.domain.entities import SyncLogStatus, TagInventoryEntry, TagType
from src.ledger.sync.use_cases.sync_catalog import SyncItemsUseCase, SyncTagsUseCase


# ============================================
# Items
# ============================================

class TestSyncItems:
    @pytest.fixture
    def sync_items(self, repos, api, audit):
        return SyncItemsUseCase(api.items, repos.items, audit)

    @pytest.mark.asyncio
    async def test_caches_active_and_inactive_items(self, ctx, repos, ledger, sync_items):
        ledger.items.append(Item(id=1, name="Blue Dream Flower", product_category_name="Buds", approval_status="Approved"))
        ledger.inactive_items.append(Item(id=2, name="Old Shake", product_category_name="Shake/Trim"))

        result = await sync_items.execute(ctx)

        assert result.success
        assert result.updated == 2
        cached = {e.name: e for e in await repos.items.list_for_site(ctx.site_id)}
        assert cached["Blue Dream Flower"].is_active
        assert cached["Blue Dream Flower"].external_item_id == "1"
        assert not cached["Old Shake"].is_active
        assert cached["Old Shake"].raw_data["Name"] == "Old Shake"
        assert repos.sync_logs.entries[0].detail["active"] == 1

    @pytest.mark.asyncio
    async def test_strain_specific_category_without_strain_warns(self, ctx, repos, ledger, sync_items):
        ledger.item_categories.append(ItemCategory(name="Buds", requires_strain=True))
        ledger.items += [
            Item(id=1, name="Blue Dream Flower", product_category_name="Buds", strain_name="Blue Dream"),
            Item(id=3, name="House Flower", product_category_name="Buds"),
        ]

        result = await sync_items.execute(ctx)

        assert result.success
        assert result.warnings == ["Item House Flower is in a strain-specific category but has no strain"]
        cached = {e.name: e for e in await repos.items.list_for_site(ctx.site_id)}
        assert cached["Blue Dream Flower"].requires_strain

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_previous_cache(self, ctx, repos, ledger, sync_items):
        ledger.items.append(Item(id=1, name="Blue Dream Flower"))
        await sync_items.execute(ctx)
        ledger.fail("items.list_categories", RateLimitError(retry_after=30))

        result = await sync_items.execute(ctx)

        assert not result.success
        assert result.errors[0].startswith("Item fetch failed")
        assert len(await repos.items.list_for_site(ctx.site_id)) == 1
        assert repos.sync_logs.entries[-1].status == SyncLogStatus.FAILED


# ============================================
# Tags
# ============================================

class TestSyncTags:
    @pytest.fixture
    def sync_tags(self, repos, api, audit):
        return SyncTagsUseCase(api.tags, repos.tags, audit)

    @pytest.mark.asyncio
    async def test_stores_available_tags_by_type(self, ctx, repos, ledger, sync_tags):
        ledger.available_tags[TagType.PACKAGE].append(Tag(id=9, label="1A4FF0100000022000000100"))
        ledger.available_tags[TagType.PLANT].append(Tag(id=10, label="1A4FF0100000022000000900"))

        result = await sync_tags.execute(ctx)

        assert result.success
        assert result.updated == 2
        assert await repos.tags.is_available(ctx.site_id, TagType.PACKAGE, "1A4FF0100000022000000100")
        assert not await repos.tags.is_available(ctx.site_id, TagType.PACKAGE, "1A4FF0100000022000000900")
        assert repos.sync_logs.entries[0].detail["package"] == 1

    @pytest.mark.asyncio
    async def test_tag_missing_from_new_list_is_marked_used(self, ctx, repos, ledger, sync_tags):
        repos.tags.entries[(ctx.site_id, "1A4FF0100000022000000100")] = TagInventoryEntry(
            site_id=ctx.site_id, label="1A4FF0100000022000000100", tag_type=TagType.PACKAGE,
        )
        ledger.available_tags[TagType.PACKAGE].append(Tag(id=11, label="1A4FF0100000022000000101"))

        await sync_tags.execute(ctx)

        assert repos.tags.entries[(ctx.site_id, "1A4FF0100000022000000100")].status == "used"
        assert await repos.tags.is_available(ctx.site_id, TagType.PACKAGE, "1A4FF0100000022000000101")

    @pytest.mark.asyncio
    async def test_nothing_synced_means_unknown(self, ctx, repos):
        assert await repos.tags.is_available(ctx.site_id, TagType.PACKAGE, "1A4FF0100000022000000100") is None

    @pytest.mark.asyncio
    async def test_one_failed_type_does_not_stop_the_other(self, ctx, repos, ledger, sync_tags):
        ledger.available_tags[TagType.PACKAGE].append(Tag(id=9, label="1A4FF0100000022000000100"))
        ledger.fail("tags.list_available.plant", ServerError(status_code=500))

        result = await sync_tags.execute(ctx)

        assert not result.success
        assert result.errors == ["Plant tag fetch failed: " + ServerError(status_code=500).message]
        assert await repos.tags.is_available(ctx.site_id, TagType.PACKAGE, "1A4FF0100000022000000100")
