"""Tests for packaging from batches, mother plants and harvests."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.ledger.api.exceptions import InvariantViolation, ServerError
from src.ledger.sync.domain.entities import (
    ExternalItemCacheEntry,
    PackageSource,
    TagInventoryEntry,
    TagType,
)
from src.ledger.sync.use_cases.packaging import PackagingUseCase


@pytest.fixture
def packaging(repos, api, location_resolver, audit):
    return PackagingUseCase(
        repos.batches, repos.harvests, repos.packages,
        api.plant_batches, api.harvests, location_resolver, audit,
        repos.items, repos.tags,
    )


@pytest.fixture
def linked_batch(add_batch):
    return add_batch(plant_count=10, allocated_count=6, external_batch_id="77", location_override="Flower 1")


@pytest.fixture
def add_item(repos, ctx):
    def _add(name: str, **overrides) -> ExternalItemCacheEntry:
        fields = dict(site_id=ctx.site_id, external_item_id=str(len(repos.items.entries) + 1), name=name)
        fields.update(overrides)
        entry = ExternalItemCacheEntry(**fields)
        repos.items.entries[(entry.site_id, entry.external_item_id)] = entry
        return entry
    return _add


TAG = "1A4FF0100000022000000500"
OTHER_TAG = "1A4FF0100000022000000501"


class TestPlantPackages:
    @pytest.mark.asyncio
    async def test_from_batch_decrements_plant_count(self, ctx, repos, ledger, packaging, linked_batch):
        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 3, "Clone - Blue Dream")

        assert result.success, result.errors
        assert len(ledger.called("plant_batches.create_packages")) == 1
        stored = repos.batches.items[linked_batch.id]
        assert stored.plant_count == 7
        assert stored.allocated_count == 6
        package = await repos.packages.find_by_tag(TAG)
        assert package.source_type == PackageSource.BATCH
        assert package.quantity == 3
        assert repos.sync_logs.actions() == ["created"]

    @pytest.mark.asyncio
    async def test_from_mother_allocates(self, ctx, repos, ledger, packaging, linked_batch):
        result = await packaging.from_mother(ctx, linked_batch.id, TAG, 2, "Clone - Blue Dream")

        assert result.success
        assert len(ledger.called("plant_batches.create_packages_from_mother")) == 1
        stored = repos.batches.items[linked_batch.id]
        assert stored.plant_count == 10
        assert stored.allocated_count == 8

    @pytest.mark.asyncio
    async def test_over_allocation_rejected_before_ledger_call(self, ctx, repos, ledger, packaging, linked_batch):
        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 5, "Clone - Blue Dream")

        assert not result.success
        assert result.error_kind == "invariant"
        assert ledger.calls == []
        assert await repos.packages.find_by_tag(TAG) is None
        assert repos.batches.items[linked_batch.id].plant_count == 10

    @pytest.mark.asyncio
    async def test_tag_in_use_rejected(self, ctx, ledger, packaging, linked_batch, add_package):
        add_package(TAG)

        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 1, "Clone - Blue Dream")

        assert not result.success
        assert "already in use" in result.errors[0]
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_unlinked_batch_rejected(self, ctx, ledger, packaging, add_batch):
        batch = add_batch(location_override="Flower 1")

        result = await packaging.from_batch(ctx, batch.id, TAG, 1, "Clone - Blue Dream")

        assert not result.success
        assert "pushed to the ledger" in result.errors[0]
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_ledger_failure_releases_reservation(self, ctx, repos, ledger, packaging, linked_batch):
        ledger.fail("plant_batches.create_packages", ServerError("Ledger unavailable", status_code=503))

        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 3, "Clone - Blue Dream")

        assert not result.success
        stored = repos.batches.items[linked_batch.id]
        assert stored.plant_count == 10
        assert stored.allocated_count == 6
        assert await repos.packages.find_by_tag(TAG) is None

    @pytest.mark.asyncio
    async def test_local_failure_after_ledger_accepts_names_tag(self, ctx, repos, ledger, packaging, linked_batch):
        repos.batches.allocate_package = AsyncMock(side_effect=InvariantViolation("Quantity constraint rejected"))

        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 2, "Clone - Blue Dream")

        assert not result.success
        assert TAG in result.errors[0]
        assert len(ledger.called("plant_batches.create_packages")) == 1
        entry = repos.sync_logs.entries[-1]
        assert entry.detail["external_created"] is True
        # The plants stay reserved until the split is repaired
        assert repos.batches.items[linked_batch.id].allocated_count == 8


class TestConcurrentPackaging:
    @pytest.mark.asyncio
    async def test_overlapping_batch_requests_create_once(self, ctx, repos, ledger, packaging, add_batch):
        batch = add_batch(plant_count=10, external_batch_id="77", location_override="Flower 1")

        first, second = await asyncio.gather(
            packaging.from_batch(ctx, batch.id, TAG, 6, "Clone - Blue Dream"),
            packaging.from_batch(ctx, batch.id, OTHER_TAG, 5, "Clone - Blue Dream"),
        )

        assert len(ledger.called("plant_batches.create_packages")) == 1
        assert sorted([first.success, second.success]) == [False, True]
        loser = first if not first.success else second
        assert loser.error_kind == "invariant"
        stored = repos.batches.items[batch.id]
        assert stored.plant_count + sum(p.quantity for p in repos.packages.items.values()) == 10
        assert stored.allocated_count == 0

    @pytest.mark.asyncio
    async def test_overlapping_harvest_requests_create_once(self, ctx, repos, ledger, packaging, add_harvest):
        repos.locations.site_defaults[ctx.site_id] = "Drying Room"
        harvest = add_harvest(dry_weight=200.0, external_harvest_id="3003")

        results = await asyncio.gather(
            packaging.from_harvest(ctx, harvest.id, TAG, 120.0, "Blue Dream Flower"),
            packaging.from_harvest(ctx, harvest.id, OTHER_TAG, 120.0, "Blue Dream Flower"),
        )

        assert len(ledger.called("harvests.create_packages")) == 1
        assert [r.success for r in results].count(True) == 1
        assert repos.harvests.items[harvest.id].packaged_weight == 120.0


class TestItemAndTagChecks:
    @pytest.mark.asyncio
    async def test_unknown_item_rejected(self, ctx, ledger, packaging, linked_batch, add_item):
        add_item("Clone - Gelato")

        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 1, "Clone - Blue Dream")

        assert not result.success
        assert "does not exist in the ledger" in result.errors[0]
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_inactive_item_rejected(self, ctx, ledger, packaging, linked_batch, add_item):
        add_item("Clone - Blue Dream", is_active=False)

        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 1, "Clone - Blue Dream")

        assert not result.success
        assert "inactive" in result.errors[0]

    @pytest.mark.asyncio
    async def test_known_item_matches_by_canonical_name(self, ctx, packaging, linked_batch, add_item):
        add_item("Clone - Blue Dream")

        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 1, "  clone -  BLUE dream ")

        assert result.success, result.errors
        assert not any("not synced" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_empty_item_cache_only_warns(self, ctx, packaging, linked_batch):
        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 1, "Clone - Blue Dream")

        assert result.success
        assert any("items have not been synced" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_tag_missing_from_inventory_warns(self, ctx, repos, packaging, linked_batch):
        repos.tags.entries[(ctx.site_id, OTHER_TAG)] = TagInventoryEntry(
            site_id=ctx.site_id, label=OTHER_TAG, tag_type=TagType.PACKAGE,
        )

        result = await packaging.from_batch(ctx, linked_batch.id, TAG, 1, "Clone - Blue Dream")

        assert result.success
        assert any("available package tags" in w for w in result.warnings)


class TestHarvestPackages:
    @pytest.mark.asyncio
    async def test_from_harvest_draws_dry_weight(self, ctx, repos, ledger, packaging, add_harvest):
        repos.locations.site_defaults[ctx.site_id] = "Drying Room"
        harvest = add_harvest(dry_weight=200.0, external_harvest_id="3003")

        result = await packaging.from_harvest(ctx, harvest.id, TAG, 150.0, "Blue Dream Flower")

        assert result.success, result.errors
        payload = ledger.called("harvests.create_packages")[0]
        assert payload.location == "Drying Room"
        assert payload.ingredients[0].harvest_id == 3003
        assert payload.ingredients[0].weight == 150.0
        assert repos.harvests.items[harvest.id].remaining_weight == 50.0

    @pytest.mark.asyncio
    async def test_ledger_failure_releases_weight(self, ctx, repos, ledger, packaging, add_harvest):
        repos.locations.site_defaults[ctx.site_id] = "Drying Room"
        harvest = add_harvest(dry_weight=200.0, external_harvest_id="3003")
        ledger.fail("harvests.create_packages", ServerError("Ledger unavailable", status_code=503))

        result = await packaging.from_harvest(ctx, harvest.id, TAG, 150.0, "Blue Dream Flower")

        assert not result.success
        assert repos.harvests.items[harvest.id].packaged_weight == 0

    @pytest.mark.asyncio
    async def test_over_weight_rejected(self, ctx, repos, ledger, packaging, add_harvest):
        repos.locations.site_defaults[ctx.site_id] = "Drying Room"
        harvest = add_harvest(dry_weight=200.0, packaged_weight=150.0, external_harvest_id="3003")

        result = await packaging.from_harvest(ctx, harvest.id, TAG, 60.0, "Blue Dream Flower")

        assert not result.success
        assert result.error_kind == "invariant"
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_unlinked_harvest_rejected(self, ctx, repos, ledger, packaging, add_harvest):
        repos.locations.site_defaults[ctx.site_id] = "Drying Room"
        harvest = add_harvest()

        result = await packaging.from_harvest(ctx, harvest.id, TAG, 10.0, "Blue Dream Flower")

        assert not result.success
        assert "not linked" in result.errors[0]
        assert ledger.calls == []
