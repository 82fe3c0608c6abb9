"""Wire every PostgreSQL repository onto one pool."""

from typing import TYPE_CHECKING

from ..domain.ports import SyncRepositories
from ._sync_state import DEFAULT_STALE_AFTER_SECONDS
from .postgres_batch_repo import PostgresBatchRepository
from .postgres_catalog_repo import PostgresItemCacheRepository, PostgresTagInventoryRepository
from .postgres_cultivar_repo import PostgresCultivarRepository, PostgresStrainCacheRepository
from .postgres_inventory_repo import (
    PostgresHarvestRepository,
    PostgresLabTestRepository,
    PostgresPackageRepository,
    PostgresWasteRepository,
)
from .postgres_site_repo import (
    PostgresCredentialRepository,
    PostgresLocationRepository,
    PostgresSyncLogRepository,
    PostgresTransferRepository,
)

if TYPE_CHECKING:
    import asyncpg


def build_postgres_repositories(
    pool: "asyncpg.Pool",
    stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
) -> SyncRepositories:
    return SyncRepositories(
        cultivars=PostgresCultivarRepository(pool, stale_after_seconds),
        strain_cache=PostgresStrainCacheRepository(pool),
        batches=PostgresBatchRepository(pool, stale_after_seconds),
        packages=PostgresPackageRepository(pool),
        harvests=PostgresHarvestRepository(pool, stale_after_seconds),
        lab_tests=PostgresLabTestRepository(pool),
        waste=PostgresWasteRepository(pool),
        sync_logs=PostgresSyncLogRepository(pool),
        credentials=PostgresCredentialRepository(pool),
        locations=PostgresLocationRepository(pool, stale_after_seconds),
        transfers=PostgresTransferRepository(pool),
        items=PostgresItemCacheRepository(pool),
        tags=PostgresTagInventoryRepository(pool),
    )


__all__ = ["build_postgres_repositories"]
