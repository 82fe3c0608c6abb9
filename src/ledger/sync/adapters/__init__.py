"""Adapters layer - Infrastructure implementations for ledger sync.

This layer contains concrete implementations of the ports defined in the domain layer:
- Postgres*Repository: PostgreSQL implementations of the repository ports
- Ledger*API: ledger REST implementations of the API ports
- MetrcLedgerConnector: opens a per-site LedgerAPI session from credentials
"""

from .ledger_api_adapter import (
    LedgerHarvestsAPI,
    LedgerItemsAPI,
    LedgerLabTestsAPI,
    LedgerLocationsAPI,
    LedgerPackagesAPI,
    LedgerPlantBatchesAPI,
    LedgerStrainsAPI,
    LedgerTagsAPI,
    LedgerTransfersAPI,
    LedgerWasteAPI,
    MetrcLedgerConnector,
    build_ledger_api,
)
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
from .repositories import build_postgres_repositories

__all__ = [
    # Ledger API adapters
    "LedgerStrainsAPI",
    "LedgerLocationsAPI",
    "LedgerPlantBatchesAPI",
    "LedgerPackagesAPI",
    "LedgerHarvestsAPI",
    "LedgerLabTestsAPI",
    "LedgerWasteAPI",
    "LedgerTransfersAPI",
    "LedgerItemsAPI",
    "LedgerTagsAPI",
    "MetrcLedgerConnector",
    "build_ledger_api",
    # PostgreSQL repositories
    "PostgresCultivarRepository",
    "PostgresStrainCacheRepository",
    "PostgresBatchRepository",
    "PostgresPackageRepository",
    "PostgresHarvestRepository",
    "PostgresLabTestRepository",
    "PostgresWasteRepository",
    "PostgresCredentialRepository",
    "PostgresLocationRepository",
    "PostgresTransferRepository",
    "PostgresSyncLogRepository",
    "PostgresItemCacheRepository",
    "PostgresTagInventoryRepository",
    "build_postgres_repositories",
]
