"""Use cases layer - Business logic orchestration for ledger sync.

This layer contains use case classes that orchestrate the sync workflow:
- Pull ledger records and link them to internal records by name or tag
- Push internal records through create-or-link, recording every attempt
- Draw down inventory (packaging, destruction) under quantity guarantees

Use cases depend only on ports, not concrete implementations.
"""

from .growth_phase import ChangeGrowthPhaseUseCase
from .harvests import PushHarvestUseCase, SyncHarvestsUseCase
from .lab_tests import (
    CreateLabTestUseCase,
    LinkPackageToTestUseCase,
    RecordLabResultsUseCase,
    UpdateLabTestStatusUseCase,
)
from .orchestrator import SyncOptions, SyncOrchestrator, default_sync_window
from .packaging import PackagingUseCase
from .push_batch import PushBatchUseCase, SyncPlantBatchesUseCase
from .sync_catalog import SyncItemsUseCase, SyncTagsUseCase
from .sync_locations import PushRoomLocationUseCase, SyncLocationsUseCase
from .sync_packages import SyncPackagesUseCase
from .sync_strains import PushCultivarUseCase, SyncStrainsUseCase
from .sync_transfers import SyncTransfersUseCase
from .waste import DestroyWasteUseCase, ReconcilePendingWasteUseCase

__all__ = [
    # Pulls
    "SyncStrainsUseCase",
    "SyncLocationsUseCase",
    "SyncPlantBatchesUseCase",
    "SyncHarvestsUseCase",
    "SyncPackagesUseCase",
    "SyncTransfersUseCase",
    "SyncItemsUseCase",
    "SyncTagsUseCase",
    # Pushes
    "PushCultivarUseCase",
    "PushBatchUseCase",
    "PushRoomLocationUseCase",
    "PushHarvestUseCase",
    "ChangeGrowthPhaseUseCase",
    "PackagingUseCase",
    # Lab tests
    "CreateLabTestUseCase",
    "LinkPackageToTestUseCase",
    "UpdateLabTestStatusUseCase",
    "RecordLabResultsUseCase",
    # Waste
    "DestroyWasteUseCase",
    "ReconcilePendingWasteUseCase",
    # Orchestration
    "SyncOptions",
    "SyncOrchestrator",
    "default_sync_window",
]
