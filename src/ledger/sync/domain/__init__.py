"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: Cultivation records, audit entries and results
- Ports: Abstract interfaces for repositories and ledger resource families

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    Batch,
    Cultivar,
    ExternalItemCacheEntry,
    ExternalStrainCacheEntry,
    GrowthPhase,
    Harvest,
    LabTest,
    LabTestStatus,
    LocationResolution,
    LocationSource,
    OperationResult,
    Package,
    PackageSource,
    PackageStatus,
    Plant,
    Room,
    SiteCredentials,
    StrainType,
    SyncAction,
    SyncContext,
    SyncDirection,
    SyncLogEntry,
    SyncLogStatus,
    SyncResult,
    SyncStatus,
    SyncType,
    TagInventoryEntry,
    TagType,
    TransferManifest,
    WasteLog,
    WasteSourceType,
    WasteSyncStatus,
)
from .ports import LedgerAPI, SyncRepositories, TimeWindow

__all__ = [
    "Batch",
    "Cultivar",
    "ExternalItemCacheEntry",
    "ExternalStrainCacheEntry",
    "GrowthPhase",
    "Harvest",
    "LabTest",
    "LabTestStatus",
    "LocationResolution",
    "LocationSource",
    "OperationResult",
    "Package",
    "PackageSource",
    "PackageStatus",
    "Plant",
    "Room",
    "SiteCredentials",
    "StrainType",
    "SyncAction",
    "SyncContext",
    "SyncDirection",
    "SyncLogEntry",
    "SyncLogStatus",
    "SyncResult",
    "SyncStatus",
    "SyncType",
    "TagInventoryEntry",
    "TagType",
    "TransferManifest",
    "WasteLog",
    "WasteSourceType",
    "WasteSyncStatus",
    "LedgerAPI",
    "SyncRepositories",
    "TimeWindow",
]
