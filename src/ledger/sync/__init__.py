"""Sync module - Clean Architecture implementation of regulatory ledger sync.

Mirrors cultivation records (cultivars, batches, plants, harvests, packages,
lab tests, waste) to the state traceability ledger and pulls ledger records
back for linking.

Architecture:
    domain/     - Pure domain entities and port interfaces
    services/   - Audit trail, create-or-link, validation, location resolution
    use_cases/  - Business logic orchestration
    adapters/   - Infrastructure implementations (PostgreSQL, ledger API)
"""

from .domain.entities import (
    OperationResult,
    SyncContext,
    SyncResult,
    SyncStatus,
    SyncType,
)
from .domain.ports import (
    ILedgerConnector,
    LedgerAPI,
    SyncRepositories,
    TimeWindow,
)
from .use_cases.orchestrator import SyncOptions, SyncOrchestrator

__all__ = [
    # Entities
    "OperationResult",
    "SyncContext",
    "SyncResult",
    "SyncStatus",
    "SyncType",
    # Ports
    "ILedgerConnector",
    "LedgerAPI",
    "SyncRepositories",
    "TimeWindow",
    # Orchestration
    "SyncOptions",
    "SyncOrchestrator",
]
