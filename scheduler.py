#!/usr/bin/env python3
"""Timed trigger for the regulatory ledger sync engine.

Runs the configured sync types for every sync-enabled site at a fixed
interval. Sites are independent and run concurrently; within one site the
sync types run one after another to stay inside the ledger's rate limits.

Architecture:
    - Simple asyncio loop with sleep (no external scheduler)
    - Graceful shutdown on SIGTERM/SIGINT
    - Configurable via environment variables

Environment Variables:
    SYNC_INTERVAL_MINUTES: Minutes between sync runs (default: 60)
    SYNC_TYPES: Comma-separated sync types (default: strains,locations,items,tags,batches,harvests,packages,labtests,transfers)
    SYNC_ON_STARTUP: Run sync immediately on startup (default: true)
    SYNC_RECONCILE_WASTE: Retry pending waste destructions each cycle (default: true)
    SYNC_ACTOR_ID: User id recorded on scheduled audit entries (default: none)

    Ledger and database settings are read by SyncSettings (see src/ledger/config.py).

Example:
    # Run every 30 minutes, strains and batches only
    SYNC_INTERVAL_MINUTES=30 SYNC_TYPES=strains,batches python scheduler.py
"""
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from dotenv import load_dotenv

load_dotenv()

from src.ledger.api.database import close_pool, create_pool
from src.ledger.api.exceptions import ConfigurationError
from src.ledger.config import SyncSettings
from src.ledger.sync.adapters import MetrcLedgerConnector, build_postgres_repositories
from src.ledger.sync.domain.entities import SiteCredentials, SyncType
from src.ledger.sync.use_cases.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_SYNC_TYPES = "strains,locations,items,tags,batches,harvests,packages,labtests,transfers"


# ============================================
# Configuration
# ============================================

def parse_sync_types(value: str) -> list[SyncType]:
    """Parse a comma list of sync type names, rejecting unknown names."""
    types = []
    for name in (part.strip().lower() for part in value.split(",")):
        if not name:
            continue
        try:
            sync_type = SyncType(name)
        except ValueError:
            raise ConfigurationError(
                f"Unknown sync type {name!r}; expected one of {', '.join(t.value for t in SyncType)}",
                missing_keys=["SYNC_TYPES"],
            )
        if sync_type not in types:
            types.append(sync_type)
    return types


class SchedulerConfig:
    """Configuration loaded from environment variables."""

    def __init__(self):
        self.interval_minutes = int(os.getenv("SYNC_INTERVAL_MINUTES", "60"))
        self.sync_types = parse_sync_types(os.getenv("SYNC_TYPES", DEFAULT_SYNC_TYPES))
        self.sync_on_startup = os.getenv("SYNC_ON_STARTUP", "true").lower() == "true"
        self.reconcile_waste = os.getenv("SYNC_RECONCILE_WASTE", "true").lower() == "true"
        actor = os.getenv("SYNC_ACTOR_ID")
        self.actor_id: Optional[UUID] = UUID(actor) if actor else None

    @property
    def cycle_types(self) -> list[SyncType]:
        """Sync types run per site each cycle; waste reconciliation goes last."""
        types = [t for t in self.sync_types if t != SyncType.WASTE]
        if self.reconcile_waste or SyncType.WASTE in self.sync_types:
            types.append(SyncType.WASTE)
        return types

    def __repr__(self):
        return (
            f"SchedulerConfig("
            f"interval={self.interval_minutes}m, "
            f"types={','.join(t.value for t in self.sync_types)}, "
            f"startup={self.sync_on_startup}, "
            f"reconcile_waste={self.reconcile_waste})"
        )


# ============================================
# Sync Logic
# ============================================

async def sync_site(
    orchestrator: SyncOrchestrator,
    credentials: SiteCredentials,
    config: SchedulerConfig,
) -> dict:
    """Run every configured sync type for one site, in order."""
    results = await orchestrator.run_multiple(
        config.cycle_types,
        credentials.site_id,
        credentials.organization_id,
        actor_id=config.actor_id,
    )
    return {sync_type.value: result.to_dict() for sync_type, result in results.items()}


async def run_cycle(orchestrator: SyncOrchestrator, config: SchedulerConfig) -> dict:
    """Run one sync cycle across all sync-enabled sites.

    Returns:
        Dict with per-site results and an overall success flag
    """
    start_time = datetime.now(timezone.utc)
    results = {
        "started_at": start_time.isoformat(),
        "sites": {},
        "success": True,
    }

    sites = await orchestrator.repos.credentials.list_sync_enabled()
    if not sites:
        logger.warning("No sync-enabled sites; nothing to do")

    site_results = await asyncio.gather(
        *(sync_site(orchestrator, site, config) for site in sites),
        return_exceptions=True,
    )

    for site, outcome in zip(sites, site_results):
        key = str(site.site_id)
        if isinstance(outcome, Exception):
            logger.error(f"Sync for site {key} failed: {type(outcome).__name__}: {outcome}", exc_info=outcome)
            results["sites"][key] = {"error": str(outcome), "error_type": type(outcome).__name__}
            results["success"] = False
            continue
        results["sites"][key] = outcome
        if not all(r["success"] for r in outcome.values()):
            results["success"] = False

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()
    return results


# ============================================
# Main Scheduler Loop
# ============================================

async def scheduler_loop(
    orchestrator: SyncOrchestrator,
    config: SchedulerConfig,
    shutdown_event: asyncio.Event,
):
    interval_seconds = config.interval_minutes * 60

    if config.sync_on_startup:
        logger.info("Running initial sync on startup")
        results = await run_cycle(orchestrator, config)
        logger.info(f"Initial sync complete: success={results['success']}, sites={len(results['sites'])}")

    while not shutdown_event.is_set():
        next_run = datetime.now(timezone.utc) + timedelta(seconds=interval_seconds)
        logger.info(f"Next sync at {next_run.isoformat()} (in {config.interval_minutes} minutes)")
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass

        results = await run_cycle(orchestrator, config)
        logger.info(
            f"Sync complete: success={results['success']}, sites={len(results['sites'])}, "
            f"duration={results['duration_seconds']:.1f}s"
        )

    logger.info("Shutdown requested, exiting loop")


# ============================================
# Main Entry Point
# ============================================

async def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    try:
        config = SchedulerConfig()
    except (ConfigurationError, ValueError) as e:
        logger.error(f"Invalid scheduler configuration: {e}")
        sys.exit(1)
    settings = SyncSettings()
    logger.info(f"Config: {config} {settings}")

    if not settings.database_url:
        logger.error("DATABASE_URL is required")
        sys.exit(1)
    if not config.cycle_types:
        logger.error("Nothing to sync (SYNC_TYPES is empty and SYNC_RECONCILE_WASTE is false)")
        sys.exit(1)

    pool = await create_pool(settings.database_url)
    repos = build_postgres_repositories(pool, int(settings.stale_after_seconds))
    orchestrator = SyncOrchestrator(repos, MetrcLedgerConnector(settings), settings)

    shutdown_event = asyncio.Event()

    def handle_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    try:
        await scheduler_loop(orchestrator, config, shutdown_event)
    finally:
        await close_pool(pool)
        logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
