#!/usr/bin/env python3
"""Regulatory Ledger Sync CLI.

Runs a one-off sync for one site and prints the JSON result. This is the
manual trigger; ``scheduler.py`` is the timed one.

Environment Variables Required:
    - DATABASE_URL: PostgreSQL connection string
    Ledger settings (timeouts, retries, page size) are read by SyncSettings.

Example Usage:
    $ python main.py --site <uuid> --org <uuid>                      # Strain sync
    $ python main.py --site <uuid> --org <uuid> --types batches,packages
    $ python main.py --site <uuid> --org <uuid> --types batches --push-pending
    $ python main.py --site <uuid> --org <uuid> --types waste        # Reconcile pending waste
    $ python main.py --site <uuid> --org <uuid> --since 2026-10-01T00:00:00+00:00
"""
import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from uuid import UUID

from dotenv import load_dotenv

load_dotenv()

from src.ledger.api.database import close_pool, create_pool
from src.ledger.api.exceptions import ConfigurationError
from src.ledger.config import SyncSettings
from src.ledger.sync.adapters import MetrcLedgerConnector, build_postgres_repositories
from src.ledger.sync.domain.entities import SyncType
from src.ledger.sync.use_cases.orchestrator import SyncOptions, SyncOrchestrator

logger = logging.getLogger(__name__)


def parse_types(value: str) -> list[SyncType]:
    try:
        return [SyncType(part.strip().lower()) for part in value.split(",") if part.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(
            f"{e}; expected a comma list of {', '.join(t.value for t in SyncType)}"
        )


def parse_timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an ISO-8601 timestamp: {value!r}")


async def run_sync(args: argparse.Namespace) -> int:
    settings = SyncSettings()
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is required", missing_keys=["DATABASE_URL"])

    options = SyncOptions(
        last_modified_start=args.since,
        last_modified_end=args.until,
        push_pending=args.push_pending,
        import_unmatched=args.import_unmatched,
    )

    pool = await create_pool(settings.database_url)
    try:
        repos = build_postgres_repositories(pool, int(settings.stale_after_seconds))
        orchestrator = SyncOrchestrator(repos, MetrcLedgerConnector(settings), settings)
        results = await orchestrator.run_multiple(args.types, args.site, args.org, args.actor, options)
    finally:
        await close_pool(pool)

    payload = {sync_type.value: result.to_dict() for sync_type, result in results.items()}
    print(json.dumps(payload, indent=2))
    return 0 if all(r.success for r in results.values()) else 2


def main():
    parser = argparse.ArgumentParser(
        description="Run a one-off regulatory ledger sync for one site",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --site SITE --org ORG                       # Strain sync
  python main.py --site SITE --org ORG --types strains,batches
  python main.py --site SITE --org ORG --types batches --push-pending
  python main.py --site SITE --org ORG --types items,tags   # Refresh item cache and tags
  python main.py --site SITE --org ORG --types waste         # Retry pending waste
        """
    )

    target_group = parser.add_argument_group("Target")
    target_group.add_argument("--site", type=UUID, required=True, help="Site id")
    target_group.add_argument("--org", type=UUID, required=True, help="Organization id")
    target_group.add_argument("--actor", type=UUID, default=None, help="User id recorded on audit entries")

    sync_group = parser.add_argument_group("Sync Options")
    sync_group.add_argument(
        "--types",
        type=parse_types,
        default=[SyncType.STRAINS],
        help="Comma-separated sync types, run in order (default: strains)"
    )
    sync_group.add_argument("--since", type=parse_timestamp, help="lastModified window start (ISO-8601)")
    sync_group.add_argument("--until", type=parse_timestamp, help="lastModified window end (ISO-8601)")
    sync_group.add_argument(
        "--push-pending",
        action="store_true",
        help="After a batch pull, push local batches that are still unlinked"
    )
    sync_group.add_argument(
        "--import-unmatched",
        action="store_true",
        help="Create cultivars for ledger strains with no local match"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
    )

    try:
        sys.exit(asyncio.run(run_sync(args)))
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
