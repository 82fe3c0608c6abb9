"""Engine configuration loaded from environment variables.

Environment Variables:
    LEDGER_BASE_URL: Override for the ledger base URL (default: derived per site)
    LEDGER_TIMEOUT_SECONDS: Per-attempt request timeout (default: 30)
    LEDGER_MAX_ATTEMPTS: Attempts per request including the first (default: 3)
    LEDGER_RETRY_INITIAL_DELAY: First backoff delay in seconds (default: 1.0)
    LEDGER_RETRY_MULTIPLIER: Backoff multiplier (default: 2.0)
    LEDGER_RETRY_MAX_DELAY: Backoff cap in seconds (default: 30)
    LEDGER_PAGE_SIZE: Page size for v2 list endpoints (default: 100)
    SYNC_WINDOW_DAYS: Default lastModified window (default: 7)
    SYNC_LOCK_WAIT_SECONDS: Wait for a concurrent sync to finish (default: 30)
    SYNC_LOCK_POLL_SECONDS: Poll interval while waiting (default: 0.5)
    SYNC_STALE_AFTER_SECONDS: Age after which a 'syncing' mark is reclaimable (default: 600)
    WASTE_RECONCILE_MAX_ATTEMPTS: Attempts before manual review (default: 5)
    DATABASE_URL: PostgreSQL connection string
"""

import os
from typing import Optional

from .api.client import PaginationConfig
from .api.resilience import RetryPolicy


class SyncSettings:
    """Configuration loaded from environment variables."""

    def __init__(self):
        self.base_url_override: Optional[str] = os.getenv("LEDGER_BASE_URL") or None
        self.timeout_seconds = float(os.getenv("LEDGER_TIMEOUT_SECONDS", "30"))
        self.max_attempts = int(os.getenv("LEDGER_MAX_ATTEMPTS", "3"))
        self.retry_initial_delay = float(os.getenv("LEDGER_RETRY_INITIAL_DELAY", "1.0"))
        self.retry_multiplier = float(os.getenv("LEDGER_RETRY_MULTIPLIER", "2.0"))
        self.retry_max_delay = float(os.getenv("LEDGER_RETRY_MAX_DELAY", "30"))
        self.page_size = int(os.getenv("LEDGER_PAGE_SIZE", "100"))
        self.sync_window_days = int(os.getenv("SYNC_WINDOW_DAYS", "7"))
        self.lock_wait_seconds = float(os.getenv("SYNC_LOCK_WAIT_SECONDS", "30"))
        self.lock_poll_seconds = float(os.getenv("SYNC_LOCK_POLL_SECONDS", "0.5"))
        self.stale_after_seconds = float(os.getenv("SYNC_STALE_AFTER_SECONDS", "600"))
        self.waste_reconcile_max_attempts = int(os.getenv("WASTE_RECONCILE_MAX_ATTEMPTS", "5"))
        self.database_url: Optional[str] = os.getenv("DATABASE_URL") or None

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.retry_initial_delay,
            multiplier=self.retry_multiplier,
            max_delay=self.retry_max_delay,
        )

    @property
    def pagination(self) -> PaginationConfig:
        return PaginationConfig(page_size=self.page_size)

    def __repr__(self):
        return (
            f"SyncSettings("
            f"timeout={self.timeout_seconds}s, "
            f"attempts={self.max_attempts}, "
            f"window={self.sync_window_days}d, "
            f"lock_wait={self.lock_wait_seconds}s)"
        )
