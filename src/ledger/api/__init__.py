"""Regulatory ledger API modules.

This package provides the HTTP client and the shared infrastructure used by
the sync layer.

Classes:
    LedgerClient: Async HTTP client with Basic auth, timeout, classification and retry
    PaginationConfig: Page-number pagination settings for v2 list endpoints
    RetryPolicy: Bounded exponential backoff

Exceptions:
    LedgerError: Base exception for all ledger sync errors
    ValidationError, AuthError, ConflictError, TransientError, RateLimitError,
    InvariantViolation: The classified outcomes callers branch on
    DatabaseError: Database operation failures
"""
from .client import LedgerClient, PaginationConfig, base_url_for
from .database import (
    check_database_health,
    close_pool,
    convert_db_exception,
    create_pool,
    database_transaction,
)
from .exceptions import (
    AuthError,
    ConfigurationError,
    ConflictError,
    ConnectionError,
    ConnectionPoolError,
    DatabaseError,
    ErrorKind,
    IntegrityError,
    InvariantViolation,
    LedgerError,
    LinkConflictError,
    NetworkError,
    RateLimitError,
    ServerError,
    SyncError,
    SyncInProgressError,
    TimeoutError,
    TransactionError,
    TransientError,
    ValidationError,
    classify_error,
)
from .resilience import NO_RETRY, RetryPolicy, retry_async

__all__ = [
    # Client
    "LedgerClient",
    "PaginationConfig",
    "base_url_for",
    # Resilience
    "RetryPolicy",
    "NO_RETRY",
    "retry_async",
    # Database
    "database_transaction",
    "convert_db_exception",
    "create_pool",
    "close_pool",
    "check_database_health",
    # Exceptions
    "ErrorKind",
    "classify_error",
    "LedgerError",
    "ConfigurationError",
    "ValidationError",
    "AuthError",
    "ConflictError",
    "InvariantViolation",
    "LinkConflictError",
    "TransientError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "DatabaseError",
    "ConnectionPoolError",
    "TransactionError",
    "IntegrityError",
    "SyncError",
    "SyncInProgressError",
]
