#!/usr/bin/env python3
"""Exception Hierarchy for the Regulatory Ledger Sync Engine.

This module provides a structured exception hierarchy for handling errors
across the ledger client, the sync operations, and the local data store.

Design Principles:
    - All exceptions inherit from LedgerError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Every exception carries an ErrorKind so callers never inspect status codes
    - Each exception includes actionable information

Exception Hierarchy:
    LedgerError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── ValidationError (validation - never retried)
    ├── AuthError (auth - disables the site, never retried)
    ├── ConflictError (conflict - switch from create to link)
    ├── InvariantViolation (invariant - rejected before any I/O)
    │   └── LinkConflictError
    ├── TransientError (transient - retried with backoff)
    │   ├── RateLimitError (rate_limited)
    │   ├── ServerError
    │   └── NetworkError
    │       ├── ConnectionError
    │       └── TimeoutError
    ├── DatabaseError
    │   ├── ConnectionPoolError
    │   ├── TransactionError
    │   └── IntegrityError
    └── SyncError
        └── SyncInProgressError

Author: Ledger Sync Team
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Classification every caller branches on."""

    VALIDATION = "validation"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    CONFLICT = "conflict"
    INVARIANT = "invariant"
    INTERNAL = "internal"


# ============================================
# Base Exception
# ============================================

class LedgerError(Exception):
    """Base exception for all ledger sync errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "AUTH_ERROR")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"kind={self.kind.value!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


def _http_details(
    details: dict[str, Any],
    status_code: Optional[int],
    endpoint: Optional[str],
    method: Optional[str],
    response_body: Optional[str],
) -> dict[str, Any]:
    if status_code is not None:
        details["status_code"] = status_code
    if endpoint:
        details["endpoint"] = endpoint
    if method:
        details["method"] = method
    if response_body:
        details["response_body"] = response_body[:500]
    return details


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(LedgerError):
    """Raised when configuration or site credentials are missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Request Outcome Errors
# ============================================

class ValidationError(LedgerError):
    """Malformed or insufficient input.

    Raised locally before any external call, or by the client for any 4xx
    response other than 401/403/429 and conflicts. Never retried.
    """

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        details = _http_details(
            kwargs.pop("details", {}), status_code, endpoint, method, response_body
        )
        if field:
            details["field"] = field
        super().__init__(
            message,
            code=kwargs.pop("code", "VALIDATION_ERROR"),
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.field = field
        self.status_code = status_code
        self.response_body = response_body


class AuthError(LedgerError):
    """Credentials invalid or expired (HTTP 401/403).

    Not retried; the site's sync is disabled until an operator fixes the keys.
    """

    kind = ErrorKind.AUTH

    def __init__(
        self,
        message: str = "Ledger credentials rejected",
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        **kwargs,
    ):
        details = _http_details(kwargs.pop("details", {}), status_code, endpoint, method, None)
        super().__init__(
            message,
            code="AUTH_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.status_code = status_code


class ConflictError(LedgerError):
    """The external ledger reports the resource already exists."""

    kind = ErrorKind.CONFLICT

    def __init__(
        self,
        message: str = "Resource already exists",
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        details = _http_details(
            kwargs.pop("details", {}), status_code, endpoint, method, response_body
        )
        super().__init__(
            message,
            code="CONFLICT",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.status_code = status_code


class InvariantViolation(LedgerError):
    """A request would break a quantity or identity guarantee."""

    kind = ErrorKind.INVARIANT

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "INVARIANT_VIOLATION")
        super().__init__(message, recoverable=False, **kwargs)


class LinkConflictError(InvariantViolation):
    """An entity is already linked to a different external id."""

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        existing_id: Optional[str] = None,
        new_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details.update({
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "existing_external_id": existing_id,
            "new_external_id": new_id,
        })
        super().__init__(
            f"{entity_type} {entity_id} is already linked to another external record",
            code="LINK_CONFLICT",
            details=details,
            **kwargs,
        )


# ============================================
# Transient Errors (Retried)
# ============================================

class TransientError(LedgerError):
    """Network, 5xx or timeout failure; retried with bounded backoff."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, attempts: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        if attempts is not None:
            details["attempts"] = attempts
        kwargs.setdefault("code", "TRANSIENT_ERROR")
        super().__init__(message, details=details, recoverable=True, **kwargs)
        self.attempts = attempts


class RateLimitError(TransientError):
    """Raised when the ledger rate limit is exceeded (HTTP 429).

    Attributes:
        retry_after: Seconds to wait before retrying (from Retry-After header)
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        endpoint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = 429
        if endpoint:
            details["endpoint"] = endpoint
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details=details,
            **kwargs,
        )
        self.retry_after = retry_after


class ServerError(TransientError):
    """Raised when the ledger returns a 5xx error."""

    def __init__(
        self,
        message: str = "Server error",
        status_code: int = 500,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        details = _http_details(
            kwargs.pop("details", {}), status_code, endpoint, method, response_body
        )
        super().__init__(message, code="SERVER_ERROR", details=details, **kwargs)
        self.status_code = status_code


class NetworkError(TransientError):
    """Base class for transport-level failures."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "NETWORK_ERROR")
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when the connection to the ledger fails or is reset."""

    def __init__(
        self,
        message: str = "Failed to connect to ledger",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(message, code="CONNECTION_ERROR", details=details, **kwargs)


class TimeoutError(NetworkError):
    """Raised when a request exceeds its per-attempt timeout."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, code="TIMEOUT", details=details, **kwargs)


# ============================================
# Database Errors
# ============================================

class DatabaseError(LedgerError):
    """Base class for database-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionPoolError(DatabaseError):
    """Raised when database connection pool is exhausted or unavailable."""

    def __init__(
        self,
        message: str = "Database connection pool error",
        **kwargs,
    ):
        super().__init__(message, code="CONNECTION_POOL_ERROR", **kwargs)


class TransactionError(DatabaseError):
    """Raised when database transaction fails."""

    def __init__(
        self,
        message: str = "Database transaction failed",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(
            message,
            code="TRANSACTION_ERROR",
            details=details,
            **kwargs,
        )


class IntegrityError(DatabaseError):
    """Raised when database integrity constraint is violated."""

    def __init__(
        self,
        message: str = "Database integrity error",
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if constraint:
            details["constraint"] = constraint
        super().__init__(
            message,
            code="INTEGRITY_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.constraint = constraint


# ============================================
# Sync Errors
# ============================================

class SyncError(LedgerError):
    """Base class for sync operation failures."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "SYNC_ERROR")
        super().__init__(message, **kwargs)


class SyncInProgressError(SyncError):
    """Another caller holds the sync mutex and did not finish in time."""

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        waited_seconds: float,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details.update({
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "waited_seconds": waited_seconds,
        })
        super().__init__(
            f"{entity_type} {entity_id} is being synced by another caller",
            code="SYNC_IN_PROGRESS",
            details=details,
            recoverable=True,
            **kwargs,
        )


# ============================================
# Classification
# ============================================

def classify_error(error: BaseException) -> ErrorKind:
    """Map any exception onto the five-way classification.

    Unknown exceptions are INTERNAL; they indicate bugs, not ledger outcomes.
    """
    if isinstance(error, LedgerError):
        return error.kind
    return ErrorKind.INTERNAL


# ============================================
# Exports
# ============================================

__all__ = [
    "ErrorKind",
    "classify_error",
    # Base
    "LedgerError",
    "ConfigurationError",
    # Outcomes
    "ValidationError",
    "AuthError",
    "ConflictError",
    "InvariantViolation",
    "LinkConflictError",
    # Transient
    "TransientError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    # Database
    "DatabaseError",
    "ConnectionPoolError",
    "TransactionError",
    "IntegrityError",
    # Sync
    "SyncError",
    "SyncInProgressError",
]
