#!/usr/bin/env python3
"""HTTP Client for the Regulatory Ledger API.

This module provides a reusable, composable HTTP client that handles the
common concerns of ledger communication:

    - HTTP Basic authentication with the vendor/user key pair
    - Facility scoping via the ``licenseNumber`` query parameter
    - A fixed per-attempt timeout on every request
    - Classification of every outcome into typed exceptions
      (validation, auth, conflict, rate_limited, transient)
    - Bounded exponential backoff for rate limits and transient failures
    - Page-number pagination for v2 list endpoints

Design Philosophy:
    This client knows HOW to talk to the ledger, but not WHAT to fetch.
    Resource knowledge belongs in the adapters that compose this client.
    One client is built per sync invocation, scoped to one site's
    credentials; there is no process-wide client.

Usage:
    async with LedgerClient(vendor_key, user_key, "LIC-001", base_url) as client:
        strains = await client.fetch_all("/strains/v2/active")
        await client.post("/strains/v2/", json_body=[{"Name": "Blue Dream"}])

Author: Ledger Sync Team
"""
import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import aiohttp

from .exceptions import (
    AuthError,
    ConfigurationError,
    ConflictError,
    ConnectionError,
    LedgerError,
    NetworkError,
    RateLimitError,
    ServerError,
    TimeoutError,
    ValidationError,
)
from .resilience import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

AuthFailureHandler = Callable[[AuthError], Awaitable[None]]

# Phrases the ledger uses in 4xx bodies when the resource already exists
CONFLICT_MARKERS = (
    "already exists",
    "already in use",
    "duplicate",
)


# ============================================
# Configuration
# ============================================

@dataclass
class PaginationConfig:
    """Configuration for paginated list requests.

    Attributes:
        page_size: Number of items per request
        delay_between_pages: Seconds to wait between requests (rate limiting)
        max_pages: Safety limit to prevent infinite loops (None = no limit)
    """
    page_size: int = 100
    delay_between_pages: float = 0.2
    max_pages: Optional[int] = None


def base_url_for(state_code: str, is_sandbox: bool) -> str:
    """Ledger base URL for a jurisdiction and environment."""
    if not state_code:
        raise ConfigurationError("State code is required to build the ledger URL")
    state = state_code.strip().lower()
    if is_sandbox:
        return f"https://sandbox-api-{state}.metrc.com"
    return f"https://api-{state}.metrc.com"


def _looks_like_conflict(body: str) -> bool:
    lowered = body.lower()
    return any(marker in lowered for marker in CONFLICT_MARKERS)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# ============================================
# The Client
# ============================================

class LedgerClient:
    """Async HTTP client for the regulatory ledger.

    Must be used as an async context manager so the session is closed:

        async with LedgerClient(...) as client:
            data = await client.get("/locations/v2/types")

    Attributes:
        license_number: Facility license sent with every request
        base_url: Base URL for API requests
        timeout_seconds: Per-attempt timeout
        retry_policy: Bounded backoff for transient failures
    """

    def __init__(
        self,
        vendor_key: str,
        user_key: str,
        license_number: str,
        base_url: str,
        timeout_seconds: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        on_auth_failure: Optional[AuthFailureHandler] = None,
    ):
        """Initialize the LedgerClient.

        Args:
            vendor_key: Integrator (software vendor) API key
            user_key: Facility user API key
            license_number: Facility license number
            base_url: Ledger base URL (see base_url_for)
            timeout_seconds: Per-attempt request timeout
            retry_policy: Retry configuration for transient failures
            on_auth_failure: Awaited once when a 401/403 is received

        Raises:
            ConfigurationError: If any credential is missing.
        """
        missing = [
            name
            for name, value in (
                ("vendor_key", vendor_key),
                ("user_key", user_key),
                ("license_number", license_number),
                ("base_url", base_url),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                "Ledger client is missing required credentials",
                missing_keys=missing,
            )

        self.license_number = license_number
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy()
        self._on_auth_failure = on_auth_failure
        self._auth_token = base64.b64encode(
            f"{vendor_key}:{user_key}".encode()
        ).decode()

        # Session is created in __aenter__, closed in __aexit__
        self._session: Optional[aiohttp.ClientSession] = None

    def __repr__(self) -> str:
        return f"LedgerClient(base_url={self.base_url!r}, license_number={self.license_number!r})"

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "LedgerClient":
        """Enter async context: create the HTTP session."""
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(
                limit=5,
                limit_per_host=5,
            ),
            timeout=aiohttp.ClientTimeout(
                total=self.timeout_seconds,
                connect=min(10.0, self.timeout_seconds),
            ),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context: close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Basic {self._auth_token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Any = None,
    ) -> Any:
        """Make a single HTTP request (no retry logic).

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint path (e.g., "/strains/v2/active")
            params: Extra query parameters (licenseNumber is always added)
            json_body: JSON request body

        Returns:
            Parsed JSON response, or None for an empty body

        Raises:
            LedgerError: Classified failure
            RuntimeError: If called outside of async context manager
        """
        if not self._session:
            raise RuntimeError(
                "LedgerClient must be used as async context manager: "
                "async with LedgerClient(...) as client:"
            )

        url = f"{self.base_url}{endpoint}"
        query = {"licenseNumber": self.license_number}
        if params:
            query.update({k: v for k, v in params.items() if v is not None})

        try:
            async with self._session.request(
                method=method,
                url=url,
                headers=self._headers(),
                params=query,
                json=json_body,
            ) as response:
                body = await response.text()

                if response.status >= 400:
                    raise self._create_api_error(
                        status=response.status,
                        method=method,
                        endpoint=endpoint,
                        response_body=body,
                        retry_after=response.headers.get("Retry-After"),
                    )

                if not body.strip():
                    return None
                return json.loads(body)

        except LedgerError:
            raise

        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Unparseable response from {method} {endpoint}",
                endpoint=endpoint,
                method=method,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Request to {endpoint} timed out",
                timeout_seconds=self.timeout_seconds,
                cause=e,
            )

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.base_url}",
                host=self.base_url,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {method} {endpoint}: {e}",
                cause=e,
            )

    def _create_api_error(
        self,
        status: int,
        method: str,
        endpoint: str,
        response_body: str,
        retry_after: Optional[str] = None,
    ) -> LedgerError:
        """Classify an HTTP error status into the typed hierarchy."""
        if status in (401, 403):
            return AuthError(
                f"Ledger rejected credentials for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                method=method,
            )

        if status == 429:
            return RateLimitError(
                f"Rate limit exceeded for {endpoint}",
                retry_after=_parse_retry_after(retry_after),
                endpoint=endpoint,
            )

        if status >= 500:
            return ServerError(
                f"Server error ({status}) for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 409 or _looks_like_conflict(response_body):
            return ConflictError(
                f"{method} {endpoint} conflicts with an existing record",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        # Every other 4xx is surfaced verbatim
        return ValidationError(
            response_body.strip() or f"{method} {endpoint} rejected ({status})",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Any = None,
    ) -> Any:
        """Make an HTTP request with bounded retry.

            - 401/403: notify the auth handler once, then raise AuthError
            - 429 and transient failures: exponential backoff up to the policy limit
            - Everything else: raise immediately
        """
        try:
            return await retry_async(
                self._request,
                method,
                endpoint,
                params,
                json_body,
                policy=self.retry_policy,
            )
        except AuthError as e:
            logger.critical(
                f"Ledger authentication failed for license {self.license_number}: {e}"
            )
            if self._on_auth_failure:
                await self._on_auth_failure(e)
            raise

    # ----------------------------------------
    # High-Level Request Methods
    # ----------------------------------------

    async def get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """Make a GET request."""
        return await self._request_with_retry("GET", endpoint, params=params)

    async def post(
        self,
        endpoint: str,
        json_body: Any = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a POST request."""
        return await self._request_with_retry("POST", endpoint, params=params, json_body=json_body)

    async def put(
        self,
        endpoint: str,
        json_body: Any = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a PUT request."""
        return await self._request_with_retry("PUT", endpoint, params=params, json_body=json_body)

    async def delete(
        self,
        endpoint: str,
        json_body: Any = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a DELETE request."""
        return await self._request_with_retry("DELETE", endpoint, params=params, json_body=json_body)

    # ----------------------------------------
    # Pagination
    # ----------------------------------------

    async def paginate(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        config: Optional[PaginationConfig] = None,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield pages of a list endpoint.

        Accepts both the v2 envelope ``{Data, TotalPages, ...}`` and a bare
        JSON array (single page).
        """
        config = config or PaginationConfig()
        page_number = 1

        while True:
            query = dict(params or {})
            query.update({"pageNumber": page_number, "pageSize": config.page_size})
            response = await self.get(endpoint, params=query)

            if response is None:
                return
            if isinstance(response, list):
                yield response
                return

            items = response.get("Data") or []
            yield items

            total_pages = response.get("TotalPages") or 1
            if not items or page_number >= total_pages:
                return
            if config.max_pages and page_number >= config.max_pages:
                logger.warning(f"Stopped paginating {endpoint} at max_pages={config.max_pages}")
                return

            page_number += 1
            if config.delay_between_pages:
                await asyncio.sleep(config.delay_between_pages)

    async def fetch_all(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        config: Optional[PaginationConfig] = None,
    ) -> list[dict[str, Any]]:
        """Fetch every item of a list endpoint."""
        items: list[dict[str, Any]] = []
        async for page in self.paginate(endpoint, params=params, config=config):
            items.extend(page)
        logger.debug(f"Fetched {len(items)} items from {endpoint}")
        return items


__all__ = [
    "LedgerClient",
    "PaginationConfig",
    "base_url_for",
]
