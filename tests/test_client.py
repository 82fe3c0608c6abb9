#!/usr/bin/env python3
"""Unit tests for the ledger HTTP client.

Tests cover:
    - Credential validation and base URL derivation
    - Authentication header and licenseNumber scoping
    - Classification of HTTP outcomes into typed errors
    - Retry of transient failures and the auth failure hook
    - Pagination of v2 list endpoints
"""
import asyncio
import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from src.ledger.api.client import LedgerClient, PaginationConfig, base_url_for
from src.ledger.api.exceptions import (
    AuthError,
    ConfigurationError,
    ConflictError,
    ConnectionError,
    NetworkError,
    RateLimitError,
    ServerError,
    TimeoutError,
    ValidationError,
)
from src.ledger.api.resilience import NO_RETRY, RetryPolicy


# ============================================
# Helpers
# ============================================

def _response(status=200, body="", headers=None):
    """Mock aiohttp response usable as an async context manager."""
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.text = AsyncMock(return_value=body if isinstance(body, str) else json.dumps(body))
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


def _client(*responses, policy=NO_RETRY, on_auth_failure=None):
    client = LedgerClient(
        "vendor-key", "user-key", "LIC-0001", "https://sandbox-api-ca.metrc.com/",
        timeout_seconds=30, retry_policy=policy, on_auth_failure=on_auth_failure,
    )
    client._session = MagicMock()
    client._session.request = MagicMock(side_effect=list(responses))
    return client


@pytest.fixture
def no_sleep():
    with patch("src.ledger.api.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


# ============================================
# Construction
# ============================================

class TestConstruction:
    def test_missing_credentials(self):
        with pytest.raises(ConfigurationError) as exc_info:
            LedgerClient("", "user-key", "", "https://api-ca.metrc.com")

        assert exc_info.value.details["missing_keys"] == ["vendor_key", "license_number"]

    def test_base_url_for(self):
        assert base_url_for("CA", True) == "https://sandbox-api-ca.metrc.com"
        assert base_url_for(" co ", False) == "https://api-co.metrc.com"
        with pytest.raises(ConfigurationError):
            base_url_for("", False)

    def test_repr_hides_keys(self):
        client = LedgerClient("vendor-key", "user-key", "LIC-0001", "https://api-ca.metrc.com")
        assert "vendor-key" not in repr(client)
        assert "user-key" not in repr(client)

    @pytest.mark.asyncio
    async def test_request_outside_context_manager(self):
        client = LedgerClient("vendor-key", "user-key", "LIC-0001", "https://api-ca.metrc.com")

        with pytest.raises(RuntimeError):
            await client.get("/strains/v2/active")

    @pytest.mark.asyncio
    async def test_context_manager_opens_and_closes_session(self):
        session = MagicMock()
        session.close = AsyncMock()

        with patch("src.ledger.api.client.aiohttp.TCPConnector"), \
                patch("src.ledger.api.client.aiohttp.ClientSession", return_value=session):
            async with LedgerClient("v", "u", "LIC-0001", "https://api-ca.metrc.com") as client:
                assert client._session is session

        session.close.assert_awaited_once()
        assert client._session is None


# ============================================
# Requests
# ============================================

class TestRequests:
    @pytest.mark.asyncio
    async def test_auth_header_and_license_scope(self):
        client = _client(_response(200, [{"Id": 1}]))

        result = await client.get("/strains/v2/active", params={"lastModifiedStart": None, "x": 1})

        assert result == [{"Id": 1}]
        kwargs = client._session.request.call_args.kwargs
        assert kwargs["url"] == "https://sandbox-api-ca.metrc.com/strains/v2/active"
        assert kwargs["params"] == {"licenseNumber": "LIC-0001", "x": 1}
        expected = base64.b64encode(b"vendor-key:user-key").decode()
        assert kwargs["headers"]["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self):
        client = _client(_response(200, ""))

        result = await client.post("/strains/v2/", json_body=[{"Name": "Blue Dream"}])

        assert result is None
        kwargs = client._session.request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["json"] == [{"Name": "Blue Dream"}]

    @pytest.mark.asyncio
    async def test_unparseable_body(self):
        client = _client(_response(200, "<html>oops</html>"))

        with pytest.raises(ValidationError):
            await client.get("/strains/v2/active")


# ============================================
# Error Classification
# ============================================

class TestErrorClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, body, error_type", [
        (400, "Strain name is required", ValidationError),
        (404, "", ValidationError),
        (401, "", AuthError),
        (403, "Forbidden", AuthError),
        (409, "Conflict", ConflictError),
        (400, "A strain with the name Blue Dream already exists", ConflictError),
        (400, "Tag 1A4FF01000000220000001 is already in use", ConflictError),
        (429, "", RateLimitError),
        (500, "Internal error", ServerError),
        (503, "", ServerError),
    ])
    async def test_status_mapping(self, status, body, error_type):
        client = _client(_response(status, body))

        with pytest.raises(error_type):
            await client.get("/strains/v2/active")

    @pytest.mark.asyncio
    async def test_validation_message_is_the_ledger_body(self):
        client = _client(_response(400, "  Location Flower 9 does not exist  "))

        with pytest.raises(ValidationError) as exc_info:
            await client.post("/plantbatches/v2/plantings", json_body=[])

        assert exc_info.value.message == "Location Flower 9 does not exist"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after(self):
        client = _client(_response(429, "", headers={"Retry-After": "12"}))

        with pytest.raises(RateLimitError) as exc_info:
            await client.get("/packages/v2/active")

        assert exc_info.value.retry_after == 12.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raised, error_type", [
        (asyncio.TimeoutError(), TimeoutError),
        (aiohttp.ClientConnectionError("refused"), ConnectionError),
        (aiohttp.ClientPayloadError("truncated"), NetworkError),
    ])
    async def test_transport_errors(self, raised, error_type):
        client = _client(raised)

        with pytest.raises(error_type) as exc_info:
            await client.get("/strains/v2/active")

        assert exc_info.value.cause is raised


# ============================================
# Retry and Auth Hook
# ============================================

class TestRetry:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, no_sleep):
        client = _client(_response(503), _response(200, []), policy=RetryPolicy(max_attempts=3))

        assert await client.get("/strains/v2/active") == []
        assert client._session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, no_sleep):
        client = _client(*(_response(502) for _ in range(3)), policy=RetryPolicy(max_attempts=3))

        with pytest.raises(ServerError) as exc_info:
            await client.get("/strains/v2/active")

        assert exc_info.value.attempts == 3
        assert client._session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_validation_is_not_retried(self, no_sleep):
        client = _client(_response(400, "bad"), _response(200, []), policy=RetryPolicy(max_attempts=3))

        with pytest.raises(ValidationError):
            await client.get("/strains/v2/active")

        assert client._session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_auth_failure_hook_called_once(self, no_sleep):
        hook = AsyncMock()
        client = _client(_response(401), policy=RetryPolicy(max_attempts=3), on_auth_failure=hook)

        with pytest.raises(AuthError):
            await client.get("/strains/v2/active")

        hook.assert_awaited_once()
        assert isinstance(hook.await_args.args[0], AuthError)
        assert client._session.request.call_count == 1


# ============================================
# Pagination
# ============================================

class TestPagination:
    @pytest.mark.asyncio
    async def test_fetch_all_follows_total_pages(self):
        client = _client(
            _response(200, {"Data": [{"Id": 1}, {"Id": 2}], "TotalPages": 2}),
            _response(200, {"Data": [{"Id": 3}], "TotalPages": 2}),
        )

        items = await client.fetch_all("/packages/v2/active", config=PaginationConfig(page_size=2, delay_between_pages=0))

        assert [i["Id"] for i in items] == [1, 2, 3]
        pages = [c.kwargs["params"]["pageNumber"] for c in client._session.request.call_args_list]
        assert pages == [1, 2]
        assert client._session.request.call_args.kwargs["params"]["pageSize"] == 2

    @pytest.mark.asyncio
    async def test_bare_list_is_one_page(self):
        client = _client(_response(200, [{"Id": 1}]))

        assert await client.fetch_all("/locations/v2/types") == [{"Id": 1}]
        assert client._session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_max_pages(self):
        client = _client(
            _response(200, {"Data": [{"Id": 1}], "TotalPages": 5}),
            _response(200, {"Data": [{"Id": 2}], "TotalPages": 5}),
        )

        items = await client.fetch_all(
            "/harvests/v2/active", config=PaginationConfig(page_size=1, delay_between_pages=0, max_pages=2)
        )

        assert len(items) == 2

    @pytest.mark.asyncio
    async def test_empty_body_ends_pagination(self):
        client = _client(_response(200, ""))

        assert await client.fetch_all("/transfers/v2/incoming") == []
