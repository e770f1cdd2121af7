"""Tests for the Polygon options snapshot connector.

Uses respx to mock the v3 snapshot endpoint and verify:
- next_url pagination and query parameters
- the 50-page ceiling
- per-page status retry, then abort with no partial result
- HTTP failure, rate limit and malformed JSON handling
- missing API key
"""

from __future__ import annotations

import httpx
import pytest
import respx

from options_pipeline.connectors.base import (
    ConfigurationError,
    DataParsingError,
    FetchError,
    RateLimitError,
    UpstreamStatusError,
)
from options_pipeline.connectors.polygon_options import PolygonOptionsConnector

BASE_URL = "https://api.polygon.io"
SNAPSHOT_PATH = "/v3/snapshot/options/XYZ"
NEXT_URL = f"{BASE_URL}{SNAPSHOT_PATH}?cursor=page2"


def _page(results: list, next_url: str | None = None, status: str = "OK") -> dict:
    body = {"status": status, "request_id": "req-1", "results": results}
    if next_url:
        body["next_url"] = next_url
    return body


def _contracts(prefix: str, count: int) -> list[dict]:
    return [{"details": {"ticker": f"O:{prefix}{i:05d}"}} for i in range(count)]


def _connector(**kwargs) -> PolygonOptionsConnector:
    kwargs.setdefault("api_key", "test-key")
    kwargs.setdefault("page_delay", 0)
    return PolygonOptionsConnector(**kwargs)


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_fetch_follows_next_url():
    """Two pages (100 + 20) are concatenated in page order."""
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get(SNAPSHOT_PATH).mock(
            side_effect=[
                httpx.Response(200, json=_page(_contracts("A", 100), next_url=NEXT_URL)),
                httpx.Response(200, json=_page(_contracts("B", 20))),
            ]
        )
        async with _connector() as conn:
            contracts = await conn.fetch_all_contracts("xyz")

    assert len(contracts) == 120
    assert contracts[0]["details"]["ticker"] == "O:A00000"
    assert contracts[-1]["details"]["ticker"] == "O:B00019"
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_first_page_params_and_cursor_pages():
    """The first page sends limit and apiKey; cursor pages re-add only apiKey."""
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get(SNAPSHOT_PATH).mock(
            side_effect=[
                httpx.Response(200, json=_page(_contracts("A", 1), next_url=NEXT_URL)),
                httpx.Response(200, json=_page(_contracts("B", 1))),
            ]
        )
        async with _connector(page_size=100) as conn:
            await conn.fetch_all_contracts("XYZ")

    first = route.calls[0].request.url.params
    assert first["limit"] == "100"
    assert first["apiKey"] == "test-key"

    second = route.calls[1].request.url.params
    assert second["cursor"] == "page2"
    assert second["apiKey"] == "test-key"
    assert "limit" not in second


@pytest.mark.asyncio
async def test_page_ceiling_stops_fetch():
    """A chain that always offers next_url stops after max_pages pages."""

    def endless(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_page(_contracts("C", 1), next_url=NEXT_URL))

    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get(SNAPSHOT_PATH).mock(side_effect=endless)
        async with _connector(max_pages=50) as conn:
            contracts = await conn.fetch_all_contracts("XYZ")

    assert route.call_count == 50
    assert len(contracts) == 50


@pytest.mark.asyncio
async def test_page_without_results_is_empty():
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get(SNAPSHOT_PATH).respond(200, json={"status": "OK", "request_id": "req-1"})
        async with _connector() as conn:
            contracts = await conn.fetch_all_contracts("XYZ")

    assert contracts == []


@pytest.mark.asyncio
async def test_results_not_a_list_raises():
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get(SNAPSHOT_PATH).respond(200, json={"status": "OK", "results": {"a": 1}})
        async with _connector() as conn:
            with pytest.raises(DataParsingError):
                await conn.fetch_all_contracts("XYZ")


# ---------------------------------------------------------------------------
# Retry and failure handling
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_non_ok_status_is_retried(no_backoff):
    """A page reporting a non-OK status is re-requested."""
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get(SNAPSHOT_PATH).mock(
            side_effect=[
                httpx.Response(200, json=_page([], status="ERROR")),
                httpx.Response(200, json=_page(_contracts("A", 3))),
            ]
        )
        async with _connector() as conn:
            contracts = await conn.fetch_all_contracts("XYZ")

    assert len(contracts) == 3
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_persistent_non_ok_status_aborts(no_backoff):
    """Three non-OK responses abort the fetch; no partial chain is returned."""
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get(SNAPSHOT_PATH).mock(
            side_effect=[
                httpx.Response(200, json=_page(_contracts("A", 100), next_url=NEXT_URL)),
                httpx.Response(200, json=_page([], status="ERROR")),
                httpx.Response(200, json=_page([], status="ERROR")),
                httpx.Response(200, json=_page([], status="ERROR")),
            ]
        )
        async with _connector() as conn:
            with pytest.raises(UpstreamStatusError):
                await conn.fetch_all_contracts("XYZ")

    assert route.call_count == 4


@pytest.mark.asyncio
async def test_server_error_raises_fetch_error(no_backoff):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get(SNAPSHOT_PATH).respond(500)
        async with _connector() as conn:
            with pytest.raises(FetchError):
                await conn.fetch_all_contracts("XYZ")

    assert route.call_count == PolygonOptionsConnector.MAX_RETRIES


@pytest.mark.asyncio
async def test_server_error_then_success(no_backoff):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get(SNAPSHOT_PATH).mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(200, json=_page(_contracts("A", 2))),
            ]
        )
        async with _connector() as conn:
            contracts = await conn.fetch_all_contracts("XYZ")

    assert len(contracts) == 2


@pytest.mark.asyncio
async def test_rate_limit_raises_after_retries(no_backoff):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get(SNAPSHOT_PATH).respond(429)
        async with _connector() as conn:
            with pytest.raises(RateLimitError):
                await conn.fetch_all_contracts("XYZ")

    assert route.call_count == PolygonOptionsConnector.MAX_RETRIES


@pytest.mark.asyncio
async def test_malformed_json_is_not_retried(no_backoff):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get(SNAPSHOT_PATH).respond(200, text="<html>not json</html>")
        async with _connector() as conn:
            with pytest.raises(DataParsingError):
                await conn.fetch_all_contracts("XYZ")

    assert route.call_count == 1


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_missing_api_key_raises_before_request():
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as mock:
        route = mock.get(SNAPSHOT_PATH).respond(200, json=_page([]))
        async with _connector(api_key="") as conn:
            with pytest.raises(ConfigurationError):
                await conn.fetch_all_contracts("XYZ")

    assert route.call_count == 0


@pytest.mark.asyncio
async def test_client_required():
    conn = _connector()
    with pytest.raises(Exception, match="HTTP client not initialized"):
        await conn.fetch_all_contracts("XYZ")


def test_defaults_from_settings():
    conn = PolygonOptionsConnector(api_key="k")
    assert conn.base_url == "https://api.polygon.io"
    assert conn.page_size == 100
    assert conn.max_pages == 50
