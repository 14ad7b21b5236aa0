"""Tests for the NVD and EUVD clients.

HTTP is served by httpx.MockTransport, so no real API calls are made.
"""

from datetime import datetime

import httpx
import pytest

from vulnwatch.errors import UpstreamCause, UpstreamError
from vulnwatch.sources import EUVDClient, NVDClient
from vulnwatch.sources.euvd import CRITICAL_ENDPOINT, EXPLOITED_ENDPOINT, LATEST_ENDPOINT
from vulnwatch.sources.nvd import MAX_RANGE_DAYS


def _transport(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


class TestNVDClient:
    """Tests for NVDClient request shapes and error mapping."""

    @pytest.mark.asyncio
    async def test_fetch_by_id_sends_cve_id(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"totalResults": 1, "vulnerabilities": []})

        client = NVDClient(interval=0, transport=_transport(handler))
        batches = await client.fetch_by_id("cve-2025-1234")

        assert seen[0].url.params["cveId"] == "CVE-2025-1234"
        assert batches[0].payload == {"totalResults": 1, "vulnerabilities": []}
        assert batches[0].matches_query is True

    @pytest.mark.asyncio
    async def test_api_key_header(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        client = NVDClient(api_key="secret", interval=0, transport=_transport(handler))
        await client.fetch_keyword("openssl", 90)

        assert seen[0].headers["apiKey"] == "secret"
        assert seen[0].url.params["keywordSearch"] == "openssl"
        assert client.using_api_key is True

    def test_interval_depends_on_api_key(self) -> None:
        assert NVDClient().rate_limiter.interval == 6.0
        assert NVDClient(api_key="k").rate_limiter.interval == 0.6

    @pytest.mark.asyncio
    async def test_date_range_window_is_clamped(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"vulnerabilities": []})

        client = NVDClient(interval=0, transport=_transport(handler))
        await client.fetch_date_range(365)

        params = seen[0].url.params
        assert "pubStartDate" in params
        assert "pubEndDate" in params
        assert params["resultsPerPage"] == "2000"
        start = datetime.strptime(params["pubStartDate"], "%Y-%m-%dT%H:%M:%S.000")
        end = datetime.strptime(params["pubEndDate"], "%Y-%m-%dT%H:%M:%S.000")
        assert (end - start).days == MAX_RANGE_DAYS

    @pytest.mark.asyncio
    async def test_http_status_error(self) -> None:
        client = NVDClient(
            interval=0, transport=_transport(lambda request: httpx.Response(403, json={}))
        )
        with pytest.raises(UpstreamError) as excinfo:
            await client.fetch_by_id("CVE-2025-1")

        assert excinfo.value.cause == UpstreamCause.HTTP_STATUS
        assert excinfo.value.status_code == 403
        assert excinfo.value.source == "NVD"

    @pytest.mark.asyncio
    async def test_timeout_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = NVDClient(interval=0, transport=_transport(handler))
        with pytest.raises(UpstreamError) as excinfo:
            await client.fetch_by_id("CVE-2025-1")

        assert excinfo.value.cause == UpstreamCause.TIMEOUT
        assert excinfo.value.status_code is None

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = NVDClient(interval=0, transport=_transport(handler))
        with pytest.raises(UpstreamError) as excinfo:
            await client.fetch_keyword("x", 30)

        assert excinfo.value.cause == UpstreamCause.NETWORK

    @pytest.mark.asyncio
    async def test_malformed_body_is_network_error(self) -> None:
        client = NVDClient(
            interval=0,
            transport=_transport(lambda request: httpx.Response(200, content=b"<html>")),
        )
        with pytest.raises(UpstreamError) as excinfo:
            await client.fetch_by_id("CVE-2025-1")

        assert excinfo.value.cause == UpstreamCause.NETWORK

    @pytest.mark.asyncio
    async def test_no_exploited_feed(self) -> None:
        assert await NVDClient(interval=0).fetch_exploited() == []

    def test_error_body(self) -> None:
        error = UpstreamError("HTTP 503", "NVD", UpstreamCause.HTTP_STATUS, status_code=503)
        assert error.to_dict() == {
            "success": False,
            "error": "NVD: HTTP 503",
            "cause": "http_status",
            "status_code": 503,
        }


class TestEUVDClient:
    """Tests for EUVDClient endpoints and the keyword fan-out."""

    @pytest.mark.asyncio
    async def test_fetch_by_id_uses_enisaid(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "EUVD-2025-1"})

        client = EUVDClient(base_url="https://euvd.test/api", interval=0, transport=_transport(handler))
        await client.fetch_by_id("euvd-2025-1")

        assert seen[0].url.path == "/api/enisaid"
        assert seen[0].url.params["id"] == "EUVD-2025-1"
        assert "vulnwatch" in seen[0].headers["User-Agent"]

    @pytest.mark.asyncio
    async def test_date_range_search_params(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"items": [], "total": 0})

        client = EUVDClient(base_url="https://euvd.test/api", interval=0, transport=_transport(handler))
        await client.fetch_date_range(7)

        params = seen[0].url.params
        assert seen[0].url.path == "/api/search"
        assert params["fromScore"] == "0"
        assert params["toScore"] == "10"
        assert params["size"] == "100"
        assert "text" not in params

    @pytest.mark.asyncio
    async def test_keyword_fans_out_to_all_endpoints(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": request.url.path.rsplit("/", 1)[-1]}])

        client = EUVDClient(base_url="https://euvd.test/api", interval=0, transport=_transport(handler))
        batches = await client.fetch_keyword("apache", 30)

        by_endpoint = {b.endpoint: b for b in batches}
        assert set(by_endpoint) == {LATEST_ENDPOINT, CRITICAL_ENDPOINT, EXPLOITED_ENDPOINT, "search"}
        assert by_endpoint["search"].matches_query is True
        assert by_endpoint[LATEST_ENDPOINT].matches_query is False
        assert by_endpoint[EXPLOITED_ENDPOINT].exploited is True
        assert by_endpoint[CRITICAL_ENDPOINT].exploited is False

    @pytest.mark.asyncio
    async def test_keyword_partial_failure_keeps_other_endpoints(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith(CRITICAL_ENDPOINT):
                return httpx.Response(500, json={})
            return httpx.Response(200, json=[])

        client = EUVDClient(base_url="https://euvd.test/api", interval=0, transport=_transport(handler))
        batches = await client.fetch_keyword("apache", 30)

        assert len(batches) == 3
        assert CRITICAL_ENDPOINT not in {b.endpoint for b in batches}

    @pytest.mark.asyncio
    async def test_keyword_fails_when_every_endpoint_fails(self) -> None:
        client = EUVDClient(
            base_url="https://euvd.test/api",
            interval=0,
            transport=_transport(lambda request: httpx.Response(502, json={})),
        )
        with pytest.raises(UpstreamError) as excinfo:
            await client.fetch_keyword("apache", 30)

        assert excinfo.value.status_code == 502
        assert excinfo.value.source == "EUVD"

    @pytest.mark.asyncio
    async def test_fetch_exploited_tags_batch(self) -> None:
        client = EUVDClient(
            base_url="https://euvd.test/api",
            interval=0,
            transport=_transport(lambda request: httpx.Response(200, json=[])),
        )
        batches = await client.fetch_exploited()
        assert batches[0].endpoint == EXPLOITED_ENDPOINT
        assert batches[0].exploited is True
