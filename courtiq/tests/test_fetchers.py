"""Tests for SourceClient: headers, URL building and failure mapping."""
from __future__ import annotations

import httpx
import pytest

from courtiq.config import Settings
from courtiq.fetchers import ITF_RANKINGS_URL, SourceClient, itf_player_slug


def _settings() -> Settings:
    return Settings(request_timeout_seconds=2.0, itf_timeout_seconds=3.0, request_delay_seconds=0.0)


def _client(handler) -> tuple[SourceClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SourceClient(_settings(), client=http), http


class TestItfPlayerSlug:
    @pytest.mark.parametrize("name,slug", [
        ("Ana Alvarez", "ana-alvarez"),
        ("  Mary-Jane   O'Neil ", "mary-jane-oneil"),
        ("José Núñez", "jos-nez"),
        ("", ""),
    ])
    def test_slug(self, name, slug):
        assert itf_player_slug(name) == slug


class TestSourceClient:
    @pytest.mark.asyncio
    async def test_success_returns_body_and_sends_browser_headers(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="<html>ok</html>")

        client, http = _client(handler)
        assert await client.fetch_player_page("12345") == "<html>ok</html>"
        await http.aclose()

        (request,) = seen
        assert request.url.path == "/player.asp"
        assert request.url.params["id"] == "12345"
        assert request.headers["Referer"] == "https://www.tennisrecruiting.net/"

    @pytest.mark.asyncio
    async def test_default_client_carries_user_agent(self):
        client = SourceClient(_settings())
        try:
            assert "Mozilla/5.0" in client._client.headers["User-Agent"]
            assert client._client.headers["Accept-Language"].startswith("en-US")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [403, 404, 500, 503])
    async def test_non_success_status_is_unavailable(self, status):
        client, http = _client(lambda request: httpx.Response(status, text="blocked"))
        assert await client.fetch_list_page(1275, 1) is None
        await http.aclose()

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client, http = _client(handler)
        assert await client.fetch_tr_activity("1") is None
        await http.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client, http = _client(handler)
        assert await client.fetch_player_page("1") is None
        await http.aclose()

    @pytest.mark.asyncio
    async def test_list_page_url(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="")

        client, http = _client(handler)
        await client.fetch_list_page(1285, 3)
        await http.aclose()
        assert seen[0].url.path == "/list.asp"
        assert dict(seen[0].url.params) == {"id": "1285", "page": "3"}

    @pytest.mark.asyncio
    async def test_itf_activity_url(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="<html></html>")

        client, http = _client(handler)
        await client.fetch_itf_activity("Ana Alvarez", "800123", "ESP")
        await client.fetch_itf_activity("Bea Brown", "800456", None)
        await http.aclose()
        assert seen[0].url.path == "/en/players/ana-alvarez/800123/esp/jt/s/activity"
        assert seen[1].url.path == "/en/players/bea-brown/800456/usa/jt/s/activity"

    @pytest.mark.asyncio
    async def test_itf_rankings_json(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"items": [{"playerId": "1", "rank": 1}]})

        client, http = _client(handler)
        assert await client.fetch_itf_rankings() == {"items": [{"playerId": "1", "rank": 1}]}
        await http.aclose()
        expected = httpx.URL(ITF_RANKINGS_URL)
        assert (seen[0].url.host, seen[0].url.path) == (expected.host, expected.path)
        assert seen[0].url.params["circuitCode"] == "JT"
        assert seen[0].headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_itf_rankings_not_json(self):
        client, http = _client(lambda request: httpx.Response(200, text="<html>challenge</html>"))
        assert await client.fetch_itf_rankings() is None
        await http.aclose()

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        client, http = _client(lambda request: httpx.Response(200, text=""))
        async with client:
            pass
        assert not http.is_closed
        await http.aclose()
