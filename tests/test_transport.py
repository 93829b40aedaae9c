from __future__ import annotations

import json
from typing import Any

import aiohttp
import pytest

from farmguard._transport import RestTransport
from farmguard.config import FarmGuardConfig
from farmguard.exceptions import BackendError, TransportError


class _Response:
    def __init__(self, status: int, text: str) -> None:
        self.status = status
        self._text = text

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> _Response:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        return None


class _FakeHttp:
    """Records requests and replays canned responses in order."""

    def __init__(self, *responses: _Response | Exception) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _Response:
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _transport(*responses: _Response | Exception) -> tuple[RestTransport, _FakeHttp]:
    http = _FakeHttp(*responses)
    config = FarmGuardConfig(url="https://demo.supabase.co", anon_key="anon-key", schema="farm")
    return RestTransport(config, http), http  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_fetch_all_builds_ordered_select() -> None:
    transport, http = _transport(_Response(200, json.dumps([{"id": 1}, {"id": 2}, "junk"])))

    rows = await transport.fetch_all("fire_zones", order_by="reported_at", descending=True)

    assert rows == [{"id": 1}, {"id": 2}]
    call = http.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://demo.supabase.co/rest/v1/fire_zones"
    assert call["params"] == {"select": "*", "order": "reported_at.desc"}
    headers = call["headers"]
    assert headers["apikey"] == "anon-key"
    assert headers["authorization"] == "Bearer anon-key"
    assert headers["accept-profile"] == "farm"


@pytest.mark.asyncio
async def test_fetch_all_empty_body_is_empty_list() -> None:
    transport, _ = _transport(_Response(200, ""))
    assert await transport.fetch_all("team_members") == []


@pytest.mark.asyncio
async def test_update_patches_by_id_and_returns_row() -> None:
    transport, http = _transport(_Response(200, json.dumps([{"id": 7, "status": "On Duty"}])))

    row = await transport.update("team_members", 7, {"status": "On Duty"})

    assert row == {"id": 7, "status": "On Duty"}
    call = http.calls[0]
    assert call["method"] == "PATCH"
    assert call["params"] == {"id": "eq.7"}
    assert json.loads(call["data"]) == {"status": "On Duty"}
    assert call["headers"]["prefer"] == "return=representation"


@pytest.mark.asyncio
async def test_update_matching_no_row_raises() -> None:
    transport, _ = _transport(_Response(200, "[]"))
    with pytest.raises(BackendError) as exc_info:
        await transport.update("team_members", 404, {"status": "x"})
    assert exc_info.value.code == "not_found"


@pytest.mark.asyncio
async def test_error_body_maps_to_backend_error() -> None:
    body = {"code": "42501", "message": "permission denied for table team_members"}
    transport, _ = _transport(_Response(403, json.dumps(body)))

    with pytest.raises(BackendError) as exc_info:
        await transport.update("team_members", 7, {"status": "x"})

    exc = exc_info.value
    assert exc.status_code == 403
    assert exc.code == "42501"
    assert exc.endpoint == "PATCH /team_members"
    assert "permission denied" in str(exc)


@pytest.mark.asyncio
async def test_network_failure_maps_to_transport_error() -> None:
    transport, _ = _transport(aiohttp.ClientConnectionError("connection refused"))
    with pytest.raises(TransportError, match="connection refused"):
        await transport.fetch_all("security_points")


@pytest.mark.asyncio
async def test_timeout_maps_to_transport_error() -> None:
    transport, _ = _transport(TimeoutError())
    with pytest.raises(TransportError, match="timed out"):
        await transport.fetch_all("security_points")


@pytest.mark.asyncio
async def test_invalid_json_maps_to_transport_error() -> None:
    transport, _ = _transport(_Response(200, "<html>gateway</html>"))
    with pytest.raises(TransportError) as exc_info:
        await transport.fetch_all("fire_zones")
    assert exc_info.value.status_code == 200


@pytest.mark.asyncio
async def test_non_list_body_rejected() -> None:
    transport, _ = _transport(_Response(200, json.dumps({"id": 1})))
    with pytest.raises(TransportError, match="Expected a list"):
        await transport.fetch_all("fire_zones")
