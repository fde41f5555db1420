import os
import sys
import asyncio
import json
import httpx
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from expiry import Navigator, SessionExpiryHandler
from gateway import GatewayResponse, RequestGateway
from session_store import LocalStorage, SessionStore


def make_gateway(tmp_path, handler, token=None):
    store = SessionStore(LocalStorage(str(tmp_path / "session.yaml")))
    if token:
        store.set(token, issued_via="test")
    navigator = Navigator()
    expiry = SessionExpiryHandler(store, navigator)
    gateway = RequestGateway(
        store, expiry, "http://dashboard.test", transport=httpx.MockTransport(handler)
    )
    return store, navigator, gateway


@pytest.mark.asyncio
async def test_call_posts_envelope_with_bearer(tmp_path):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"success": True, "data": [{"id": 1}]})

    store, navigator, gateway = make_gateway(tmp_path, handler, "T1")
    async with gateway:
        resp = await gateway.call("dashboard", "get")

    assert isinstance(resp, GatewayResponse)
    assert resp.status == 200
    assert resp.records == [{"id": 1}]
    assert resp.success is True
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/proxy"
    assert request.headers["Authorization"] == "Bearer T1"
    body = json.loads(request.content)
    assert body["mdl"] == "dashboard"
    assert body["act"] == "get"
    assert body["id"] == "all"
    assert body["access_token"] == "T1"
    assert body["user_type"] == "coach"


@pytest.mark.asyncio
async def test_call_without_token_is_still_sent(tmp_path):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"result": True, "message": "OTP sent"})

    store, navigator, gateway = make_gateway(tmp_path, handler)
    async with gateway:
        await gateway.call("login", "otp", {"phone": "0501234567"})

    assert "Authorization" not in seen[0].headers
    body = json.loads(seen[0].content)
    assert body["phone"] == "0501234567"
    assert "access_token" not in body


@pytest.mark.asyncio
async def test_body_enrichment_from_storage(tmp_path):
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=[])

    store, navigator, gateway = make_gateway(tmp_path, handler, "T1")
    store.remember_user("0501234567")
    async with gateway:
        await gateway.call("trainees", "list", {"search": "ana"})
        await gateway.call("groups", "set", {"name": "Cut", "user_type": "admin"})

    assert seen[0]["phone"] == "0501234567"
    assert seen[0]["user_id"] == "0501234567"
    assert seen[0]["search"] == "ana"
    assert "id" not in seen[0]
    assert seen[1]["user_type"] == "admin"


@pytest.mark.asyncio
async def test_unauthorized_clears_session_before_caller_sees_error(tmp_path):
    def handler(request):
        return httpx.Response(401, json={"error": "expired"})

    store, navigator, gateway = make_gateway(tmp_path, handler, "T1")
    async with gateway:
        try:
            await gateway.call("dashboard", "get")
        except httpx.HTTPStatusError as e:
            assert e.response.status_code == 401
            assert store.get() is None
            assert navigator.history == ["/login"]
        else:
            pytest.fail("401 did not raise")


@pytest.mark.asyncio
async def test_concurrent_unauthorized_redirects_once(tmp_path):
    async def handler(request):
        await asyncio.sleep(0)
        return httpx.Response(401)

    store, navigator, gateway = make_gateway(tmp_path, handler, "T1")
    async with gateway:
        results = await asyncio.gather(
            *[gateway.call("dashboard", "get") for _ in range(4)],
            return_exceptions=True,
        )
    assert all(isinstance(r, httpx.HTTPStatusError) for r in results)
    assert navigator.history == ["/login"]
    assert store.get() is None


@pytest.mark.asyncio
async def test_late_unauthorized_after_relogin_is_ignored(tmp_path):
    store_ref = {}

    def handler(request):
        # the user signs in again while this request is in flight
        store_ref["store"].set("T2")
        return httpx.Response(401)

    store, navigator, gateway = make_gateway(tmp_path, handler, "T1")
    store_ref["store"] = store
    async with gateway:
        with pytest.raises(httpx.HTTPStatusError):
            await gateway.call("dashboard", "get")
    assert store.get() == "T2"
    assert navigator.history == []


@pytest.mark.asyncio
async def test_server_error_propagates_without_teardown(tmp_path):
    def handler(request):
        return httpx.Response(500, json={"error": "API responded with status: 500"})

    store, navigator, gateway = make_gateway(tmp_path, handler, "T1")
    async with gateway:
        with pytest.raises(httpx.HTTPStatusError):
            await gateway.call("settings", "get")
    assert store.get() == "T1"
    assert navigator.history == []


@pytest.mark.asyncio
async def test_transport_error_propagates(tmp_path):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    store, navigator, gateway = make_gateway(tmp_path, handler, "T1")
    async with gateway:
        with pytest.raises(httpx.ConnectError):
            await gateway.call("settings", "get")
    assert store.get() == "T1"


@pytest.mark.asyncio
async def test_non_json_body_degrades_to_empty(tmp_path):
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    store, navigator, gateway = make_gateway(tmp_path, handler, "T1")
    async with gateway:
        resp = await gateway.call("reportings", "list")
    assert resp.data is None
    assert resp.records == []


@pytest.mark.asyncio
async def test_in_band_relogin_tears_session_down(tmp_path):
    def handler(request):
        return httpx.Response(
            200, json={"result": False, "error": "coach not found. please re-login"}
        )

    store, navigator, gateway = make_gateway(tmp_path, handler, "T1")
    async with gateway:
        resp = await gateway.call("dashboard", "get")
    assert resp.records == []
    assert store.get() is None
    assert navigator.history[0].startswith("/login?error=coach_not_found")


@pytest.mark.asyncio
async def test_every_caller_sees_error_after_restart_finished(tmp_path):
    events = []

    async def handler(request):
        await asyncio.sleep(0)
        return httpx.Response(401)

    async def restart(url):
        await asyncio.sleep(0.05)
        events.append("restart-done")

    store = SessionStore(LocalStorage(str(tmp_path / "session.yaml")))
    store.set("T1", issued_via="test")
    navigator = Navigator(on_restart=restart)
    gateway = RequestGateway(
        store,
        SessionExpiryHandler(store, navigator),
        "http://dashboard.test",
        transport=httpx.MockTransport(handler),
    )

    async def caller():
        try:
            await gateway.call("dashboard", "get")
        except httpx.HTTPStatusError:
            events.append("caller-error")

    async with gateway:
        await asyncio.gather(caller(), caller(), caller())
    assert events == ["restart-done", "caller-error", "caller-error", "caller-error"]
    assert navigator.history == ["/login"]
