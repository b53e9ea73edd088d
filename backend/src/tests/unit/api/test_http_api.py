"""Tests for the HTTP surface: /rpc, the plugin management API and health probes."""

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from toolgate.main import create_app

API_KEY = "test-key"
ADMIN_KEY = "admin-key"
LOOKUP_SCHEMA = {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}


def _upstream(request: httpx.Request) -> httpx.Response:
    payload = json.loads(request.content)
    return httpx.Response(200, json={"answer": payload["arguments"]["q"], "caller": payload["context_id"]})


class _BlockingUpstream:
    """Plugin endpoint that never answers and records whether its call was cancelled."""

    def __init__(self):
        self.started = False
        self.cancelled = False
        self.release = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.started = True
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return httpx.Response(200, json={})


def _headers(context_type: str | None = None, context_id: int | None = None, key: str | None = API_KEY) -> dict:
    headers = {}
    if key is not None:
        headers["x-api-key"] = key
    if context_type is not None:
        headers["x-context-type"] = context_type
        headers["x-context-id"] = str(context_id)
    return headers


USER_555 = _headers("user", 555)
USER_999 = _headers("user", 999)
GROUP_42 = _headers("group", -42)


@pytest.fixture
def make_client(make_settings):
    clients: list[TestClient] = []

    def _make(transport: httpx.AsyncBaseTransport | None = None, **overrides) -> TestClient:
        values = {
            "auth_enabled": True,
            "api_keys": [API_KEY],
            "admin_api_keys": [ADMIN_KEY],
            "builtin_tools_enabled": False,
        }
        values.update(overrides)
        app = create_app(make_settings(**values), http_transport=transport or httpx.MockTransport(_upstream))
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


def _rpc(client: TestClient, method: str, params: dict | None = None, headers: dict | None = None, request_id=1):
    message: dict = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    if request_id is not None:
        message["id"] = request_id
    return client.post("/rpc", json=message, headers=headers if headers is not None else _headers())


def _register(client: TestClient, base_name: str = "lookup", headers: dict = USER_555, **extra) -> dict:
    body = {"base_name": base_name, "input_schema": LOOKUP_SCHEMA, "endpoint_url": "https://plugins.example.com/lookup"}
    body.update(extra)
    response = client.post("/api/v1/tools", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _listed(client: TestClient, headers: dict) -> list[str]:
    response = _rpc(client, "tools/list", headers=headers)
    return [tool["name"] for tool in response.json()["result"]["tools"]]


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_liveness(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["data"]["alive"] is True

    def test_readiness(self, client):
        response = client.get("/readyz")
        assert response.status_code == 200
        assert response.json()["data"]["checks"]["database"] == "ready"

    def test_request_id_and_timing_headers(self, client):
        response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Response-Time"].endswith("s")


# ---------------------------------------------------------------------------
# /rpc
# ---------------------------------------------------------------------------


class TestRpcEndpoint:
    def test_missing_api_key_is_unauthenticated(self, client):
        response = _rpc(client, "ping", headers=_headers(key=None))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == -32001
        assert response.json()["id"] == 1

    def test_wrong_api_key_is_unauthenticated(self, client):
        response = _rpc(client, "ping", headers=_headers(key="nope"))
        assert response.json()["error"]["code"] == -32001

    def test_auth_can_be_disabled(self, make_client):
        client = make_client(auth_enabled=False)
        response = _rpc(client, "ping", headers={})
        assert response.json()["result"] == {}

    def test_stateless_requests_auto_initialize(self, client):
        response = _rpc(client, "tools/list")
        assert response.status_code == 200
        assert response.json()["result"] == {"tools": []}

    def test_initialize(self, client):
        result = _rpc(client, "initialize", {"clientInfo": {"name": "tests"}}).json()["result"]
        assert result["capabilities"] == {"tools": {}}
        assert result["serverInfo"]["name"] == "toolgate"

    def test_parse_error(self, client):
        response = client.post("/rpc", content=b"{oops", headers=_headers())
        assert response.json()["error"]["code"] == -32700

    def test_batch_is_invalid_request(self, client):
        response = client.post("/rpc", json=[{"jsonrpc": "2.0", "id": 1, "method": "ping"}], headers=_headers())
        assert response.json()["error"]["code"] == -32600

    def test_notification_has_no_body(self, client):
        response = _rpc(client, "notifications/initialized", request_id=None)
        assert response.status_code == 204
        assert response.content == b""

    def test_invalid_context_header(self, client):
        response = _rpc(client, "tools/list", headers=_headers("user", -5))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32602

    def test_partial_context_header(self, client):
        headers = {**_headers(), "x-context-type": "user"}
        response = _rpc(client, "tools/list", headers=headers)
        assert response.json()["error"]["code"] == -32602

    def test_rate_limit(self, make_client):
        client = make_client(rate_limit_enabled=True, rate_limit_requests=2)
        assert _rpc(client, "ping", headers=USER_555).status_code == 200
        second = _rpc(client, "ping", headers=USER_555)
        assert second.headers["X-RateLimit-Remaining"] == "0"

        third = _rpc(client, "ping", headers=USER_555)
        assert third.status_code == 429
        assert third.json()["error"]["code"] == -32029
        assert int(third.headers["Retry-After"]) > 0

        # Another context under the same key has its own bucket
        assert _rpc(client, "ping", headers=USER_999).status_code == 200

    def test_oversized_body_is_rejected(self, make_client):
        client = make_client(max_request_bytes=256)
        response = _rpc(client, "tools/call", {"name": "x", "arguments": {"blob": "a" * 1024}})
        assert response.status_code == 413
        assert response.json()["error"]["code"] == "REQUEST_TOO_LARGE"

    def test_call_registered_plugin(self, client):
        plugin = _register(client)
        response = _rpc(client, "tools/call", {"name": plugin["fqn"], "arguments": {"q": "cats"}}, headers=USER_555)
        text = response.json()["result"]["content"][0]["text"]
        assert json.loads(text) == {"answer": "cats", "caller": "555"}

    def test_client_disconnect_cancels_call(self, make_client, monkeypatch):
        upstream = _BlockingUpstream()
        client = make_client(transport=httpx.MockTransport(upstream))
        plugin = _register(client)

        async def _disconnected(self) -> bool:
            return True

        monkeypatch.setattr(Request, "is_disconnected", _disconnected)
        response = _rpc(client, "tools/call", {"name": plugin["fqn"], "arguments": {"q": "x"}}, headers=USER_555)

        assert response.status_code == 499
        assert upstream.started is True
        assert upstream.cancelled is True


# ---------------------------------------------------------------------------
# Management API
# ---------------------------------------------------------------------------


class TestManagementApi:
    def test_register_returns_identity(self, client):
        data = _register(client)
        assert data["fqn"] == "user_555_lookup_v1"
        assert data["version"] == 1
        assert data["plugin_id"]

    def test_management_requires_context(self, client):
        response = client.post(
            "/api/v1/tools",
            json={"base_name": "x", "input_schema": LOOKUP_SCHEMA, "endpoint_url": "https://e.example.com"},
            headers=_headers(),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_CONTEXT"

    def test_management_requires_api_key(self, client):
        response = client.get("/api/v1/tools", headers={"x-context-type": "user", "x-context-id": "555"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"

    def test_duplicate_registration_conflicts(self, client):
        _register(client)
        response = client.post(
            "/api/v1/tools",
            json={"base_name": "lookup", "input_schema": LOOKUP_SCHEMA, "endpoint_url": "https://e.example.com"},
            headers=USER_555,
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT"

    def test_invalid_schema_is_unprocessable(self, client):
        response = client.post(
            "/api/v1/tools",
            json={"base_name": "bad", "input_schema": {"type": "nope"}, "endpoint_url": "https://e.example.com"},
            headers=USER_555,
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_SCHEMA"

    def test_body_validation_errors_use_envelope(self, client):
        response = client.post("/api/v1/tools", json={"base_name": "x"}, headers=USER_555)
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_update_get_and_list(self, client):
        v1 = _register(client)
        response = client.put(
            f"/api/v1/tools/{v1['plugin_id']}",
            json={"description": "Second", "expected_version": 1},
            headers=USER_555,
        )
        assert response.status_code == 200
        v2 = response.json()["data"]
        assert v2["fqn"] == "user_555_lookup_v2"

        detail = client.get(f"/api/v1/tools/{v2['plugin_id']}", headers=USER_555).json()["data"]
        assert detail["description"] == "Second"
        assert detail["input_schema"] == LOOKUP_SCHEMA

        visible = client.get("/api/v1/tools", headers=USER_555).json()["data"]
        assert [p["fqn"] for p in visible] == ["user_555_lookup_v2"]
        owned = client.get("/api/v1/tools", params={"scope": "owned"}, headers=USER_555).json()["data"]
        assert [p["fqn"] for p in owned] == ["user_555_lookup_v1", "user_555_lookup_v2"]

    def test_stale_update_conflicts(self, client):
        v1 = _register(client)
        client.put(f"/api/v1/tools/{v1['plugin_id']}", json={}, headers=USER_555)
        response = client.put(f"/api/v1/tools/{v1['plugin_id']}", json={"expected_version": 1}, headers=USER_555)
        assert response.status_code == 409

    def test_update_by_other_context_is_forbidden(self, client):
        v1 = _register(client)
        response = client.put(f"/api/v1/tools/{v1['plugin_id']}", json={}, headers=USER_999)
        assert response.status_code == 403

    def test_other_tenants_cannot_read_plugin(self, client):
        v1 = _register(client, "secret", endpoint_url="https://private.example.com/hook", owner_id="acct-1")

        response = client.get(f"/api/v1/tools/{v1['plugin_id']}", headers=USER_999)
        assert response.status_code == 404
        assert "private.example.com" not in response.text

        admin = client.get(f"/api/v1/tools/{v1['plugin_id']}", headers=_headers("user", 999, key=ADMIN_KEY))
        assert admin.json()["data"]["owner_id"] == "acct-1"

    def test_enabled_subject_can_read_plugin(self, client):
        v1 = _register(client)
        client.post("/api/v1/tools/enablement", json={"fqn": v1["fqn"]}, headers=GROUP_42)
        response = client.get(f"/api/v1/tools/{v1['plugin_id']}", headers=GROUP_42)
        assert response.json()["data"]["fqn"] == "user_555_lookup_v1"

    def test_unknown_plugin_is_not_found(self, client):
        response = client.get("/api/v1/tools/does-not-exist", headers=USER_555)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_enablement_by_fqn_for_self(self, client):
        _register(client)
        response = client.post("/api/v1/tools/enablement", json={"fqn": "user_555_lookup_v1"}, headers=GROUP_42)
        assert response.status_code == 200
        status = response.json()["data"]
        assert status["subject_context_type"] == "group"
        assert status["subject_context_id"] == -42
        assert status["enabled"] is True

    def test_enablement_for_third_party_is_forbidden(self, client):
        v1 = _register(client)
        body = {"plugin_id": v1["plugin_id"], "subject_context_type": "group", "subject_context_id": -42}
        response = client.post("/api/v1/tools/enablement", json=body, headers=USER_999)
        assert response.status_code == 403

    def test_admin_can_grant_for_others(self, client):
        v1 = _register(client)
        body = {"plugin_id": v1["plugin_id"], "subject_context_type": "group", "subject_context_id": "-42"}
        headers = _headers("user", 999, key=ADMIN_KEY)
        assert client.post("/api/v1/tools/enablement", json=body, headers=headers).status_code == 200
        assert _listed(client, GROUP_42) == ["user_555_lookup_v1"]

    def test_enablement_needs_exactly_one_target(self, client):
        response = client.post("/api/v1/tools/enablement", json={"enabled": True}, headers=USER_555)
        assert response.status_code == 422

    def test_delete(self, client):
        v1 = _register(client)
        assert client.delete(f"/api/v1/tools/{v1['plugin_id']}", headers=USER_999).status_code == 403
        assert client.delete(f"/api/v1/tools/{v1['plugin_id']}", headers=USER_555).status_code == 204
        assert client.get(f"/api/v1/tools/{v1['plugin_id']}", headers=USER_555).status_code == 404
        assert _listed(client, USER_555) == []


# ---------------------------------------------------------------------------
# Tenant isolation over HTTP
# ---------------------------------------------------------------------------


class TestTenantIsolation:
    def test_end_to_end(self, client):
        v1 = _register(client)
        assert _listed(client, USER_555) == ["user_555_lookup_v1"]
        assert _listed(client, USER_999) == []

        denied = _rpc(client, "tools/call", {"name": "user_555_lookup_v1", "arguments": {"q": "x"}}, headers=USER_999)
        assert denied.json()["error"]["code"] == -32003

        client.put(f"/api/v1/tools/{v1['plugin_id']}", json={"description": "v2"}, headers=USER_555)
        assert _listed(client, USER_555) == ["user_555_lookup_v2"]
        old = _rpc(client, "tools/call", {"name": "user_555_lookup_v1", "arguments": {"q": "old"}}, headers=USER_555)
        assert "result" in old.json()

        client.post("/api/v1/tools/enablement", json={"fqn": "user_555_lookup_v2"}, headers=GROUP_42)
        assert _listed(client, GROUP_42) == ["user_555_lookup_v2"]
        group_call = _rpc(client, "tools/call", {"name": "user_555_lookup_v2", "arguments": {"q": "x"}}, headers=GROUP_42)
        assert group_call.json()["error"]["code"] == -32003
