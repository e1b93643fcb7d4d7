"""Tests for API client module."""
import asyncio
import json

import httpx
import pytest

from orbit_smoke.api_client import AgentClient, APIError


def _client(handler, token="secret"):
    return AgentClient("http://agent.test/", token, transport=httpx.MockTransport(handler))


def _call(handler, method, *args, **kwargs):
    async def go():
        async with _client(handler) as client:
            return await getattr(client, method)(*args, **kwargs)
    return asyncio.run(go())


def test_requests_carry_bearer_token():
    """Every request is authorized with the client's token."""
    seen = []

    def handler(request):
        seen.append(request.headers["Authorization"])
        return httpx.Response(200, json={"version": "1.0"})

    assert _call(handler, "system_info") == {"version": "1.0"}
    assert seen == ["Bearer secret"]


def test_check_health_success():
    def handler(request):
        assert request.url.path == "/system/info"
        return httpx.Response(200, text="not even json")

    assert _call(handler, "check_health") is None


def test_check_health_non_success_status():
    def handler(request):
        return httpx.Response(503)

    with pytest.raises(APIError) as exc:
        _call(handler, "check_health")
    assert exc.value.status_code == 503
    assert "503" in str(exc.value)


def test_connection_error_becomes_api_error():
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    with pytest.raises(APIError, match="Connection failed") as exc:
        _call(handler, "check_health")
    assert exc.value.status_code is None


def test_issue_token_payload():
    """Token issuance POSTs name, scopes and expiry."""
    captured = {}

    def handler(request):
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"token": "orbit_abc", "id": "t1"})

    result = _call(handler, "issue_token", "smoke-cli", ("tasks:read",), "2026-01-01T00:00:00Z")

    assert result["token"] == "orbit_abc"
    assert captured["method"] == "POST"
    assert captured["path"] == "/security/tokens"
    assert captured["body"] == {
        "name": "smoke-cli",
        "scopes": ["tasks:read"],
        "expires_at": "2026-01-01T00:00:00Z",
    }


def test_revoke_token_empty_response():
    def handler(request):
        assert request.method == "DELETE"
        assert request.url.path == "/security/tokens/t1"
        return httpx.Response(204)

    assert _call(handler, "revoke_token", "t1") is None


def test_create_container_payload():
    def handler(request):
        body = json.loads(request.content)
        assert body == {"name": "smoke-1", "platform": "windows-x64"}
        return httpx.Response(200, json={"id": "task-1", "status": "queued"})

    assert _call(handler, "create_container", "smoke-1", "windows-x64")["id"] == "task-1"


def test_list_tasks_passes_limit():
    def handler(request):
        assert request.url.params["limit"] == "5"
        return httpx.Response(200, json=[{"id": "a"}])

    assert _call(handler, "list_tasks", limit=5) == [{"id": "a"}]


def test_list_containers_status_filter():
    def handler(request):
        assert request.url.params["status"] == "running"
        return httpx.Response(200, json=[])

    assert _call(handler, "list_containers", status="running") == []


def test_error_status_raises_with_code():
    """4xx responses raise APIError carrying the status code."""
    def handler(request):
        return httpx.Response(403, text="missing scope")

    with pytest.raises(APIError) as exc:
        _call(handler, "list_containers")
    assert exc.value.status_code == 403
    assert "GET /containers returned 403: missing scope" in str(exc.value)


def test_invalid_json_raises():
    def handler(request):
        return httpx.Response(200, text="<html>")

    with pytest.raises(APIError, match="invalid JSON"):
        _call(handler, "system_info")
