"""Tests for the panel flow."""
import asyncio
import json

import httpx
import pytest

from orbit_smoke.api_client import APIError
from orbit_smoke.flow import run_flow


def agent_transport(created, fail_on=None):
    def handler(request):
        path = request.url.path
        if path == fail_on:
            return httpx.Response(500, text="boom")
        if path == "/system/info":
            return httpx.Response(200, json={"version": "0.3.1", "build": "abc123",
                                             "uptime_seconds": 42})
        if path == "/containers" and request.method == "GET":
            return httpx.Response(200, json=[{"id": "c1"}, {"id": "c2"}])
        if path == "/containers" and request.method == "POST":
            created.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "task-9", "status": "queued"})
        if path == "/tasks":
            assert request.url.params["limit"] == "3"
            return httpx.Response(200, json=[
                {"id": "task-9", "status": "queued", "type": "container.create"},
                {"id": "task-8", "status": "succeeded", "type": "container.create"},
            ])
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def test_run_flow(console_output):
    """The flow creates one container and lists tasks in agent order."""
    console, output = console_output
    created = []

    records = asyncio.run(run_flow(
        "http://agent.test", "adm", console,
        platform="linux-x64", wait_seconds=0, limit=3, transport=agent_transport(created),
    ))

    assert [r.id for r in records] == ["task-9", "task-8"]
    assert len(created) == 1
    assert created[0]["name"].startswith("panel-flow-")
    assert created[0]["platform"] == "linux-x64"
    text = output()
    assert "version 0.3.1" in text
    assert "Existing containers: 2" in text
    assert "Task created: task-9" in text
    assert "Latest tasks" in text


def test_run_flow_stops_on_error(console_output):
    console, _ = console_output
    created = []

    with pytest.raises(APIError) as exc:
        asyncio.run(run_flow(
            "http://agent.test", "adm", console, wait_seconds=0, limit=3,
            transport=agent_transport(created, fail_on="/containers"),
        ))

    assert exc.value.status_code == 500
    assert created == []


def test_run_flow_rejects_empty_body(console_output):
    """An empty info body fails as an APIError instead of crashing."""
    console, _ = console_output

    def handler(request):
        return httpx.Response(204)

    with pytest.raises(APIError, match="unexpected body"):
        asyncio.run(run_flow(
            "http://agent.test", "adm", console, wait_seconds=0,
            transport=httpx.MockTransport(handler),
        ))


def test_run_flow_rejects_malformed_task(console_output):
    console, _ = console_output

    def handler(request):
        if request.url.path == "/system/info":
            return httpx.Response(200, json={"version": "0.3.1"})
        if request.url.path == "/containers" and request.method == "GET":
            return httpx.Response(200, json=[])
        if request.url.path == "/containers":
            return httpx.Response(200, json={"id": "task-9"})
        return httpx.Response(200, json=["task-9"])

    with pytest.raises(APIError, match="GET /tasks returned an unexpected body"):
        asyncio.run(run_flow(
            "http://agent.test", "adm", console, wait_seconds=0,
            transport=httpx.MockTransport(handler),
        ))
