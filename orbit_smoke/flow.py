"""Panel flow against an agent that is already running.

Mirrors what the admin panel does on first load: check the agent, count
containers, create one and show the most recent tasks.
"""
import asyncio
import uuid
from typing import Optional

import httpx
from rich.console import Console
from rich.markup import escape

from orbit_smoke.api_client import AgentClient, APIError
from orbit_smoke.config import DEFAULT_PLATFORM
from orbit_smoke.harness import tasks_table
from orbit_smoke.scenario import TaskRecord


DEFAULT_BASE_URL = "http://127.0.0.1:7443"


def _expect_dict(body, what: str) -> dict:
    if not isinstance(body, dict):
        raise APIError(f"{what} returned an unexpected body: {body!r}")
    return body


async def run_flow(
    base_url: str,
    admin_token: str,
    console: Console,
    platform: str = DEFAULT_PLATFORM,
    wait_seconds: float = 2.0,
    limit: int = 10,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[TaskRecord]:
    """Run the panel flow.

    Returns:
        The most recent tasks, in agent order

    Raises:
        APIError: If any request fails or returns an unexpected body
    """
    async with AgentClient(base_url, admin_token, transport=transport) as client:
        info = _expect_dict(await client.system_info(), "GET /system/info")
        console.print(
            f"Agent ready: version {info.get('version')} "
            f"(build {info.get('build')}, up {info.get('uptime_seconds')}s)"
        )

        existing = await client.list_containers()
        console.print(f"Existing containers: {len(existing)}")

        name = f"panel-flow-{uuid.uuid4().hex[:8]}"
        console.print(f"Creating container {name}")
        task = _expect_dict(await client.create_container(name, platform), "POST /containers")
        console.print(f"Task created: {escape(str(task.get('id')))}")

        console.print("Waiting for tasks to appear...")
        await asyncio.sleep(wait_seconds)
        listed = await client.list_tasks(limit=limit)
        if not isinstance(listed, list):
            raise APIError(f"GET /tasks returned an unexpected body: {listed!r}")
        records = [TaskRecord.from_dict(_expect_dict(r, "GET /tasks")) for r in listed]

    console.print(tasks_table(records, title="Latest tasks"))
    return records
