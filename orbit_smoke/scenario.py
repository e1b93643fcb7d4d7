"""The smoke scenario run against a ready agent.

Steps run strictly in order:
1. Create a container with the scoped token (the agent answers with a task).
2. List tasks with the admin token; at least one must be visible.
3. Check that the scoped token is refused for a scope it was not granted.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from orbit_smoke.api_client import AgentClient, APIError
from orbit_smoke.credentials import IssuedToken
from orbit_smoke.errors import ScenarioAssertionError


SCOPE_CONTAINERS_READ = "containers:read"

REJECTED_STATUSES = (401, 403)


class FailureCause(str, Enum):
    """Why a scenario failed."""
    NO_IDENTIFIER = "no-identifier"
    NO_TASKS = "no-tasks"
    UNEXPECTED_STATUS = "unexpected-status"
    SCOPE_NOT_ENFORCED = "scope-not-enforced"


@dataclass
class TaskRecord:
    """A task as listed by the agent."""
    id: str
    status: str
    type: str

    @classmethod
    def from_dict(cls, data: dict) -> "TaskRecord":
        return cls(
            id=str(data.get("id", "")),
            status=str(data.get("status", "")),
            type=str(data.get("type", "")),
        )


@dataclass
class ScenarioOutcome:
    """What the scenario observed.

    Tasks keep the order the agent returned them in.
    """
    resource_name: Optional[str] = None
    resource_id: Optional[str] = None
    tasks: list[TaskRecord] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)
    passed: bool = False
    cause: Optional[FailureCause] = None
    message: Optional[str] = None


def generate_resource_name(prefix: str = "smoke") -> str:
    """Unique container name, e.g. smoke-1760886000123."""
    return f"{prefix}-{int(time.time() * 1000)}"


class ScenarioRunner:
    """Drives the smoke scenario.

    Args:
        admin: Client using the admin credential
        scoped: Client using the issued token
        token: The issued token (used to decide which scopes to test)
        platform: Platform identifier for the new container
        task_attempts: How many times to look for tasks (1 = single observation)
        task_interval_ms: Wait between task observations
        resource_name: Fixed container name (generated if omitted)
    """

    def __init__(
        self,
        admin: AgentClient,
        scoped: AgentClient,
        token: IssuedToken,
        platform: str = "windows-x64",
        task_attempts: int = 1,
        task_interval_ms: int = 500,
        resource_name: Optional[str] = None,
    ):
        self.admin = admin
        self.scoped = scoped
        self.token = token
        self.platform = platform
        self.task_attempts = task_attempts
        self.task_interval_ms = task_interval_ms
        self.resource_name = resource_name
        self.outcome = ScenarioOutcome()

    async def run(self) -> ScenarioOutcome:
        """Run every step in order.

        Returns:
            ScenarioOutcome with passed=True

        Raises:
            ScenarioAssertionError: On the first expectation that does not hold
        """
        await self._create_container()
        await self._observe_tasks()
        await self._check_scope_enforcement()
        self.outcome.passed = True
        return self.outcome

    def _fail(self, cause: FailureCause, message: str) -> ScenarioAssertionError:
        self.outcome.passed = False
        self.outcome.cause = cause
        self.outcome.message = message
        return ScenarioAssertionError(message, cause, self.outcome)

    async def _create_container(self) -> None:
        name = self.resource_name or generate_resource_name()
        self.outcome.resource_name = name
        try:
            response = await self.scoped.create_container(name, self.platform)
        except APIError as e:
            raise self._fail(FailureCause.UNEXPECTED_STATUS, f"Container creation failed: {e}")

        resource_id = response.get("id") if isinstance(response, dict) else None
        if not resource_id:
            raise self._fail(
                FailureCause.NO_IDENTIFIER,
                f"Container creation for '{name}' returned no task id",
            )
        self.outcome.resource_id = str(resource_id)
        self.outcome.steps.append("create-container")

    async def _observe_tasks(self) -> None:
        for attempt in range(1, self.task_attempts + 1):
            try:
                records = await self.admin.list_tasks()
            except APIError as e:
                raise self._fail(FailureCause.UNEXPECTED_STATUS, f"Task listing failed: {e}")
            if not isinstance(records, list):
                raise self._fail(
                    FailureCause.UNEXPECTED_STATUS, "Task listing did not return a list"
                )
            if not all(isinstance(r, dict) for r in records):
                raise self._fail(
                    FailureCause.UNEXPECTED_STATUS, "Task listing returned a malformed record"
                )

            self.outcome.tasks = [TaskRecord.from_dict(r) for r in records]
            if self.outcome.tasks:
                self.outcome.steps.append("list-tasks")
                return
            if attempt < self.task_attempts:
                await asyncio.sleep(self.task_interval_ms / 1000)

        raise self._fail(FailureCause.NO_TASKS, "No tasks were listed after creating a container")

    async def _check_scope_enforcement(self) -> None:
        if self.token.allows(SCOPE_CONTAINERS_READ):
            return
        try:
            await self.scoped.list_containers()
        except APIError as e:
            if e.status_code in REJECTED_STATUSES:
                self.outcome.steps.append("scope-enforced")
                return
            raise self._fail(
                FailureCause.UNEXPECTED_STATUS,
                f"Out-of-scope request failed with an unexpected error: {e}",
            )
        raise self._fail(
            FailureCause.SCOPE_NOT_ENFORCED,
            f"Token without '{SCOPE_CONTAINERS_READ}' was allowed to list containers",
        )
