"""End-to-end smoke run against a freshly started agent.

This module ties the pieces together:
1. Start the agent process
2. Race the readiness probe against the process exit event
3. Issue a scoped token with the admin credential
4. Run the scenario with both credentials
5. Stop the agent, on every path
"""
import asyncio
from datetime import timedelta
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from orbit_smoke.api_client import AgentClient, APIError
from orbit_smoke.cleanup import CleanupCoordinator
from orbit_smoke.config import HarnessConfig
from orbit_smoke.credentials import IssuedToken, issue, revoke
from orbit_smoke.errors import (
    HarnessError,
    HarnessInterrupted,
    PrematureExit,
    ScenarioAssertionError,
)
from orbit_smoke.readiness import await_readiness
from orbit_smoke.scenario import ScenarioOutcome, ScenarioRunner, TaskRecord
from orbit_smoke.supervisor import ProcessHandle, ProcessSupervisor


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def tasks_table(tasks: list[TaskRecord], title: str = "Tasks") -> Table:
    """Render task records as a table, in agent order."""
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("Type")

    for task in tasks:
        status_style = {
            "succeeded": "green",
            "running": "yellow",
            "queued": "dim",
            "failed": "red",
            "cancelled": "dim",
        }.get(task.status, "")
        status = f"[{status_style}]{task.status}[/{status_style}]" if status_style else task.status
        table.add_row(task.id, status, task.type)
    return table


class Harness:
    """One smoke run: exactly one agent process and one issued token.

    Args:
        config: Harness configuration
        supervisor: Process supervisor (default: forwards to this process's stdio)
        console: Where stage progress and results are reported (default: stderr)
    """

    def __init__(
        self,
        config: HarnessConfig,
        supervisor: Optional[ProcessSupervisor] = None,
        console: Optional[Console] = None,
    ):
        self.config = config
        self.console = console or Console(stderr=True)
        self.supervisor = supervisor or ProcessSupervisor()
        self.coordinator = CleanupCoordinator(
            self.supervisor, config.grace_period, self.console
        )
        self.handle: Optional[ProcessHandle] = None
        self.token: Optional[IssuedToken] = None
        self.stage = "spawn"

    def _stage(self, stage: str, message: str) -> None:
        self.stage = stage
        self.console.print(f"[cyan]{message}[/cyan]")

    async def run(self) -> ScenarioOutcome:
        """Run every stage; the agent is always stopped before returning.

        Raises:
            HarnessError: The first stage failure
        """
        config = self.config
        self._stage("spawn", f"Starting agent: {escape(' '.join(config.launch.command))}")
        self.handle = await self.supervisor.launch(config.launch)
        try:
            self._stage("readiness", f"Waiting for agent at {config.base_url}...")
            readiness = await await_readiness(
                self.supervisor,
                self.handle,
                config.base_url,
                config.launch.admin_token,
                attempts=config.probe_attempts,
                interval_ms=config.probe_interval_ms,
                timeout=config.probe_timeout,
            )
            self.console.print(
                f"[green]✓[/green] Agent ready after {readiness.attempts} attempt(s)"
            )

            async with AgentClient(config.base_url, config.launch.admin_token) as admin:
                scopes = ", ".join(config.token_scopes)
                self._stage("issuance", f"Issuing token '{config.token_name}' ({scopes})")
                self.token = await issue(
                    admin,
                    config.token_name,
                    list(config.token_scopes),
                    timedelta(seconds=config.token_ttl),
                )
                try:
                    async with AgentClient(config.base_url, self.token.token) as scoped:
                        self._stage("scenario", "Running scenario...")
                        runner = ScenarioRunner(
                            admin,
                            scoped,
                            self.token,
                            platform=config.platform,
                            task_attempts=config.task_attempts,
                            task_interval_ms=config.probe_interval_ms,
                        )
                        return await runner.run()
                finally:
                    if not self.coordinator.interrupted:
                        await self._revoke(admin)
        finally:
            status = await self.coordinator.cleanup(self.handle)
            if status is not None:
                self.console.print(f"[dim]Agent stopped ({status.describe()})[/dim]")

    async def _revoke(self, admin: AgentClient) -> None:
        try:
            await revoke(admin, self.token)
        except APIError as e:
            self.console.print(f"[yellow]Warning:[/yellow] could not revoke token: {escape(str(e))}")

    async def execute(self) -> int:
        """Run with signal handling and reporting; returns the exit code."""
        self.coordinator.install_signal_handlers(asyncio.current_task())
        try:
            outcome = await self.run()
        except asyncio.CancelledError:
            if not self.coordinator.interrupted:
                raise
            self.report_failure(HarnessInterrupted(self.coordinator.interrupted_by))
            return EXIT_INTERRUPTED
        except HarnessError as e:
            self.report_failure(e)
            return EXIT_INTERRUPTED if self.coordinator.interrupted else EXIT_FAILURE
        except Exception as e:
            stage = escape(f"[{self.stage}]")
            self.console.print(
                f"[red]✗ Smoke test failed with an unexpected error[/red] {stage} {escape(repr(e))}"
            )
            return EXIT_FAILURE
        finally:
            self.coordinator.remove_signal_handlers()

        if self.coordinator.interrupted:
            self.report_failure(HarnessInterrupted(self.coordinator.interrupted_by))
            return EXIT_INTERRUPTED
        self.report_success(outcome)
        return EXIT_OK

    def report_failure(self, error: HarnessError) -> None:
        stage = escape(f"[{error.stage}]")
        self.console.print(f"[red]✗ Smoke test failed[/red] {stage} {escape(error.message)}")
        if isinstance(error, ScenarioAssertionError):
            self.console.print(f"  Cause: {error.cause.value}")
        if isinstance(error, PrematureExit) and error.output_tail:
            self.console.print("  Last agent output:")
            self.console.print(error.output_tail, markup=False, highlight=False)

    def report_success(self, outcome: ScenarioOutcome) -> None:
        self.console.print("\n[green]✓ Smoke test completed[/green]")
        self.console.print(f"  Container: {outcome.resource_name}")
        self.console.print(f"  Task ID: {outcome.resource_id}")
        self.console.print(f"  Steps: {', '.join(outcome.steps)}")
        self.console.print(tasks_table(outcome.tasks))


def run_smoke(
    config: HarnessConfig,
    supervisor: Optional[ProcessSupervisor] = None,
    console: Optional[Console] = None,
) -> int:
    """Run a full smoke test and return the process exit code."""
    harness = Harness(config, supervisor=supervisor, console=console)
    return asyncio.run(harness.execute())
