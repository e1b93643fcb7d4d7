"""CLI for orbit-smoke.

Commands:
    run    Start the agent, run the smoke scenario, stop the agent
    probe  Check that an already-running agent answers its status endpoint
    flow   Run the panel flow against an already-running agent
"""
import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from orbit_smoke import __version__
from orbit_smoke.api_client import APIError
from orbit_smoke.config import ConfigError, DEFAULT_PLATFORM, load_config, load_dotenv
from orbit_smoke.flow import DEFAULT_BASE_URL, run_flow
from orbit_smoke.harness import run_smoke
from orbit_smoke.readiness import probe

console = Console()
err_console = Console(stderr=True)

# Load .env file if it exists (before any commands run)
load_dotenv()


@click.group()
@click.version_option(version=__version__)
def cli():
    """Orbit Smoke - end-to-end checks for the Orbit agent."""
    pass


@cli.command()
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="YAML file with harness settings",
)
@click.option("--bind", "-b", help="host:port for the agent (default: 127.0.0.1:7845)")
@click.option("--admin-token", help="Admin bearer token given to the agent")
@click.option("--db-path", type=click.Path(dir_okay=False, path_type=Path), help="Agent database path")
@click.option(
    "--containers-root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Root directory for container sandboxes",
)
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Repository root the agent is built and run from",
)
@click.option("--agent-cmd", help="Command that starts the agent (default: cargo run --bin agent)")
@click.option("--attempts", type=click.IntRange(min=1), help="Health check attempts")
@click.option("--interval-ms", type=click.IntRange(min=0), help="Wait between health checks")
@click.option("--grace", type=float, help="Seconds to wait for the agent to stop")
@click.option(
    "--task-attempts",
    type=click.IntRange(min=1),
    help="Times to look for tasks after creating a container (default: 1)",
)
def run(config_path, bind, admin_token, db_path, containers_root, root, agent_cmd,
        attempts, interval_ms, grace, task_attempts):
    """Start the agent and run the smoke scenario against it.

    Example:
        orbit-smoke run
        orbit-smoke run --bind 127.0.0.1:9000 --attempts 60
        orbit-smoke run --agent-cmd "./target/debug/agent"
    """
    overrides = {
        "bind": bind,
        "admin_token": admin_token,
        "db_path": db_path,
        "containers_root": containers_root,
        "root": root,
        "agent_command": agent_cmd,
        "probe_attempts": attempts,
        "probe_interval_ms": interval_ms,
        "grace_period": grace,
        "task_attempts": task_attempts,
    }
    try:
        config = load_config(config_path, overrides=overrides)
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    raise SystemExit(run_smoke(config, console=err_console))


@cli.command("probe")
@click.option("--url", envvar="ORBIT_BASE_URL", default=DEFAULT_BASE_URL, show_default=True)
@click.option("--admin-token", envvar="ORBIT_ADMIN_TOKEN", required=True)
@click.option("--attempts", type=click.IntRange(min=1), default=1, show_default=True)
@click.option("--interval-ms", type=click.IntRange(min=0), default=500, show_default=True)
@click.option("--timeout", type=float, default=2.0, show_default=True, help="Per-attempt timeout")
def probe_command(url, admin_token, attempts, interval_ms, timeout):
    """Check whether the agent at URL is ready."""
    outcome = asyncio.run(probe(url, admin_token, attempts, interval_ms, timeout=timeout))
    if not outcome.ready:
        err_console.print(f"[red]Agent not ready:[/red] {escape(outcome.reason)}")
        raise SystemExit(1)
    console.print(f"[green]✓ Agent ready[/green] ({outcome.attempts} attempt(s))")


@cli.command()
@click.option("--url", envvar="ORBIT_BASE_URL", default=DEFAULT_BASE_URL, show_default=True)
@click.option("--admin-token", envvar="ORBIT_ADMIN_TOKEN")
@click.option("--platform", default=DEFAULT_PLATFORM, show_default=True)
@click.option("--wait", type=float, default=2.0, show_default=True, help="Seconds to wait for tasks")
@click.option("--limit", type=click.IntRange(min=1, max=500), default=10, show_default=True)
def flow(url, admin_token, platform, wait, limit):
    """Create a container on a running agent and list recent tasks."""
    if not admin_token:
        err_console.print("[red]Error:[/red] ORBIT_ADMIN_TOKEN is required to run the panel flow.")
        raise SystemExit(1)

    try:
        asyncio.run(run_flow(url, admin_token, console, platform=platform,
                             wait_seconds=wait, limit=limit))
    except APIError as e:
        err_console.print(f"[red]Panel flow failed:[/red] {escape(str(e))}")
        raise SystemExit(1)

    console.print("[green]Flow completed[/green]")


if __name__ == "__main__":
    cli()
