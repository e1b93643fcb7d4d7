"""Readiness probing for the agent.

The probe polls the status endpoint on a fixed interval (no backoff) so the
worst-case wait is predictable. await_readiness() races the probe against
the child's exit event so a crashed agent is reported at once instead of
after the whole probe budget.
"""
import asyncio
from collections import Counter
from dataclasses import dataclass
from typing import Optional

import httpx

from orbit_smoke.api_client import AgentClient, APIError
from orbit_smoke.errors import PrematureExit, ReadinessTimeout
from orbit_smoke.supervisor import ProcessHandle, ProcessSupervisor


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of a probe run.

    Attributes:
        ready: True if the agent answered successfully
        attempts: Number of health checks performed
        reason: Summary of the failures when not ready
    """

    ready: bool
    attempts: int
    reason: Optional[str] = None

    @classmethod
    def success(cls, attempts: int) -> "ProbeOutcome":
        return cls(ready=True, attempts=attempts)

    @classmethod
    def failure(cls, attempts: int, reason: str) -> "ProbeOutcome":
        return cls(ready=False, attempts=attempts, reason=reason)


def _summarize(errors: Counter) -> str:
    return "; ".join(f"{message} (x{count})" for message, count in errors.most_common())


async def probe(
    base_url: str,
    admin_token: str,
    attempts: int,
    interval_ms: int,
    timeout: float = 2.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProbeOutcome:
    """Poll the health endpoint until it succeeds or attempts run out.

    Args:
        base_url: Agent base URL
        admin_token: Bearer credential for the status endpoint
        attempts: Maximum number of health checks (at least 1)
        interval_ms: Fixed wait between consecutive checks
        timeout: Network timeout for each check, in seconds
        transport: Optional httpx transport (tests)

    Returns:
        ProbeOutcome; a failure is only returned after exactly `attempts` checks
    """
    errors: Counter = Counter()
    async with AgentClient(base_url, admin_token, timeout=timeout, transport=transport) as client:
        for attempt in range(1, attempts + 1):
            try:
                await client.check_health()
                return ProbeOutcome.success(attempt)
            except APIError as e:
                errors[str(e)] += 1
            if attempt < attempts:
                await asyncio.sleep(interval_ms / 1000)

    return ProbeOutcome.failure(attempts, _summarize(errors))


async def await_readiness(
    supervisor: ProcessSupervisor,
    handle: ProcessHandle,
    base_url: str,
    admin_token: str,
    attempts: int,
    interval_ms: int,
    timeout: float = 2.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProbeOutcome:
    """Wait until the agent is ready, or fail as soon as it exits.

    Raises:
        PrematureExit: The child exited before the probe succeeded
        ReadinessTimeout: All probe attempts failed while the child kept running
    """
    probe_task = asyncio.create_task(
        probe(base_url, admin_token, attempts, interval_ms, timeout=timeout, transport=transport)
    )
    exit_task = asyncio.create_task(supervisor.await_exit(handle))
    try:
        done, _ = await asyncio.wait(
            {probe_task, exit_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in (probe_task, exit_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(probe_task, exit_task, return_exceptions=True)

    if probe_task in done:
        outcome = probe_task.result()
        if outcome.ready:
            return outcome

    if exit_task in done or not handle.alive:
        raise PrematureExit.from_status(handle.exit_status, handle.output_tail())

    raise ReadinessTimeout(
        f"Agent did not respond after {outcome.attempts} attempts: {outcome.reason}",
        outcome.attempts,
    )
