"""Error taxonomy for a smoke run.

Every error names the stage it came from so the CLI can report where the
run stopped. None of these are retried; all of them end the run.
"""
from typing import Optional


class HarnessError(Exception):
    """Base class for fatal harness errors."""

    stage = "harness"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage


class SpawnError(HarnessError):
    """The agent process could not be started."""

    stage = "spawn"

    @classmethod
    def from_os_error(cls, executable: str, error: OSError) -> "SpawnError":
        if isinstance(error, FileNotFoundError):
            return cls(
                f"Agent executable '{executable}' not found. "
                "Install the Rust toolchain or set CARGO_BIN / ORBIT_SMOKE_AGENT_CMD."
            )
        if isinstance(error, PermissionError):
            return cls(f"Permission denied starting '{executable}'.")
        return cls(f"Could not start '{executable}': {error}")


class ReadinessTimeout(HarnessError):
    """The agent never answered its health endpoint."""

    stage = "readiness"

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class PrematureExit(HarnessError):
    """The agent exited before it became ready."""

    stage = "readiness"

    def __init__(self, message: str, exit_status, output_tail: str = ""):
        super().__init__(message)
        self.exit_status = exit_status
        self.output_tail = output_tail

    @classmethod
    def from_status(cls, exit_status, output_tail: str = "") -> "PrematureExit":
        return cls(
            f"Agent stopped before the smoke run completed ({exit_status.describe()})",
            exit_status,
            output_tail,
        )


class IssuanceError(HarnessError):
    """The agent refused to issue a scoped token."""

    stage = "issuance"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ScenarioAssertionError(HarnessError, AssertionError):
    """A scenario expectation did not hold.

    Attributes:
        cause: FailureCause telling the failure kinds apart
        outcome: ScenarioOutcome collected up to the failing step
    """

    stage = "scenario"

    def __init__(self, message: str, cause, outcome=None):
        super().__init__(message)
        self.cause = cause
        self.outcome = outcome


class HarnessInterrupted(HarnessError):
    """An interruption signal stopped the run."""

    stage = "interrupted"

    def __init__(self, signal_name: str):
        super().__init__(f"Interrupted by {signal_name}")
        self.signal_name = signal_name
