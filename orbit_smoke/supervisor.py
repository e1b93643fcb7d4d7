"""Process supervision for the agent under test.

The supervisor starts the agent as a child process with an explicit
environment, forwards its output as it arrives and exposes a one-shot
exit event on the returned ProcessHandle.
"""
import asyncio
import signal
import sys
from collections import deque
from contextlib import suppress
from dataclasses import dataclass
from typing import Optional, TextIO

from orbit_smoke.config import LaunchConfig
from orbit_smoke.errors import SpawnError


CHUNK_SIZE = 4096
TAIL_CHUNKS = 64
DRAIN_TIMEOUT = 1.0  # seconds to flush output after the child exits


@dataclass(frozen=True)
class ExitStatus:
    """How the child process ended.

    Attributes:
        code: Exit code, or None if the process was killed by a signal
        signal: Signal name when the process was killed by one
    """

    code: Optional[int]
    signal: Optional[str] = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "ExitStatus":
        """Build from a Popen-style returncode (negative means signal)."""
        if returncode < 0:
            try:
                name = signal.Signals(-returncode).name
            except ValueError:
                name = f"signal {-returncode}"
            return cls(code=None, signal=name)
        return cls(code=returncode)

    def describe(self) -> str:
        return f"code={self.code} signal={self.signal}"


class ProcessHandle:
    """Handle to the spawned agent, owned by the supervisor."""

    def __init__(self, process: asyncio.subprocess.Process, command: tuple):
        self.process = process
        self.pid = process.pid
        self.command = command
        self.exit_status: Optional[ExitStatus] = None
        self.termination_requested = False
        self.kill_requested = False
        self.stdout_tail: deque = deque(maxlen=TAIL_CHUNKS)
        self.stderr_tail: deque = deque(maxlen=TAIL_CHUNKS)
        self._exited = asyncio.Event()
        self._tasks: list = []

    @property
    def alive(self) -> bool:
        return self.exit_status is None

    def output_tail(self, limit: int = 2000) -> str:
        """Most recent child output, stdout first then stderr."""
        parts = []
        for tail in (self.stdout_tail, self.stderr_tail):
            text = b"".join(tail).decode(errors="replace")[-limit:]
            if text.strip():
                parts.append(text.rstrip())
        return "\n".join(parts)

    async def wait_exited(self) -> ExitStatus:
        await self._exited.wait()
        return self.exit_status

    def _mark_exited(self, status: ExitStatus) -> None:
        self.exit_status = status
        self._exited.set()


def _write(stream: TextIO, chunk: bytes) -> None:
    buffer = getattr(stream, "buffer", None)
    if buffer is not None:
        stream.flush()
        buffer.write(chunk)
        buffer.flush()
    else:
        stream.write(chunk.decode(errors="replace"))
        stream.flush()


class ProcessSupervisor:
    """Launches and terminates the agent process.

    Args:
        stdout: Where child stdout is forwarded (default: sys.stdout)
        stderr: Where child stderr is forwarded (default: sys.stderr)
    """

    def __init__(self, stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None):
        self.stdout = stdout
        self.stderr = stderr

    async def launch(self, config: LaunchConfig) -> ProcessHandle:
        """Start the agent described by config.

        Raises:
            SpawnError: If the executable cannot be started
        """
        try:
            config.ensure_dirs()
            process = await asyncio.create_subprocess_exec(
                *config.command,
                cwd=str(config.cwd),
                env=config.agent_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnError.from_os_error(config.command[0], e)

        handle = ProcessHandle(process, config.command)
        pumps = [
            asyncio.create_task(self._forward(process.stdout, "stdout", handle.stdout_tail)),
            asyncio.create_task(self._forward(process.stderr, "stderr", handle.stderr_tail)),
        ]
        handle._tasks = pumps + [asyncio.create_task(self._watch(handle, pumps))]
        return handle

    def terminate(self, handle: ProcessHandle) -> bool:
        """Ask the child to stop (SIGTERM).

        Returns:
            False if the process already exited or termination was already requested
        """
        if not handle.alive or handle.termination_requested:
            return False
        handle.termination_requested = True
        with suppress(ProcessLookupError):
            handle.process.terminate()
        return True

    def kill(self, handle: ProcessHandle) -> bool:
        """Force the child to stop (SIGKILL). Same no-op rules as terminate()."""
        if not handle.alive or handle.kill_requested:
            return False
        handle.kill_requested = True
        with suppress(ProcessLookupError):
            handle.process.kill()
        return True

    async def await_exit(
        self, handle: ProcessHandle, timeout: Optional[float] = None
    ) -> ExitStatus:
        """Wait for the exit event; returns at once if it already fired.

        Raises:
            asyncio.TimeoutError: If timeout elapses first
        """
        if timeout is None:
            return await handle.wait_exited()
        return await asyncio.wait_for(handle.wait_exited(), timeout)

    def _stream(self, name: str) -> TextIO:
        if name == "stdout":
            return self.stdout or sys.stdout
        return self.stderr or sys.stderr

    async def _forward(self, reader: asyncio.StreamReader, name: str, tail: deque) -> None:
        while True:
            chunk = await reader.read(CHUNK_SIZE)
            if not chunk:
                break
            tail.append(chunk)
            _write(self._stream(name), chunk)

    async def _watch(self, handle: ProcessHandle, pumps: list) -> None:
        returncode = await handle.process.wait()
        _, pending = await asyncio.wait(pumps, timeout=DRAIN_TIMEOUT)
        # a grandchild may still hold the pipes open
        for task in pending:
            task.cancel()
        handle._mark_exited(ExitStatus.from_returncode(returncode))
