"""Guaranteed teardown of the agent process.

cleanup() is idempotent: the first call starts the shutdown and every call
(including concurrent ones) waits for that same shutdown. Interruption
signals do not run their own teardown; they cancel the run task, and the
run's normal finally-path calls cleanup().
"""
import asyncio
import signal
from typing import Optional

from rich.console import Console

from orbit_smoke.supervisor import ExitStatus, ProcessHandle, ProcessSupervisor


INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CleanupCoordinator:
    """Stops the agent exactly once, whatever path the run takes.

    Args:
        supervisor: Supervisor owning the process handle
        grace_period: Seconds to wait after SIGTERM (and again after SIGKILL)
        console: Where progress and warnings are printed
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        grace_period: float = 5.0,
        console: Optional[Console] = None,
    ):
        self.supervisor = supervisor
        self.grace_period = grace_period
        self.console = console or Console(stderr=True)
        self.interrupted_by: Optional[str] = None
        self._shutdown_task: Optional[asyncio.Future] = None
        self._previous_handlers: dict = {}

    @property
    def interrupted(self) -> bool:
        return self.interrupted_by is not None

    async def cleanup(self, handle: Optional[ProcessHandle]) -> Optional[ExitStatus]:
        """Terminate the agent and wait for it to exit.

        Returns:
            The exit status, or None if there was no process or it would not die
        """
        if handle is None:
            return None
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown(handle))
        return await asyncio.shield(self._shutdown_task)

    async def _shutdown(self, handle: ProcessHandle) -> Optional[ExitStatus]:
        if self.supervisor.terminate(handle):
            self.console.print(f"[dim]Stopping agent (pid {handle.pid})...[/dim]")
        try:
            return await self.supervisor.await_exit(handle, timeout=self.grace_period)
        except asyncio.TimeoutError:
            self.console.print(
                f"[yellow]Agent did not exit within {self.grace_period:.1f}s, killing it[/yellow]"
            )

        self.supervisor.kill(handle)
        try:
            return await self.supervisor.await_exit(handle, timeout=self.grace_period)
        except asyncio.TimeoutError:
            self.console.print(
                f"[yellow]Warning:[/yellow] agent (pid {handle.pid}) is still running, giving up"
            )
            return None

    def install_signal_handlers(self, task: asyncio.Task) -> None:
        """Route SIGINT/SIGTERM to interrupt(task)."""
        loop = asyncio.get_running_loop()
        for sig in INTERRUPT_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.interrupt, sig, task)
            except NotImplementedError:
                # Windows event loops
                self._previous_handlers[sig] = signal.signal(
                    sig,
                    lambda signum, frame: loop.call_soon_threadsafe(self.interrupt, signum, task),
                )

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in INTERRUPT_SIGNALS:
            if sig in self._previous_handlers:
                signal.signal(sig, self._previous_handlers.pop(sig))
            else:
                loop.remove_signal_handler(sig)

    def interrupt(self, sig: int, task: asyncio.Task) -> None:
        """Record the first interruption and cancel the run task.

        Later signals are ignored, and a run that is already shutting the
        agent down is left alone so the shutdown can finish.
        """
        if self.interrupted_by is not None:
            return
        self.interrupted_by = signal.Signals(sig).name
        self.console.print(f"\n[yellow]Received {self.interrupted_by}, stopping...[/yellow]")
        if self._shutdown_task is None:
            task.cancel()
