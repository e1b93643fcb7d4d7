"""Shared pytest fixtures."""
import io
import socket
import sys
from pathlib import Path

import pytest
from rich.console import Console

from orbit_smoke.config import HarnessConfig, LaunchConfig


FAKE_AGENT = Path(__file__).parent / "integration" / "fake_agent.py"


@pytest.fixture
def free_port():
    """A TCP port nothing is listening on right now."""
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def console_output():
    """A rich Console writing to a buffer, plus a getter for the text."""
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, force_terminal=False)
    return console, buffer.getvalue


@pytest.fixture
def make_config(tmp_path, free_port):
    """Build a HarnessConfig that runs the given command as the agent."""
    def _make(command=None, **tuning):
        launch = LaunchConfig(
            bind=f"127.0.0.1:{free_port}",
            admin_token="test-admin",
            db_path=tmp_path / "orbit-data" / "agent.db",
            containers_root=tmp_path / "sandboxes",
            command=tuple(command or (sys.executable, str(FAKE_AGENT))),
            cwd=tmp_path,
        )
        tuning.setdefault("probe_attempts", 100)
        tuning.setdefault("probe_interval_ms", 50)
        tuning.setdefault("grace_period", 5.0)
        return HarnessConfig(launch=launch, **tuning)

    return _make
