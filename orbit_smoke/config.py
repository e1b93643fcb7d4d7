"""Configuration management for orbit-smoke.

Settings are layered: built-in defaults, then an optional YAML file, then
ORBIT_SMOKE_* environment variables, then CLI overrides.
"""
import os
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Mapping, Any

import yaml


DEFAULT_ADMIN_TOKEN = "smoke-admin"
DEFAULT_BIND = "127.0.0.1:7845"
DEFAULT_TOKEN_NAME = "smoke-cli"
DEFAULT_SCOPES = ("containers:write", "tasks:read")
DEFAULT_PLATFORM = "windows-x64"

BIND_PATTERN = re.compile(r"^[^\s:]+:\d{1,5}$")


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


def load_dotenv(path: str = ".env") -> None:
    """Load environment variables from a .env file.

    Supports KEY=value lines, comments (#) and empty lines. Variables that
    are already set in the environment are left untouched.

    Args:
        path: Path to .env file (default: .env in current directory)
    """
    try:
        with open(path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" in line:
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip()
                    if (value.startswith('"') and value.endswith('"')) or \
                       (value.startswith("'") and value.endswith("'")):
                        value = value[1:-1]
                    os.environ.setdefault(key, value)
    except FileNotFoundError:
        pass


def resolve_cargo(environ: Optional[Mapping[str, str]] = None) -> str:
    """Pick the cargo binary used to run the agent.

    Candidates are checked in order: $CARGO_BIN, $CARGO_HOME/bin/cargo
    (falling back to ~/.cargo), then plain "cargo" from PATH. Absolute
    candidates are only used if they exist.
    """
    environ = os.environ if environ is None else environ
    exe = "cargo.exe" if os.name == "nt" else "cargo"
    cargo_home = environ.get("CARGO_HOME") or str(Path.home() / ".cargo")
    candidates = [environ.get("CARGO_BIN"), str(Path(cargo_home) / "bin" / exe), exe]

    for candidate in candidates:
        if not candidate:
            continue
        if not os.path.isabs(candidate) or Path(candidate).exists():
            return candidate
    return exe


def default_agent_command(environ: Optional[Mapping[str, str]] = None) -> tuple:
    """Command that builds and runs the agent binary."""
    return (resolve_cargo(environ), "run", "--quiet", "--bin", "agent")


@dataclass(frozen=True)
class LaunchConfig:
    """Everything the supervisor needs to start the agent.

    Built once before spawn and never mutated afterwards.

    Attributes:
        bind: host:port the agent listens on
        admin_token: administrative bearer credential
        db_path: agent database location
        containers_root: root directory for workload sandboxes
        command: argv used to start the agent
        cwd: working directory for the agent process
    """

    bind: str
    admin_token: str
    db_path: Path
    containers_root: Path
    command: tuple
    cwd: Path

    @property
    def base_url(self) -> str:
        return f"http://{self.bind}"

    def agent_env(self, base_env: Optional[Mapping[str, str]] = None) -> dict:
        """Environment for the child: the inherited one plus ORBIT_* settings."""
        env = dict(os.environ if base_env is None else base_env)
        env.update({
            "ORBIT_AUTH_ENABLED": "1",
            "ORBIT_ADMIN_TOKEN": self.admin_token,
            "ORBIT_API_BIND": self.bind,
            "ORBIT_DB_PATH": str(self.db_path),
            "ORBIT_CONTAINERS_ROOT": str(self.containers_root),
        })
        return env

    def ensure_dirs(self) -> None:
        """Create the storage directories the agent expects to exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.containers_root.mkdir(parents=True, exist_ok=True)


@dataclass
class HarnessConfig:
    """Configuration for a full smoke run."""

    launch: LaunchConfig
    probe_attempts: int = 240
    probe_interval_ms: int = 500
    probe_timeout: float = 2.0
    grace_period: float = 5.0
    token_name: str = DEFAULT_TOKEN_NAME
    token_scopes: tuple = DEFAULT_SCOPES
    token_ttl: int = 3600  # seconds
    platform: str = DEFAULT_PLATFORM
    task_attempts: int = 1

    @property
    def base_url(self) -> str:
        return self.launch.base_url

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of error messages, empty if valid
        """
        errors = []
        if not BIND_PATTERN.match(self.launch.bind):
            errors.append(f"Invalid bind address: {self.launch.bind!r} (expected host:port)")
        elif not 1 <= int(self.launch.bind.rsplit(":", 1)[1]) <= 65535:
            errors.append(f"Invalid bind port: {self.launch.bind!r} (expected 1-65535)")
        if not self.launch.admin_token:
            errors.append("Admin token must not be empty")
        if not self.launch.command:
            errors.append("Agent command must not be empty")
        if self.probe_attempts < 1:
            errors.append("probe_attempts must be at least 1")
        if self.probe_interval_ms < 0:
            errors.append("probe_interval_ms must not be negative")
        if self.probe_timeout <= 0:
            errors.append("probe_timeout must be positive")
        if self.grace_period <= 0:
            errors.append("grace_period must be positive")
        if self.token_ttl <= 0:
            errors.append("token_ttl must be positive")
        if self.task_attempts < 1:
            errors.append("task_attempts must be at least 1")
        return errors


# Environment variable -> (config key, converter)
ENV_MAPPINGS = {
    "ORBIT_SMOKE_ROOT": ("root", str),
    "ORBIT_SMOKE_ADMIN": ("admin_token", str),
    "ORBIT_SMOKE_BIND": ("bind", str),
    "ORBIT_SMOKE_DB": ("db_path", str),
    "ORBIT_SMOKE_CONTAINERS": ("containers_root", str),
    "ORBIT_SMOKE_AGENT_CMD": ("agent_command", str),
    "ORBIT_SMOKE_ATTEMPTS": ("probe_attempts", int),
    "ORBIT_SMOKE_INTERVAL_MS": ("probe_interval_ms", int),
    "ORBIT_SMOKE_PROBE_TIMEOUT": ("probe_timeout", float),
    "ORBIT_SMOKE_GRACE": ("grace_period", float),
    "ORBIT_SMOKE_TOKEN_TTL": ("token_ttl", int),
    "ORBIT_SMOKE_TASK_ATTEMPTS": ("task_attempts", int),
}

TUNING_TYPES = {
    "probe_attempts": int,
    "probe_interval_ms": int,
    "probe_timeout": float,
    "grace_period": float,
    "token_ttl": int,
    "task_attempts": int,
}


def _read_file(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _read_env(environ: Mapping[str, str]) -> dict:
    values = {}
    for env_var, (key, convert) in ENV_MAPPINGS.items():
        if env_var not in environ:
            continue
        try:
            values[key] = convert(environ[env_var])
        except ValueError:
            raise ConfigError(f"Invalid value for {env_var}: {environ[env_var]!r}")
    return values


def _as_command(value: Any) -> tuple:
    if isinstance(value, str):
        return tuple(shlex.split(value))
    return tuple(str(part) for part in value)


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[dict] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> HarnessConfig:
    """Load harness configuration.

    Args:
        path: Optional YAML file (falls back to $ORBIT_SMOKE_CONFIG)
        overrides: Values from the CLI; None entries are ignored
        environ: Environment to read (defaults to os.environ)

    Returns:
        HarnessConfig instance

    Raises:
        ConfigError: If a source is unreadable or the result is invalid
    """
    environ = os.environ if environ is None else environ

    if path is None and environ.get("ORBIT_SMOKE_CONFIG"):
        path = Path(environ["ORBIT_SMOKE_CONFIG"])

    values: dict = {}
    if path is not None:
        values.update(_read_file(Path(path)))
    values.update(_read_env(environ))
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})

    root = Path(values.get("root") or Path.cwd()).resolve()
    command = values.get("agent_command")

    launch = LaunchConfig(
        bind=str(values.get("bind", DEFAULT_BIND)),
        admin_token=str(values.get("admin_token", DEFAULT_ADMIN_TOKEN)),
        db_path=Path(values.get("db_path") or root / "orbit-data" / "smoke-agent.db"),
        containers_root=Path(values.get("containers_root") or root / "sandboxes" / "smoke"),
        command=_as_command(command) if command else default_agent_command(environ),
        cwd=root,
    )

    try:
        tuning = {key: convert(values[key])
                  for key, convert in TUNING_TYPES.items() if key in values}
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid tuning value: {e}")

    config = HarnessConfig(launch=launch, **tuning)

    errors = config.validate()
    if errors:
        raise ConfigError("; ".join(errors))
    return config

