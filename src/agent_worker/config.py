"""Runtime configuration for the agent worker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

LOG_LEVELS: tuple[str, ...] = ("error", "warn", "info", "debug")
CONSOLE_FORMATS: tuple[str, ...] = ("pretty", "json")


@dataclass(slots=True)
class LoggingSettings:
    """Log pipeline settings."""

    level: str = "info"
    console_colors: bool = True
    console_format: str = "pretty"
    max_batch_size: int = 10
    flush_interval_ms: int = 2_000
    use_batch_endpoint: bool = True


@dataclass(slots=True)
class SupervisorSettings:
    """Agent process settings."""

    agent_command: str = "claude"
    iterative_command: str | None = None
    kill_grace_seconds: float = 2.0
    single_shot_timeout_seconds: int = 3_600
    iterative_timeout_seconds: int = 7_200
    runtime_mode: str = "production"


@dataclass(slots=True)
class GuardSettings:
    """Path and environment guard settings."""

    allowed_paths: tuple[Path, ...] = ()
    extra_env_names: tuple[str, ...] = ("AGENT_WORKER_RUNTIME_MODE",)


@dataclass(slots=True)
class ApiSettings:
    """Controlling service connection settings."""

    base_url: str | None = None
    token: str | None = None
    request_timeout_seconds: float = 30.0
    max_retries: int = 3


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    agent_id: str = "agent-default"
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)
    guards: GuardSettings = field(default_factory=GuardSettings)
    api: ApiSettings = field(default_factory=ApiSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults suited for local runs."""

        settings = cls(
            agent_id=os.getenv("AGENT_WORKER_AGENT_ID", "agent-default").strip()
            or "agent-default",
            logging=LoggingSettings(
                level=os.getenv("AGENT_WORKER_LOG_LEVEL", "info").strip().lower(),
                console_colors=_env_bool("AGENT_WORKER_CONSOLE_COLORS", default=True),
                console_format=os.getenv("AGENT_WORKER_CONSOLE_FORMAT", "pretty").strip().lower(),
                max_batch_size=_env_int("AGENT_WORKER_MAX_BATCH_SIZE", default=10),
                flush_interval_ms=_env_int("AGENT_WORKER_FLUSH_INTERVAL_MS", default=2_000),
                use_batch_endpoint=_env_bool("AGENT_WORKER_USE_BATCH_ENDPOINT", default=True),
            ),
            supervisor=SupervisorSettings(
                agent_command=os.getenv("AGENT_WORKER_AGENT_COMMAND", "claude").strip()
                or "claude",
                iterative_command=_env_optional("AGENT_WORKER_ITERATIVE_COMMAND"),
                kill_grace_seconds=_env_float("AGENT_WORKER_KILL_GRACE_SECONDS", default=2.0),
                runtime_mode=os.getenv("AGENT_WORKER_RUNTIME_MODE", "production").strip()
                or "production",
            ),
            guards=GuardSettings(allowed_paths=_collect_allowed_paths()),
            api=ApiSettings(
                base_url=_env_optional("AGENT_WORKER_API_URL"),
                token=_env_optional("AGENT_WORKER_API_TOKEN"),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Reject values the worker cannot operate with."""

        if self.logging.level not in LOG_LEVELS:
            raise ValueError(
                f"AGENT_WORKER_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}: "
                f"{self.logging.level!r}",
            )
        if self.logging.console_format not in CONSOLE_FORMATS:
            raise ValueError(
                f"AGENT_WORKER_CONSOLE_FORMAT must be one of {', '.join(CONSOLE_FORMATS)}: "
                f"{self.logging.console_format!r}",
            )
        if self.logging.max_batch_size <= 0:
            raise ValueError("AGENT_WORKER_MAX_BATCH_SIZE must be > 0.")
        if self.logging.flush_interval_ms <= 0:
            raise ValueError("AGENT_WORKER_FLUSH_INTERVAL_MS must be > 0.")
        if self.supervisor.kill_grace_seconds < 0:
            raise ValueError("AGENT_WORKER_KILL_GRACE_SECONDS must be >= 0.")

    @property
    def flush_interval_seconds(self) -> float:
        return self.logging.flush_interval_ms / 1000.0


def _collect_allowed_paths() -> tuple[Path, ...]:
    raw = os.getenv("AGENT_WORKER_ALLOWED_PATHS", "")
    return tuple(Path(item.strip()) for item in raw.split(":") if item.strip())


def _env_optional(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
