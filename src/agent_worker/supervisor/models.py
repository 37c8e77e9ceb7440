"""Typed contracts for supervised agent process runs."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from agent_worker.errors import AgentWorkerError

COMPLETION_MARKER = "<promise>COMPLETE</promise>"


class ErrorCategory(str, Enum):
    """Failure categories surfaced to the controlling service."""

    CLAUDE_NOT_INSTALLED = "claude_not_installed"
    NOT_AUTHENTICATED = "not_authenticated"
    OUT_OF_TOKENS = "out_of_tokens"
    RATE_LIMITED = "rate_limited"
    PERMISSION_DENIED = "permission_denied"
    EXECUTION_TIMEOUT = "execution_timeout"
    NETWORK_ERROR = "network_error"
    EXECUTION_ERROR = "execution_error"
    UNKNOWN = "unknown"


class SupervisorState(str, Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class RunMode(str, Enum):
    """How the agent process is expected to finish."""

    SINGLE_SHOT = "single_shot"
    ITERATIVE = "iterative"


class CompletionStatus(str, Enum):
    COMPLETED = "completed"
    ITERATION_LIMIT = "iteration_limit"


class CategorizedError(AgentWorkerError):
    """Agent run failure with a category and user-facing message."""

    def __init__(  # noqa: PLR0913
        self,
        category: ErrorCategory,
        user_message: str,
        *,
        technical_details: str = "",
        partial_output: str = "",
        exit_code: int | None = None,
    ) -> None:
        super().__init__(user_message)
        self.category = category
        self.user_message = user_message
        self.technical_details = technical_details
        self.partial_output = partial_output
        self.exit_code = exit_code

    def to_event_details(self) -> dict[str, object]:
        """Serialize the failure for a status event payload."""

        return {
            "error_category": self.category.value,
            "error_message": self.user_message,
            "error_details": self.technical_details,
            "exit_code": self.exit_code,
            "partial_output": self.partial_output,
        }


@dataclass(slots=True)
class SupervisorRequest:
    """One agent process invocation."""

    command: str
    args: tuple[str, ...]
    cwd: Path
    env: Mapping[str, str]
    stdin_payload: str
    timeout_seconds: float
    run_mode: RunMode = RunMode.SINGLE_SHOT

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass(slots=True)
class ProcessOutcome:
    """Successful run result."""

    output: str
    stderr: str
    exit_code: int
    duration_ms: int
    completion: CompletionStatus


def completion_status(*, exit_code: int, output: str, run_mode: RunMode) -> CompletionStatus | None:
    """Map an exit code to a completion signal, or None when the run failed."""

    if exit_code == 0:
        return CompletionStatus.COMPLETED
    if exit_code == 1 and run_mode is RunMode.ITERATIVE:
        if COMPLETION_MARKER in output:
            return CompletionStatus.COMPLETED
        return CompletionStatus.ITERATION_LIMIT
    return None


def timeout_for_job(
    *,
    run_mode: RunMode,
    timeout_minutes: int | None,
    single_shot_seconds: int = 3_600,
    iterative_seconds: int = 7_200,
) -> int:
    """Seconds before the supervisor kills a run, one minute under the job budget."""

    if timeout_minutes is None:
        return iterative_seconds if run_mode is RunMode.ITERATIVE else single_shot_seconds
    return max(timeout_minutes - 1, 5) * 60
