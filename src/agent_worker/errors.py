"""Exception hierarchy shared by guards, supervisor and orchestrator."""

from __future__ import annotations


class AgentWorkerError(RuntimeError):
    """Base class for every error raised by the worker."""


class GuardError(AgentWorkerError):
    """Input rejected before it could reach an external process."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class PathRejectedError(GuardError):
    """Filesystem path failed validation."""

    def __init__(self, message: str, *, reason: str, path: str | None = None) -> None:
        super().__init__(message, reason=reason)
        self.path = path


class PromptRejectedError(GuardError):
    """Instruction text failed validation."""

    def __init__(self, message: str, *, reason: str, description: str | None = None) -> None:
        super().__init__(message, reason=reason)
        self.description = description


class SupervisorBusyError(AgentWorkerError):
    """A supervisor was asked to run while another process is live."""


class WorkspaceError(AgentWorkerError):
    """Workspace could not be created or released."""


class OutputContractError(AgentWorkerError):
    """Agent output does not match the shape the job type requires."""


class UnknownJobTypeError(AgentWorkerError):
    """Job type has no registered handler."""
