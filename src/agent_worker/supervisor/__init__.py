"""Agent process supervision: spawn, stream, timeout and failure categorization."""

from agent_worker.supervisor.failure_classifier import categorize_failure
from agent_worker.supervisor.models import (
    COMPLETION_MARKER,
    CategorizedError,
    CompletionStatus,
    ErrorCategory,
    ProcessOutcome,
    RunMode,
    SupervisorRequest,
    SupervisorState,
    completion_status,
    timeout_for_job,
)
from agent_worker.supervisor.process import ProcessHandle, ProcessSupervisor
from agent_worker.supervisor.stream import StreamJsonDecoder, ToolStatusEvent

__all__ = [
    "COMPLETION_MARKER",
    "CategorizedError",
    "CompletionStatus",
    "ErrorCategory",
    "ProcessHandle",
    "ProcessOutcome",
    "ProcessSupervisor",
    "RunMode",
    "StreamJsonDecoder",
    "SupervisorRequest",
    "SupervisorState",
    "ToolStatusEvent",
    "categorize_failure",
    "completion_status",
    "timeout_for_job",
]
