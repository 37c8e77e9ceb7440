"""Job routing, workspace lifecycle and result contracts."""

from agent_worker.orchestrator.models import (
    ClarifyingQuestion,
    ExecutionResult,
    Job,
    JobMode,
    JobType,
)
from agent_worker.orchestrator.orchestrator import (
    JobOrchestrator,
    extract_summary,
    parse_clarifying_questions,
)
from agent_worker.orchestrator.workspace import GitWorktreeProvider, WorkspaceProvider

__all__ = [
    "ClarifyingQuestion",
    "ExecutionResult",
    "GitWorktreeProvider",
    "Job",
    "JobMode",
    "JobOrchestrator",
    "JobType",
    "WorkspaceProvider",
    "extract_summary",
    "parse_clarifying_questions",
]
