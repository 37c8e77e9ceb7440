"""Job and result contracts for the orchestrator."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agent_worker.errors import UnknownJobTypeError
from agent_worker.git_activity import GitActivitySummary
from agent_worker.supervisor.models import CompletionStatus


class JobType(str, Enum):
    PRD_GENERATION = "prd_generation"
    CODE_EXECUTION = "code_execution"
    CLARIFYING_QUESTIONS = "clarifying_questions"


class JobMode(str, Enum):
    STANDARD = "standard"
    PLAN = "plan"
    ITERATIVE = "iterative"


@dataclass(frozen=True, slots=True)
class Job:
    """Unit of work received from the controlling service."""

    id: int | str
    type: JobType
    prompt: str
    mode: JobMode = JobMode.STANDARD
    project_path: str | None = None
    auto_cleanup: bool = True
    title: str | None = None
    timeout_minutes: int | None = None
    task_id: int | str | None = None

    @property
    def display_title(self) -> str:
        return self.title or f"Job {self.id}"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Job:
        """Build a job from the service's JSON shape."""

        if "id" not in payload:
            raise ValueError("Job payload is missing 'id'.")
        raw_type = payload.get("job_type") or payload.get("type")
        try:
            job_type = JobType(raw_type)
        except ValueError as error:
            raise UnknownJobTypeError(f"Unknown job type: {raw_type}") from error

        raw_mode = payload.get("prd_mode") or payload.get("mode") or JobMode.STANDARD.value
        try:
            mode = JobMode(raw_mode)
        except ValueError as error:
            raise ValueError(f"Unknown job mode: {raw_mode}") from error

        project = payload.get("project") or {}
        project_path = project.get("system_path") or payload.get("project_path")
        auto_cleanup = project.get("auto_cleanup_worktrees", payload.get("auto_cleanup", True))
        timeout = payload.get("timeout_minutes")

        return cls(
            id=payload["id"],
            type=job_type,
            prompt=payload.get("prompt") or "",
            mode=mode,
            project_path=project_path,
            auto_cleanup=auto_cleanup is not False,
            title=payload.get("task_title") or payload.get("title"),
            timeout_minutes=int(timeout) if timeout is not None else None,
            task_id=payload.get("task_id"),
        )


@dataclass(frozen=True, slots=True)
class ClarifyingQuestion:
    id: str
    text: str
    required: bool
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Successful job outcome reported back to the service."""

    raw_output: str
    duration_ms: int
    completion: CompletionStatus = CompletionStatus.COMPLETED
    summary: str | None = None
    branch_name: str | None = None
    git_activity: GitActivitySummary | None = None
    questions: tuple[ClarifyingQuestion, ...] | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the job completion call."""

        payload: dict[str, Any] = {
            "execution_time_ms": self.duration_ms,
            "completion_status": self.completion.value,
        }
        if self.summary:
            payload["summary"] = self.summary
        if self.branch_name:
            payload["branch_name"] = self.branch_name
        if self.git_activity is not None:
            payload["git_activity"] = self.git_activity.to_payload()
        if self.questions is not None:
            payload["questions"] = [
                {
                    **question.extra,
                    "id": question.id,
                    "text": question.text,
                    "required": question.required,
                }
                for question in self.questions
            ]
        return payload
