"""Isolated per-job git worktrees for code execution."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from agent_worker.errors import WorkspaceError
from agent_worker.git_activity import GitCommandError, GitRunner, run_git
from agent_worker.orchestrator.models import Job

logger = logging.getLogger(__name__)

WORKTREES_DIR_NAME = ".agent-worker-worktrees"
BRANCH_PREFIX = "agent-worker"


class WorkspaceProvider(Protocol):
    """Creates and releases the isolated working copy an agent runs in."""

    def create_workspace(self, job: Job) -> Path: ...

    def remove_workspace(self, job: Job) -> None: ...

    def branch_name_for(self, job: Job) -> str: ...


class GitWorktreeProvider:
    """``git worktree`` based workspaces next to the project repository."""

    def __init__(self, runner: GitRunner | None = None) -> None:
        self._runner = runner or run_git

    def workspace_path_for(self, job: Job) -> Path:
        return _project_root(job) / WORKTREES_DIR_NAME / f"job-{job.id}"

    def branch_name_for(self, job: Job) -> str:
        if job.task_id is not None:
            return f"{BRANCH_PREFIX}/ticket-{job.task_id}/job-{job.id}"
        return f"{BRANCH_PREFIX}/job-{job.id}"

    def create_workspace(self, job: Job) -> Path:
        project_root = _project_root(job)
        workspace = self.workspace_path_for(job)
        branch = self.branch_name_for(job)
        logger.info("Creating worktree for job %s at %s (branch %s)", job.id, workspace, branch)
        try:
            self._runner(project_root, ["--version"])
            if workspace.exists():
                logger.warning("Worktree already exists at %s, removing stale worktree", workspace)
                self.remove_workspace(job)
            self._runner(project_root, ["worktree", "add", "-b", branch, str(workspace), "HEAD"])
        except GitCommandError as error:
            logger.error("Failed to create worktree for job %s: %s", job.id, error)
            raise WorkspaceError(f"Failed to create worktree: {error}") from error
        return workspace

    def remove_workspace(self, job: Job) -> None:
        """Remove the worktree; the branch is kept for inspection."""

        workspace = self.workspace_path_for(job)
        try:
            self._runner(_project_root(job), ["worktree", "remove", str(workspace), "--force"])
        except GitCommandError as error:
            logger.error("Failed to remove worktree for job %s: %s", job.id, error)
            return
        logger.info("Removed worktree: %s", workspace)


def _project_root(job: Job) -> Path:
    if not job.project_path:
        raise WorkspaceError(f"Job {job.id} has no project path for a worktree.")
    return Path(job.project_path)
