"""Read-only git introspection of a workspace after an agent run."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

GIT_TIMEOUT_SECONDS = 30.0
_RULE = "═" * 59
NO_COMMITS = "No commits yet"
NO_CHANGES = "No changes"

GitRunner = Callable[[Path, Sequence[str]], str]


class GitCommandError(RuntimeError):
    """A git invocation exited non-zero or could not be started."""


def run_git(cwd: Path, args: Sequence[str], *, timeout: float = GIT_TIMEOUT_SECONDS) -> str:
    """Run one git command and return its stdout."""

    try:
        completed = subprocess.run(  # noqa: S603
            ["git", *args],  # noqa: S607
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as error:
        raise GitCommandError(f"git {' '.join(args)} failed: {error}") from error
    if completed.returncode != 0:
        raise GitCommandError(
            f"git {' '.join(args)} exited with {completed.returncode}: {completed.stderr.strip()}",
        )
    return completed.stdout


@dataclass(frozen=True, slots=True)
class GitActivitySummary:
    """What the agent left behind in its branch."""

    branch_name: str
    commit_count: int
    last_commit_info: str
    change_stats: str
    was_pushed: bool
    has_uncommitted_changes: bool
    summary_text: str

    def to_payload(self) -> dict[str, object]:
        return {
            "commit_count": self.commit_count,
            "last_commit": self.last_commit_info,
            "changes": self.change_stats,
            "pushed_to_remote": self.was_pushed,
            "has_uncommitted_changes": self.has_uncommitted_changes,
        }


class GitActivityReporter:
    """Collects commit, push and diff facts; each failed query only degrades its own field."""

    def __init__(self, runner: GitRunner | None = None) -> None:
        self._runner = runner or run_git

    def current_branch(self, workspace: Path) -> str:
        return self._runner(workspace, ["rev-parse", "--abbrev-ref", "HEAD"]).strip()

    def collect(
        self,
        workspace: Path,
        branch_name: str,
        job_id: int | str,
        *,
        base_ref: str = "origin/main",
    ) -> GitActivitySummary:
        if not workspace.is_dir():
            logger.warning("Workspace not found for git activity: %s", workspace)
            return _build_summary(
                job_id=job_id,
                branch_name=branch_name,
                commit_count=0,
                last_commit_info=NO_COMMITS,
                change_stats=NO_CHANGES,
                was_pushed=False,
                has_uncommitted_changes=False,
            )

        commit_count = self._query(
            workspace,
            ["rev-list", "--count", "HEAD", f"^{base_ref}"],
            parse=lambda out: int(out.strip() or 0),
            default=0,
        )
        has_uncommitted_changes = self._query(
            workspace,
            ["status", "--porcelain"],
            parse=lambda out: bool(out.strip()),
            default=False,
        )
        last_commit_info = NO_COMMITS
        change_stats = NO_CHANGES
        was_pushed = False
        if commit_count > 0:
            last_commit_info = self._query(
                workspace,
                ["log", "-1", "--pretty=format:%h - %s"],
                parse=lambda out: out.strip() or "No commit info",
                default="Failed to get commit info",
            )
            was_pushed = self._query(
                workspace,
                ["branch", "-r", "--contains", "HEAD"],
                parse=lambda out: _has_remote_branch(out, branch_name),
                default=False,
            )
            change_stats = self._query(
                workspace,
                ["diff", "--shortstat", f"{base_ref}...HEAD"],
                parse=lambda out: out.strip() or NO_CHANGES,
                default="Failed to get change stats",
            )

        summary = _build_summary(
            job_id=job_id,
            branch_name=branch_name,
            commit_count=commit_count,
            last_commit_info=last_commit_info,
            change_stats=change_stats,
            was_pushed=was_pushed,
            has_uncommitted_changes=has_uncommitted_changes,
        )
        logger.info("%s", summary.summary_text)
        return summary

    def _query(
        self,
        workspace: Path,
        args: list[str],
        *,
        parse: Callable[[str], T],
        default: T,
    ) -> T:
        try:
            return parse(self._runner(workspace, args))
        except (GitCommandError, ValueError) as error:
            logger.debug("git %s failed: %s", args[0], error)
            return default


def _has_remote_branch(output: str, branch_name: str) -> bool:
    target = f"origin/{branch_name}"
    return any(line.strip() == target for line in output.splitlines())


def _build_summary(  # noqa: PLR0913
    *,
    job_id: int | str,
    branch_name: str,
    commit_count: int,
    last_commit_info: str,
    change_stats: str,
    was_pushed: bool,
    has_uncommitted_changes: bool,
) -> GitActivitySummary:
    lines = [
        "",
        _RULE,
        f"Git Activity Summary for Job #{job_id}",
        _RULE,
        f"Branch: {branch_name}",
        f"New commits: {commit_count}",
    ]
    if commit_count > 0:
        lines.append(f"Latest commit: {last_commit_info}")
        lines.append(f"Changes: {change_stats}")
        lines.append(f"Pushed to remote: {'YES' if was_pushed else 'NO (local only)'}")
    else:
        lines.append("WARNING: NO COMMITS MADE - the agent did not create any commits")
        if has_uncommitted_changes:
            lines.append("WARNING: Uncommitted changes detected - work was done but not committed")
        else:
            lines.append("WARNING: No file changes detected - the agent may have had nothing to do")
    lines.extend([_RULE, ""])
    return GitActivitySummary(
        branch_name=branch_name,
        commit_count=commit_count,
        last_commit_info=last_commit_info,
        change_stats=change_stats,
        was_pushed=was_pushed,
        has_uncommitted_changes=has_uncommitted_changes,
        summary_text="\n".join(lines),
    )
