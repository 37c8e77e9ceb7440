"""Shared test fixtures."""

from __future__ import annotations

import os
import stat
import sys
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from agent_worker.errors import PathRejectedError
from agent_worker.guards import PathGuard
from agent_worker.log_pipeline import Destination, LogRecord
from agent_worker.orchestrator import Job


class RecordingReporter:
    """In-memory reporting client capturing every call."""

    def __init__(self) -> None:
        self.events: list[tuple[Any, str, str, dict[str, Any] | None]] = []
        self.progress: list[tuple[Any, str]] = []
        self.flushes: list[Any] = []
        self.logs: list[tuple[Any, str, str, Any]] = []
        self.batches: list[tuple[Any, list[dict[str, Any]]]] = []
        self.metadata: list[tuple[Any, dict[str, Any]]] = []
        self.completed: list[tuple[Any, dict[str, Any]]] = []
        self.failed: list[tuple[Any, dict[str, Any]]] = []
        self.closed = False

    def send_status_event(
        self,
        job_id: Any,
        event_type: str,
        message: str,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        self.events.append((job_id, event_type, message, dict(data) if data else None))

    def send_progress(self, job_id: Any, chunk: str) -> None:
        self.progress.append((job_id, chunk))

    def flush_progress_buffer(self, job_id: Any) -> None:
        self.flushes.append(job_id)

    def add_log(self, job_id: Any, level: str, message: str, metadata: Any = None) -> None:
        self.logs.append((job_id, level, message, metadata))

    def add_log_batch(self, job_id: Any, records: Sequence[Mapping[str, Any]]) -> None:
        self.batches.append((job_id, [dict(record) for record in records]))

    def update_job_metadata(self, job_id: Any, fields: Mapping[str, Any]) -> None:
        self.metadata.append((job_id, dict(fields)))

    def mark_job_completed(self, job_id: Any, payload: Mapping[str, Any]) -> None:
        self.completed.append((job_id, dict(payload)))

    def mark_job_failed(self, job_id: Any, payload: Mapping[str, Any]) -> None:
        self.failed.append((job_id, dict(payload)))

    def close(self) -> None:
        self.closed = True

    def event_types(self) -> list[str]:
        return [event_type for _, event_type, _, _ in self.events]

    def percentages(self) -> list[int]:
        return [
            data["percentage"]
            for _, event_type, _, data in self.events
            if event_type == "progress_update" and data and "percentage" in data
        ]


class MemoryDestination(Destination):
    """Destination that keeps records, batches and errors in lists."""

    def __init__(self, *, supports_batch: bool = True, fail_batch: bool = False) -> None:
        self.supports_batch = supports_batch
        self.fail_batch = fail_batch
        self.records: list[LogRecord] = []
        self.batches: list[list[LogRecord]] = []
        self.errors: list[BaseException] = []
        self.flushes = 0
        self.closed = False
        self.job_context: tuple[Any, dict[str, Any]] | None = None

    def write(self, record: LogRecord) -> None:
        self.records.append(record)

    def send_batch(self, records: Sequence[LogRecord]) -> None:
        if self.fail_batch:
            raise RuntimeError("batch endpoint unavailable")
        self.batches.append(list(records))

    def flush(self) -> None:
        self.flushes += 1

    def close(self) -> None:
        self.closed = True

    def handle_error(self, error: BaseException, record: LogRecord | None = None) -> None:
        self.errors.append(error)

    def set_job_context(self, job_id: Any, context: Mapping[str, Any]) -> None:
        self.job_context = (job_id, dict(context))

    def clear_job_context(self) -> None:
        self.job_context = None

    def messages(self) -> list[str]:
        return [record.message for record in self.records]


class FakeWorkspaces:
    """Workspace provider creating plain directories instead of git worktrees."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.created: list[Any] = []
        self.removed: list[Any] = []

    def create_workspace(self, job: Job) -> Path:
        path = self.root / f"job-{job.id}"
        path.mkdir(parents=True, exist_ok=True)
        self.created.append(job.id)
        return path

    def remove_workspace(self, job: Job) -> None:
        self.removed.append(job.id)

    def branch_name_for(self, job: Job) -> str:
        return f"agent-worker/job-{job.id}"


def write_fake_agent(bin_dir: Path, body: str, *, name: str = "claude") -> Path:
    """Install an executable that runs ``body`` with the current interpreter."""

    bin_dir.mkdir(parents=True, exist_ok=True)
    implementation = bin_dir / f"{name}_impl.py"
    implementation.write_text(body.strip() + "\n", "utf-8")
    launcher = bin_dir / name
    launcher.write_text(
        f'#!/usr/bin/env sh\nexec "{sys.executable}" "{implementation}" "$@"\n',
        "utf-8",
    )
    launcher.chmod(launcher.stat().st_mode | stat.S_IXUSR)
    return launcher


@pytest.fixture()
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture()
def memory_destination() -> MemoryDestination:
    return MemoryDestination()


@pytest.fixture()
def clean_env(monkeypatch) -> None:
    """Drop every AGENT_WORKER_* variable inherited from the outer shell."""

    for name in list(os.environ):
        if name.startswith("AGENT_WORKER_"):
            monkeypatch.delenv(name, raising=False)


posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX process semantics")


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    """A project directory the default path guard accepts."""

    project = tmp_path / "project"
    project.mkdir()
    try:
        PathGuard().validate(project)
    except PathRejectedError as error:
        pytest.skip(f"temporary directory is under a blocked root: {error}")
    return project


def wait_for(condition: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll ``condition`` until it holds or ``timeout`` seconds pass."""

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()
