"""Per-job log files inside the project directory."""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

from agent_worker.log_pipeline.base import Destination
from agent_worker.log_pipeline.records import LogRecord

logger = logging.getLogger(__name__)

LOG_DIR_NAME = ".agent-worker-logs"
_RULE = "═" * 59


def job_log_path(working_dir: Path, job_id: int | str, suffix: str = "") -> Path:
    return working_dir / LOG_DIR_NAME / f"job-{job_id}{suffix}.log"


class JobLogFile:
    """Header, streamed body and completion footer for one job's transcript.

    Transcripts are best-effort: a filesystem error is logged once and later
    writes are dropped, so the job itself is never failed by its log file.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        working_dir: Path,
        job_id: int | str,
        job_type: str,
        title: str | None = None,
        started_at: datetime | None = None,
        suffix: str = "",
    ) -> None:
        self.path = job_log_path(working_dir, job_id, suffix)
        self.job_id = job_id
        self.job_type = job_type
        self.title = title or "Untitled"
        self.started_at = started_at or datetime.now(tz=UTC)
        self._handle: TextIO | None = None
        self._failed = False
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def failed(self) -> bool:
        return self._failed

    def open(self) -> Path:
        """Create (truncating) the file and write the header."""

        with self._lock:
            if self._handle is not None or self._failed:
                return self.path
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._handle = self.path.open("w", encoding="utf-8")
                self._handle.write(
                    f"{_RULE}\n"
                    f"{self.job_type} Job #{self.job_id} - {self.title}\n"
                    f"Started: {self.started_at.isoformat()}\n"
                    f"{_RULE}\n\n",
                )
                self._handle.flush()
            except OSError as exc:
                self._fail(exc)
        return self.path

    def write(self, text: str) -> None:
        if self._handle is None:
            self.open()
        with self._lock:
            if self._handle is None:
                return
            try:
                self._handle.write(text)
                self._handle.flush()
            except OSError as exc:
                self._fail(exc)

    def finish(self, *, question_count: int | None = None) -> None:
        """Write the completion footer and close the file."""

        if self._handle is None:
            return
        footer = f"\n{_RULE}\n{self.job_type} completed at: {datetime.now(tz=UTC).isoformat()}"
        if question_count is not None:
            footer += f"\nGenerated {question_count} questions"
        footer += f"\n{_RULE}\n"
        self.write(footer)
        self.close()

    def close(self) -> None:
        with self._lock:
            if self._handle is None:
                return
            try:
                self._handle.close()
            except OSError as exc:
                logger.warning("Could not close job log %s: %s", self.path, exc)
            self._handle = None

    def discard(self) -> None:
        """Remove a stale transcript from a previous attempt of the same job."""

        self.close()
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove stale job log %s: %s", self.path, exc)

    def _fail(self, exc: OSError) -> None:
        logger.warning("Job log %s unavailable, continuing without it: %s", self.path, exc)
        self._failed = True
        if self._handle is not None:
            try:
                self._handle.close()
            except OSError:
                pass
            self._handle = None


class FileDestination(Destination):
    """Writes formatted records into a job log file, opened lazily on first write.

    With ``buffered=True`` lines are held in memory and appended on ``flush``.
    """

    def __init__(self, job_log: JobLogFile, *, buffered: bool = False) -> None:
        self.job_log = job_log
        self.buffered = buffered
        self._pending: list[str] = []
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self.job_log.path

    def write(self, record: LogRecord) -> None:
        line = (
            f"[{record.timestamp.isoformat()}] {record.level.value.upper().ljust(5)} "
            f"{record.message}"
        )
        if record.metadata:
            line += f" | {json.dumps(record.metadata, default=str)}"
        if not self.buffered:
            self.job_log.write(line + "\n")
            return
        with self._lock:
            self._pending.append(line + "\n")

    def flush(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, []
        if pending:
            self.job_log.write("".join(pending))

    def close(self) -> None:
        self.flush()
        self.job_log.finish()

    def handle_error(self, error: BaseException, record: LogRecord | None = None) -> None:
        try:
            sys.__stderr__.write(f"[FileDestination] {self.job_log.path}: {error}\n")
        except (AttributeError, OSError, ValueError):
            pass
