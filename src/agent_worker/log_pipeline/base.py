"""Destination contract for the log pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from agent_worker.log_pipeline.records import LogLevel, LogRecord


class Destination(ABC):
    """Log sink. Only ``write`` is required; every other hook has a safe default."""

    supports_batch: bool = False

    @abstractmethod
    def write(self, record: LogRecord) -> None: ...

    def send_batch(self, records: Sequence[LogRecord]) -> None:
        for record in records:
            self.write(record)

    def flush(self) -> None:
        return None

    def close(self) -> None:
        self.flush()

    def should_log(self, level: LogLevel) -> bool:
        return True

    def handle_error(self, error: BaseException, record: LogRecord | None = None) -> None:
        return None

    def set_job_context(self, job_id: int | str, context: Mapping[str, Any]) -> None:
        return None

    def clear_job_context(self) -> None:
        return None
