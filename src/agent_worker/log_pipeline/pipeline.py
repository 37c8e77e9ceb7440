"""Fan-out log pipeline with job context, child loggers, events and timers."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from agent_worker.log_pipeline.base import Destination
from agent_worker.log_pipeline.records import LogLevel, LogRecord

T = TypeVar("T")

_MAX_FANOUT_WORKERS = 4
_ERROR_ACTIONS = frozenset({"failed", "error"})


class OperationTimer:
    """Measures one operation and emits ``<operation>.complete`` when done."""

    def __init__(
        self,
        emit: Callable[..., None],
        operation: str,
        context: dict[str, Any],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._emit = emit
        self.operation = operation
        self._context = context
        self._clock = clock
        self._started_at = clock()

    def done(self, **data: Any) -> int:
        duration_ms = int((self._clock() - self._started_at) * 1000)
        self._emit(
            f"{self.operation}.complete",
            **{**self._context, **data, "duration_ms": duration_ms},
        )
        return duration_ms


class _LoggerSurface(ABC):
    """Level helpers, events, timers and child loggers over ``_log_with``."""

    @abstractmethod
    def _log_with(self, level: LogLevel, message: str, data: dict[str, Any]) -> None: ...

    def _scope(self) -> dict[str, Any]:
        return {}

    def error(self, message: str, **data: Any) -> None:
        self._log_with(LogLevel.ERROR, message, data)

    def warn(self, message: str, **data: Any) -> None:
        self._log_with(LogLevel.WARN, message, data)

    def info(self, message: str, **data: Any) -> None:
        self._log_with(LogLevel.INFO, message, data)

    def debug(self, message: str, **data: Any) -> None:
        self._log_with(LogLevel.DEBUG, message, data)

    def event(self, event_type: str, **data: Any) -> None:
        """Log a ``category.action`` event; failed/error actions log at error level."""

        category, _, action = event_type.partition(".")
        level = LogLevel.ERROR if action in _ERROR_ACTIONS else LogLevel.INFO
        message = action.capitalize() if action else event_type
        self._log_with(
            level,
            message,
            {"event_type": event_type, "category": category, "action": action or None, **data},
        )

    def start_timer(self, operation: str) -> OperationTimer:
        return OperationTimer(self.event, operation, dict(self._scope()))

    def measure(self, operation: str, fn: Callable[[], T]) -> T:
        self.event(f"{operation}.started", **self._scope())
        timer = self.start_timer(operation)
        try:
            result = fn()
        except Exception as exc:
            timer.done(success=False, error=str(exc))
            raise
        timer.done(success=True)
        return result

    @abstractmethod
    def child(self, **context: Any) -> ChildLogger: ...


class ChildLogger(_LoggerSurface):
    """Logger view that adds fixed context to every record."""

    def __init__(self, pipeline: LogPipeline, context: dict[str, Any]) -> None:
        self._pipeline = pipeline
        self.context = context

    def _log_with(self, level: LogLevel, message: str, data: dict[str, Any]) -> None:
        self._pipeline.log(level, message, **{**self.context, **data})

    def _scope(self) -> dict[str, Any]:
        return dict(self.context)

    def child(self, **context: Any) -> ChildLogger:
        return ChildLogger(self._pipeline, {**self.context, **context})


class LogPipeline(_LoggerSurface):
    """Delivers every record to all destinations, isolating destination failures."""

    def __init__(
        self,
        destinations: Iterable[Destination] = (),
        *,
        agent_id: str | None = None,
    ) -> None:
        self._destinations: list[Destination] = list(destinations)
        self.agent_id = agent_id
        self.job_id: int | str | None = None
        self._context: dict[str, Any] = {}
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._closed = False

    @property
    def destinations(self) -> tuple[Destination, ...]:
        with self._lock:
            return tuple(self._destinations)

    @property
    def context(self) -> dict[str, Any]:
        return dict(self._context)

    def log(self, level: LogLevel | str, message: str, **data: Any) -> None:
        metadata: dict[str, Any] = {}
        if self.agent_id:
            metadata["agent_id"] = self.agent_id
        if self.job_id is not None:
            metadata["job_id"] = self.job_id
        metadata.update(self._context)
        metadata.update(data)
        record = LogRecord(level=LogLevel.parse(level), message=message, metadata=metadata)
        self._fan_out(self.destinations, lambda dest: _write_filtered(dest, record), record)

    def _log_with(self, level: LogLevel, message: str, data: dict[str, Any]) -> None:
        self.log(level, message, **data)

    def set_job_context(self, job_id: int | str, **context: Any) -> None:
        self.job_id = job_id
        self._context = dict(context)
        for destination in self.destinations:
            destination.set_job_context(job_id, self._context)

    def clear_job_context(self) -> None:
        """Flush everything buffered for the current job, then drop its context."""

        self.flush()
        self.job_id = None
        self._context = {}
        for destination in self.destinations:
            try:
                destination.clear_job_context()
            except Exception as exc:  # noqa: BLE001
                destination.handle_error(exc)

    def set_context(self, key: str | None = None, value: Any = None, **context: Any) -> None:
        if key is not None:
            self._context[key] = value
        self._context.update(context)

    def child(self, **context: Any) -> ChildLogger:
        return ChildLogger(self, context)

    def add_destination(self, destination: Destination) -> None:
        with self._lock:
            self._destinations.append(destination)
        if self.job_id is not None:
            destination.set_job_context(self.job_id, self._context)

    def remove_destination(self, destination: Destination) -> None:
        with self._lock:
            if destination not in self._destinations:
                return
            self._destinations.remove(destination)
        try:
            destination.close()
        except Exception as exc:  # noqa: BLE001
            destination.handle_error(exc)

    def flush(self) -> None:
        self._fan_out(self.destinations, lambda dest: dest.flush(), None)

    def close(self) -> None:
        self._fan_out(self.destinations, lambda dest: dest.close(), None)
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _fan_out(
        self,
        targets: Iterable[Destination],
        action: Callable[[Destination], None],
        record: LogRecord | None,
    ) -> None:
        targets = list(targets)
        if len(targets) <= 1 or self._closed:
            for destination in targets:
                _guarded(destination, action, record)
            return
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=_MAX_FANOUT_WORKERS,
                    thread_name_prefix="log-fanout",
                )
            executor = self._executor
        futures = [
            executor.submit(_guarded, destination, action, record) for destination in targets
        ]
        for future in futures:
            future.result()


def _write_filtered(destination: Destination, record: LogRecord) -> None:
    if destination.should_log(record.level):
        destination.write(record)


def _guarded(
    destination: Destination,
    action: Callable[[Destination], None],
    record: LogRecord | None,
) -> None:
    try:
        action(destination)
    except Exception as exc:  # noqa: BLE001
        try:
            destination.handle_error(exc, record)
        except Exception:  # noqa: BLE001
            pass
