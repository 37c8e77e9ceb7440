"""Buffering decorator that turns per-record writes into batches."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any

from agent_worker.log_pipeline.base import Destination
from agent_worker.log_pipeline.records import LogLevel, LogRecord

logger = logging.getLogger(__name__)


class BatchingDestination(Destination):
    """Wraps a destination with size- and interval-triggered flushing.

    Records are buffered until ``max_batch_size`` is reached or the flush timer
    fires. A failed batch send is retried record by record so one bad record
    cannot lose the rest. After ``close`` every write goes straight through.
    """

    def __init__(
        self,
        inner: Destination,
        *,
        max_batch_size: int = 10,
        flush_interval: float = 2.0,
        use_batch_send: bool = True,
        start_timer: bool = True,
    ) -> None:
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be > 0.")
        self.inner = inner
        self.max_batch_size = max_batch_size
        self.flush_interval = flush_interval
        self.use_batch_send = use_batch_send
        self._buffer: list[LogRecord] = []
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._closed = False
        self._stop = threading.Event()
        self._timer: threading.Thread | None = None
        if start_timer and flush_interval > 0:
            self._timer = threading.Thread(
                target=self._flush_periodically,
                name="log-batch-flush",
                daemon=True,
            )
            self._timer.start()

    @property
    def buffer_size(self) -> int:
        with self._lock:
            return len(self._buffer)

    def should_log(self, level: LogLevel) -> bool:
        return self.inner.should_log(level)

    def set_job_context(self, job_id: int | str, context: Mapping[str, Any]) -> None:
        self.inner.set_job_context(job_id, context)

    def clear_job_context(self) -> None:
        self.inner.clear_job_context()

    def write(self, record: LogRecord) -> None:
        full = False
        with self._lock:
            closed = self._closed
            if not closed:
                self._buffer.append(record)
                full = len(self._buffer) >= self.max_batch_size
        if closed:
            try:
                self.inner.write(record)
            except Exception as exc:  # noqa: BLE001
                self.handle_error(exc, record)
            return
        if full:
            self.flush()

    def flush(self) -> None:
        with self._send_lock:
            with self._lock:
                batch, self._buffer = self._buffer, []
            if not batch:
                return
            if self.use_batch_send and self.inner.supports_batch:
                try:
                    self.inner.send_batch(batch)
                    return
                except Exception as exc:  # noqa: BLE001
                    logger.debug("Batch send of %s records failed: %s", len(batch), exc)
            self._send_individually(batch)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._stop.set()
        if self._timer is not None and self._timer is not threading.current_thread():
            self._timer.join(timeout=self.flush_interval + 1.0)
        self.flush()
        self.inner.close()

    def handle_error(self, error: BaseException, record: LogRecord | None = None) -> None:
        self.inner.handle_error(error, record)

    def _send_individually(self, batch: list[LogRecord]) -> None:
        for record in batch:
            try:
                self.inner.write(record)
            except Exception as exc:  # noqa: BLE001
                self.handle_error(exc, record)

    def _flush_periodically(self) -> None:
        while not self._stop.wait(self.flush_interval):
            try:
                self.flush()
            except Exception:  # noqa: BLE001
                logger.debug("Periodic log flush failed", exc_info=True)
