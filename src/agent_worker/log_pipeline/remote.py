"""Destinations that forward records to the controlling service."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from agent_worker.log_pipeline.base import Destination
from agent_worker.log_pipeline.batching import BatchingDestination
from agent_worker.log_pipeline.records import LogRecord
from agent_worker.log_pipeline.redaction import redact
from agent_worker.reporting import ReportingClient

logger = logging.getLogger(__name__)


class RemoteDestination(Destination):
    """Sends job-scoped records through a reporting client; drops records outside a job."""

    supports_batch = True

    def __init__(
        self,
        client: ReportingClient,
        *,
        job_id: int | str | None = None,
        use_batch_endpoint: bool = True,
    ) -> None:
        self.client = client
        self.job_id = job_id
        self.supports_batch = use_batch_endpoint

    def set_job_context(self, job_id: int | str, context: Mapping[str, Any]) -> None:
        self.job_id = job_id

    def clear_job_context(self) -> None:
        self.job_id = None

    def write(self, record: LogRecord) -> None:
        job_id = self._job_id_for(record)
        if job_id is None:
            return
        self.client.add_log(
            job_id,
            record.level.value,
            redact(record.message),
            redact(record.metadata) or None,
        )

    def send_batch(self, records: Sequence[LogRecord]) -> None:
        grouped: dict[int | str, list[dict[str, Any]]] = {}
        for record in records:
            job_id = self._job_id_for(record)
            if job_id is None:
                continue
            grouped.setdefault(job_id, []).append(redact(record.to_payload()))
        for job_id, payloads in grouped.items():
            self.client.add_log_batch(job_id, payloads)

    def handle_error(self, error: BaseException, record: LogRecord | None = None) -> None:
        logger.debug("Remote log delivery failed: %s", error)

    def _job_id_for(self, record: LogRecord) -> int | str | None:
        job_id = record.metadata.get("job_id", self.job_id)
        return job_id if job_id not in (None, "") else None


class ProgressDestination(Destination):
    """Streams agent output records to the service's progress buffer for one job."""

    supports_batch = True

    def __init__(self, client: ReportingClient, job_id: int | str) -> None:
        self.client = client
        self.job_id = job_id

    def write(self, record: LogRecord) -> None:
        if not record.message:
            return
        self.client.send_progress(self.job_id, record.message)

    def send_batch(self, records: Sequence[LogRecord]) -> None:
        for record in records:
            self.write(record)
        self.client.flush_progress_buffer(self.job_id)

    def handle_error(self, error: BaseException, record: LogRecord | None = None) -> None:
        logger.debug("Failed to forward progress for job #%s: %s", self.job_id, error)


def progress_destination(
    client: ReportingClient,
    job_id: int | str,
    *,
    max_batch_size: int = 10,
    flush_interval: float = 2.0,
) -> BatchingDestination:
    """Progress destination flushed every ``max_batch_size`` chunks or ``flush_interval`` s."""

    return BatchingDestination(
        ProgressDestination(client, job_id),
        max_batch_size=max_batch_size,
        flush_interval=flush_interval,
    )
