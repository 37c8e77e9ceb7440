"""Reporting channel to the controlling service."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import httpx

from agent_worker import __version__
from agent_worker.errors import AgentWorkerError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/rb"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
PROGRESS_BATCH_SIZE = 10
PROGRESS_FLUSH_INTERVAL_SECONDS = 2.0
MAX_METADATA_CHARS = 10_000
MAX_SUMMARY_CHARS = 10_000


class ReportingError(AgentWorkerError):
    """A reporting call that must not be silently dropped failed."""


class ReportingClient(Protocol):
    """Status, progress and log sink for one worker."""

    def send_status_event(
        self,
        job_id: int | str,
        event_type: str,
        message: str,
        data: Mapping[str, Any] | None = None,
    ) -> None: ...

    def send_progress(self, job_id: int | str, chunk: str) -> None: ...

    def flush_progress_buffer(self, job_id: int | str) -> None: ...

    def add_log(
        self,
        job_id: int | str,
        level: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> None: ...

    def add_log_batch(self, job_id: int | str, records: Sequence[Mapping[str, Any]]) -> None: ...

    def update_job_metadata(self, job_id: int | str, fields: Mapping[str, Any]) -> None: ...


class NullReportingClient:
    """Reporting client for local runs without a controlling service."""

    def send_status_event(
        self,
        job_id: int | str,
        event_type: str,
        message: str,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        logger.debug("Job #%s event %s: %s", job_id, event_type, message)

    def send_progress(self, job_id: int | str, chunk: str) -> None:
        return None

    def flush_progress_buffer(self, job_id: int | str) -> None:
        return None

    def add_log(
        self,
        job_id: int | str,
        level: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        return None

    def add_log_batch(self, job_id: int | str, records: Sequence[Mapping[str, Any]]) -> None:
        return None

    def update_job_metadata(self, job_id: int | str, fields: Mapping[str, Any]) -> None:
        logger.debug("Job #%s metadata: %s", job_id, dict(fields))

    def mark_job_completed(self, job_id: int | str, payload: Mapping[str, Any]) -> None:
        logger.info("Job #%s completed", job_id)

    def mark_job_failed(self, job_id: int | str, payload: Mapping[str, Any]) -> None:
        logger.info("Job #%s failed: %s", job_id, payload.get("error"))

    def close(self) -> None:
        return None


class HttpReportingClient:
    """httpx-backed reporting client with buffered progress chunks.

    Progress chunks are posted as one batch once ``PROGRESS_BATCH_SIZE`` are
    buffered for a job, or when the job's flush timer fires, whichever is first.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        token: str,
        agent_id: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        progress_flush_interval: float = PROGRESS_FLUSH_INTERVAL_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/") + API_PREFIX,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={
                "Authorization": f"Bearer {token}",
                "X-Agent-ID": agent_id,
                "User-Agent": f"agent-worker/{__version__}",
            },
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )
        self.progress_flush_interval = progress_flush_interval
        self._progress_lock = threading.Lock()
        self._progress: dict[str, list[dict[str, Any]]] = {}
        self._progress_timers: dict[str, threading.Timer] = {}

    def close(self) -> None:
        with self._progress_lock:
            pending = list(self._progress)
        for job_id in pending:
            self.flush_progress_buffer(job_id)
        self._client.close()

    def send_status_event(
        self,
        job_id: int | str,
        event_type: str,
        message: str,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        try:
            self._request(
                "POST",
                f"/jobs/{job_id}/events",
                {"event_type": event_type, "message": message, "metadata": dict(data or {})},
            )
        except httpx.HTTPError as exc:
            logger.warning("Error sending status event for job #%s: %s", job_id, exc)

    def send_progress(self, job_id: int | str, chunk: str) -> None:
        key = str(job_id)
        with self._progress_lock:
            buffer = self._progress.setdefault(key, [])
            buffer.append({"chunk": chunk, "timestamp": int(time.time() * 1000)})
            full = len(buffer) >= PROGRESS_BATCH_SIZE
            if not full and key not in self._progress_timers:
                timer = threading.Timer(
                    self.progress_flush_interval,
                    self._flush_on_timer,
                    args=(job_id,),
                )
                timer.daemon = True
                self._progress_timers[key] = timer
                timer.start()
        if full:
            self.flush_progress_buffer(job_id)

    def flush_progress_buffer(self, job_id: int | str) -> None:
        key = str(job_id)
        with self._progress_lock:
            timer = self._progress_timers.pop(key, None)
            updates = self._progress.pop(key, [])
        if timer is not None:
            timer.cancel()
        if not updates:
            return
        try:
            self._request("POST", f"/jobs/{job_id}/progress_batch", {"updates": updates})
        except httpx.HTTPError as exc:
            logger.warning("Error sending batched progress for job #%s: %s", job_id, exc)
            return
        logger.debug("Batched %s progress updates for job #%s", len(updates), job_id)

    def _flush_on_timer(self, job_id: int | str) -> None:
        try:
            self.flush_progress_buffer(job_id)
        except Exception:  # noqa: BLE001
            logger.debug("Error flushing progress buffer for job #%s", job_id, exc_info=True)

    def add_log(
        self,
        job_id: int | str,
        level: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "level": level,
            "message": message,
            "timestamp": _iso_now(),
        }
        if metadata:
            payload["metadata"] = dict(metadata)
        try:
            self._request("PATCH", f"/jobs/{job_id}/setup_log", payload)
        except httpx.HTTPError as exc:
            raise ReportingError(f"Failed to send log for job #{job_id}: {exc}") from exc

    def add_log_batch(self, job_id: int | str, records: Sequence[Mapping[str, Any]]) -> None:
        if not records:
            return
        try:
            self._request("POST", f"/jobs/{job_id}/setup_logs", {"logs": list(records)})
        except httpx.HTTPError as exc:
            raise ReportingError(f"Failed to send log batch for job #{job_id}: {exc}") from exc

    def update_job_metadata(self, job_id: int | str, fields: Mapping[str, Any]) -> None:
        encoded = json.dumps(dict(fields), default=str)
        if len(encoded) > MAX_METADATA_CHARS:
            logger.warning("Metadata too large (%s chars), not sent", len(encoded))
            return
        try:
            self._request("PATCH", f"/jobs/{job_id}/metadata", {"metadata": json.loads(encoded)})
        except httpx.HTTPError as exc:
            logger.warning("Error updating metadata for job #%s: %s", job_id, exc)

    def mark_job_completed(self, job_id: int | str, payload: Mapping[str, Any]) -> None:
        """Report the final result. Failures propagate to the caller."""

        self.flush_progress_buffer(job_id)
        body = {"status": "completed", **payload}
        summary = body.get("summary")
        if isinstance(summary, str) and len(summary) > MAX_SUMMARY_CHARS:
            body["summary"] = summary[:MAX_SUMMARY_CHARS]
        self._request("PATCH", f"/jobs/{job_id}", body)
        logger.info("Job #%s marked as completed", job_id)

    def mark_job_failed(self, job_id: int | str, payload: Mapping[str, Any]) -> None:
        self.flush_progress_buffer(job_id)
        try:
            self._request("PATCH", f"/jobs/{job_id}", {"status": "failed", **payload})
        except httpx.HTTPError as exc:
            logger.error("Failed to mark job #%s as failed: %s", job_id, exc)
            return
        logger.info("Job #%s marked as failed", job_id)

    def _request(self, method: str, path: str, payload: Mapping[str, Any]) -> httpx.Response:
        response = self._client.request(method, path, json=payload)
        response.raise_for_status()
        return response


def _iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
