"""Controllers for agent worker CLI commands."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import httpx

from agent_worker.config import Settings
from agent_worker.errors import AgentWorkerError, GuardError
from agent_worker.guards import PathGuard, PromptGuard
from agent_worker.log_pipeline import (
    BatchingDestination,
    ConsoleDestination,
    LogLevel,
    LogPipeline,
    RemoteDestination,
)
from agent_worker.orchestrator import GitWorktreeProvider, Job, JobOrchestrator
from agent_worker.reporting import HttpReportingClient, NullReportingClient
from agent_worker.supervisor import CategorizedError

_STDLIB_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


@dataclass(slots=True)
class RunJobCommand:
    """CLI input for executing one job description file."""

    job_file: Path
    project_path: Path | None = None
    output_path: Path | None = None


@dataclass(slots=True)
class CheckPathCommand:
    """CLI input for a dry-run path validation."""

    path: str
    require_existing: bool = False


@dataclass(slots=True)
class CheckPromptCommand:
    """CLI input for a dry-run prompt validation."""

    text: str


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus the process exit verdict."""

    lines: list[str]
    success: bool


class WorkerCliController:
    """Wires settings, reporting and the orchestrator for CLI commands."""

    def run_job(self, command: RunJobCommand) -> CommandResult:
        settings = Settings.from_env()
        configure_logging(settings)
        job = load_job(command.job_file)
        if command.project_path is not None:
            job = replace(job, project_path=str(command.project_path))

        reporter = build_reporter(settings)
        pipeline = build_pipeline(settings, reporter)
        orchestrator = JobOrchestrator(
            settings,
            pipeline=pipeline,
            reporter=reporter,
            workspaces=GitWorktreeProvider(),
        )
        try:
            try:
                with orchestrator.signal_handlers():
                    result = orchestrator.execute(job)
            except AgentWorkerError as error:
                reporter.mark_job_failed(job.id, failure_payload(error))
                return CommandResult(lines=_failure_lines(job, error), success=False)
            finally:
                pipeline.close()

            payload: dict[str, Any] = {"output": result.raw_output, **result.to_payload()}
            try:
                reporter.mark_job_completed(job.id, payload)
            except httpx.HTTPError as error:
                return CommandResult(
                    lines=[f"Job #{job.id} finished but completion was not reported: {error}"],
                    success=False,
                )
        finally:
            reporter.close()

        if command.output_path is not None:
            command.output_path.write_text(
                json.dumps(payload, indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
        lines = [
            f"Job #{job.id} ({job.type.value}) completed in {result.duration_ms} ms "
            f"status={result.completion.value}",
        ]
        if result.summary:
            lines.append(f"Summary: {result.summary}")
        if result.branch_name:
            lines.append(f"Branch: {result.branch_name}")
        if result.questions is not None:
            lines.append(f"Questions: {len(result.questions)}")
        if command.output_path is not None:
            lines.append(f"Result written to {command.output_path}")
        return CommandResult(lines=lines, success=True)

    def check_path(self, command: CheckPathCommand) -> CommandResult:
        settings = Settings.from_env()
        guard = PathGuard(allowed_paths=settings.guards.allowed_paths)
        try:
            if command.require_existing:
                path = guard.validate_existing(command.path, job_type="code_execution")
            else:
                path = guard.validate(command.path)
        except GuardError as error:
            return CommandResult(lines=[f"Rejected ({error.reason}): {error}"], success=False)
        return CommandResult(lines=[f"Accepted: {path}"], success=True)

    def check_prompt(self, command: CheckPromptCommand) -> CommandResult:
        try:
            PromptGuard().validate(command.text)
        except GuardError as error:
            return CommandResult(lines=[f"Rejected ({error.reason}): {error}"], success=False)
        return CommandResult(lines=[f"Accepted: {len(command.text)} chars"], success=True)


def load_job(path: Path) -> Job:
    """Read a job description as the service sends it."""

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as error:
        raise ValueError(f"Job file {path} is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ValueError(f"Job file {path} must contain a JSON object.")
    return Job.from_payload(payload)


def build_reporter(settings: Settings) -> HttpReportingClient | NullReportingClient:
    if settings.api.base_url and settings.api.token:
        return HttpReportingClient(
            base_url=settings.api.base_url,
            token=settings.api.token,
            agent_id=settings.agent_id,
            timeout_seconds=settings.api.request_timeout_seconds,
            max_retries=settings.api.max_retries,
        )
    return NullReportingClient()


def build_pipeline(
    settings: Settings,
    reporter: HttpReportingClient | NullReportingClient,
) -> LogPipeline:
    """Console output always; remote delivery in batches when the service is configured."""

    destinations = [
        ConsoleDestination(
            min_level=settings.logging.level,
            colors=settings.logging.console_colors,
            fmt=settings.logging.console_format,
        ),
    ]
    if isinstance(reporter, HttpReportingClient):
        destinations.append(
            BatchingDestination(
                RemoteDestination(reporter, use_batch_endpoint=settings.logging.use_batch_endpoint),
                max_batch_size=settings.logging.max_batch_size,
                flush_interval=settings.flush_interval_seconds,
                use_batch_send=settings.logging.use_batch_endpoint,
            ),
        )
    return LogPipeline(destinations, agent_id=settings.agent_id)


def configure_logging(settings: Settings) -> None:
    level = LogLevel.parse(settings.logging.level)
    logging.basicConfig(
        level=_STDLIB_LEVELS[level.value],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def failure_payload(error: AgentWorkerError) -> dict[str, Any]:
    """Body for the job failure call."""

    if isinstance(error, CategorizedError):
        return {"error": error.user_message, **error.to_event_details()}
    payload: dict[str, Any] = {"error": str(error), "error_category": "unknown"}
    if isinstance(error, GuardError):
        payload["error_reason"] = error.reason
    return payload


def _failure_lines(job: Job, error: AgentWorkerError) -> list[str]:
    lines = [f"Job #{job.id} ({job.type.value}) failed: {error}"]
    if isinstance(error, CategorizedError):
        lines.append(f"Category: {error.category.value}")
        if error.technical_details:
            lines.append(error.technical_details)
    return lines
