"""Job orchestrator: guards, supervised agent run, reporting and workspace lifecycle."""

from __future__ import annotations

import json
import logging
import os
import re
import shlex
import shutil
import signal
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from agent_worker.config import Settings
from agent_worker.errors import (
    AgentWorkerError,
    OutputContractError,
    SupervisorBusyError,
    UnknownJobTypeError,
)
from agent_worker.git_activity import GitActivityReporter
from agent_worker.guards import EnvironmentGuard, PathGuard, PromptGuard
from agent_worker.guards.prompts import preview
from agent_worker.log_pipeline import JobLogFile, LogPipeline, job_log_path, progress_destination
from agent_worker.log_pipeline.redaction import sanitize_preview
from agent_worker.orchestrator.models import (
    ClarifyingQuestion,
    ExecutionResult,
    Job,
    JobMode,
    JobType,
)
from agent_worker.orchestrator.workspace import WorkspaceProvider
from agent_worker.progress import MilestoneExtractor
from agent_worker.reporting import ReportingClient
from agent_worker.supervisor import (
    CategorizedError,
    ProcessOutcome,
    ProcessSupervisor,
    RunMode,
    StreamJsonDecoder,
    SupervisorRequest,
    timeout_for_job,
)
from agent_worker.supervisor.stream import DecodedChunk

logger = logging.getLogger(__name__)

CLAUDE_ARGS: tuple[str, ...] = (
    "-p",
    "--output-format",
    "stream-json",
    "--include-partial-messages",
    "--permission-mode",
    "acceptEdits",
    "--verbose",
)
SUMMARY_PATTERN = re.compile(r"AGENT_SUMMARY:\s*(.+?)(?:\n|$)")
ARTIFACT_NAMES: tuple[str, ...] = ("progress.txt", "prd.json")

_PRD_LOG_TITLE = "PRD Generation"
_CLARIFYING_LOG_TITLE = "Clarifying Questions Generation"
_CODE_LOG_TITLE = "Code Execution"


class JobOrchestrator:
    """Runs one job at a time through guards, the supervised agent and reporting."""

    def __init__(  # noqa: PLR0913
        self,
        settings: Settings,
        *,
        pipeline: LogPipeline,
        reporter: ReportingClient,
        workspaces: WorkspaceProvider,
        supervisor: ProcessSupervisor | None = None,
        git_reporter: GitActivityReporter | None = None,
        path_guard: PathGuard | None = None,
        prompt_guard: PromptGuard | None = None,
        env_guard: EnvironmentGuard | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.pipeline = pipeline
        self.reporter = reporter
        self.workspaces = workspaces
        self.supervisor = supervisor or ProcessSupervisor(
            kill_grace_seconds=settings.supervisor.kill_grace_seconds,
        )
        self.git_reporter = git_reporter or GitActivityReporter()
        self.path_guard = path_guard or PathGuard(allowed_paths=settings.guards.allowed_paths)
        self.prompt_guard = prompt_guard or PromptGuard()
        self.env_guard = env_guard or EnvironmentGuard(
            extra_names=settings.guards.extra_env_names,
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._current_job_id: int | str | None = None
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    @property
    def current_job_id(self) -> int | str | None:
        return self._current_job_id

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def execute(self, job: Job) -> ExecutionResult:
        """Run ``job`` to completion; raises on guard, agent or output failures."""

        with self._lock:
            if self._current_job_id is not None:
                raise SupervisorBusyError(
                    f"Orchestrator is busy with job #{self._current_job_id}.",
                )
            self._current_job_id = job.id

        handlers: dict[JobType, Callable[[Job, float], ExecutionResult]] = {
            JobType.PRD_GENERATION: self._execute_prd,
            JobType.CLARIFYING_QUESTIONS: self._execute_clarifying_questions,
            JobType.CODE_EXECUTION: self._execute_code,
        }
        started = self._clock()
        self.pipeline.set_job_context(job.id, job_type=job.type.value)
        log = self.pipeline.child(component="orchestrator")
        try:
            handler = handlers.get(job.type)
            if handler is None:
                raise UnknownJobTypeError(f"Unknown job type: {job.type}")
            log.event("job.started", title=job.display_title, mode=job.mode.value)
            result = handler(job, started)
            log.event("job.completed", duration_ms=result.duration_ms)
            return result
        except AgentWorkerError as error:
            details: dict[str, Any] = {"error": str(error), "error_type": type(error).__name__}
            if isinstance(error, CategorizedError):
                details["category"] = error.category.value
            log.event("job.failed", **details)
            raise
        finally:
            self.pipeline.clear_job_context()
            with self._lock:
                self._current_job_id = None

    def shutdown(self) -> bool:
        """Terminate the active agent process; True when a signal was delivered."""

        if self._current_job_id is not None:
            logger.warning("Shutdown requested while job #%s is running", self._current_job_id)
        return self.supervisor.terminate_active()

    @contextmanager
    def signal_handlers(self) -> Iterator[None]:
        """Turn SIGINT/SIGTERM into a graceful shutdown of the active agent."""

        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._request_stop(signal_name=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            try:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
            except ValueError:
                pass

    def _request_stop(self, *, signal_name: str) -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name
        logger.warning("Received %s, stopping active agent process", signal_name)
        threading.Thread(target=self.shutdown, name="agent-shutdown", daemon=True).start()

    # -- job types ---------------------------------------------------------

    def _execute_prd(self, job: Job, started: float) -> ExecutionResult:
        log = self.pipeline.child(component="prd_generation")
        self._validate_prompt(job)
        working_dir = self.path_guard.validate_with_fallback(job.project_path)
        transcript = JobLogFile(
            working_dir=working_dir,
            job_id=job.id,
            job_type=_PRD_LOG_TITLE,
            title=job.title,
        )
        transcript.discard()

        if job.mode is JobMode.STANDARD:
            self._send_event(
                job.id,
                "prd_generation_started",
                "Starting PRD generation with Claude...",
            )
        log.info("Generating PRD", mode=job.mode.value, working_dir=str(working_dir))
        try:
            outcome, output = self._run_single_shot(job, working_dir, transcript=transcript)
        except AgentWorkerError as error:
            transcript.close()
            self._send_failure(job.id, "prd_generation_failed", "PRD generation failed", error)
            raise
        transcript.finish()
        self._send_event(job.id, "prd_generation_complete", "PRD generation completed")
        return ExecutionResult(
            raw_output=output.strip(),
            duration_ms=self._elapsed_ms(started),
            completion=outcome.completion,
        )

    def _execute_clarifying_questions(self, job: Job, started: float) -> ExecutionResult:
        log = self.pipeline.child(component="clarifying_questions")
        self._validate_prompt(job)
        working_dir = self.path_guard.validate_with_fallback(job.project_path)
        transcript = JobLogFile(
            working_dir=working_dir,
            job_id=job.id,
            job_type=_CLARIFYING_LOG_TITLE,
            title=job.title,
        )
        transcript.open()
        log.info("Clarifying questions log created", path=str(transcript.path))
        self._send_event(
            job.id,
            "clarifying_questions_started",
            "Generating clarifying questions with Claude...",
        )
        try:
            outcome, output = self._run_single_shot(job, working_dir, transcript=transcript)
            questions = parse_clarifying_questions(output)
        except AgentWorkerError as error:
            transcript.close()
            self._send_failure(
                job.id,
                "clarifying_questions_failed",
                "Clarifying questions generation failed",
                error,
            )
            raise
        transcript.finish(question_count=len(questions))
        log.info("JSON validation successful", question_count=len(questions))
        self._send_event(
            job.id,
            "clarifying_questions_complete",
            f"Generated {len(questions)} clarifying questions",
        )
        return ExecutionResult(
            raw_output=output.strip(),
            duration_ms=self._elapsed_ms(started),
            completion=outcome.completion,
            questions=questions,
        )

    def _execute_code(self, job: Job, started: float) -> ExecutionResult:
        log = self.pipeline.child(component="code_execution")
        project_root = self.path_guard.validate_existing(job.project_path, job_type=job.type.value)
        self._validate_prompt(job)
        run_mode = RunMode.ITERATIVE if job.mode is JobMode.ITERATIVE else RunMode.SINGLE_SHOT
        command, args = self._agent_command(run_mode)
        job = replace(job, project_path=str(project_root))

        self._send_event(job.id, "setup_started", "Setting up workspace...")
        self._send_progress_event(job.id, 5, "Initializing...")
        self._send_event(job.id, "git_operations", "Creating Git worktree...")
        workspace = log.measure("workspace.create", lambda: self.workspaces.create_workspace(job))
        try:
            return self._run_in_workspace(
                job,
                project_root=project_root,
                workspace=workspace,
                run_mode=run_mode,
                command=command,
                args=args,
                started=started,
            )
        finally:
            self._release_workspace(job, workspace)

    def _run_in_workspace(  # noqa: PLR0913
        self,
        job: Job,
        *,
        project_root: Path,
        workspace: Path,
        run_mode: RunMode,
        command: str,
        args: tuple[str, ...],
        started: float,
    ) -> ExecutionResult:
        log = self.pipeline.child(component="code_execution", workspace=str(workspace))
        self._update_metadata(job.id, {"worktree_path": str(workspace)})
        self._send_event(job.id, "git_operations", f"Worktree ready at {workspace.name}")
        self._send_progress_event(job.id, 10, "Workspace ready")
        self._send_event(job.id, "claude_started", "Claude is working on the task...")
        self._send_progress_event(job.id, 15, "Agent running")

        transcript = JobLogFile(
            working_dir=project_root,
            job_id=job.id,
            job_type=_CODE_LOG_TITLE,
            title=job.title,
        )
        transcript.open()
        env = self.env_guard.sanitize(
            os.environ,
            extra={
                "AGENT_WORKER_RUNTIME_MODE": self.settings.supervisor.runtime_mode,
                "AGENT_WORKER_WORKSPACE_PATH": str(workspace),
                "AGENT_WORKER_MAIN_REPO": str(project_root),
            },
        )
        request = SupervisorRequest(
            command=command,
            args=args,
            cwd=workspace,
            env=env,
            stdin_payload=job.prompt,
            timeout_seconds=self._timeout_for(job, run_mode),
            run_mode=run_mode,
        )
        extractor = MilestoneExtractor(self.reporter, job.id, job.type.value)
        try:
            outcome, output = self._supervise(
                job,
                request,
                transcript=transcript,
                extractor=extractor,
            )
        except CategorizedError as error:
            transcript.close()
            self._write_error_log(project_root, job, error)
            self._copy_artifacts(workspace, project_root, job)
            raise
        transcript.finish()
        if outcome.stderr.strip():
            _write_text(job_log_path(project_root, job.id, "-stderr"), outcome.stderr)
        self._copy_artifacts(workspace, project_root, job)
        if not transcript.failed:
            log.info("Execution log saved", path=str(transcript.path))

        branch_name = self.workspaces.branch_name_for(job)
        git_activity = self.git_reporter.collect(workspace, branch_name, job.id)
        self._send_progress_event(job.id, 95, "Finalizing...")
        self._send_event(
            job.id,
            "job_completed",
            "Job completed",
            {"git_activity": git_activity.to_payload(), "completion": outcome.completion.value},
        )
        extractor.mark_complete()
        return ExecutionResult(
            raw_output=output,
            duration_ms=self._elapsed_ms(started),
            completion=outcome.completion,
            summary=extract_summary(output, job),
            branch_name=branch_name,
            git_activity=git_activity,
        )

    # -- agent runs --------------------------------------------------------

    def _run_single_shot(
        self,
        job: Job,
        working_dir: Path,
        *,
        transcript: JobLogFile,
    ) -> tuple[ProcessOutcome, str]:
        extractor = MilestoneExtractor(self.reporter, job.id, job.type.value)
        request = SupervisorRequest(
            command=self.settings.supervisor.agent_command,
            args=CLAUDE_ARGS,
            cwd=working_dir,
            env=self.env_guard.sanitize(
                os.environ,
                extra={"AGENT_WORKER_RUNTIME_MODE": self.settings.supervisor.runtime_mode},
            ),
            stdin_payload=job.prompt,
            timeout_seconds=self._timeout_for(job, RunMode.SINGLE_SHOT),
        )
        result = self._supervise(job, request, transcript=transcript, extractor=extractor)
        extractor.mark_complete()
        return result

    def _supervise(
        self,
        job: Job,
        request: SupervisorRequest,
        *,
        transcript: JobLogFile,
        extractor: MilestoneExtractor | None = None,
    ) -> tuple[ProcessOutcome, str]:
        """Run the agent and fan decoded output out to progress, milestones and transcript."""

        decoder = StreamJsonDecoder()
        progress = LogPipeline(
            [
                progress_destination(
                    self.reporter,
                    job.id,
                    max_batch_size=self.settings.logging.max_batch_size,
                    flush_interval=self.settings.flush_interval_seconds,
                ),
            ],
        )
        chunks = 0
        log = self.pipeline.child(component="supervisor")

        def _forward(decoded: DecodedChunk) -> None:
            nonlocal chunks
            if decoded.text:
                chunks += 1
                progress.info(decoded.text)
                transcript.write(decoded.text)
                if extractor is not None:
                    extractor.process_chunk(decoded.text)
            for tool_event in decoded.tool_events:
                self._send_event(
                    job.id,
                    tool_event.event_type,
                    tool_event.message,
                    tool_event.metadata,
                )

        log.info(
            "Spawning agent process",
            command=request.command,
            cwd=str(request.cwd),
            run_mode=request.run_mode.value,
            timeout_seconds=request.timeout_seconds,
            prompt_preview=preview(request.stdin_payload),
        )
        try:
            outcome = self.supervisor.run(request, lambda chunk: _forward(decoder.feed(chunk)))
            _forward(decoder.flush())
        except CategorizedError as error:
            log.error(
                error.user_message,
                category=error.category.value,
                exit_code=error.exit_code,
                partial_output_chars=len(error.partial_output),
                details=sanitize_preview(error.technical_details, max_chars=500),
            )
            raise
        finally:
            progress.close()
        log.info(
            "Agent process finished",
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
            completion=outcome.completion.value,
            chunks=chunks,
        )
        return outcome, decoder.output

    def _agent_command(self, run_mode: RunMode) -> tuple[str, tuple[str, ...]]:
        if run_mode is RunMode.SINGLE_SHOT:
            return self.settings.supervisor.agent_command, CLAUDE_ARGS
        configured = self.settings.supervisor.iterative_command
        if not configured:
            raise AgentWorkerError(
                "Iterative jobs require AGENT_WORKER_ITERATIVE_COMMAND to be configured.",
            )
        command, *args = shlex.split(configured)
        return command, tuple(args)

    def _timeout_for(self, job: Job, run_mode: RunMode) -> int:
        return timeout_for_job(
            run_mode=run_mode,
            timeout_minutes=job.timeout_minutes,
            single_shot_seconds=self.settings.supervisor.single_shot_timeout_seconds,
            iterative_seconds=self.settings.supervisor.iterative_timeout_seconds,
        )

    # -- helpers -----------------------------------------------------------

    def _validate_prompt(self, job: Job) -> None:
        self.prompt_guard.validate(job.prompt)
        logger.debug("Prompt accepted for job #%s (%s chars)", job.id, len(job.prompt))

    def _release_workspace(self, job: Job, workspace: Path) -> None:
        if not job.auto_cleanup:
            branch_name = self.workspaces.branch_name_for(job)
            logger.info("Worktree kept for inspection: %s (branch %s)", workspace, branch_name)
            self.pipeline.info(
                "Worktree retained",
                worktree_path=str(workspace),
                branch_name=branch_name,
            )
            return
        try:
            self.workspaces.remove_workspace(job)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to clean up worktree for job #%s", job.id)

    def _write_error_log(self, project_root: Path, job: Job, error: CategorizedError) -> None:
        body = (
            f"Job #{job.id} failed at {datetime.now(tz=UTC).isoformat()}\n"
            f"Error: {error.user_message}\n"
            f"Category: {error.category.value}\n\n"
            f"Technical details:\n{error.technical_details}\n\n"
            f"Partial output:\n{error.partial_output}\n"
        )
        _write_text(job_log_path(project_root, job.id, "-error"), body)

    def _copy_artifacts(self, workspace: Path, project_root: Path, job: Job) -> None:
        log_dir = job_log_path(project_root, job.id).parent
        for name in ARTIFACT_NAMES:
            source = workspace / name
            if not source.is_file():
                continue
            target = log_dir / f"job-{job.id}-{name}"
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, target)
            except OSError as exc:
                logger.warning("Could not copy %s to %s: %s", source, target, exc)

    def _send_event(
        self,
        job_id: int | str,
        event_type: str,
        message: str,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        try:
            self.reporter.send_status_event(job_id, event_type, message, data)
        except Exception:  # noqa: BLE001
            logger.debug("Failed to send %s event for job #%s", event_type, job_id, exc_info=True)

    def _send_progress_event(self, job_id: int | str, percentage: int, message: str) -> None:
        self._send_event(job_id, "progress_update", message, {"percentage": percentage})

    def _send_failure(
        self,
        job_id: int | str,
        event_type: str,
        prefix: str,
        error: AgentWorkerError,
    ) -> None:
        data = error.to_event_details() if isinstance(error, CategorizedError) else None
        self._send_event(job_id, event_type, f"{prefix}: {error}", data)

    def _update_metadata(self, job_id: int | str, fields: Mapping[str, Any]) -> None:
        try:
            self.reporter.update_job_metadata(job_id, fields)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to update metadata for job #%s", job_id, exc_info=True)

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


def parse_clarifying_questions(output: str) -> tuple[ClarifyingQuestion, ...]:
    """Validate the agent's JSON answer and return its questions."""

    try:
        parsed = json.loads(output.strip())
    except json.JSONDecodeError as error:
        raise OutputContractError(f"Invalid JSON output: {error}") from error
    if not isinstance(parsed, dict) or not isinstance(parsed.get("questions"), list):
        raise OutputContractError('Invalid JSON output: Output must contain a "questions" array')

    questions: list[ClarifyingQuestion] = []
    for index, item in enumerate(parsed["questions"], start=1):
        if (
            not isinstance(item, dict)
            or not item.get("id")
            or not item.get("text")
            or not isinstance(item.get("required"), bool)
        ):
            raise OutputContractError(
                f"Invalid JSON output: Question {index} missing required fields "
                "(id, text, required)",
            )
        extra = {key: value for key, value in item.items() if key not in {"id", "text", "required"}}
        questions.append(
            ClarifyingQuestion(
                id=str(item["id"]),
                text=str(item["text"]),
                required=item["required"],
                extra=extra,
            ),
        )
    return tuple(questions)


def extract_summary(output: str, job: Job) -> str:
    match = SUMMARY_PATTERN.search(output)
    if match:
        return match.group(1).strip()
    return f"Completed task: {job.display_title}"


def _write_text(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not write %s: %s", path, exc)
