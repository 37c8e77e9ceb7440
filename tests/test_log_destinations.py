from __future__ import annotations

import io
import json
from datetime import UTC, datetime
from pathlib import Path

import allure
from conftest import RecordingReporter, wait_for

from agent_worker.log_pipeline import (
    ConsoleDestination,
    FileDestination,
    JobLogFile,
    LogLevel,
    LogRecord,
    RemoteDestination,
    job_log_path,
    progress_destination,
)
from agent_worker.log_pipeline.redaction import redact, redact_text

pytestmark = [
    allure.epic("Logging"),
    allure.feature("Destinations"),
]


def _record(level: LogLevel, message: str, **metadata) -> LogRecord:
    return LogRecord(level=level, message=message, metadata=metadata)


def _console(**kwargs) -> tuple[ConsoleDestination, io.StringIO, io.StringIO]:
    out, err = io.StringIO(), io.StringIO()
    destination = ConsoleDestination(colors=False, stream=out, error_stream=err, **kwargs)
    return destination, out, err


def test_console_filters_below_min_level() -> None:
    destination, out, _ = _console(min_level="warn")

    destination.write(_record(LogLevel.INFO, "chatty"))
    destination.write(_record(LogLevel.WARN, "heads up"))

    assert "chatty" not in out.getvalue()
    assert "WARN  heads up" in out.getvalue()


def test_console_routes_errors_to_error_stream() -> None:
    destination, out, err = _console()

    destination.write(_record(LogLevel.ERROR, "agent crashed", exit_code=2))

    assert out.getvalue() == ""
    assert "ERROR agent crashed exit_code=2" in err.getvalue()


def test_console_redacts_bearer_tokens() -> None:
    destination, out, _ = _console()

    destination.write(
        _record(LogLevel.INFO, "calling with Bearer abcdef1234567890", api_token="secret"),
    )

    line = out.getvalue()
    assert "abcdef1234567890" not in line
    assert "Bearer [REDACTED]" in line
    assert "api_token=[REDACTED]" in line


def test_console_json_format() -> None:
    destination, out, _ = _console(fmt="json")

    destination.write(_record(LogLevel.INFO, "ready", job_id=5))

    entry = json.loads(out.getvalue())
    assert entry["level"] == "info"
    assert entry["message"] == "ready"
    assert entry["metadata"] == {"job_id": 5}


def test_console_renders_nested_metadata_on_own_lines() -> None:
    destination, out, _ = _console()

    destination.write(_record(LogLevel.INFO, "activity", git={"commits": 2}))

    assert '\n  git: {"commits": 2}' in out.getvalue()


def test_job_log_file_header_body_and_footer(tmp_path: Path) -> None:
    started = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    log_file = JobLogFile(
        working_dir=tmp_path,
        job_id=12,
        job_type="Clarifying Questions Generation",
        title="Search page",
        started_at=started,
    )

    path = log_file.open()
    log_file.write("thinking...\n")
    log_file.finish(question_count=4)

    assert path == tmp_path / ".agent-worker-logs" / "job-12.log"
    content = path.read_text("utf-8")
    assert "Clarifying Questions Generation Job #12 - Search page" in content
    assert f"Started: {started.isoformat()}" in content
    assert "thinking...\n" in content
    assert "Clarifying Questions Generation completed at:" in content
    assert "Generated 4 questions" in content
    assert log_file.is_open is False


def test_job_log_file_open_truncates_previous_attempt(tmp_path: Path) -> None:
    first = JobLogFile(working_dir=tmp_path, job_id=1, job_type="PRD Generation")
    first.open()
    first.write("old attempt\n")
    first.finish()

    second = JobLogFile(working_dir=tmp_path, job_id=1, job_type="PRD Generation")
    second.open()
    second.close()

    assert "old attempt" not in second.path.read_text("utf-8")


def test_job_log_file_discard_removes_file(tmp_path: Path) -> None:
    log_file = JobLogFile(working_dir=tmp_path, job_id=2, job_type="PRD Generation")
    log_file.open()

    log_file.discard()
    log_file.discard()

    assert not log_file.path.exists()


def test_job_log_path_suffix(tmp_path: Path) -> None:
    assert job_log_path(tmp_path, 3, "-error").name == "job-3-error.log"


def test_file_destination_opens_lazily_and_formats_records(tmp_path: Path) -> None:
    destination = FileDestination(
        JobLogFile(working_dir=tmp_path, job_id=8, job_type="Code Execution"),
    )
    assert not destination.path.exists()

    destination.write(_record(LogLevel.WARN, "slow git", seconds=4))
    destination.close()

    content = destination.path.read_text("utf-8")
    assert 'WARN  slow git | {"seconds": 4}' in content
    assert "Code Execution completed at:" in content


def test_buffered_file_destination_appends_on_flush(tmp_path: Path) -> None:
    destination = FileDestination(
        JobLogFile(working_dir=tmp_path, job_id=9, job_type="Code Execution"),
        buffered=True,
    )

    destination.write(_record(LogLevel.INFO, "first"))
    destination.write(_record(LogLevel.INFO, "second"))
    assert not destination.path.exists()

    destination.flush()
    content = destination.path.read_text("utf-8")
    assert content.index("first") < content.index("second")

    destination.write(_record(LogLevel.INFO, "third"))
    destination.close()
    assert "third" in destination.path.read_text("utf-8")


def test_remote_destination_uses_record_job_id_and_redacts(reporter: RecordingReporter) -> None:
    destination = RemoteDestination(reporter)

    destination.write(_record(LogLevel.INFO, "no job yet"))
    destination.write(_record(LogLevel.INFO, "token sk-abcdefghijkl used", job_id=4))

    assert reporter.logs == [(4, "info", "token [REDACTED] used", {"job_id": 4})]


def test_remote_destination_falls_back_to_job_context(reporter: RecordingReporter) -> None:
    destination = RemoteDestination(reporter)
    destination.set_job_context(6, {})

    destination.write(_record(LogLevel.DEBUG, "inside job"))
    destination.clear_job_context()
    destination.write(_record(LogLevel.DEBUG, "after job"))

    assert [entry[0] for entry in reporter.logs] == [6]
    assert reporter.logs[0][3] is None


def test_remote_batch_groups_by_job(reporter: RecordingReporter) -> None:
    destination = RemoteDestination(reporter)

    destination.send_batch(
        [
            _record(LogLevel.INFO, "a", job_id=1),
            _record(LogLevel.INFO, "b", job_id=2),
            _record(LogLevel.INFO, "c", job_id=1),
            _record(LogLevel.INFO, "orphan"),
        ],
    )

    grouped = [
        (job_id, [entry["message"] for entry in batch]) for job_id, batch in reporter.batches
    ]
    assert grouped == [(1, ["a", "c"]), (2, ["b"])]


def test_progress_destination_flushes_on_interval_below_batch_size(
    reporter: RecordingReporter,
) -> None:
    destination = progress_destination(reporter, 3, max_batch_size=10, flush_interval=0.05)

    destination.write(_record(LogLevel.INFO, "first"))
    destination.write(_record(LogLevel.INFO, ""))
    destination.write(_record(LogLevel.INFO, "second"))

    assert wait_for(lambda: len(reporter.progress) == 2 and bool(reporter.flushes))
    assert reporter.progress == [(3, "first"), (3, "second")]
    destination.close()
    assert set(reporter.flushes) == {3}


def test_progress_destination_flushes_when_batch_is_full(reporter: RecordingReporter) -> None:
    destination = progress_destination(reporter, 4, max_batch_size=2, flush_interval=60.0)

    destination.write(_record(LogLevel.INFO, "a"))
    assert reporter.flushes == []
    destination.write(_record(LogLevel.INFO, "b"))

    assert reporter.progress == [(4, "a"), (4, "b")]
    assert reporter.flushes == [4]
    destination.close()


def test_progress_destination_swallows_client_errors() -> None:
    class _Down(RecordingReporter):
        def send_progress(self, job_id, chunk) -> None:
            raise ConnectionError("offline")

    destination = progress_destination(_Down(), 1, flush_interval=60.0)

    destination.write(_record(LogLevel.INFO, "chunk"))
    destination.close()

    assert destination.buffer_size == 0


def test_job_log_file_degrades_when_log_dir_is_blocked(tmp_path: Path, caplog) -> None:
    (tmp_path / ".agent-worker-logs").write_text("not a directory", "utf-8")
    log_file = JobLogFile(working_dir=tmp_path, job_id=5, job_type="Code Execution")

    with caplog.at_level("WARNING"):
        log_file.open()
        log_file.write("agent output\n")
        log_file.finish()

    assert log_file.failed is True
    assert log_file.is_open is False
    assert "continuing without it" in caplog.text


def test_redaction_rules() -> None:
    assert redact_text("AGENT_WORKER_API_TOKEN=abc123") == "AGENT_WORKER_API_TOKEN=[REDACTED]"
    assert redact_text('{"password": "hunter2"}') == '{"password": "[REDACTED]"}'
    assert redact_text("GET /jobs?token=abc&page=2") == "GET /jobs?token=[REDACTED]&page=2"
    assert redact({"nested": {"secret": "x", "ok": "y"}, "items": ["Bearer 123456789"]}) == {
        "nested": {"secret": "[REDACTED]", "ok": "y"},
        "items": ["Bearer [REDACTED]"],
    }
