from __future__ import annotations

import allure
from conftest import RecordingReporter

from agent_worker.progress import MilestoneExtractor, format_filename

pytestmark = [
    allure.epic("Progress Reporting"),
    allure.feature("Milestone Extraction"),
]


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _extractor(
    reporter: RecordingReporter,
    job_type: str = "prd_generation",
) -> tuple[MilestoneExtractor, _Clock]:
    clock = _Clock()
    return MilestoneExtractor(reporter, 11, job_type, clock=clock), clock


def test_each_milestone_is_reported_once(reporter: RecordingReporter) -> None:
    extractor, _ = _extractor(reporter)

    extractor.process_chunk("Analyzing requirements for the feature\n")
    extractor.process_chunk("Still analyzing the requirements...\n")
    extractor.process_chunk("Analyzing requirements again\n")

    assert reporter.event_types().count("analyzing") == 1
    assert extractor.milestones_reported == ["analyzing"]
    assert extractor.last_message == "Analyzing requirements"


def test_milestone_split_across_chunks_is_detected(reporter: RecordingReporter) -> None:
    extractor, _ = _extractor(reporter)

    extractor.process_chunk("Now generating the ")
    extractor.process_chunk("PRD document")

    assert "generating" in reporter.event_types()


def test_clarifying_jobs_use_their_own_table(reporter: RecordingReporter) -> None:
    extractor, _ = _extractor(reporter, "clarifying_questions")

    extractor.process_chunk("Identifying questions that matter\n")
    extractor.process_chunk("Generating PRD document\n")

    assert extractor.milestones_reported == ["identifying"]


def test_tool_activity_is_throttled_per_tool(reporter: RecordingReporter) -> None:
    extractor, clock = _extractor(reporter)

    extractor.process_chunk("Using Bash tool\n")
    clock.now = 1.0
    extractor.process_chunk("Using Bash tool\n")
    clock.now = 2.0
    extractor.process_chunk("Using Bash tool\n")
    clock.now = 2.5
    extractor.process_chunk("Using Bash tool\n")

    generic = [event for event in reporter.events if event[1] == "tool_generic"]
    assert [message for _, _, message, _ in generic] == ["Using Bash tool", "Using Bash tool"]


def test_progress_is_rate_limited_and_capped(reporter: RecordingReporter) -> None:
    extractor, clock = _extractor(reporter)

    extractor.process_chunk("step completed\n")
    clock.now = 1.0
    extractor.process_chunk("step completed\n")
    clock.now = 7.0
    extractor.process_chunk("step completed\n")

    assert extractor.progress == 30
    assert reporter.percentages() == [10, 30]

    for _ in range(20):
        clock.now += 10
        extractor.process_chunk("another step completed\n")

    assert extractor.progress == 90
    assert max(reporter.percentages()) == 90


def test_mark_complete_reports_one_hundred(reporter: RecordingReporter) -> None:
    extractor, _ = _extractor(reporter)

    extractor.mark_complete()

    assert extractor.progress == 100
    assert reporter.events[-1] == (11, "progress_update", "100% complete", {"percentage": 100})


def test_reporter_failures_are_swallowed() -> None:
    class _Broken(RecordingReporter):
        def send_status_event(self, *args, **kwargs) -> None:
            raise RuntimeError("service down")

    extractor = MilestoneExtractor(_Broken(), 1, "prd_generation")

    extractor.process_chunk("Finalizing document\n")
    extractor.mark_complete()

    assert extractor.milestones_reported == ["finalizing"]


def test_extractor_without_reporter_still_tracks_state() -> None:
    extractor = MilestoneExtractor(None, 1, "prd_generation")

    extractor.process_chunk("Exploring codebase structure\n")

    assert extractor.milestones_reported == ["exploring"]


def test_format_filename_shortens_long_paths() -> None:
    assert format_filename("'src/app.py'") == "src/app.py"
    long_path = "/home/alice/projects/very/deeply/nested/package/module/file.py"
    assert format_filename(long_path) == "...module/file.py"
    assert format_filename("x" * 50) == "x" * 37 + "..."
