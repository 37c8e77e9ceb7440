"""Heuristic milestone and progress extraction from streamed agent output."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from agent_worker.reporting import ReportingClient

logger = logging.getLogger(__name__)

MAX_BUFFER_CHARS = 10_000
TOOL_THROTTLE_SECONDS = 2.0
PROGRESS_MIN_STEP = 10
PROGRESS_MIN_INTERVAL_SECONDS = 5.0
PROGRESS_CAP = 90
_MAX_FILENAME_CHARS = 40


@dataclass(frozen=True, slots=True)
class Milestone:
    identifier: str
    pattern: re.Pattern[str]
    message: str


@dataclass(frozen=True, slots=True)
class ToolExtractor:
    identifier: str
    pattern: re.Pattern[str]
    render: Callable[[re.Match[str]], str]


@dataclass(frozen=True, slots=True)
class ProgressIndicator:
    pattern: re.Pattern[str]
    increment: int


def _milestone(identifier: str, pattern: str, message: str) -> Milestone:
    return Milestone(identifier, re.compile(pattern, re.IGNORECASE), message)


def format_filename(file_path: str) -> str:
    """Shorten long paths to their last two segments."""

    cleaned = file_path.strip().replace("'", "").replace('"', "")
    if len(cleaned) <= _MAX_FILENAME_CHARS:
        return cleaned
    parts = cleaned.split("/")
    if len(parts) > 2:
        return "..." + "/".join(parts[-2:])
    return cleaned[: _MAX_FILENAME_CHARS - 3] + "..."


PRD_MILESTONES: tuple[Milestone, ...] = (
    _milestone(
        "analyzing",
        r"reading.*requirements|analyzing.*requirements",
        "Analyzing requirements",
    ),
    _milestone("exploring", r"reading.*files|exploring.*codebase", "Exploring codebase"),
    _milestone(
        "context",
        r"understanding.*context|gathering.*context",
        "Understanding project context",
    ),
    _milestone(
        "generating",
        r"generating.*prd|creating.*document|writing.*requirements",
        "Generating PRD document",
    ),
    _milestone(
        "writing_sections",
        r"generating.*sections|writing.*sections",
        "Writing PRD sections",
    ),
    _milestone(
        "organizing",
        r"reviewing.*structure|organizing.*content",
        "Organizing content",
    ),
    _milestone("finalizing", r"finalizing|completing|wrapping up", "Finalizing document"),
)

CLARIFYING_MILESTONES: tuple[Milestone, ...] = (
    _milestone(
        "analyzing",
        r"analyzing.*requirements|understanding.*request",
        "Analyzing your request",
    ),
    _milestone(
        "identifying",
        r"identifying.*questions|generating.*questions",
        "Identifying clarifying questions",
    ),
    _milestone(
        "structuring",
        r"structuring.*questions|formatting.*questions",
        "Structuring questions",
    ),
)

TOOL_EXTRACTORS: tuple[ToolExtractor, ...] = (
    ToolExtractor(
        "tool_read",
        re.compile(r"Read(?:ing)?\s+(?:file\s+)?['\"`]?([^'\"`\n]+?)['\"`]?(?:\s|$|\.)", re.I),
        lambda match: f"Reading {format_filename(match.group(1))}",
    ),
    ToolExtractor(
        "tool_glob",
        re.compile(r"Glob(?:bing)?\s+(?:pattern\s+)?['\"`]?([^'\"`\n]+?)['\"`]?(?:\s|$|\.)", re.I),
        lambda match: f"Scanning files matching {match.group(1).strip()}",
    ),
    ToolExtractor(
        "tool_grep",
        re.compile(r"Grep(?:ping)?\s+(?:for\s+)?['\"`]([^'\"`\n]+)['\"`]", re.I),
        lambda match: f'Searching for "{match.group(1).strip()}"',
    ),
    ToolExtractor(
        "tool_write",
        re.compile(
            r"(?:Write|Writing|Edit|Editing)\s+(?:file\s+)?['\"`]?([^'\"`\n]+?)['\"`]?(?:\s|$|\.)",
            re.I,
        ),
        lambda match: f"Modifying {format_filename(match.group(1))}",
    ),
    ToolExtractor(
        "tool_generic",
        re.compile(r"Using\s+(\w+)\s+tool", re.I),
        lambda match: f"Using {match.group(1)} tool",
    ),
)

PROGRESS_INDICATORS: tuple[ProgressIndicator, ...] = (
    ProgressIndicator(re.compile(r"completed|finished|done with", re.I), 10),
    ProgressIndicator(re.compile(r"starting|beginning", re.I), 5),
)


def milestones_for(job_type: str) -> tuple[Milestone, ...]:
    if job_type == "clarifying_questions":
        return CLARIFYING_MILESTONES
    return PRD_MILESTONES


class MilestoneExtractor:
    """Turns output chunks into deduplicated status and progress events for one job."""

    def __init__(
        self,
        reporter: ReportingClient | None,
        job_id: int | str,
        job_type: str,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reporter = reporter
        self.job_id = job_id
        self.job_type = job_type
        self._clock = clock
        self._milestones = milestones_for(job_type)
        self._buffer = ""
        self._reported: list[str] = []
        self._tool_last_sent: dict[str, float] = {}
        self._progress = 0
        self._last_progress_sent = 0
        self._last_progress_at: float | None = None
        self._last_message: str | None = None

    @property
    def milestones_reported(self) -> list[str]:
        return list(self._reported)

    @property
    def last_message(self) -> str | None:
        return self._last_message

    @property
    def progress(self) -> int:
        return self._progress

    def process_chunk(self, chunk: str) -> None:
        self._buffer = (self._buffer + chunk)[-MAX_BUFFER_CHARS:]
        self._check_milestones()
        self._check_tools()
        self._update_progress(chunk)

    def mark_complete(self) -> None:
        self._progress = 100
        self._send_progress(100)

    def _check_milestones(self) -> None:
        for milestone in self._milestones:
            if milestone.identifier in self._reported:
                continue
            if milestone.pattern.search(self._buffer):
                self._reported.append(milestone.identifier)
                logger.debug("Progress milestone: %s", milestone.identifier)
                self._send_status(milestone.identifier, milestone.message)

    def _check_tools(self) -> None:
        for extractor in TOOL_EXTRACTORS:
            match = extractor.pattern.search(self._buffer)
            if match is None:
                continue
            now = self._clock()
            last_sent = self._tool_last_sent.get(extractor.identifier)
            if last_sent is not None and now - last_sent <= TOOL_THROTTLE_SECONDS:
                continue
            self._tool_last_sent[extractor.identifier] = now
            self._send_status(extractor.identifier, extractor.render(match))

    def _update_progress(self, chunk: str) -> None:
        for indicator in PROGRESS_INDICATORS:
            if not indicator.pattern.search(chunk):
                continue
            self._progress = min(PROGRESS_CAP, self._progress + indicator.increment)
            now = self._clock()
            interval_ok = (
                self._last_progress_at is None
                or now - self._last_progress_at > PROGRESS_MIN_INTERVAL_SECONDS
            )
            if self._progress - self._last_progress_sent >= PROGRESS_MIN_STEP and interval_ok:
                self._send_progress(self._progress)
                self._last_progress_sent = self._progress
                self._last_progress_at = now
            break

    def _send_status(self, event_type: str, message: str) -> None:
        self._last_message = message
        if self.reporter is None:
            return
        try:
            self.reporter.send_status_event(self.job_id, event_type, message)
        except Exception:  # noqa: BLE001
            logger.debug("Failed to send status update %s", event_type, exc_info=True)

    def _send_progress(self, percentage: int) -> None:
        if self.reporter is None:
            return
        try:
            self.reporter.send_status_event(
                self.job_id,
                "progress_update",
                f"{percentage}% complete",
                {"percentage": percentage},
            )
        except Exception:  # noqa: BLE001
            logger.debug("Failed to send progress update %s%%", percentage, exc_info=True)
