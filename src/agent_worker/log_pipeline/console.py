"""Terminal destination with level filtering and secret redaction."""

from __future__ import annotations

import json
import sys
from typing import Any, TextIO

from agent_worker.log_pipeline.base import Destination
from agent_worker.log_pipeline.records import LogLevel, LogRecord
from agent_worker.log_pipeline.redaction import redact

_COLORS = {
    LogLevel.ERROR: "\033[31m",
    LogLevel.WARN: "\033[33m",
    LogLevel.INFO: "\033[36m",
    LogLevel.DEBUG: "\033[90m",
}
_RESET = "\033[0m"
_MAX_INLINE_VALUE_CHARS = 100
_MAX_DETAIL_KEYS = 20


class ConsoleDestination(Destination):
    """Writes records immediately; errors go to stderr, everything else to stdout."""

    def __init__(
        self,
        *,
        min_level: LogLevel | str = LogLevel.INFO,
        colors: bool = True,
        fmt: str = "pretty",
        stream: TextIO | None = None,
        error_stream: TextIO | None = None,
    ) -> None:
        self.min_level = LogLevel.parse(min_level)
        self.colors = colors
        self.fmt = fmt
        self._stream = stream
        self._error_stream = error_stream

    def should_log(self, level: LogLevel) -> bool:
        return level.priority <= self.min_level.priority

    def write(self, record: LogRecord) -> None:
        if not self.should_log(record.level):
            return
        message = redact(record.message)
        metadata = redact(record.metadata)
        if self.fmt == "json":
            line = _format_json(record, message, metadata)
        else:
            line = self._format_pretty(record, message, metadata)
        target = self._target(record.level)
        target.write(line + "\n")
        target.flush()

    def handle_error(self, error: BaseException, record: LogRecord | None = None) -> None:
        try:
            sys.__stderr__.write(f"[ConsoleDestination] Failed to write log: {error}\n")
        except (AttributeError, OSError, ValueError):
            pass

    def _target(self, level: LogLevel) -> TextIO:
        if level is LogLevel.ERROR:
            return self._error_stream or sys.stderr
        return self._stream or sys.stdout

    def _format_pretty(self, record: LogRecord, message: str, metadata: dict[str, Any]) -> str:
        label = record.level.value.upper().ljust(5)
        if self.colors:
            label = f"{_COLORS[record.level]}{label}{_RESET}"
        line = f"[{record.timestamp.isoformat()}] {label} {message}"
        inline = {
            key: value
            for key, value in metadata.items()
            if isinstance(value, (str, int, float, bool)) or value is None
        }
        if inline:
            line += " " + " ".join(
                f"{key}={_clip(value)}" for key, value in list(inline.items())[:_MAX_DETAIL_KEYS]
            )
        nested = {key: value for key, value in metadata.items() if key not in inline}
        for key, value in list(nested.items())[:_MAX_DETAIL_KEYS]:
            line += f"\n  {key}: {_clip(json.dumps(value, default=str), 200)}"
        return line


def _format_json(record: LogRecord, message: str, metadata: dict[str, Any]) -> str:
    entry: dict[str, Any] = {
        "timestamp": record.timestamp.isoformat(),
        "level": record.level.value,
        "message": message,
    }
    if metadata:
        entry["metadata"] = metadata
    return json.dumps(entry, default=str)


def _clip(value: object, limit: int = _MAX_INLINE_VALUE_CHARS) -> str:
    text = str(value)
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
