"""Structured log record shared by every destination."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class LogLevel(str, Enum):
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"

    @property
    def priority(self) -> int:
        return _PRIORITIES[self]

    @classmethod
    def parse(cls, value: str | LogLevel) -> LogLevel:
        if isinstance(value, LogLevel):
            return value
        normalized = value.strip().lower()
        if normalized == "warning":
            normalized = "warn"
        return cls(normalized)


_PRIORITIES = {
    LogLevel.ERROR: 0,
    LogLevel.WARN: 1,
    LogLevel.INFO: 2,
    LogLevel.DEBUG: 3,
}


@dataclass(frozen=True, slots=True)
class LogRecord:
    """One log entry with its merged context."""

    level: LogLevel
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def to_payload(self) -> dict[str, Any]:
        """Serialize for remote batch endpoints."""

        payload: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload
