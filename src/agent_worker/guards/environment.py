"""Minimal process environment for spawned agents."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

ALLOWED_NAMES: tuple[str, ...] = (
    "PATH",
    "HOME",
    "USER",
    "LANG",
    "LC_ALL",
    "TERM",
    "TMPDIR",
    "SHELL",
)

BLOCKED_NAME_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^.*_TOKEN$",
        r"^.*_SECRET$",
        r"^.*_KEY$",
        r"^.*_PASSWORD$",
        r"^AWS_",
        r"^AZURE_",
        r"^GCP_",
        r"^GOOGLE_",
        r"^AGENT_WORKER_API_",
    )
)


def is_blocked_name(name: str) -> bool:
    return any(pattern.search(name) for pattern in BLOCKED_NAME_PATTERNS)


class EnvironmentGuard:
    """Copy only allow-listed, non-credential variables into a child environment."""

    def __init__(self, *, extra_names: Iterable[str] = ()) -> None:
        self.allowed_names = ALLOWED_NAMES + tuple(
            name for name in extra_names if name not in ALLOWED_NAMES
        )

    def sanitize(
        self,
        process_env: Mapping[str, str],
        extra: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Build the child environment from the parent env and job-specific values."""

        sanitized: dict[str, str] = {}
        for name in self.allowed_names:
            value = process_env.get(name)
            if value and not is_blocked_name(name):
                sanitized[name] = value

        for name, value in (extra or {}).items():
            if is_blocked_name(name):
                logger.warning("Dropping credential-like job variable: %s", name)
                continue
            sanitized[name] = value

        logger.debug(
            "Sanitized agent environment keys: %s",
            ", ".join(sorted(name for name in sanitized if name != "HOME")),
        )
        return sanitized
