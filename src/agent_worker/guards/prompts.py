"""Denylist validation for instruction text passed to the agent."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from agent_worker.errors import PromptRejectedError

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 500_000
_PREVIEW_CHARS = 200


@dataclass(frozen=True, slots=True)
class DeniedPattern:
    """One forbidden instruction shape."""

    reason: str
    pattern: re.Pattern[str]
    description: str


def _denied(reason: str, pattern: str, description: str) -> DeniedPattern:
    return DeniedPattern(
        reason=reason,
        pattern=re.compile(pattern, re.IGNORECASE),
        description=description,
    )


DENIED_PATTERNS: tuple[DeniedPattern, ...] = (
    _denied("root_deletion", r"rm\s+-rf\s+/", "dangerous deletion command"),
    _denied("home_deletion", r"rm\s+-rf\s+~", "dangerous home directory deletion"),
    _denied("passwd_access", r"/etc/passwd", "system file access"),
    _denied("shadow_access", r"/etc/shadow", "password file access"),
    _denied("curl_pipe_shell", r"curl.*\|\s*sh", "remote code execution pattern"),
    _denied("wget_pipe_shell", r"wget.*\|\s*sh", "remote code execution pattern"),
    _denied("eval_call", r"eval\s*\(", "code evaluation"),
    _denied("exec_call", r"exec\s*\(", "code execution"),
    _denied("subshell_deletion", r"\$\(.*rm.*-rf", "command injection with deletion"),
    _denied("backtick_deletion", r"`.*rm.*-rf", "command injection with deletion"),
    _denied("obfuscated_eval", r"base64.*decode.*eval", "obfuscated code execution"),
    _denied("ssh_key_access", r"\.ssh/id_rsa", "SSH key access"),
    _denied("aws_credentials_access", r"\.aws/credentials", "AWS credentials access"),
)


class PromptGuard:
    """Reject empty, oversized or obviously dangerous instruction text."""

    def __init__(
        self,
        *,
        max_chars: int = MAX_PROMPT_CHARS,
        patterns: tuple[DeniedPattern, ...] = DENIED_PATTERNS,
    ) -> None:
        self.max_chars = max_chars
        self.patterns = patterns

    def validate(self, text: object) -> None:
        if not isinstance(text, str) or not text.strip():
            raise PromptRejectedError("Prompt must be a non-empty string.", reason="empty")
        if len(text) > self.max_chars:
            raise PromptRejectedError(
                f"Prompt exceeds maximum length of {self.max_chars} characters.",
                reason="too_long",
            )
        for denied in self.patterns:
            if denied.pattern.search(text):
                logger.error("Prompt rejected (%s): %s", denied.reason, denied.description)
                raise PromptRejectedError(
                    f"Prompt contains potentially dangerous pattern: {denied.description}",
                    reason=denied.reason,
                    description=denied.description,
                )
        logger.debug("Prompt accepted: %s", preview(text))


def preview(text: str, *, max_chars: int = _PREVIEW_CHARS) -> str:
    """Single-line excerpt of a prompt for debug logs."""

    excerpt = text[:max_chars].replace("\r", " ").replace("\n", " ")
    return excerpt + ("..." if len(text) > max_chars else "")
