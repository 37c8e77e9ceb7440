"""Deterministic agent failure categorization from spawn errors, stderr and exit codes."""

from __future__ import annotations

import errno
import logging
import re

from agent_worker.supervisor.models import CategorizedError, ErrorCategory

logger = logging.getLogger(__name__)

_NOT_AUTHENTICATED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"not authenticated", re.IGNORECASE),
    re.compile(r"authentication failed", re.IGNORECASE),
    re.compile(r"please log in", re.IGNORECASE),
)
_OUT_OF_TOKENS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"token limit exceeded", re.IGNORECASE),
    re.compile(r"quota exceeded", re.IGNORECASE),
    re.compile(r"insufficient credits", re.IGNORECASE),
)
_RATE_LIMITED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"rate limit", re.IGNORECASE),
    re.compile(r"too many requests", re.IGNORECASE),
    re.compile(r"429"),
)
_PERMISSION_DENIED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"permission denied", re.IGNORECASE),
    re.compile(r"EACCES", re.IGNORECASE),
)

_STDERR_RULES: tuple[tuple[ErrorCategory, tuple[re.Pattern[str], ...]], ...] = (
    (ErrorCategory.NOT_AUTHENTICATED, _NOT_AUTHENTICATED_PATTERNS),
    (ErrorCategory.OUT_OF_TOKENS, _OUT_OF_TOKENS_PATTERNS),
    (ErrorCategory.RATE_LIMITED, _RATE_LIMITED_PATTERNS),
    (ErrorCategory.PERMISSION_DENIED, _PERMISSION_DENIED_PATTERNS),
)

_NETWORK_ERRNOS = frozenset({errno.ECONNREFUSED, errno.ETIMEDOUT, errno.EHOSTUNREACH})

USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.CLAUDE_NOT_INSTALLED: "Claude Code CLI is not installed or not found in PATH",
    ErrorCategory.NOT_AUTHENTICATED: 'Claude CLI is not authenticated. Please run "claude auth"',
    ErrorCategory.OUT_OF_TOKENS: "Claude API token limit has been exceeded",
    ErrorCategory.RATE_LIMITED: "Claude API rate limit reached. Please wait before retrying",
    ErrorCategory.PERMISSION_DENIED: "Permission denied accessing project files or directories",
    ErrorCategory.EXECUTION_TIMEOUT: "Job execution exceeded the maximum timeout",
    ErrorCategory.NETWORK_ERROR: "Network error connecting to Claude API",
}


def categorize_failure(
    *,
    error: BaseException | None,
    stderr: str = "",
    exit_code: int | None = None,
    partial_output: str = "",
) -> CategorizedError:
    """Classify a failed run into the first matching category."""

    message = str(error) if error is not None else ""
    category = _classify(error=error, message=message, stderr=stderr, exit_code=exit_code)

    if category in USER_MESSAGES:
        user_message = USER_MESSAGES[category]
    elif category is ErrorCategory.EXECUTION_ERROR:
        user_message = f"Claude CLI execution failed with exit code {exit_code}"
    else:
        user_message = message or "Claude CLI failed for an unknown reason"

    logger.debug("Error categorized as: %s", category.value)
    return CategorizedError(
        category,
        user_message,
        technical_details=f"Error: {message}\nStderr: {stderr}\nExit Code: {exit_code}",
        partial_output=partial_output,
        exit_code=exit_code,
    )


def _classify(
    *,
    error: BaseException | None,
    message: str,
    stderr: str,
    exit_code: int | None,
) -> ErrorCategory:
    if isinstance(error, FileNotFoundError):
        return ErrorCategory.CLAUDE_NOT_INSTALLED

    for category, patterns in _STDERR_RULES:
        if _first_match(stderr, patterns) is not None:
            return category

    if isinstance(error, PermissionError):
        return ErrorCategory.PERMISSION_DENIED
    if "timed out" in message:
        return ErrorCategory.EXECUTION_TIMEOUT
    if isinstance(error, OSError) and error.errno in _NETWORK_ERRNOS:
        return ErrorCategory.NETWORK_ERROR
    if isinstance(error, ConnectionError):
        return ErrorCategory.NETWORK_ERROR
    if exit_code is not None and exit_code != 0:
        return ErrorCategory.EXECUTION_ERROR
    return ErrorCategory.UNKNOWN


def _first_match(haystack: str, patterns: tuple[re.Pattern[str], ...]) -> str | None:
    for pattern in patterns:
        if pattern.search(haystack):
            return pattern.pattern
    return None
