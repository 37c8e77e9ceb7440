"""Secret redaction for log output leaving the process."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

_MAX_PREVIEW_CHARS = 2_000
_REDACTED = "[REDACTED]"

_Replacement = str | Callable[[re.Match[str]], str]

_REPLACEMENTS: tuple[tuple[re.Pattern[str], _Replacement], ...] = (
    (
        re.compile(r"(?i)\b(bearer)\s+[a-z0-9._\-]{8,}"),
        r"\1 " + _REDACTED,
    ),
    (
        re.compile(r"(?i)\b(sk-[a-z0-9\-_]{8,})\b"),
        _REDACTED,
    ),
    (
        re.compile(
            r"(?i)\b((?:agent_worker|anthropic|openai)[a-z0-9_]*_?(?:api_)?(?:key|token))\b"
            r"\s*[:=]\s*['\"]?[^'\" \n\r\t&]+['\"]?",
        ),
        r"\1=" + _REDACTED,
    ),
    (
        re.compile(r"(?i)\"(token|api_token|apiToken|password|secret)\"\s*:\s*\"[^\"]+\""),
        lambda match: f'"{match.group(1)}": "{_REDACTED}"',
    ),
    (
        re.compile(r"(?i)([?&](?:token|key|signature|auth)=[^&\s]+)"),
        lambda match: match.group(1).split("=")[0] + "=" + _REDACTED,
    ),
)

_SENSITIVE_KEY = re.compile(r"(?i)^(.*_)?(token|secret|password|api_?key|authorization)$")


def redact_text(text: str) -> str:
    """Replace bearer tokens, API keys and credential assignments."""

    redacted = text
    for pattern, replacement in _REPLACEMENTS:
        redacted = pattern.sub(replacement, redacted)
    return redacted


def redact(value: Any) -> Any:
    """Redact strings and, recursively, values of sensitive-looking mapping keys."""

    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {
            key: _REDACTED if _SENSITIVE_KEY.search(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def sanitize_preview(text: str, *, max_chars: int = _MAX_PREVIEW_CHARS) -> str:
    """Redact secrets and clamp payload size."""

    compact = text.strip()
    if not compact:
        return ""
    redacted = redact_text(compact)
    if len(redacted) <= max_chars:
        return redacted
    return redacted[:max_chars]
