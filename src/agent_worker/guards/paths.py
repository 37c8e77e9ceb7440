"""Filesystem path validation for agent working directories."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from pathlib import Path
from typing import NoReturn

from agent_worker.errors import PathRejectedError

logger = logging.getLogger(__name__)

BLOCKED_ROOTS: tuple[str, ...] = (
    "/etc",
    "/bin",
    "/sbin",
    "/usr/bin",
    "/usr/sbin",
    "/System",
    "/Library",
    "/private",
    "/Windows",
    "/Program Files",
    "/Program Files (x86)",
    "/root",
    "/boot",
    "/dev",
    "/proc",
    "/sys",
)

SENSITIVE_SEGMENTS: tuple[str, ...] = (
    ".ssh",
    ".aws",
    ".config/gcloud",
    ".azure",
    ".kube",
    ".docker",
    ".gnupg",
    "Library/Keychains",
    "AppData/Roaming",
    ".password-store",
    ".config/1Password",
    ".config/Bitwarden",
)

_USER_HOME_PATTERN = re.compile(r"^(/home/|/Users/|[A-Za-z]:\\Users\\)")


class PathGuard:
    """Resolve a user-supplied path and reject system or credential locations."""

    def __init__(self, *, allowed_paths: Iterable[Path | str] = ()) -> None:
        self.allowed_paths = tuple(_normalize(str(item)) for item in allowed_paths)

    def validate(self, raw_path: object) -> Path:
        """Return the absolute normalized path or raise PathRejectedError."""

        if isinstance(raw_path, os.PathLike):
            raw_path = os.fspath(raw_path)
        if not isinstance(raw_path, str) or not raw_path.strip():
            self._reject("Path must be a non-empty string.", reason="empty", path=None)
        if "\0" in raw_path:
            self._reject("Path contains a null byte.", reason="null_byte", path=None)

        resolved = _normalize(raw_path.strip())

        for root in BLOCKED_ROOTS:
            if resolved == root or resolved.startswith(root + "/"):
                self._reject(
                    f"Access to system directory is not allowed: {root}",
                    reason="system_directory",
                    path=resolved,
                )

        for segment in SENSITIVE_SEGMENTS:
            if f"/{segment}/" in resolved or resolved.endswith(f"/{segment}"):
                self._reject(
                    f"Access to sensitive directory is not allowed: {segment}",
                    reason="sensitive_directory",
                    path=resolved,
                )

        if self.allowed_paths:
            if not any(
                resolved == base or resolved.startswith(base.rstrip("/") + "/")
                for base in self.allowed_paths
            ):
                self._reject(
                    "Path is outside the allowed base directories.",
                    reason="not_allowed",
                    path=resolved,
                )
        elif not _USER_HOME_PATTERN.match(resolved):
            logger.warning("Path is outside user home directories: %s", resolved)

        logger.debug("Path accepted: %s", resolved)
        return Path(resolved)

    def validate_existing(self, raw_path: object, *, job_type: str) -> Path:
        """Validate and require the directory to exist (code execution jobs)."""

        if raw_path is None or (isinstance(raw_path, str) and not raw_path.strip()):
            self._reject(
                f"Project path is required for {job_type} jobs.",
                reason="missing",
                path=None,
            )
        path = self.validate(raw_path)
        if not path.is_dir():
            self._reject(
                f"Project path does not exist: {path}",
                reason="not_found",
                path=str(path),
            )
        return path

    def validate_with_fallback(self, raw_path: object, *, default: Path | None = None) -> Path:
        """Validate a project path, falling back to the working directory when unusable."""

        fallback = default if default is not None else Path.cwd()
        if raw_path is None or (isinstance(raw_path, str) and not raw_path.strip()):
            return fallback
        try:
            path = self.validate(raw_path)
        except PathRejectedError as error:
            logger.warning("Invalid project path, using %s instead: %s", fallback, error)
            return fallback
        if not path.is_dir():
            logger.warning("Project path does not exist, using %s instead: %s", fallback, path)
            return fallback
        return path

    @staticmethod
    def _reject(message: str, *, reason: str, path: str | None) -> NoReturn:
        logger.error("Path rejected (%s): %s path=%s", reason, message, path)
        raise PathRejectedError(message, reason=reason, path=path)


def _normalize(raw_path: str) -> str:
    normalized = os.path.abspath(os.path.expanduser(raw_path)).replace(os.sep, "/")
    if len(normalized) > 1:
        normalized = normalized.rstrip("/")
    return normalized
