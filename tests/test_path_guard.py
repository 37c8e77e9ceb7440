from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_worker.errors import PathRejectedError
from agent_worker.guards import PathGuard

pytestmark = [
    allure.epic("Spawn Boundary"),
    allure.feature("Path Guard"),
]


@pytest.mark.parametrize(
    "raw_path",
    ["/etc", "/etc/nginx/nginx.conf", "/usr/bin/env", "/proc/self", "/root/project"],
)
def test_validate_rejects_system_directories_and_their_children(raw_path: str) -> None:
    with pytest.raises(PathRejectedError) as excinfo:
        PathGuard().validate(raw_path)

    assert excinfo.value.reason == "system_directory"


def test_validate_does_not_treat_prefix_siblings_as_blocked() -> None:
    path = PathGuard().validate("/etcetera/project")

    assert path == Path("/etcetera/project")


@pytest.mark.parametrize(
    "raw_path",
    [
        "/home/alice/.ssh",
        "/home/alice/.ssh/keys",
        "/home/alice/.aws/config",
        "/Users/bob/.config/gcloud",
    ],
)
def test_validate_rejects_credential_directories(raw_path: str) -> None:
    with pytest.raises(PathRejectedError) as excinfo:
        PathGuard().validate(raw_path)

    assert excinfo.value.reason == "sensitive_directory"


@pytest.mark.parametrize(
    ("raw_path", "reason"),
    [(None, "empty"), ("", "empty"), ("   ", "empty"), (42, "empty"), ("/tmp/a\0b", "null_byte")],
)
def test_validate_rejects_malformed_input(raw_path: object, reason: str) -> None:
    with pytest.raises(PathRejectedError) as excinfo:
        PathGuard().validate(raw_path)

    assert excinfo.value.reason == reason


def test_validate_normalizes_relative_segments() -> None:
    path = PathGuard().validate("/home/alice/projects/app/../app/./src/")

    assert path == Path("/home/alice/projects/app/src")


def test_validate_resolves_traversal_before_blocklist_check() -> None:
    with pytest.raises(PathRejectedError) as excinfo:
        PathGuard().validate("/home/alice/../../etc/passwd")

    assert excinfo.value.reason == "system_directory"


def test_allowed_paths_accept_nested_directories_only() -> None:
    guard = PathGuard(allowed_paths=[Path("/home/alice/projects")])

    assert guard.validate("/home/alice/projects") == Path("/home/alice/projects")
    assert guard.validate("/home/alice/projects/app/src") == Path("/home/alice/projects/app/src")
    with pytest.raises(PathRejectedError) as excinfo:
        guard.validate("/home/alice/projects-old")
    assert excinfo.value.reason == "not_allowed"


def test_blocklist_wins_over_allowed_paths() -> None:
    guard = PathGuard(allowed_paths=["/home/alice"])

    with pytest.raises(PathRejectedError) as excinfo:
        guard.validate("/home/alice/.ssh")

    assert excinfo.value.reason == "sensitive_directory"


def test_path_outside_home_is_accepted_with_warning(caplog) -> None:
    with caplog.at_level("WARNING", logger="agent_worker.guards.paths"):
        path = PathGuard().validate("/srv/projects/app")

    assert path == Path("/srv/projects/app")
    assert "outside user home directories" in caplog.text


def test_validate_existing_requires_a_directory(tmp_path: Path) -> None:
    guard = PathGuard()

    with pytest.raises(PathRejectedError) as missing:
        guard.validate_existing(None, job_type="code_execution")
    with pytest.raises(PathRejectedError) as not_found:
        guard.validate_existing("/home/nobody/definitely/not/here", job_type="code_execution")

    assert missing.value.reason == "missing"
    assert "code_execution" in str(missing.value)
    assert not_found.value.reason == "not_found"


def test_validate_existing_accepts_directory(project_dir: Path) -> None:
    assert PathGuard().validate_existing(str(project_dir), job_type="code_execution") == project_dir


def test_validate_with_fallback_uses_default_for_unusable_paths(tmp_path: Path) -> None:
    guard = PathGuard()

    assert guard.validate_with_fallback(None, default=tmp_path) == tmp_path
    assert guard.validate_with_fallback("/etc", default=tmp_path) == tmp_path
    assert guard.validate_with_fallback("/home/nobody/missing", default=tmp_path) == tmp_path


def test_validate_with_fallback_keeps_valid_project(project_dir: Path, tmp_path: Path) -> None:
    other = tmp_path / "other"

    assert PathGuard().validate_with_fallback(str(project_dir), default=other) == project_dir
