from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_worker.config import Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_defaults_without_environment(clean_env) -> None:
    settings = Settings.from_env()

    assert settings.agent_id == "agent-default"
    assert settings.logging.level == "info"
    assert settings.logging.max_batch_size == 10
    assert settings.flush_interval_seconds == 2.0
    assert settings.supervisor.agent_command == "claude"
    assert settings.supervisor.iterative_command is None
    assert settings.guards.allowed_paths == ()
    assert settings.api.base_url is None


def test_values_are_read_from_environment(clean_env, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_WORKER_AGENT_ID", "agent-42")
    monkeypatch.setenv("AGENT_WORKER_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("AGENT_WORKER_CONSOLE_COLORS", "off")
    monkeypatch.setenv("AGENT_WORKER_FLUSH_INTERVAL_MS", "500")
    monkeypatch.setenv("AGENT_WORKER_ITERATIVE_COMMAND", "  ralph --max 5 ")
    monkeypatch.setenv("AGENT_WORKER_ALLOWED_PATHS", "/srv/app: /data/repos :")
    monkeypatch.setenv("AGENT_WORKER_API_URL", "https://service.example")

    settings = Settings.from_env()

    assert settings.agent_id == "agent-42"
    assert settings.logging.level == "debug"
    assert settings.logging.console_colors is False
    assert settings.flush_interval_seconds == 0.5
    assert settings.supervisor.iterative_command == "ralph --max 5"
    assert settings.guards.allowed_paths == (Path("/srv/app"), Path("/data/repos"))
    assert settings.api.base_url == "https://service.example"
    assert settings.api.token is None


def test_invalid_boolean_names_the_variable(clean_env, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_WORKER_USE_BATCH_ENDPOINT", "maybe")

    with pytest.raises(ValueError, match="AGENT_WORKER_USE_BATCH_ENDPOINT"):
        Settings.from_env()


def test_invalid_integer_names_the_variable(clean_env, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_WORKER_MAX_BATCH_SIZE", "ten")

    with pytest.raises(ValueError, match="AGENT_WORKER_MAX_BATCH_SIZE"):
        Settings.from_env()


def test_unknown_log_level_is_rejected(clean_env, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_WORKER_LOG_LEVEL", "verbose")

    with pytest.raises(ValueError, match="AGENT_WORKER_LOG_LEVEL must be one of"):
        Settings.from_env()


def test_non_positive_batch_size_is_rejected(clean_env, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_WORKER_MAX_BATCH_SIZE", "0")

    with pytest.raises(ValueError, match="must be > 0"):
        Settings.from_env()


def test_negative_kill_grace_is_rejected() -> None:
    settings = Settings()
    settings.supervisor.kill_grace_seconds = -1

    with pytest.raises(ValueError, match="KILL_GRACE"):
        settings.validate()
