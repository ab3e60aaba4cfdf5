from __future__ import annotations

import sys

import allure
import pytest

from depot_runner.config import RunnerSettings

pytestmark = [
    allure.epic("Worker Supervision"),
    allure.feature("Runtime Settings"),
]


def test_from_env_uses_defaults(monkeypatch) -> None:
    for name in (
        "DEPOT_RUNNER_PYTHON",
        "DEPOT_RUNNER_ENGINE",
        "DEPOT_RUNNER_DEFAULT_MAX_DOWNLOADS",
        "DEPOT_RUNNER_LOG_LEVEL",
        "DEPOT_RUNNER_INHERIT_ENVIRONMENT",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = RunnerSettings.from_env()

    assert settings.python_executable == sys.executable
    assert settings.engine_factory is None
    assert settings.default_max_downloads == 8
    assert settings.inherit_environment is True
    assert settings.log_level == "WARNING"
    settings.validate()


def test_from_env_reads_overrides(monkeypatch) -> None:
    monkeypatch.setenv("DEPOT_RUNNER_ENGINE", "acme.engine:create")
    monkeypatch.setenv("DEPOT_RUNNER_KILL_GRACE_SECONDS", "1.5")
    monkeypatch.setenv("DEPOT_RUNNER_DEFAULT_MAX_DOWNLOADS", "16")
    monkeypatch.setenv("DEPOT_RUNNER_INHERIT_ENVIRONMENT", "off")
    monkeypatch.setenv("DEPOT_RUNNER_LOG_LEVEL", "debug")

    settings = RunnerSettings.from_env()

    assert settings.engine_factory == "acme.engine:create"
    assert settings.kill_grace_seconds == pytest.approx(1.5)
    assert settings.default_max_downloads == 16
    assert settings.inherit_environment is False
    assert settings.log_level == "DEBUG"


def test_explicit_engine_factory_wins_over_environment(monkeypatch) -> None:
    monkeypatch.setenv("DEPOT_RUNNER_ENGINE", "acme.engine:create")

    settings = RunnerSettings.from_env(engine_factory="other.engine:build")

    assert settings.engine_factory == "other.engine:build"


def test_from_env_rejects_invalid_boolean(monkeypatch) -> None:
    monkeypatch.setenv("DEPOT_RUNNER_INHERIT_ENVIRONMENT", "sometimes")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        RunnerSettings.from_env()


@pytest.mark.parametrize(
    ("overrides", "match"),
    [
        ({"engine_factory": "no_colon"}, "DEPOT_RUNNER_ENGINE"),
        ({"kill_grace_seconds": 0}, "KILL_GRACE_SECONDS"),
        ({"drain_grace_seconds": -1}, "DRAIN_GRACE_SECONDS"),
        ({"stream_limit_bytes": 10}, "STREAM_LIMIT_BYTES"),
        ({"default_max_downloads": 0}, "DEFAULT_MAX_DOWNLOADS"),
        ({"log_level": "CHATTY"}, "LOG_LEVEL"),
    ],
)
def test_validate_rejects_out_of_range_values(overrides: dict, match: str) -> None:
    settings = RunnerSettings(**overrides)

    with pytest.raises(ValueError, match=match):
        settings.validate()
