"""Shared test fixtures."""

from __future__ import annotations

import os
import time
from pathlib import Path

import psutil
import pytest

from depot_runner.client import DepotRunner
from depot_runner.config import RunnerSettings
from depot_runner.engine.echo_engine import ECHO_CASE_ENV

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
ECHO_ENGINE = "depot_runner.engine.echo_engine:EchoEngine"


@pytest.fixture()
def worker_env(monkeypatch):
    """Make the package importable by spawned workers and reset the echo case."""
    paths = [str(SRC_DIR), os.environ.get("PYTHONPATH", "")]
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(path for path in paths if path))
    monkeypatch.setenv(ECHO_CASE_ENV, "success")
    monkeypatch.delenv("DEPOT_RUNNER_ENGINE", raising=False)
    return monkeypatch


@pytest.fixture()
def echo_case(worker_env):
    """Select the echo engine behaviour for workers spawned by the test."""

    def _select(case: str) -> None:
        worker_env.setenv(ECHO_CASE_ENV, case)

    return _select


@pytest.fixture()
def echo_settings(worker_env) -> RunnerSettings:
    return RunnerSettings(
        engine_factory=ECHO_ENGINE,
        kill_grace_seconds=5.0,
        drain_grace_seconds=1.0,
        parent_poll_seconds=0.2,
    )


@pytest.fixture()
def runner(echo_settings: RunnerSettings) -> DepotRunner:
    return DepotRunner(echo_settings)


@pytest.fixture()
def wait_until_gone():
    """Poll until a pid no longer names a live process; return whether it vanished."""

    def _wait(pid: int, timeout: float = 10.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                    return True
            except psutil.NoSuchProcess:
                return True
            time.sleep(0.05)
        return False

    return _wait
