from __future__ import annotations

import allure
import pytest

from depot_runner.engine import DownloadEngineError, EngineLoadError, load_engine
from depot_runner.engine.echo_engine import EchoEngine
from depot_runner.models import AppDownloadRequest, BuildIdQuery, DownloadOptions

pytestmark = [
    allure.epic("Worker Process"),
    allure.feature("Engine Loading"),
]


class _NoPrompts:
    def get_device_code(self, previous_code_was_incorrect: bool) -> str:
        raise AssertionError("unexpected prompt")

    def get_email_code(self, email: str, previous_code_was_incorrect: bool) -> str:
        raise AssertionError("unexpected prompt")

    def accept_device_confirmation(self) -> bool:
        raise AssertionError("unexpected prompt")


def test_load_engine_calls_the_factory(monkeypatch) -> None:
    monkeypatch.setenv("DEPOT_RUNNER_ECHO_CASE", "login_rejected")

    engine = load_engine("depot_runner.engine.echo_engine:EchoEngine")

    assert isinstance(engine, EchoEngine)
    assert engine.case == "login_rejected"


@pytest.mark.parametrize(
    ("factory_path", "match"),
    [
        ("depot_runner.engine.echo_engine", "must look like"),
        ("depot_runner.no_such_module:Engine", "Cannot import engine module"),
        ("depot_runner.engine.echo_engine:Missing", "not found"),
        ("depot_runner.engine.echo_engine:ECHO_EMAIL", "not callable"),
    ],
)
def test_load_engine_reports_bad_factory_paths(factory_path: str, match: str) -> None:
    with pytest.raises(EngineLoadError, match=match):
        load_engine(factory_path)


def test_echo_engine_downloads_requested_depots(capsys) -> None:
    engine = EchoEngine(case="success")
    request = AppDownloadRequest(app_id=10, options=DownloadOptions(max_downloads=4))

    assert engine.connect("gaben", "secret", _NoPrompts())
    engine.download_app(request)

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Logging 'gaben' into Steam3..."
    assert "Downloading depot 11" in lines
    assert "max downloads: 4" in lines


def test_echo_engine_knows_build_ids() -> None:
    engine = EchoEngine(case="success")

    assert engine.get_build_id(BuildIdQuery(app_id=1007)) == 2417
    with pytest.raises(DownloadEngineError, match="not available"):
        engine.get_build_id(BuildIdQuery(app_id=1007, branch="beta"))
