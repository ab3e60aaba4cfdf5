from __future__ import annotations

from pathlib import Path

import allure
from click.testing import CliRunner

from depot_runner.controllers import DownloadOptionsCommand, _build_options
from depot_runner.main import depot_runner

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("depot-runner CLI"),
]

ENGINE_ARGS = ["--engine", "depot_runner.engine.echo_engine:EchoEngine"]


def test_build_id_prints_value(worker_env) -> None:
    result = CliRunner().invoke(depot_runner, [*ENGINE_ARGS, "build-id", "307290"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "587726"


def test_app_download_streams_worker_output(worker_env) -> None:
    result = CliRunner().invoke(
        depot_runner,
        [*ENGINE_ARGS, "app", "10", "--depot", "11", "--max-downloads", "2"],
    )

    assert result.exit_code == 0, result.output
    assert "Downloading depot 11" in result.output
    assert "max downloads: 2" in result.output


def test_pubfile_and_ugc_commands(worker_env) -> None:
    runner = CliRunner()

    pubfile = runner.invoke(depot_runner, [*ENGINE_ARGS, "pubfile", "4000", "12345"])
    ugc = runner.invoke(depot_runner, [*ENGINE_ARGS, "ugc", "4000", "77"])

    assert pubfile.exit_code == 0, pubfile.output
    assert "Processing published file 12345 of app 4000" in pubfile.output
    assert ugc.exit_code == 0, ugc.output
    assert "Processing ugc 77 of app 4000" in ugc.output


def test_login_failure_maps_to_worker_exit_code(echo_case) -> None:
    echo_case("login_rejected")

    result = CliRunner().invoke(depot_runner, [*ENGINE_ARGS, "app", "10"])

    assert result.exit_code == 3
    assert "Login error (exit code 3)" in result.output


def test_device_code_is_prompted_on_the_console(echo_case) -> None:
    echo_case("device_code")

    result = CliRunner().invoke(depot_runner, [*ENGINE_ARGS, "app", "10"], input="ABC123\n")

    assert result.exit_code == 0, result.output
    assert "STEAM GUARD!" in result.output
    assert "Device code received: ABC123" in result.output


def test_manifest_without_matching_depot_is_a_usage_error(worker_env) -> None:
    result = CliRunner().invoke(
        depot_runner,
        [*ENGINE_ARGS, "app", "10", "--depot", "11", "--manifest", "1", "--manifest", "2"],
    )

    assert result.exit_code == 2
    assert "--manifest requires one --depot" in result.output


def test_invalid_engine_path_is_a_usage_error(worker_env) -> None:
    result = CliRunner().invoke(depot_runner, ["--engine", "no_colon", "build-id", "1"])

    assert result.exit_code == 2
    assert "DEPOT_RUNNER_ENGINE" in result.output


def test_file_list_splits_paths_and_patterns(tmp_path: Path) -> None:
    file_list = tmp_path / "files.txt"
    file_list.write_text("bin\\server.so\n\nregex:^maps/.*\\.bsp$\n  cfg/game.cfg  \n", "utf-8")

    options = _build_options(DownloadOptionsCommand(file_list=file_list, max_downloads=3))

    assert options.files_to_download == ("bin/server.so", "cfg/game.cfg")
    assert options.files_to_download_regex == (r"^maps/.*\.bsp$",)
    assert options.max_downloads == 3
    assert options.using_file_list
