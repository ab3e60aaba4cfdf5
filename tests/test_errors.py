from __future__ import annotations

import allure
import pytest

from depot_runner.errors import (
    DownloadFailure,
    ExitCode,
    FailureKind,
    LoginFailure,
    UnknownWorkerFailure,
    worker_failure_for_exit_code,
)

pytestmark = [
    allure.epic("Worker Supervision"),
    allure.feature("Exit Code Taxonomy"),
]


@pytest.mark.parametrize(
    ("code", "failure_type", "message", "kind"),
    [
        (ExitCode.UNKNOWN_ERROR, UnknownWorkerFailure, "Unknown error", FailureKind.UNKNOWN),
        (ExitCode.GENERAL_ERROR, DownloadFailure, "General error", FailureKind.GENERAL),
        (ExitCode.LOGIN_ERROR, LoginFailure, "Login error", FailureKind.LOGIN),
    ],
)
def test_known_exit_codes_map_to_failure_types(code, failure_type, message, kind) -> None:
    failure = worker_failure_for_exit_code(code)

    assert type(failure) is failure_type
    assert failure.code == code
    assert failure.message == message
    assert failure.kind is kind


def test_unmapped_exit_code_keeps_the_raw_code() -> None:
    failure = worker_failure_for_exit_code(-9, diagnostics=("Killed",))

    assert isinstance(failure, UnknownWorkerFailure)
    assert failure.code == -9
    assert str(failure) == "Unknown error (exit code -9)"
    assert failure.diagnostics == ("Killed",)


def test_exit_code_zero_is_not_a_failure() -> None:
    with pytest.raises(ValueError, match="not a failure"):
        worker_failure_for_exit_code(0)
