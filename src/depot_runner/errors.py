"""Exception taxonomy and worker exit-code mapping."""

from __future__ import annotations

from enum import Enum, IntEnum


class ExitCode(IntEnum):
    """Process status codes a worker terminates with."""

    SUCCESS = 0
    UNKNOWN_ERROR = 1
    GENERAL_ERROR = 2
    LOGIN_ERROR = 3


class FailureKind(str, Enum):
    """Normalized worker failure kinds derived from exit codes."""

    UNKNOWN = "unknown"
    GENERAL = "general"
    LOGIN = "login"


class DepotRunnerError(Exception):
    """Base class for every error raised by depot_runner."""


class DecodeError(DepotRunnerError, ValueError):
    """Malformed wire payload."""


class ControlMessageDecodeError(DecodeError):
    """A line carrying the magic marker could not be decoded."""


class ValueDecodeError(DecodeError):
    """A serialized request or return value could not be decoded."""


class EncodeError(DepotRunnerError, ValueError):
    """Value cannot be represented on the control channel."""


class ProtocolError(DepotRunnerError, RuntimeError):
    """Control-channel conversation violated its contract."""


class WorkerUnavailableError(ProtocolError):
    """Worker exited before an authentication answer could be delivered."""


class WorkerSpawnError(DepotRunnerError, OSError):
    """Worker process could not be started."""


class WorkerFailure(DepotRunnerError):
    """Worker terminated with a non-zero exit code."""

    kind = FailureKind.UNKNOWN
    default_message = "Unknown error"

    def __init__(
        self,
        code: int,
        message: str | None = None,
        *,
        diagnostics: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message or self.default_message)
        self.code = code
        self.diagnostics = diagnostics

    @property
    def message(self) -> str:
        return str(self)


class UnknownWorkerFailure(WorkerFailure):
    """Unexpected failure inside the worker, or an unrecognized exit code."""


class DownloadFailure(WorkerFailure):
    """Download engine reported a failure."""

    kind = FailureKind.GENERAL
    default_message = "General error"


class LoginFailure(WorkerFailure):
    """Worker could not log in."""

    kind = FailureKind.LOGIN
    default_message = "Login error"


_FAILURES_BY_CODE: dict[int, type[WorkerFailure]] = {
    ExitCode.UNKNOWN_ERROR: UnknownWorkerFailure,
    ExitCode.GENERAL_ERROR: DownloadFailure,
    ExitCode.LOGIN_ERROR: LoginFailure,
}


def worker_failure_for_exit_code(
    code: int,
    *,
    diagnostics: tuple[str, ...] = (),
) -> WorkerFailure:
    """Build the structured failure for a non-zero worker exit code."""

    if code == ExitCode.SUCCESS:
        raise ValueError("Exit code 0 is not a failure.")
    failure_type = _FAILURES_BY_CODE.get(code)
    if failure_type is None:
        return UnknownWorkerFailure(
            code,
            f"Unknown error (exit code {code})",
            diagnostics=diagnostics,
        )
    return failure_type(code, diagnostics=diagnostics)
