"""Run content downloads in supervised, cancelable worker processes."""

from depot_runner.auth import Authenticator, ConsoleAuthenticator
from depot_runner.client import DepotRunner
from depot_runner.config import RunnerSettings
from depot_runner.errors import (
    DepotRunnerError,
    DownloadFailure,
    ExitCode,
    LoginFailure,
    ProtocolError,
    UnknownWorkerFailure,
    WorkerFailure,
)
from depot_runner.models import (
    AppDownloadRequest,
    BuildIdQuery,
    DepotManifest,
    DownloadOptions,
    PublishedFileDownloadRequest,
    TargetArch,
    TargetOs,
    UgcDownloadRequest,
)

__version__ = "0.1.0"

__all__ = [
    "AppDownloadRequest",
    "Authenticator",
    "BuildIdQuery",
    "ConsoleAuthenticator",
    "DepotManifest",
    "DepotRunner",
    "DepotRunnerError",
    "DownloadFailure",
    "DownloadOptions",
    "ExitCode",
    "LoginFailure",
    "ProtocolError",
    "PublishedFileDownloadRequest",
    "RunnerSettings",
    "TargetArch",
    "TargetOs",
    "UgcDownloadRequest",
    "UnknownWorkerFailure",
    "WorkerFailure",
    "__version__",
]
