"""Controllers for depot-runner CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass, replace
from pathlib import Path

from depot_runner.auth import Authenticator, ConsoleAuthenticator
from depot_runner.client import DepotRunner
from depot_runner.config import RunnerSettings
from depot_runner.errors import DepotRunnerError, ExitCode, WorkerFailure
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

LineSink = Callable[[str, bool], None]


@dataclass(slots=True)
class DownloadOptionsCommand:
    """CLI inputs shared by every download command."""

    username: str | None = None
    password: str | None = None
    remember_password: bool = False
    use_qr_code: bool = False
    login_id: int | None = None
    cell_id: int = 0
    max_downloads: int = 0
    install_directory: Path | None = None
    file_list: Path | None = None
    verify_all: bool = False
    manifest_only: bool = False
    beta_password: str | None = None
    account_settings_file: str | None = None


@dataclass(slots=True)
class AppDownloadCommand:
    """CLI inputs for app download."""

    app_id: int
    depots: tuple[int, ...]
    manifests: tuple[int, ...]
    branch: str
    os: str | None
    arch: str | None
    language: str | None
    all_platforms: bool
    all_archs: bool
    all_languages: bool
    low_violence: bool
    options: DownloadOptionsCommand


@dataclass(slots=True)
class PublishedFileDownloadCommand:
    """CLI inputs for published file download."""

    app_id: int
    published_file_id: int
    options: DownloadOptionsCommand


@dataclass(slots=True)
class UgcDownloadCommand:
    """CLI inputs for UGC download."""

    app_id: int
    ugc_id: int
    options: DownloadOptionsCommand


@dataclass(slots=True)
class BuildIdCommand:
    """CLI inputs for build id lookup."""

    app_id: int
    branch: str


@dataclass(slots=True)
class CommandResult:
    """Outcome of a CLI command."""

    success: bool
    exit_code: int
    lines: list[str]


class RunnerCliController:
    """Translate CLI commands into supervised worker runs."""

    def __init__(
        self,
        settings: RunnerSettings | None = None,
        authenticator: Authenticator | None = None,
    ) -> None:
        self.settings = settings
        self.authenticator = authenticator or ConsoleAuthenticator()

    def download_app(self, command: AppDownloadCommand, sink: LineSink) -> CommandResult:
        if command.manifests and len(command.manifests) != len(command.depots):
            raise ValueError("--manifest requires one --depot per manifest id.")
        manifests = [
            DepotManifest(depot_id=depot_id, manifest_id=None) for depot_id in command.depots
        ]
        for index, manifest_id in enumerate(command.manifests):
            manifests[index] = replace(manifests[index], manifest_id=manifest_id)

        options = replace(
            _build_options(command.options),
            download_all_platforms=command.all_platforms,
            download_all_archs=command.all_archs,
            download_all_languages=command.all_languages,
        )
        request = AppDownloadRequest(
            app_id=command.app_id,
            depot_manifests=tuple(manifests),
            branch=command.branch,
            os=TargetOs(command.os) if command.os else None,
            arch=TargetArch(command.arch) if command.arch else None,
            language=command.language,
            low_violence=command.low_violence,
            options=options,
        )
        runner = self._runner()
        lines = runner.iter_app_download(request, authenticator=self.authenticator)
        return self._stream(lines, sink)

    def download_published_file(
        self,
        command: PublishedFileDownloadCommand,
        sink: LineSink,
    ) -> CommandResult:
        request = PublishedFileDownloadRequest(
            app_id=command.app_id,
            published_file_id=command.published_file_id,
            options=_build_options(command.options),
        )
        runner = self._runner()
        return self._stream(
            runner.iter_published_file_download(request, authenticator=self.authenticator),
            sink,
        )

    def download_ugc(self, command: UgcDownloadCommand, sink: LineSink) -> CommandResult:
        request = UgcDownloadRequest(
            app_id=command.app_id,
            ugc_id=command.ugc_id,
            options=_build_options(command.options),
        )
        runner = self._runner()
        lines = runner.iter_ugc_download(request, authenticator=self.authenticator)
        return self._stream(lines, sink)

    def build_id(self, command: BuildIdCommand) -> CommandResult:
        runner = self._runner()
        query = BuildIdQuery(app_id=command.app_id, branch=command.branch)
        try:
            build_id = asyncio.run(runner.get_build_id(query))
        except WorkerFailure as failure:
            return _failure_result(failure)
        except DepotRunnerError as error:
            return CommandResult(
                success=False,
                exit_code=ExitCode.UNKNOWN_ERROR,
                lines=[str(error)],
            )
        return CommandResult(success=True, exit_code=0, lines=[str(build_id)])

    def _runner(self) -> DepotRunner:
        return DepotRunner(self.settings)

    def _stream(self, lines, sink: LineSink) -> CommandResult:
        async def _consume() -> None:
            async with aclosing(lines) as stream:
                async for message, is_error in stream:
                    sink(message, is_error)

        try:
            asyncio.run(_consume())
        except WorkerFailure as failure:
            return _failure_result(failure)
        except DepotRunnerError as error:
            return CommandResult(
                success=False,
                exit_code=ExitCode.UNKNOWN_ERROR,
                lines=[str(error)],
            )
        return CommandResult(success=True, exit_code=0, lines=[])


def _build_options(command: DownloadOptionsCommand) -> DownloadOptions:
    files: list[str] = []
    patterns: list[str] = []
    if command.file_list is not None:
        for raw in command.file_list.read_text("utf-8").splitlines():
            entry = raw.strip()
            if not entry:
                continue
            if entry.startswith("regex:"):
                patterns.append(entry.removeprefix("regex:"))
            else:
                files.append(entry.replace("\\", "/"))

    return DownloadOptions(
        cell_id=command.cell_id,
        download_manifest_only=command.manifest_only,
        install_directory=str(command.install_directory) if command.install_directory else None,
        files_to_download=tuple(files),
        files_to_download_regex=tuple(patterns),
        beta_password=command.beta_password,
        verify_all=command.verify_all,
        max_downloads=command.max_downloads,
        account_settings_file_name=command.account_settings_file,
        username=command.username,
        password=command.password,
        remember_password=command.remember_password,
        login_id=command.login_id,
        use_qr_code=command.use_qr_code,
    )


def _failure_result(failure: WorkerFailure) -> CommandResult:
    lines = [f"{failure} (exit code {failure.code})"]
    lines.extend(f"  {line}" for line in failure.diagnostics)
    return CommandResult(success=False, exit_code=failure.code, lines=lines)
