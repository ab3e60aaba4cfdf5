"""CLI entrypoint for depot-runner."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from depot_runner import __version__
from depot_runner.config import RunnerSettings
from depot_runner.controllers import (
    AppDownloadCommand,
    BuildIdCommand,
    CommandResult,
    DownloadOptionsCommand,
    PublishedFileDownloadCommand,
    RunnerCliController,
    UgcDownloadCommand,
)
from depot_runner.models import DEFAULT_BRANCH, TargetArch, TargetOs

click.rich_click.USE_MARKDOWN = True


@click.group()
@click.version_option(version=__version__, prog_name="depot-runner")
@click.option(
    "--engine",
    default=None,
    envvar="DEPOT_RUNNER_ENGINE",
    help="Download engine factory as `package.module:factory`.",
)
@click.option(
    "--log-level",
    type=click.Choice(["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"], case_sensitive=False),
    default=None,
    help="Logging level; defaults to DEPOT_RUNNER_LOG_LEVEL or WARNING.",
)
@click.pass_context
def depot_runner(ctx: click.Context, engine: str | None, log_level: str | None) -> None:
    """Run content downloads in supervised worker processes."""

    try:
        settings = RunnerSettings.from_env(engine_factory=engine)
        if log_level is not None:
            settings.log_level = log_level.upper()
        settings.validate()
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = RunnerCliController(settings=settings)


def download_options(func: Callable) -> Callable:
    """Attach the options shared by every download command."""

    options = [
        click.option("--username", default=None, help="Account user name."),
        click.option("--password", default=None, help="Account password."),
        click.option(
            "--remember-password",
            is_flag=True,
            help="Persist the login key for subsequent runs.",
        ),
        click.option("--qr", "use_qr_code", is_flag=True, help="Log in with a QR code."),
        click.option(
            "--login-id",
            type=click.IntRange(min=0),
            default=None,
            help="Login id allowing concurrent sessions for one account.",
        ),
        click.option(
            "--cell-id",
            type=click.IntRange(min=0),
            default=0,
            show_default=True,
            help="Content server cell id.",
        ),
        click.option(
            "--max-downloads",
            type=click.IntRange(min=0),
            default=0,
            show_default=True,
            help="Concurrent chunk downloads; 0 uses the default.",
        ),
        click.option(
            "--dir",
            "install_directory",
            type=click.Path(path_type=Path, file_okay=False),
            default=None,
            help="Install directory.",
        ),
        click.option(
            "--filelist",
            "file_list",
            type=click.Path(path_type=Path, exists=True, dir_okay=False),
            default=None,
            help="File with one path per line; prefix a line with `regex:` for a pattern.",
        ),
        click.option("--validate", "verify_all", is_flag=True, help="Verify all files."),
        click.option(
            "--manifest-only",
            is_flag=True,
            help="Download the manifest listing instead of content.",
        ),
        click.option("--betapassword", "beta_password", default=None, help="Branch password."),
        click.option(
            "--account-settings",
            "account_settings_file",
            default=None,
            help="Account settings file name.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@depot_runner.command("app")
@click.argument("app_id", type=click.IntRange(min=0))
@click.option(
    "--depot",
    "depots",
    type=click.IntRange(min=0),
    multiple=True,
    help="Depot id. Can be repeated.",
)
@click.option(
    "--manifest",
    "manifests",
    type=click.IntRange(min=0),
    multiple=True,
    help="Manifest id for the depot at the same position. Can be repeated.",
)
@click.option("--branch", default=DEFAULT_BRANCH, show_default=True, help="Branch name.")
@click.option(
    "--os",
    "target_os",
    type=click.Choice([item.value for item in TargetOs]),
    default=None,
    help="Operating system to select depots for.",
)
@click.option(
    "--arch",
    type=click.Choice([item.value for item in TargetArch]),
    default=None,
    help="Architecture to select depots for.",
)
@click.option("--language", default=None, help="Language to select depots for.")
@click.option("--all-platforms", is_flag=True, help="Download depots for every platform.")
@click.option("--all-archs", is_flag=True, help="Download depots for every architecture.")
@click.option("--all-languages", is_flag=True, help="Download depots for every language.")
@click.option("--lowviolence", "low_violence", is_flag=True, help="Include low-violence depots.")
@download_options
@click.pass_obj
def app(  # noqa: PLR0913
    controller: RunnerCliController,
    app_id: int,
    depots: tuple[int, ...],
    manifests: tuple[int, ...],
    branch: str,
    target_os: str | None,
    arch: str | None,
    language: str | None,
    all_platforms: bool,
    all_archs: bool,
    all_languages: bool,
    low_violence: bool,
    **options,
) -> None:
    """Download an app, optionally restricted to specific depots."""

    try:
        result = controller.download_app(
            AppDownloadCommand(
                app_id=app_id,
                depots=depots,
                manifests=manifests,
                branch=branch,
                os=target_os,
                arch=arch,
                language=language,
                all_platforms=all_platforms,
                all_archs=all_archs,
                all_languages=all_languages,
                low_violence=low_violence,
                options=DownloadOptionsCommand(**options),
            ),
            _emit_line,
        )
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    _finish(result)


@depot_runner.command("pubfile")
@click.argument("app_id", type=click.IntRange(min=0))
@click.argument("published_file_id", type=click.IntRange(min=0))
@download_options
@click.pass_obj
def pubfile(
    controller: RunnerCliController,
    app_id: int,
    published_file_id: int,
    **options,
) -> None:
    """Download a workshop published file."""

    _finish(
        controller.download_published_file(
            PublishedFileDownloadCommand(
                app_id=app_id,
                published_file_id=published_file_id,
                options=DownloadOptionsCommand(**options),
            ),
            _emit_line,
        ),
    )


@depot_runner.command("ugc")
@click.argument("app_id", type=click.IntRange(min=0))
@click.argument("ugc_id", type=click.IntRange(min=0))
@download_options
@click.pass_obj
def ugc(controller: RunnerCliController, app_id: int, ugc_id: int, **options) -> None:
    """Download a user-generated content item."""

    _finish(
        controller.download_ugc(
            UgcDownloadCommand(
                app_id=app_id,
                ugc_id=ugc_id,
                options=DownloadOptionsCommand(**options),
            ),
            _emit_line,
        ),
    )


@depot_runner.command("build-id")
@click.argument("app_id", type=click.IntRange(min=0))
@click.option("--branch", default=DEFAULT_BRANCH, show_default=True, help="Branch name.")
@click.pass_obj
def build_id(controller: RunnerCliController, app_id: int, branch: str) -> None:
    """Print the current build id of an app branch."""

    result = controller.build_id(BuildIdCommand(app_id=app_id, branch=branch))
    if result.success:
        _emit_lines(result.lines)
        return
    _finish(result)


def _finish(result: CommandResult) -> None:
    if result.success:
        return
    message, *diagnostics = result.lines
    _emit_lines(diagnostics, err=True)
    error = click.ClickException(message)
    error.exit_code = result.exit_code
    raise error


def _emit_line(line: str, is_error: bool) -> None:
    click.echo(line, err=is_error)


def _emit_lines(lines: list[str], *, err: bool = False) -> None:
    for line in lines:
        click.echo(line, err=err)


if __name__ == "__main__":  # pragma: no cover
    depot_runner()
