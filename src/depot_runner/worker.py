"""Worker process entry point.

Invoked as ``python -m depot_runner.worker <serialized-request> <parent-pid>``.
Runs the configured download engine, reports progress on stdout and
diagnostics on stderr, exchanges control messages with the supervising
process, and always terminates with an ``ExitCode``.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from collections.abc import Callable
from dataclasses import replace
from typing import TextIO

import psutil

from depot_runner.config import DEFAULT_MAX_DOWNLOADS_ENV, ENGINE_ENV, PARENT_POLL_ENV
from depot_runner.engine import DownloadEngine, DownloadEngineError, load_engine
from depot_runner.errors import ExitCode, ProtocolError
from depot_runner.framing import ControlVerb, encode_control_message, parse_bool
from depot_runner.marshalling import deserialize_request, serialize
from depot_runner.models import (
    AppDownloadRequest,
    BuildIdQuery,
    DownloadOptions,
    PublishedFileDownloadRequest,
    UgcDownloadRequest,
    WorkerRequest,
)
from depot_runner.process_tree import terminate_process_tree

logger = logging.getLogger(__name__)


class ControlChannelClosedError(ProtocolError):
    """Standard input reached end of file while an answer was expected."""


class ControlChannel:
    """Worker end of the control channel: stdout for requests, stdin for answers."""

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._lock = threading.Lock()

    def send(self, verb: ControlVerb, *args: str | bool | int) -> None:
        line = encode_control_message(verb, *args)
        self._stdout.write(line + "\n")
        self._stdout.flush()

    def request(self, verb: ControlVerb, *args: str | bool | int) -> str:
        """Send a request and block until exactly one answer line arrives."""

        with self._lock:
            self.send(verb, *args)
            line = self._stdin.readline()
        if not line:
            raise ControlChannelClosedError(f"No answer received for {verb.value}.")
        return line.rstrip("\r\n")

    def set_return_value(self, value: object) -> None:
        self.send(ControlVerb.SET_RETURN_VALUE, serialize(value))


class ControlChannelAuthenticator:
    """Engine authenticator that forwards every prompt to the supervising process."""

    def __init__(self, channel: ControlChannel) -> None:
        self.channel = channel

    def get_device_code(self, previous_code_was_incorrect: bool) -> str:
        return self.channel.request(ControlVerb.REQUEST_DEVICE_CODE, previous_code_was_incorrect)

    def get_email_code(self, email: str, previous_code_was_incorrect: bool) -> str:
        return self.channel.request(
            ControlVerb.REQUEST_EMAIL_CODE,
            email,
            previous_code_was_incorrect,
        )

    def accept_device_confirmation(self) -> bool:
        answer = self.channel.request(ControlVerb.REQUEST_DEVICE_CONFIRMATION)
        try:
            return parse_bool(answer)
        except ValueError as error:
            raise ProtocolError(f"Invalid device confirmation answer: {answer!r}") from error


class ParentWatchdog:
    """Terminate the worker when the supervising process disappears."""

    def __init__(
        self,
        parent_pid: int,
        *,
        poll_interval: float = 0.5,
        on_parent_exit: Callable[[], None] | None = None,
    ) -> None:
        self.parent_pid = parent_pid
        self.poll_interval = poll_interval
        self.on_parent_exit = on_parent_exit or _terminate_self
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None
        self._parent: psutil.Process | None = None

    def start(self) -> None:
        try:
            self._parent = psutil.Process(self.parent_pid)
        except psutil.NoSuchProcess:
            self.on_parent_exit()
            return
        self._thread = threading.Thread(
            target=self._watch,
            name="depot-runner-parent-watchdog",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()

    def parent_alive(self) -> bool:
        if self._parent is None:
            return False
        try:
            return self._parent.is_running() and self._parent.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    def _watch(self) -> None:
        while not self._stopped.wait(self.poll_interval):
            if not self.parent_alive():
                logger.warning("Parent process %d is gone, terminating worker", self.parent_pid)
                self.on_parent_exit()
                return


def run_request(
    request: WorkerRequest,
    engine: DownloadEngine,
    channel: ControlChannel,
    *,
    default_max_downloads: int = 8,
) -> int:
    """Execute one request against the engine and return the exit code."""

    authenticator = ControlChannelAuthenticator(channel)
    if isinstance(request, BuildIdQuery):
        return _run_build_id_query(request, engine, channel, authenticator)

    request = replace(
        request,
        options=_normalize_options(request.options, default_max_downloads),
    )
    try:
        if not _connect(engine, request.options.username, request.options.password, authenticator):
            return ExitCode.LOGIN_ERROR
        if isinstance(request, AppDownloadRequest):
            engine.download_app(request)
        elif isinstance(request, PublishedFileDownloadRequest):
            engine.download_published_file(request)
        elif isinstance(request, UgcDownloadRequest):
            engine.download_ugc(request)
        else:
            raise TypeError(f"Unsupported request type: {type(request).__name__}")
        return ExitCode.SUCCESS
    except (DownloadEngineError, TimeoutError) as error:
        print(error, flush=True)
        return ExitCode.GENERAL_ERROR
    except Exception as error:  # noqa: BLE001
        print(
            f"Download failed due to an unhandled exception: {error}",
            file=sys.stderr,
            flush=True,
        )
        return ExitCode.UNKNOWN_ERROR
    finally:
        engine.shutdown()


def _run_build_id_query(
    query: BuildIdQuery,
    engine: DownloadEngine,
    channel: ControlChannel,
    authenticator: ControlChannelAuthenticator,
) -> int:
    try:
        if not _connect(engine, None, None, authenticator):
            return ExitCode.LOGIN_ERROR
        channel.set_return_value(engine.get_build_id(query))
        return ExitCode.SUCCESS
    except Exception as error:  # noqa: BLE001
        print(error, file=sys.stderr, flush=True)
        return ExitCode.UNKNOWN_ERROR
    finally:
        engine.shutdown()


def _connect(
    engine: DownloadEngine,
    username: str | None,
    password: str | None,
    authenticator: ControlChannelAuthenticator,
) -> bool:
    """Log in; an answer channel closed mid-login counts as a failed login."""

    try:
        return engine.connect(username, password, authenticator)
    except ControlChannelClosedError as error:
        print(f"Login aborted: {error}", file=sys.stderr, flush=True)
        return False


def _normalize_options(options: DownloadOptions, default_max_downloads: int) -> DownloadOptions:
    if options.max_downloads <= 0:
        return replace(options, max_downloads=default_max_downloads)
    return options


def main(argv: list[str] | None = None) -> int:
    """Parse worker arguments and run the request; never raises."""

    args = sys.argv[1:] if argv is None else argv
    _configure_stdio()
    if len(args) != 2:  # noqa: PLR2004
        print(
            "usage: python -m depot_runner.worker <serialized-request> <parent-pid>",
            file=sys.stderr,
            flush=True,
        )
        return ExitCode.UNKNOWN_ERROR

    try:
        request = deserialize_request(args[0])
        parent_pid = int(args[1])
        poll_interval = float(os.getenv(PARENT_POLL_ENV, "0.5"))
        default_max_downloads = int(os.getenv(DEFAULT_MAX_DOWNLOADS_ENV, "8"))
    except ValueError as error:
        print(f"Invalid worker arguments: {error}", file=sys.stderr, flush=True)
        return ExitCode.UNKNOWN_ERROR

    watchdog = ParentWatchdog(parent_pid, poll_interval=poll_interval)
    watchdog.start()
    try:
        engine_factory = os.getenv(ENGINE_ENV, "").strip()
        if not engine_factory:
            print(
                f"No download engine configured. Set {ENGINE_ENV}=package.module:factory.",
                file=sys.stderr,
                flush=True,
            )
            return ExitCode.UNKNOWN_ERROR
        return run_request(
            request,
            load_engine(engine_factory),
            ControlChannel(),
            default_max_downloads=default_max_downloads,
        )
    except Exception as error:  # noqa: BLE001
        print(
            f"Worker failed due to an unhandled exception: {error}",
            file=sys.stderr,
            flush=True,
        )
        return ExitCode.UNKNOWN_ERROR
    finally:
        watchdog.stop()


def _configure_stdio() -> None:
    reconfigure = getattr(sys.stdin, "reconfigure", None)
    if reconfigure is not None:
        reconfigure(encoding="utf-8")
    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if reconfigure is not None:
            reconfigure(encoding="utf-8", line_buffering=True)


def _terminate_self() -> None:
    terminate_process_tree(os.getpid(), include_root=False)
    os._exit(ExitCode.UNKNOWN_ERROR)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
