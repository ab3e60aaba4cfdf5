"""Deterministic local engine for worker integration tests and smoke runs.

Behaviour is selected with ``DEPOT_RUNNER_ECHO_CASE``; the default case logs a
few progress lines and succeeds.
"""

from __future__ import annotations

import os
import subprocess
import sys
import time

from depot_runner.auth import EngineAuthenticator
from depot_runner.engine.base import DownloadEngineError
from depot_runner.framing import DELIMITER, MAGIC_MARKER, ControlVerb, encode_control_message
from depot_runner.models import (
    AppDownloadRequest,
    BuildIdQuery,
    PublishedFileDownloadRequest,
    UgcDownloadRequest,
)

ECHO_CASE_ENV = "DEPOT_RUNNER_ECHO_CASE"
ECHO_EMAIL = "user@example.com"

KNOWN_BUILD_IDS: dict[tuple[int, str], int] = {
    (307290, "public"): 587726,
    (1007, "public"): 2417,
}


class EchoEngine:
    """Engine that echoes requests instead of downloading content."""

    def __init__(self, case: str | None = None) -> None:
        self.case = (case or os.getenv(ECHO_CASE_ENV, "success")).strip().lower()
        self.connected = False

    def connect(
        self,
        username: str | None,
        password: str | None,
        authenticator: EngineAuthenticator,
    ) -> bool:
        if self.case == "login_rejected":
            return False
        if self.case == "device_code":
            code = authenticator.get_device_code(False)
            _out(f"Device code received: {code}")
            if code == "WRONG":
                code = authenticator.get_device_code(True)
                _out(f"Device code received: {code}")
        elif self.case == "email_code":
            code = authenticator.get_email_code(ECHO_EMAIL, False)
            _out(f"Email code received: {code}")
        elif self.case == "confirmation":
            accepted = authenticator.accept_device_confirmation()
            _out(f"Device confirmation: {accepted}")
        if username is None:
            _out("Connecting anonymously...")
        else:
            _out(f"Logging '{username}' into Steam3...")
        self.connected = True
        return True

    def shutdown(self) -> None:
        self.connected = False

    def download_app(self, request: AppDownloadRequest) -> None:
        self._run_case(f"app {request.app_id} branch {request.branch}")
        depots = [item.depot_id for item in request.depot_manifests] or [request.app_id + 1]
        for depot_id in depots:
            _out(f"Downloading depot {depot_id}")
        _out(f"max downloads: {request.options.max_downloads}")
        _out("Total downloaded: 0 bytes (0 bytes uncompressed) from 1 depots")

    def download_published_file(self, request: PublishedFileDownloadRequest) -> None:
        self._run_case(f"published file {request.published_file_id} of app {request.app_id}")
        _out("Total downloaded: 0 bytes (0 bytes uncompressed) from 1 depots")

    def download_ugc(self, request: UgcDownloadRequest) -> None:
        self._run_case(f"ugc {request.ugc_id} of app {request.app_id}")
        _out("Total downloaded: 0 bytes (0 bytes uncompressed) from 1 depots")

    def get_build_id(self, query: BuildIdQuery) -> int:
        self._run_case(f"build id of app {query.app_id} branch {query.branch}")
        try:
            return KNOWN_BUILD_IDS[(query.app_id, query.branch)]
        except KeyError:
            raise DownloadEngineError(
                f"App {query.app_id} branch {query.branch!r} is not available.",
            ) from None

    def _run_case(self, subject: str) -> None:  # noqa: C901
        _out(f"Processing {subject}")
        if self.case == "download_error":
            raise DownloadEngineError(f"Unable to download {subject}: manifest unavailable")
        if self.case == "crash":
            raise RuntimeError(f"engine crashed while processing {subject}")
        if self.case == "stderr_marker":
            _err(encode_control_message(ControlVerb.REQUEST_DEVICE_CODE, False))
        elif self.case == "unknown_verb":
            _out(DELIMITER.join([MAGIC_MARKER, "Frobnicate", "x"]))
        elif self.case == "malformed_control":
            _out(DELIMITER.join([MAGIC_MARKER, ControlVerb.REQUEST_DEVICE_CODE.value, "maybe"]))
        elif self.case == "many_lines":
            for index in range(200):
                _out(f"out {index}")
                _err(f"err {index}")
        elif self.case == "hang":
            _out(f"Hanging worker {os.getpid()}")
            _sleep_forever()
        elif self.case == "spawn_child":
            child = subprocess.Popen(  # noqa: S603
                [sys.executable, "-c", "import time; time.sleep(600)"],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            _out(f"Spawned child {child.pid}")
            _sleep_forever()


def _out(line: str) -> None:
    print(line, flush=True)


def _err(line: str) -> None:
    print(line, file=sys.stderr, flush=True)


def _sleep_forever() -> None:
    while True:
        time.sleep(1)
