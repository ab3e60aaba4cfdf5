"""Download engine interface invoked inside the worker process."""

from __future__ import annotations

from typing import Protocol

from depot_runner.auth import EngineAuthenticator
from depot_runner.models import (
    AppDownloadRequest,
    BuildIdQuery,
    PublishedFileDownloadRequest,
    UgcDownloadRequest,
)


class DownloadEngineError(RuntimeError):
    """Expected download failure reported by an engine."""


class DownloadEngine(Protocol):
    """Protocol implemented by content download engines.

    Engines run in the worker process and may write human-readable progress to
    stdout and diagnostics to stderr. They must not write lines starting with
    the control-message marker.
    """

    def connect(
        self,
        username: str | None,
        password: str | None,
        authenticator: EngineAuthenticator,
    ) -> bool:
        """Log in (anonymously when username is None); return False on failure."""

    def shutdown(self) -> None:
        """Release the session opened by ``connect``."""

    def download_app(self, request: AppDownloadRequest) -> None:
        """Download the app depots selected by ``request``."""

    def download_published_file(self, request: PublishedFileDownloadRequest) -> None:
        """Download one published workshop file."""

    def download_ugc(self, request: UgcDownloadRequest) -> None:
        """Download one UGC item."""

    def get_build_id(self, query: BuildIdQuery) -> int:
        """Return the current build id of the app branch."""
