"""Domain models for worker requests and supervised execution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

DEFAULT_BRANCH = "public"


class RequestKind(str, Enum):
    """Wire tag identifying a request variant."""

    APP = "app"
    PUBLISHED_FILE = "published_file"
    UGC = "ugc"
    BUILD_ID = "build_id"


class TargetOs(str, Enum):
    """Operating systems a depot can be selected for."""

    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"


class TargetArch(str, Enum):
    """Architectures a depot can be selected for."""

    X86 = "32"
    X64 = "64"


class StreamOrigin(str, Enum):
    """Worker stream a line was read from."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True, slots=True)
class DownloadOptions:
    """Options shared by every download request."""

    cell_id: int = 0
    download_all_platforms: bool = False
    download_all_archs: bool = False
    download_all_languages: bool = False
    download_manifest_only: bool = False
    install_directory: str | None = None
    files_to_download: tuple[str, ...] = ()
    files_to_download_regex: tuple[str, ...] = ()
    beta_password: str | None = None
    verify_all: bool = False
    max_downloads: int = 0
    # None disables login persistence and forces full authentication every time.
    account_settings_file_name: str | None = None
    username: str | None = None
    password: str | None = None
    remember_password: bool = False
    # Allows multiple concurrent connections for one account.
    login_id: int | None = None
    use_qr_code: bool = False

    @property
    def using_file_list(self) -> bool:
        return bool(self.files_to_download or self.files_to_download_regex)


@dataclass(frozen=True, slots=True)
class DepotManifest:
    """Depot selector with an optional pinned manifest."""

    depot_id: int
    manifest_id: int | None = None


@dataclass(frozen=True, slots=True)
class AppDownloadRequest:
    """Download an app, optionally restricted to specific depots."""

    app_id: int
    depot_manifests: tuple[DepotManifest, ...] = ()
    branch: str = DEFAULT_BRANCH
    os: TargetOs | None = None
    arch: TargetArch | None = None
    language: str | None = None
    low_violence: bool = False
    options: DownloadOptions = field(default_factory=DownloadOptions)

    kind = RequestKind.APP


@dataclass(frozen=True, slots=True)
class PublishedFileDownloadRequest:
    """Download a workshop published file."""

    app_id: int
    published_file_id: int
    options: DownloadOptions = field(default_factory=DownloadOptions)

    kind = RequestKind.PUBLISHED_FILE


@dataclass(frozen=True, slots=True)
class UgcDownloadRequest:
    """Download a user-generated content item."""

    app_id: int
    ugc_id: int
    options: DownloadOptions = field(default_factory=DownloadOptions)

    kind = RequestKind.UGC


@dataclass(frozen=True, slots=True)
class BuildIdQuery:
    """Query the current build id of an app branch."""

    app_id: int
    branch: str = DEFAULT_BRANCH

    kind = RequestKind.BUILD_ID


DownloadRequest = AppDownloadRequest | PublishedFileDownloadRequest | UgcDownloadRequest
WorkerRequest = DownloadRequest | BuildIdQuery


@dataclass(frozen=True, slots=True)
class OutputLine:
    """One line read from a worker stream."""

    content: str
    origin: StreamOrigin

    @property
    def is_error(self) -> bool:
        return self.origin is StreamOrigin.STDERR


@dataclass(frozen=True, slots=True)
class TerminationResult:
    """Outcome of one worker run, created once after the worker exits."""

    exit_code: int
    return_value: object | None = None
    has_return_value: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0
