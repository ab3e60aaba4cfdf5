"""JSON wire format for requests crossing the process boundary and return values."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import asdict
from enum import Enum
from typing import Any, TypeVar

from depot_runner.errors import EncodeError, ValueDecodeError
from depot_runner.models import (
    DEFAULT_BRANCH,
    AppDownloadRequest,
    BuildIdQuery,
    DepotManifest,
    DownloadOptions,
    PublishedFileDownloadRequest,
    RequestKind,
    TargetArch,
    TargetOs,
    UgcDownloadRequest,
    WorkerRequest,
)

T = TypeVar("T")

_REQUEST_TYPES: dict[RequestKind, type] = {
    RequestKind.APP: AppDownloadRequest,
    RequestKind.PUBLISHED_FILE: PublishedFileDownloadRequest,
    RequestKind.UGC: UgcDownloadRequest,
    RequestKind.BUILD_ID: BuildIdQuery,
}
_SCALAR_TYPES = (bool, int, float, str)


def serialize(value: object) -> str:
    """Encode a request or a scalar return value as compact ASCII JSON."""

    if type(value) in _REQUEST_TYPES.values():
        payload: Any = {"kind": value.kind.value, "payload": _plain(asdict(value))}
    elif value is None or isinstance(value, _SCALAR_TYPES):
        payload = value
    else:
        raise EncodeError(f"Unsupported value type for serialization: {type(value).__name__}")
    return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), sort_keys=True)


def deserialize(text: str, expected_type: type[T]) -> T:
    """Decode ``text`` produced by ``serialize`` into ``expected_type``."""

    raw = _load(text)
    if expected_type in _REQUEST_TYPES.values():
        request = _request_from_envelope(raw)
        if type(request) is not expected_type:
            raise ValueDecodeError(
                f"Expected {expected_type.__name__}, got {type(request).__name__}.",
            )
        return request  # type: ignore[return-value]
    if expected_type in _SCALAR_TYPES:
        return _scalar(raw, expected_type)  # type: ignore[return-value]
    raise ValueDecodeError(f"Unsupported target type: {expected_type!r}")


def deserialize_request(text: str) -> WorkerRequest:
    """Decode any request variant, dispatching on its wire tag."""

    return _request_from_envelope(_load(text))


def _load(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as error:
        raise ValueDecodeError(f"Malformed serialized value: {error}") from error


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_plain(item) for item in value]
    return value


def _scalar(raw: Any, expected_type: type) -> Any:
    # bool is a subclass of int; an int target must not accept true/false.
    if expected_type is int and (isinstance(raw, bool) or not isinstance(raw, int)):
        raise ValueDecodeError(f"Expected integer, got {raw!r}")
    if expected_type is float and (isinstance(raw, bool) or not isinstance(raw, int | float)):
        raise ValueDecodeError(f"Expected number, got {raw!r}")
    if expected_type in (bool, str) and not isinstance(raw, expected_type):
        raise ValueDecodeError(f"Expected {expected_type.__name__}, got {raw!r}")
    return expected_type(raw)


def _request_from_envelope(raw: Any) -> WorkerRequest:
    if not isinstance(raw, dict):
        raise ValueDecodeError("Serialized request must be a JSON object.")
    try:
        kind = RequestKind(raw.get("kind"))
    except ValueError as error:
        raise ValueDecodeError(f"Unknown request kind: {raw.get('kind')!r}") from error
    payload = raw.get("payload")
    if not isinstance(payload, dict):
        raise ValueDecodeError("Serialized request payload must be a JSON object.")
    return _REQUEST_PARSERS[kind](payload)


def _parse_app(raw: dict[str, Any]) -> AppDownloadRequest:
    manifests_raw = _get_list(raw, "depot_manifests")
    manifests = []
    for item in manifests_raw:
        if not isinstance(item, dict):
            raise ValueDecodeError("depot_manifests entries must be objects.")
        manifests.append(
            DepotManifest(
                depot_id=_get_uint(item, "depot_id"),
                manifest_id=_get_optional_uint(item, "manifest_id"),
            ),
        )
    return AppDownloadRequest(
        app_id=_get_uint(raw, "app_id"),
        depot_manifests=tuple(manifests),
        branch=_get_str(raw, "branch", default=DEFAULT_BRANCH),
        os=_get_enum(raw, "os", TargetOs),
        arch=_get_enum(raw, "arch", TargetArch),
        language=_get_optional_str(raw, "language"),
        low_violence=_get_bool(raw, "low_violence"),
        options=_parse_options(raw.get("options", {})),
    )


def _parse_published_file(raw: dict[str, Any]) -> PublishedFileDownloadRequest:
    return PublishedFileDownloadRequest(
        app_id=_get_uint(raw, "app_id"),
        published_file_id=_get_uint(raw, "published_file_id"),
        options=_parse_options(raw.get("options", {})),
    )


def _parse_ugc(raw: dict[str, Any]) -> UgcDownloadRequest:
    return UgcDownloadRequest(
        app_id=_get_uint(raw, "app_id"),
        ugc_id=_get_uint(raw, "ugc_id"),
        options=_parse_options(raw.get("options", {})),
    )


def _parse_build_id(raw: dict[str, Any]) -> BuildIdQuery:
    return BuildIdQuery(
        app_id=_get_uint(raw, "app_id"),
        branch=_get_str(raw, "branch", default=DEFAULT_BRANCH),
    )


def _parse_options(raw: Any) -> DownloadOptions:
    if not isinstance(raw, dict):
        raise ValueDecodeError("options must be an object.")
    max_downloads = raw.get("max_downloads", 0)
    if isinstance(max_downloads, bool) or not isinstance(max_downloads, int):
        raise ValueDecodeError("options.max_downloads must be an integer.")
    cell_id = raw.get("cell_id", 0)
    if isinstance(cell_id, bool) or not isinstance(cell_id, int):
        raise ValueDecodeError("options.cell_id must be an integer.")
    return DownloadOptions(
        cell_id=cell_id,
        download_all_platforms=_get_bool(raw, "download_all_platforms"),
        download_all_archs=_get_bool(raw, "download_all_archs"),
        download_all_languages=_get_bool(raw, "download_all_languages"),
        download_manifest_only=_get_bool(raw, "download_manifest_only"),
        install_directory=_get_optional_str(raw, "install_directory"),
        files_to_download=_get_str_tuple(raw, "files_to_download"),
        files_to_download_regex=_get_str_tuple(raw, "files_to_download_regex"),
        beta_password=_get_optional_str(raw, "beta_password"),
        verify_all=_get_bool(raw, "verify_all"),
        max_downloads=max_downloads,
        account_settings_file_name=_get_optional_str(raw, "account_settings_file_name"),
        username=_get_optional_str(raw, "username"),
        password=_get_optional_str(raw, "password"),
        remember_password=_get_bool(raw, "remember_password"),
        login_id=_get_optional_uint(raw, "login_id"),
        use_qr_code=_get_bool(raw, "use_qr_code"),
    )


_REQUEST_PARSERS: dict[RequestKind, Callable[[dict[str, Any]], WorkerRequest]] = {
    RequestKind.APP: _parse_app,
    RequestKind.PUBLISHED_FILE: _parse_published_file,
    RequestKind.UGC: _parse_ugc,
    RequestKind.BUILD_ID: _parse_build_id,
}


def _get_uint(raw: dict[str, Any], key: str) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueDecodeError(f"{key} must be a non-negative integer, got {value!r}")
    return value


def _get_optional_uint(raw: dict[str, Any], key: str) -> int | None:
    if raw.get(key) is None:
        return None
    return _get_uint(raw, key)


def _get_bool(raw: dict[str, Any], key: str) -> bool:
    value = raw.get(key, False)
    if not isinstance(value, bool):
        raise ValueDecodeError(f"{key} must be a boolean, got {value!r}")
    return value


def _get_str(raw: dict[str, Any], key: str, *, default: str) -> str:
    value = raw.get(key, default)
    if not isinstance(value, str):
        raise ValueDecodeError(f"{key} must be a string, got {value!r}")
    return value


def _get_optional_str(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueDecodeError(f"{key} must be a string or null, got {value!r}")
    return value


def _get_list(raw: dict[str, Any], key: str) -> list[Any]:
    value = raw.get(key, [])
    if not isinstance(value, list):
        raise ValueDecodeError(f"{key} must be an array.")
    return value


def _get_str_tuple(raw: dict[str, Any], key: str) -> tuple[str, ...]:
    values = _get_list(raw, key)
    if not all(isinstance(item, str) for item in values):
        raise ValueDecodeError(f"{key} must contain only strings.")
    return tuple(values)


def _get_enum(raw: dict[str, Any], key: str, enum_type: type[Enum]) -> Any:
    value = raw.get(key)
    if value is None:
        return None
    try:
        return enum_type(value)
    except ValueError as error:
        raise ValueDecodeError(f"Invalid {key}: {value!r}") from error
