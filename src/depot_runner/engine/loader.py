"""Resolve a download engine from a ``module:attribute`` factory path."""

from __future__ import annotations

import importlib

from depot_runner.engine.base import DownloadEngine


class EngineLoadError(RuntimeError):
    """Configured engine factory could not be imported or called."""


def load_engine(factory_path: str) -> DownloadEngine:
    """Import ``package.module:factory`` and call it without arguments."""

    module_name, sep, attribute = factory_path.strip().partition(":")
    if not sep or not module_name or not attribute:
        raise EngineLoadError(
            f"Engine factory must look like 'package.module:factory', got {factory_path!r}.",
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as error:
        raise EngineLoadError(f"Cannot import engine module {module_name!r}: {error}") from error

    factory = module
    for part in attribute.split("."):
        try:
            factory = getattr(factory, part)
        except AttributeError as error:
            raise EngineLoadError(
                f"Engine factory {attribute!r} not found in {module_name!r}.",
            ) from error
    if not callable(factory):
        raise EngineLoadError(f"Engine factory {factory_path!r} is not callable.")
    return factory()
