"""Download engine interface and bundled engines."""

from depot_runner.engine.base import DownloadEngine, DownloadEngineError
from depot_runner.engine.loader import EngineLoadError, load_engine

__all__ = [
    "DownloadEngine",
    "DownloadEngineError",
    "EngineLoadError",
    "load_engine",
]
