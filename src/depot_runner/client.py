"""Public API: run download requests in supervised worker processes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing

from depot_runner.auth import Authenticator
from depot_runner.bridge import AuthenticationBridge, ControlDispatcher
from depot_runner.config import RunnerSettings
from depot_runner.errors import ProtocolError
from depot_runner.models import (
    AppDownloadRequest,
    BuildIdQuery,
    PublishedFileDownloadRequest,
    UgcDownloadRequest,
    WorkerRequest,
)
from depot_runner.multiplexer import LineHandler, StreamMultiplexer
from depot_runner.supervisor import ProcessSupervisor, WorkerHandle


class DepotRunner:
    """Run each request in its own worker process.

    Every operation comes in two shapes with identical semantics: an awaitable
    that resolves once the worker exits, and an async iterator of
    ``(message, is_error)`` pairs. A non-zero worker exit raises a
    ``WorkerFailure`` subclass in both shapes; cancelling the awaiting task, or
    closing the iterator early, kills the worker and its descendants.
    """

    def __init__(self, settings: RunnerSettings | None = None) -> None:
        self.settings = settings or RunnerSettings.from_env()
        self.settings.validate()
        self.supervisor = ProcessSupervisor(self.settings)

    async def download_app(
        self,
        request: AppDownloadRequest,
        *,
        on_output: LineHandler | None = None,
        on_error: LineHandler | None = None,
        authenticator: Authenticator | None = None,
    ) -> None:
        _require(request, AppDownloadRequest)
        await self.execute(
            request,
            on_output=on_output,
            on_error=on_error,
            authenticator=authenticator,
        )

    async def download_published_file(
        self,
        request: PublishedFileDownloadRequest,
        *,
        on_output: LineHandler | None = None,
        on_error: LineHandler | None = None,
        authenticator: Authenticator | None = None,
    ) -> None:
        _require(request, PublishedFileDownloadRequest)
        await self.execute(
            request,
            on_output=on_output,
            on_error=on_error,
            authenticator=authenticator,
        )

    async def download_ugc(
        self,
        request: UgcDownloadRequest,
        *,
        on_output: LineHandler | None = None,
        on_error: LineHandler | None = None,
        authenticator: Authenticator | None = None,
    ) -> None:
        _require(request, UgcDownloadRequest)
        await self.execute(
            request,
            on_output=on_output,
            on_error=on_error,
            authenticator=authenticator,
        )

    async def get_build_id(
        self,
        query: BuildIdQuery,
        *,
        on_output: LineHandler | None = None,
        on_error: LineHandler | None = None,
    ) -> int:
        """Return the current build id of an app branch."""

        _require(query, BuildIdQuery)
        build_id = await self.execute(
            query,
            return_type=int,
            on_output=on_output,
            on_error=on_error,
        )
        if build_id is None:
            raise ProtocolError("Worker exited successfully without reporting a build id.")
        return build_id

    def iter_app_download(
        self,
        request: AppDownloadRequest,
        *,
        authenticator: Authenticator | None = None,
    ) -> AsyncIterator[tuple[str, bool]]:
        _require(request, AppDownloadRequest)
        return self.iter_execute(request, authenticator=authenticator)

    def iter_published_file_download(
        self,
        request: PublishedFileDownloadRequest,
        *,
        authenticator: Authenticator | None = None,
    ) -> AsyncIterator[tuple[str, bool]]:
        _require(request, PublishedFileDownloadRequest)
        return self.iter_execute(request, authenticator=authenticator)

    def iter_ugc_download(
        self,
        request: UgcDownloadRequest,
        *,
        authenticator: Authenticator | None = None,
    ) -> AsyncIterator[tuple[str, bool]]:
        _require(request, UgcDownloadRequest)
        return self.iter_execute(request, authenticator=authenticator)

    async def execute(
        self,
        request: WorkerRequest,
        *,
        return_type: type | None = None,
        on_output: LineHandler | None = None,
        on_error: LineHandler | None = None,
        authenticator: Authenticator | None = None,
    ) -> object | None:
        """Run ``request`` and return the worker's reported value, if any."""

        async with self.supervisor.spawn(request) as handle:
            dispatcher = self._dispatcher(handle, authenticator, return_type)
            multiplexer = self._multiplexer(handle, dispatcher)
            await multiplexer.pump(on_output, on_error)
            await handle.wait_for_exit()

        result = self.supervisor.termination_result(
            handle,
            return_value=dispatcher.slot.value,
            has_return_value=dispatcher.slot.has_value,
            diagnostics=multiplexer.diagnostics,
        )
        return result.return_value

    async def iter_execute(
        self,
        request: WorkerRequest,
        *,
        authenticator: Authenticator | None = None,
    ) -> AsyncIterator[tuple[str, bool]]:
        """Yield ``(message, is_error)`` for every non-control line of the worker."""

        async with self.supervisor.spawn(request) as handle:
            dispatcher = self._dispatcher(handle, authenticator, None)
            multiplexer = self._multiplexer(handle, dispatcher)
            async with aclosing(multiplexer.lines()) as lines:
                async for line in lines:
                    yield line.content, line.is_error
            await handle.wait_for_exit()

        self.supervisor.termination_result(handle, diagnostics=multiplexer.diagnostics)

    def _dispatcher(
        self,
        handle: WorkerHandle,
        authenticator: Authenticator | None,
        return_type: type | None,
    ) -> ControlDispatcher:
        bridge = AuthenticationBridge(
            authenticator,
            handle.stdin,
            is_alive=lambda: handle.is_alive,
        )
        return ControlDispatcher(bridge, return_type=return_type)

    def _multiplexer(
        self,
        handle: WorkerHandle,
        dispatcher: ControlDispatcher,
    ) -> StreamMultiplexer:
        return StreamMultiplexer(
            handle,
            dispatcher,
            drain_grace_seconds=self.settings.drain_grace_seconds,
            diagnostic_tail_lines=self.settings.diagnostic_tail_lines,
        )


def _require(request: object, expected: type) -> None:
    if not isinstance(request, expected):
        raise TypeError(f"Expected {expected.__name__}, got {type(request).__name__}.")
