"""Worker process spawn, liveness, termination and exit-code mapping."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from depot_runner.config import (
    DEFAULT_MAX_DOWNLOADS_ENV,
    ENGINE_ENV,
    PARENT_POLL_ENV,
    RunnerSettings,
)
from depot_runner.errors import WorkerSpawnError, worker_failure_for_exit_code
from depot_runner.marshalling import serialize
from depot_runner.models import TerminationResult, WorkerRequest
from depot_runner.process_tree import terminate_process_tree

logger = logging.getLogger(__name__)

WORKER_MODULE = "depot_runner.worker"


@dataclass(slots=True)
class WorkerHandle:
    """One spawned worker; owned by the supervisor for a single request."""

    process: asyncio.subprocess.Process
    poll_interval: float = 0.05

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stdin(self) -> asyncio.StreamWriter:
        if self.process.stdin is None:
            raise RuntimeError("Worker stdin is not redirected.")
        return self.process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader:
        if self.process.stdout is None:
            raise RuntimeError("Worker stdout is not redirected.")
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        if self.process.stderr is None:
            raise RuntimeError("Worker stderr is not redirected.")
        return self.process.stderr

    @property
    def is_alive(self) -> bool:
        return self.process.returncode is None

    @property
    def exit_code(self) -> int:
        """Exit status; only available once the worker has exited."""

        returncode = self.process.returncode
        if returncode is None:
            raise RuntimeError(f"Worker {self.pid} has not exited yet.")
        return returncode

    async def wait_for_exit(self) -> None:
        # Process.wait() also waits for every pipe to close, which a lingering
        # grandchild can delay indefinitely; the return code is set on exit.
        while self.process.returncode is None:
            await asyncio.sleep(self.poll_interval)

    def kill(self) -> None:
        """Forcefully terminate the worker and its descendants; idempotent."""

        if self.is_alive:
            terminate_process_tree(self.pid)

    def close_stdin(self) -> None:
        if self.process.stdin is not None and not self.process.stdin.is_closing():
            self.process.stdin.close()


class ProcessSupervisor:
    """Spawn workers and guarantee they never outlive the request."""

    def __init__(self, settings: RunnerSettings) -> None:
        self.settings = settings

    def build_command(self, request: WorkerRequest) -> list[str]:
        return [
            self.settings.python_executable,
            "-m",
            WORKER_MODULE,
            serialize(request),
            str(os.getpid()),
        ]

    def build_env(self) -> dict[str, str]:
        env = os.environ.copy() if self.settings.inherit_environment else {}
        if self.settings.engine_factory:
            env[ENGINE_ENV] = self.settings.engine_factory
        env[PARENT_POLL_ENV] = str(self.settings.parent_poll_seconds)
        env[DEFAULT_MAX_DOWNLOADS_ENV] = str(self.settings.default_max_downloads)
        env["PYTHONUNBUFFERED"] = "1"
        env["PYTHONIOENCODING"] = "utf-8"
        return env

    @asynccontextmanager
    async def spawn(self, request: WorkerRequest) -> AsyncIterator[WorkerHandle]:
        """Start a worker for ``request``; kill it on every exit path still running."""

        command = self.build_command(request)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_env(),
                limit=self.settings.stream_limit_bytes,
            )
        except OSError as error:
            raise WorkerSpawnError(f"Worker failed to start: {error}") from error

        handle = WorkerHandle(process=process, poll_interval=self.settings.exit_poll_seconds)
        logger.debug("Spawned worker %d for %s request", handle.pid, request.kind.value)
        try:
            yield handle
        finally:
            await self._shutdown(handle)

    async def _shutdown(self, handle: WorkerHandle) -> None:
        if handle.is_alive:
            logger.info("Killing worker %d", handle.pid)
            handle.kill()
        handle.close_stdin()
        try:
            await asyncio.wait_for(handle.process.wait(), timeout=self.settings.kill_grace_seconds)
        except TimeoutError:
            logger.warning(
                "Worker %d did not release its pipes within %.1fs",
                handle.pid,
                self.settings.kill_grace_seconds,
            )

    def termination_result(
        self,
        handle: WorkerHandle,
        *,
        return_value: object | None = None,
        has_return_value: bool = False,
        diagnostics: tuple[str, ...] = (),
    ) -> TerminationResult:
        """Read the exit code of an exited worker; raise ``WorkerFailure`` if non-zero."""

        exit_code = handle.exit_code
        if exit_code != 0:
            logger.info("Worker %d exited with code %d", handle.pid, exit_code)
            raise worker_failure_for_exit_code(exit_code, diagnostics=diagnostics)
        return TerminationResult(
            exit_code=exit_code,
            return_value=return_value,
            has_return_value=has_return_value,
        )
