"""Concurrent line draining of a worker's stdout and stderr.

Two consumption modes share one classification path:

- ``lines()`` keeps at most one pending read per stream and yields whichever
  line arrives first, so neither stream can starve the other.
- ``pump()`` runs one reader per stream and hands lines to callbacks.

Control messages found on stdout are dispatched and never surfaced. A stream
ends at end of file, or once the worker has exited and a single read stayed
idle for the whole drain grace period. Time spent in handlers or in the
consumer of ``lines()`` never counts against that grace.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable

from depot_runner.bridge import ControlDispatcher
from depot_runner.models import OutputLine, StreamOrigin
from depot_runner.supervisor import WorkerHandle

logger = logging.getLogger(__name__)

LineHandler = Callable[[str], Awaitable[None] | None]

_NEWLINE = b"\n"


class StreamMultiplexer:
    """Drain both worker streams and route each line."""

    def __init__(
        self,
        handle: WorkerHandle,
        dispatcher: ControlDispatcher,
        *,
        drain_grace_seconds: float = 2.0,
        diagnostic_tail_lines: int = 20,
    ) -> None:
        self.handle = handle
        self.dispatcher = dispatcher
        self.drain_grace_seconds = drain_grace_seconds
        self._stderr_tail: deque[str] = deque(maxlen=diagnostic_tail_lines)

    @property
    def diagnostics(self) -> tuple[str, ...]:
        """Most recent stderr lines, oldest first."""

        return tuple(self._stderr_tail)

    async def lines(self) -> AsyncIterator[OutputLine]:
        """Yield non-control lines from both streams as they arrive."""

        readers = {
            StreamOrigin.STDOUT: LineReader(self.handle.stdout),
            StreamOrigin.STDERR: LineReader(self.handle.stderr),
        }
        open_streams = [StreamOrigin.STDOUT, StreamOrigin.STDERR]
        pending: dict[asyncio.Task[str | None], StreamOrigin] = {}
        exit_watch = asyncio.create_task(self.handle.wait_for_exit())
        try:
            while open_streams:
                armed = set(pending.values())
                for origin in open_streams:
                    if origin not in armed:
                        read = self._next_line(origin, readers[origin], exit_watch)
                        pending[asyncio.create_task(read)] = origin

                done, _ = await asyncio.wait(set(pending), return_when=asyncio.FIRST_COMPLETED)
                # Stable order when both streams completed in the same wakeup.
                for task in [task for task in pending if task in done]:
                    origin = pending.pop(task)
                    content = task.result()
                    if content is None:
                        open_streams.remove(origin)
                        continue
                    line = OutputLine(content=content, origin=origin)
                    if not await self._consume_control(line):
                        yield line
        finally:
            await _cancel_all([*pending, exit_watch])

    async def pump(
        self,
        on_output: LineHandler | None = None,
        on_error: LineHandler | None = None,
    ) -> None:
        """Feed lines to callbacks until both streams are drained."""

        exit_watch = asyncio.create_task(self.handle.wait_for_exit())
        streams = [
            (StreamOrigin.STDOUT, self.handle.stdout, on_output),
            (StreamOrigin.STDERR, self.handle.stderr, on_error),
        ]
        pumps = [
            asyncio.create_task(self._pump(origin, LineReader(stream), handler, exit_watch))
            for origin, stream, handler in streams
        ]
        try:
            # Propagates handler and authenticator errors to the caller.
            await asyncio.gather(*pumps)
        finally:
            await _cancel_all([*pumps, exit_watch])

    async def _pump(
        self,
        origin: StreamOrigin,
        reader: LineReader,
        handler: LineHandler | None,
        exit_watch: asyncio.Task,
    ) -> None:
        while (content := await self._next_line(origin, reader, exit_watch)) is not None:
            line = OutputLine(content=content, origin=origin)
            if await self._consume_control(line) or handler is None:
                continue
            result = handler(line.content)
            if inspect.isawaitable(result):
                await result

    async def _consume_control(self, line: OutputLine) -> bool:
        if line.is_error:
            self._stderr_tail.append(line.content)
        message = self.dispatcher.classify(line)
        if message is None:
            return False
        await self.dispatcher.dispatch(message)
        return True

    async def _next_line(
        self,
        origin: StreamOrigin,
        reader: LineReader,
        exit_watch: asyncio.Task,
    ) -> str | None:
        """Read the next line; ``None`` at end of file or when idle past the grace after exit."""

        read = asyncio.ensure_future(reader.readline())
        try:
            while not exit_watch.done():
                await asyncio.wait({read, exit_watch}, return_when=asyncio.FIRST_COMPLETED)
                if read.done():
                    return read.result()

            # The grace window opens with this read, so earlier handler time is not counted.
            done, _ = await asyncio.wait({read}, timeout=self.drain_grace_seconds)
            if done:
                return read.result()
            logger.warning(
                "Worker %d exited but its %s stayed open and idle for %.1fs; stopped draining",
                self.handle.pid,
                origin.value,
                self.drain_grace_seconds,
            )
            return None
        finally:
            if not read.done():
                await _cancel_all([read])


class LineReader:
    """Decoded line reader that drops lines longer than the stream limit whole."""

    def __init__(self, stream: asyncio.StreamReader) -> None:
        self.stream = stream
        self._discarding = False

    async def readline(self) -> str | None:
        """Return one line without its terminator; ``None`` at end of file."""

        while True:
            try:
                raw = await self.stream.readuntil(_NEWLINE)
            except asyncio.LimitOverrunError as error:
                # Nothing was consumed yet: drop the buffered part and skip the rest
                # of the line up to and including its newline.
                await self.stream.readexactly(error.consumed)
                if not self._discarding:
                    logger.warning("Discarded worker output line exceeding the stream limit")
                self._discarding = True
                continue
            except asyncio.IncompleteReadError as error:
                raw = error.partial
                if self._discarding or not raw:
                    return None
            else:
                if self._discarding:
                    self._discarding = False
                    continue
            return raw.decode("utf-8", errors="replace").rstrip("\r\n")


async def _cancel_all(tasks: list[asyncio.Future]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
