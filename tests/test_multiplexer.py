from __future__ import annotations

import asyncio
import sys
import textwrap
from contextlib import aclosing

import allure
import psutil
import pytest

from depot_runner.bridge import AuthenticationBridge, ControlDispatcher
from depot_runner.multiplexer import StreamMultiplexer
from depot_runner.supervisor import WorkerHandle

pytestmark = [
    allure.epic("Worker Supervision"),
    allure.feature("Stream Multiplexing"),
]

_CONTROL_SCRIPT = textwrap.dedent(
    """
    import sys
    print("a", flush=True)
    print("$DDSPMM*\\x00SetReturnValue\\x005", flush=True)
    print("e", file=sys.stderr, flush=True)
    print("b", flush=True)
    """,
)


async def _start(script: str, *, limit: int = 1 << 16) -> WorkerHandle:
    process = await asyncio.create_subprocess_exec(
        sys.executable,
        "-c",
        script,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        limit=limit,
    )
    return WorkerHandle(process=process, poll_interval=0.01)


def _multiplexer(handle: WorkerHandle, **kwargs) -> StreamMultiplexer:
    bridge = AuthenticationBridge(None, handle.stdin, is_alive=lambda: handle.is_alive)
    dispatcher = ControlDispatcher(bridge, return_type=kwargs.pop("return_type", None))
    return StreamMultiplexer(handle, dispatcher, **kwargs)


async def test_lines_hide_control_messages_and_keep_stream_order() -> None:
    handle = await _start(_CONTROL_SCRIPT)
    multiplexer = _multiplexer(handle, return_type=int)

    lines = [line async for line in multiplexer.lines()]
    await handle.process.wait()

    assert [line.content for line in lines if not line.is_error] == ["a", "b"]
    assert [line.content for line in lines if line.is_error] == ["e"]
    assert multiplexer.dispatcher.slot.value == 5
    assert multiplexer.diagnostics == ("e",)


async def test_pump_feeds_sync_and_async_handlers() -> None:
    handle = await _start(_CONTROL_SCRIPT)
    multiplexer = _multiplexer(handle)
    output: list[str] = []
    errors: list[str] = []

    async def on_error(line: str) -> None:
        errors.append(line)

    await multiplexer.pump(output.append, on_error)
    await handle.process.wait()

    assert output == ["a", "b"]
    assert errors == ["e"]
    assert not multiplexer.dispatcher.slot.has_value


async def test_pump_propagates_handler_errors() -> None:
    handle = await _start(_CONTROL_SCRIPT)
    multiplexer = _multiplexer(handle)

    def on_output(line: str) -> None:
        raise RuntimeError(f"handler rejected {line}")

    with pytest.raises(RuntimeError, match="handler rejected a"):
        await multiplexer.pump(on_output, None)
    await handle.process.wait()


async def test_interleaved_streams_are_both_drained() -> None:
    script = textwrap.dedent(
        """
        import sys
        for index in range(500):
            print(f"out {index}", flush=True)
            print(f"err {index}", file=sys.stderr, flush=True)
        """,
    )
    handle = await _start(script)

    lines = [line async for line in _multiplexer(handle).lines()]
    await handle.process.wait()

    assert [line.content for line in lines if not line.is_error] == [
        f"out {index}" for index in range(500)
    ]
    assert [line.content for line in lines if line.is_error] == [
        f"err {index}" for index in range(500)
    ]


@pytest.mark.parametrize(
    "script",
    [
        'print("x" * 5000, flush=True)\nprint("short", flush=True)',
        'import sys\nsys.stdout.write("A" * 300 + "TAIL\\nshort\\n")\nsys.stdout.flush()',
        'import sys, time\nsys.stdout.write("A" * 300)\nsys.stdout.flush()\ntime.sleep(0.2)\n'
        'print("TAIL", flush=True)\nprint("short", flush=True)',
    ],
    ids=["far-past-limit", "tail-in-same-chunk", "tail-arrives-later"],
)
async def test_overlong_lines_are_discarded_through_their_newline(script: str) -> None:
    handle = await _start(script, limit=256)

    lines = [line.content async for line in _multiplexer(handle).lines()]
    await handle.process.wait()

    assert lines == ["short"]


async def test_pump_delivers_every_line_to_a_slow_handler_after_exit() -> None:
    script = "for index in range(10):\n    print(f'line {index}', flush=True)"
    handle = await _start(script)
    multiplexer = _multiplexer(handle, drain_grace_seconds=1.0)
    output: list[str] = []

    async def on_output(line: str) -> None:
        await asyncio.sleep(0.3)
        output.append(line)

    await multiplexer.pump(on_output, None)
    await handle.process.wait()

    assert output == [f"line {index}" for index in range(10)]


async def test_lines_drain_everything_behind_a_slow_consumer() -> None:
    script = "for index in range(6):\n    print(f'line {index}', flush=True)"
    handle = await _start(script)
    lines: list[str] = []

    async with aclosing(_multiplexer(handle, drain_grace_seconds=0.5).lines()) as stream:
        async for line in stream:
            await asyncio.sleep(0.3)
            lines.append(line.content)
    await handle.process.wait()

    assert lines == [f"line {index}" for index in range(6)]


async def test_lines_stop_after_drain_grace_when_grandchild_holds_pipes() -> None:
    script = textwrap.dedent(
        """
        import subprocess, sys
        child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        print(child.pid, flush=True)
        """,
    )
    handle = await _start(script)
    lines = []
    try:
        async with aclosing(_multiplexer(handle, drain_grace_seconds=0.3).lines()) as stream:
            lines = [line.content async for line in stream]
    finally:
        if lines:
            try:
                psutil.Process(int(lines[0])).kill()
            except psutil.NoSuchProcess:
                pass
        await handle.process.wait()

    assert handle.exit_code == 0
    assert len(lines) == 1
