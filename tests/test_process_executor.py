"""Tests for ProcessExecutor using real child processes."""
from __future__ import annotations

import asyncio
import sys
import time

import pytest

from codex_bridge.engine.error_classifier import classify_exception
from codex_bridge.engine.errors import ProcessSpawnError, ProcessTimeoutError
from codex_bridge.engine.models import ErrorKind, StreamHandlers
from codex_bridge.engine.process_executor import (
    ProcessExecutor,
    ProcessRegistry,
    exit_code_of,
)

PY = sys.executable
POSIX = sys.platform != "win32"


@pytest.fixture
async def executor():
    executor = ProcessExecutor(kill_grace=0.5)
    yield executor
    await executor.aclose()


@pytest.mark.asyncio
async def test_run_returns_trimmed_output_and_exit_code(executor):
    result = await executor.run(
        PY, ["-c", "import sys; print('  out  '); print('err', file=sys.stderr); sys.exit(3)"],
    )
    assert result.exit_code == 3
    assert result.stdout == "out"
    assert result.stderr == "err"
    assert not result.ok
    assert executor.active_count == 0


@pytest.mark.asyncio
async def test_run_feeds_stdin_verbatim(executor):
    prompt = "print('hi')\nsecond line ünïcode"
    result = await executor.run(
        PY, ["-c", "import sys; sys.stdout.write(sys.stdin.read())"],
        stdin_input=prompt,
    )
    assert result.exit_code == 0
    assert result.stdout == prompt


@pytest.mark.asyncio
async def test_run_without_input_gets_empty_stdin(executor):
    result = await executor.run(
        PY, ["-c", "import sys; print(repr(sys.stdin.read()))"], timeout=10,
    )
    assert result.stdout == "''"


@pytest.mark.asyncio
async def test_run_decodes_invalid_utf8_with_replacement(executor):
    result = await executor.run(
        PY, ["-c", "import sys; sys.stdout.buffer.write(b'ok\\xff\\xfe')"],
    )
    assert result.stdout.startswith("ok")
    assert "�" in result.stdout


@pytest.mark.asyncio
async def test_run_timeout_rejects_and_clears_registry(executor):
    started = time.monotonic()
    with pytest.raises(ProcessTimeoutError) as exc_info:
        await executor.run(PY, ["-c", "import time; time.sleep(30)"], timeout=0.1)
    elapsed = time.monotonic() - started

    assert elapsed < 2.0
    assert classify_exception(exc_info.value).kind == ErrorKind.TIMEOUT
    assert "Command execution timeout" in str(exc_info.value)
    assert exc_info.value.process_id not in executor.registry
    assert executor.active_count == 0


@pytest.mark.asyncio
async def test_spawn_error_for_missing_executable(executor):
    with pytest.raises(ProcessSpawnError) as exc_info:
        await executor.run("definitely-not-a-real-codex-binary", ["--version"])
    assert "ENOENT" in str(exc_info.value)
    assert str(exc_info.value).startswith("Failed to execute command:")
    assert classify_exception(exc_info.value).kind == ErrorKind.INSTALLATION_MISSING
    assert executor.active_count == 0


@pytest.mark.asyncio
async def test_cancelled_run_terminates_child(executor):
    task = asyncio.create_task(
        executor.run(PY, ["-c", "import time; time.sleep(30)"])
    )
    for _ in range(50):
        if executor.active_count:
            break
        await asyncio.sleep(0.02)
    assert executor.active_count == 1
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert executor.active_count == 0


@pytest.mark.asyncio
async def test_streaming_delivers_chunks_and_closes_once(executor):
    stdout: list[str] = []
    stderr: list[str] = []
    closes: list[int] = []
    controller = await executor.run_streaming(
        PY,
        ["-c", "import sys; data = sys.stdin.read(); print(data.upper()); "
               "print('warn', file=sys.stderr)"],
        stdin_input="hello",
        handlers=StreamHandlers(
            on_stdout=stdout.append, on_stderr=stderr.append, on_close=closes.append,
        ),
    )
    exit_code = await controller.wait()

    assert exit_code == 0
    assert "".join(stdout).strip() == "HELLO"
    assert "".join(stderr).strip() == "warn"
    assert closes == [0]
    assert executor.active_count == 0


@pytest.mark.asyncio
async def test_streaming_cancel_is_idempotent(executor):
    closes: list[int] = []
    controller = await executor.run_streaming(
        PY, ["-c", "import time; time.sleep(30)"],
        handlers=StreamHandlers(on_close=closes.append),
    )
    controller.cancel()
    controller.cancel()
    exit_code = await asyncio.wait_for(controller.wait(), 5)

    assert controller.cancelled
    assert exit_code != 0
    if POSIX:
        assert exit_code == -1
    assert closes == [exit_code]
    assert executor.active_count == 0


@pytest.mark.asyncio
async def test_streaming_handler_errors_do_not_break_stream(executor):
    def boom(_chunk: str) -> None:
        raise RuntimeError("handler failed")

    closes: list[int] = []
    controller = await executor.run_streaming(
        PY, ["-c", "print('x')"],
        handlers=StreamHandlers(on_stdout=boom, on_close=closes.append),
    )
    assert await controller.wait() == 0
    assert closes == [0]


@pytest.mark.asyncio
async def test_kill_all_signals_every_child(executor):
    controllers = [
        await executor.run_streaming(PY, ["-c", "import time; time.sleep(30)"])
        for _ in range(3)
    ]
    assert executor.active_count == 3
    assert executor.kill_all() == 3
    assert executor.active_count == 0
    codes = await asyncio.wait_for(
        asyncio.gather(*(c.wait() for c in controllers)), 5,
    )
    assert all(code != 0 for code in codes)
    if POSIX:
        assert codes == [-1, -1, -1]


def test_registry_ids_are_unique_and_removal_idempotent():
    registry = ProcessRegistry()
    ids = {registry.new_id() for _ in range(100)}
    assert len(ids) == 100
    assert registry.remove("missing") is None
    assert registry.remove("missing") is None
    assert len(registry) == 0


@pytest.mark.skipif(not POSIX, reason="POSIX signals required")
@pytest.mark.asyncio
async def test_run_killed_by_signal_reports_minus_one(executor):
    result = await executor.run(
        PY, ["-c", "import os, signal; os.kill(os.getpid(), signal.SIGKILL)"],
        timeout=10,
    )
    assert result.exit_code == -1


def test_exit_code_of_maps_signals_and_missing_codes():
    assert exit_code_of(None) == -1
    assert exit_code_of(-15) == -1
    assert exit_code_of(0) == 0
    assert exit_code_of(2) == 2
