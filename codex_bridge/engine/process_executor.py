"""Child process lifecycle: spawn, buffer or stream output, time out, reap.

Every spawned child is registered in a ProcessRegistry until its first
terminal event (exit, timeout, cancellation, spawn failure). Termination
never blocks the caller: SIGTERM is sent immediately and a background
reaper escalates to SIGKILL after a grace period.
"""
from __future__ import annotations

import asyncio
import codecs
import errno
import itertools
import logging
import os
import signal
import sys
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import ProcessSpawnError, ProcessTimeoutError
from .models import ExecutionResult, StreamHandlers, TerminalOptions

if TYPE_CHECKING:
    from .models import ShellCommand
    from .terminal import TerminalDriver, TerminalHandle

logger = logging.getLogger(__name__)

DEFAULT_KILL_GRACE = 2.0
_READ_CHUNK = 4096
_USE_PROCESS_GROUPS = sys.platform != "win32" and hasattr(os, "killpg")


def exit_code_of(returncode: int | None) -> int:
    """Exit status as reported to callers; -1 when a signal ended the child."""
    if returncode is None or returncode < 0:
        return -1
    return returncode


@dataclass
class ProcessHandle:
    """A live child process owned by the executor."""
    id: str
    process: asyncio.subprocess.Process
    executable: str
    started_at: float = field(default_factory=time.monotonic)
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    own_group: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid


class ProcessRegistry:
    """Live child processes keyed by process-unique id."""

    def __init__(self) -> None:
        self._entries: dict[str, ProcessHandle] = {}
        self._counter = itertools.count(1)

    def new_id(self) -> str:
        return f"proc-{next(self._counter)}-{uuid.uuid4().hex[:8]}"

    def add(self, handle: ProcessHandle) -> None:
        self._entries[handle.id] = handle
        logger.debug(
            "Registered process id=%s pid=%s active=%d",
            handle.id, handle.pid, len(self._entries),
        )

    def remove(self, process_id: str) -> ProcessHandle | None:
        """Drop an entry. Safe to call more than once."""
        handle = self._entries.pop(process_id, None)
        if handle is not None:
            logger.debug(
                "Unregistered process id=%s active=%d",
                process_id, len(self._entries),
            )
        return handle

    def get(self, process_id: str) -> ProcessHandle | None:
        return self._entries.get(process_id)

    def ids(self) -> list[str]:
        return list(self._entries)

    def snapshot(self) -> list[dict[str, object]]:
        """Process metadata for diagnostics."""
        now = time.monotonic()
        return [
            {
                "id": handle.id,
                "pid": handle.pid,
                "executable": handle.executable,
                "returncode": handle.process.returncode,
                "age": round(now - handle.started_at, 3),
            }
            for handle in self._entries.values()
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, process_id: object) -> bool:
        return process_id in self._entries


def send_stop_signal(handle: ProcessHandle, *, force: bool = False) -> bool:
    """Signal the child (and its process group when it owns one)."""
    proc = handle.process
    if proc.returncode is not None:
        return False
    try:
        if handle.own_group and _USE_PROCESS_GROUPS:
            sig = signal.SIGKILL if force else signal.SIGTERM
            os.killpg(proc.pid, sig)
        elif force:
            proc.kill()
        else:
            proc.terminate()
        return True
    except (ProcessLookupError, PermissionError):
        return False


class StreamController:
    """Running streaming execution; see ProcessExecutor.run_streaming()."""

    def __init__(
        self,
        executor: ProcessExecutor,
        handle: ProcessHandle,
        handlers: StreamHandlers,
    ) -> None:
        self._executor = executor
        self._handle = handle
        self._handlers = handlers
        self._closed = False
        self._cancelled = False
        self._exit_code: int | None = None
        self._task: asyncio.Task[int] | None = None

    @property
    def process_id(self) -> str:
        return self._handle.id

    @property
    def pid(self) -> int:
        return self._handle.pid

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _start(self, stdin_data: bytes | None) -> None:
        self._task = asyncio.ensure_future(self._pump(stdin_data))

    async def _pump(self, stdin_data: bytes | None) -> int:
        proc = self._handle.process
        exit_code = -1
        try:
            if proc.stdin is not None:
                try:
                    if stdin_data:
                        proc.stdin.write(stdin_data)
                        await proc.stdin.drain()
                except (BrokenPipeError, ConnectionResetError):
                    logger.debug("stdin closed early id=%s", self._handle.id)
                finally:
                    proc.stdin.close()
            await asyncio.gather(
                self._read(proc.stdout, self._handlers.on_stdout, self._handle.stdout),
                self._read(proc.stderr, self._handlers.on_stderr, self._handle.stderr),
            )
            exit_code = exit_code_of(await proc.wait())
        except Exception:
            logger.exception("Streaming process failed id=%s", self._handle.id)
            self._executor._terminate(self._handle)
            exit_code = -1
        finally:
            self._finish(exit_code)
        return exit_code

    async def _read(
        self,
        stream: asyncio.StreamReader | None,
        callback: Callable[[str], None] | None,
        buffer: list[str],
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(_READ_CHUNK)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                buffer.append(text)
                self._deliver(callback, text)
            if not chunk:
                return

    def _deliver(self, callback: Callable[[str], None] | None, text: str) -> None:
        if callback is None:
            return
        try:
            callback(text)
        except Exception:
            logger.exception("Stream handler raised id=%s", self._handle.id)

    def _finish(self, exit_code: int) -> None:
        if self._closed:
            return
        self._closed = True
        self._exit_code = exit_code
        self._executor._registry.remove(self._handle.id)
        logger.info(
            "Streaming process closed id=%s exit_code=%s", self._handle.id, exit_code,
        )
        if self._handlers.on_close is not None:
            try:
                self._handlers.on_close(exit_code)
            except Exception:
                logger.exception("on_close handler raised id=%s", self._handle.id)

    def cancel(self) -> None:
        """Terminate the child. Idempotent; on_close still fires once."""
        if self._cancelled or self._closed:
            return
        self._cancelled = True
        logger.info("Cancelling streaming process id=%s", self._handle.id)
        self._executor._terminate(self._handle)

    async def wait(self) -> int:
        """Wait for the child to exit and return its exit code."""
        if self._task is None:
            return self._exit_code if self._exit_code is not None else -1
        return await asyncio.shield(self._task)


class ProcessExecutor:
    """Spawns the external tool and tracks every child until it ends.

    Buffered runs resolve with trimmed output; streaming runs deliver
    decoded chunks to handlers as they arrive. Terminals are delegated to
    a TerminalDriver sharing this executor's registry.
    """

    def __init__(
        self,
        registry: ProcessRegistry | None = None,
        *,
        kill_grace: float = DEFAULT_KILL_GRACE,
        env: Mapping[str, str] | None = None,
        terminal_driver: TerminalDriver | None = None,
    ) -> None:
        self._registry = registry if registry is not None else ProcessRegistry()
        self._kill_grace = kill_grace
        self._env = dict(env) if env is not None else None
        self._terminal_driver = terminal_driver
        self._reapers: set[asyncio.Task[None]] = set()

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    @property
    def active_count(self) -> int:
        return len(self._registry)

    @property
    def terminal_driver(self) -> TerminalDriver:
        if self._terminal_driver is None:
            from .terminal import TerminalDriver
            self._terminal_driver = TerminalDriver(self._registry)
        return self._terminal_driver

    async def _spawn(
        self,
        executable: str,
        args: Sequence[str],
        *,
        cwd: str | None,
        with_stdin: bool,
    ) -> ProcessHandle:
        try:
            # argv spawn, no shell
            proc = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=asyncio.subprocess.PIPE if with_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=self._env,
                start_new_session=_USE_PROCESS_GROUPS,
            )
        except OSError as exc:
            errno_name = errno.errorcode.get(exc.errno) if exc.errno else None
            logger.warning(
                "Spawn failed executable=%s errno=%s: %s",
                executable, errno_name, exc.strerror or exc,
            )
            raise ProcessSpawnError(
                executable, exc.strerror or str(exc), errno_name,
            ) from exc

        handle = ProcessHandle(
            id=self._registry.new_id(),
            process=proc,
            executable=executable,
            own_group=_USE_PROCESS_GROUPS,
        )
        self._registry.add(handle)
        logger.info(
            "Spawned %s id=%s pid=%s cwd=%s", executable, handle.id, proc.pid, cwd,
        )
        return handle

    async def run(
        self,
        executable: str,
        args: Sequence[str] = (),
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        stdin_input: str | None = None,
    ) -> ExecutionResult:
        """Run to completion and return trimmed stdout/stderr.

        Raises ProcessSpawnError when the child cannot start and
        ProcessTimeoutError when *timeout* seconds elapse first. A non-zero
        exit is not an error at this layer.
        """
        handle = await self._spawn(
            executable, args, cwd=cwd, with_stdin=stdin_input is not None,
        )
        proc = handle.process
        data = stdin_input.encode("utf-8") if stdin_input is not None else None
        try:
            if timeout is not None and timeout > 0:
                out, err = await asyncio.wait_for(proc.communicate(data), timeout)
            else:
                out, err = await proc.communicate(data)
        except asyncio.TimeoutError:
            logger.warning(
                "Process timed out id=%s pid=%s after %.3fs",
                handle.id, handle.pid, timeout,
            )
            self._terminate(handle)
            raise ProcessTimeoutError(timeout or 0.0, handle.id) from None
        except asyncio.CancelledError:
            logger.info("Run cancelled, terminating id=%s", handle.id)
            self._terminate(handle)
            raise
        finally:
            self._registry.remove(handle.id)

        exit_code = exit_code_of(proc.returncode)
        stdout = _decode(out)
        stderr = _decode(err)
        logger.info(
            "Process exited id=%s exit_code=%d stdout=%d chars stderr=%d chars",
            handle.id, exit_code, len(stdout), len(stderr),
        )
        return ExecutionResult(exit_code=exit_code, stdout=stdout, stderr=stderr)

    async def run_streaming(
        self,
        executable: str,
        args: Sequence[str] = (),
        *,
        cwd: str | None = None,
        stdin_input: str | None = None,
        handlers: StreamHandlers | None = None,
    ) -> StreamController:
        """Start the child and deliver output chunks to *handlers*."""
        handle = await self._spawn(
            executable, args, cwd=cwd, with_stdin=stdin_input is not None,
        )
        controller = StreamController(self, handle, handlers or StreamHandlers())
        controller._start(
            stdin_input.encode("utf-8") if stdin_input is not None else None
        )
        return controller

    async def open_terminal(
        self,
        command: ShellCommand | str,
        options: TerminalOptions,
        *,
        startup_delay: float | None = None,
    ) -> TerminalHandle:
        """Open a visible terminal and inject *command* after a grace period."""
        return await self.terminal_driver.open(
            command, options, startup_delay=startup_delay,
        )

    def kill(self, process_id: str) -> bool:
        handle = self._registry.remove(process_id)
        if handle is None:
            return False
        self._terminate(handle)
        return True

    def kill_all(self) -> int:
        """Terminate every registered child. Returns how many were signalled."""
        count = 0
        for process_id in self._registry.ids():
            if self.kill(process_id):
                count += 1
        if count:
            logger.info("Terminated %d child process(es)", count)
        return count

    def _terminate(self, handle: ProcessHandle) -> None:
        self._registry.remove(handle.id)
        if handle.process.returncode is not None:
            return
        send_stop_signal(handle)
        task = asyncio.ensure_future(self._reap(handle))
        self._reapers.add(task)
        task.add_done_callback(self._reapers.discard)

    async def _reap(self, handle: ProcessHandle) -> None:
        proc = handle.process
        try:
            await asyncio.wait_for(proc.wait(), self._kill_grace)
            return
        except asyncio.TimeoutError:
            pass
        killed = send_stop_signal(handle, force=True)
        logger.warning(
            "Process still running after SIGTERM; escalating to SIGKILL "
            "id=%s pid=%s sent=%s",
            handle.id, handle.pid, killed,
        )
        try:
            await asyncio.wait_for(proc.wait(), self._kill_grace)
        except asyncio.TimeoutError:
            logger.error("Process did not exit after SIGKILL id=%s", handle.id)

    async def aclose(self) -> None:
        """Kill all children and wait for the background reapers."""
        self.kill_all()
        if self._reapers:
            await asyncio.gather(*list(self._reapers), return_exceptions=True)


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace").strip()
