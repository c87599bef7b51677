"""Interactive terminal presentation.

A terminal surface is created first and shown to the user; the composed
command line is injected only after a startup grace period so the shell
has finished printing its prompt. Hosts with a real terminal UI supply
their own TerminalSurface factory; the default ShellTerminal runs a shell
child that shares the host's console.
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .command_builder import (
    build_shell_command,
    convert_path_if_wsl,
    normalize_shell_override,
    resolve_dialect,
)
from .errors import TerminalError
from .models import InvocationConfig, ShellCommand, TerminalOptions
from .process_executor import (
    ProcessHandle,
    ProcessRegistry,
    exit_code_of,
    send_stop_signal,
)

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_DELAY = 1.0


@runtime_checkable
class TerminalSurface(Protocol):
    """What the driver needs from a host terminal."""

    name: str

    async def show(self, preserve_focus: bool = False) -> None: ...

    async def send_text(self, text: str, add_newline: bool = True) -> None: ...

    async def dispose(self) -> None: ...


TerminalFactory = Callable[[TerminalOptions], Awaitable[TerminalSurface]]


def default_shell(platform: str | None = None) -> str:
    """The user's login shell, or the platform's command interpreter."""
    current = platform or sys.platform
    if current == "win32":
        return os.environ.get("COMSPEC") or "cmd.exe"
    return os.environ.get("SHELL") or "/bin/sh"


class ShellTerminal:
    """Shell child process reading commands from a pipe.

    Output goes straight to the host's stdout/stderr so the user sees the
    tool's interactive session.
    """

    def __init__(
        self,
        options: TerminalOptions,
        handle: ProcessHandle,
        registry: ProcessRegistry,
    ) -> None:
        self.name = options.name
        self._options = options
        self._handle = handle
        self._registry = registry

    @classmethod
    async def create(
        cls, options: TerminalOptions, registry: ProcessRegistry,
    ) -> ShellTerminal:
        shell = options.shell_path or default_shell()
        try:
            proc = await asyncio.create_subprocess_exec(
                shell,
                *options.shell_args,
                stdin=asyncio.subprocess.PIPE,
                cwd=options.cwd,
            )
        except OSError as exc:
            raise TerminalError(options.name, f"{shell}: {exc.strerror or exc}") from exc
        handle = ProcessHandle(
            id=registry.new_id(), process=proc, executable=shell,
        )
        registry.add(handle)
        logger.info(
            "Opened terminal %r shell=%s pid=%s", options.name, shell, proc.pid,
        )
        return cls(options, handle, registry)

    @property
    def process_id(self) -> str:
        return self._handle.id

    async def show(self, preserve_focus: bool = False) -> None:
        # Shares the host console, nothing to reveal.
        return None

    async def send_text(self, text: str, add_newline: bool = True) -> None:
        stdin = self._handle.process.stdin
        if stdin is None or stdin.is_closing():
            raise TerminalError(self.name, "terminal input is closed")
        payload = text + ("\n" if add_newline else "")
        try:
            stdin.write(payload.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise TerminalError(self.name, "terminal exited") from exc

    async def wait(self) -> int:
        """Close the terminal input and wait for the shell to exit."""
        proc = self._handle.process
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        returncode = await proc.wait()
        self._registry.remove(self._handle.id)
        return exit_code_of(returncode)

    async def dispose(self) -> None:
        proc = self._handle.process
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        send_stop_signal(self._handle)
        self._registry.remove(self._handle.id)


@dataclass
class TerminalHandle:
    """A created terminal plus its pending command injection."""
    name: str
    surface: TerminalSurface
    command: ShellCommand | str
    injection: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def command_text(self) -> str:
        return self.command if isinstance(self.command, str) else self.command.text

    async def wait_injected(self) -> None:
        """Wait until the command line has been sent (re-raises failures)."""
        if self.injection is not None:
            await asyncio.shield(self.injection)

    async def dispose(self) -> None:
        if self.injection is not None and not self.injection.done():
            self.injection.cancel()
        await self.surface.dispose()


class TerminalDriver:
    """Creates terminal surfaces and injects composed command lines."""

    def __init__(
        self,
        registry: ProcessRegistry | None = None,
        *,
        factory: TerminalFactory | None = None,
        startup_delay: float = DEFAULT_STARTUP_DELAY,
        platform: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._registry = registry if registry is not None else ProcessRegistry()
        self._factory = factory
        self._startup_delay = startup_delay
        self._platform = platform or sys.platform
        self._sleep = sleep

    @property
    def platform(self) -> str:
        return self._platform

    def target_shell(self, shell_override: str | None = None) -> str:
        return normalize_shell_override(shell_override) or default_shell(self._platform)

    def compose(
        self,
        config: InvocationConfig,
        prompt_file: str,
        *,
        shell_path: str | None = None,
    ) -> ShellCommand:
        """Build the command line for the shell the terminal will run."""
        shell = shell_path or self.target_shell(config.shell_override)
        dialect = resolve_dialect(shell, self._platform)
        path = convert_path_if_wsl(prompt_file, self._platform)
        command = build_shell_command(config, dialect, path)
        logger.debug("Composed %s terminal command for shell=%s", dialect.value, shell)
        return command

    async def _create_surface(self, options: TerminalOptions) -> TerminalSurface:
        if self._factory is not None:
            return await self._factory(options)
        return await ShellTerminal.create(options, self._registry)

    async def open(
        self,
        command: ShellCommand | str,
        options: TerminalOptions,
        *,
        startup_delay: float | None = None,
    ) -> TerminalHandle:
        """Create and show a terminal, then schedule the command injection."""
        try:
            surface = await self._create_surface(options)
        except TerminalError:
            raise
        except Exception as exc:
            raise TerminalError(options.name, str(exc)) from exc

        if not options.hide_from_user:
            await surface.show(preserve_focus=False)

        handle = TerminalHandle(name=options.name, surface=surface, command=command)
        delay = self._startup_delay if startup_delay is None else startup_delay
        handle.injection = asyncio.ensure_future(
            self._inject(surface, handle.command_text, delay)
        )
        return handle

    async def _inject(self, surface: TerminalSurface, text: str, delay: float) -> None:
        if delay > 0:
            await self._sleep(delay)
        try:
            await surface.send_text(text, add_newline=True)
        except Exception:
            logger.exception("Failed to send command to terminal %r", surface.name)
            raise
        logger.info("Injected command into terminal %r", surface.name)
