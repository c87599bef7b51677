"""AgentInvoker: composition root of the execution engine.

Ties settings, availability probing, command construction, process and
terminal execution and retry policy together behind three entry points:

- invoke_headless(): buffered run, prompt on stdin, InvocationResult back
- invoke_terminal(): prompt written to a temp file and piped into the
  tool inside a visible terminal, followed by ``resume --last``
- invoke_stream(): output chunks delivered to handlers as they arrive
"""
from __future__ import annotations

import asyncio
import logging
import random
import re
import sys
import time
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from .availability import AvailabilityChecker
from .command_builder import build_args, is_powershell_executable
from .config import BridgeSettings, ConfigStore
from .errors import (
    CliExecutionError,
    CliUnavailableError,
    OperationTimeoutError,
    PromptFileError,
)
from .guidance import guidance_for_kind
from .hooks import HostHooks, fire_hook
from .models import (
    ApprovalMode,
    AvailabilityResult,
    ClassifiedError,
    ErrorKind,
    HeadlessPlan,
    InvocationOptions,
    InvocationPlan,
    InvocationResult,
    StreamHandlers,
    StreamPlan,
    TerminalOptions,
    TerminalPlan,
)
from .process_executor import ProcessExecutor, StreamController
from .retry import RetryHooks, RetryOrchestrator, RetryPolicy, RetryRegistry
from .terminal import TerminalDriver, TerminalFactory, TerminalHandle

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = Path.home() / ".codex-bridge" / "tmp"
PROMPT_FILE_PREFIX = "codex-prompt"
PROMPT_FILE_TTL = 30.0

HEADLESS_OPERATION = "Codex CLI Execution"
TERMINAL_OPERATION = "Codex Terminal"

HEADLESS_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.TIMEOUT,
    ErrorKind.NETWORK_ERROR,
    ErrorKind.EXECUTION_FAILED,
})
TERMINAL_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.FILE_ACCESS_ERROR,
})

_MODIFIED_FILE_RE = re.compile(
    r"(?:Modified|Created|Updated|Writing to):\s+(.+)", re.IGNORECASE,
)


def parse_modified_files(output: str) -> list[str]:
    """Paths reported as modified, deduplicated in order of first appearance."""
    files: list[str] = []
    for line in (output or "").splitlines():
        match = _MODIFIED_FILE_RE.search(line)
        if not match:
            continue
        path = match.group(1).strip()
        if path and path not in files:
            files.append(path)
    return files


def _headless_should_retry(classified: ClassifiedError, attempt: int) -> bool:
    # Exit code 1 means the tool rejected the request; running it again
    # would repeat the same answer.
    if (
        classified.kind == ErrorKind.EXECUTION_FAILED
        and classified.context.get("exit_code") == 1
    ):
        return False
    return classified.is_retryable and classified.kind in HEADLESS_RETRYABLE_KINDS


class AgentInvoker:
    """Public entry point for running the Codex CLI."""

    def __init__(
        self,
        config: ConfigStore | None = None,
        *,
        hooks: HostHooks | None = None,
        executor: ProcessExecutor | None = None,
        terminal_factory: TerminalFactory | None = None,
        retry_registry: RetryRegistry | None = None,
        storage_dir: str | Path | None = None,
        platform: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        prompt_file_ttl: float = PROMPT_FILE_TTL,
    ) -> None:
        self._config = config if config is not None else ConfigStore()
        self._hooks = hooks or HostHooks()
        self._platform = platform or sys.platform
        self._executor = executor if executor is not None else ProcessExecutor()
        self._terminals = TerminalDriver(
            self._executor.registry,
            factory=terminal_factory,
            startup_delay=self._config.snapshot().terminal_startup_delay,
            platform=self._platform,
        )
        self._retry = RetryOrchestrator(
            retry_registry,
            host_hooks=self._hooks,
            sleep=sleep,
            rng=rng,
            platform=self._platform,
        )
        self._storage_dir = Path(storage_dir) if storage_dir else DEFAULT_STORAGE_DIR
        self._prompt_file_ttl = prompt_file_ttl
        self._pending_cleanups: dict[Path, asyncio.TimerHandle] = {}

    # -- Accessors -----------------------------------------------------

    @property
    def settings(self) -> BridgeSettings:
        return self._config.snapshot()

    @property
    def executor(self) -> ProcessExecutor:
        return self._executor

    @property
    def terminal_driver(self) -> TerminalDriver:
        return self._terminals

    @property
    def pending_prompt_files(self) -> list[Path]:
        return list(self._pending_cleanups)

    # -- Availability --------------------------------------------------

    def _checker(self, settings: BridgeSettings) -> AvailabilityChecker:
        probe_timeout = settings.timeout if settings.timeout > 0 else 10.0
        return AvailabilityChecker(
            self._executor,
            tool_path=settings.tool_path,
            min_version=settings.min_version,
            timeout=min(probe_timeout, 10.0),
            platform=self._platform,
        )

    async def check_availability(self) -> AvailabilityResult:
        return await self._checker(self.settings).check()

    async def is_ready(self) -> bool:
        return (await self.check_availability()).is_available

    async def _ensure_available(self, settings: BridgeSettings) -> None:
        result = await self._checker(settings).check()
        if result.is_available:
            return
        error = CliUnavailableError(result)
        await fire_hook(
            self._hooks.show_guidance,
            result.remediation or guidance_for_kind(
                error.kind,
                tool_path=settings.tool_path,
                min_version=settings.min_version,
            ),
        )
        raise error

    # -- Headless ------------------------------------------------------

    async def invoke_headless(
        self, prompt: str, options: InvocationOptions | None = None,
    ) -> InvocationResult:
        """Run the tool once per attempt with *prompt* on stdin."""
        logger.info("Invoking Codex headless (%d chars)", len(prompt))
        policy = RetryPolicy(
            max_attempts=3,
            base_delay=1.0,
            retryable_kinds=HEADLESS_RETRYABLE_KINDS,
            hooks=RetryHooks(
                on_retry=self._log_retry,
                should_retry=_headless_should_retry,
            ),
        )
        return await self._retry.execute_with_retry(
            lambda: self._headless_attempt(prompt, options),
            HEADLESS_OPERATION,
            policy,
        )

    async def _headless_attempt(
        self, prompt: str, options: InvocationOptions | None,
    ) -> InvocationResult:
        settings = self.settings
        config = settings.invocation_config(options)

        async def run_once():
            await self._ensure_available(settings)
            plan = build_args(config)
            return await self._executor.run(
                plan.executable,
                plan.args,
                cwd=config.working_directory,
                timeout=config.timeout,
                stdin_input=prompt,
            )

        if config.timeout:
            # Also bounds the availability probe, which runs before any spawn.
            try:
                result = await asyncio.wait_for(run_once(), config.timeout)
            except asyncio.TimeoutError:
                raise OperationTimeoutError(config.timeout) from None
        else:
            result = await run_once()

        if result.exit_code != 0:
            raise CliExecutionError(result.exit_code, result.stderr, result.stdout)

        return InvocationResult(
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            files_modified=tuple(parse_modified_files(result.stdout)),
        )

    async def _log_retry(self, attempt: int, classified: ClassifiedError) -> None:
        logger.info(
            "Retry attempt %d for Codex execution: %s", attempt, classified.detail,
        )

    # -- Terminal ------------------------------------------------------

    async def invoke_terminal(
        self,
        prompt: str,
        title: str = "Codex",
        options: InvocationOptions | None = None,
    ) -> TerminalHandle:
        """Open a terminal running the tool on *prompt*, then resume the session."""
        logger.info("Invoking Codex in terminal %r", title)
        policy = RetryPolicy(
            max_attempts=2,
            base_delay=0.5,
            retryable_kinds=TERMINAL_RETRYABLE_KINDS,
        )
        return await self._retry.execute_with_retry(
            lambda: self._terminal_attempt(prompt, title, options),
            TERMINAL_OPERATION,
            policy,
        )

    async def _terminal_attempt(
        self,
        prompt: str,
        title: str,
        options: InvocationOptions | None,
    ) -> TerminalHandle:
        settings = self.settings
        config = settings.invocation_config(options)
        await self._ensure_available(settings)

        prompt_file = self._write_prompt_file(prompt)
        try:
            shell = self._terminals.target_shell(config.shell_override)
            command = self._terminals.compose(config, str(prompt_file), shell_path=shell)
            shell_args: tuple[str, ...] = ()
            if is_powershell_executable(shell):
                shell_args = ("-NoLogo", "-NoProfile")
            terminal = await self._terminals.open(
                command,
                TerminalOptions(
                    name=title,
                    cwd=config.working_directory,
                    shell_path=shell,
                    shell_args=shell_args,
                ),
                startup_delay=settings.terminal_startup_delay,
            )
        except BaseException:
            self._remove_prompt_file(prompt_file)
            raise

        self._schedule_cleanup(prompt_file)
        return terminal

    def _write_prompt_file(self, prompt: str) -> Path:
        stamp = int(time.time() * 1000)
        path = self._storage_dir / f"{PROMPT_FILE_PREFIX}-{stamp}-{uuid.uuid4().hex[:6]}.md"
        try:
            self._storage_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(prompt, encoding="utf-8")
        except OSError as exc:
            raise PromptFileError(str(path), exc.strerror or str(exc)) from exc
        logger.debug("Wrote prompt file %s", path)
        return path

    def _schedule_cleanup(self, path: Path) -> None:
        loop = asyncio.get_running_loop()
        self._pending_cleanups[path] = loop.call_later(
            self._prompt_file_ttl, self._remove_prompt_file, path,
        )

    def _remove_prompt_file(self, path: Path) -> None:
        timer = self._pending_cleanups.pop(path, None)
        if timer is not None:
            timer.cancel()
        try:
            path.unlink()
            logger.debug("Cleaned up prompt file %s", path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to clean up prompt file %s: %s", path, exc)

    # -- Streaming -----------------------------------------------------

    async def invoke_stream(
        self,
        prompt: str,
        options: InvocationOptions | None = None,
        handlers: StreamHandlers | None = None,
    ) -> StreamController:
        """Start the tool and stream its output; not retried."""
        settings = self.settings
        config = settings.invocation_config(options)
        await self._ensure_available(settings)
        plan = build_args(config)
        logger.info("Invoking Codex streaming (%d chars)", len(prompt))
        return await self._executor.run_streaming(
            plan.executable,
            plan.args,
            cwd=config.working_directory,
            stdin_input=prompt,
            handlers=handlers,
        )

    # -- Plans and control ---------------------------------------------

    async def execute_plan(self, plan: InvocationPlan) -> Any:
        if isinstance(plan, HeadlessPlan):
            return await self.invoke_headless(plan.prompt, plan.options)
        if isinstance(plan, TerminalPlan):
            return await self.invoke_terminal(plan.prompt, plan.title, plan.options)
        if isinstance(plan, StreamPlan):
            return await self.invoke_stream(plan.prompt, plan.options, plan.handlers)
        raise TypeError(f"Unsupported invocation plan: {type(plan).__name__}")

    def set_approval_mode(self, mode: ApprovalMode | str) -> ApprovalMode:
        parsed = ApprovalMode.parse(mode)
        self._config.override(default_approval_mode=parsed)
        logger.info("Approval mode set to: %s", parsed.value)
        return parsed

    def reload_settings(self) -> BridgeSettings:
        """Re-read environment and settings file; later calls see the new snapshot."""
        return self._config.reload()

    def retry_statistics(self) -> dict[str, Any]:
        return self._retry.statistics()

    def active_retry_operations(self) -> list[str]:
        return self._retry.active_operations()

    def cancel_all_retries(self) -> int:
        return self._retry.cancel_all()

    async def shutdown(self) -> None:
        """Stop scheduling retries, kill children, delete pending prompt files."""
        self._retry.cancel_all()
        for path in list(self._pending_cleanups):
            self._remove_prompt_file(path)
        await self._executor.aclose()
        logger.info("AgentInvoker shut down")
