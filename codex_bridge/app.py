"""codex-bridge CLI: a minimal host for the execution engine."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml
from rich.console import Console
from rich.markdown import Markdown
from rich.text import Text

from codex_bridge import __version__
from codex_bridge.engine.config import DEFAULT_SETTINGS_PATH, BridgeSettings, ConfigStore
from codex_bridge.engine.errors import BridgeError
from codex_bridge.engine.guidance import system_requirements
from codex_bridge.engine.hooks import HostHooks
from codex_bridge.engine.invoker import AgentInvoker
from codex_bridge.engine.models import (
    ApprovalMode,
    ClassifiedError,
    InvocationOptions,
    StreamHandlers,
)

logger = logging.getLogger(__name__)

LOG_DIR = Path.home() / ".codex-bridge" / "logs"
LOG_FILE_NAME = "codex-bridge.log"


def configure_logging(level: str, log_dir: Path = LOG_DIR) -> Path:
    """Root logger to a rotating file plus stderr."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.WARNING)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def log_level(args: argparse.Namespace, settings: BridgeSettings) -> str:
    """--verbose wins; otherwise the configured level (env or settings file)."""
    return "DEBUG" if args.verbose else settings.log_level


def build_hooks(console: Console) -> HostHooks:
    def show_guidance(text: str) -> None:
        console.print(Markdown(text))

    def show_error(error: ClassifiedError) -> None:
        console.print(Text(error.format_user_message(), style="bold red"))
        console.print(Markdown(error.format_details()))

    def show_progress(message: str) -> None:
        console.print(Text(message, style="yellow"))

    return HostHooks(
        show_guidance=show_guidance,
        show_error=show_error,
        show_progress=show_progress,
    )


def _read_prompt(args: argparse.Namespace) -> str:
    if args.prompt_file:
        return Path(args.prompt_file).read_text(encoding="utf-8")
    if args.prompt:
        return args.prompt
    if not sys.stdin.isatty():
        return sys.stdin.read()
    raise SystemExit("A prompt is required (argument, --prompt-file or stdin)")


def _options(args: argparse.Namespace) -> InvocationOptions:
    return InvocationOptions(
        approval_mode=ApprovalMode.parse(args.mode) if args.mode else None,
        model=args.model,
        working_directory=args.cwd,
        timeout=args.timeout,
    )


async def _cmd_check(
    invoker: AgentInvoker, console: Console, *, requirements: bool = False,
) -> int:
    if requirements:
        console.print(Markdown(system_requirements()))
    result = await invoker.check_availability()
    if result.is_available:
        console.print(f"Codex CLI {result.version} is available")
        return 0
    console.print(Text(result.error_message or "Codex CLI is not available", style="bold red"))
    if result.remediation:
        console.print(Markdown(result.remediation))
    return 1


async def _cmd_run(invoker: AgentInvoker, args: argparse.Namespace, console: Console) -> int:
    result = await invoker.invoke_headless(_read_prompt(args), _options(args))
    if result.stdout:
        print(result.stdout)
    if result.files_modified:
        console.print("Modified files:", style="bold")
        for path in result.files_modified:
            console.print(f"  {path}")
    return result.exit_code


async def _cmd_stream(invoker: AgentInvoker, args: argparse.Namespace) -> int:
    handlers = StreamHandlers(
        on_stdout=lambda chunk: print(chunk, end="", flush=True),
        on_stderr=lambda chunk: print(chunk, end="", file=sys.stderr, flush=True),
    )
    controller = await invoker.invoke_stream(_read_prompt(args), _options(args), handlers)
    try:
        return await controller.wait()
    except asyncio.CancelledError:
        controller.cancel()
        raise


async def _cmd_terminal(invoker: AgentInvoker, args: argparse.Namespace) -> int:
    handle = await invoker.invoke_terminal(_read_prompt(args), args.title, _options(args))
    await handle.wait_injected()
    wait = getattr(handle.surface, "wait", None)
    if wait is None:
        return 0
    return await wait()


async def _run(args: argparse.Namespace, console: Console, store: ConfigStore) -> int:
    invoker = AgentInvoker(store, hooks=build_hooks(console))
    try:
        if args.command == "check":
            return await _cmd_check(invoker, console, requirements=args.requirements)
        if args.command == "run":
            return await _cmd_run(invoker, args, console)
        if args.command == "stream":
            return await _cmd_stream(invoker, args)
        if args.command == "terminal":
            return await _cmd_terminal(invoker, args)
        raise SystemExit(f"Unknown command: {args.command}")
    except BridgeError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        return getattr(exc, "exit_code", None) or 1
    finally:
        await invoker.shutdown()


def _add_invocation_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("prompt", nargs="?", help="Prompt text (default: read stdin)")
    parser.add_argument("--prompt-file", help="Read the prompt from this file")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ApprovalMode],
        help="Approval mode (default from settings)",
    )
    parser.add_argument("-m", "--model", help="Model passed to the CLI")
    parser.add_argument("-C", "--cwd", help="Working directory for the CLI")
    parser.add_argument(
        "--timeout", type=float, help="Per-invocation timeout in seconds",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codex-bridge",
        description="Run the Codex CLI headless, streamed or in a terminal.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        default=os.getenv("CODEX_BRIDGE_CONFIG") or str(DEFAULT_SETTINGS_PATH),
        help="YAML settings file (default: ~/.codex-bridge/settings.yaml)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)
    check_parser = subparsers.add_parser(
        "check", help="Check Codex CLI installation and version",
    )
    check_parser.add_argument(
        "--requirements", action="store_true", help="Also print system requirements",
    )

    run_parser = subparsers.add_parser("run", help="Run a prompt headless")
    _add_invocation_arguments(run_parser)

    stream_parser = subparsers.add_parser("stream", help="Run a prompt and stream output")
    _add_invocation_arguments(stream_parser)

    terminal_parser = subparsers.add_parser(
        "terminal", help="Run a prompt in an interactive terminal session",
    )
    _add_invocation_arguments(terminal_parser)
    terminal_parser.add_argument("--title", default="Codex", help="Terminal name")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        store = ConfigStore(args.config)
    except (OSError, yaml.YAMLError, ValueError) as exc:
        print(f"codex-bridge: cannot load settings from {args.config}: {exc}", file=sys.stderr)
        sys.exit(2)

    log_file = configure_logging(log_level(args, store.snapshot()))
    logger.info(
        "Starting codex-bridge %s command=%s cwd=%s log=%s",
        __version__, args.command, Path.cwd(), log_file,
    )

    console = Console(stderr=True)
    try:
        exit_code = asyncio.run(_run(args, console, store))
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
