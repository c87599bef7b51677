"""Command and argument construction for the Codex CLI.

Pure functions: a resolved InvocationConfig goes in, an argv plan or a
dialect-specific command line comes out. Nothing here touches the
filesystem or spawns processes.

Two renderings coexist:
- secure: every token escaped for the target shell (subprocess and
  terminal paths)
- legacy: human-readable, double-quoted simple flag values
"""
from __future__ import annotations

import os
import re

from .models import ApprovalMode, ArgumentPlan, InvocationConfig, ShellCommand, ShellDialect

DEFAULT_TOOL = "codex"
STDIN_SENTINEL = "-"

_MODE_FLAGS: dict[ApprovalMode, tuple[str, ...]] = {
    ApprovalMode.INTERACTIVE: (
        "--sandbox", "read-only", "--ask-for-approval", "never",
    ),
    ApprovalMode.AUTO_EDIT: (
        "--sandbox", "workspace-write", "--ask-for-approval", "on-request",
    ),
    ApprovalMode.FULL_AUTO: ("--full-auto",),
    ApprovalMode.YOLO: (
        "--dangerously-bypass-approvals-and-sandbox", "--skip-git-repo-check",
    ),
}

_LEGACY_MODE_FLAGS: dict[ApprovalMode, tuple[str, ...]] = {
    ApprovalMode.INTERACTIVE: ("--ask-for-approval", "on-request"),
    ApprovalMode.AUTO_EDIT: (
        "--sandbox", "workspace-write", "--ask-for-approval", "on-failure",
    ),
    ApprovalMode.FULL_AUTO: _MODE_FLAGS[ApprovalMode.FULL_AUTO],
    ApprovalMode.YOLO: _MODE_FLAGS[ApprovalMode.YOLO],
}

_POWERSHELL_UTF8_PREFIX = (
    "$enc = [System.Text.Encoding]::UTF8; $OutputEncoding=$enc; "
    "[Console]::InputEncoding=$enc; [Console]::OutputEncoding=$enc; "
    "chcp 65001 > $null; "
)

_WINDOWS_DRIVE_RE = re.compile(r"^([A-Za-z]):\\")


def approval_flags(
    mode: ApprovalMode | str | None, *, legacy: bool = False,
) -> tuple[str, ...]:
    """Map an approval mode to CLI flags. Unknown modes act as INTERACTIVE."""
    table = _LEGACY_MODE_FLAGS if legacy else _MODE_FLAGS
    if not isinstance(mode, ApprovalMode):
        mode = ApprovalMode.parse(mode)
    return table.get(mode, table[ApprovalMode.INTERACTIVE])


def build_args(config: InvocationConfig) -> ArgumentPlan:
    """Build the headless ``exec`` argv; the prompt is read from stdin."""
    args: list[str] = ["exec"]
    args.extend(approval_flags(config.approval_mode))
    if config.model:
        args.extend(["-m", config.model])
    if config.working_directory:
        args.extend(["-C", config.working_directory])
    args.append(STDIN_SENTINEL)
    return ArgumentPlan(
        executable=config.tool_path or DEFAULT_TOOL,
        args=tuple(args),
    )


def build_resume_args(mode: ApprovalMode | str | None = None) -> tuple[str, ...]:
    """Arguments that re-attach to the most recent session."""
    return ("resume", "--last", *approval_flags(mode))


def build_version_args() -> tuple[str, ...]:
    return ("--version",)


def quote_posix(value: str) -> str:
    """Single-quote for POSIX shells; embedded quotes become ``'\\''``."""
    return "'" + value.replace("'", "'\\''") + "'"


def quote_powershell(value: str) -> str:
    """Single-quote for PowerShell; embedded quotes are doubled."""
    return "'" + value.replace("'", "''") + "'"


def quote_for(dialect: ShellDialect, value: str) -> str:
    if dialect == ShellDialect.POSIX:
        return quote_posix(value)
    return quote_powershell(value)


def build_shell_command(
    config: InvocationConfig,
    dialect: ShellDialect,
    prompt_file: str,
) -> ShellCommand:
    """Compose a terminal command line that pipes *prompt_file* into exec.

    On success the line chains a ``resume --last`` so the user lands in
    the same session for follow-up interaction.
    """
    plan = build_args(config)
    resume = build_resume_args(config.approval_mode)

    if dialect == ShellDialect.POSIX:
        tool = quote_posix(plan.executable)
        args = " ".join(quote_posix(arg) for arg in plan.args)
        resume_args = " ".join(quote_posix(arg) for arg in resume)
        exec_command = f"cat {quote_posix(prompt_file)} | {tool} {args}"
        return ShellCommand(
            text=f"({exec_command}) && {tool} {resume_args}",
            dialect=dialect,
        )

    pipeline = _powershell_pipeline(plan, resume, prompt_file)
    if dialect == ShellDialect.POWERSHELL:
        return ShellCommand(text=pipeline, dialect=dialect)

    # cmd.exe cannot run the pipeline itself; hand it to PowerShell.
    escaped = pipeline.replace("'", "''")
    return ShellCommand(
        text=f"powershell -NoLogo -NoProfile -Command '& {{ {escaped} }}'",
        dialect=dialect,
    )


def _powershell_pipeline(
    plan: ArgumentPlan,
    resume: tuple[str, ...],
    prompt_file: str,
) -> str:
    tool = quote_powershell(plan.executable)
    args = " ".join(quote_powershell(arg) for arg in plan.args)
    resume_args = " ".join(quote_powershell(arg) for arg in resume)
    exec_command = (
        f"Get-Content -Raw -Encoding UTF8 {quote_powershell(prompt_file)} "
        f"| & {tool} {args}"
    )
    return (
        f"{_POWERSHELL_UTF8_PREFIX}{exec_command}; "
        f"if ($LASTEXITCODE -eq 0) {{ & {tool} {resume_args} }}"
    )


def build_legacy_command(config: InvocationConfig, prompt_file: str) -> str:
    """Human-readable POSIX command line with double-quoted flag values.

    Model names and directories are assumed free of shell metacharacters;
    use build_shell_command() when that cannot be guaranteed.
    """
    parts = [config.tool_path or DEFAULT_TOOL]
    parts.extend(approval_flags(config.approval_mode, legacy=True))
    if config.model:
        parts.append(f'--model "{config.model}"')
    if config.working_directory:
        parts.append(f'--cd "{config.working_directory}"')
    parts.append(f'"$(cat "{prompt_file}")"')
    return " ".join(parts)


def is_powershell_executable(executable: str | None) -> bool:
    if not executable:
        return False
    normalized = executable.strip().lower()
    return (
        "powershell" in normalized
        or normalized.endswith("pwsh")
        or normalized.endswith("pwsh.exe")
    )


def normalize_shell_override(value: str | None) -> str | None:
    """Treat blank values and ``inherit`` as "no override"."""
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed or trimmed.lower() == "inherit":
        return None
    return trimmed


def resolve_dialect(shell_path: str | None, platform: str) -> ShellDialect:
    """Pick the dialect from the target shell; the platform only breaks ties.

    A POSIX shell on Windows (Git Bash, MSYS) still gets POSIX quoting.
    """
    if is_powershell_executable(shell_path):
        return ShellDialect.POWERSHELL
    if shell_path:
        name = os.path.basename(shell_path.strip().replace("\\", "/")).lower()
        if name in {"cmd", "cmd.exe"}:
            return ShellDialect.CMD
        if name.removesuffix(".exe") in {"bash", "sh", "zsh", "dash", "ksh", "fish"}:
            return ShellDialect.POSIX
    if platform == "win32":
        return ShellDialect.CMD
    return ShellDialect.POSIX


def convert_path_if_wsl(
    file_path: str,
    platform: str,
    environ: dict[str, str] | None = None,
) -> str:
    """Rewrite ``C:\\x\\y`` as ``/mnt/c/x/y`` when running under WSL."""
    env = os.environ if environ is None else environ
    is_wsl = bool(env.get("WSL_DISTRO_NAME") or env.get("WSLENV"))
    match = _WINDOWS_DRIVE_RE.match(file_path)
    if platform != "win32" or not is_wsl or not match:
        return file_path
    drive = match.group(1).lower()
    rest = file_path[match.end():].replace("\\", "/")
    return f"/mnt/{drive}/{rest}"
