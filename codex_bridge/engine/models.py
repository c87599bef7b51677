"""Core data models for the execution engine.

Enums and value dataclasses shared by the builder, executor, classifier,
retry orchestrator and invoker. Single source of truth to avoid circular
imports.
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ApprovalMode(str, Enum):
    """How much the external tool may do without asking."""
    INTERACTIVE = "interactive"
    AUTO_EDIT = "auto-edit"
    FULL_AUTO = "full-auto"
    YOLO = "yolo"

    @classmethod
    def parse(cls, value: str | ApprovalMode | None) -> ApprovalMode:
        """Parse a mode name, falling back to INTERACTIVE for unknown values."""
        if isinstance(value, ApprovalMode):
            return value
        mapping = {
            "interactive": cls.INTERACTIVE,
            "auto-edit": cls.AUTO_EDIT,
            "auto_edit": cls.AUTO_EDIT,
            "autoEdit": cls.AUTO_EDIT,
            "full-auto": cls.FULL_AUTO,
            "full_auto": cls.FULL_AUTO,
            "fullAuto": cls.FULL_AUTO,
            "yolo": cls.YOLO,
        }
        return mapping.get((value or "").strip(), cls.INTERACTIVE)


class ShellDialect(str, Enum):
    """Quoting/composition rules of the shell a command line targets."""
    POSIX = "posix"
    POWERSHELL = "powershell"
    CMD = "cmd"


class ErrorKind(str, Enum):
    """Classification of a failed invocation. See error_classifier.py."""
    INSTALLATION_MISSING = "installation_missing"
    VERSION_INCOMPATIBLE = "version_incompatible"
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"
    AUTH_FAILED = "auth_failed"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    FILE_ACCESS_ERROR = "file_access_error"
    CONFIGURATION_ERROR = "configuration_error"
    EXECUTION_FAILED = "execution_failed"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Kinds that no retry policy may override.
FATAL_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.INSTALLATION_MISSING,
    ErrorKind.PERMISSION_DENIED,
    ErrorKind.VERSION_INCOMPATIBLE,
})


@dataclass(frozen=True)
class InvocationConfig:
    """Fully resolved configuration for one invocation of the tool."""
    tool_path: str = "codex"
    approval_mode: ApprovalMode | str = ApprovalMode.INTERACTIVE
    model: str | None = None
    working_directory: str | None = None
    timeout: float | None = None
    shell_override: str | None = None


@dataclass(frozen=True)
class InvocationOptions:
    """Per-call overrides merged over the current settings snapshot."""
    approval_mode: ApprovalMode | str | None = None
    model: str | None = None
    working_directory: str | None = None
    timeout: float | None = None


@dataclass(frozen=True)
class ArgumentPlan:
    """argv form of an invocation: executable plus ordered arguments."""
    executable: str
    args: tuple[str, ...]

    def argv(self) -> list[str]:
        return [self.executable, *self.args]


@dataclass(frozen=True)
class ShellCommand:
    """A single composed command line for one shell dialect."""
    text: str
    dialect: ShellDialect


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one buffered process run."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class InvocationResult:
    """Outcome of a successful headless invocation."""
    exit_code: int
    stdout: str
    stderr: str
    files_modified: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassifiedError:
    """Typed error record derived from a raw failure message."""
    kind: ErrorKind
    severity: Severity
    is_retryable: bool
    message: str
    remediation: tuple[str, ...] = ()
    detail: str = ""
    matched_pattern: str | None = None
    context: dict[str, Any] = field(default_factory=dict, compare=False)

    def format_user_message(self) -> str:
        """One-line message suitable for a notification."""
        if self.is_retryable:
            return f"{self.message}. This operation can be retried."
        return f"{self.message}."

    def format_details(self) -> str:
        """Markdown report with numbered troubleshooting steps."""
        lines = [
            "# Codex Error Details",
            "",
            f"**Type:** {self.kind.value}",
            f"**Severity:** {self.severity.value}",
            f"**Message:** {self.message}",
            f"**Retryable:** {'Yes' if self.is_retryable else 'No'}",
            "",
            "## Troubleshooting Steps",
            "",
        ]
        lines.extend(
            f"{index}. {step}"
            for index, step in enumerate(self.remediation, start=1)
        )
        if self.detail:
            lines.extend(["", "## Original Error", "", "```", self.detail, "```"])
        if self.context:
            lines.extend(["", "## Context", ""])
            lines.extend(
                f"- {key}: {value}" for key, value in sorted(self.context.items())
            )
        return "\n".join(lines)


@dataclass(frozen=True)
class AvailabilityResult:
    """Result of one installation/compatibility probe. Never cached."""
    is_available: bool = False
    is_installed: bool = False
    version: str | None = None
    is_compatible: bool = False
    error_message: str | None = None
    remediation: str | None = None


@dataclass
class RetryAttemptState:
    """In-flight state of one retry call."""
    operation_name: str
    start_time: float = field(default_factory=time.monotonic)
    attempt_number: int = 0
    last_error: BaseException | None = None


@dataclass
class RetryOutcome:
    """Result of RetryOrchestrator.run(): either a value or the final error."""
    success: bool
    attempts: int
    elapsed: float
    result: Any = None
    error: BaseException | None = None
    classified: ClassifiedError | None = None


@dataclass(frozen=True)
class StreamHandlers:
    """Per-chunk callbacks for streaming execution; each is optional."""
    on_stdout: Callable[[str], None] | None = None
    on_stderr: Callable[[str], None] | None = None
    on_close: Callable[[int], None] | None = None


@dataclass(frozen=True)
class TerminalOptions:
    """How a terminal surface should be created."""
    name: str
    cwd: str | None = None
    shell_path: str | None = None
    shell_args: tuple[str, ...] = ()
    hide_from_user: bool = False


@dataclass(frozen=True)
class HeadlessPlan:
    prompt: str
    options: InvocationOptions | None = None


@dataclass(frozen=True)
class TerminalPlan:
    prompt: str
    title: str = "Codex"
    options: InvocationOptions | None = None


@dataclass(frozen=True)
class StreamPlan:
    prompt: str
    handlers: StreamHandlers
    options: InvocationOptions | None = None


InvocationPlan = HeadlessPlan | TerminalPlan | StreamPlan
