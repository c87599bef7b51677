"""Codex Bridge engine: process execution and retry for the Codex CLI."""
from .models import (
    ApprovalMode,
    AvailabilityResult,
    ClassifiedError,
    ErrorKind,
    ExecutionResult,
    HeadlessPlan,
    InvocationConfig,
    InvocationOptions,
    InvocationResult,
    RetryOutcome,
    Severity,
    ShellDialect,
    StreamHandlers,
    StreamPlan,
    TerminalOptions,
    TerminalPlan,
)
from .config import BridgeSettings, ConfigStore
from .hooks import HostHooks
from .errors import (
    BridgeError,
    CliExecutionError,
    CliUnavailableError,
    OperationTimeoutError,
    ProcessSpawnError,
    ProcessTimeoutError,
    PromptFileError,
    TerminalError,
)
from .error_classifier import classify, classify_exception

__all__ = [
    # Composition root (lazy import)
    "AgentInvoker",
    "parse_modified_files",
    # Execution (lazy import)
    "ProcessExecutor",
    "ProcessRegistry",
    "TerminalDriver",
    "AvailabilityChecker",
    "RetryOrchestrator",
    "RetryPolicy",
    "RetryHooks",
    "RetryRegistry",
    # Models
    "ApprovalMode",
    "AvailabilityResult",
    "ClassifiedError",
    "ErrorKind",
    "ExecutionResult",
    "HeadlessPlan",
    "InvocationConfig",
    "InvocationOptions",
    "InvocationResult",
    "RetryOutcome",
    "Severity",
    "ShellDialect",
    "StreamHandlers",
    "StreamPlan",
    "TerminalOptions",
    "TerminalPlan",
    # Config
    "BridgeSettings",
    "ConfigStore",
    "HostHooks",
    # Classification
    "classify",
    "classify_exception",
    # Errors
    "BridgeError",
    "CliExecutionError",
    "CliUnavailableError",
    "OperationTimeoutError",
    "ProcessSpawnError",
    "ProcessTimeoutError",
    "PromptFileError",
    "TerminalError",
]


def __getattr__(name: str):
    if name == "AgentInvoker":
        from .invoker import AgentInvoker
        return AgentInvoker
    if name == "parse_modified_files":
        from .invoker import parse_modified_files
        return parse_modified_files
    if name == "ProcessExecutor":
        from .process_executor import ProcessExecutor
        return ProcessExecutor
    if name == "ProcessRegistry":
        from .process_executor import ProcessRegistry
        return ProcessRegistry
    if name == "TerminalDriver":
        from .terminal import TerminalDriver
        return TerminalDriver
    if name == "AvailabilityChecker":
        from .availability import AvailabilityChecker
        return AvailabilityChecker
    if name in {"RetryOrchestrator", "RetryPolicy", "RetryHooks", "RetryRegistry"}:
        from . import retry
        return getattr(retry, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
