"""Exception hierarchy for the execution engine.

Each exception may carry a ``kind`` hint and an ``exit_code`` that the
error classifier reads before falling back to message patterns.
"""
from __future__ import annotations

from .models import AvailabilityResult, ErrorKind


class BridgeError(Exception):
    """Base exception for all engine errors."""

    kind: ErrorKind | None = None
    exit_code: int | None = None


class ProcessSpawnError(BridgeError):
    """The OS refused to start the child process."""
    def __init__(self, executable: str, reason: str, errno_name: str | None = None):
        self.executable = executable
        self.reason = reason
        self.errno_name = errno_name
        if errno_name == "EACCES":
            self.kind = ErrorKind.PERMISSION_DENIED
        tag = f" {errno_name}" if errno_name else ""
        super().__init__(
            f"Failed to execute command: spawn {executable}{tag}: {reason}"
        )


class ProcessTimeoutError(BridgeError):
    """A spawned process did not close before its timeout."""
    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float, process_id: str | None = None):
        self.timeout = timeout
        self.process_id = process_id
        super().__init__(
            f"Command execution timeout after {int(timeout * 1000)}ms"
        )


class OperationTimeoutError(BridgeError):
    """The whole invocation (probe, build, run) exceeded its timeout."""
    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Operation timed out after {int(timeout * 1000)}ms")


class CliUnavailableError(BridgeError):
    """The tool is missing or too old to use."""
    def __init__(self, availability: AvailabilityResult):
        self.availability = availability
        self.kind = (
            ErrorKind.VERSION_INCOMPATIBLE
            if availability.is_installed
            else ErrorKind.INSTALLATION_MISSING
        )
        super().__init__(
            availability.error_message or "Codex CLI is not available"
        )


class CliExecutionError(BridgeError):
    """The tool ran but exited with a non-zero code."""
    kind = ErrorKind.EXECUTION_FAILED

    def __init__(self, exit_code: int, stderr: str = "", stdout: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(
            stderr.strip() or f"Codex CLI failed with exit code {exit_code}"
        )


class TerminalError(BridgeError):
    """A terminal surface could not be created or written to."""
    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Cannot open terminal {name!r}: {reason}")


class PromptFileError(BridgeError):
    """The temporary prompt file could not be written."""
    kind = ErrorKind.FILE_ACCESS_ERROR

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot write file {path}: {reason}")
