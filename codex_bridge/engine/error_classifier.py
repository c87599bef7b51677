"""Deterministic error classification for retry policy and user guidance.

Rules are evaluated most-specific first. Each rule is a tuple of compiled
patterns; the first rule with a matching pattern wins. Retryability is a
property of the kind and is fixed here, so callers cannot accidentally
retry a missing installation or a permission problem.
"""
from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .models import FATAL_KINDS, ClassifiedError, ErrorKind, Severity

logger = logging.getLogger(__name__)

NOT_FOUND_EXIT_CODE_POSIX = 127
NOT_FOUND_EXIT_CODE_CMD = 9009
MOJIBAKE_THRESHOLD = 5
_REPLACEMENT_CHAR = "�"


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# "Tool not found" phrasings across shells and locales.
NOT_FOUND_PATTERNS = _compile(
    r"command not found",
    r"no such file or directory",
    r"is not recognized as an internal or external command",
    r"the term '.*' is not recognized",
    r"内部コマンドまたは外部コマンド",
    r"認識されていません",
    r"コマンドレット",
    r"用語 .+ は、",
    r"no se reconoce como un comando interno o externo",
    r"não é reconhecido como um comando interno ou externo",
    r"ne reconnaît pas en tant que commande interne ou externe",
    r"не является внутренней или внешней командой",
)

_INSTALLATION_PATTERNS = NOT_FOUND_PATTERNS + _compile(
    r"\bENOENT\b",
    r"not found in PATH",
    r"is not installed",
    r"executable not found",
    r"exit code\s*9009",
)
_FILE_ACCESS_PATTERNS = _compile(
    r"file not found",
    r"no such file or directory.*\.(txt|md)\b",
    r"ENOENT.*file.*\.(txt|md)\b",
    r"cannot read file",
    r"cannot write file",
    r"ENOENT.*open.*'",
)
_PERMISSION_PATTERNS = _compile(
    r"\bEACCES\b",
    r"permission denied",
    r"access denied",
    r"insufficient permissions",
    r"not authorized",
)
_TIMEOUT_PATTERNS = _compile(
    r"timeout",
    r"timed out",
)
_AUTH_PATTERNS = _compile(
    r"authentication failed",
    r"invalid api key",
    r"unauthorized",
    r"\b401\b",
    r"\b403\b",
    r"invalid credentials",
)
_RATE_LIMIT_PATTERNS = _compile(
    r"rate limit",
    r"too many requests",
    r"\b429\b",
    r"quota exceeded",
    r"throttled",
)
_NETWORK_PATTERNS = _compile(
    r"network error",
    r"connection failed",
    r"connection reset",
    r"\bECONNREFUSED\b",
    r"\bENOTFOUND\b",
    r"\bETIMEDOUT\b",
    r"could not resolve host",
)
_CONFIGURATION_PATTERNS = _compile(
    r"invalid configuration",
    r"config error",
    r"invalid option",
    r"unknown flag",
    r"unexpected argument",
    r"invalid argument",
)

# Ordered most-specific first; installation is last because its phrases
# ("no such file or directory") also appear in file-access failures.
_RULES: tuple[tuple[ErrorKind, tuple[re.Pattern[str], ...]], ...] = (
    (ErrorKind.FILE_ACCESS_ERROR, _FILE_ACCESS_PATTERNS),
    (ErrorKind.PERMISSION_DENIED, _PERMISSION_PATTERNS),
    (ErrorKind.TIMEOUT, _TIMEOUT_PATTERNS),
    (ErrorKind.AUTH_FAILED, _AUTH_PATTERNS),
    (ErrorKind.RATE_LIMITED, _RATE_LIMIT_PATTERNS),
    (ErrorKind.NETWORK_ERROR, _NETWORK_PATTERNS),
    (ErrorKind.CONFIGURATION_ERROR, _CONFIGURATION_PATTERNS),
    (ErrorKind.INSTALLATION_MISSING, _INSTALLATION_PATTERNS),
)

# Hints that are trusted over message patterns.
_AUTHORITATIVE_HINTS = FATAL_KINDS | {ErrorKind.TIMEOUT}


@dataclass(frozen=True)
class _KindTemplate:
    severity: Severity
    is_retryable: bool
    message: str
    remediation: tuple[str, ...]


_TEMPLATES: dict[ErrorKind, _KindTemplate] = {
    ErrorKind.INSTALLATION_MISSING: _KindTemplate(
        Severity.CRITICAL, False,
        "Codex CLI is not installed or not found in PATH",
        (
            "Install Codex CLI using the official installer",
            "Ensure Codex CLI is added to your system PATH",
            "Restart the host application after installation",
            'Verify installation by running "codex --version" in a terminal',
        ),
    ),
    ErrorKind.VERSION_INCOMPATIBLE: _KindTemplate(
        Severity.HIGH, False,
        "Installed Codex CLI version is not supported",
        (
            "Upgrade Codex CLI to the minimum supported version",
            'Verify the upgrade by running "codex --version"',
            "Restart the host application after upgrading",
        ),
    ),
    ErrorKind.PERMISSION_DENIED: _KindTemplate(
        Severity.HIGH, False,
        "Permission denied when trying to execute Codex CLI",
        (
            "Check file permissions for the Codex CLI executable",
            "Run the host application with appropriate permissions",
            "Ensure your user account has execute permissions",
            'Try running "chmod +x $(which codex)" in a terminal',
        ),
    ),
    ErrorKind.TIMEOUT: _KindTemplate(
        Severity.MEDIUM, True,
        "Codex CLI operation timed out",
        (
            "Check your internet connection",
            "Try with a simpler prompt",
            "Increase the timeout in settings",
            "Check if the Codex service is experiencing issues",
        ),
    ),
    ErrorKind.AUTH_FAILED: _KindTemplate(
        Severity.HIGH, False,
        "Authentication failed with Codex service",
        (
            "Check your API key configuration",
            "Verify your account is active",
            "Ensure you have sufficient credits or quota",
            'Try logging in again with "codex login"',
        ),
    ),
    ErrorKind.RATE_LIMITED: _KindTemplate(
        Severity.MEDIUM, True,
        "Rate limit exceeded for Codex API",
        (
            "Wait a few minutes before retrying",
            "Check your API usage limits",
            "Consider upgrading your plan if needed",
            "Reduce the frequency of requests",
        ),
    ),
    ErrorKind.NETWORK_ERROR: _KindTemplate(
        Severity.MEDIUM, True,
        "Network connection error",
        (
            "Check your internet connection",
            "Verify firewall settings allow Codex CLI",
            "Try using a different network",
            "Check if proxy settings are configured correctly",
        ),
    ),
    ErrorKind.FILE_ACCESS_ERROR: _KindTemplate(
        Severity.MEDIUM, True,
        "File access error occurred",
        (
            "Check file permissions in the workspace",
            "Ensure the file path exists",
            "Verify disk space is available",
            "Close any applications that might be locking the file",
        ),
    ),
    ErrorKind.CONFIGURATION_ERROR: _KindTemplate(
        Severity.HIGH, False,
        "Configuration error detected",
        (
            "Check Codex CLI configuration settings",
            "Verify all required options are set",
            "Reset configuration to defaults if needed",
            "Check for typos in configuration values",
        ),
    ),
    ErrorKind.EXECUTION_FAILED: _KindTemplate(
        Severity.MEDIUM, True,
        "Codex CLI exited with an error",
        (
            "Review the CLI output for the failing step",
            "Try the operation again",
            "Run the same prompt in a terminal to reproduce",
        ),
    ),
    ErrorKind.UNKNOWN: _KindTemplate(
        Severity.MEDIUM, True,
        "Unexpected error",
        (
            "Try the operation again",
            "Check the log output for more details",
            "Restart the host application if the problem persists",
            "Report the issue if it continues to occur",
        ),
    ),
}


def _first_match(
    text: str, patterns: tuple[re.Pattern[str], ...],
) -> str | None:
    for pattern in patterns:
        if pattern.search(text):
            return pattern.pattern
    return None


def is_mojibake_not_found(text: str, tool_name: str, platform: str) -> bool:
    """Heuristic for garbled localized "not found" output on Windows."""
    if platform != "win32":
        return False
    if text.count(_REPLACEMENT_CHAR) < MOJIBAKE_THRESHOLD:
        return False
    return tool_name.lower() in text.lower()


def is_not_found_exit_code(exit_code: int | None, platform: str) -> bool:
    if exit_code == NOT_FOUND_EXIT_CODE_POSIX:
        return True
    return platform == "win32" and exit_code == NOT_FOUND_EXIT_CODE_CMD


def looks_like_not_found(
    exit_code: int | None,
    output: str,
    *,
    platform: str,
    tool_name: str = "codex",
) -> bool:
    """Exit-code and output heuristics for "the tool does not exist"."""
    if is_not_found_exit_code(exit_code, platform):
        return True
    if _first_match(output, NOT_FOUND_PATTERNS) is not None:
        return True
    return is_mojibake_not_found(output, tool_name, platform)


def build_classified(
    kind: ErrorKind,
    *,
    detail: str = "",
    matched_pattern: str | None = None,
    context: Mapping[str, Any] | None = None,
) -> ClassifiedError:
    """Construct the record for *kind* from its fixed template."""
    template = _TEMPLATES[kind]
    message = template.message
    if kind == ErrorKind.UNKNOWN and detail:
        message = f"{message}: {detail}"
    return ClassifiedError(
        kind=kind,
        severity=template.severity,
        is_retryable=template.is_retryable and kind not in FATAL_KINDS,
        message=message,
        remediation=template.remediation,
        detail=detail,
        matched_pattern=matched_pattern,
        context=dict(context or {}),
    )


def classify(
    message: str,
    exit_code: int | None = None,
    platform: str | None = None,
    context: Mapping[str, Any] | None = None,
    *,
    tool_name: str = "codex",
) -> ClassifiedError:
    """Map a raw failure into a ClassifiedError. Never raises.

    ``context["kind"]`` may carry an ErrorKind hint from the raising site.
    Installation, version, permission and timeout hints are trusted as-is;
    other hints (execution failed) only replace the UNKNOWN fallback.
    """
    current_platform = platform or sys.platform
    text = message or ""
    hint = _coerce_kind((context or {}).get("kind"))

    if hint in _AUTHORITATIVE_HINTS:
        return build_classified(hint, detail=text, matched_pattern="hint", context=context)

    if is_not_found_exit_code(exit_code, current_platform):
        return build_classified(
            ErrorKind.INSTALLATION_MISSING,
            detail=text,
            matched_pattern=f"exit_code={exit_code}",
            context=context,
        )

    for kind, patterns in _RULES:
        pattern = _first_match(text, patterns)
        if pattern is not None:
            logger.debug("classify: %s matched %r", kind.value, pattern)
            return build_classified(
                kind, detail=text, matched_pattern=pattern, context=context,
            )

    if is_mojibake_not_found(text, tool_name, current_platform):
        return build_classified(
            ErrorKind.INSTALLATION_MISSING,
            detail=text,
            matched_pattern="mojibake",
            context=context,
        )

    if hint is not None:
        return build_classified(hint, detail=text, matched_pattern="hint", context=context)

    return build_classified(ErrorKind.UNKNOWN, detail=text, context=context)


def classify_exception(
    error: BaseException,
    platform: str | None = None,
    context: Mapping[str, Any] | None = None,
    *,
    tool_name: str = "codex",
) -> ClassifiedError:
    """Classify an exception, honoring ``kind``/``exit_code`` attributes."""
    merged: dict[str, Any] = dict(context or {})
    kind = getattr(error, "kind", None)
    if kind is not None and "kind" not in merged:
        merged["kind"] = kind
    exit_code = getattr(error, "exit_code", None)
    if isinstance(exit_code, int):
        merged.setdefault("exit_code", exit_code)
    return classify(
        str(error) or type(error).__name__,
        exit_code=exit_code if isinstance(exit_code, int) else None,
        platform=platform,
        context=merged,
        tool_name=tool_name,
    )


def _coerce_kind(value: Any) -> ErrorKind | None:
    if value is None or isinstance(value, ErrorKind):
        return value
    try:
        return ErrorKind(value)
    except ValueError:
        return None
