"""Tests for error classification."""
from __future__ import annotations

import pytest

from codex_bridge.engine.error_classifier import (
    build_classified,
    classify,
    classify_exception,
    looks_like_not_found,
)
from codex_bridge.engine.errors import (
    CliExecutionError,
    CliUnavailableError,
    OperationTimeoutError,
    ProcessSpawnError,
    ProcessTimeoutError,
    PromptFileError,
)
from codex_bridge.engine.models import (
    FATAL_KINDS,
    AvailabilityResult,
    ErrorKind,
    Severity,
)


@pytest.mark.parametrize(
    ("message", "kind"),
    [
        ("bash: codex: command not found", ErrorKind.INSTALLATION_MISSING),
        ("'codex' is not recognized as an internal or external command,", ErrorKind.INSTALLATION_MISSING),
        ("The term 'codex' is not recognized as the name of a cmdlet", ErrorKind.INSTALLATION_MISSING),
        ("'codex' は、内部コマンドまたは外部コマンド、操作可能なプログラムまたはバッチ ファイルとして認識されていません。", ErrorKind.INSTALLATION_MISSING),
        ("'codex' no se reconoce como un comando interno o externo", ErrorKind.INSTALLATION_MISSING),
        ("'codex' não é reconhecido como um comando interno ou externo", ErrorKind.INSTALLATION_MISSING),
        ("'codex' n'est pas reconnu... ne reconnaît pas en tant que commande interne ou externe", ErrorKind.INSTALLATION_MISSING),
        ("\"codex\" не является внутренней или внешней командой", ErrorKind.INSTALLATION_MISSING),
        ("spawn codex EACCES", ErrorKind.PERMISSION_DENIED),
        ("Permission denied", ErrorKind.PERMISSION_DENIED),
        ("request timed out", ErrorKind.TIMEOUT),
        ("Error: invalid API key", ErrorKind.AUTH_FAILED),
        ("HTTP 401 from upstream", ErrorKind.AUTH_FAILED),
        ("429 Too Many Requests", ErrorKind.RATE_LIMITED),
        ("quota exceeded for this month", ErrorKind.RATE_LIMITED),
        ("connect ECONNREFUSED 127.0.0.1:443", ErrorKind.NETWORK_ERROR),
        ("error: unknown flag --frobnicate", ErrorKind.CONFIGURATION_ERROR),
        ("cannot write file /tmp/x.md", ErrorKind.FILE_ACCESS_ERROR),
        ("ENOENT: no such file or directory, open '/tmp/prompt.txt'", ErrorKind.FILE_ACCESS_ERROR),
        ("something odd happened", ErrorKind.UNKNOWN),
    ],
)
def test_classify_patterns(message, kind):
    assert classify(message, platform="linux").kind == kind


def test_file_access_wins_over_installation():
    classified = classify("no such file or directory: /tmp/codex-prompt-1.md", platform="linux")
    assert classified.kind == ErrorKind.FILE_ACCESS_ERROR
    assert classified.is_retryable


def test_status_codes_need_word_boundaries():
    assert classify("build 14013 finished with errors", platform="linux").kind == ErrorKind.UNKNOWN


def test_exit_code_127_is_installation_missing_everywhere():
    for platform in ("linux", "darwin", "win32"):
        classified = classify("", exit_code=127, platform=platform)
        assert classified.kind == ErrorKind.INSTALLATION_MISSING
        assert classified.severity == Severity.CRITICAL


def test_exit_code_9009_only_on_windows():
    assert classify("", exit_code=9009, platform="win32").kind == ErrorKind.INSTALLATION_MISSING
    assert classify("", exit_code=9009, platform="linux").kind == ErrorKind.UNKNOWN


def test_mojibake_fallback_only_on_windows():
    garbled = "'CODEX' " + "�" * 6 + " ��"
    assert classify(garbled, platform="win32").kind == ErrorKind.INSTALLATION_MISSING
    assert classify(garbled, platform="linux").kind == ErrorKind.UNKNOWN
    few = "codex " + "�" * 4
    assert classify(few, platform="win32").kind == ErrorKind.UNKNOWN
    no_name = "�" * 10
    assert classify(no_name, platform="win32").kind == ErrorKind.UNKNOWN


def test_unknown_is_medium_and_retryable():
    classified = classify("weird", platform="linux")
    assert classified.severity == Severity.MEDIUM
    assert classified.is_retryable
    assert classified.remediation


@pytest.mark.parametrize("kind", sorted(FATAL_KINDS, key=lambda k: k.value))
@pytest.mark.parametrize("message", ["", "timeout", "rate limit", "network error"])
def test_fatal_kinds_never_retryable(kind, message):
    classified = classify(message, platform="linux", context={"kind": kind})
    assert classified.kind == kind
    assert classified.is_retryable is False


def test_fatal_kinds_from_patterns_never_retryable():
    for message in ("command not found", "EACCES"):
        assert classify(message, platform="linux").is_retryable is False


def test_execution_failed_hint_is_a_fallback():
    hinted = classify("boom", platform="linux", context={"kind": ErrorKind.EXECUTION_FAILED})
    assert hinted.kind == ErrorKind.EXECUTION_FAILED
    assert hinted.is_retryable
    overridden = classify(
        "429 Too Many Requests", platform="linux",
        context={"kind": ErrorKind.EXECUTION_FAILED},
    )
    assert overridden.kind == ErrorKind.RATE_LIMITED


def test_unknown_hint_string_is_ignored():
    assert classify("weird", platform="linux", context={"kind": "nope"}).kind == ErrorKind.UNKNOWN


def test_classify_exception_uses_kind_and_exit_code():
    unavailable = CliUnavailableError(AvailabilityResult(
        is_installed=True, error_message="too old",
    ))
    assert classify_exception(unavailable, platform="linux").kind == ErrorKind.VERSION_INCOMPATIBLE

    missing = CliUnavailableError(AvailabilityResult(error_message="gone"))
    assert classify_exception(missing, platform="linux").kind == ErrorKind.INSTALLATION_MISSING

    failed = classify_exception(CliExecutionError(2, "kaput"), platform="linux")
    assert failed.kind == ErrorKind.EXECUTION_FAILED
    assert failed.context["exit_code"] == 2

    not_found = classify_exception(CliExecutionError(127, ""), platform="linux")
    assert not_found.kind == ErrorKind.INSTALLATION_MISSING


def test_classify_exception_timeouts_and_spawn_errors():
    assert classify_exception(ProcessTimeoutError(0.1), platform="linux").kind == ErrorKind.TIMEOUT
    assert classify_exception(OperationTimeoutError(1.0), platform="linux").kind == ErrorKind.TIMEOUT

    enoent = ProcessSpawnError("codex", "No such file or directory", "ENOENT")
    assert classify_exception(enoent, platform="linux").kind == ErrorKind.INSTALLATION_MISSING

    eacces = ProcessSpawnError("codex", "Permission denied", "EACCES")
    assert classify_exception(eacces, platform="linux").kind == ErrorKind.PERMISSION_DENIED

    prompt = PromptFileError("/tmp/p.md", "Permission denied")
    assert classify_exception(prompt, platform="linux").kind == ErrorKind.FILE_ACCESS_ERROR


def test_classify_exception_plain_exception():
    classified = classify_exception(RuntimeError("network error while talking"), platform="linux")
    assert classified.kind == ErrorKind.NETWORK_ERROR
    assert classified.detail == "network error while talking"


def test_looks_like_not_found():
    assert looks_like_not_found(127, "", platform="linux")
    assert looks_like_not_found(9009, "", platform="win32")
    assert not looks_like_not_found(9009, "", platform="linux")
    assert looks_like_not_found(1, "sh: codex: command not found", platform="linux")
    assert not looks_like_not_found(1, "error: bad flag", platform="linux")


def test_format_details_lists_numbered_steps():
    classified = build_classified(
        ErrorKind.RATE_LIMITED, detail="429", context={"operation": "x"},
    )
    details = classified.format_details()
    assert "**Type:** rate_limited" in details
    assert "1. Wait a few minutes before retrying" in details
    assert "- operation: x" in details
    assert classified.format_user_message().endswith("This operation can be retried.")
