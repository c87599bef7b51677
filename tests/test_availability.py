"""Tests for the Codex CLI availability probe."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from codex_bridge.engine import availability as availability_module
from codex_bridge.engine.availability import (
    AvailabilityChecker,
    compare_versions,
    is_version_compatible,
    parse_version,
    tool_name_of,
)
from codex_bridge.engine.errors import ProcessSpawnError, ProcessTimeoutError
from codex_bridge.engine.models import ExecutionResult


def make_checker(result=None, *, side_effect=None, min_version="1.0.0", platform="linux"):
    executor = MagicMock()
    executor.run = AsyncMock(return_value=result, side_effect=side_effect)
    checker = AvailabilityChecker(
        executor, tool_path="codex", min_version=min_version, platform=platform,
    )
    return checker, executor


@pytest.mark.parametrize(
    ("output", "compatible"),
    [("0.9.9", False), ("1.0.0", True), ("1.0.1", True), ("2.0.0", True)],
)
@pytest.mark.asyncio
async def test_compatibility_against_minimum(output, compatible):
    checker, executor = make_checker(ExecutionResult(0, f"codex-cli {output}", ""))
    result = await checker.check()

    assert result.is_installed is True
    assert result.version == output
    assert result.is_compatible is compatible
    assert result.is_available is compatible
    if not compatible:
        assert "Minimum required version is 1.0.0" in result.error_message
        assert result.remediation and "Update Required" in result.remediation
    executor.run.assert_awaited_once()
    assert executor.run.await_args.args == ("codex", ("--version",))


def test_version_comparison_is_numeric():
    assert compare_versions("1.10.0", "1.9.0") == 1
    assert compare_versions("1.9.0", "1.10.0") == -1
    assert compare_versions("1.2", "1.2.0") == 0
    assert is_version_compatible("0.28.0", "0.28.0")
    assert not is_version_compatible("0.27.9", "0.28.0")


def test_parse_version_takes_first_triple():
    assert parse_version("codex-cli 0.30.1 (build 1.2.3)") == "0.30.1"
    assert parse_version("no digits here") is None


@pytest.mark.parametrize(("exit_code", "platform"), [(127, "linux"), (9009, "win32")])
@pytest.mark.asyncio
async def test_not_found_exit_codes_skip_version_parse(monkeypatch, exit_code, platform):
    parse = MagicMock(side_effect=AssertionError("version parse attempted"))
    monkeypatch.setattr(availability_module, "parse_version", parse)
    checker, _ = make_checker(
        ExecutionResult(exit_code, "codex 9.9.9", ""), platform=platform,
    )
    result = await checker.check()

    assert result.is_installed is False
    assert result.is_available is False
    assert result.version is None
    assert result.error_message == "Codex CLI is not installed or not found in PATH"
    assert "Installation" in result.remediation
    parse.assert_not_called()


@pytest.mark.asyncio
async def test_localized_not_found_output():
    checker, _ = make_checker(ExecutionResult(
        1, "", "'codex' は、内部コマンドまたは外部コマンド、操作可能なプログラムまたはバッチ ファイルとして認識されていません。",
    ))
    result = await checker.check()
    assert result.is_installed is False
    assert "Installation" in result.remediation


@pytest.mark.asyncio
async def test_mojibake_not_found_on_windows():
    checker, _ = make_checker(
        ExecutionResult(1, "", "'codex' " + "�" * 8), platform="win32",
    )
    result = await checker.check()
    assert result.error_message == "Codex CLI is not installed or not found in PATH"


@pytest.mark.asyncio
async def test_mojibake_matches_bare_name_of_configured_path():
    executor = MagicMock()
    executor.run = AsyncMock(return_value=ExecutionResult(1, "", "'codex' " + "\ufffd" * 8))
    checker = AvailabilityChecker(
        executor, tool_path=r"C:\Users\me\AppData\Roaming\npm\codex.cmd", platform="win32",
    )
    result = await checker.check()
    assert result.error_message == "Codex CLI is not installed or not found in PATH"


def test_tool_name_of_strips_directory_and_extension():
    assert tool_name_of(r"C:\npm\codex.cmd") == "codex"
    assert tool_name_of("/usr/local/bin/codex") == "codex"
    assert tool_name_of("codex") == "codex"


@pytest.mark.asyncio
async def test_other_failure_gets_troubleshooting_guidance():
    checker, _ = make_checker(ExecutionResult(2, "", "config parse failure"))
    result = await checker.check()
    assert result.is_available is False
    assert result.error_message == (
        "Codex CLI command failed with exit code 2: config parse failure"
    )
    assert "Troubleshooting" in result.remediation


@pytest.mark.asyncio
async def test_unparseable_version():
    checker, _ = make_checker(ExecutionResult(0, "codex dev build", ""))
    result = await checker.check()
    assert result.is_installed is True
    assert result.is_available is False
    assert result.error_message == "Unable to parse Codex CLI version from output"


@pytest.mark.asyncio
async def test_spawn_enoent_routes_to_installation_guidance():
    checker, _ = make_checker(
        side_effect=ProcessSpawnError("codex", "No such file or directory", "ENOENT"),
    )
    result = await checker.check()
    assert result.is_installed is False
    assert result.error_message == "Codex CLI is not installed or not found in PATH"


@pytest.mark.asyncio
async def test_spawn_eacces_routes_to_permission_guidance():
    checker, _ = make_checker(
        side_effect=ProcessSpawnError("codex", "Permission denied", "EACCES"),
    )
    result = await checker.check()
    assert result.error_message == "Permission denied when trying to execute Codex CLI"
    assert "Permission" in result.remediation


@pytest.mark.asyncio
async def test_check_never_raises():
    checker, _ = make_checker(side_effect=ProcessTimeoutError(10.0))
    result = await checker.check()
    assert result.is_available is False
    assert result.error_message.startswith("Failed to check Codex CLI availability")
    assert await checker.is_ready() is False


@pytest.mark.asyncio
async def test_results_are_not_cached():
    checker, executor = make_checker(ExecutionResult(0, "1.2.3", ""))
    await checker.check()
    await checker.check()
    assert executor.run.await_count == 2
