"""Codex CLI installation and version compatibility probe."""
from __future__ import annotations

import logging
import os
import re
import sys

from .command_builder import build_version_args
from .error_classifier import looks_like_not_found
from .guidance import (
    installation_guidance,
    permission_guidance,
    troubleshooting_guidance,
    version_upgrade_guidance,
)
from .models import AvailabilityResult
from .process_executor import ProcessExecutor

logger = logging.getLogger(__name__)

DEFAULT_MIN_VERSION = "0.28.0"
DEFAULT_PROBE_TIMEOUT = 10.0

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")

NOT_INSTALLED_MESSAGE = "Codex CLI is not installed or not found in PATH"
PERMISSION_MESSAGE = "Permission denied when trying to execute Codex CLI"


def parse_version(text: str) -> str | None:
    """First ``X.Y.Z`` in *text*, or None."""
    match = _VERSION_RE.search(text or "")
    return match.group(0) if match else None


def _version_tuple(version: str) -> tuple[int, ...]:
    parts = []
    for piece in version.strip().lstrip("vV").split("."):
        digits = re.match(r"\d+", piece)
        parts.append(int(digits.group(0)) if digits else 0)
    return tuple(parts)


def compare_versions(left: str, right: str) -> int:
    """-1, 0 or 1, comparing numerically component by component.

    Missing components count as 0, so ``1.2`` equals ``1.2.0``.
    """
    a, b = _version_tuple(left), _version_tuple(right)
    width = max(len(a), len(b))
    a += (0,) * (width - len(a))
    b += (0,) * (width - len(b))
    return (a > b) - (a < b)


def is_version_compatible(version: str, minimum: str) -> bool:
    return compare_versions(version, minimum) >= 0


def tool_name_of(tool_path: str) -> str:
    """Bare command name: ``C:\\npm\\codex.cmd`` and ``/usr/bin/codex`` both give ``codex``."""
    base = re.split(r"[\\/]", tool_path.strip())[-1]
    stem, ext = os.path.splitext(base)
    return stem if ext else base or "codex"


class AvailabilityChecker:
    """Probes ``<tool> --version``. Results are never cached."""

    def __init__(
        self,
        executor: ProcessExecutor,
        *,
        tool_path: str = "codex",
        min_version: str = DEFAULT_MIN_VERSION,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        platform: str | None = None,
    ) -> None:
        self._executor = executor
        self.tool_path = tool_path
        self.min_version = min_version
        self.timeout = timeout
        self._platform = platform or sys.platform

    async def check(self) -> AvailabilityResult:
        """Run the probe. Never raises; failures are described in the result."""
        try:
            result = await self._executor.run(
                self.tool_path, build_version_args(), timeout=self.timeout,
            )
        except Exception as exc:
            return self._from_exception(exc)

        output = "\n".join(part for part in (result.stdout, result.stderr) if part)

        if result.exit_code != 0:
            if looks_like_not_found(
                result.exit_code, output,
                platform=self._platform, tool_name=tool_name_of(self.tool_path),
            ):
                logger.warning("%s (exit code %d)", NOT_INSTALLED_MESSAGE, result.exit_code)
                return AvailabilityResult(
                    error_message=NOT_INSTALLED_MESSAGE,
                    remediation=installation_guidance(self.tool_path),
                )
            message = f"Codex CLI command failed with exit code {result.exit_code}"
            if result.stderr:
                message = f"{message}: {result.stderr}"
            logger.warning(
                "Codex CLI probe failed with exit code %d: %s",
                result.exit_code, result.stderr,
            )
            return AvailabilityResult(
                error_message=message,
                remediation=troubleshooting_guidance(),
            )

        version = parse_version(output)
        if version is None:
            logger.warning("Unable to parse Codex CLI version from %r", output[:200])
            return AvailabilityResult(
                is_installed=True,
                error_message="Unable to parse Codex CLI version from output",
                remediation=installation_guidance(self.tool_path),
            )

        if not is_version_compatible(version, self.min_version):
            message = (
                f"Codex CLI version {version} is not compatible. "
                f"Minimum required version is {self.min_version}"
            )
            logger.warning(
                "Codex CLI version %s is older than required %s",
                version, self.min_version,
            )
            return AvailabilityResult(
                is_installed=True,
                version=version,
                error_message=message,
                remediation=version_upgrade_guidance(version, self.min_version),
            )

        logger.info("Codex CLI v%s is available and compatible", version)
        return AvailabilityResult(
            is_available=True,
            is_installed=True,
            version=version,
            is_compatible=True,
        )

    async def is_ready(self) -> bool:
        return (await self.check()).is_available

    def _from_exception(self, exc: Exception) -> AvailabilityResult:
        text = str(exc)
        if "ENOENT" in text or "command not found" in text.lower():
            message, remediation = NOT_INSTALLED_MESSAGE, installation_guidance(self.tool_path)
        elif "EACCES" in text:
            message, remediation = PERMISSION_MESSAGE, permission_guidance(self.tool_path)
        else:
            message = f"Failed to check Codex CLI availability: {text}"
            remediation = troubleshooting_guidance()
        logger.warning("Availability probe failed: %s", text)
        return AvailabilityResult(error_message=message, remediation=remediation)
