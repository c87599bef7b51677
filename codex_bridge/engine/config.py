"""Runtime settings for the bridge.

BridgeSettings is an immutable snapshot. ConfigStore owns the current
snapshot and rebuilds it on reload() from, lowest precedence first:
defaults, CODEX_BRIDGE_* environment variables, the YAML settings file,
and runtime overrides such as set_approval_mode().
"""
from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .command_builder import normalize_shell_override
from .models import ApprovalMode, InvocationConfig, InvocationOptions
from .yaml_config import load_settings_file

logger = logging.getLogger(__name__)

ENV_PREFIX = "CODEX_BRIDGE_"
DEFAULT_MIN_VERSION = "0.28.0"
DEFAULT_SETTINGS_PATH = Path.home() / ".codex-bridge" / "settings.yaml"


@dataclass(frozen=True)
class BridgeSettings:
    """Flat settings snapshot. Durations are seconds."""

    tool_path: str = "codex"
    default_approval_mode: ApprovalMode = ApprovalMode.INTERACTIVE
    default_model: str | None = "gpt-5"
    # Per-invocation timeout. 0 or negative disables it.
    timeout: float = 30.0
    terminal_startup_delay: float = 1.0
    shell_override_path: str | None = None
    min_version: str = DEFAULT_MIN_VERSION
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BridgeSettings:
        """Load settings from CODEX_BRIDGE_* environment variables."""
        env = os.environ if environ is None else environ
        bridge_vars = {k: v for k, v in env.items() if k.startswith(ENV_PREFIX)}
        if bridge_vars:
            logger.info(
                "BridgeSettings.from_env: overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(bridge_vars.items())),
            )
        else:
            logger.debug("BridgeSettings.from_env: no %s* vars set", ENV_PREFIX)

        values: dict[str, Any] = {}
        mapping = {
            "TOOL_PATH": "tool_path",
            "APPROVAL_MODE": "default_approval_mode",
            "MODEL": "default_model",
            "TIMEOUT": "timeout",
            "TERMINAL_DELAY": "terminal_startup_delay",
            "SHELL": "shell_override_path",
            "MIN_VERSION": "min_version",
            "LOG_LEVEL": "log_level",
        }
        for suffix, name in mapping.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw is not None:
                values[name] = raw
        return cls().merged(values)

    def merged(self, overrides: Mapping[str, Any]) -> BridgeSettings:
        """Return a copy with *overrides* applied and coerced."""
        changes: dict[str, Any] = {}
        for name, value in overrides.items():
            try:
                changes[name] = _coerce(name, value, getattr(self, name))
            except (TypeError, ValueError):
                logger.warning(
                    "Invalid value for %s: %r, keeping %r",
                    name, value, getattr(self, name),
                )
        return dataclasses.replace(self, **changes)

    def invocation_config(
        self, options: InvocationOptions | None = None,
    ) -> InvocationConfig:
        """Merge per-call options over this snapshot."""
        options = options or InvocationOptions()
        timeout = options.timeout if options.timeout is not None else self.timeout
        return InvocationConfig(
            tool_path=self.tool_path,
            approval_mode=ApprovalMode.parse(
                options.approval_mode or self.default_approval_mode
            ),
            model=options.model or self.default_model,
            working_directory=options.working_directory,
            timeout=timeout if timeout and timeout > 0 else None,
            shell_override=self.shell_override_path,
        )


def _coerce(name: str, value: Any, current: Any) -> Any:
    if name == "default_approval_mode":
        if value is None or isinstance(value, ApprovalMode):
            return ApprovalMode.parse(value)
        return ApprovalMode.parse(str(value))
    if name in {"timeout", "terminal_startup_delay"}:
        number = float(value)
        if number < 0:
            raise ValueError(f"{name} must not be negative")
        return number
    if name == "shell_override_path":
        return normalize_shell_override(None if value is None else str(value))
    if name == "default_model":
        text = "" if value is None else str(value).strip()
        return text or None
    if name == "log_level":
        return str(value).strip().upper() or current
    if value is None or not str(value).strip():
        return current
    return str(value).strip()


class ConfigStore:
    """Holds the current settings snapshot; reload() rebuilds it.

    Each reload bumps ``generation`` so callers can tell snapshots apart.
    """

    def __init__(
        self,
        settings_path: str | Path | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        initial: BridgeSettings | None = None,
    ) -> None:
        self._settings_path = Path(settings_path).expanduser() if settings_path else None
        self._environ = environ
        self._overrides: dict[str, Any] = {}
        self._generation = 0
        self._current = initial if initial is not None else self._load()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def settings_path(self) -> Path | None:
        return self._settings_path

    def snapshot(self) -> BridgeSettings:
        return self._current

    def reload(self) -> BridgeSettings:
        self._current = self._load()
        self._generation += 1
        logger.info("Settings reloaded generation=%d", self._generation)
        return self._current

    def override(self, **changes: Any) -> BridgeSettings:
        """Apply runtime overrides that survive later reloads."""
        self._overrides.update(changes)
        self._current = self._current.merged(changes)
        self._generation += 1
        return self._current

    def _load(self) -> BridgeSettings:
        settings = BridgeSettings.from_env(self._environ)
        path = self._settings_path
        if path is not None and path.exists():
            settings = settings.merged(load_settings_file(path))
        elif path is not None:
            logger.debug("Settings file %s does not exist, skipping", path)
        if self._overrides:
            settings = settings.merged(self._overrides)
        return settings
