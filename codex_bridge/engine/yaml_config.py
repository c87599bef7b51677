"""YAML settings file loader.

Example:
    codex:
      tool_path: /usr/local/bin/codex
      default_approval_mode: auto-edit
      default_model: gpt-5
      timeout: 60
      terminal_startup_delay: 1.0
      shell_override_path: /bin/zsh
      min_version: 0.28.0
      log_level: DEBUG

Only the ``codex`` section is read. Keys may use snake_case or the
camelCase spelling (``codexPath``, ``defaultApprovalMode`` ...).
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_KEY_ALIASES = {
    "codexPath": "tool_path",
    "codex_path": "tool_path",
    "toolPath": "tool_path",
    "defaultApprovalMode": "default_approval_mode",
    "approval_mode": "default_approval_mode",
    "defaultModel": "default_model",
    "model": "default_model",
    "terminalDelay": "terminal_startup_delay",
    "terminal_delay": "terminal_startup_delay",
    "shellOverridePath": "shell_override_path",
    "shell": "shell_override_path",
    "minVersion": "min_version",
    "logLevel": "log_level",
}

SETTINGS_KEYS = frozenset({
    "tool_path",
    "default_approval_mode",
    "default_model",
    "timeout",
    "terminal_startup_delay",
    "shell_override_path",
    "min_version",
    "log_level",
})


def load_settings_file(path: str | Path) -> dict[str, Any]:
    """Read the ``codex`` section of a YAML file as settings overrides.

    Unknown keys are logged and ignored. Missing files and parse errors
    propagate to the caller.
    """
    path = Path(path).expanduser()
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        logger.info("load_settings_file: parsed %s", path)
    except FileNotFoundError:
        logger.error("load_settings_file: file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_settings_file: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    section = raw.get("codex") or {}
    if not isinstance(section, dict):
        raise ValueError(f"{path}: 'codex' section must be a mapping")

    overrides: dict[str, Any] = {}
    for key, value in section.items():
        name = _KEY_ALIASES.get(key, key)
        if name not in SETTINGS_KEYS:
            logger.warning("load_settings_file: ignoring unknown key %r in %s", key, path)
            continue
        overrides[name] = value
    return overrides
