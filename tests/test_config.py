"""Tests for settings loading and ConfigStore."""
from __future__ import annotations

import pytest
import yaml

from codex_bridge.engine.config import BridgeSettings, ConfigStore
from codex_bridge.engine.models import ApprovalMode, InvocationOptions
from codex_bridge.engine.yaml_config import load_settings_file


def test_defaults():
    settings = BridgeSettings.from_env({})
    assert settings.tool_path == "codex"
    assert settings.default_approval_mode == ApprovalMode.INTERACTIVE
    assert settings.default_model == "gpt-5"
    assert settings.timeout == 30.0
    assert settings.min_version == "0.28.0"


def test_from_env_overrides():
    settings = BridgeSettings.from_env({
        "CODEX_BRIDGE_TOOL_PATH": "/opt/codex",
        "CODEX_BRIDGE_APPROVAL_MODE": "full-auto",
        "CODEX_BRIDGE_TIMEOUT": "5",
        "CODEX_BRIDGE_SHELL": "inherit",
        "CODEX_BRIDGE_LOG_LEVEL": "debug",
        "UNRELATED": "x",
    })
    assert settings.tool_path == "/opt/codex"
    assert settings.default_approval_mode == ApprovalMode.FULL_AUTO
    assert settings.timeout == 5.0
    assert settings.shell_override_path is None
    assert settings.log_level == "DEBUG"


def test_invalid_values_keep_defaults():
    settings = BridgeSettings.from_env({
        "CODEX_BRIDGE_TIMEOUT": "soon",
        "CODEX_BRIDGE_APPROVAL_MODE": "reckless",
    })
    assert settings.timeout == 30.0
    assert settings.default_approval_mode == ApprovalMode.INTERACTIVE


def test_invocation_config_merges_options():
    settings = BridgeSettings(default_model="gpt-5", timeout=30.0)
    config = settings.invocation_config(InvocationOptions(
        approval_mode="yolo", model="m1", working_directory="/w", timeout=2.0,
    ))
    assert config.approval_mode == ApprovalMode.YOLO
    assert config.model == "m1"
    assert config.working_directory == "/w"
    assert config.timeout == 2.0

    fallback = settings.invocation_config()
    assert fallback.model == "gpt-5"
    assert fallback.approval_mode == ApprovalMode.INTERACTIVE
    assert fallback.timeout == 30.0


def test_zero_timeout_disables_guard():
    assert BridgeSettings(timeout=0).invocation_config().timeout is None


def test_load_settings_file_reads_codex_section(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({
        "codex": {
            "codexPath": "/usr/bin/codex",
            "defaultApprovalMode": "auto-edit",
            "timeout": 12,
            "bogus": True,
        },
        "other": {"ignored": 1},
    }))
    assert load_settings_file(path) == {
        "tool_path": "/usr/bin/codex",
        "default_approval_mode": "auto-edit",
        "timeout": 12,
    }


def test_load_settings_file_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings_file(tmp_path / "missing.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("codex: [unclosed\n")
    with pytest.raises(yaml.YAMLError):
        load_settings_file(broken)

    listed = tmp_path / "list.yaml"
    listed.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_settings_file(listed)


def test_store_precedence_and_reload(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("codex:\n  default_model: from-file\n")
    env = {"CODEX_BRIDGE_MODEL": "from-env", "CODEX_BRIDGE_TOOL_PATH": "/env/codex"}
    store = ConfigStore(path, environ=env)

    first = store.snapshot()
    assert first.default_model == "from-file"
    assert first.tool_path == "/env/codex"
    assert store.generation == 0

    path.write_text("codex:\n  default_model: changed\n")
    assert store.snapshot().default_model == "from-file"
    reloaded = store.reload()
    assert reloaded.default_model == "changed"
    assert store.generation == 1
    assert first.default_model == "from-file"


def test_store_overrides_survive_reload(tmp_path):
    store = ConfigStore(tmp_path / "absent.yaml", environ={})
    store.override(default_approval_mode=ApprovalMode.YOLO)
    assert store.snapshot().default_approval_mode == ApprovalMode.YOLO
    assert store.reload().default_approval_mode == ApprovalMode.YOLO
    assert store.generation == 2
