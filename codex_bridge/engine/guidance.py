"""User-facing setup and troubleshooting texts (markdown).

The host decides how to render these; the CLI prints them through rich.
"""
from __future__ import annotations

from .models import ErrorKind

INSTALL_COMMAND = "npm install -g @openai/codex"
UPGRADE_COMMAND = "npm install -g @openai/codex@latest"


def installation_guidance(tool_path: str = "codex") -> str:
    return f"""# Codex CLI Installation

`{tool_path}` could not be found or did not report a version.

## Install

```bash
{INSTALL_COMMAND}
```

## Verify

```bash
{tool_path} --version
{tool_path} login
```

## Configure codex-bridge

- `CODEX_BRIDGE_TOOL_PATH` or `codex.tool_path` in the settings file:
  path to the executable (default `codex`)
- `CODEX_BRIDGE_APPROVAL_MODE`: interactive, auto-edit, full-auto or yolo
- `CODEX_BRIDGE_MODEL`: model passed with `-m` (default `gpt-5`)
- `CODEX_BRIDGE_TIMEOUT`: per-invocation timeout in seconds

## Still failing?

1. Make sure the install directory is on your `PATH`
2. Make sure the executable has execute permission
3. Check `~/.codex-bridge/logs/codex-bridge.log` for the raw output
"""


def version_upgrade_guidance(current_version: str | None, required_version: str) -> str:
    current = current_version or "unknown"
    return f"""# Codex CLI Update Required

The installed Codex CLI ({current}) is older than the minimum supported
version {required_version}.

## Upgrade

```bash
{UPGRADE_COMMAND}
```

If you installed a standalone binary, replace it with a newer release.

## Verify

```bash
codex --version
```

The output should show {required_version} or later.
"""


def permission_guidance(tool_path: str = "codex") -> str:
    return f"""# Codex CLI Permission Problem

The operating system refused to execute `{tool_path}`.

## Inspect

```bash
command -v {tool_path}
ls -la "$(command -v {tool_path})"
```

## Fix

On macOS/Linux:

```bash
chmod +x "$(command -v {tool_path})"
```

On Windows, run the terminal as Administrator once and check antivirus
exclusions for the executable.

If the tool was installed globally with npm under a root-owned prefix,
reinstall it under a prefix your user owns.
"""


def troubleshooting_guidance() -> str:
    return """# Codex CLI Troubleshooting

## Command not found
- Check the install: `npm ls -g @openai/codex`
- Check `PATH`: `echo $PATH`

## Authentication
- Log in again: `codex login`

## Permission denied
- `chmod +x "$(command -v codex)"`

## Incompatible version
- Upgrade the CLI and confirm with `codex --version`

## Diagnostics

```bash
uname -a
codex --version
codex --help
command -v codex
env | grep -i codex
```

When reporting a problem include the OS, the CLI version, the complete
error output and the steps that reproduce it.
"""


def system_requirements() -> str:
    return """# Codex CLI System Requirements

## Operating system
- Windows 10 or later (PowerShell or Command Prompt)
- macOS 12 or later
- A current Linux distribution

## Runtime
- Node.js 18 or later with npm for the npm install
- Network access for authentication and model calls

## Account
- An OpenAI account or API key usable by `codex login`
"""


def guidance_for_kind(kind: ErrorKind, *, tool_path: str = "codex",
                      min_version: str = "0.28.0") -> str:
    """Pick the guidance text that best fits a classified error kind."""
    if kind == ErrorKind.INSTALLATION_MISSING:
        return installation_guidance(tool_path)
    if kind == ErrorKind.VERSION_INCOMPATIBLE:
        return version_upgrade_guidance(None, min_version)
    if kind == ErrorKind.PERMISSION_DENIED:
        return permission_guidance(tool_path)
    return troubleshooting_guidance()
