"""Availability checks for the external tools a job depends on."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass

from codex_agent.backend.tmux_backend import TMUX_INSTALL_HINT

CODEX_INSTALL_HINT = "Install with: npm install -g @openai/codex"

_PROBE_TIMEOUT_SECONDS = 10
_PREVIEW_CHARS = 200


@dataclass(slots=True)
class ToolCheck:
    """Result of probing one external executable."""

    name: str
    ok: bool
    version: str | None
    error: str | None
    hint: str


def run_health_checks(*, tmux_executable: str = "tmux", agent_executable: str = "codex") -> list[ToolCheck]:
    """Probe the multiplexer and the agent CLI, in that order."""

    return [
        _check_tool("tmux", tmux_executable, ("-V",), TMUX_INSTALL_HINT),
        _check_tool("codex", agent_executable, ("--version",), CODEX_INSTALL_HINT),
    ]


def _check_tool(name: str, executable: str, version_args: tuple[str, ...], hint: str) -> ToolCheck:
    resolved = shutil.which(executable)
    if resolved is None:
        return ToolCheck(
            name=name,
            ok=False,
            version=None,
            error=f"{name} not found in PATH: {executable}",
            hint=hint,
        )
    try:
        completed = subprocess.run(  # noqa: S603
            [resolved, *version_args],
            check=False,
            capture_output=True,
            text=True,
            timeout=_PROBE_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired:
        return ToolCheck(name=name, ok=False, version=None, error="Probe timed out.", hint=hint)
    except OSError as error:
        return ToolCheck(
            name=name,
            ok=False,
            version=None,
            error=f"Probe failed to start: {error}",
            hint=hint,
        )
    if completed.returncode != 0:
        return ToolCheck(
            name=name,
            ok=False,
            version=None,
            error=f"Probe exited with code {completed.returncode}: {_truncate(completed.stderr)}",
            hint=hint,
        )
    return ToolCheck(
        name=name,
        ok=True,
        version=_truncate(completed.stdout) or None,
        error=None,
        hint=hint,
    )


def _truncate(value: str) -> str:
    stripped = value.strip()
    if len(stripped) <= _PREVIEW_CHARS:
        return stripped
    return f"{stripped[:_PREVIEW_CHARS]}..."
