"""Session backend implementations."""

from codex_agent.backend.base import SessionBackend, SessionInfo, SessionLaunchRequest
from codex_agent.backend.tmux_backend import (
    EXIT_MARKER_PREFIX,
    TmuxSessionBackend,
    build_agent_command,
    session_name_for,
)

__all__ = [
    "EXIT_MARKER_PREFIX",
    "SessionBackend",
    "SessionInfo",
    "SessionLaunchRequest",
    "TmuxSessionBackend",
    "build_agent_command",
    "session_name_for",
]
