"""Session backend interface for hosting delegated agents."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class SessionLaunchRequest:
    """Inputs required to start one independently-lived agent session."""

    session_name: str
    command: str
    cwd: Path
    log_path: Path | None = None


@dataclass(slots=True)
class SessionInfo:
    """Live session entry as reported by the multiplexer."""

    name: str
    attached: bool
    created: str


class SessionBackend(Protocol):
    """Protocol implemented by session hosts."""

    def is_available(self) -> bool:
        """Whether the multiplexer binary can be executed."""

    def launch(self, request: SessionLaunchRequest) -> str:
        """Start a detached session and return its handle."""

    def session_exists(self, session_name: str) -> bool:
        """Liveness check for a session handle."""

    def send_text(self, session_name: str, text: str) -> bool:
        """Type text into the session followed by Enter."""

    def capture(self, session_name: str, *, lines: int) -> str | None:
        """Last ``lines`` lines of the session pane, or ``None``."""

    def capture_full(self, session_name: str) -> str | None:
        """Whole scrollback of the session pane, or ``None``."""

    def kill(self, session_name: str) -> bool:
        """Terminate the session; ``False`` if it could not be killed."""

    def list_sessions(self) -> list[SessionInfo]:
        """Sessions owned by this tool."""

    def attach_command(self, session_name: str) -> str:
        """Shell command a human runs to attach interactively."""
