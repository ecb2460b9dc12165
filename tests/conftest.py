"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from codex_agent.backend.base import SessionInfo, SessionLaunchRequest
from codex_agent.config import Settings, StorageSettings
from codex_agent.errors import SessionLaunchError
from codex_agent.jobs.service import JobService
from codex_agent.jobs.store import JobStore

_ENV_VARS = (
    "CODEX_AGENT_HOME",
    "CODEX_AGENT_JOBS_DIR",
    "CODEX_AGENT_COMMS_DIR",
    "CODEX_HOME",
    "CODEX_AGENT_MODEL",
    "CODEX_AGENT_REASONING_EFFORT",
    "CODEX_AGENT_SANDBOX",
    "CODEX_AGENT_COMMAND_TEMPLATE",
    "CODEX_AGENT_EXECUTABLE",
    "CODEX_AGENT_SESSION_PREFIX",
    "CODEX_AGENT_JOBS_LIMIT",
    "CODEX_AGENT_CLEAN_DAYS",
    "CODEX_AGENT_CAPTURE_LINES",
    "CODEX_AGENT_RESULT_TAIL_LINES",
    "CODEX_AGENT_OUTPUT_POLL_SECONDS",
    "CODEX_AGENT_COMMS_POLL_SECONDS",
    "CODEX_AGENT_LIVENESS_POLL_SECONDS",
    "CODEX_AGENT_STUCK_MINUTES",
)


@dataclass
class FakeSession:
    request: SessionLaunchRequest
    output: str = ""
    sent: list[str] = field(default_factory=list)
    attached: bool = False


class FakeSessionBackend:
    """In-memory stand-in for tmux."""

    def __init__(self) -> None:
        self.available = True
        self.launch_error: str | None = None
        self.kill_succeeds = True
        self.sessions: dict[str, FakeSession] = {}
        self.launched: list[SessionLaunchRequest] = []
        self.killed: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def launch(self, request: SessionLaunchRequest) -> str:
        self.launched.append(request)
        if self.launch_error is not None:
            raise SessionLaunchError(self.launch_error, stderr=self.launch_error)
        self.sessions[request.session_name] = FakeSession(request=request)
        return request.session_name

    def session_exists(self, session_name: str) -> bool:
        return session_name in self.sessions

    def send_text(self, session_name: str, text: str) -> bool:
        session = self.sessions.get(session_name)
        if session is None:
            return False
        session.sent.append(text)
        return True

    def capture(self, session_name: str, *, lines: int) -> str | None:
        session = self.sessions.get(session_name)
        if session is None:
            return None
        return "\n".join(session.output.splitlines()[-lines:])

    def capture_full(self, session_name: str) -> str | None:
        session = self.sessions.get(session_name)
        if session is None:
            return None
        return session.output

    def kill(self, session_name: str) -> bool:
        if not self.kill_succeeds or session_name not in self.sessions:
            return False
        del self.sessions[session_name]
        self.killed.append(session_name)
        return True

    def list_sessions(self) -> list[SessionInfo]:
        return [
            SessionInfo(name=name, attached=session.attached, created="2026-02-13 10:00:00")
            for name, session in sorted(self.sessions.items())
        ]

    def attach_command(self, session_name: str) -> str:
        return f"tmux attach -t {session_name}"

    def end_session(self, session_name: str, *, log_text: str | None = None) -> None:
        """Simulate the agent process exiting, leaving its mirrored log behind."""

        session = self.sessions.pop(session_name)
        if log_text is not None and session.request.log_path is not None:
            session.request.log_path.parent.mkdir(parents=True, exist_ok=True)
            session.request.log_path.write_text(log_text, "utf-8")


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage=StorageSettings(
            jobs_dir=tmp_path / "jobs",
            comms_dir=tmp_path / "comms",
            codex_home=tmp_path / "codex",
        ),
    )


@pytest.fixture()
def store(settings: Settings) -> JobStore:
    return JobStore(settings.storage.jobs_dir)


@pytest.fixture()
def backend() -> FakeSessionBackend:
    return FakeSessionBackend()


@pytest.fixture()
def service(store: JobStore, backend: FakeSessionBackend, settings: Settings) -> JobService:
    return JobService(store=store, backend=backend, settings=settings)


@pytest.fixture()
def agent_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point every storage location of the CLI at ``tmp_path``."""

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CODEX_AGENT_JOBS_DIR", str(tmp_path / "jobs"))
    monkeypatch.setenv("CODEX_AGENT_COMMS_DIR", str(tmp_path / "comms"))
    monkeypatch.setenv("CODEX_HOME", str(tmp_path / "codex"))
    return tmp_path
