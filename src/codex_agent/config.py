"""Runtime configuration for job tracking, sessions and comms."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TypeVar

from codex_agent.jobs.models import ReasoningEffort, SandboxMode

EnumT = TypeVar("EnumT", bound=Enum)

DEFAULT_COMMAND_TEMPLATE = (
    "codex --model {model} -c model_reasoning_effort={reasoning_effort} "
    '--sandbox {sandbox} --ask-for-approval never "$(cat {prompt_file})"'
)


@dataclass(slots=True)
class StorageSettings:
    """Filesystem locations shared by every process instance."""

    jobs_dir: Path = Path.home() / ".codex-agent" / "jobs"
    comms_dir: Path = Path("/tmp/codex-agent")  # noqa: S108
    codex_home: Path = Path.home() / ".codex"

    @property
    def sessions_dir(self) -> Path:
        """Root of the agent runtime's date-partitioned transcripts."""

        return self.codex_home / "sessions"


@dataclass(slots=True)
class AgentSettings:
    """Defaults forwarded to the delegated agent."""

    model: str = "gpt-5.3-codex"
    reasoning_effort: ReasoningEffort = ReasoningEffort.HIGH
    sandbox: SandboxMode = SandboxMode.WORKSPACE_WRITE
    command_template: str = DEFAULT_COMMAND_TEMPLATE
    executable: str = "codex"


@dataclass(slots=True)
class SessionSettings:
    """tmux session naming and capture settings."""

    session_prefix: str = "codex-agent"
    capture_lines: int = 50
    result_tail_lines: int = 200
    width: int = 220
    height: int = 50


@dataclass(slots=True)
class MonitorSettings:
    """Polling cadence for long-running commands."""

    output_poll_seconds: float = 1.0
    comms_poll_seconds: float = 0.5
    liveness_poll_seconds: float = 10.0
    stuck_minutes: int = 10


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    storage: StorageSettings = field(default_factory=StorageSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    jobs_list_limit: int = 20
    clean_max_age_days: int = 7

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        home = Path(os.getenv("CODEX_AGENT_HOME", str(Path.home() / ".codex-agent")))
        return cls(
            storage=StorageSettings(
                jobs_dir=Path(os.getenv("CODEX_AGENT_JOBS_DIR", str(home / "jobs"))),
                comms_dir=Path(os.getenv("CODEX_AGENT_COMMS_DIR", "/tmp/codex-agent")),  # noqa: S108
                codex_home=Path(os.getenv("CODEX_HOME", str(Path.home() / ".codex"))),
            ),
            agent=AgentSettings(
                model=os.getenv("CODEX_AGENT_MODEL", "gpt-5.3-codex"),
                reasoning_effort=_env_enum(
                    "CODEX_AGENT_REASONING_EFFORT",
                    ReasoningEffort,
                    ReasoningEffort.HIGH,
                ),
                sandbox=_env_enum("CODEX_AGENT_SANDBOX", SandboxMode, SandboxMode.WORKSPACE_WRITE),
                command_template=os.getenv("CODEX_AGENT_COMMAND_TEMPLATE", DEFAULT_COMMAND_TEMPLATE),
                executable=os.getenv("CODEX_AGENT_EXECUTABLE", "codex"),
            ),
            session=SessionSettings(
                session_prefix=os.getenv("CODEX_AGENT_SESSION_PREFIX", "codex-agent"),
                capture_lines=_env_int("CODEX_AGENT_CAPTURE_LINES", 50),
                result_tail_lines=_env_int("CODEX_AGENT_RESULT_TAIL_LINES", 200),
            ),
            monitor=MonitorSettings(
                output_poll_seconds=_env_float("CODEX_AGENT_OUTPUT_POLL_SECONDS", 1.0),
                comms_poll_seconds=_env_float("CODEX_AGENT_COMMS_POLL_SECONDS", 0.5),
                liveness_poll_seconds=_env_float("CODEX_AGENT_LIVENESS_POLL_SECONDS", 10.0),
                stuck_minutes=_env_int("CODEX_AGENT_STUCK_MINUTES", 10),
            ),
            jobs_list_limit=_env_int("CODEX_AGENT_JOBS_LIMIT", 20),
            clean_max_age_days=_env_int("CODEX_AGENT_CLEAN_DAYS", 7),
        )

    def validate(self) -> None:
        """Raise configuration error for values no command can work with."""

        if not self.session.session_prefix.strip():
            raise ValueError("CODEX_AGENT_SESSION_PREFIX must be non-empty.")
        if "{prompt_file}" not in self.agent.command_template:
            raise ValueError("CODEX_AGENT_COMMAND_TEMPLATE must include {prompt_file}.")
        for name, value in (
            ("CODEX_AGENT_CAPTURE_LINES", self.session.capture_lines),
            ("CODEX_AGENT_RESULT_TAIL_LINES", self.session.result_tail_lines),
            ("CODEX_AGENT_JOBS_LIMIT", self.jobs_list_limit),
            ("CODEX_AGENT_STUCK_MINUTES", self.monitor.stuck_minutes),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        if self.clean_max_age_days < 0:
            raise ValueError("CODEX_AGENT_CLEAN_DAYS must be >= 0.")
        for name, seconds in (
            ("CODEX_AGENT_OUTPUT_POLL_SECONDS", self.monitor.output_poll_seconds),
            ("CODEX_AGENT_COMMS_POLL_SECONDS", self.monitor.comms_poll_seconds),
            ("CODEX_AGENT_LIVENESS_POLL_SECONDS", self.monitor.liveness_poll_seconds),
        ):
            if seconds <= 0:
                raise ValueError(f"{name} must be > 0.")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {raw!r}") from error


def _env_enum(name: str, enum_type: type[EnumT], default: EnumT) -> EnumT:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return enum_type(raw.strip().lower())
    except ValueError as error:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValueError(f"Invalid value for {name}: {raw!r}. Expected one of: {allowed}") from error
