"""Domain models for delegated agent jobs."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from codex_agent.errors import InvalidArgumentError

KnobT = TypeVar("KnobT", bound=Enum)


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


class ReasoningEffort(str, Enum):
    """Reasoning effort forwarded to the agent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    XHIGH = "xhigh"


class SandboxMode(str, Enum):
    """Sandbox mode forwarded to the agent."""

    WORKSPACE_WRITE = "workspace-write"
    DANGER_FULL_ACCESS = "danger-full-access"


class AgentType(str, Enum):
    """Role the delegated agent is prompted for."""

    RESEARCH = "research"
    IMPLEMENTATION = "implementation"
    REVIEW = "review"
    TEST = "test"
    SPEC_REVIEW = "spec-review"
    QUALITY_REVIEW = "quality-review"


READ_ONLY_SANDBOX = "read-only"

# Records written by older releases may carry values no longer accepted on start.
_LEGACY_SANDBOX = {READ_ONLY_SANDBOX: SandboxMode.WORKSPACE_WRITE}

_TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

# On-disk record keys; the record format is shared with other tools.
_RECORD_KEYS = {
    "job_id": "id",
    "status": "status",
    "prompt": "prompt",
    "model": "model",
    "reasoning_effort": "reasoningEffort",
    "sandbox": "sandbox",
    "cwd": "cwd",
    "created_at": "createdAt",
    "started_at": "startedAt",
    "completed_at": "completedAt",
    "tmux_session": "tmuxSession",
    "error": "error",
    "result": "result",
    "parent_session_id": "parentSessionId",
}


@dataclass(slots=True)
class Job:
    """One tracked unit of delegated work."""

    job_id: str
    status: JobStatus
    prompt: str
    model: str
    reasoning_effort: ReasoningEffort
    sandbox: SandboxMode
    cwd: str
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    tmux_session: str | None = None
    error: str | None = None
    result: str | None = None
    parent_session_id: str | None = None

    def transition_to(self, status: JobStatus, *, at: datetime | None = None) -> None:
        """Move to a later lifecycle state, stamping the matching timestamp."""

        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidArgumentError(
                f"Illegal job transition for {self.job_id}: "
                f"{self.status.value} -> {status.value}",
            )
        moment = at or utc_now()
        self.status = status
        if status == JobStatus.RUNNING:
            self.started_at = moment
        if status.is_terminal:
            self.completed_at = moment

    def to_record(self) -> dict[str, Any]:
        """Serialize as the whole-object JSON record."""

        record: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = to_iso(value)
            record[_RECORD_KEYS[item.name]] = value
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Job:
        """Deserialize and validate a job record."""

        values = {name: record.get(key) for name, key in _RECORD_KEYS.items()}
        for required in ("job_id", "status", "prompt", "created_at"):
            if values[required] is None:
                raise ValueError(f"Job record is missing {_RECORD_KEYS[required]!r}")
        for name in ("job_id", "prompt", "model", "cwd"):
            if values[name] is not None and not isinstance(values[name], str):
                raise TypeError(f"Job record field {_RECORD_KEYS[name]!r} must be a string")
        return cls(
            job_id=values["job_id"],
            status=JobStatus(values["status"]),
            prompt=values["prompt"],
            model=values["model"] or "",
            reasoning_effort=_stored_knob(
                ReasoningEffort,
                values["reasoning_effort"],
                ReasoningEffort.HIGH,
            ),
            sandbox=_stored_knob(
                SandboxMode,
                values["sandbox"],
                SandboxMode.WORKSPACE_WRITE,
                legacy=_LEGACY_SANDBOX,
            ),
            cwd=values["cwd"] or "",
            created_at=from_iso(values["created_at"]),
            started_at=_optional_iso(values["started_at"]),
            completed_at=_optional_iso(values["completed_at"]),
            tmux_session=values["tmux_session"],
            error=values["error"],
            result=values["result"],
            parent_session_id=values["parent_session_id"],
        )


@dataclass(slots=True)
class TokenUsage:
    """Cumulative token usage reported by the agent runtime."""

    input: int
    output: int
    context_window: int | None
    context_used_pct: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "input": self.input,
            "output": self.output,
            "context_window": self.context_window,
            "context_used_pct": self.context_used_pct,
        }


@dataclass(slots=True)
class DerivedMetadata:
    """Completion metrics derived from a transcript; never persisted."""

    tokens: TokenUsage | None = None
    files_modified: list[str] | None = None
    summary: str | None = None


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_iso(value: datetime) -> str:
    """Millisecond-precision ISO-8601 with a Z suffix."""

    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def from_iso(value: str) -> datetime:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def _stored_knob(
    enum_cls: type[KnobT],
    value: Any,
    default: KnobT,
    *,
    legacy: dict[str, KnobT] | None = None,
) -> KnobT:
    # Forwarded knobs never invalidate a record; unknown values read as the default.
    if legacy and value in legacy:
        return legacy[value]
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _optional_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return from_iso(value)
