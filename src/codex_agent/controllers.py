"""Controllers for codex-agent CLI commands."""

from __future__ import annotations

import functools
import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import ParamSpec, TypeVar

from codex_agent.backend.base import SessionBackend
from codex_agent.backend.tmux_backend import TmuxSessionBackend
from codex_agent.comms.channel import CommsChannel
from codex_agent.comms.messages import format_message
from codex_agent.config import Settings
from codex_agent.context_files import estimate_tokens, format_prompt_with_files, load_files
from codex_agent.errors import CodexAgentError, InvalidArgumentError
from codex_agent.health import run_health_checks
from codex_agent.jobs.listing import apply_limit, elapsed_ms, jobs_json, sort_jobs
from codex_agent.jobs.models import (
    READ_ONLY_SANDBOX,
    AgentType,
    Job,
    JobStatus,
    ReasoningEffort,
    SandboxMode,
    to_iso,
)
from codex_agent.jobs.service import JobService, StartRequest
from codex_agent.jobs.store import JobStore
from codex_agent.monitor import JobMonitor, LineWriter

P = ParamSpec("P")
EnumT = TypeVar("EnumT", bound=Enum)

DRY_RUN_PREVIEW_CHARS = 3000
PROMPT_PREVIEW_CHARS = 50
RESULT_FILE_FALLBACK_SUMMARY = "(result file attached)"

_ANSI_CSI = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_ANSI_OSC = re.compile(r"\x1b\][^\x07]*\x07")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


@dataclass(slots=True)
class CliResult:
    """Lines for stdout plus an optional failure message for stderr."""

    lines: list[str] = field(default_factory=list)
    success: bool = True
    error: str | None = None
    notices: list[str] = field(default_factory=list)


@dataclass(slots=True)
class StartCommand:
    """CLI input for starting a delegated job."""

    prompt: str
    model: str | None
    reasoning: str | None
    sandbox: str | None
    files: tuple[str, ...]
    cwd: Path
    agent_type: str
    parent_session_id: str | None
    dry_run: bool
    design_doc: str | None = None
    prd: str | None = None
    scope: tuple[str, ...] = ()
    implementation_report: str | None = None
    story_criteria: str | None = None
    changed_files: tuple[str, ...] = ()


@dataclass(slots=True)
class CaptureCommand:
    """CLI input for pane or comms capture."""

    job_id: str
    lines: int | None
    comms: bool
    strip_ansi: bool


@dataclass(slots=True)
class JobsCommand:
    """CLI input for job listing."""

    as_json: bool
    limit: int | None
    show_all: bool


@dataclass(slots=True)
class CommsDoneCommand:
    """CLI input for a completion report."""

    job_id: str
    summary: str
    result_file: Path | None


BackendFactory = Callable[[Settings], SessionBackend]


def _reports_errors(method: Callable[P, CliResult]) -> Callable[P, CliResult]:
    @functools.wraps(method)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> CliResult:
        try:
            return method(*args, **kwargs)
        except (CodexAgentError, ValueError, OSError) as error:
            return CliResult(success=False, error=str(error))

    return wrapper


def tmux_backend(settings: Settings) -> SessionBackend:
    return TmuxSessionBackend(
        session_prefix=settings.session.session_prefix,
        width=settings.session.width,
        height=settings.session.height,
    )


class JobsCliController:
    """Coordinates job, session and comms CLI operations.

    Settings and the session backend are rebuilt for every command, since each
    invocation is an independent process.
    """

    def __init__(self, backend_factory: BackendFactory | None = None) -> None:
        self._backend_factory = backend_factory or tmux_backend

    def settings(self) -> Settings:
        settings = Settings.from_env()
        settings.validate()
        return settings

    def service(self, settings: Settings | None = None) -> JobService:
        resolved = settings or self.settings()
        return JobService(
            store=JobStore(resolved.storage.jobs_dir),
            backend=self._backend_factory(resolved),
            settings=resolved,
        )

    def channel(self, settings: Settings | None = None) -> CommsChannel:
        return CommsChannel((settings or self.settings()).storage.comms_dir)

    @_reports_errors
    def start(self, command: StartCommand) -> CliResult:  # noqa: C901
        settings = self.settings()
        notices: list[str] = []

        sandbox_value = command.sandbox or settings.agent.sandbox.value
        if sandbox_value == READ_ONLY_SANDBOX:
            notices.append(
                "Sandbox mode 'read-only' has been removed; using 'workspace-write' instead.",
            )
            sandbox_value = SandboxMode.WORKSPACE_WRITE.value
        sandbox = _parse_enum(SandboxMode, sandbox_value, "sandbox mode")
        reasoning = _parse_enum(
            ReasoningEffort,
            command.reasoning or settings.agent.reasoning_effort.value,
            "reasoning level",
        )
        agent_type = _parse_enum(AgentType, command.agent_type, "agent type")
        model = command.model or settings.agent.model
        cwd = command.cwd.expanduser().resolve()

        prompt = command.prompt.strip()
        if not prompt:
            raise InvalidArgumentError("No prompt provided")
        if command.files:
            files = load_files(list(command.files), cwd)
            prompt = format_prompt_with_files(prompt, files)
            notices.append(f"Included {len(files)} files")

        if command.dry_run:
            lines = [
                f"Would send ~{estimate_tokens(prompt):,} tokens",
                f"Model: {model}",
                f"Reasoning: {reasoning.value}",
                f"Sandbox: {sandbox.value}",
                f"Agent type: {agent_type.value}",
                "",
                "--- Prompt Preview ---",
                "",
                prompt[:DRY_RUN_PREVIEW_CHARS],
            ]
            if len(prompt) > DRY_RUN_PREVIEW_CHARS:
                lines.append(f"\n... ({len(prompt) - DRY_RUN_PREVIEW_CHARS} more characters)")
            return CliResult(lines=lines, notices=notices)

        job = self.service(settings).start(
            StartRequest(
                prompt=prompt,
                model=model,
                reasoning_effort=reasoning,
                sandbox=sandbox,
                cwd=cwd,
                agent_type=agent_type,
                parent_session_id=command.parent_session_id,
                design_doc=command.design_doc,
                prd=command.prd,
                scope=list(command.scope),
                implementation_report=command.implementation_report,
                story_criteria=command.story_criteria,
                changed_files=list(command.changed_files),
            ),
        )
        return CliResult(
            lines=[
                f"Job started: {job.job_id}",
                f"Model: {job.model} ({job.reasoning_effort.value})",
                f"Working dir: {job.cwd}",
                f"tmux session: {job.tmux_session}",
                "",
                "Commands:",
                f"  Capture output:  codex-agent capture {job.job_id}",
                f'  Send message:    codex-agent send {job.job_id} "message"',
                f"  Attach session:  tmux attach -t {job.tmux_session}",
            ],
            notices=notices,
        )

    @_reports_errors
    def status(self, job_id: str) -> CliResult:
        settings = self.settings()
        job = self.service(settings).refresh(job_id)
        lines = [
            f"Job: {job.job_id}",
            f"Status: {job.status.value}",
            f"Model: {job.model} ({job.reasoning_effort.value})",
            f"Sandbox: {job.sandbox.value}",
            f"Created: {to_iso(job.created_at)}",
        ]
        if job.started_at:
            lines.append(f"Started: {to_iso(job.started_at)}")
        if job.completed_at:
            lines.append(f"Completed: {to_iso(job.completed_at)}")
        if job.tmux_session:
            lines.append(f"tmux session: {job.tmux_session}")
        if job.error:
            lines.append(f"Error: {job.error}")

        if job.status == JobStatus.RUNNING:
            channel = self.channel(settings)
            latest = channel.latest_activity(job_id)
            if latest is not None:
                lines.append(f"Last comms activity: {to_iso(latest)}")
            if channel.is_agent_stuck(job_id, settings.monitor.stuck_minutes):
                lines.append(
                    f"Warning: no comms activity for over {settings.monitor.stuck_minutes} "
                    "minutes; the agent may be stuck.",
                )
        return CliResult(lines=lines)

    @_reports_errors
    def send(self, job_id: str, message: str) -> CliResult:
        if not message.strip():
            raise InvalidArgumentError('Usage: codex-agent send <jobId> "message"')
        if self.service().send(job_id, message):
            return CliResult(lines=[f"Sent to {job_id}: {message}"])
        return CliResult(
            success=False,
            error=(
                f"Could not send to job {job_id}. "
                "Job may not be running or tmux session not found"
            ),
        )

    @_reports_errors
    def capture(self, command: CaptureCommand) -> CliResult:
        settings = self.settings()
        if command.comms:
            messages = self.channel(settings).read_all(command.job_id)
            if not messages:
                return CliResult(
                    success=False,
                    error=f"No comms messages for job {command.job_id}",
                )
            return CliResult(lines=[format_message(message) for message in messages])

        lines = command.lines if command.lines is not None else settings.session.capture_lines
        output = self.service(settings).capture(command.job_id, lines)
        if command.strip_ansi:
            output = strip_ansi(output)
        return CliResult(lines=[output])

    @_reports_errors
    def output(self, job_id: str, *, strip_ansi_codes: bool) -> CliResult:
        output = self.service().full_output(job_id)
        if strip_ansi_codes:
            output = strip_ansi(output)
        return CliResult(lines=[output])

    @_reports_errors
    def attach(self, job_id: str) -> CliResult:
        return CliResult(lines=[self.service().attach_command(job_id)])

    def jobs(self, command: JobsCommand) -> CliResult:
        """List jobs; the JSON form stays a valid document even on failure."""

        try:
            settings = self.settings()
            service = self.service(settings)
            limit = None if command.show_all else (command.limit or settings.jobs_list_limit)
            jobs = service.store.list_jobs()
            if command.as_json:
                payload = jobs_json(
                    jobs,
                    sessions_dir=settings.storage.sessions_dir,
                    limit=limit,
                )
                return CliResult(lines=[json.dumps(payload, indent=2, ensure_ascii=False)])
            listed = apply_limit(sort_jobs(service.refresh_all(jobs)), limit)
        except (CodexAgentError, ValueError, OSError) as error:
            if command.as_json:
                return CliResult(
                    lines=[json.dumps({"error": str(error), "jobs": []}, indent=2)],
                    success=False,
                    error=str(error),
                )
            return CliResult(success=False, error=str(error))

        if not listed:
            return CliResult(lines=["No jobs"])
        return CliResult(
            lines=[
                "ID        STATUS      ELAPSED   EFFORT  PROMPT",
                "-" * 80,
                *(format_job_row(job) for job in listed),
            ],
        )

    @_reports_errors
    def sessions(self) -> CliResult:
        sessions = self.service().list_sessions()
        if not sessions:
            return CliResult(lines=["No active codex-agent sessions"])
        lines = ["SESSION NAME                    ATTACHED  CREATED", "-" * 60]
        for session in sessions:
            attached = "yes" if session.attached else "no"
            lines.append(f"{session.name:<30}  {attached:<8}  {session.created}")
        return CliResult(lines=lines)

    @_reports_errors
    def kill(self, job_id: str) -> CliResult:
        if self.service().kill(job_id):
            return CliResult(lines=[f"Killed job: {job_id}"])
        return CliResult(success=False, error=f"Could not kill job: {job_id}")

    @_reports_errors
    def clean(self, days: int | None) -> CliResult:
        settings = self.settings()
        max_age_days = settings.clean_max_age_days if days is None else days
        removed = JobStore(settings.storage.jobs_dir).cleanup_old(max_age_days)
        return CliResult(lines=[f"Cleaned {removed} old jobs"])

    @_reports_errors
    def delete(self, job_id: str) -> CliResult:
        settings = self.settings()
        if JobStore(settings.storage.jobs_dir).delete(job_id):
            return CliResult(lines=[f"Deleted job: {job_id}"])
        return CliResult(success=False, error=f"Could not delete job: {job_id}")

    @_reports_errors
    def health(self) -> CliResult:
        settings = self.settings()
        lines: list[str] = []
        for check in run_health_checks(agent_executable=settings.agent.executable):
            if not check.ok:
                return CliResult(
                    lines=lines,
                    success=False,
                    error=f"{check.error}. {check.hint}",
                )
            lines.append(f"{check.name}: {check.version or 'OK'}")
        lines.append("Status: Ready")
        return CliResult(lines=lines)

    @_reports_errors
    def comms_status(self, job_id: str, message: str) -> CliResult:
        if not message.strip():
            raise InvalidArgumentError("status requires a message")
        self.channel().write_status(job_id, message)
        return CliResult()

    @_reports_errors
    def comms_finding(self, job_id: str, message: str) -> CliResult:
        if not message.strip():
            raise InvalidArgumentError("finding requires a message")
        self.channel().write_finding(job_id, message)
        return CliResult()

    @_reports_errors
    def comms_done(self, command: CommsDoneCommand) -> CliResult:
        channel = self.channel()
        if command.result_file is not None:
            path = command.result_file.expanduser()
            if not path.is_file():
                raise InvalidArgumentError(f"file not found: {command.result_file}")
            summary = summary_from_result_file(path.read_text("utf-8", errors="replace"))
            channel.write_done(command.job_id, summary, str(path.resolve()))
            return CliResult()
        if not command.summary.strip():
            raise InvalidArgumentError("done requires a summary or --file <path>")
        channel.write_done(command.job_id, command.summary)
        return CliResult()

    def watch(self, job_id: str, *, out: LineWriter, err: LineWriter) -> int:
        return self._monitor(out=out, err=err).watch_output(job_id)

    def watch_comms(self, job_id: str, *, out: LineWriter, err: LineWriter) -> int:
        return self._monitor(out=out, err=err).watch_comms(job_id)

    def monitor(self, job_id: str, *, out: LineWriter, err: LineWriter) -> int:
        return self._monitor(out=out, err=err).monitor(job_id)

    def _monitor(self, *, out: LineWriter, err: LineWriter) -> JobMonitor:
        settings = self.settings()
        return JobMonitor(
            service=self.service(settings),
            channel=self.channel(settings),
            out=out,
            err=err,
        )


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences, carriage returns and control characters."""

    cleaned = _ANSI_CSI.sub("", text)
    cleaned = _ANSI_OSC.sub("", cleaned)
    cleaned = cleaned.replace("\r", "")
    return _CONTROL_CHARS.sub("", cleaned)


def format_duration(milliseconds: int) -> str:
    seconds = milliseconds // 1000
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_job_row(job: Job, *, now: datetime | None = None) -> str:
    elapsed = elapsed_ms(job, now=now)
    elapsed_label = format_duration(elapsed) if elapsed is not None else "-"
    preview = job.prompt[:PROMPT_PREVIEW_CHARS]
    if len(job.prompt) > PROMPT_PREVIEW_CHARS:
        preview += "..."
    preview = preview.replace("\n", " ")
    return (
        f"{job.job_id}  {job.status.value.upper():<10}  {elapsed_label:<8}  "
        f"{job.reasoning_effort.value:<6}  {preview}"
    )


def summary_from_result_file(content: str) -> str:
    """First non-empty line of a result file, without Markdown heading marks."""

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            stripped = stripped.lstrip("#").strip()
        return stripped or RESULT_FILE_FALLBACK_SUMMARY
    return RESULT_FILE_FALLBACK_SUMMARY


def _parse_enum(enum_type: type[EnumT], raw: str, label: str) -> EnumT:
    try:
        return enum_type(raw.strip().lower())
    except ValueError as error:
        allowed = ", ".join(member.value for member in enum_type)
        raise InvalidArgumentError(
            f"Invalid {label}: {raw}. Valid options: {allowed}",
        ) from error
