"""Job lifecycle operations over the store and a session backend.

Nothing here caches state between invocations: every operation reloads the
record, re-derives status from session liveness and writes the whole record
back.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from codex_agent.backend.base import SessionBackend, SessionInfo, SessionLaunchRequest
from codex_agent.backend.tmux_backend import (
    EXIT_MARKER_PREFIX,
    TMUX_INSTALL_HINT,
    build_agent_command,
    session_name_for,
)
from codex_agent.comms.channel import CommsChannel
from codex_agent.config import Settings
from codex_agent.errors import (
    CodexAgentError,
    ExternalToolMissingError,
    InvalidArgumentError,
    JobNotFoundError,
    SessionLaunchError,
    SessionUnavailableError,
)
from codex_agent.jobs.models import AgentType, Job, JobStatus, ReasoningEffort, SandboxMode
from codex_agent.jobs.store import JobStore
from codex_agent.jobs.transcript import extract_session_id, load_derived_metadata
from codex_agent.prompts import PromptOptions, build_prompt

logger = logging.getLogger(__name__)

_EXIT_MARKER = re.compile(rf"{re.escape(EXIT_MARKER_PREFIX)}(-?\d+)")

KILLED_BY_USER = "Killed by user"
NO_COMPLETION_MARKER = "Session ended without completion marker"


@dataclass(slots=True)
class StartRequest:
    """Inputs for delegating one task to a new agent session."""

    prompt: str
    model: str
    reasoning_effort: ReasoningEffort
    sandbox: SandboxMode
    cwd: Path
    agent_type: AgentType = AgentType.IMPLEMENTATION
    parent_session_id: str | None = None
    design_doc: str | None = None
    prd: str | None = None
    scope: list[str] = field(default_factory=list)
    implementation_report: str | None = None
    story_criteria: str | None = None
    changed_files: list[str] = field(default_factory=list)


class JobService:
    """Start, refresh and drive jobs hosted in external sessions."""

    def __init__(self, *, store: JobStore, backend: SessionBackend, settings: Settings) -> None:
        self.store = store
        self.backend = backend
        self.settings = settings

    def start(self, request: StartRequest) -> Job:
        """Create the job record, write its prompt and launch the session.

        A launch failure leaves the job persisted as ``failed`` and re-raises.
        """

        if not request.prompt.strip():
            raise InvalidArgumentError("No prompt provided")
        if not self.backend.is_available():
            raise ExternalToolMissingError("tmux", TMUX_INSTALL_HINT)

        job = self.store.create(
            prompt=request.prompt,
            model=request.model,
            reasoning_effort=request.reasoning_effort,
            sandbox=request.sandbox,
            cwd=str(request.cwd),
            parent_session_id=request.parent_session_id,
        )
        prompt_file = self.store.prompt_path(job.job_id)
        result_file = CommsChannel(self.settings.storage.comms_dir).result_path(job.job_id)
        prompt_file.write_text(
            build_prompt(
                PromptOptions(
                    agent_type=request.agent_type,
                    task=request.prompt,
                    job_id=job.job_id,
                    result_file=result_file,
                    design_doc=request.design_doc,
                    prd=request.prd,
                    scope=list(request.scope),
                    implementation_report=request.implementation_report,
                    story_criteria=request.story_criteria,
                    changed_files=list(request.changed_files),
                ),
            ),
            "utf-8",
        )
        session_name = session_name_for(job.job_id, prefix=self.settings.session.session_prefix)
        try:
            command = build_agent_command(
                command_template=self.settings.agent.command_template,
                model=job.model,
                reasoning_effort=job.reasoning_effort.value,
                sandbox=job.sandbox.value,
                prompt_file=prompt_file,
            )
            handle = self.backend.launch(
                SessionLaunchRequest(
                    session_name=session_name,
                    command=command,
                    cwd=request.cwd,
                    log_path=self.store.log_path(job.job_id),
                ),
            )
        except (InvalidArgumentError, SessionLaunchError) as error:
            job.error = str(error)
            job.transition_to(JobStatus.FAILED)
            self.store.save(job)
            logger.warning("Job %s failed to start: %s", job.job_id, error)
            raise

        job.tmux_session = handle
        job.transition_to(JobStatus.RUNNING)
        self.store.save(job)
        logger.info("Job %s running in session %s", job.job_id, handle)
        return job

    def refresh(self, job_id: str) -> Job:
        """Re-derive status from session liveness; non-running jobs are returned as stored."""

        job = self.store.load(job_id)
        if job.status != JobStatus.RUNNING:
            return job

        if job.tmux_session and self.backend.session_exists(job.tmux_session):
            output = self.backend.capture(
                job.tmux_session,
                lines=self.settings.session.result_tail_lines,
            )
            if output is not None:
                result = _keep_session_reference(output.rstrip("\n"), job.result)
                if result != job.result:
                    job.result = result
                    self.store.save(job)
            return job

        return self._finalize(job)

    def refresh_all(self, jobs: list[Job]) -> list[Job]:
        """Refresh running jobs in a listing; vanished records keep their listed state."""

        refreshed: list[Job] = []
        for job in jobs:
            if job.status != JobStatus.RUNNING:
                refreshed.append(job)
                continue
            try:
                refreshed.append(self.refresh(job.job_id))
            except JobNotFoundError:
                refreshed.append(job)
        return refreshed

    def send(self, job_id: str, text: str) -> bool:
        """Type ``text`` into a running job's session; ``False`` for any ineligible target."""

        try:
            job = self.store.load(job_id)
        except JobNotFoundError:
            return False
        if job.status != JobStatus.RUNNING or not job.tmux_session:
            return False
        if not self.backend.session_exists(job.tmux_session):
            return False
        return self.backend.send_text(job.tmux_session, text)

    def kill(self, job_id: str) -> bool:
        """Kill the session of a pending/running job and mark it failed.

        Terminal or unknown jobs yield ``False``. A running job whose session
        already exited is finalized from its log instead, also yielding ``False``.
        """

        try:
            job = self.store.load(job_id)
        except JobNotFoundError:
            return False
        if job.status.is_terminal:
            return False

        if (
            job.status == JobStatus.RUNNING
            and job.tmux_session
            and not self.backend.session_exists(job.tmux_session)
        ):
            self._finalize(job)
            return False

        if job.tmux_session and self.backend.session_exists(job.tmux_session):
            output = self.backend.capture(
                job.tmux_session,
                lines=self.settings.session.result_tail_lines,
            )
            if not self.backend.kill(job.tmux_session):
                return False
            if output is not None:
                job.result = _keep_session_reference(output.rstrip("\n"), job.result)

        job.error = KILLED_BY_USER
        job.transition_to(JobStatus.FAILED)
        self.store.save(job)
        logger.info("Job %s killed", job_id)
        return True

    def capture(self, job_id: str, lines: int) -> str:
        """Recent pane output of a live job session."""

        if lines <= 0:
            raise InvalidArgumentError(f"Invalid line count: {lines}")
        job = self.store.load(job_id)
        session = self._live_session(job)
        output = self.backend.capture(session, lines=lines)
        if output is None:
            raise CodexAgentError(f"Could not capture tmux pane for job {job_id}")
        return output

    def full_output(self, job_id: str) -> str:
        """Whole session history, falling back to the mirrored log after exit."""

        job = self.store.load(job_id)
        if job.tmux_session and self.backend.session_exists(job.tmux_session):
            output = self.backend.capture_full(job.tmux_session)
            if output is not None:
                return output
        logged = _read_text(self.store.log_path(job_id))
        if logged:
            return logged
        if job.result:
            return job.result
        raise CodexAgentError(f"Could not get output for job {job_id}")

    def attach_command(self, job_id: str) -> str:
        job = self.store.load(job_id)
        if not job.tmux_session:
            raise SessionUnavailableError(job.tmux_session)
        return self.backend.attach_command(job.tmux_session)

    def session_alive(self, job: Job) -> bool:
        return bool(job.tmux_session) and self.backend.session_exists(job.tmux_session or "")

    def list_sessions(self) -> list[SessionInfo]:
        return self.backend.list_sessions()

    def _live_session(self, job: Job) -> str:
        if not job.tmux_session or not self.backend.session_exists(job.tmux_session):
            raise SessionUnavailableError(job.tmux_session)
        return job.tmux_session

    def _finalize(self, job: Job) -> Job:
        logged = _read_text(self.store.log_path(job.job_id))
        if logged:
            result = _keep_session_reference(
                _tail(logged, self.settings.session.result_tail_lines),
                logged,
            )
            job.result = _keep_session_reference(result, job.result)

        exit_code = _exit_code(job.result)
        if exit_code == 0:
            job.transition_to(JobStatus.COMPLETED)
        elif exit_code is not None:
            job.error = f"Agent exited with code {exit_code}"
            job.transition_to(JobStatus.FAILED)
        else:
            metadata = load_derived_metadata(
                sessions_dir=self.settings.storage.sessions_dir,
                result=job.result,
                created_at=job.created_at,
            )
            if metadata.summary:
                job.transition_to(JobStatus.COMPLETED)
            else:
                job.error = NO_COMPLETION_MARKER
                job.transition_to(JobStatus.FAILED)

        self.store.save(job)
        logger.info("Job %s finished as %s", job.job_id, job.status.value)
        return job


def _exit_code(output: str | None) -> int | None:
    if not output:
        return None
    matches = _EXIT_MARKER.findall(output)
    if not matches:
        return None
    return int(matches[-1])


def _tail(text: str, lines: int) -> str:
    return "\n".join(text.rstrip("\n").splitlines()[-lines:])


def _keep_session_reference(output: str, previous: str | None) -> str:
    """Carry the agent session id forward when the output window scrolled past it."""

    if extract_session_id(output) is not None:
        return output
    session_id = extract_session_id(previous)
    if session_id is None:
        return output
    return f"session id: {session_id}\n{output}"


def _read_text(path: Path) -> str | None:
    try:
        return path.read_bytes().decode("utf-8", errors="replace")
    except FileNotFoundError:
        return None
    except OSError as error:
        logger.warning("Could not read %s: %s", path, error)
        return None
