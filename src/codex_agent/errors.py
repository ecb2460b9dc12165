"""Error taxonomy shared by job, session and comms operations."""

from __future__ import annotations


class CodexAgentError(RuntimeError):
    """Base error for codex-agent operations."""


class JobNotFoundError(CodexAgentError, LookupError):
    """Unknown job id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class SessionUnavailableError(CodexAgentError):
    """Expected external session is missing."""

    def __init__(self, session: str | None) -> None:
        super().__init__(f"Session not available: {session or '-'}")
        self.session = session


class InvalidArgumentError(CodexAgentError, ValueError):
    """Malformed caller input or illegal state transition."""


class ExternalToolMissingError(CodexAgentError):
    """Required external binary is not installed."""

    def __init__(self, tool: str, hint: str | None = None) -> None:
        message = f"{tool} is required but not installed"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)
        self.tool = tool
        self.hint = hint


class SessionLaunchError(CodexAgentError):
    """External session failed to start."""

    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr
