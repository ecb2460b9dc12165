"""tmux-hosted sessions for delegated agents."""

from __future__ import annotations

import logging
import shlex
import subprocess
from datetime import datetime
from pathlib import Path

from codex_agent.backend.base import SessionInfo, SessionLaunchRequest
from codex_agent.errors import ExternalToolMissingError, InvalidArgumentError, SessionLaunchError

logger = logging.getLogger(__name__)

EXIT_MARKER_PREFIX = "[codex-agent] exit code: "
TMUX_INSTALL_HINT = "Install with: brew install tmux (macOS) or apt install tmux (Linux)"

_TMUX_TIMEOUT_SECONDS = 10


class TmuxSessionBackend:
    """Start, query and drive detached tmux sessions owned by this tool."""

    def __init__(
        self,
        *,
        session_prefix: str = "codex-agent",
        width: int = 220,
        height: int = 50,
        executable: str = "tmux",
    ) -> None:
        self.session_prefix = session_prefix
        self.width = width
        self.height = height
        self.executable = executable

    def is_available(self) -> bool:
        try:
            returncode, _, _ = self._run("-V")
        except ExternalToolMissingError:
            return False
        return returncode == 0

    def launch(self, request: SessionLaunchRequest) -> str:
        returncode, _, stderr = self._run(
            "new-session",
            "-d",
            "-s",
            request.session_name,
            "-c",
            str(request.cwd),
            "-x",
            str(self.width),
            "-y",
            str(self.height),
            request.command,
        )
        if returncode != 0:
            raise SessionLaunchError(
                f"tmux failed to start session {request.session_name}: {stderr or returncode}",
                stderr=stderr,
            )
        if request.log_path is not None:
            request.log_path.parent.mkdir(parents=True, exist_ok=True)
            pipe_code, _, pipe_stderr = self._run(
                "pipe-pane",
                "-o",
                "-t",
                request.session_name,
                f"cat >> {shlex.quote(str(request.log_path))}",
            )
            if pipe_code != 0:
                # The session may already have exited; output capture is best-effort.
                logger.warning(
                    "Could not mirror output of %s: %s",
                    request.session_name,
                    pipe_stderr or pipe_code,
                )
        logger.info("Started tmux session %s in %s", request.session_name, request.cwd)
        return request.session_name

    def session_exists(self, session_name: str) -> bool:
        returncode, _, _ = self._run("has-session", "-t", f"={session_name}")
        return returncode == 0

    def send_text(self, session_name: str, text: str) -> bool:
        returncode, _, stderr = self._run("send-keys", "-t", session_name, "-l", text)
        if returncode != 0:
            logger.warning("send-keys to %s failed: %s", session_name, stderr)
            return False
        returncode, _, stderr = self._run("send-keys", "-t", session_name, "Enter")
        if returncode != 0:
            logger.warning("send Enter to %s failed: %s", session_name, stderr)
            return False
        return True

    def capture(self, session_name: str, *, lines: int) -> str | None:
        return self._capture(session_name, start=f"-{max(1, lines)}")

    def capture_full(self, session_name: str) -> str | None:
        return self._capture(session_name, start="-")

    def kill(self, session_name: str) -> bool:
        returncode, _, stderr = self._run("kill-session", "-t", f"={session_name}")
        if returncode != 0:
            logger.warning("kill-session %s failed: %s", session_name, stderr)
            return False
        return True

    def list_sessions(self) -> list[SessionInfo]:
        returncode, stdout, _ = self._run(
            "list-sessions",
            "-F",
            "#{session_name}|#{session_attached}|#{session_created}",
        )
        if returncode != 0:
            # No tmux server running means no sessions.
            return []
        sessions: list[SessionInfo] = []
        for line in stdout.splitlines():
            parts = line.split("|")
            if not parts[0].startswith(f"{self.session_prefix}-"):
                continue
            attached = len(parts) > 1 and parts[1].strip() not in {"", "0"}
            created = _format_created(parts[2]) if len(parts) > 2 else ""
            sessions.append(SessionInfo(name=parts[0], attached=attached, created=created))
        return sessions

    def attach_command(self, session_name: str) -> str:
        return f"tmux attach -t {shlex.quote(session_name)}"

    def _capture(self, session_name: str, *, start: str) -> str | None:
        returncode, stdout, stderr = self._run(
            "capture-pane",
            "-p",
            "-J",
            "-t",
            session_name,
            "-S",
            start,
            strip=False,
        )
        if returncode != 0:
            logger.debug("capture-pane %s failed: %s", session_name, stderr)
            return None
        return stdout

    def _run(self, *args: str, strip: bool = True) -> tuple[int, str, str]:
        cmd = [self.executable, *args]
        try:
            result = subprocess.run(  # noqa: S603
                cmd,
                capture_output=True,
                text=True,
                timeout=_TMUX_TIMEOUT_SECONDS,
                check=False,
            )
        except FileNotFoundError as error:
            raise ExternalToolMissingError(self.executable, TMUX_INSTALL_HINT) from error
        except subprocess.TimeoutExpired:
            return 124, "", f"{self.executable} {args[0]} timed out"
        stdout = result.stdout.strip() if strip else result.stdout
        return result.returncode, stdout, result.stderr.strip()


def session_name_for(job_id: str, *, prefix: str = "codex-agent") -> str:
    """Deterministic session handle for a job."""

    return f"{prefix}-{job_id}"


def build_agent_command(
    *,
    command_template: str,
    model: str,
    reasoning_effort: str,
    sandbox: str,
    prompt_file: Path,
) -> str:
    """Render the agent command and wrap it so its exit code lands in the output."""

    stripped = command_template.strip()
    if not stripped:
        raise InvalidArgumentError("Agent command template is empty.")
    if "{prompt_file}" not in stripped:
        raise InvalidArgumentError("Agent command template must include {prompt_file}.")
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            reasoning_effort=shlex.quote(reasoning_effort),
            sandbox=shlex.quote(sandbox),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise InvalidArgumentError(
            f"Unsupported command template placeholder: {error}",
        ) from error
    return f'{rendered}; rc=$?; echo; echo "{EXIT_MARKER_PREFIX}$rc"'


def _format_created(raw: str) -> str:
    try:
        return datetime.fromtimestamp(int(raw.strip())).isoformat(sep=" ", timespec="seconds")
    except (ValueError, OverflowError, OSError):
        return raw.strip()
