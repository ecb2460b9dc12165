"""CLI entrypoint for codex-agent."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from codex_agent import __version__
from codex_agent.controllers import (
    CaptureCommand,
    CliResult,
    CommsDoneCommand,
    JobsCliController,
    JobsCommand,
    StartCommand,
)
from codex_agent.errors import CodexAgentError
from codex_agent.jobs.models import AgentType, ReasoningEffort, SandboxMode

click.rich_click.USE_MARKDOWN = True
CONTROLLER = JobsCliController()

_REASONING_CHOICES = [effort.value for effort in ReasoningEffort]
_SANDBOX_CHOICES = [mode.value for mode in SandboxMode] + ["read-only"]
_AGENT_TYPE_CHOICES = [agent_type.value for agent_type in AgentType]


@click.group()
@click.version_option(version=__version__, prog_name="codex-agent")
def codex_agent() -> None:
    """Delegate tasks to Codex agents running in tmux sessions.

    Use `send` to give agents more instructions mid-task, `capture` to read
    recent output and `attach` to interact directly in tmux.
    """


@codex_agent.command("start")
@click.argument("prompt", nargs=-1, required=True)
@click.option(
    "-r",
    "--reasoning",
    type=click.Choice(_REASONING_CHOICES, case_sensitive=False),
    default=None,
    help="Reasoning effort. Defaults to CODEX_AGENT_REASONING_EFFORT or high.",
)
@click.option("-m", "--model", default=None, help="Model name. Defaults to CODEX_AGENT_MODEL.")
@click.option(
    "-s",
    "--sandbox",
    type=click.Choice(_SANDBOX_CHOICES, case_sensitive=False),
    default=None,
    help="Sandbox mode. `read-only` is accepted and mapped to workspace-write.",
)
@click.option(
    "-f",
    "--file",
    "files",
    multiple=True,
    help="Include files matching glob. Can be repeated; prefix with ! to exclude.",
)
@click.option(
    "-d",
    "--dir",
    "cwd",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path.cwd,
    help="Working directory (default: current directory).",
)
@click.option(
    "--type",
    "agent_type",
    type=click.Choice(_AGENT_TYPE_CHOICES, case_sensitive=False),
    default=AgentType.IMPLEMENTATION.value,
    show_default=True,
    help="Agent type the prompt is assembled for.",
)
@click.option("--parent-session", default=None, help="Parent session ID for linkage.")
@click.option("--design-doc", default=None, help="Design document the agent should read.")
@click.option("--prd", default=None, help="PRD the agent should read.")
@click.option("--scope", multiple=True, help="File the implementation agent owns. Can be repeated.")
@click.option(
    "--changed-file",
    "changed_files",
    multiple=True,
    help="Changed file to review. Can be repeated.",
)
@click.option("--implementation-report", default=None, help="Implementation report for reviews.")
@click.option("--story-criteria", default=None, help="Story spec and acceptance criteria.")
@click.option("--dry-run", is_flag=True, help="Show the prompt without starting an agent.")
def start(  # noqa: PLR0913
    prompt: tuple[str, ...],
    reasoning: str | None,
    model: str | None,
    sandbox: str | None,
    files: tuple[str, ...],
    cwd: Path,
    agent_type: str,
    parent_session: str | None,
    design_doc: str | None,
    prd: str | None,
    scope: tuple[str, ...],
    changed_files: tuple[str, ...],
    implementation_report: str | None,
    story_criteria: str | None,
    dry_run: bool,
) -> None:
    """Start an agent in a new tmux session."""

    _emit_result(
        CONTROLLER.start(
            StartCommand(
                prompt=" ".join(prompt),
                model=model,
                reasoning=reasoning,
                sandbox=sandbox,
                files=files,
                cwd=cwd,
                agent_type=agent_type,
                parent_session_id=parent_session,
                dry_run=dry_run,
                design_doc=design_doc,
                prd=prd,
                scope=scope,
                implementation_report=implementation_report,
                story_criteria=story_criteria,
                changed_files=changed_files,
            ),
        ),
    )


@codex_agent.command("status")
@click.argument("job_id")
def status(job_id: str) -> None:
    """Refresh and show the status of a job."""

    _emit_result(CONTROLLER.status(job_id))


@codex_agent.command("send")
@click.argument("job_id")
@click.argument("message", nargs=-1, required=True)
def send(job_id: str, message: tuple[str, ...]) -> None:
    """Send a message to a running agent."""

    _emit_result(CONTROLLER.send(job_id, " ".join(message)))


@codex_agent.command("capture")
@click.argument("job_id")
@click.argument("lines", type=click.IntRange(min=1), required=False)
@click.option("--comms", is_flag=True, help="Show formatted comms messages instead of tmux output.")
@click.option("--strip-ansi", is_flag=True, help="Remove ANSI escape codes from output.")
def capture(job_id: str, lines: int | None, comms: bool, strip_ansi: bool) -> None:
    """Capture recent tmux output (default: 50 lines)."""

    _emit_result(
        CONTROLLER.capture(
            CaptureCommand(job_id=job_id, lines=lines, comms=comms, strip_ansi=strip_ansi),
        ),
    )


@codex_agent.command("output")
@click.argument("job_id")
@click.option("--strip-ansi", is_flag=True, help="Remove ANSI escape codes from output.")
def output(job_id: str, strip_ansi: bool) -> None:
    """Print the full session output."""

    _emit_result(CONTROLLER.output(job_id, strip_ansi_codes=strip_ansi))


@codex_agent.command("attach")
@click.argument("job_id")
def attach(job_id: str) -> None:
    """Print the tmux attach command for a job."""

    _emit_result(CONTROLLER.attach(job_id))


@codex_agent.command("watch")
@click.argument("job_id")
def watch(job_id: str) -> None:
    """Stream output updates until the job ends."""

    _run_stream(CONTROLLER.watch, job_id)


@codex_agent.command("watch-comms")
@click.argument("job_id")
def watch_comms(job_id: str) -> None:
    """Watch agent comms in real time."""

    _run_stream(CONTROLLER.watch_comms, job_id)


@codex_agent.command("monitor")
@click.argument("job_id")
def monitor(job_id: str) -> None:
    """Block until the agent reports done (exit 0), its session is lost (1) or Ctrl+C (130)."""

    _run_stream(CONTROLLER.monitor, job_id)


@codex_agent.command("jobs")
@click.option("--json", "as_json", is_flag=True, help="Output JSON with derived metrics.")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Limit jobs shown. Defaults to CODEX_AGENT_JOBS_LIMIT or 20.",
)
@click.option("--all", "show_all", is_flag=True, help="Show all jobs.")
def jobs(as_json: bool, limit: int | None, show_all: bool) -> None:
    """List jobs, running first."""

    _emit_result(CONTROLLER.jobs(JobsCommand(as_json=as_json, limit=limit, show_all=show_all)))


@codex_agent.command("sessions")
def sessions() -> None:
    """List active codex-agent tmux sessions."""

    _emit_result(CONTROLLER.sessions())


@codex_agent.command("kill")
@click.argument("job_id")
def kill(job_id: str) -> None:
    """Kill a running job and its tmux session."""

    _emit_result(CONTROLLER.kill(job_id))


@codex_agent.command("clean")
@click.option(
    "--days",
    type=click.IntRange(min=0),
    default=None,
    help="Age threshold in days. Defaults to CODEX_AGENT_CLEAN_DAYS or 7.",
)
def clean(days: int | None) -> None:
    """Delete completed and failed jobs older than the threshold."""

    _emit_result(CONTROLLER.clean(days))


@codex_agent.command("delete")
@click.argument("job_id")
def delete(job_id: str) -> None:
    """Delete a job record and its side files."""

    _emit_result(CONTROLLER.delete(job_id))


@codex_agent.command("health")
def health() -> None:
    """Check tmux and codex availability."""

    _emit_result(CONTROLLER.health())


@codex_agent.group()
def comms() -> None:
    """Write comms updates (used by agents)."""


@comms.command("status")
@click.argument("job_id")
@click.argument("message", nargs=-1, required=True)
def comms_status(job_id: str, message: tuple[str, ...]) -> None:
    """Report the current work phase."""

    _emit_result(CONTROLLER.comms_status(job_id, " ".join(message)))


@comms.command("finding")
@click.argument("job_id")
@click.argument("message", nargs=-1, required=True)
def comms_finding(job_id: str, message: tuple[str, ...]) -> None:
    """Report a discovery."""

    _emit_result(CONTROLLER.comms_finding(job_id, " ".join(message)))


@comms.command("done")
@click.argument("job_id")
@click.argument("summary", nargs=-1)
@click.option(
    "--file",
    "result_file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Result file; its first line becomes the summary.",
)
def comms_done(job_id: str, summary: tuple[str, ...], result_file: Path | None) -> None:
    """Report task completion with a summary or a result file."""

    _emit_result(
        CONTROLLER.comms_done(
            CommsDoneCommand(job_id=job_id, summary=" ".join(summary), result_file=result_file),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


def _emit_result(result: CliResult) -> None:
    for notice in result.notices:
        click.echo(notice, err=True)
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(result.error or "Command failed.")


def _run_stream(runner: Callable[..., int], job_id: str) -> None:
    try:
        exit_code = runner(
            job_id,
            out=click.echo,
            err=lambda line: click.echo(line, err=True),
        )
    except (CodexAgentError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    codex_agent()
