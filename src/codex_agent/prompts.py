"""Prompt templates for each delegated agent type."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from codex_agent.jobs.models import AgentType

_ROLE_DESCRIPTIONS: dict[AgentType, str] = {
    AgentType.RESEARCH: (
        "You are a research agent. Use workspace-write sandbox access for communication "
        "and output files. Focus on exploration: search the codebase, read files, and "
        "analyze patterns. Do not modify source files unless explicitly asked. Write "
        "findings to the comms file as you discover them. When finished, write your "
        "detailed findings to the result file and report completion."
    ),
    AgentType.IMPLEMENTATION: (
        "You are an implementation agent. Implement the task below. Write status updates "
        "as you work. When done, write a detailed summary of changes to the result file, "
        "then report completion with the result file path."
    ),
    AgentType.REVIEW: (
        "You are a review agent. Perform code review for bugs, security issues, and code "
        "quality. Do not modify source files unless explicitly asked. Write findings to "
        "the comms file. When finished, write your full review to the result file and "
        "report completion."
    ),
    AgentType.TEST: (
        "You are a test agent. Write and run tests for the specified code. Write status "
        "updates as you work. When done, write detailed test results to the result file, "
        "then report completion with the result file path."
    ),
    AgentType.SPEC_REVIEW: (
        "You are a spec compliance reviewer. Compare the implementation against the story "
        "spec and acceptance criteria. Read the actual code in the changed files and do "
        "not trust the implementation report by itself. Verify each acceptance criterion "
        "directly in code. Report PASS or FAIL for every criterion with specific file:line "
        "references. If any criterion fails, explain exactly what is missing or wrong."
    ),
    AgentType.QUALITY_REVIEW: (
        "You are a code quality reviewer. Review the implementation for code quality, "
        "patterns, error handling, security, and test quality. Categorize issues as "
        "Critical, Important, or Minor and include file:line references for every issue. "
        "Acknowledge what was done well."
    ),
}

# Agent types that report intermediate discoveries.
_FINDING_TYPES = frozenset(
    {AgentType.RESEARCH, AgentType.REVIEW, AgentType.SPEC_REVIEW, AgentType.QUALITY_REVIEW},
)

DISCIPLINES_BLOCK = """\
## Disciplines

### TDD (Test-Driven Development)
- Write a failing test first, before writing any implementation code.
- Run the test and verify it fails for the correct reason.
- Write the minimal code needed to make the test pass.
- Run the test again and verify it passes.
- Refactor while keeping tests green.
- If you wrote code without a test first, delete it and restart with a failing test.

### Verification Before Completion
- Run the full test suite before reporting done.
- Include complete test output in the result file.
- If any test fails, fix it before reporting done.
- Do not claim "should work" without running the tests and proving it.

### Systematic Debugging
- Find the root cause before fixing.
- Read errors carefully, including stack traces.
- Reproduce the issue consistently before attempting a fix.
- Form a single hypothesis and test it with the smallest possible change.
- If 3 or more fix attempts fail, report findings and investigation notes rather than guessing."""

_COMMS_TEMPLATE = """\
## Communication

You are a delegated Codex agent managed by an orchestrator. The orchestrator monitors your
progress through a JSONL comms file and collects your detailed output from a result file.
- Comms file: short status updates (read by the orchestrator in real time)
- Result file: {result_file} (write your detailed findings/output here before finishing)

Your job ID is: {job_id}

Report your progress using these commands:

  codex-agent comms status {job_id} "<what you are doing>"
    Run when starting a new phase of work.

  codex-agent comms done {job_id} --file {result_file}
    Run when the task is complete. Write your detailed results to {result_file} first,
    then run this command. The orchestrator will read the file for your full output.

  codex-agent comms done {job_id} "<summary of what you did>"
    Alternative: inline summary if no result file is needed."""

_FINDING_TEMPLATE = """

  codex-agent comms finding {job_id} "<what you found>"
    Run when you discover something noteworthy."""


@dataclass(slots=True)
class PromptOptions:
    """Everything the prompt of one delegated job is assembled from."""

    agent_type: AgentType
    task: str
    job_id: str
    result_file: Path | None = None
    files: list[str] = field(default_factory=list)
    design_doc: str | None = None
    prd: str | None = None
    scope: list[str] = field(default_factory=list)
    implementation_report: str | None = None
    story_criteria: str | None = None
    changed_files: list[str] = field(default_factory=list)


def default_result_file(job_id: str) -> Path:
    return Path("/tmp/codex-agent") / f"{job_id}-result.md"  # noqa: S108


def build_comms_block(job_id: str, agent_type: AgentType, result_file: Path | None = None) -> str:
    """Instructions for reporting progress through ``codex-agent comms``."""

    resolved = result_file or default_result_file(job_id)
    block = _COMMS_TEMPLATE.format(job_id=job_id, result_file=resolved)
    if agent_type in _FINDING_TYPES:
        block += _FINDING_TEMPLATE.format(job_id=job_id)
    return block


def build_prompt(options: PromptOptions) -> str:
    """Assemble the full prompt: communication, role, then type-specific sections."""

    sections = [
        build_comms_block(options.job_id, options.agent_type, options.result_file),
        f"## Role\n\n{_ROLE_DESCRIPTIONS[options.agent_type]}",
    ]
    if options.agent_type == AgentType.IMPLEMENTATION:
        sections.append(DISCIPLINES_BLOCK)

    story_criteria = (options.story_criteria or "").strip()
    implementation_report = (options.implementation_report or "").strip()

    if options.agent_type == AgentType.SPEC_REVIEW:
        if story_criteria:
            sections.append(f"## Story Spec\n\n{story_criteria}")
        if implementation_report:
            sections.append(f"## Implementation Report\n\n{implementation_report}")
        if options.changed_files:
            sections.append("## Changed Files\n\n" + "\n".join(options.changed_files))
    elif options.agent_type == AgentType.QUALITY_REVIEW:
        if implementation_report:
            sections.append(f"## Implementation Summary\n\n{implementation_report}")
        if options.changed_files:
            sections.append("## Changed Files\n\n" + "\n".join(options.changed_files))
    else:
        context = _context_lines(options)
        if context:
            sections.append("## Context\n\n" + "\n\n".join(context))
        if options.agent_type == AgentType.IMPLEMENTATION and options.scope:
            sections.append(
                "## Scope\n\nYou own these files - only modify files in this list:\n"
                + "\n".join(options.scope)
                + "\nDo not modify files outside your scope.",
            )

    sections.append(f"## Task\n\n{options.task}")
    return "\n\n".join(sections)


def _context_lines(options: PromptOptions) -> list[str]:
    lines: list[str] = []
    if options.design_doc:
        lines.append(f"Read the design document at: {options.design_doc}")
    if options.prd:
        lines.append(f"Read the PRD at: {options.prd}")
    if options.files:
        lines.append("Reference these files:\n" + "\n".join(options.files))
    return lines
