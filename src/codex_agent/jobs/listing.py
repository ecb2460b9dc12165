"""Sorted, limited job snapshots for humans and orchestrators."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from codex_agent.jobs.models import DerivedMetadata, Job, JobStatus, to_iso, utc_now
from codex_agent.jobs.transcript import load_derived_metadata

STATUS_RANK: dict[JobStatus, int] = {
    JobStatus.RUNNING: 0,
    JobStatus.PENDING: 1,
    JobStatus.FAILED: 2,
    JobStatus.COMPLETED: 3,
}


def sort_jobs(jobs: list[Job]) -> list[Job]:
    """Running first, then pending, failed, completed; newest first within a status."""

    by_newest = sorted(jobs, key=lambda job: job.created_at, reverse=True)
    return sorted(by_newest, key=lambda job: STATUS_RANK[job.status])


def apply_limit(jobs: list[Job], limit: int | None) -> list[Job]:
    if limit is None or limit <= 0:
        return list(jobs)
    return jobs[:limit]


def elapsed_ms(job: Job, *, now: datetime | None = None) -> int | None:
    """Milliseconds from start to completion, or to ``now`` while still running."""

    if job.started_at is None:
        return None
    end = job.completed_at or now or utc_now()
    return max(0, int((end - job.started_at).total_seconds() * 1000))


def derived_metadata(job: Job, *, sessions_dir: Path) -> DerivedMetadata:
    """Transcript metrics for terminal jobs; in-flight jobs never touch the transcript."""

    if not job.status.is_terminal:
        return DerivedMetadata()
    return load_derived_metadata(
        sessions_dir=sessions_dir,
        result=job.result,
        created_at=job.created_at,
    )


def job_entry(job: Job, *, sessions_dir: Path, now: datetime | None = None) -> dict[str, Any]:
    metadata = derived_metadata(job, sessions_dir=sessions_dir)
    return {
        "id": job.job_id,
        "status": job.status.value,
        "prompt": job.prompt,
        "model": job.model,
        "reasoning_effort": job.reasoning_effort.value,
        "sandbox": job.sandbox.value,
        "cwd": job.cwd,
        "tmux_session": job.tmux_session,
        "parent_session_id": job.parent_session_id,
        "created_at": to_iso(job.created_at),
        "started_at": to_iso(job.started_at) if job.started_at else None,
        "completed_at": to_iso(job.completed_at) if job.completed_at else None,
        "elapsed_ms": elapsed_ms(job, now=now),
        "error": job.error,
        "tokens": metadata.tokens.to_dict() if metadata.tokens is not None else None,
        "files_modified": metadata.files_modified,
        "summary": metadata.summary,
    }


def jobs_json(
    jobs: list[Job],
    *,
    sessions_dir: Path,
    limit: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Machine-readable listing; transcripts are read only for jobs within the limit."""

    moment = now or utc_now()
    selected = apply_limit(sort_jobs(jobs), limit)
    return {
        "generated_at": to_iso(moment),
        "jobs": [job_entry(job, sessions_dir=sessions_dir, now=moment) for job in selected],
    }
