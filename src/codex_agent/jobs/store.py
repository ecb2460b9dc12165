"""File-per-job persistence shared by unrelated process instances."""

from __future__ import annotations

import json
import logging
import os
import secrets
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from codex_agent.errors import JobNotFoundError
from codex_agent.jobs.models import (
    Job,
    JobStatus,
    ReasoningEffort,
    SandboxMode,
    utc_now,
)

logger = logging.getLogger(__name__)

_JOB_ID_BYTES = 4
_SIDE_FILE_SUFFIXES = (".prompt", ".log")


class JobStore:
    """Job records as individual JSON files keyed by job id.

    Every mutation rewrites the whole record through a temporary file and
    ``os.replace``, so a concurrent reader sees either the old or the new
    record, never a partial one.
    """

    def __init__(self, jobs_dir: Path) -> None:
        self.jobs_dir = jobs_dir

    def record_path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{job_id}.json"

    def prompt_path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{job_id}.prompt"

    def log_path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{job_id}.log"

    def create(  # noqa: PLR0913
        self,
        *,
        prompt: str,
        model: str,
        reasoning_effort: ReasoningEffort,
        sandbox: SandboxMode,
        cwd: str,
        parent_session_id: str | None = None,
    ) -> Job:
        """Persist a new pending job under a fresh id."""

        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        job_id = self._new_job_id()
        job = Job(
            job_id=job_id,
            status=JobStatus.PENDING,
            prompt=prompt,
            model=model,
            reasoning_effort=reasoning_effort,
            sandbox=sandbox,
            cwd=cwd,
            created_at=utc_now(),
            parent_session_id=parent_session_id,
        )
        self.save(job)
        logger.info("Created job %s", job_id)
        return job

    def load(self, job_id: str) -> Job:
        """Load one job or raise ``JobNotFoundError``."""

        path = self.record_path(job_id)
        try:
            raw = json.loads(path.read_text("utf-8"))
        except FileNotFoundError as error:
            raise JobNotFoundError(job_id) from error
        except (OSError, ValueError) as error:
            logger.warning("Unreadable job record %s: %s", path, error)
            raise JobNotFoundError(job_id) from error
        try:
            if not isinstance(raw, dict):
                raise TypeError(f"Expected JSON object in {path}")
            return Job.from_record(raw)
        except (TypeError, ValueError) as error:
            logger.warning("Invalid job record %s: %s", path, error)
            raise JobNotFoundError(job_id) from error

    def exists(self, job_id: str) -> bool:
        return self.record_path(job_id).is_file()

    def list_jobs(self) -> list[Job]:
        """All readable job records; corrupt ones are skipped."""

        if not self.jobs_dir.is_dir():
            return []
        jobs: list[Job] = []
        for path in sorted(self.jobs_dir.glob("*.json")):
            try:
                jobs.append(self.load(path.stem))
            except JobNotFoundError:
                continue
        return jobs

    def save(self, job: Job) -> None:
        """Overwrite the whole record atomically."""

        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        path = self.record_path(job.job_id)
        tmp_path = self.jobs_dir / f".{job.job_id}.{uuid4().hex}.tmp"
        payload = json.dumps(job.to_record(), ensure_ascii=False, indent=2) + "\n"
        try:
            tmp_path.write_text(payload, "utf-8")
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)

    def delete(self, job_id: str) -> bool:
        """Remove a job record and its side files; ``False`` if unknown."""

        path = self.record_path(job_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        for suffix in _SIDE_FILE_SUFFIXES:
            (self.jobs_dir / f"{job_id}{suffix}").unlink(missing_ok=True)
        logger.info("Deleted job %s", job_id)
        return True

    def cleanup_old(self, max_age_days: int, *, now: datetime | None = None) -> int:
        """Delete completed/failed jobs whose terminal time is past the threshold.

        Pending and running jobs are never swept, whatever their age.
        """

        cutoff = (now or utc_now()) - timedelta(days=max_age_days)
        removed = 0
        for job in self.list_jobs():
            if not job.status.is_terminal:
                continue
            finished_at = job.completed_at or job.created_at
            if finished_at >= cutoff:
                continue
            if self.delete(job.job_id):
                removed += 1
        return removed

    def _new_job_id(self) -> str:
        while True:
            job_id = secrets.token_hex(_JOB_ID_BYTES)
            if not self.exists(job_id):
                return job_id
