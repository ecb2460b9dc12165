"""Per-job append-only comms logs shared by the agent and the CLI."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

from codex_agent.comms.messages import (
    CommsMessage,
    DoneMessage,
    FindingMessage,
    StatusMessage,
    comms_timestamp,
    decode_line,
    message_time,
    message_to_dict,
)
from codex_agent.comms.watcher import CommsWatcher, MessagesCallback

logger = logging.getLogger(__name__)


class CommsChannel:
    """Read and append comms records under one directory."""

    def __init__(self, comms_dir: Path) -> None:
        self.comms_dir = comms_dir

    def path(self, job_id: str) -> Path:
        return self.comms_dir / f"{job_id}.jsonl"

    def result_path(self, job_id: str) -> Path:
        return self.comms_dir / f"{job_id}-result.md"

    def append(self, job_id: str, message: CommsMessage) -> CommsMessage:
        """Append one record as a single line."""

        self.comms_dir.mkdir(parents=True, exist_ok=True)
        line = json.dumps(message_to_dict(message), ensure_ascii=False) + "\n"
        with self.path(job_id).open("a", encoding="utf-8") as handle:
            handle.write(line)
        logger.debug("Appended %s record to comms log of job %s", message.type, job_id)
        return message

    def write_status(self, job_id: str, msg: str, *, now: datetime | None = None) -> CommsMessage:
        return self.append(job_id, StatusMessage(ts=comms_timestamp(now), msg=msg))

    def write_finding(self, job_id: str, msg: str, *, now: datetime | None = None) -> CommsMessage:
        return self.append(job_id, FindingMessage(ts=comms_timestamp(now), msg=msg))

    def write_done(
        self,
        job_id: str,
        summary: str,
        result_file: str | None = None,
        *,
        now: datetime | None = None,
    ) -> CommsMessage:
        return self.append(
            job_id,
            DoneMessage(ts=comms_timestamp(now), summary=summary, result_file=result_file),
        )

    def read_all(self, job_id: str) -> list[CommsMessage]:
        """Every well-formed record in file order; malformed lines are skipped."""

        try:
            content = self.path(job_id).read_text("utf-8", errors="replace")
        except FileNotFoundError:
            return []
        messages: list[CommsMessage] = []
        for line in content.split("\n"):
            message = decode_line(line)
            if message is not None:
                messages.append(message)
        return messages

    def latest_activity(self, job_id: str) -> datetime | None:
        """Timestamp of the newest record, or ``None`` for an empty log."""

        messages = self.read_all(job_id)
        if not messages:
            return None
        return message_time(messages[-1])

    def is_agent_stuck(
        self,
        job_id: str,
        threshold_minutes: int = 10,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Whether the agent reported before but has been silent past the threshold."""

        latest = self.latest_activity(job_id)
        if latest is None:
            return False
        current = now or datetime.now(tz=UTC)
        return current - latest > timedelta(minutes=threshold_minutes)

    def watch(self, job_id: str, callback: MessagesCallback) -> CommsWatcher:
        """Start tailing a job's log; the caller drives ``check`` and calls ``stop``."""

        return CommsWatcher(self.path(job_id), callback).start()
