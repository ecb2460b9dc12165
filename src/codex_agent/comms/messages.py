"""Tagged comms records exchanged through per-job JSON Lines logs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from codex_agent.jobs.models import from_iso


@dataclass(frozen=True, slots=True)
class StatusMessage:
    """Agent reports the phase of work it is in."""

    ts: str
    msg: str
    type: str = "status"


@dataclass(frozen=True, slots=True)
class FindingMessage:
    """Agent reports a noteworthy discovery."""

    ts: str
    msg: str
    type: str = "finding"


@dataclass(frozen=True, slots=True)
class DoneMessage:
    """Agent reports completion, optionally pointing at a result file."""

    ts: str
    summary: str
    result_file: str | None = None
    type: str = "done"


CommsMessage = StatusMessage | FindingMessage | DoneMessage


def comms_timestamp(now: datetime | None = None) -> str:
    """Whole-second ISO-8601 UTC timestamp with the fraction forced to zero."""

    moment = (now or datetime.now(tz=UTC)).astimezone(UTC).replace(microsecond=0)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def message_to_dict(message: CommsMessage) -> dict[str, Any]:
    """Serialize to the wire shape of one log line."""

    if isinstance(message, (StatusMessage, FindingMessage)):
        return {"type": message.type, "ts": message.ts, "msg": message.msg}
    if isinstance(message, DoneMessage):
        payload: dict[str, Any] = {"type": "done", "ts": message.ts, "summary": message.summary}
        if message.result_file is not None:
            payload["resultFile"] = message.result_file
        return payload
    raise TypeError(f"Unsupported comms message: {message!r}")


def message_from_dict(raw: Any) -> CommsMessage | None:
    """Decode one log record; ``None`` for shapes this tool does not know."""

    if not isinstance(raw, dict):
        return None
    ts = raw.get("ts")
    if not isinstance(ts, str):
        return None
    kind = raw.get("type")
    if kind in {"status", "finding"}:
        msg = raw.get("msg")
        if not isinstance(msg, str):
            return None
        if kind == "status":
            return StatusMessage(ts=ts, msg=msg)
        return FindingMessage(ts=ts, msg=msg)
    if kind == "done":
        summary = raw.get("summary")
        result_file = raw.get("resultFile")
        if not isinstance(summary, str):
            return None
        if result_file is not None and not isinstance(result_file, str):
            result_file = None
        return DoneMessage(ts=ts, summary=summary, result_file=result_file)
    return None


def message_time(message: CommsMessage) -> datetime | None:
    try:
        return from_iso(message.ts)
    except ValueError:
        return None


def format_message(message: CommsMessage) -> str:
    """Human-readable single line for terminal output."""

    moment = message_time(message)
    time_label = moment.astimezone().strftime("%H:%M:%S") if moment is not None else "??:??"
    if isinstance(message, StatusMessage):
        return f"[{time_label}] status: {message.msg}"
    if isinstance(message, FindingMessage):
        return f"[{time_label}] FINDING: {message.msg}"
    if isinstance(message, DoneMessage):
        return f"[{time_label}] DONE: {message.summary}"
    raise TypeError(f"Unsupported comms message: {message!r}")


def decode_line(line: str) -> CommsMessage | None:
    """Parse one log line; malformed or unknown lines yield ``None``."""

    stripped = line.strip()
    if not stripped:
        return None
    try:
        raw = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    return message_from_dict(raw)
