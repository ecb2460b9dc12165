"""Best-effort metrics extraction from the agent runtime's session transcript."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from codex_agent.jobs.models import DerivedMetadata, TokenUsage

logger = logging.getLogger(__name__)

_SESSION_ID = re.compile(r"session id:\s*([0-9A-Za-z][0-9A-Za-z-]*)", re.IGNORECASE)
_PATCH_FILE_DIRECTIVE = re.compile(
    r"^\*\*\* (?:Update|Add|Delete) File: (.+?)\s*$|^\*\*\* Move to: (.+?)\s*$",
    re.MULTILINE,
)
_PATCH_TOOL_NAMES = frozenset({"apply_patch"})
_TOOL_CALL_TYPES = frozenset({"custom_tool_call", "function_call"})


class TranscriptParseError(ValueError):
    """Malformed transcript content; always recovered inside this module."""


@dataclass(slots=True)
class _TranscriptScan:
    usage: dict[str, Any] | None = None
    context_window: int | None = None
    files: list[str] = field(default_factory=list)
    summary: str | None = None


def extract_session_id(result: str | None) -> str | None:
    """Return the agent session id embedded in trailing output, if any."""

    if not result:
        return None
    matches = _SESSION_ID.findall(result)
    if not matches:
        return None
    return matches[-1]


def find_transcript(
    *,
    sessions_dir: Path,
    session_id: str,
    created_at: datetime | None = None,
) -> Path | None:
    """Locate the transcript file for a session id.

    The local-date partition derived from ``created_at`` is searched first,
    then the whole sessions tree.
    """

    suffix = f"{session_id}.jsonl"
    if created_at is not None:
        local = created_at.astimezone()
        day_dir = sessions_dir / f"{local:%Y}" / f"{local:%m}" / f"{local:%d}"
        if day_dir.is_dir():
            for candidate in sorted(day_dir.iterdir()):
                if candidate.name.endswith(suffix) and candidate.is_file():
                    return candidate
    if not sessions_dir.is_dir():
        return None
    for candidate in sorted(sessions_dir.rglob(f"*{suffix}")):
        if candidate.is_file():
            return candidate
    return None


def parse_transcript(content: str) -> DerivedMetadata:
    """Parse transcript text into derived metadata; never raises."""

    try:
        scan = _scan(content)
    except TranscriptParseError as error:
        logger.debug("Transcript ignored: %s", error)
        return DerivedMetadata()
    return DerivedMetadata(
        tokens=_token_usage(scan),
        files_modified=scan.files,
        summary=scan.summary,
    )


def load_derived_metadata(
    *,
    sessions_dir: Path,
    result: str | None,
    created_at: datetime | None = None,
) -> DerivedMetadata:
    """Resolve the transcript referenced by ``result`` and parse it; never raises."""

    session_id = extract_session_id(result)
    if session_id is None:
        return DerivedMetadata()
    try:
        path = find_transcript(
            sessions_dir=sessions_dir,
            session_id=session_id,
            created_at=created_at,
        )
        if path is None:
            logger.debug("Transcript for session %s not found under %s", session_id, sessions_dir)
            return DerivedMetadata()
        content = path.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as error:
        logger.debug("Transcript for session %s unreadable: %s", session_id, error)
        return DerivedMetadata()
    return parse_transcript(content)


def _scan(content: str) -> _TranscriptScan:
    scan = _TranscriptScan()
    seen_files: set[str] = set()
    # Only "\n" delimits records; U+2028 and friends may appear raw inside strings.
    for line_no, line in enumerate(content.split("\n"), start=1):
        stripped = line.strip()
        if not stripped:
            continue
        try:
            record = json.loads(stripped)
        except json.JSONDecodeError as error:
            raise TranscriptParseError(f"line {line_no}: invalid JSON") from error
        if not isinstance(record, dict) or not isinstance(record.get("type"), str):
            raise TranscriptParseError(f"line {line_no}: record without type")

        payload = record.get("payload")
        if not isinstance(payload, dict):
            continue
        payload_type = payload.get("type")

        if record["type"] == "event_msg" and payload_type == "token_count":
            _scan_token_count(scan, payload)
        elif record["type"] == "response_item" and payload_type in _TOOL_CALL_TYPES:
            if payload.get("name") in _PATCH_TOOL_NAMES:
                for path in _patch_paths(_patch_text(payload)):
                    if path not in seen_files:
                        seen_files.add(path)
                        scan.files.append(path)
        elif record["type"] == "response_item" and payload_type == "message":
            if payload.get("role") == "assistant":
                text = _message_text(payload.get("content"))
                if text:
                    scan.summary = text
    return scan


def _scan_token_count(scan: _TranscriptScan, payload: dict[str, Any]) -> None:
    info = payload.get("info")
    if not isinstance(info, dict):
        return
    usage = info.get("total_token_usage")
    if not isinstance(usage, dict):
        return
    scan.usage = usage
    window = info.get("model_context_window")
    scan.context_window = window if isinstance(window, int) and window > 0 else None


def _token_usage(scan: _TranscriptScan) -> TokenUsage | None:
    if scan.usage is None:
        return None
    input_tokens = scan.usage.get("input_tokens")
    output_tokens = scan.usage.get("output_tokens")
    if not isinstance(input_tokens, int) or not isinstance(output_tokens, int):
        return None
    # Output tokens are not yet part of the context at report time.
    used_pct = (
        round((input_tokens / scan.context_window) * 100, 2)
        if scan.context_window
        else None
    )
    return TokenUsage(
        input=input_tokens,
        output=output_tokens,
        context_window=scan.context_window,
        context_used_pct=used_pct,
    )


def _patch_text(payload: dict[str, Any]) -> str:
    raw = payload.get("input")
    if isinstance(raw, str):
        return raw
    arguments = payload.get("arguments")
    if not isinstance(arguments, str):
        return ""
    try:
        decoded = json.loads(arguments)
    except json.JSONDecodeError:
        return arguments
    if isinstance(decoded, dict):
        if isinstance(decoded.get("input"), str):
            return decoded["input"]
        command = decoded.get("command")
        if isinstance(command, list):
            return "\n".join(part for part in command if isinstance(part, str))
    return arguments


def _patch_paths(patch: str) -> list[str]:
    paths: list[str] = []
    for match in _PATCH_FILE_DIRECTIVE.finditer(patch):
        path = match.group(1) or match.group(2)
        if path:
            paths.append(path)
    return paths


def _message_text(content: Any) -> str | None:
    if isinstance(content, str):
        return content.strip() or None
    if not isinstance(content, list):
        return None
    parts = [
        segment["text"]
        for segment in content
        if isinstance(segment, dict) and isinstance(segment.get("text"), str)
    ]
    text = "".join(parts).strip()
    return text or None
