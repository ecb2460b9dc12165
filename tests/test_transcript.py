from __future__ import annotations

import json
import time
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from codex_agent.jobs.transcript import (
    extract_session_id,
    find_transcript,
    load_derived_metadata,
    parse_transcript,
)

pytestmark = [
    allure.epic("Derived Metrics"),
    allure.feature("Transcript Parser"),
]

SESSION_ID = "019c5a2e-7d41-7c10-b1f3-5e2d9a0c4f11"
CREATED = datetime(2026, 2, 13, 10, 15, tzinfo=UTC)


def _line(record: dict) -> str:
    return json.dumps(record)


def _token_count(input_tokens: int, output_tokens: int, window: int | None = 200000) -> str:
    info: dict = {
        "total_token_usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }
    if window is not None:
        info["model_context_window"] = window
    return _line({"type": "event_msg", "payload": {"type": "token_count", "info": info}})


def _patch(body: str, *, as_function_call: bool = False) -> str:
    if as_function_call:
        payload = {
            "type": "function_call",
            "name": "apply_patch",
            "arguments": json.dumps({"input": body}),
        }
    else:
        payload = {"type": "custom_tool_call", "name": "apply_patch", "input": body}
    return _line({"type": "response_item", "payload": payload})


def _assistant(*texts: str) -> str:
    return _line(
        {
            "type": "response_item",
            "payload": {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "output_text", "text": text} for text in texts],
            },
        },
    )


def _worked_example() -> str:
    return "\n".join(
        [
            _line({"type": "session_meta", "payload": {"id": SESSION_ID}}),
            _token_count(123, 45),
            _patch("*** Begin Patch\n*** Update File: src/jobs.ts\n@@\n-old\n+new\n*** End Patch"),
            _assistant("Implemented Story 4."),
        ],
    )


def test_worked_example_yields_tokens_files_and_summary() -> None:
    metadata = parse_transcript(_worked_example())

    assert metadata.tokens is not None
    assert metadata.tokens.input == 123
    assert metadata.tokens.output == 45
    assert metadata.tokens.context_window == 200000
    assert metadata.tokens.context_used_pct == 0.06
    assert metadata.files_modified == ["src/jobs.ts"]
    assert metadata.summary == "Implemented Story 4."


def test_last_token_count_and_last_assistant_message_win() -> None:
    content = "\n".join(
        [
            _token_count(1000, 10),
            _assistant("Working on it"),
            _token_count(50000, 900),
            _line({"type": "response_item", "payload": {"type": "reasoning", "summary": []}}),
            _assistant("Done: ", "all tests pass"),
        ],
    )

    metadata = parse_transcript(content)

    assert metadata.tokens is not None
    assert metadata.tokens.input == 50000
    assert metadata.tokens.context_used_pct == 25.0
    assert metadata.summary == "Done: all tests pass"
    assert metadata.files_modified == []


def test_patch_paths_are_deduplicated_in_first_seen_order() -> None:
    content = "\n".join(
        [
            _patch("*** Begin Patch\n*** Add File: docs/notes.md\n+hi\n*** End Patch"),
            _patch(
                "*** Begin Patch\n*** Update File: src/a.py\n*** Move to: src/b.py\n"
                "*** Delete File: src/old.py\n*** End Patch",
                as_function_call=True,
            ),
            _patch("*** Begin Patch\n*** Update File: docs/notes.md\n*** End Patch"),
        ],
    )

    metadata = parse_transcript(content)

    assert metadata.files_modified == ["docs/notes.md", "src/a.py", "src/b.py", "src/old.py"]


def test_other_tool_calls_are_ignored() -> None:
    content = _line(
        {
            "type": "response_item",
            "payload": {
                "type": "function_call",
                "name": "shell",
                "arguments": json.dumps({"command": ["cat", "*** Update File: nope.py"]}),
            },
        },
    )

    assert parse_transcript(content).files_modified == []


def test_missing_context_window_leaves_percentage_unset() -> None:
    metadata = parse_transcript(_token_count(10, 2, window=None))

    assert metadata.tokens is not None
    assert metadata.tokens.context_window is None
    assert metadata.tokens.context_used_pct is None


def test_malformed_line_nulls_every_field() -> None:
    content = _worked_example() + "\n{broken"

    metadata = parse_transcript(content)

    assert metadata.tokens is None
    assert metadata.files_modified is None
    assert metadata.summary is None


def test_record_without_discriminant_nulls_every_field() -> None:
    content = _worked_example() + "\n" + _line({"payload": {"type": "token_count"}})

    metadata = parse_transcript(content)

    assert (metadata.tokens, metadata.files_modified, metadata.summary) == (None, None, None)


def test_extract_session_id_takes_last_reference() -> None:
    output = "OpenAI Codex\nsession id: first-1\n...\nsession id: " + SESSION_ID + "\n"

    assert extract_session_id(output) == SESSION_ID
    assert extract_session_id("no reference here") is None
    assert extract_session_id(None) is None


def test_find_transcript_prefers_date_partition_then_falls_back(tmp_path: Path) -> None:
    sessions_dir = tmp_path / "sessions"
    day_dir = sessions_dir / "2026" / "02" / "13"
    day_dir.mkdir(parents=True)
    dated = day_dir / f"rollout-2026-02-13T10-15-00-{SESSION_ID}.jsonl"
    dated.write_text(_worked_example(), "utf-8")

    assert find_transcript(sessions_dir=sessions_dir, session_id=SESSION_ID, created_at=CREATED) == dated

    other = "aaaa-bbbb"
    flat = sessions_dir / f"session-{other}.jsonl"
    flat.write_text("", "utf-8")
    assert find_transcript(sessions_dir=sessions_dir, session_id=other, created_at=CREATED) == flat
    assert find_transcript(sessions_dir=sessions_dir, session_id="unknown") is None


def test_load_derived_metadata_reads_referenced_transcript(tmp_path: Path) -> None:
    sessions_dir = tmp_path / "sessions"
    day_dir = sessions_dir / "2026" / "02" / "13"
    day_dir.mkdir(parents=True)
    (day_dir / f"session-{SESSION_ID}.jsonl").write_text(_worked_example(), "utf-8")

    metadata = load_derived_metadata(
        sessions_dir=sessions_dir,
        result=f"header\nsession id: {SESSION_ID}\nbody",
        created_at=CREATED,
    )

    assert metadata.summary == "Implemented Story 4."
    assert metadata.files_modified == ["src/jobs.ts"]


def test_load_derived_metadata_without_transcript_is_all_null(tmp_path: Path) -> None:
    missing = load_derived_metadata(
        sessions_dir=tmp_path / "sessions",
        result=f"session id: {SESSION_ID}",
        created_at=CREATED,
    )
    unreferenced = load_derived_metadata(sessions_dir=tmp_path, result="plain output")

    for metadata in (missing, unreferenced):
        assert metadata.tokens is None
        assert metadata.files_modified is None
        assert metadata.summary is None


def test_unicode_line_separators_inside_strings_do_not_split_records() -> None:
    message = json.dumps(
        {
            "type": "response_item",
            "payload": {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "output_text", "text": "Done\u2028really."}],
            },
        },
        ensure_ascii=False,
    )

    metadata = parse_transcript(_token_count(123, 45) + "\n" + message)

    assert metadata.tokens is not None
    assert (metadata.tokens.input, metadata.tokens.output) == (123, 45)
    assert metadata.summary == "Done\u2028really."


def test_find_transcript_uses_local_date_partition(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("TZ", "JST-9")
    time.tzset()
    try:
        sessions_dir = tmp_path / "sessions"
        # 20:30 UTC on the 13th is already the 14th in Tokyo.
        created = datetime(2026, 2, 13, 20, 30, tzinfo=UTC)
        local_day = sessions_dir / "2026" / "02" / "14"
        local_day.mkdir(parents=True)
        expected = local_day / f"rollout-{SESSION_ID}.jsonl"
        expected.write_text("", "utf-8")
        utc_day = sessions_dir / "2026" / "02" / "13"
        utc_day.mkdir()
        (utc_day / f"rollout-stale-{SESSION_ID}.jsonl").write_text("", "utf-8")

        found = find_transcript(sessions_dir=sessions_dir, session_id=SESSION_ID, created_at=created)
    finally:
        monkeypatch.undo()
        time.tzset()

    assert found == expected
