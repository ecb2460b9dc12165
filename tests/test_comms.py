from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from codex_agent.comms.channel import CommsChannel
from codex_agent.comms.messages import (
    CommsMessage,
    DoneMessage,
    FindingMessage,
    StatusMessage,
    comms_timestamp,
    decode_line,
    format_message,
    message_to_dict,
)

pytestmark = [
    allure.epic("Comms"),
    allure.feature("Append-only Log"),
]

NOW = datetime(2026, 2, 13, 10, 15, 42, 987654, tzinfo=UTC)


@pytest.fixture()
def channel(tmp_path: Path) -> CommsChannel:
    return CommsChannel(tmp_path / "comms")


def _append_raw(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text)


def test_timestamp_is_whole_second_iso() -> None:
    assert comms_timestamp(NOW) == "2026-02-13T10:15:42.000Z"


def test_writes_append_one_record_per_line(channel: CommsChannel) -> None:
    channel.write_status("job1", "Reading files", now=NOW)
    channel.write_finding("job1", "Found SQL injection", now=NOW)
    channel.write_done("job1", "All done", "/tmp/codex-agent/job1-result.md", now=NOW)

    lines = channel.path("job1").read_text("utf-8").splitlines()

    assert [json.loads(line) for line in lines] == [
        {"type": "status", "ts": "2026-02-13T10:15:42.000Z", "msg": "Reading files"},
        {"type": "finding", "ts": "2026-02-13T10:15:42.000Z", "msg": "Found SQL injection"},
        {
            "type": "done",
            "ts": "2026-02-13T10:15:42.000Z",
            "summary": "All done",
            "resultFile": "/tmp/codex-agent/job1-result.md",
        },
    ]


def test_done_without_result_file_omits_the_key() -> None:
    payload = message_to_dict(DoneMessage(ts="2026-02-13T10:15:42.000Z", summary="ok"))

    assert payload == {"type": "done", "ts": "2026-02-13T10:15:42.000Z", "summary": "ok"}


def test_read_all_skips_malformed_and_unknown_lines(channel: CommsChannel) -> None:
    channel.write_status("job1", "one", now=NOW)
    _append_raw(channel.path("job1"), "not json\n")
    _append_raw(channel.path("job1"), '{"type":"mystery","ts":"2026-02-13T10:15:42.000Z"}\n')
    _append_raw(channel.path("job1"), "\n")
    channel.write_finding("job1", "two", now=NOW)

    messages = channel.read_all("job1")

    assert messages == [
        StatusMessage(ts="2026-02-13T10:15:42.000Z", msg="one"),
        FindingMessage(ts="2026-02-13T10:15:42.000Z", msg="two"),
    ]


def test_read_all_of_missing_log_is_empty(channel: CommsChannel) -> None:
    assert channel.read_all("nope") == []


def test_decode_line_requires_known_shapes() -> None:
    assert decode_line('{"type":"status","ts":"x"}') is None
    assert decode_line('["status"]') is None
    assert decode_line('{"type":"done","ts":"t","summary":"s","resultFile":"r"}') == DoneMessage(
        ts="t",
        summary="s",
        result_file="r",
    )


def test_format_message_labels_each_variant() -> None:
    ts = "2026-02-13T10:15:42.000Z"

    assert format_message(StatusMessage(ts=ts, msg="phase 1")).endswith("] status: phase 1")
    assert format_message(FindingMessage(ts=ts, msg="bug")).endswith("] FINDING: bug")
    assert format_message(DoneMessage(ts=ts, summary="ok")).endswith("] DONE: ok")
    assert format_message(StatusMessage(ts="garbage", msg="x")).startswith("[??:??]")


def test_latest_activity_and_stuck_detection(channel: CommsChannel) -> None:
    assert channel.latest_activity("job1") is None
    assert channel.is_agent_stuck("job1", 10, now=NOW) is False

    channel.write_status("job1", "started", now=NOW - timedelta(minutes=30))
    channel.write_status("job1", "still going", now=NOW - timedelta(minutes=5))

    assert channel.latest_activity("job1") == datetime(2026, 2, 13, 10, 10, 42, tzinfo=UTC)
    assert channel.is_agent_stuck("job1", 10, now=NOW) is False
    assert channel.is_agent_stuck("job1", 3, now=NOW) is True


def test_watch_batches_concatenate_to_read_all(channel: CommsChannel) -> None:
    batches: list[list[CommsMessage]] = []
    channel.write_status("job1", "existing", now=NOW)

    watcher = channel.watch("job1", batches.append)
    assert len(batches) == 1

    path = channel.path("job1")
    _append_raw(path, '{"type":"status","ts":"2026-02-13T10:15:42.000Z","msg":"a"}\nnot json\n')
    _append_raw(path, '{"type":"finding","ts":"2026-02-13T10:15:42.000Z","msg":"b"')
    watcher.poll()
    assert len(batches) == 2
    assert batches[1] == [StatusMessage(ts="2026-02-13T10:15:42.000Z", msg="a")]

    _append_raw(path, "}\n")
    channel.write_done("job1", "finished", now=NOW)
    watcher.poll()
    watcher.stop()

    delivered = [message for batch in batches for message in batch]
    assert delivered == channel.read_all("job1")
    assert batches[2] == [
        FindingMessage(ts="2026-02-13T10:15:42.000Z", msg="b"),
        DoneMessage(ts="2026-02-13T10:15:42.000Z", summary="finished"),
    ]


def test_poll_without_new_bytes_does_not_call_back(channel: CommsChannel) -> None:
    calls: list[list[CommsMessage]] = []
    channel.write_status("job1", "existing", now=NOW)
    watcher = channel.watch("job1", calls.append)

    watcher.poll()
    watcher.check()
    watcher.poll()

    assert len(calls) == 1
    assert watcher.offset == channel.path("job1").stat().st_size


def test_incomplete_trailing_line_is_not_delivered(channel: CommsChannel) -> None:
    calls: list[list[CommsMessage]] = []
    watcher = channel.watch("job1", calls.append)
    _append_raw(channel.path("job1"), '{"type":"status","ts":"t","msg":"half')

    watcher.poll()

    assert calls == []


def test_shrunk_log_is_reread_from_the_start(channel: CommsChannel) -> None:
    batches: list[list[CommsMessage]] = []
    channel.write_status("job1", "first run, message one", now=NOW)
    channel.write_status("job1", "first run, message two", now=NOW)
    watcher = channel.watch("job1", batches.append)

    channel.path("job1").write_text(
        '{"type":"status","ts":"2026-02-13T10:15:42.000Z","msg":"restarted"}\n',
        "utf-8",
    )
    watcher.poll()

    assert batches[-1] == [StatusMessage(ts="2026-02-13T10:15:42.000Z", msg="restarted")]
    assert watcher.offset == channel.path("job1").stat().st_size


def test_watch_waits_for_log_creation_then_switches_to_file(channel: CommsChannel) -> None:
    batches: list[list[CommsMessage]] = []
    watcher = channel.watch("job1", batches.append)

    assert watcher.watching_directory
    assert not watcher.watching_file
    watcher.check()
    assert batches == []

    channel.write_status("job1", "hello", now=NOW)
    watcher.check()

    assert batches == [[StatusMessage(ts="2026-02-13T10:15:42.000Z", msg="hello")]]
    assert watcher.watching_file
    assert not watcher.watching_directory

    channel.write_finding("job1", "more", now=NOW)
    watcher.check()
    assert batches[-1] == [FindingMessage(ts="2026-02-13T10:15:42.000Z", msg="more")]


def test_stop_is_idempotent_and_safe_inside_callback(channel: CommsChannel) -> None:
    batches: list[list[CommsMessage]] = []
    holder = {}

    def on_messages(messages: list[CommsMessage]) -> None:
        batches.append(messages)
        holder["watcher"].stop()

    holder["watcher"] = channel.watch("job1", on_messages)
    channel.write_status("job1", "one", now=NOW)
    holder["watcher"].check()

    watcher = holder["watcher"]
    assert watcher.stopped
    assert not watcher.watching_file
    assert not watcher.watching_directory
    watcher.stop()

    channel.write_status("job1", "two", now=NOW)
    watcher.check()
    watcher.poll()
    assert len(batches) == 1
