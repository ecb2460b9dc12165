from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import allure
import pytest

from codex_agent.comms.channel import CommsChannel
from codex_agent.config import Settings
from codex_agent.jobs.models import Job, ReasoningEffort, SandboxMode
from codex_agent.jobs.service import JobService, StartRequest
from codex_agent.monitor import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    JobMonitor,
    new_output,
)

if TYPE_CHECKING:
    from tests.conftest import FakeSessionBackend

pytestmark = [
    allure.epic("Monitoring"),
    allure.feature("Blocking Loops"),
]


class FakeClock:
    """Monotonic clock advanced only by the fake sleep.

    Actions scheduled with ``at`` run right after the given sleep call.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = 0
        self._actions: dict[int, Callable[[], None]] = {}

    def __call__(self) -> float:
        return self.now

    def at(self, sleep_number: int, action: Callable[[], None]) -> None:
        self._actions[sleep_number] = action

    def sleep(self, seconds: float) -> None:
        self.sleeps += 1
        self.now += seconds
        action = self._actions.pop(self.sleeps, None)
        if action is not None:
            action()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def channel(settings: Settings) -> CommsChannel:
    return CommsChannel(settings.storage.comms_dir)


@pytest.fixture()
def lines() -> dict[str, list[str]]:
    return {"out": [], "err": []}


@pytest.fixture()
def monitor(
    service: JobService,
    channel: CommsChannel,
    clock: FakeClock,
    lines: dict[str, list[str]],
) -> JobMonitor:
    return JobMonitor(
        service=service,
        channel=channel,
        out=lines["out"].append,
        err=lines["err"].append,
        clock=clock,
        sleep=clock.sleep,
    )


def _start(service: JobService, tmp_path: Path) -> Job:
    return service.start(
        StartRequest(
            prompt="Investigate flaky test",
            model="gpt-5.3-codex",
            reasoning_effort=ReasoningEffort.HIGH,
            sandbox=SandboxMode.WORKSPACE_WRITE,
            cwd=tmp_path,
        ),
    )


def test_monitor_returns_zero_when_done_already_logged(
    monitor: JobMonitor,
    service: JobService,
    channel: CommsChannel,
    lines: dict[str, list[str]],
    tmp_path: Path,
) -> None:
    job = _start(service, tmp_path)
    channel.write_status(job.job_id, "Reading tests")
    channel.write_done(job.job_id, "Found the race", "/tmp/codex-agent/x-result.md")

    assert monitor.monitor(job.job_id) == EXIT_OK

    assert lines["out"][0].endswith("] status: Reading tests")
    assert lines["out"][1].endswith("] DONE: Found the race")
    assert lines["out"][2] == "Result file: /tmp/codex-agent/x-result.md"


def test_monitor_picks_up_done_written_while_waiting(
    monitor: JobMonitor,
    service: JobService,
    channel: CommsChannel,
    clock: FakeClock,
    lines: dict[str, list[str]],
    tmp_path: Path,
) -> None:
    job = _start(service, tmp_path)
    clock.at(1, lambda: channel.write_done(job.job_id, "All green"))

    assert monitor.monitor(job.job_id) == EXIT_OK
    assert len(lines["out"]) == 1
    assert lines["out"][0].endswith("] DONE: All green")


def test_monitor_reports_lost_session_as_json_line(
    monitor: JobMonitor,
    service: JobService,
    backend: FakeSessionBackend,
    lines: dict[str, list[str]],
    tmp_path: Path,
) -> None:
    job = _start(service, tmp_path)
    backend.end_session(job.tmux_session)

    assert monitor.monitor(job.job_id) == EXIT_FAILURE

    payload = json.loads(lines["out"][-1])
    assert payload["type"] == "failed"
    assert payload["reason"] == "Session exited without completion"
    assert payload["ts"].endswith("Z")
    assert '"type":"failed"' in lines["out"][-1]


def test_monitor_prefers_done_written_as_session_exits(
    monitor: JobMonitor,
    service: JobService,
    backend: FakeSessionBackend,
    channel: CommsChannel,
    clock: FakeClock,
    tmp_path: Path,
) -> None:
    job = _start(service, tmp_path)
    channel.write_status(job.job_id, "working")

    def finish() -> None:
        channel.write_done(job.job_id, "finished just in time")
        backend.end_session(job.tmux_session)

    clock.at(1, finish)

    assert monitor.monitor(job.job_id) == EXIT_OK


def test_monitor_interrupt_returns_130(
    monitor: JobMonitor,
    service: JobService,
    clock: FakeClock,
    lines: dict[str, list[str]],
    tmp_path: Path,
) -> None:
    job = _start(service, tmp_path)
    clock.at(1, monitor.request_stop)

    assert monitor.monitor(job.job_id) == EXIT_INTERRUPTED
    assert lines["err"][-1] == "\nMonitoring stopped"


def test_watch_comms_prints_history_until_stopped(
    monitor: JobMonitor,
    channel: CommsChannel,
    clock: FakeClock,
    lines: dict[str, list[str]],
) -> None:
    channel.write_status("job1", "one")
    channel.write_finding("job1", "two")

    clock.at(1, lambda: channel.write_status("job1", "three"))
    # Several poll cycles later.
    clock.at(20, monitor.request_stop)

    assert monitor.watch_comms("job1") == EXIT_OK
    assert [line.split("] ", 1)[1] for line in lines["out"]] == [
        "status: one",
        "FINDING: two",
        "status: three",
    ]
    assert lines["err"][-1] == "\nStopped watching"


def test_watch_output_streams_until_job_finishes(
    monitor: JobMonitor,
    service: JobService,
    backend: FakeSessionBackend,
    clock: FakeClock,
    lines: dict[str, list[str]],
    tmp_path: Path,
) -> None:
    job = _start(service, tmp_path)
    backend.sessions[job.tmux_session].output = "line 1\nline 2"
    clock.at(
        1,
        lambda: backend.end_session(
            job.tmux_session,
            log_text="line 1\nline 2\n[codex-agent] exit code: 0\n",
        ),
    )

    assert monitor.watch_output(job.job_id) == EXIT_OK
    assert lines["out"] == ["line 1\nline 2"]
    assert lines["err"][-1] == "\nJob completed"


def test_new_output_aligns_on_overlapping_lines() -> None:
    assert new_output("", "a\nb") == "a\nb"
    assert new_output("a\nb", "a\nb\nc") == "\nc"
    assert new_output("a\nb\nc", "b\nc\nd\ne") == "d\ne"
    assert new_output("x\ny", "p\nq") == "p\nq"
