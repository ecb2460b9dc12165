"""Long-running loops that follow a job until it ends or the user interrupts."""

from __future__ import annotations

import json
import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from codex_agent.comms.channel import CommsChannel
from codex_agent.comms.messages import CommsMessage, DoneMessage, format_message
from codex_agent.config import MonitorSettings
from codex_agent.errors import SessionUnavailableError
from codex_agent.jobs.models import JobStatus, to_iso, utc_now
from codex_agent.jobs.service import JobService

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

SESSION_LOST_REASON = "Session exited without completion"

_WATCH_CAPTURE_LINES = 100
_SLEEP_SLICE_SECONDS = 0.1

LineWriter = Callable[[str], None]


class JobMonitor:
    """Cooperative polling loops for ``watch``, ``watch-comms`` and ``monitor``.

    Each loop alternates a short poll with an interruptible sleep; SIGINT and
    SIGTERM only set a flag that the loop checks between polls.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        service: JobService,
        channel: CommsChannel,
        out: LineWriter,
        err: LineWriter,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.service = service
        self.channel = channel
        self.out = out
        self.err = err
        self._clock = clock
        self._sleep = sleep
        self._stop_requested = False

    @property
    def monitor_settings(self) -> MonitorSettings:
        return self.service.settings.monitor

    def request_stop(self) -> None:
        self._stop_requested = True

    def watch_output(self, job_id: str) -> int:
        """Stream new pane output until the job leaves ``running``."""

        job = self.service.store.load(job_id)
        if not job.tmux_session:
            raise SessionUnavailableError(job.tmux_session)
        session = job.tmux_session

        self.err(f"Watching {session}... (Ctrl+C to stop)")
        self.err(f"For interactive mode, use: {self.service.backend.attach_command(session)}")
        self.err("")

        previous = ""
        with self._signal_handlers():
            while not self._stop_requested:
                output = None
                if self.service.backend.session_exists(session):
                    output = self.service.backend.capture(session, lines=_WATCH_CAPTURE_LINES)
                if output and output != previous:
                    fresh = new_output(previous, output)
                    if fresh.strip():
                        self.out(fresh)
                    previous = output

                refreshed = self.service.refresh(job_id)
                if refreshed.status != JobStatus.RUNNING:
                    self.err(f"\nJob {refreshed.status.value}")
                    return EXIT_OK
                self._sleep_with_stop(self.monitor_settings.output_poll_seconds)

        self.err("\nStopped watching")
        return EXIT_OK

    def watch_comms(self, job_id: str) -> int:
        """Print comms records as they arrive, existing ones first."""

        self.err(f"Watching comms for job {job_id}...")
        self.err(f"File: {self.channel.path(job_id)}")
        self.err("(Ctrl+C to stop)\n")

        with self._signal_handlers():
            watcher = self.channel.watch(job_id, self._print_messages)
            try:
                while not self._stop_requested:
                    watcher.check()
                    self._sleep_with_stop(self.monitor_settings.comms_poll_seconds)
            finally:
                watcher.stop()

        self.err("\nStopped watching")
        return EXIT_OK

    def monitor(self, job_id: str) -> int:
        """Block until the agent reports ``done`` or its session disappears.

        Returns 0 on ``done``, 1 when the session ended without one and 130
        on interrupt.
        """

        job = self.service.store.load(job_id)
        self.err(f"Monitoring job {job_id}...")

        outcome: list[int] = []

        def on_messages(messages: list[CommsMessage]) -> None:
            for message in messages:
                self.out(format_message(message))
                if isinstance(message, DoneMessage):
                    if message.result_file:
                        self.out(f"Result file: {message.result_file}")
                    outcome.append(EXIT_OK)
                    return

        with self._signal_handlers():
            watcher = self.channel.watch(job_id, on_messages)
            try:
                next_liveness_check = self._clock()
                while not outcome:
                    if self._stop_requested:
                        self.err("\nMonitoring stopped")
                        return EXIT_INTERRUPTED
                    watcher.check()
                    if outcome:
                        break
                    if self._clock() >= next_liveness_check:
                        if not self.service.session_alive(job):
                            # A done record may have landed just before the session exited.
                            watcher.poll()
                            if outcome:
                                break
                            self.out(session_lost_line())
                            logger.info("Session of job %s exited without completion", job_id)
                            return EXIT_FAILURE
                        next_liveness_check = (
                            self._clock() + self.monitor_settings.liveness_poll_seconds
                        )
                    self._sleep_with_stop(self.monitor_settings.comms_poll_seconds)
            finally:
                watcher.stop()
        return outcome[0]

    def _print_messages(self, messages: list[CommsMessage]) -> None:
        for message in messages:
            self.out(format_message(message))

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = self._clock() + seconds
        while not self._stop_requested and self._clock() < deadline:
            self._sleep(min(_SLEEP_SLICE_SECONDS, max(0.0, deadline - self._clock())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.debug("Received signal %s", signum)
            self.request_stop()

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            logger.debug("Signal handlers not installed outside the main thread")
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)


def session_lost_line() -> str:
    """Single JSON line reported when a monitored session vanished without ``done``."""

    return json.dumps(
        {"type": "failed", "ts": to_iso(utc_now()), "reason": SESSION_LOST_REASON},
        separators=(",", ":"),
    )


def new_output(previous: str, current: str) -> str:
    """Part of ``current`` not already shown, aligning on overlapping lines."""

    if not previous:
        return current
    if current.startswith(previous):
        return current[len(previous):]
    old_lines = previous.splitlines()
    new_lines = current.splitlines()
    for overlap in range(min(len(old_lines), len(new_lines)), 0, -1):
        if old_lines[-overlap:] == new_lines[:overlap]:
            return "\n".join(new_lines[overlap:])
    return current
