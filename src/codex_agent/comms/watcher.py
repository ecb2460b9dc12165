"""Incremental tailing of a comms log written by another process."""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from pathlib import Path

from codex_agent.comms.messages import CommsMessage, decode_line

logger = logging.getLogger(__name__)

MessagesCallback = Callable[[list[CommsMessage]], None]


class _StatWatch:
    """Change notification for one path, derived from a stat signature.

    ``check`` fires ``on_change`` once per observed signature change; the
    driver decides how often to call it.
    """

    def __init__(self, signature: Callable[[], Hashable], on_change: Callable[[], None]) -> None:
        self._signature = signature
        self._on_change = on_change
        self._last = signature()
        self.closed = False

    def check(self) -> None:
        if self.closed:
            return
        current = self._signature()
        if current == self._last:
            return
        self._last = current
        self._on_change()

    def close(self) -> None:
        self.closed = True


class CommsWatcher:
    """Tail a JSON Lines comms log, delivering complete records in batches.

    Keeps a byte offset and the trailing partial line between polls. Each
    poll that yields at least one record calls ``callback`` exactly once with
    the records in file order. A shrunk or replaced file restarts reading
    from offset zero.
    """

    def __init__(self, path: Path, callback: MessagesCallback) -> None:
        self.path = path
        self._callback = callback
        self._offset = 0
        self._inode: int | None = None
        self._partial = b""
        self._file_watch: _StatWatch | None = None
        self._dir_watch: _StatWatch | None = None
        self._stopped = False

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def watching_directory(self) -> bool:
        return self._dir_watch is not None

    @property
    def watching_file(self) -> bool:
        return self._file_watch is not None

    def start(self) -> CommsWatcher:
        """Begin watching the file, or its directory until the file appears."""

        if self.path.exists():
            self._start_file_watch()
            self.poll()
            return self
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._dir_watch = _StatWatch(self._directory_signature, self._on_directory_change)
        # The file may have been created between the existence check and registration.
        if self.path.exists():
            self._on_directory_change()
        return self

    def check(self) -> None:
        """Dispatch pending change notifications; called by the driving loop."""

        if self._stopped:
            return
        if self._dir_watch is not None:
            self._dir_watch.check()
        if self._file_watch is not None:
            self._file_watch.check()

    def poll(self) -> None:
        """Read bytes appended since the last poll and deliver complete records."""

        if self._stopped:
            return
        try:
            stat = self.path.stat()
        except OSError:
            return

        if stat.st_size < self._offset or (
            self._inode is not None and stat.st_ino != self._inode
        ):
            logger.debug("Comms log %s was truncated or replaced; rereading", self.path)
            self._offset = 0
            self._partial = b""
        self._inode = stat.st_ino
        if stat.st_size == self._offset:
            return

        try:
            with self.path.open("rb") as handle:
                handle.seek(self._offset)
                chunk = handle.read(stat.st_size - self._offset)
        except OSError as error:
            logger.debug("Comms log %s unreadable: %s", self.path, error)
            return
        self._offset += len(chunk)

        pieces = (self._partial + chunk).split(b"\n")
        self._partial = pieces.pop()
        messages: list[CommsMessage] = []
        for piece in pieces:
            message = decode_line(piece.decode("utf-8", errors="replace"))
            if message is not None:
                messages.append(message)
        if messages:
            self._callback(messages)

    def stop(self) -> None:
        """Close both watch handles; safe to call repeatedly or from the callback."""

        self._stopped = True
        if self._file_watch is not None:
            self._file_watch.close()
            self._file_watch = None
        if self._dir_watch is not None:
            self._dir_watch.close()
            self._dir_watch = None

    def _on_directory_change(self) -> None:
        if self._stopped or not self.path.exists():
            return
        if self._dir_watch is not None:
            self._dir_watch.close()
            self._dir_watch = None
        self._start_file_watch()
        self.poll()

    def _start_file_watch(self) -> None:
        if self._stopped:
            return
        self._file_watch = _StatWatch(self._file_signature, self.poll)

    def _file_signature(self) -> Hashable:
        try:
            stat = self.path.stat()
        except OSError:
            return None
        return (stat.st_ino, stat.st_size, stat.st_mtime_ns)

    def _directory_signature(self) -> Hashable:
        try:
            stat = self.path.parent.stat()
        except OSError:
            return (None, self.path.exists())
        return (stat.st_mtime_ns, self.path.exists())
