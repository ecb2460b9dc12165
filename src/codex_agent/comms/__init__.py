"""Append-only comms logs between delegated agents and the CLI."""

from codex_agent.comms.channel import CommsChannel
from codex_agent.comms.messages import (
    CommsMessage,
    DoneMessage,
    FindingMessage,
    StatusMessage,
    format_message,
)
from codex_agent.comms.watcher import CommsWatcher

__all__ = [
    "CommsChannel",
    "CommsMessage",
    "CommsWatcher",
    "DoneMessage",
    "FindingMessage",
    "StatusMessage",
    "format_message",
]
