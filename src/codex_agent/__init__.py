"""Delegate long-running tasks to Codex agents in tmux sessions."""

__version__ = "0.1.0"
