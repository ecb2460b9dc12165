"""Glob-selected source files appended to a prompt as context."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 500 * 1024
CHARS_PER_TOKEN = 4


@dataclass(slots=True)
class ContextFile:
    """One file included in a prompt, addressed relative to the base directory."""

    path: str
    content: str


def load_files(patterns: list[str], base_dir: Path) -> list[ContextFile]:
    """Resolve glob patterns under ``base_dir``; ``!pattern`` entries exclude matches.

    Files larger than ``MAX_FILE_BYTES`` or not valid UTF-8 are skipped with a
    warning. The result is sorted by relative path.
    """

    base_dir = base_dir.resolve()
    included: set[Path] = set()
    excluded: set[Path] = set()
    for pattern in patterns:
        if pattern.startswith("!"):
            excluded.update(_expand(pattern[1:], base_dir))
        else:
            included.update(_expand(pattern, base_dir))

    files: list[ContextFile] = []
    for path in sorted(included - excluded):
        relative = path.relative_to(base_dir).as_posix()
        try:
            size = path.stat().st_size
        except OSError as error:
            logger.warning("Skipping %s: %s", relative, error)
            continue
        if size > MAX_FILE_BYTES:
            logger.warning("Skipping %s: larger than %d bytes", relative, MAX_FILE_BYTES)
            continue
        try:
            content = path.read_text("utf-8")
        except (OSError, UnicodeDecodeError) as error:
            logger.warning("Skipping %s: %s", relative, error)
            continue
        files.append(ContextFile(path=relative, content=content))
    return files


def format_prompt_with_files(prompt: str, files: list[ContextFile]) -> str:
    """Append file contents as fenced blocks after the prompt."""

    if not files:
        return prompt
    blocks = [prompt, "", "---", "", "## Included Files"]
    for item in files:
        language = Path(item.path).suffix.lstrip(".")
        blocks.extend(["", f"### {item.path}", "", f"```{language}", item.content.rstrip("\n"), "```"])
    return "\n".join(blocks)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _expand(pattern: str, base_dir: Path) -> set[Path]:
    cleaned = pattern.strip()
    if not cleaned:
        return set()
    if Path(cleaned).is_absolute():
        try:
            cleaned = Path(cleaned).relative_to(base_dir).as_posix()
        except ValueError:
            logger.warning("Ignoring pattern outside %s: %s", base_dir, pattern)
            return set()
    return {path for path in base_dir.glob(cleaned) if path.is_file()}
