"""Read and repair the recording log."""

from __future__ import annotations

import logging
import re
from pathlib import Path

import aiofiles
from pydantic import ValidationError

from replay_uploader.models import LogEntry, kind_priority

logger = logging.getLogger(__name__)

_LINE_SEPARATOR = re.compile(r"[\n\r]+")


def split_merged_line(line: str) -> list[str]:
    """Split a line holding several JSON objects written without a separator.

    Older writers could drop the trailing newline, so the next entry was
    appended to the previous line.

    Returns:
        The recovered lines, or an empty list if the line has nothing to split.
    """
    repaired = line.replace("}{", "}\n{")
    if len(repaired) == len(line):
        return []
    return [piece for piece in _LINE_SEPARATOR.split(repaired) if piece.strip()]


def _parse_line(line: str) -> LogEntry:
    return LogEntry.from_line(line.strip())


def parse_log_text(text: str) -> list[LogEntry]:
    """Parse log text into entries sorted by kind priority.

    Unparsable lines are repaired when they are two merged entries and dropped
    otherwise. The sort is stable, so entries of one kind keep file order.
    """
    entries: list[LogEntry] = []

    for line in _LINE_SEPARATOR.split(text):
        if not line.strip():
            continue
        try:
            entries.append(_parse_line(line))
            continue
        except (ValueError, ValidationError):
            logger.debug(f"Error parsing line: {line!r}")

        for piece in split_merged_line(line):
            try:
                entries.append(_parse_line(piece))
            except (ValueError, ValidationError):
                logger.debug(f"Error parsing split line: {piece!r}")

    entries.sort(key=lambda entry: kind_priority(entry.kind))
    return entries


async def read_recording_log(path: Path) -> list[LogEntry]:
    """Read the log at ``path``; a missing file yields no entries."""
    try:
        # Undecodable bytes from a torn write end up in a line that fails to parse.
        async with aiofiles.open(path, encoding="utf-8", errors="replace") as f:
            text = await f.read()
    except FileNotFoundError:
        return []
    return parse_log_text(text)
