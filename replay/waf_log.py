"""Access to the WAF log file: marker lookup and bracketed log regions."""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple

logger = logging.getLogger(__name__)

READ_BLOCK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Marker:
    """A log line that carries a stage ID, with its byte span in the log file."""
    line: bytes
    start: int
    end: int


class LogReader:
    """Reads the WAF log. The file is reopened for every read; it may grow or be rotated between reads."""

    def __init__(self, file_name: str):
        self.file_name = file_name

    def exists(self) -> bool:
        return Path(self.file_name).is_file()

    def find_marker(self, stage_id: str, max_lines: int, after: Optional[Marker] = None) -> Optional[Marker]:
        """
        Search the newest ``max_lines`` lines for ``stage_id``, newest first.

        When ``after`` is given only lines that start past it are considered,
        so the end marker of a stage is never mistaken for its start marker.
        """
        token = stage_id.lower().encode()
        with open(self.file_name, "rb") as f:
            lines = tail_lines(f, max_lines)

        for start, line in reversed(lines):
            if after is not None and start < after.end:
                break
            if token in line.lower():
                return Marker(line=line.rstrip(b"\r\n"), start=start, end=start + len(line))
        return None

    def region(self, start: Marker, end: Marker) -> bytes:
        """Bytes strictly between the two markers."""
        if end.start <= start.end:
            return b""
        with open(self.file_name, "rb") as f:
            f.seek(start.end)
            return f.read(end.start - start.end)

    def region_contains(self, pattern: str, start: Optional[Marker], end: Optional[Marker]) -> bool:
        if start is None or end is None:
            logger.debug("Log markers missing, nothing to search")
            return False
        content = self.region(start, end)
        return re.search(pattern.encode(), content) is not None


def tail_lines(f: BinaryIO, max_lines: int) -> List[Tuple[int, bytes]]:
    """
    Return the last ``max_lines`` lines of ``f`` as ``(offset, line)`` pairs, oldest first.

    The file is read backwards in blocks from its end, so the cost depends on
    the size of the window and not on the size of the file. Lines keep their
    trailing newline; the last line may lack one.
    """
    f.seek(0, os.SEEK_END)
    position = f.tell()
    blocks: List[bytes] = []
    newlines = 0

    # One newline more than needed guarantees the oldest kept line is complete
    while position > 0 and newlines <= max_lines:
        size = min(READ_BLOCK_SIZE, position)
        position -= size
        f.seek(position)
        block = f.read(size)
        blocks.append(block)
        newlines += block.count(b"\n")

    buffer = b"".join(reversed(blocks))
    pieces = buffer.split(b"\n")
    lines = [piece + b"\n" for piece in pieces[:-1]]
    if pieces[-1]:
        lines.append(pieces[-1])

    offset = position
    if position > 0 and lines:
        offset += len(lines[0])
        lines = lines[1:]

    result = []
    for line in lines:
        result.append((offset, line))
        offset += len(line)
    return result[-max_lines:]
