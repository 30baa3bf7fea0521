"""Line framing for station traffic.

A logical station message spans several physical lines::

    <REPLY get(1, info)>
    1 ECoS
    1 ProtocolVersion[0.5]
    <END 0 (OK)>

:class:`ReplyAssembler` turns the line stream back into such messages.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional

LINE_TERMINATOR = "\r\n"

BLOCK_START_RE = re.compile(r"^<(REPLY|EVENT)\b")
BLOCK_END_RE = re.compile(r"^<END\s+(-?\d+)\s*\((.*)\)>")

logger = logging.getLogger("middleman.protocol.framing")


def is_block_start(line: str) -> bool:
    return bool(BLOCK_START_RE.match(line))


def is_block_end(line: str) -> bool:
    return bool(BLOCK_END_RE.match(line))


def join_lines(lines: List[str]) -> str:
    """Join lines into one message without a trailing terminator."""
    return LINE_TERMINATOR.join(lines)


class ReplyAssembler:
    """Reassembles ``<REPLY ...>``/``<EVENT ...>`` blocks from single lines.

    ``feed`` returns the completed message or ``None`` while a block is still
    open. Lines outside a block are passed through as one-line messages.
    """

    def __init__(self) -> None:
        self._buffer: Optional[List[str]] = None

    @property
    def pending(self) -> bool:
        return self._buffer is not None

    def feed(self, line: str) -> Optional[str]:
        line = line.strip()
        if not line:
            return None

        if is_block_start(line):
            if self._buffer is not None:
                logger.warning("Block not terminated, discarding %d line(s)", len(self._buffer))
            self._buffer = [line]
            return None

        if self._buffer is None:
            return line

        self._buffer.append(line)
        if is_block_end(line):
            message = join_lines(self._buffer)
            self._buffer = None
            return message
        return None

    def reset(self) -> None:
        self._buffer = None
