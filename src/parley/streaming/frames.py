"""Line framing of the chat-completion response body."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Literal

CONTENT_PREFIX = "0:"
END_PREFIX = "e:"


@dataclass(frozen=True)
class Frame:
    """One parsed line of the response body."""

    kind: Literal["content", "end"]
    text: str = ""


def parse_frame(line: str) -> Frame | None:
    """
    Parse a single complete line.

    ``0:"<json string>"`` and ``0:<raw text>`` are content frames, ``e:<any>``
    is an end frame. Blank lines, unknown prefixes and empty content return
    None.
    """
    line = line.rstrip("\r")
    if line.startswith(CONTENT_PREFIX):
        text = _decode_content(line[len(CONTENT_PREFIX) :])
        return Frame("content", text) if text else None
    if line.startswith(END_PREFIX):
        return Frame("end", line[len(END_PREFIX) :])
    return None


def _decode_content(payload: str) -> str:
    if len(payload) >= 2 and payload.startswith('"') and payload.endswith('"'):
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError:
            return payload[1:-1]
        if isinstance(decoded, str):
            return decoded
    return payload


class FrameDecoder:
    """
    Incremental decoder for newline-delimited frames.

    Text is fed as it arrives from the transport. Only complete lines are
    parsed; a trailing partial line stays buffered until the next ``feed()``
    or until ``close()`` at end of body.

    Example::

        decoder = FrameDecoder()
        decoder.feed('0:"Hel')        # []
        decoder.feed('lo"\\ne:{}\\n')   # [Frame("content", "Hello"), Frame("end", "{}")]
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.ignored_lines = 0

    @property
    def pending(self) -> str:
        """Buffered text of the incomplete last line."""
        return self._buffer

    def feed(self, text: str) -> list[Frame]:
        if not text:
            return []
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def close(self) -> list[Frame]:
        """Parse whatever remains once the body has ended."""
        rest, self._buffer = self._buffer, ""
        return self._parse_lines([rest]) if rest else []

    def _parse_lines(self, lines: list[str]) -> list[Frame]:
        frames: list[Frame] = []
        for line in lines:
            frame = parse_frame(line)
            if frame is not None:
                frames.append(frame)
            elif line.strip() and not line.startswith(CONTENT_PREFIX):
                self.ignored_lines += 1
        return frames
