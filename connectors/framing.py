"""Frame reassembly for streamed provider responses.

Provider bodies arrive as arbitrary byte fragments: a JSON object can be split
across reads at any offset, including inside a string literal or in the middle
of a multi-byte UTF-8 sequence. ``FrameAssembler`` buffers those fragments and
hands back whole frames in arrival order, using one of two disciplines:

- ``FramingMode.BRACES``: brace-counted JSON objects, possibly concatenated
  with no separator (Ollama-style NDJSON is handled here too).
- ``FramingMode.LINES``: newline-delimited lines, for ``text/event-stream``
  bodies where each event line carries a ``data:`` prefix.
"""

import codecs
import json
from enum import Enum
from typing import Any

import structlog

from .errors import FrameDecodeError

logger = structlog.get_logger(__name__)


class FramingMode(str, Enum):
    """Framing discipline applied to the buffered stream."""

    BRACES = "braces"
    LINES = "lines"


class FrameAssembler:
    """Reassemble complete frames from an arbitrarily chunked byte stream.

    Example:
        >>> assembler = FrameAssembler()
        >>> assembler.feed(b'{"message": {"content": "Hi"}')
        []
        >>> assembler.feed(b', "done": false}\\n{"done": true}')
        ['{"message": {"content": "Hi"}, "done": false}', '{"done": true}']
    """

    def __init__(self, mode: FramingMode = FramingMode.BRACES):
        self.mode = mode
        self.reset()

    def reset(self):
        """Discard buffered data and scanner state."""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        # Brace scanner state, kept between feeds so no byte is scanned twice
        self._pos = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False

    @property
    def pending(self) -> str:
        """Text buffered but not yet emitted as a frame."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """Append a transport chunk and return every frame it completes.

        Args:
            chunk: Raw bytes from one transport read (may be empty)

        Returns:
            Complete frames, in arrival order
        """
        self._buffer += self._decoder.decode(chunk)

        if self.mode == FramingMode.LINES:
            return self._drain_lines()
        return self._drain_braces()

    def flush(self) -> list[str]:
        """Signal end of stream and return whatever still forms a frame.

        In line mode a trailing line without its newline is still a frame.
        In brace mode an object that never closed is dropped.
        """
        self._buffer += self._decoder.decode(b"", final=True)

        if self.mode == FramingMode.LINES:
            frames = self._drain_lines()
            tail = self._buffer.rstrip("\r")
            if tail.strip():
                frames.append(tail)
            self._buffer = ""
            return frames

        frames = self._drain_braces()
        if self._buffer:
            logger.warning("incomplete_frame_dropped", pending_length=len(self._buffer))
        self.reset()
        return frames

    def _drain_lines(self) -> list[str]:
        frames = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            line = line.rstrip("\r")
            if line.strip():
                frames.append(line)
        return frames

    def _drain_braces(self) -> list[str]:
        frames = []

        while True:
            if self._depth == 0:
                start = self._buffer.find("{")
                if start == -1:
                    # Nothing here can begin a frame
                    self._buffer = ""
                    self._pos = 0
                    return frames
                self._buffer = self._buffer[start:]
                self._pos = 0

            end = self._scan()
            if end is None:
                return frames

            frames.append(self._buffer[: end + 1])
            self._buffer = self._buffer[end + 1 :]
            self._pos = 0

    def _scan(self) -> int | None:
        """Advance the brace scanner; return the closing index or None."""
        buffer = self._buffer
        for index in range(self._pos, len(buffer)):
            char = buffer[index]

            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif char == "\\":
                    self._escaped = True
                elif char == '"':
                    self._in_string = False
                continue

            if char == '"':
                self._in_string = True
            elif char == "{":
                self._depth += 1
            elif char == "}":
                self._depth -= 1
                if self._depth == 0:
                    return index

        self._pos = len(buffer)
        return None


def decode_frame(frame: str) -> dict[str, Any]:
    """Parse one frame as a JSON object.

    Raises:
        FrameDecodeError: If the frame is not valid JSON or not an object
    """
    try:
        payload = json.loads(frame)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Invalid JSON frame: {e.msg}") from e

    if not isinstance(payload, dict):
        raise FrameDecodeError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def parse_frame(frame: str) -> dict[str, Any] | None:
    """Parse one frame, logging and dropping it when malformed."""
    try:
        return decode_frame(frame)
    except FrameDecodeError as e:
        logger.warning("frame_decode_failed", error=str(e), frame=frame[:200])
        return None
