"""Split finished messages into independently renderable segments.

Assistant output mixes prose, fenced code, mermaid diagrams and hidden
reasoning (``<think>...</think>``). Each pass below is a plain scanner, and
later passes only ever see the text residue of earlier ones:

1. ``split_thinking`` cuts out reasoning blocks, remembering where they sat.
2. ``split_fences`` cuts fenced code blocks out of everything that is left,
   so a tag inside a fence never breaks the fence apart.
3. ``split_paragraphs`` breaks the leftover prose into paragraphs or lines.

None of the passes raise: anything malformed (an unclosed tag or fence) is
simply left in the prose.
"""

import re
from dataclasses import dataclass

import structlog

from .models import Message, MessageSegment, SegmentType, Sender

logger = structlog.get_logger(__name__)

THINKING_PATTERN = re.compile(r"<(think|thinking)>(.*?)</\1>", re.DOTALL | re.IGNORECASE)
FENCE_PATTERN = re.compile(r"```([\w+#.-]*)[ \t]*\n(.*?)```", re.DOTALL)
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

DIAGRAM_LANGUAGE = "mermaid"
# Paragraphs of short lines are split per line (lists, key/value output);
# longer wrapped prose stays whole
MAX_SPLIT_LINE_LENGTH = 100
MAX_SPLIT_PARAGRAPH_LENGTH = 1000


@dataclass(frozen=True)
class Piece:
    """A scanned slice of message text, with its span in the scanned text."""

    type: SegmentType
    content: str
    language: str | None = None
    start: int = 0
    end: int = 0


def split_thinking(text: str) -> tuple[str, list[tuple[int, Piece]]]:
    """Cut reasoning blocks out of ``text``.

    Returns:
        The text with every reasoning block removed, and the removed blocks
        as ``(offset, piece)`` pairs, where ``offset`` is the position in the
        returned text at which the block sat
    """
    residue = []
    length = 0
    blocks = []
    last_end = 0

    for match in THINKING_PATTERN.finditer(text):
        before = text[last_end : match.start()]
        residue.append(before)
        length += len(before)
        reasoning = match.group(2).strip()
        if reasoning:
            blocks.append((length, Piece(SegmentType.THINKING, reasoning)))
        last_end = match.end()

    residue.append(text[last_end:])
    return "".join(residue), blocks


def split_fences(text: str) -> list[Piece]:
    """Separate fenced code blocks from prose, in source order.

    A fence tagged ``mermaid`` (any case) becomes a diagram. An opening fence
    without a closing one is left in the prose.
    """
    pieces = []
    last_end = 0

    for match in FENCE_PATTERN.finditer(text):
        if match.start() > last_end:
            prose = text[last_end : match.start()]
            pieces.append(Piece(SegmentType.TEXT, prose, None, last_end, match.start()))

        language = match.group(1)
        code = match.group(2)
        if code.endswith("\n"):
            code = code[:-1]

        if language.lower() == DIAGRAM_LANGUAGE:
            segment_type, language = SegmentType.DIAGRAM, DIAGRAM_LANGUAGE
        else:
            segment_type, language = SegmentType.CODE, language or None
        pieces.append(Piece(segment_type, code, language, match.start(), match.end()))
        last_end = match.end()

    if last_end < len(text):
        pieces.append(Piece(SegmentType.TEXT, text[last_end:], None, last_end, len(text)))
    return pieces


def split_paragraphs(
    text: str,
    max_line_length: int = MAX_SPLIT_LINE_LENGTH,
    max_paragraph_length: int = MAX_SPLIT_PARAGRAPH_LENGTH,
) -> list[str]:
    """Split prose on blank lines, and short-lined paragraphs per line.

    A paragraph is split per line only when it is shorter than
    ``max_paragraph_length`` and every line is shorter than ``max_line_length``.
    """
    text = text.strip()
    if not text:
        return []

    parts = []
    for paragraph in PARAGRAPH_BREAK.split(text):
        if not paragraph.strip():
            continue

        # A stray fence marker means an unclosed block: keep that span in one piece
        splittable = "```" not in paragraph and len(paragraph) < max_paragraph_length
        if "\n" in paragraph and splittable:
            lines = [line for line in paragraph.split("\n") if line.strip()]
            if all(len(line) < max_line_length for line in lines):
                parts.extend(lines)
                continue

        parts.append(paragraph.strip())
    return parts


class MessageSegmenter:
    """Turns a finished message into ordered ``MessageSegment`` objects.

    Segmentation is deterministic: segment ids are derived from the message id
    and the segment's position, so re-segmenting a message yields the same ids.
    """

    def __init__(
        self,
        max_line_length: int = MAX_SPLIT_LINE_LENGTH,
        max_paragraph_length: int = MAX_SPLIT_PARAGRAPH_LENGTH,
    ):
        self.max_line_length = max_line_length
        self.max_paragraph_length = max_paragraph_length

    def segment(self, message: Message) -> list[MessageSegment]:
        """Split ``message`` into segments.

        User messages are never split: they come back as one text segment
        with their content verbatim.
        """
        if message.sender == Sender.USER:
            return [self._make(message, 0, Piece(SegmentType.TEXT, message.content))]

        residue, thinking = split_thinking(message.content)
        pending = iter(thinking)
        block = next(pending, None)

        pieces: list[Piece] = []
        for part in split_fences(residue):
            if part.type != SegmentType.TEXT:
                # Reasoning that sat inside a fence is shown just before it
                while block is not None and block[0] < part.end:
                    pieces.append(block[1])
                    block = next(pending, None)
                pieces.append(part)
                continue

            cursor = part.start
            while block is not None and block[0] < part.end:
                offset, reasoning = block
                pieces.extend(self._paragraphs(residue[cursor:offset]))
                pieces.append(reasoning)
                cursor = offset
                block = next(pending, None)
            pieces.extend(self._paragraphs(residue[cursor : part.end]))

        while block is not None:
            pieces.append(block[1])
            block = next(pending, None)

        logger.debug("message_segmented", message_id=message.id, segment_count=len(pieces))
        return [self._make(message, index, piece) for index, piece in enumerate(pieces)]

    def _paragraphs(self, text: str) -> list[Piece]:
        return [
            Piece(SegmentType.TEXT, paragraph)
            for paragraph in split_paragraphs(
                text, self.max_line_length, self.max_paragraph_length
            )
        ]

    @staticmethod
    def _make(message: Message, index: int, piece: Piece) -> MessageSegment:
        return MessageSegment(
            id=f"{message.id}:{index}",
            type=piece.type,
            content=piece.content,
            language=piece.language,
            message=message,
        )


_default_segmenter = MessageSegmenter()


def segment_message(message: Message) -> list[MessageSegment]:
    """Segment ``message`` with the default thresholds."""
    return _default_segmenter.segment(message)


def join_segments(segments: list[MessageSegment]) -> str:
    """Re-wrap segments with their delimiters and join them back into text."""
    return "\n\n".join(segment.wrapped() for segment in segments)
