"""Provider adapter contract.

An adapter knows one provider's wire shapes: how to build a request body from
the conversation, and how to turn each streamed frame into a text delta, a
completion signal, or nothing. It does no I/O.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog

from chat.models import Message, Sender, StreamDelta

from .framing import FrameAssembler, FramingMode

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TextDelta:
    """Text a single frame adds to the response."""

    text: str


@dataclass(frozen=True)
class StreamCompleted:
    """The provider signalled the end of the response."""

    text: str = ""


FrameEvent = TextDelta | StreamCompleted


class BackendAdapter(ABC):
    """Wire-format adapter for one provider family."""

    name: str
    framing_mode: FramingMode
    default_base_url: str
    chat_path: str
    models_path: str

    @abstractmethod
    def format_messages(
        self, messages: list[Message], system_prompt: str | None = None
    ) -> list[dict[str, Any]]:
        """Convert conversation history to the provider's message schema."""
        ...

    @abstractmethod
    def build_request_body(
        self,
        messages: list[Message],
        model: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream: bool = True,
    ) -> dict[str, Any]:
        """Build the JSON body for a chat request."""
        ...

    @abstractmethod
    def decode(self, frame: str) -> FrameEvent | None:
        """Map one frame to a delta, a completion, or None if it carries nothing."""
        ...

    @abstractmethod
    def parse_response(self, payload: dict[str, Any]) -> str:
        """Extract the reply text from a buffered (non-streaming) response."""
        ...

    @abstractmethod
    def parse_models(self, payload: dict[str, Any]) -> list[str]:
        """Extract model names from a model-listing response."""
        ...

    def open_stream(self) -> "StreamDecoder":
        """Create the per-request decoder for a streamed body."""
        return StreamDecoder(self)

    @staticmethod
    def role_for(message: Message) -> str:
        if message.is_context or message.sender == Sender.SYSTEM:
            return "system"
        return "user" if message.sender == Sender.USER else "assistant"


class StreamDecoder:
    """Per-request state: frame assembly plus cumulative content.

    Providers send per-frame diffs; this decoder concatenates them so every
    update it returns carries the full text so far.
    """

    def __init__(self, adapter: BackendAdapter):
        self.adapter = adapter
        self.assembler = FrameAssembler(adapter.framing_mode)
        self.content = ""
        self.completed = False

    def feed(self, chunk: bytes) -> list[StreamDelta]:
        """Decode a transport chunk into cumulative updates."""
        return self._apply(self.assembler.feed(chunk))

    def close(self) -> list[StreamDelta]:
        """Decode whatever the end of the stream still holds."""
        return self._apply(self.assembler.flush())

    def _apply(self, frames: list[str]) -> list[StreamDelta]:
        updates = []
        for frame in frames:
            if self.completed:
                logger.debug("frame_after_completion_ignored", provider=self.adapter.name)
                break

            event = self.adapter.decode(frame)
            if event is None:
                continue

            if event.text:
                self.content += event.text
                updates.append(StreamDelta(content=self.content))

            if isinstance(event, StreamCompleted):
                self.completed = True
                updates.append(StreamDelta(content=self.content, is_complete=True))
        return updates
