"""Chat data model."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def generate_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(UTC)


class Sender(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """A single chat message.

    Messages are immutable. While a response streams, the conversation replaces
    the placeholder with copies that keep the same ``id``; once the stream
    completes the content is final.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    content: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    sender: Sender
    favorite: bool = False
    response_time_ms: int | None = None
    token_count: int | None = None
    image_data: str | None = None  # base64 payload or data: URL
    image_path: str | None = None  # reference into host storage, not owned here
    is_context: bool = False  # injected note context, sent to providers as system


class ChatSession(BaseModel):
    """Ordered conversation snapshot handed to persistence as a whole."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    title: str = "New chat"
    messages: tuple[Message, ...] = ()
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def with_messages(self, messages: list[Message] | tuple[Message, ...]) -> ChatSession:
        """Return a new snapshot holding ``messages``."""
        return self.model_copy(update={"messages": tuple(messages), "updated_at": utc_now()})

    def with_title(self, title: str) -> ChatSession:
        return self.model_copy(update={"title": title, "updated_at": utc_now()})


class StreamDelta(BaseModel):
    """Progress update for an in-flight response.

    ``content`` is the cumulative text so far, never a diff.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    is_complete: bool = False
    response_time_ms: int | None = None
    token_count: int | None = None


class SegmentType(str, Enum):
    """Kind of renderable slice of a finished message."""

    TEXT = "text"
    THINKING = "thinking"
    CODE = "code"
    DIAGRAM = "diagram"


class MessageSegment(BaseModel):
    """Typed view over part of a finished message. Recomputed, never stored."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    type: SegmentType
    content: str
    language: str | None = None
    message: Message

    def wrapped(self) -> str:
        """Segment content re-wrapped with its original delimiters."""
        if self.type == SegmentType.THINKING:
            return f"<think>{self.content}</think>"
        if self.type == SegmentType.DIAGRAM:
            return f"```mermaid\n{self.content}\n```"
        if self.type == SegmentType.CODE:
            return f"```{self.language or ''}\n{self.content}\n```"
        return self.content

    def to_message(self) -> Message:
        """Materialize this segment as a standalone message (e.g. a favorite)."""
        return self.message.model_copy(update={"id": self.id, "content": self.wrapped()})


class CommandPosition(BaseModel):
    """Location of a registered command token inside user input."""

    model_config = ConfigDict(frozen=True)

    command: str  # literal text as typed, prefix included
    prefix: str  # canonical registered prefix
    start_index: int
    end_index: int
