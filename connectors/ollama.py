"""Ollama adapter (``/api/chat``, newline-delimited JSON)."""

from typing import Any

import structlog

from chat.models import Message

from .base import BackendAdapter, FrameEvent, StreamCompleted, TextDelta
from .framing import FramingMode, parse_frame

logger = structlog.get_logger(__name__)


def strip_data_url(image_data: str) -> str:
    """Return the bare base64 payload of an inline image."""
    if image_data.startswith("data:") and "," in image_data:
        return image_data.split(",", 1)[1]
    return image_data


class OllamaAdapter(BackendAdapter):
    """Wire format of the Ollama chat API.

    Streamed frames look like ``{"message": {"content": "..."}, "done": false}``;
    the final frame has ``"done": true``.
    """

    name = "ollama"
    framing_mode = FramingMode.BRACES
    default_base_url = "http://localhost:11434"
    chat_path = "/api/chat"
    models_path = "/api/tags"

    def __init__(self, num_ctx: int | None = None, keep_alive: str | None = None):
        self.num_ctx = num_ctx
        self.keep_alive = keep_alive

    def format_messages(
        self, messages: list[Message], system_prompt: str | None = None
    ) -> list[dict[str, Any]]:
        formatted: list[dict[str, Any]] = []
        if system_prompt:
            formatted.append({"role": "system", "content": system_prompt})

        for message in messages:
            item: dict[str, Any] = {"role": self.role_for(message), "content": message.content}
            if message.image_data:
                item["images"] = [strip_data_url(message.image_data)]
            formatted.append(item)
        return formatted

    def build_request_body(
        self,
        messages: list[Message],
        model: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream: bool = True,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens:
            options["num_predict"] = max_tokens
        if self.num_ctx:
            options["num_ctx"] = self.num_ctx

        body: dict[str, Any] = {
            "model": model,
            "messages": self.format_messages(messages, system_prompt),
            "stream": stream,
        }
        if options:
            body["options"] = options
        if self.keep_alive:
            body["keep_alive"] = self.keep_alive
        return body

    def decode(self, frame: str) -> FrameEvent | None:
        payload = parse_frame(frame)
        if payload is None:
            return None

        if "error" in payload:
            logger.warning("ollama_stream_error_frame", error=str(payload["error"]))
            return None

        message = payload.get("message")
        text = ""
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            text = message["content"]

        if payload.get("done") is True:
            return StreamCompleted(text=text)
        if text:
            return TextDelta(text=text)
        return None

    def parse_response(self, payload: dict[str, Any]) -> str:
        message = payload.get("message") or {}
        return message.get("content", "") if isinstance(message, dict) else ""

    def parse_models(self, payload: dict[str, Any]) -> list[str]:
        return [model["name"] for model in payload.get("models", []) if "name" in model]
