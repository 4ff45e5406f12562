"""LM Studio adapter (OpenAI-compatible ``/v1/chat/completions``, SSE)."""

from typing import Any

import structlog

from chat.models import Message

from .base import BackendAdapter, FrameEvent, StreamCompleted, TextDelta
from .framing import FramingMode, parse_frame

logger = structlog.get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
DEFAULT_IMAGE_PROMPT = "Describe this image."


def to_data_url(image_data: str) -> str:
    """Return an inline image as a data URL (PNG assumed for bare base64)."""
    if image_data.startswith("data:"):
        return image_data
    return f"data:image/png;base64,{image_data}"


class LMStudioAdapter(BackendAdapter):
    """Wire format of LM Studio and other OpenAI-compatible servers.

    Streamed events are lines of the form ``data: {"choices": [{"delta":
    {"content": "..."}}]}``, terminated by ``data: [DONE]``.
    """

    name = "lmstudio"
    framing_mode = FramingMode.LINES
    default_base_url = "http://127.0.0.1:1234"
    chat_path = "/v1/chat/completions"
    models_path = "/v1/models"

    def format_messages(
        self, messages: list[Message], system_prompt: str | None = None
    ) -> list[dict[str, Any]]:
        formatted: list[dict[str, Any]] = []
        if system_prompt:
            formatted.append({"role": "system", "content": system_prompt})

        for message in messages:
            role = self.role_for(message)
            if message.image_data and not message.is_context:
                content: Any = [
                    {"type": "text", "text": message.content or DEFAULT_IMAGE_PROMPT},
                    {"type": "image_url", "image_url": {"url": to_data_url(message.image_data)}},
                ]
            else:
                content = message.content
            formatted.append({"role": role, "content": content})
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
        body: dict[str, Any] = {
            "model": model,
            "messages": self.format_messages(messages, system_prompt),
            "max_tokens": max_tokens or -1,
            "stream": stream,
        }
        if temperature is not None:
            body["temperature"] = temperature
        return body

    def decode(self, frame: str) -> FrameEvent | None:
        # Comments, event names and ids carry no payload
        if not frame.startswith(DATA_PREFIX):
            return None

        data = frame[len(DATA_PREFIX) :].strip()
        if data == DONE_SENTINEL:
            return StreamCompleted()

        payload = parse_frame(data)
        if payload is None:
            return None

        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            logger.debug("lmstudio_frame_without_choices", keys=sorted(payload))
            return None

        delta = choices[0].get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str) and delta["content"]:
            return TextDelta(text=delta["content"])
        return None

    def parse_response(self, payload: dict[str, Any]) -> str:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message")
        if not isinstance(message, dict):
            return ""
        return message.get("content") or ""

    def parse_models(self, payload: dict[str, Any]) -> list[str]:
        return [model["id"] for model in payload.get("data", []) if "id" in model]
