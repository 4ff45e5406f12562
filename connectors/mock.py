"""Deterministic mock backend.

The mock speaks the Ollama wire format through an in-process httpx transport,
so replies go through the same framing, decoding and cancellation path as a
real backend without touching the network.
"""

import asyncio
import json
import re
from collections.abc import AsyncIterator, Sequence

import httpx

from chat.config import ServiceConfig

from .client import HttpChatClient
from .ollama import OllamaAdapter

MOCK_BASE_URL = "http://mock.invalid"


def default_script(prompt: str) -> list[str]:
    """Reply pieces echoing the last user message, one word per piece."""
    reply = f'This is a streamed reply from the mock AI service. You said: "{prompt}"'
    return re.findall(r"\S+\s*", reply)


class ScriptedStream(httpx.AsyncByteStream):
    """Response body replaying ``pieces`` as NDJSON frames with a fixed delay."""

    def __init__(self, pieces: Sequence[str], delay: float):
        self.pieces = list(pieces)
        self.delay = delay

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for piece in self.pieces:
            if self.delay:
                await asyncio.sleep(self.delay)
            frame = {"message": {"role": "assistant", "content": piece}, "done": False}
            yield (json.dumps(frame) + "\n").encode("utf-8")
        done = {"message": {"role": "assistant", "content": ""}, "done": True}
        yield (json.dumps(done) + "\n").encode("utf-8")

    async def aclose(self):
        return None


class ScriptedTransport(httpx.AsyncBaseTransport):
    """In-process transport answering Ollama endpoints from a script."""

    def __init__(self, script: Sequence[str] | None = None, delay: float = 0.02):
        self.script = list(script) if script is not None else None
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path == OllamaAdapter.models_path:
            return httpx.Response(200, json={"models": [{"name": "mock"}]})

        body = json.loads(request.content or b"{}")
        pieces = self.script if self.script is not None else default_script(_last_user_text(body))
        return httpx.Response(
            200,
            headers={"content-type": "application/x-ndjson"},
            stream=ScriptedStream(pieces, self.delay),
        )


def _last_user_text(body: dict) -> str:
    for message in reversed(body.get("messages", [])):
        if message.get("role") == "user":
            return message.get("content", "")
    return ""


class MockChatClient(HttpChatClient):
    """Chat client that replays a fixed script; for tests and offline use."""

    def __init__(self, config: ServiceConfig, script: Sequence[str] | None = None):
        self.transport = ScriptedTransport(script=script, delay=config.mock_delay)
        config = config.model_copy(
            update={"base_url": MOCK_BASE_URL, "model_name": config.model_name or "mock"}
        )
        super().__init__(OllamaAdapter(), config, transport=self.transport)
