"""Tests for the HTTP chat client."""

import json

import httpx
import pytest

from chat.config import ServiceConfig, ServiceType
from chat.models import Message, Sender
from connectors.client import HttpChatClient
from connectors.errors import TransportError
from connectors.lmstudio import LMStudioAdapter
from connectors.ollama import OllamaAdapter

OLLAMA_REPLY = (
    b'{"message":{"content":"Py"},"done":false}\n'
    b'{"message":{"content":"thon"},"done":false}\n'
    b'{"done":true}\n'
)


def ollama_handler(requests: list):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": "llama3"}, {"name": "phi3"}]})
        return httpx.Response(200, content=OLLAMA_REPLY)

    return handler


class TestHttpChatClient:
    """Test suite for HttpChatClient."""

    def test_base_url_defaults_to_adapter(self):
        """Test that an unset base URL falls back to the provider default."""
        config = ServiceConfig(service_type=ServiceType.LMSTUDIO, model_name="qwen")

        client = HttpChatClient(LMStudioAdapter(), config)

        assert client.base_url == "http://127.0.0.1:1234"

    @pytest.mark.asyncio
    async def test_send_request(self, ollama_config, sample_messages):
        """Test a full turn through the streaming path."""
        requests = []
        transport = httpx.MockTransport(ollama_handler(requests))

        async with HttpChatClient(OllamaAdapter(), ollama_config, transport) as client:
            reply = await client.send_request(sample_messages, system_prompt="Be brief.")

        assert reply.sender == Sender.ASSISTANT
        assert reply.content == "Python"
        assert reply.token_count is not None

        body = json.loads(requests[0].content)
        assert str(requests[0].url) == "http://ollama.test/api/chat"
        assert body["model"] == "llama3"
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}
        assert body["options"]["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_configured_system_prompt(self, sample_messages):
        """Test that the configured system prompt is used by default."""
        requests = []
        config = ServiceConfig(
            base_url="http://ollama.test", model_name="llama3", system_prompt="You are Iris."
        )

        async with HttpChatClient(
            OllamaAdapter(), config, httpx.MockTransport(ollama_handler(requests))
        ) as client:
            await client.send_request(sample_messages)

        body = json.loads(requests[0].content)
        assert body["messages"][0] == {"role": "system", "content": "You are Iris."}

    @pytest.mark.asyncio
    async def test_history_is_not_mutated(self, ollama_config, sample_messages):
        """Test that the caller's list is left untouched."""
        history = list(sample_messages)
        transport = httpx.MockTransport(ollama_handler([]))

        async with HttpChatClient(OllamaAdapter(), ollama_config, transport) as client:
            await client.send_streaming_request(history, lambda delta: None)

        assert history == sample_messages

    @pytest.mark.asyncio
    async def test_active_request_is_cleared(self, ollama_config, sample_messages):
        """Test that the active request is tracked only while streaming."""
        seen = []
        transport = httpx.MockTransport(ollama_handler([]))

        async with HttpChatClient(OllamaAdapter(), ollama_config, transport) as client:
            await client.send_streaming_request(
                sample_messages, lambda delta: seen.append(client.active_request)
            )

            assert all(request is not None for request in seen)
            assert client.active_request is None
            assert client.cancel_request() is False

    @pytest.mark.asyncio
    async def test_list_models(self, ollama_config):
        """Test model listing."""
        transport = httpx.MockTransport(ollama_handler([]))

        async with HttpChatClient(OllamaAdapter(), ollama_config, transport) as client:
            assert await client.list_models() == ["llama3", "phi3"]

    @pytest.mark.asyncio
    async def test_list_models_error_status(self, ollama_config):
        """Test that a failing model listing raises TransportError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(503))

        async with HttpChatClient(OllamaAdapter(), ollama_config, transport) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.list_models()

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_test_connection(self, ollama_config):
        """Test connection checks for reachable and unreachable backends."""

        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        reachable = httpx.MockTransport(ollama_handler([]))
        async with HttpChatClient(OllamaAdapter(), ollama_config, reachable) as client:
            assert await client.test_connection() is True

        async with HttpChatClient(
            OllamaAdapter(), ollama_config, httpx.MockTransport(refuse)
        ) as client:
            assert await client.test_connection() is False

    @pytest.mark.asyncio
    async def test_send_request_transport_error(self, ollama_config):
        """Test that a failed turn raises TransportError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(404, text="no model"))

        async with HttpChatClient(OllamaAdapter(), ollama_config, transport) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.send_request([Message(sender=Sender.USER, content="Hi")])

        assert exc_info.value.status_code == 404
