"""Chat client contract and the HTTP implementation shared by all backends."""

from abc import ABC, abstractmethod
from collections.abc import Sequence

import httpx
import structlog

from chat.config import ServiceConfig
from chat.models import Message, Sender, StreamDelta

from .base import BackendAdapter
from .errors import TransportError
from .streaming import DeltaCallback, StreamingRequest

logger = structlog.get_logger(__name__)


class ChatClient(ABC):
    """Uniform capability contract for every chat backend.

    A client runs at most one streamed request at a time; starting a new
    request while one is in flight is a caller error.
    """

    def __init__(self, config: ServiceConfig):
        self.config = config
        self._active: StreamingRequest | None = None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    @abstractmethod
    async def close(self):
        """Release transport resources."""
        ...

    @abstractmethod
    def create_request(
        self, messages: list[Message], system_prompt: str | None = None
    ) -> StreamingRequest:
        """Prepare (but do not start) a streamed request for ``messages``."""
        ...

    @property
    def active_request(self) -> StreamingRequest | None:
        return self._active

    async def send_streaming_request(
        self,
        messages: Sequence[Message],
        on_delta: DeltaCallback,
        system_prompt: str | None = None,
    ) -> StreamDelta:
        """Stream a reply to ``messages`` into ``on_delta``.

        Args:
            messages: Conversation history; copied before use
            on_delta: Called with each cumulative update, then once with
                ``is_complete=True``
            system_prompt: Overrides the configured system prompt

        Returns:
            The terminal delta

        Raises:
            TransportError: Connection failure or non-2xx response
        """
        request = self.create_request(list(messages), system_prompt or self.config.system_prompt)
        self._active = request
        try:
            return await request.send(on_delta)
        finally:
            if self._active is request:
                self._active = None

    async def send_request(
        self, messages: Sequence[Message], system_prompt: str | None = None
    ) -> Message:
        """Run the streaming path to completion and return the reply message.

        A cancelled request returns whatever content arrived before the cancel.
        """
        final = await self.send_streaming_request(messages, lambda _delta: None, system_prompt)
        return Message(
            sender=Sender.ASSISTANT,
            content=final.content,
            response_time_ms=final.response_time_ms,
            token_count=final.token_count,
        )

    def cancel_request(self) -> bool:
        """Cancel the in-flight request, if any. Safe to call at any time."""
        if self._active is None:
            return False
        return self._active.cancel()


class HttpChatClient(ChatClient):
    """Chat client talking to an HTTP backend through an adapter.

    Example:
        >>> async with HttpChatClient(OllamaAdapter(), config) as client:
        ...     reply = await client.send_request([Message(sender="user", content="Hi")])
    """

    def __init__(
        self,
        adapter: BackendAdapter,
        config: ServiceConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            adapter: Wire-format adapter for the provider
            config: Service settings
            transport: Optional httpx transport (tests and the mock backend)
        """
        super().__init__(config)
        self.adapter = adapter
        self.base_url = (config.base_url or adapter.default_base_url).rstrip("/")
        self.http_client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(config.timeout),
            transport=transport,
        )

    async def close(self):
        """Cancel any in-flight request and close the HTTP client."""
        self.cancel_request()
        await self.http_client.aclose()

    def create_request(
        self, messages: list[Message], system_prompt: str | None = None
    ) -> StreamingRequest:
        body = self.adapter.build_request_body(
            messages,
            model=self.config.model_name,
            system_prompt=system_prompt,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            stream=True,
        )
        return StreamingRequest(
            self.http_client,
            self.adapter,
            f"{self.base_url}{self.adapter.chat_path}",
            body,
            deadline=self.config.deadline,
        )

    async def test_connection(self) -> bool:
        """Return True if the backend answers its model-listing endpoint."""
        try:
            response = await self.http_client.get(self.adapter.models_path)
        except httpx.HTTPError as e:
            logger.warning("connection_test_failed", provider=self.adapter.name, error=str(e))
            return False
        return response.is_success

    async def list_models(self) -> list[str]:
        """List model names available on the backend.

        Raises:
            TransportError: If the backend is unreachable or answers non-2xx
        """
        try:
            response = await self.http_client.get(self.adapter.models_path)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Failed to list models: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to list models: {e}") from e

        return self.adapter.parse_models(response.json())
