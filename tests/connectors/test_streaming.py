"""Tests for cancellable streaming requests."""

import asyncio
import json

import httpx
import pytest

from chat.models import StreamDelta
from connectors.errors import TransportError
from connectors.lmstudio import LMStudioAdapter
from connectors.ollama import OllamaAdapter
from connectors.streaming import StreamingRequest

URL = "http://backend.test/api/chat"
BODY = {"model": "llama3", "messages": [], "stream": True}

HI_THERE = [
    b'{"message":{"content":"Hi"},"done":false}\n',
    b'{"message":{"content":" there"},"done":false}\n',
    b'{"done":true}\n',
]


class ChunkedStream(httpx.AsyncByteStream):
    """Response body yielding fixed chunks, optionally never finishing."""

    def __init__(self, chunks: list[bytes], delay: float = 0.0, hang: bool = False):
        self.chunks = chunks
        self.delay = delay
        self.hang = hang
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk
        if self.hang:
            await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


def streaming_client(stream: httpx.AsyncByteStream, calls: list | None = None):
    """AsyncClient whose every request answers with ``stream``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(200, stream=stream)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def collect(request: StreamingRequest) -> list[StreamDelta]:
    return [delta async for delta in request.events()]


class TestStreamingRequest:
    """Test suite for the normal streaming path."""

    @pytest.mark.asyncio
    async def test_three_chunks(self):
        """Test cumulative deltas and a single completion."""
        async with streaming_client(ChunkedStream(HI_THERE)) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            deltas = await collect(request)

        assert [d.content for d in deltas] == ["Hi", "Hi there", "Hi there"]
        assert [d.is_complete for d in deltas] == [False, False, True]
        assert request.done is True
        assert request.final == deltas[-1]

    @pytest.mark.asyncio
    async def test_deltas_are_monotonic(self):
        """Test that each delta extends the previous content."""
        chunks = [b'{"message":{"content":"%d "},"done":false}\n' % i for i in range(20)]
        async with streaming_client(ChunkedStream(chunks)) as http_client:
            deltas = await collect(StreamingRequest(http_client, OllamaAdapter(), URL, BODY))

        for previous, current in zip(deltas, deltas[1:], strict=False):
            assert current.content.startswith(previous.content)
        assert sum(d.is_complete for d in deltas) == 1

    @pytest.mark.asyncio
    async def test_body_without_sentinel_still_completes(self):
        """Test that end of body produces the terminal delta."""
        async with streaming_client(ChunkedStream(HI_THERE[:2])) as http_client:
            deltas = await collect(StreamingRequest(http_client, OllamaAdapter(), URL, BODY))

        assert deltas[-1] == StreamDelta(
            content="Hi there",
            is_complete=True,
            response_time_ms=deltas[-1].response_time_ms,
            token_count=deltas[-1].token_count,
        )
        assert sum(d.is_complete for d in deltas) == 1

    @pytest.mark.asyncio
    async def test_token_count_and_timing(self):
        """Test that deltas carry estimates from the token estimator."""
        async with streaming_client(ChunkedStream(HI_THERE)) as http_client:
            request = StreamingRequest(
                http_client, OllamaAdapter(), URL, BODY, token_estimator=len
            )
            deltas = await collect(request)

        assert deltas[-1].token_count == len("Hi there")
        assert all(d.response_time_ms is not None and d.response_time_ms >= 0 for d in deltas)

    @pytest.mark.asyncio
    async def test_sse_stream(self):
        """Test the line-framed path end to end."""
        chunks = [
            b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\ndata: {"choi',
            b'ces":[{"delta":{"content":"lo"}}]}\n\n',
            b"data: [DONE]\n\n",
        ]
        async with streaming_client(ChunkedStream(chunks)) as http_client:
            deltas = await collect(StreamingRequest(http_client, LMStudioAdapter(), URL, BODY))

        assert [d.content for d in deltas] == ["Hel", "Hello", "Hello"]

    @pytest.mark.asyncio
    async def test_request_is_posted_as_json(self):
        """Test the outgoing request."""
        calls = []
        async with streaming_client(ChunkedStream(HI_THERE), calls) as http_client:
            await collect(StreamingRequest(http_client, OllamaAdapter(), URL, BODY))

        assert calls[0].method == "POST"
        assert str(calls[0].url) == URL
        assert json.loads(calls[0].content) == BODY

    @pytest.mark.asyncio
    async def test_send_invokes_callback(self):
        """Test the callback form, with an async callback."""
        received = []

        async def on_delta(delta):
            received.append(delta)

        async with streaming_client(ChunkedStream(HI_THERE)) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            final = await request.send(on_delta)

        assert final.is_complete is True
        assert final.content == "Hi there"
        assert received[-1] == final
        assert len(received) == 3

    @pytest.mark.asyncio
    async def test_single_use(self):
        """Test that a request cannot be streamed twice."""
        async with streaming_client(ChunkedStream(HI_THERE)) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            await collect(request)

            with pytest.raises(RuntimeError):
                await collect(request)


class TestCancellation:
    """Test suite for cancelling streams."""

    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self):
        """Test that cancel ends the stream with the partial content."""
        stream = ChunkedStream(HI_THERE[:1], hang=True)
        received = []

        async with streaming_client(stream) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)

            def on_delta(delta):
                received.append(delta)
                if not delta.is_complete:
                    assert request.cancel() is True

            final = await request.send(on_delta)

        assert [d.content for d in received] == ["Hi", "Hi"]
        assert final.is_complete is True
        assert request.cancelled is True
        assert stream.closed is True

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self):
        """Test that a second cancel does nothing."""
        async with streaming_client(ChunkedStream([], hang=True)) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            consumer = asyncio.create_task(collect(request))
            await asyncio.sleep(0.01)

            assert request.cancel() is True
            assert request.cancel() is False
            deltas = await consumer

        assert len(deltas) == 1
        assert deltas[0].is_complete is True
        assert deltas[0].content == ""

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self):
        """Test that cancelling a finished request changes nothing."""
        received = []
        async with streaming_client(ChunkedStream(HI_THERE)) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            await request.send(received.append)

        assert request.cancel() is False
        assert request.cancelled is False
        assert len(received) == 3

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        """Test that a pre-cancelled request never connects."""
        calls = []
        async with streaming_client(ChunkedStream(HI_THERE), calls) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            request.cancel()
            deltas = await collect(request)

        assert calls == []
        assert len(deltas) == 1
        assert deltas[0].is_complete is True

    @pytest.mark.asyncio
    async def test_deadline_cancels(self):
        """Test that the deadline ends a stalled stream."""
        stream = ChunkedStream(HI_THERE[:1], hang=True)
        async with streaming_client(stream) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY, deadline=0.05)
            deltas = await asyncio.wait_for(collect(request), timeout=5)

        assert [d.content for d in deltas] == ["Hi", "Hi"]
        assert request.cancelled is True

    @pytest.mark.asyncio
    async def test_outer_task_cancelled(self):
        """Test that cancelling the caller still delivers the terminal delta."""
        received = []
        first = asyncio.Event()

        def on_delta(delta):
            received.append(delta)
            first.set()

        async with streaming_client(ChunkedStream(HI_THERE[:1], hang=True)) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            task = asyncio.create_task(request.send(on_delta))
            await first.wait()
            task.cancel()

            with pytest.raises(asyncio.CancelledError):
                await task

        assert received[-1].is_complete is True
        assert received[-1].content == "Hi"
        assert sum(d.is_complete for d in received) == 1


class TestTransportErrors:
    """Test suite for transport failures."""

    @pytest.mark.asyncio
    async def test_non_2xx_status(self):
        """Test that an error status raises after the terminal delta."""

        def handler(request):
            return httpx.Response(500, text="model crashed")

        received = []
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            with pytest.raises(TransportError) as exc_info:
                await request.send(received.append)

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == "model crashed"
        assert len(received) == 1
        assert received[0].is_complete is True

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """Test that connection failures become TransportError."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        received = []
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            with pytest.raises(TransportError) as exc_info:
                await request.send(received.append)

        assert exc_info.value.status_code is None
        assert "connection refused" in str(exc_info.value)
        assert [d.is_complete for d in received] == [True]

    @pytest.mark.asyncio
    async def test_failure_after_partial_content(self):
        """Test that a dropped stream reports what arrived, then raises."""

        class BrokenStream(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield HI_THERE[0]
                raise httpx.ReadError("connection reset")

        received = []
        async with streaming_client(BrokenStream()) as http_client:
            request = StreamingRequest(http_client, OllamaAdapter(), URL, BODY)
            with pytest.raises(TransportError) as exc_info:
                await request.send(received.append)

        assert [(d.content, d.is_complete) for d in received] == [("Hi", False), ("Hi", True)]
        assert "connection reset" in str(exc_info.value)
