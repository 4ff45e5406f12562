"""Cancellable streaming request.

A ``StreamingRequest`` drives one POST to a provider: the response body is read
in a background task, each chunk goes through the adapter's ``StreamDecoder``,
and cumulative ``StreamDelta`` updates come out of :meth:`StreamingRequest.events`
in order. Whatever ends the request (provider sentinel, end of body, transport
failure, :meth:`cancel` or a deadline), exactly one ``is_complete=True`` delta
is produced.
"""

import asyncio
import inspect
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx
import structlog

from chat.models import StreamDelta
from chat.observability import get_app_metrics, get_tracer
from chat.tokens import TokenEstimator, estimate_token_count

from .base import BackendAdapter
from .errors import TransportError

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

DeltaCallback = Callable[[StreamDelta], Awaitable[None] | None]


async def invoke_callback(callback: DeltaCallback, delta: StreamDelta):
    """Call a delta callback that may be sync or async."""
    result = callback(delta)
    if inspect.isawaitable(result):
        await result


class StreamingRequest:
    """One cancellable streamed chat request.

    A request is single-use: create a new one per turn. Callers must not start
    a second request for the same conversation until this one has completed
    or been cancelled.

    Example:
        >>> request = StreamingRequest(http_client, OllamaAdapter(), url, body)
        >>> async for delta in request.events():
        ...     print(delta.content)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        adapter: BackendAdapter,
        url: str,
        body: dict[str, Any],
        token_estimator: TokenEstimator = estimate_token_count,
        deadline: float | None = None,
    ):
        """Initialize a streaming request.

        Args:
            http_client: Client used for the POST; not closed by the request
            adapter: Provider adapter that decodes the body
            url: Full chat endpoint URL
            body: JSON request body
            token_estimator: Maps content to an estimated token count
            deadline: Optional seconds after which the request is cancelled
        """
        self.http_client = http_client
        self.adapter = adapter
        self.url = url
        self.body = body
        self.token_estimator = token_estimator
        self.deadline = deadline

        self._decoder = adapter.open_stream()
        self._task: asyncio.Task | None = None
        self._started_at: float | None = None
        self._content = ""
        self._cancelled = False
        self._final: StreamDelta | None = None

    @property
    def content(self) -> str:
        """Cumulative content received so far."""
        return self._content

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        """True once the terminal delta has been produced."""
        return self._final is not None

    @property
    def final(self) -> StreamDelta | None:
        return self._final

    def cancel(self) -> bool:
        """Abort the request and close its connection.

        Idempotent: cancelling a finished or already-cancelled request does
        nothing.

        Returns:
            True if this call cancelled the request
        """
        if self._final is not None or self._cancelled:
            return False

        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

        get_app_metrics().stream_cancellations.add(1, {"provider": self.adapter.name})
        logger.info(
            "stream_cancelled", provider=self.adapter.name, content_length=len(self._content)
        )
        return True

    async def send(self, on_delta: DeltaCallback) -> StreamDelta:
        """Stream the response into ``on_delta``.

        The callback receives every content update and then exactly one
        terminal delta. Cancellation is a normal outcome: this returns the
        terminal delta rather than raising.

        Raises:
            TransportError: Connection failure or non-2xx status (raised after
                the terminal delta was delivered)
        """
        try:
            async for delta in self.events():
                await invoke_callback(on_delta, delta)
        except asyncio.CancelledError:
            # The caller's own task is going away; still stop the spinner
            final = self._complete()
            if final is not None:
                await invoke_callback(on_delta, final)
            raise

        return self._final

    async def events(self) -> AsyncIterator[StreamDelta]:
        """Yield cumulative deltas, ending with one ``is_complete=True`` delta."""
        if self._task is not None or self._final is not None:
            raise RuntimeError("StreamingRequest objects are single-use")

        self._started_at = time.monotonic()
        get_app_metrics().stream_requests.add(1, {"provider": self.adapter.name})

        if self._cancelled:
            yield self._complete()
            return

        queue: asyncio.Queue[StreamDelta | None] = asyncio.Queue()
        task = asyncio.create_task(self._produce(queue))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        self._task = task

        deadline_handle = None
        if self.deadline is not None:
            deadline_handle = asyncio.get_running_loop().call_later(self.deadline, self._expire)

        error: Exception | None = None
        try:
            while True:
                update = await queue.get()
                if update is None or update.is_complete:
                    break
                delta = self._progress(update)
                if delta is not None:
                    yield delta
            error = await self._stop_producer()
        finally:
            if deadline_handle is not None:
                deadline_handle.cancel()
            if not task.done():
                task.cancel()

        final = self._complete()
        if final is not None:
            yield final
        if error is not None:
            raise error

    def _expire(self):
        if self.cancel():
            logger.warning(
                "stream_deadline_exceeded", provider=self.adapter.name, deadline=self.deadline
            )

    async def _produce(self, queue: asyncio.Queue):
        """Read the response body and push decoded updates onto ``queue``."""
        with tracer.start_as_current_span("stream_request") as span:
            span.set_attribute("provider", self.adapter.name)
            span.set_attribute("request.url", self.url)

            received = 0
            async with self.http_client.stream("POST", self.url, json=self.body) as response:
                span.set_attribute("http.status_code", response.status_code)
                if not response.is_success:
                    detail = (await response.aread()).decode("utf-8", errors="replace")[:500]
                    raise TransportError(
                        f"{self.adapter.name} request failed: "
                        f"{response.status_code} {response.reason_phrase}",
                        status_code=response.status_code,
                        detail=detail,
                    )

                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    for update in self._decoder.feed(chunk):
                        queue.put_nowait(update)
                    if self._decoder.completed:
                        # Sentinel seen; leaving the block closes the connection
                        break

            for update in self._decoder.close():
                queue.put_nowait(update)
            span.set_attribute("response.bytes", received)

    async def _stop_producer(self) -> Exception | None:
        """Wait for the reader task and translate how it ended."""
        try:
            await self._task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return None
        except TransportError as e:
            return self._failed(e)
        except httpx.HTTPError as e:
            return self._failed(TransportError(f"{self.adapter.name} connection failed: {e}"))
        except Exception as e:
            logger.exception("stream_reader_crashed", provider=self.adapter.name)
            return e
        return None

    def _failed(self, error: TransportError) -> TransportError:
        get_app_metrics().stream_errors.add(1, {"provider": self.adapter.name})
        logger.error(
            "stream_transport_error",
            provider=self.adapter.name,
            status_code=error.status_code,
            error=str(error),
        )
        return error

    def _elapsed_ms(self) -> int:
        if self._started_at is None:
            return 0
        return int((time.monotonic() - self._started_at) * 1000)

    def _progress(self, update: StreamDelta) -> StreamDelta | None:
        """Stamp a decoder update, or None if it adds no content."""
        if self._final is not None or len(update.content) <= len(self._content):
            return None

        self._content = update.content
        return StreamDelta(
            content=self._content,
            response_time_ms=self._elapsed_ms(),
            token_count=self.token_estimator(self._content),
        )

    def _complete(self) -> StreamDelta | None:
        """Build the terminal delta; None if it was already produced."""
        if self._final is not None:
            return None

        self._final = StreamDelta(
            content=self._content,
            is_complete=True,
            response_time_ms=self._elapsed_ms(),
            token_count=self.token_estimator(self._content),
        )
        get_app_metrics().response_time.record(
            self._final.response_time_ms, {"provider": self.adapter.name}
        )
        logger.info(
            "stream_completed",
            provider=self.adapter.name,
            cancelled=self._cancelled,
            content_length=len(self._content),
            response_time_ms=self._final.response_time_ms,
        )
        return self._final
