"""One chat conversation: history, streaming turns, commands and persistence."""

import asyncio

import structlog

from connectors.client import ChatClient
from connectors.errors import IrisError
from connectors.factory import create_client
from connectors.streaming import DeltaCallback, invoke_callback

from .commands import CommandContext, CommandRegistry, CommandResult
from .config import ServiceConfig
from .models import ChatSession, Message, MessageSegment, Sender, StreamDelta
from .observability import get_app_metrics, get_tracer
from .segments import segment_message
from .storage import SessionStore

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


def _default_client_factory(config: ServiceConfig) -> ChatClient:
    return create_client(config.service_type, config)


class Conversation:
    """Drives chat turns for a single session.

    The session is an immutable snapshot that is replaced, never edited, so a
    request in flight always works on the history it was given. Only one turn
    may run at a time; the UI is expected to block input meanwhile.
    """

    def __init__(
        self,
        client: ChatClient,
        session: ChatSession | None = None,
        store: SessionStore | None = None,
        system_prompt: str | None = None,
        client_factory=_default_client_factory,
    ):
        self.client = client
        self.session = session or ChatSession()
        self.store = store
        self.system_prompt = system_prompt
        self.client_factory = client_factory

    @property
    def messages(self) -> list[Message]:
        return list(self.session.messages)

    async def send(
        self,
        text: str,
        on_delta: DeltaCallback | None = None,
        image_data: str | None = None,
        image_path: str | None = None,
    ) -> Message:
        """Send a user message and stream the assistant reply.

        Args:
            text: User input
            on_delta: Optional callback for each streamed update
            image_data: Optional inline image (base64 or data URL)
            image_path: Optional reference to where the image is stored

        Returns:
            The finished assistant message (partial if the turn was cancelled)

        Raises:
            TransportError: If the backend failed; an inline error message is
                appended to the conversation first
        """
        with tracer.start_as_current_span("conversation.send") as span:
            span.set_attribute("session.id", self.session.id)
            span.set_attribute("message.length", len(text))

            user_message = Message(
                sender=Sender.USER, content=text, image_data=image_data, image_path=image_path
            )
            history = [*self.session.messages, user_message]
            reply = Message(sender=Sender.ASSISTANT)
            self.session = self.session.with_messages([*history, reply])

            async def handle(delta: StreamDelta):
                nonlocal reply
                reply = reply.model_copy(
                    update={
                        "content": delta.content,
                        "response_time_ms": delta.response_time_ms,
                        "token_count": delta.token_count,
                    }
                )
                self.session = self.session.with_messages([*history, reply])
                if on_delta is not None:
                    await invoke_callback(on_delta, delta)

            try:
                await self.client.send_streaming_request(history, handle, self.system_prompt)
            except IrisError as e:
                span.record_exception(e)
                logger.error("conversation_turn_failed", session_id=self.session.id, error=str(e))
                notice = Message(sender=Sender.SYSTEM, content=f"Error: {e}")
                kept = [*history, reply] if reply.content else history
                self.session = self.session.with_messages([*kept, notice])
                await self.save()
                raise
            except asyncio.CancelledError:
                logger.info("conversation_turn_interrupted", session_id=self.session.id)
                if not reply.content:
                    self.session = self.session.with_messages(history)
                await self.save()
                raise

            if not reply.content:
                # Cancelled before anything arrived
                self.session = self.session.with_messages(history)

            get_app_metrics().chat_messages.add(1)
            logger.info(
                "conversation_turn_completed",
                session_id=self.session.id,
                message_id=reply.id,
                content_length=len(reply.content),
            )
            await self.save()
            return reply

    def cancel(self) -> bool:
        """Cancel the turn in flight, if any."""
        return self.client.cancel_request()

    async def save(self):
        if self.store is not None:
            await self.store.save(self.session)

    def segments(self, message: Message) -> list[MessageSegment]:
        return segment_message(message)

    async def run_command(self, text: str, registry: CommandRegistry) -> CommandResult | None:
        """Run the first registered command found in ``text``.

        Returns:
            The command result, or None when ``text`` holds no command and
            should be sent as a normal message
        """
        positions = registry.parse(text)
        if not positions:
            return None

        command = registry.get(positions[0].prefix)
        context = CommandContext(
            session=self.session,
            config=self.client.config,
            command_text=text,
            create_client=self.client_factory,
            update_messages=self._replace_messages,
            update_session_title=self._rename,
        )

        if not command.is_available(context):
            return CommandResult(
                success=False, message=f"{command.prefix} is not available right now"
            )

        logger.info("command_started", prefix=command.prefix, session_id=self.session.id)
        result = await command.execute(context)
        await self.save()
        return result

    def _replace_messages(self, messages: list[Message]):
        self.session = self.session.with_messages(messages)

    async def _rename(self, title: str):
        self.session = self.session.with_title(title)
        await self.save()
