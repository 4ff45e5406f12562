"""The ``@make-title`` command: name a conversation with the model's help."""

import json
import re
import time

import structlog

from connectors.errors import IrisError

from .commands import Command, CommandContext, CommandResult
from .models import Message, Sender
from .segments import split_thinking

logger = structlog.get_logger(__name__)

MAX_TITLE_LENGTH = 20
MIN_MESSAGES = 3

TITLE_SYSTEM_PROMPT = (
    "You are an assistant that writes short, accurate, descriptive titles for conversations."
)
JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def build_title_prompt(messages: list[Message]) -> str:
    transcript = "\n".join(
        f"[{'User' if message.sender == Sender.USER else 'AI'}]: {message.content}"
        for message in messages
        if message.sender != Sender.SYSTEM
    )
    return (
        f"Write a short title (at most {MAX_TITLE_LENGTH} characters) for the conversation below.\n"
        "The title should capture the main topic or purpose of the conversation.\n"
        'Reply with JSON only, in the form: {"title": "the title"}\n\n'
        f"Conversation:\n{transcript}"
    )


def parse_title(reply: str) -> str:
    """Extract the title from a model reply.

    Raises:
        ValueError: If the reply holds no JSON object with a non-empty title
    """
    # Reasoning models may think out loud (braces included) before answering
    visible, _ = split_thinking(reply)
    match = JSON_OBJECT_PATTERN.search(visible)
    if not match:
        raise ValueError("no JSON object in reply")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ValueError(f"malformed JSON in reply: {e.msg}") from e

    title = data.get("title") if isinstance(data, dict) else None
    if not isinstance(title, str) or not title.strip():
        raise ValueError("reply has no title")
    return truncate_title(title)


def truncate_title(text: str) -> str:
    cleaned = text.strip()
    if len(cleaned) <= MAX_TITLE_LENGTH:
        return cleaned
    return f"{cleaned[: MAX_TITLE_LENGTH - 1].rstrip()}…"


class MakeTitleCommand(Command):
    """Ask the configured model for a conversation title."""

    name = "Make title"
    description = "Generate a title for the current conversation"
    prefix = "@make-title"
    help_text = "Type @make-title to name this conversation"

    def is_available(self, context: CommandContext) -> bool:
        return len(context.messages) >= MIN_MESSAGES

    async def execute(self, context: CommandContext) -> CommandResult:
        history = context.messages
        status = Message(sender=Sender.SYSTEM, content="Generating a conversation title...")
        context.update_messages([*history, status])

        config = context.config.model_copy(
            update={"temperature": 0.3, "max_tokens": 100, "system_prompt": TITLE_SYSTEM_PROMPT}
        )
        started = time.monotonic()

        try:
            async with context.create_client(config) as client:
                reply = await client.send_request(
                    [Message(sender=Sender.USER, content=build_title_prompt(history))]
                )
            title = parse_title(reply.content)
        except (IrisError, ValueError) as e:
            logger.warning("make_title_failed", session_id=context.session.id, error=str(e))
            failed = status.model_copy(update={"content": f"Failed to generate a title: {e}"})
            context.update_messages([*history, failed])
            return CommandResult(success=False, message=f"Failed to generate a title: {e}")

        elapsed_ms = int((time.monotonic() - started) * 1000)
        await context.update_session_title(title)

        done = status.model_copy(
            update={
                "content": f'Conversation renamed to "{title}" ({elapsed_ms}ms)',
                "response_time_ms": elapsed_ms,
            }
        )
        context.update_messages([*history, done])

        logger.info("make_title_succeeded", session_id=context.session.id, title=title)
        return CommandResult(
            success=True, message=f"Conversation renamed to: {title}", data={"title": title}
        )
