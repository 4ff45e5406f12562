"""Main CLI client with REPL loop."""

import asyncio
import os
import signal
from collections.abc import Awaitable

from chat.commands import CommandRegistry
from chat.config import load_config
from chat.conversation import Conversation
from chat.models import StreamDelta
from chat.observability import initialize_observability
from chat.storage import SessionStore
from chat.title import MakeTitleCommand
from chat.tokens import format_response_time
from connectors.errors import IrisError
from connectors.factory import create_client

from .commands import (
    check_connection,
    delete_current_session,
    list_models,
    list_sessions,
    new_session,
    switch_session,
    view_history,
    view_segments,
)
from .config import SESSIONS_DIR, load_session, save_session


class DeltaPrinter:
    """Writes cumulative deltas to the terminal as they grow."""

    def __init__(self):
        self.printed = 0

    def __call__(self, delta: StreamDelta):
        if len(delta.content) > self.printed:
            print(delta.content[self.printed :], end="", flush=True)
            self.printed = len(delta.content)

        if delta.is_complete:
            elapsed = format_response_time(delta.response_time_ms or 0)
            print(f"\n  ({elapsed}, ~{delta.token_count or 0} tokens)\n")


async def interruptible(conversation: Conversation, operation: Awaitable):
    """Await ``operation`` with Ctrl-C cancelling the reply instead of exiting."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, conversation.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        # No signal handlers off the main thread or on Windows
        installed = False

    try:
        return await operation
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def start() -> Conversation:
    """Create the client and resume the last active session."""
    config = load_config()
    client = create_client(config.service_type, config)
    store = SessionStore(SESSIONS_DIR)

    session = None
    session_id = load_session()
    if session_id:
        try:
            session = await store.load(session_id)
        except ValueError:
            session = None

    conversation = Conversation(
        client, session=session, store=store, system_prompt=config.system_prompt
    )
    save_session(conversation.session.id)
    return conversation


async def chat_turn(conversation: Conversation, registry: CommandRegistry, user_input: str):
    """Run an inline command, or send the input as a chat message."""
    try:
        result = await interruptible(conversation, conversation.run_command(user_input, registry))
        if result is not None:
            marker = "✓" if result.success else "Error:"
            print(f"{marker} {result.message}\n")
            return

        print("Assistant: ", end="", flush=True)
        await interruptible(conversation, conversation.send(user_input, on_delta=DeltaPrinter()))
    except IrisError as e:
        print(f"\nError: {e}\n")


def print_help(registry: CommandRegistry):
    print("\nSession Commands:")
    print("  /new - Create a new chat session")
    print("  /sessions - List all your chat sessions")
    print("  /switch <id> - Switch to a different session")
    print("  /history - View conversation history for current session")
    print("  /segments - Show the last reply split into segments")
    print("  /delete - Delete the current session")
    print("\nBackend Commands:")
    print("  /status - Check the connection to the backend")
    print("  /models - List available models")
    print("\nInline Commands:")
    for command in registry.all():
        print(f"  {command.prefix} - {command.description}")
    print("\nUtility Commands:")
    print("  /help - Show this list")
    print("  /clear - Clear the terminal screen")
    print("\nPress Ctrl-C while a reply streams to stop it.")
    print("Type 'exit' or 'quit' to end the conversation.\n")


def main():
    """Terminal chat client for local models."""
    initialize_observability()
    registry = CommandRegistry([MakeTitleCommand()])

    with asyncio.Runner() as runner:
        try:
            conversation = runner.run(start())
        except IrisError as e:
            print(f"Error: {e}")
            print("Set IRIS_SERVICE_TYPE and IRIS_MODEL_NAME (or use IRIS_SERVICE_TYPE=mock).")
            return

        config = conversation.client.config
        print("Welcome to Iris Chat!")
        print(f"Backend: {config.service_type.value} ({config.model_name or 'default model'})")
        print(f"Session: {conversation.session.title} ({conversation.session.id})")
        print_help(registry)

        try:
            while True:
                try:
                    user_input = input("You: ").strip()
                except (KeyboardInterrupt, EOFError):
                    print("\n\nGoodbye!")
                    break

                if user_input.lower() in ["exit", "quit"]:
                    print("\nGoodbye!")
                    break

                if not user_input:
                    continue

                command, _, argument = user_input.partition(" ")
                command = command.lower()
                argument = argument.strip()

                # Handle commands
                if command == "/help":
                    print_help(registry)
                    continue

                if command == "/new":
                    conversation = runner.run(new_session(conversation, argument or None))
                    continue

                if command == "/sessions":
                    runner.run(list_sessions(conversation.store, conversation.session.id))
                    continue

                if command == "/switch":
                    session_id = argument or input("\nEnter session ID: ").strip()
                    if not session_id:
                        print("Error: Session ID is required.\n")
                        continue
                    conversation = runner.run(switch_session(conversation, session_id))
                    continue

                if command == "/delete":
                    conversation = runner.run(delete_current_session(conversation))
                    continue

                if command == "/history":
                    view_history(conversation)
                    continue

                if command == "/segments":
                    view_segments(conversation)
                    continue

                if command == "/status":
                    runner.run(check_connection(conversation.client))
                    continue

                if command == "/models":
                    runner.run(list_models(conversation.client))
                    continue

                if command == "/clear":
                    # Clear terminal screen (cross-platform)
                    os.system("cls" if os.name == "nt" else "clear")
                    continue

                runner.run(chat_turn(conversation, registry, user_input))
        finally:
            runner.run(conversation.client.close())


if __name__ == "__main__":
    main()
