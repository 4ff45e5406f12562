"""Session command handlers."""

from chat.conversation import Conversation
from chat.models import ChatSession, Sender
from chat.segments import segment_message
from chat.storage import SessionStore
from chat.tokens import format_response_time

from ..config import delete_session, save_session


async def new_session(conversation: Conversation, title: str | None = None) -> Conversation:
    """Start a fresh session on the same client and store."""
    session = ChatSession(title=title) if title else ChatSession()
    fresh = Conversation(
        conversation.client,
        session=session,
        store=conversation.store,
        system_prompt=conversation.system_prompt,
        client_factory=conversation.client_factory,
    )
    await fresh.save()
    save_session(session.id)

    print("\n✓ Session created successfully!")
    print(f"  Session ID: {session.id}")
    print(f"  Title: {session.title}")
    print("  This is now your active session.\n")
    return fresh


async def list_sessions(store: SessionStore, current_id: str | None = None):
    """List all saved sessions."""
    sessions = await store.list_sessions()
    if not sessions:
        print("\nNo chat sessions found. Use /new to create one.\n")
        return

    print("\n=== Your Chat Sessions ===")
    for i, session in enumerate(sessions, 1):
        marker = "→" if session.id == current_id else " "
        print(f"{marker} {i}. {session.title}")
        print(f"     ID: {session.id}")
        print(f"     Messages: {len(session.messages)}")
        print(f"     Last active: {session.updated_at.isoformat()[:19]}")
    print()


async def switch_session(conversation: Conversation, session_id: str) -> Conversation:
    """Switch to a saved session; returns the current conversation if it is missing."""
    try:
        session = await conversation.store.load(session_id)
    except ValueError:
        session = None

    if session is None:
        print("Error: Session not found.\n")
        return conversation

    save_session(session.id)
    print(f"\n✓ Switched to session: {session.title} ({session.id})\n")
    return Conversation(
        conversation.client,
        session=session,
        store=conversation.store,
        system_prompt=conversation.system_prompt,
        client_factory=conversation.client_factory,
    )


async def delete_current_session(conversation: Conversation) -> Conversation:
    """Delete the active session and start a new one."""
    await conversation.store.delete(conversation.session.id)
    delete_session()
    print(f"\n✓ Deleted session: {conversation.session.id}")
    return await new_session(conversation)


def view_history(conversation: Conversation):
    """Print the active session's messages."""
    messages = conversation.messages
    if not messages:
        print("\nNo messages in this session yet.\n")
        return

    print(f"\n=== {conversation.session.title} ===")
    for message in messages:
        timestamp = message.timestamp.isoformat()[:19]
        details = ""
        if message.response_time_ms:
            details = f" ({format_response_time(message.response_time_ms)})"
        print(f"\n[{timestamp}] {message.sender.value.capitalize()}{details}:")
        print(message.content)
    print()


def view_segments(conversation: Conversation):
    """Show how the last assistant reply splits into segments."""
    reply = next(
        (m for m in reversed(conversation.messages) if m.sender == Sender.ASSISTANT), None
    )
    if reply is None:
        print("\nNo assistant reply yet.\n")
        return

    print("\n=== Last reply, by segment ===")
    for index, segment in enumerate(segment_message(reply), 1):
        label = segment.type.value
        if segment.language:
            label = f"{label}:{segment.language}"
        print(f"\n--- {index}. {label} ---")
        print(segment.content)
    print()
