"""Tests for the terminal client's handlers."""

import pytest

from chat.conversation import Conversation
from chat.models import ChatSession, Message, Sender, StreamDelta
from chat.storage import SessionStore
from cli import config as cli_config
from cli.client import DeltaPrinter
from cli.commands import (
    list_models,
    list_sessions,
    new_session,
    switch_session,
    view_history,
    view_segments,
)
from connectors.mock import MockChatClient


@pytest.fixture(autouse=True)
def iris_home(tmp_path, monkeypatch):
    """Keep the active-session file inside the test directory."""
    monkeypatch.setattr(cli_config, "SESSION_FILE", tmp_path / "session")
    return tmp_path


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "sessions")


class TestDeltaPrinter:
    """Test suite for streaming output."""

    def test_prints_only_new_text(self, capsys):
        """Test that cumulative deltas are printed incrementally."""
        printer = DeltaPrinter()

        printer(StreamDelta(content="Hel"))
        printer(StreamDelta(content="Hello"))
        printer(
            StreamDelta(content="Hello", is_complete=True, response_time_ms=1500, token_count=2)
        )

        output = capsys.readouterr().out
        assert output.startswith("Hello\n")
        assert "(1.5s, ~2 tokens)" in output


class TestSessionCommands:
    """Test suite for session handlers."""

    @pytest.mark.asyncio
    async def test_new_and_switch(self, mock_config, store, capsys):
        """Test creating a session and switching back to the first one."""
        async with MockChatClient(mock_config) as client:
            first = Conversation(client, store=store)
            await first.save()

            second = await new_session(first, "Side quest")
            assert second.session.title == "Side quest"
            assert second.session.id != first.session.id
            assert cli_config.load_session() == second.session.id

            back = await switch_session(second, first.session.id)

        assert back.session.id == first.session.id
        assert cli_config.load_session() == first.session.id
        assert "Switched to session" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_switch_unknown(self, mock_config, store, capsys):
        """Test that switching to a missing session keeps the current one."""
        async with MockChatClient(mock_config) as client:
            conversation = Conversation(client, store=store)
            result = await switch_session(conversation, "missing")

        assert result is conversation
        assert "Session not found" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_list_sessions(self, store, capsys):
        """Test the session listing."""
        session = ChatSession(title="Saved chat")
        await store.save(session)

        await list_sessions(store, session.id)

        output = capsys.readouterr().out
        assert "→ 1. Saved chat" in output
        assert session.id in output

    def test_view_history_and_segments(self, mock_config, capsys):
        """Test printing history and the last reply's segments."""
        session = ChatSession(
            messages=(
                Message(sender=Sender.USER, content="Show code"),
                Message(sender=Sender.ASSISTANT, content="Here:\n\n```py\nprint(1)\n```"),
            )
        )
        conversation = Conversation(MockChatClient(mock_config), session=session)

        view_history(conversation)
        view_segments(conversation)

        output = capsys.readouterr().out
        assert "User:" in output
        assert "--- 2. code:py ---" in output

    @pytest.mark.asyncio
    async def test_list_models(self, mock_config, capsys):
        """Test the model listing for the mock backend."""
        async with MockChatClient(mock_config) as client:
            await list_models(client)

        assert "→ mock" in capsys.readouterr().out
