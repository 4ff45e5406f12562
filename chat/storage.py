"""JSON-file persistence for chat sessions.

Each session is one ``<id>.json`` file, always written as a whole snapshot.
"""

import asyncio
import re
from pathlib import Path

import structlog
from pydantic import ValidationError

from .models import ChatSession

logger = structlog.get_logger(__name__)

_SAFE_ID = re.compile(r"^[\w-]+$")


class SessionStore:
    """Directory of chat session snapshots."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, session_id: str) -> Path:
        if not _SAFE_ID.match(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.directory / f"{session_id}.json"

    async def save(self, session: ChatSession):
        """Write ``session``, replacing any previous snapshot."""
        path = self._path(session.id)

        def _write():
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(session.model_dump_json(indent=2), encoding="utf-8")
            tmp_path.replace(path)

        await asyncio.to_thread(_write)
        logger.debug("session_saved", session_id=session.id, message_count=len(session.messages))

    async def load(self, session_id: str) -> ChatSession | None:
        """Read a session, or None if it does not exist or cannot be parsed."""
        path = self._path(session_id)

        def _read() -> str | None:
            return path.read_text(encoding="utf-8") if path.exists() else None

        data = await asyncio.to_thread(_read)
        if data is None:
            return None

        try:
            return ChatSession.model_validate_json(data)
        except ValidationError as e:
            logger.error("session_load_failed", session_id=session_id, error=str(e))
            return None

    async def delete(self, session_id: str) -> bool:
        """Remove a session file. Returns False if there was nothing to delete."""
        path = self._path(session_id)

        def _delete() -> bool:
            if not path.exists():
                return False
            path.unlink()
            return True

        deleted = await asyncio.to_thread(_delete)
        if deleted:
            logger.info("session_deleted", session_id=session_id)
        return deleted

    async def list_sessions(self) -> list[ChatSession]:
        """All readable sessions, most recently updated first."""

        def _ids() -> list[str]:
            if not self.directory.exists():
                return []
            return [path.stem for path in self.directory.glob("*.json")]

        sessions = []
        for session_id in await asyncio.to_thread(_ids):
            session = await self.load(session_id)
            if session is not None:
                sessions.append(session)
        return sorted(sessions, key=lambda session: session.updated_at, reverse=True)
