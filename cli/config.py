"""Configuration and storage utilities for CLI client."""

import os
from pathlib import Path

# Configuration
IRIS_HOME = Path(os.getenv("IRIS_HOME", str(Path.home() / ".iris")))
SESSIONS_DIR = IRIS_HOME / "sessions"
SESSION_FILE = IRIS_HOME / "session"


def save_session(session_id: str):
    """Remember the active session ID."""
    SESSION_FILE.parent.mkdir(parents=True, exist_ok=True)
    SESSION_FILE.write_text(session_id)


def load_session() -> str | None:
    """Load the active session ID, if one was saved."""
    if SESSION_FILE.exists():
        return SESSION_FILE.read_text().strip() or None
    return None


def delete_session():
    """Forget the active session ID."""
    if SESSION_FILE.exists():
        SESSION_FILE.unlink()
