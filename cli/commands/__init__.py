"""CLI command handlers."""

from .backend import check_connection, list_models
from .sessions import (
    delete_current_session,
    list_sessions,
    new_session,
    switch_session,
    view_history,
    view_segments,
)

__all__ = [
    # Backend commands
    "check_connection",
    "list_models",
    # Session commands
    "delete_current_session",
    "list_sessions",
    "new_session",
    "switch_session",
    "view_history",
    "view_segments",
]
