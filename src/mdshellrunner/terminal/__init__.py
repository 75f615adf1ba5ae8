"""Persistent terminal sessions keyed by document and terminal name."""

from .models import Session, SessionKey, SessionState
from .pty_backend import PtyBackend, build_shell_command
from .registry import SessionEvent, SessionRegistry, escape_history_expansion

__all__ = [
    "build_shell_command",
    "escape_history_expansion",
    "PtyBackend",
    "Session",
    "SessionEvent",
    "SessionKey",
    "SessionRegistry",
    "SessionState",
]
