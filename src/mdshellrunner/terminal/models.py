"""Terminal session domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

SESSION_TITLE = "Markdown Shell"


class SessionState(str, Enum):
    RUNNING = "running"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionKey:
    document: str
    name: str = "default"

    @property
    def label(self) -> str:
        return f"{self.document}#{self.name}"


@dataclass
class Session:
    key: SessionKey
    index: int
    working_directory: Path
    state: SessionState = SessionState.RUNNING

    @property
    def terminal_id(self) -> str:
        return f"session-{self.index}"

    @property
    def display_name(self) -> str:
        if self.key.name != "default":
            return f"{SESSION_TITLE} {self.index} ({self.key.name})"
        return f"{SESSION_TITLE} {self.index}"
