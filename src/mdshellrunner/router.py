"""Execution routing for extracted code blocks."""

from __future__ import annotations

import logging as py_logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from mdshellrunner.blocks import DEFAULT_TERMINAL_NAME, CodeBlock
from mdshellrunner.config import AppConfig
from mdshellrunner.errors import LanguageNotEnabledError
from mdshellrunner.terminal.models import SessionKey

logger = py_logging.getLogger(__name__)

PYTHON_INTERPRETER = "python"


class ExecutionMode(str, Enum):
    TERMINAL = "terminal"
    CAPTURED = "captured"


@dataclass(frozen=True)
class Document:
    text: str
    path: Path | None = None
    name: str = "Untitled-1"
    workspace_roots: tuple[Path, ...] = field(default_factory=tuple)

    @classmethod
    def from_file(cls, path: str | Path, *, workspace_roots: tuple[Path, ...] = ()) -> Document:
        resolved = Path(path).expanduser().resolve()
        return cls(
            text=resolved.read_text(encoding="utf-8"),
            path=resolved,
            name=resolved.name,
            workspace_roots=workspace_roots,
        )

    @property
    def identity(self) -> str:
        if self.path is not None:
            return str(self.path)
        return f"untitled:{self.name}"


@dataclass(frozen=True)
class RoutingDecision:
    mode: ExecutionMode
    working_directory: Path
    interpreter: str | None = None
    session_key: SessionKey | None = None


def resolve_working_directory(document: Document) -> Path:
    if document.path is not None:
        return document.path.parent
    if document.workspace_roots:
        return document.workspace_roots[0]
    return Path.cwd()


def route(block: CodeBlock, config: AppConfig, document: Document) -> RoutingDecision:
    if block.language not in config.enabled_languages:
        raise LanguageNotEnabledError(block.language)

    working_directory = resolve_working_directory(document)
    if block.is_script:
        # Scripting blocks never share a terminal session.
        decision = RoutingDecision(
            mode=ExecutionMode.CAPTURED,
            working_directory=working_directory,
            interpreter=PYTHON_INTERPRETER,
        )
    elif config.use_terminal:
        decision = RoutingDecision(
            mode=ExecutionMode.TERMINAL,
            working_directory=working_directory,
            session_key=SessionKey(
                document=document.identity,
                name=block.terminal_name or DEFAULT_TERMINAL_NAME,
            ),
        )
    else:
        decision = RoutingDecision(mode=ExecutionMode.CAPTURED, working_directory=working_directory)

    logger.debug(
        "Routed %s block at line %s mode=%s cwd=%s",
        block.language,
        block.line,
        decision.mode.value,
        working_directory,
    )
    return decision
