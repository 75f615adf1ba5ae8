"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    COMMAND_FAILED = 1
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    SPAWN_ERROR = 5
    VALIDATION_ERROR = 7


@dataclass
class MarkdownRunnerError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


class NoBlockAtPositionError(MarkdownRunnerError):
    def __init__(self, message: str = "No shell code block found at cursor position", *, hint: str = "") -> None:
        super().__init__(message, code=ExitCode.VALIDATION_ERROR, hint=hint)


class LanguageNotEnabledError(MarkdownRunnerError):
    def __init__(self, language: str) -> None:
        super().__init__(
            f"Language '{language}' is not enabled for execution",
            code=ExitCode.CONFIG_ERROR,
            hint="Add it to enabled_languages in the config file.",
        )
        self.language = language


class SpawnFailureError(MarkdownRunnerError):
    def __init__(self, message: str, *, hint: str = "") -> None:
        super().__init__(message, code=ExitCode.SPAWN_ERROR, hint=hint)


class CommandFailedError(MarkdownRunnerError):
    def __init__(self, exit_code: int | None) -> None:
        super().__init__(f"Command failed with exit code {exit_code}", code=ExitCode.COMMAND_FAILED)
        self.exit_code = exit_code


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
