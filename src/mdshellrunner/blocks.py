"""Fenced code block extraction.

Only fence boundaries are interpreted. A fence opens with three backticks at
the start of a line followed by an info string, and closes on the next line
that holds nothing but three backticks. The info string is tokenized rather
than matched with a single pattern so that directive grammar can grow
without disturbing the existing forms::

    ```<lang>[<sep><name>]

where ``<sep>`` is a comma, whitespace, or a comma followed by whitespace.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

FENCE = "```"
SHELL_LANGUAGES = ("shell", "bash", "sh", "zsh")
SCRIPT_LANGUAGES = ("python", "py")
RECOGNIZED_LANGUAGES = SHELL_LANGUAGES + SCRIPT_LANGUAGES
DEFAULT_TERMINAL_NAME = "default"
RUN_TITLE = "▶ Run"

_TOKEN_RE = re.compile(
    r"(?P<word>[A-Za-z0-9_-]+)|(?P<comma>,)|(?P<space>[ \t]+)|(?P<other>.)",
)


@dataclass(frozen=True)
class ExecutionDirective:
    language: str
    terminal_name: str | None = None


@dataclass(frozen=True)
class CodeBlock:
    code: str
    language: str
    terminal_name: str | None
    start: int
    end: int
    line: int = 0

    @property
    def is_script(self) -> bool:
        return self.language in SCRIPT_LANGUAGES

    def contains(self, offset: int) -> bool:
        return self.start <= offset <= self.end


@dataclass(frozen=True)
class RunAffordance:
    line: int
    offset: int
    language: str
    terminal_name: str | None = None
    title: str = RUN_TITLE

    @property
    def tooltip(self) -> str:
        if self.terminal_name:
            return f"Run this {self.language} code block in terminal '{self.terminal_name}'"
        return f"Run this {self.language} code block"


def tokenize_info(info: str) -> list[tuple[str, str]]:
    return [(match.lastgroup or "other", match.group()) for match in _TOKEN_RE.finditer(info)]


def parse_directive(info: str) -> ExecutionDirective | None:
    """Parse a fence info string, or return None when it is not runnable."""
    tokens = tokenize_info(info.strip())
    if not tokens:
        return None
    kind, language = tokens[0]
    if kind != "word" or language not in RECOGNIZED_LANGUAGES:
        return None

    index = 1
    commas = 0
    while index < len(tokens) and tokens[index][0] in {"comma", "space"}:
        if tokens[index][0] == "comma":
            commas += 1
        index += 1
    if index == len(tokens):
        return ExecutionDirective(language=language) if commas <= 1 else None

    kind, name = tokens[index]
    if kind != "word" or index == 1 or commas > 1 or index + 1 != len(tokens):
        return None
    return ExecutionDirective(language=language, terminal_name=name)


def _is_closing_fence(line: str) -> bool:
    return line.strip() == FENCE


def iter_blocks(text: str) -> Iterator[CodeBlock]:
    lines = text.splitlines(keepends=True)
    offset = 0
    index = 0
    while index < len(lines):
        line = lines[index]
        if not line.startswith(FENCE):
            offset += len(line)
            index += 1
            continue

        fence_start = offset
        fence_line = index
        directive = parse_directive(line[len(FENCE) :]) if line.endswith("\n") else None
        body_start = offset + len(line)
        offset = body_start
        index += 1

        while index < len(lines) and not _is_closing_fence(lines[index]):
            offset += len(lines[index])
            index += 1
        if index == len(lines):
            return

        closing = lines[index]
        body = text[body_start:offset]
        fence_end = offset + closing.index(FENCE) + len(FENCE)
        offset += len(closing)
        index += 1

        if directive is None or not body.strip():
            continue
        if body.endswith("\n"):
            body = body[:-1]
        if body.endswith("\r"):
            body = body[:-1]
        yield CodeBlock(
            code=body,
            language=directive.language,
            terminal_name=directive.terminal_name,
            start=fence_start,
            end=fence_end,
            line=fence_line,
        )


def find_all_blocks(text: str) -> list[CodeBlock]:
    return list(iter_blocks(text))


def find_block_at(text: str, offset: int) -> CodeBlock | None:
    for block in iter_blocks(text):
        if block.start > offset:
            return None
        if block.contains(offset):
            return block
    return None


def offset_at(text: str, line: int, column: int = 0) -> int:
    """Convert a 0-based line/column position into a document offset."""
    if line < 0:
        return 0
    lines = text.splitlines(keepends=True)
    if line >= len(lines):
        return len(text)
    offset = sum(len(item) for item in lines[:line])
    content = lines[line].rstrip("\r\n")
    return offset + max(0, min(column, len(content)))


def run_affordances(text: str, *, enabled: bool = True) -> list[RunAffordance]:
    if not enabled:
        return []
    return [
        RunAffordance(
            line=block.line,
            offset=block.start,
            language=block.language,
            terminal_name=block.terminal_name,
        )
        for block in iter_blocks(text)
    ]
