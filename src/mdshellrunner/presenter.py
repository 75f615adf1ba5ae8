"""Result presentation for executed code blocks."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TextIO

from mdshellrunner.blocks import CodeBlock
from mdshellrunner.errors import MarkdownRunnerError
from mdshellrunner.router import Document, RoutingDecision
from mdshellrunner.runner import ExecutionResult
from mdshellrunner.terminal.models import Session

SEPARATOR = "-" * 40
RERUN_ANSWERS = {"y", "yes", "r", "run"}


@dataclass(frozen=True)
class RunReport:
    document: Document
    block: CodeBlock
    decision: RoutingDecision
    result: ExecutionResult | None = None
    session: Session | None = None
    error: str = ""
    failure: MarkdownRunnerError | None = None

    @property
    def code(self) -> str:
        return self.block.code

    @property
    def working_directory(self) -> Path:
        return self.decision.working_directory

    @property
    def succeeded(self) -> bool:
        if self.error:
            return False
        if self.result is not None:
            return self.result.succeeded
        return self.session is not None

    @property
    def output(self) -> str:
        if self.error:
            return self.error
        if self.result is not None:
            return self.result.output
        if self.session is not None:
            return f"Sent to terminal '{self.session.display_name}'"
        return ""


Rerun = Callable[[], Awaitable[RunReport]]


class Presenter(Protocol):
    async def present(self, report: RunReport, rerun: Rerun | None = None) -> None: ...


def render_report(report: RunReport) -> str:
    lines = [
        f"Executing {report.block.language} code block:",
        SEPARATOR,
        report.code,
        SEPARATOR,
        f"Working directory: {report.working_directory}",
    ]
    if report.session is not None and not report.error:
        lines.append(report.output)
        return "\n".join(lines)

    if report.succeeded:
        lines.extend(["Output:", SEPARATOR, report.output.rstrip("\n"), SEPARATOR, "Command executed successfully"])
    else:
        lines.append(f"Error: {report.output.rstrip()}")
    return "\n".join(lines)


class OutputPresenter:
    """Appends each report to a text stream, like an editor output pane."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    async def present(self, report: RunReport, rerun: Rerun | None = None) -> None:
        del rerun
        self.stream.write(render_report(report) + "\n")
        self.stream.flush()


class ResultPanel(OutputPresenter):
    """Interactive result view that offers to run the same block again.

    Each rerun goes through ``rerun`` and yields a fresh report, so nothing
    from the previous result leaks into the next one.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        *,
        prompt: Callable[[str], str] = input,
    ) -> None:
        super().__init__(stream)
        self._prompt = prompt

    async def present(self, report: RunReport, rerun: Rerun | None = None) -> None:
        current = report
        while True:
            await super().present(current)
            if rerun is None:
                return
            try:
                answer = await asyncio.to_thread(self._prompt, "Run again? [y/N] ")
            except EOFError:
                return
            if answer.strip().lower() not in RERUN_ANSWERS:
                return
            current = await rerun()
