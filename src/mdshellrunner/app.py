"""Application object tying extraction, routing and execution together."""

from __future__ import annotations

import logging as py_logging

from mdshellrunner.blocks import CodeBlock, RunAffordance, find_block_at, offset_at, run_affordances
from mdshellrunner.config import AppConfig
from mdshellrunner.errors import MarkdownRunnerError, NoBlockAtPositionError, SpawnFailureError
from mdshellrunner.presenter import OutputPresenter, Presenter, RunReport
from mdshellrunner.router import Document, ExecutionMode, RoutingDecision, route
from mdshellrunner.runner import ProcessRunner
from mdshellrunner.terminal import SessionRegistry

logger = py_logging.getLogger(__name__)


class MarkdownRunner:
    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        registry: SessionRegistry | None = None,
        runner: ProcessRunner | None = None,
        presenter: Presenter | None = None,
        panel: Presenter | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.registry = registry or SessionRegistry(shell=self.config.terminal_shell)
        self.runner = runner or ProcessRunner(python_interpreter=self.config.python_interpreter)
        self.presenter = presenter or OutputPresenter()
        self.panel = panel
        self.active = False

    def activate(self) -> None:
        self.active = True
        logger.info(
            "Markdown shell runner active languages=%s terminal=%s",
            ",".join(self.config.enabled_languages),
            self.config.use_terminal,
        )

    async def deactivate(self) -> None:
        await self.registry.dispose()
        self.active = False
        logger.info("Markdown shell runner deactivated")

    def affordances(self, document: Document) -> list[RunAffordance]:
        return run_affordances(document.text, enabled=self.config.enable_code_lens)

    async def run_block_at_cursor(self, document: Document, line: int, column: int = 0) -> RunReport:
        return await self.run_block_at_position(document, offset_at(document.text, line, column))

    async def run_block_at_position(self, document: Document, offset: int) -> RunReport:
        block = find_block_at(document.text, offset)
        if block is None:
            raise NoBlockAtPositionError(hint="Place the cursor inside a fenced shell or python block.")
        return await self.execute(document, block)

    async def execute(self, document: Document, block: CodeBlock) -> RunReport:
        decision = route(block, self.config, document)
        if decision.mode == ExecutionMode.TERMINAL:
            report = await self._run_in_terminal(document, block, decision)
            await self.presenter.present(report)
            return report

        report = await self._run_captured(document, block, decision)
        presenter = self.presenter
        if block.is_script and self.config.use_python_web_view and self.panel is not None:
            presenter = self.panel

        async def rerun() -> RunReport:
            return await self._run_captured(document, block, decision)

        await presenter.present(report, rerun)
        return report

    async def _run_in_terminal(self, document: Document, block: CodeBlock, decision: RoutingDecision) -> RunReport:
        key = decision.session_key
        if key is None:
            raise MarkdownRunnerError("Terminal routing requires a session key.")
        try:
            session = await self.registry.acquire(key, decision.working_directory)
            await self.registry.send(session, block.code)
        except MarkdownRunnerError as exc:
            logger.error("Terminal execution failed: %s", exc)
            return RunReport(document=document, block=block, decision=decision, error=exc.message, failure=exc)
        return RunReport(document=document, block=block, decision=decision, session=session)

    async def _run_captured(self, document: Document, block: CodeBlock, decision: RoutingDecision) -> RunReport:
        try:
            result = await self.runner.run_captured(
                block.code,
                decision.interpreter,
                decision.working_directory,
            )
        except SpawnFailureError as exc:
            return RunReport(document=document, block=block, decision=decision, error=exc.message, failure=exc)
        return RunReport(document=document, block=block, decision=decision, result=result)
