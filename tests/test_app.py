from __future__ import annotations

from pathlib import Path

import pytest

from mdshellrunner.app import MarkdownRunner
from mdshellrunner.config import AppConfig
from mdshellrunner.errors import LanguageNotEnabledError, NoBlockAtPositionError, SpawnFailureError
from mdshellrunner.presenter import Rerun, RunReport
from mdshellrunner.router import Document, ExecutionMode
from mdshellrunner.runner import ExecutionResult
from mdshellrunner.terminal import PtyBackend, SessionKey, SessionRegistry

_DOC_TEXT = "\n".join(
    [
        "# Ops",
        "```bash",
        "echo shell",
        "```",
        "```bash,west",
        "echo west",
        "```",
        "```python",
        "print('py')",
        "```",
        "",
    ]
)


class _FakeRunner:
    def __init__(self, *, error: SpawnFailureError | None = None) -> None:
        self.calls: list[tuple[str, str | None, Path | None]] = []
        self._error = error

    async def run_captured(
        self,
        command: str,
        interpreter: str | None = None,
        working_directory: Path | None = None,
    ) -> ExecutionResult:
        self.calls.append((command, interpreter, working_directory))
        if self._error is not None:
            raise self._error
        return ExecutionResult(stdout=f"ran {len(self.calls)}", exit_code=0, succeeded=True)


class _RecordingPresenter:
    def __init__(self, *, rerun_times: int = 0) -> None:
        self.reports: list[RunReport] = []
        self.rerun_times = rerun_times

    async def present(self, report: RunReport, rerun: Rerun | None = None) -> None:
        self.reports.append(report)
        for _ in range(self.rerun_times):
            assert rerun is not None
            self.reports.append(await rerun())


class _FakePty:
    def __init__(self) -> None:
        self.writes: list[str] = []
        self.closed = False
        self.hung_up = False

    def write(self, payload: str) -> None:
        self.writes.append(payload)

    def read(self, _size: int = 4096) -> str:
        import time

        while not (self.closed or self.hung_up):
            time.sleep(0.01)
        raise EOFError

    def terminate(self) -> None:
        self.hung_up = True

    def close(self) -> None:
        self.closed = True

    def isalive(self) -> bool:
        return not self.closed


def _document(tmp_path: Path) -> Document:
    return Document(text=_DOC_TEXT, path=tmp_path / "ops.md")


def _runner(config: AppConfig, tmp_path: Path, **kwargs: object) -> tuple[MarkdownRunner, list[_FakePty]]:
    ptys: list[_FakePty] = []

    def spawn(_command: list[str], _cwd: str | None, _env: dict[str, str] | None) -> _FakePty:
        pty = _FakePty()
        ptys.append(pty)
        return pty

    registry = SessionRegistry(backend=PtyBackend(spawn=spawn), shell="/bin/sh", windows=False)
    kwargs.setdefault("runner", _FakeRunner())
    kwargs.setdefault("presenter", _RecordingPresenter())
    return MarkdownRunner(config, registry=registry, **kwargs), ptys


@pytest.mark.asyncio
async def test_run_block_at_cursor_sends_shell_block_to_document_terminal(tmp_path: Path) -> None:
    runner, ptys = _runner(AppConfig(), tmp_path)
    runner.activate()

    report = await runner.run_block_at_cursor(_document(tmp_path), 2, 3)

    assert report.decision.mode == ExecutionMode.TERMINAL
    assert report.session is not None
    assert report.session.key == SessionKey(document=str(tmp_path / "ops.md"))
    assert report.succeeded is True
    assert report.working_directory == tmp_path
    assert ptys[0].writes[-1] == "echo shell\n"
    assert runner.presenter.reports == [report]
    await runner.deactivate()
    assert runner.active is False


@pytest.mark.asyncio
async def test_named_and_default_blocks_use_separate_sessions(tmp_path: Path) -> None:
    runner, ptys = _runner(AppConfig(), tmp_path)
    document = _document(tmp_path)

    first = await runner.run_block_at_cursor(document, 2)
    named = await runner.run_block_at_cursor(document, 5)
    again = await runner.run_block_at_cursor(document, 1)

    assert first.session is again.session
    assert named.session is not first.session
    assert named.session is not None and named.session.key.name == "west"
    assert len(ptys) == 2
    await runner.deactivate()


@pytest.mark.asyncio
async def test_shell_block_runs_captured_when_terminal_disabled(tmp_path: Path) -> None:
    fake = _FakeRunner()
    runner, ptys = _runner(AppConfig(use_terminal=False), tmp_path, runner=fake)

    report = await runner.run_block_at_position(_document(tmp_path), _DOC_TEXT.index("echo shell"))

    assert report.result is not None and report.result.stdout == "ran 1"
    assert fake.calls == [("echo shell", None, tmp_path)]
    assert ptys == []


@pytest.mark.asyncio
async def test_python_block_uses_interpreter_and_result_panel(tmp_path: Path) -> None:
    fake = _FakeRunner()
    presenter = _RecordingPresenter()
    panel = _RecordingPresenter(rerun_times=2)
    runner, ptys = _runner(AppConfig(), tmp_path, runner=fake, presenter=presenter, panel=panel)

    report = await runner.run_block_at_cursor(_document(tmp_path), 8)

    assert report.decision.interpreter == "python"
    assert presenter.reports == []
    assert [item.output for item in panel.reports] == ["ran 1", "ran 2", "ran 3"]
    assert len({id(item.result) for item in panel.reports}) == 3
    assert fake.calls == [("print('py')", "python", tmp_path)] * 3
    assert ptys == []


@pytest.mark.asyncio
async def test_python_block_uses_output_presenter_when_rich_view_disabled(tmp_path: Path) -> None:
    presenter = _RecordingPresenter()
    panel = _RecordingPresenter()
    runner, _ = _runner(AppConfig(use_python_web_view=False), tmp_path, presenter=presenter, panel=panel)

    await runner.run_block_at_cursor(_document(tmp_path), 8)

    assert len(presenter.reports) == 1
    assert panel.reports == []


@pytest.mark.asyncio
async def test_no_block_at_position_raises_without_execution(tmp_path: Path) -> None:
    fake = _FakeRunner()
    runner, _ = _runner(AppConfig(use_terminal=False), tmp_path, runner=fake)

    with pytest.raises(NoBlockAtPositionError):
        await runner.run_block_at_cursor(_document(tmp_path), 0)

    assert fake.calls == []


@pytest.mark.asyncio
async def test_disabled_language_raises_without_execution(tmp_path: Path) -> None:
    fake = _FakeRunner()
    runner, ptys = _runner(AppConfig(enabled_languages=["python"]), tmp_path, runner=fake)

    with pytest.raises(LanguageNotEnabledError):
        await runner.run_block_at_cursor(_document(tmp_path), 2)

    assert fake.calls == []
    assert ptys == []


@pytest.mark.asyncio
async def test_spawn_failure_is_captured_into_report(tmp_path: Path) -> None:
    error = SpawnFailureError("Failed to start python3: No such file or directory", hint="Install python3.")
    fake = _FakeRunner(error=error)
    runner, _ = _runner(AppConfig(use_python_web_view=False), tmp_path, runner=fake)

    report = await runner.run_block_at_cursor(_document(tmp_path), 8)

    assert report.succeeded is False
    assert report.result is None
    assert "Failed to start python3" in report.output
    assert report.code == "print('py')"
    assert report.failure is error
    assert "Hint" not in report.output


def test_affordances_follow_code_lens_toggle(tmp_path: Path) -> None:
    enabled, _ = _runner(AppConfig(), tmp_path)
    disabled, _ = _runner(AppConfig(enable_code_lens=False), tmp_path)

    assert [item.line for item in enabled.affordances(_document(tmp_path))] == [1, 4, 7]
    assert disabled.affordances(_document(tmp_path)) == []
