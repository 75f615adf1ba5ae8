from __future__ import annotations

from pathlib import Path

import pytest

from mdshellrunner.blocks import CodeBlock
from mdshellrunner.config import AppConfig
from mdshellrunner.errors import ExitCode, LanguageNotEnabledError
from mdshellrunner.router import Document, ExecutionMode, resolve_working_directory, route
from mdshellrunner.terminal import SessionKey

pytestmark = pytest.mark.critical_regression


def _block(language: str = "bash", terminal_name: str | None = None) -> CodeBlock:
    return CodeBlock(code="echo hi", language=language, terminal_name=terminal_name, start=0, end=20)


def test_disabled_language_is_rejected_before_execution(tmp_path: Path) -> None:
    config = AppConfig(enabled_languages=["bash"])
    document = Document(text="", path=tmp_path / "notes.md")

    with pytest.raises(LanguageNotEnabledError) as excinfo:
        route(_block("zsh"), config, document)

    assert excinfo.value.code == ExitCode.CONFIG_ERROR
    assert "zsh" in excinfo.value.message


@pytest.mark.parametrize("language", ["python", "py"])
def test_python_blocks_always_use_captured_interpreter(tmp_path: Path, language: str) -> None:
    config = AppConfig(use_terminal=True)
    document = Document(text="", path=tmp_path / "notes.md")

    decision = route(_block(language, terminal_name="west"), config, document)

    assert decision.mode == ExecutionMode.CAPTURED
    assert decision.interpreter == "python"
    assert decision.session_key is None
    assert decision.working_directory == tmp_path


def test_shell_blocks_route_to_default_terminal_session(tmp_path: Path) -> None:
    document = Document(text="", path=tmp_path / "notes.md")

    decision = route(_block("sh"), AppConfig(), document)

    assert decision.mode == ExecutionMode.TERMINAL
    assert decision.interpreter is None
    assert decision.session_key == SessionKey(document=str(tmp_path / "notes.md"), name="default")


def test_terminal_directive_selects_named_session(tmp_path: Path) -> None:
    document = Document(text="", path=tmp_path / "notes.md")

    decision = route(_block("bash", terminal_name="west"), AppConfig(), document)

    assert decision.session_key == SessionKey(document=str(tmp_path / "notes.md"), name="west")


def test_shell_blocks_use_captured_shell_when_terminal_disabled(tmp_path: Path) -> None:
    document = Document(text="", path=tmp_path / "docs" / "notes.md")

    decision = route(_block("shell", terminal_name="west"), AppConfig(use_terminal=False), document)

    assert decision.mode == ExecutionMode.CAPTURED
    assert decision.interpreter is None
    assert decision.session_key is None
    assert decision.working_directory == tmp_path / "docs"


def test_working_directory_falls_back_to_first_workspace_root(tmp_path: Path) -> None:
    document = Document(text="", workspace_roots=(tmp_path / "a", tmp_path / "b"))

    assert resolve_working_directory(document) == tmp_path / "a"
    decision = route(_block(), AppConfig(use_terminal=False), document)
    assert decision.working_directory == tmp_path / "a"


def test_working_directory_falls_back_to_cwd_without_path_or_workspace(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    assert resolve_working_directory(Document(text="")) == Path.cwd()


def test_untitled_documents_get_stable_session_identity() -> None:
    document = Document(text="", name="scratch.md")

    decision = route(_block(), AppConfig(), document)

    assert decision.session_key == SessionKey(document="untitled:scratch.md", name="default")


def test_document_from_file_reads_text_and_resolves_path(tmp_path: Path) -> None:
    path = tmp_path / "notes.md"
    path.write_text("```bash\nls\n```\n", encoding="utf-8")

    document = Document.from_file(path)

    assert document.path == path.resolve()
    assert document.identity == str(path.resolve())
    assert document.text.startswith("```bash")
