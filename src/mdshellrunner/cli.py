"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging as py_logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TextIO

from .app import MarkdownRunner
from .config import AppConfig, load_config
from .errors import CommandFailedError, ExitCode, MarkdownRunnerError, user_facing_error
from .logging import configure_logging, default_log_path
from .presenter import OutputPresenter, ResultPanel, RunReport
from .router import Document
from .terminal import Session, SessionRegistry

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_QUIT_COMMANDS = {"q", "quit", "exit"}
_LIST_COMMANDS = {"l", "ls", "list"}

Prompt = Callable[[str], str]


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("value must be an integer") from exc
    if parsed < 0:
        raise argparse.ArgumentTypeError("value must not be negative")
    return parsed


def _line_type(value: str) -> int:
    parsed = _non_negative_int(value)
    if parsed < 1:
        raise argparse.ArgumentTypeError("--line is 1-based")
    return parsed


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mdshellrunner")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    parser.add_argument(
        "--no-terminal",
        action="store_true",
        help="Run shell blocks with captured output instead of terminal sessions",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List runnable code blocks")
    list_parser.add_argument("file", type=Path)

    run_parser = subparsers.add_parser("run", help="Run the code block at a position")
    run_parser.add_argument("file", type=Path)
    position = run_parser.add_mutually_exclusive_group(required=True)
    position.add_argument("--line", type=_line_type, help="1-based line inside the block")
    position.add_argument("--offset", type=_non_negative_int, help="Character offset inside the block")
    run_parser.add_argument("--column", type=_non_negative_int, default=0)

    notebook_parser = subparsers.add_parser("notebook", help="Run blocks interactively by line number")
    notebook_parser.add_argument("file", type=Path)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def _load_document(path: Path) -> Document:
    try:
        return Document.from_file(path, workspace_roots=(Path.cwd(),))
    except OSError as exc:
        raise MarkdownRunnerError(
            f"Cannot read document: {path}",
            code=ExitCode.INVALID_ARGS,
            hint=exc.strerror or "Check the file path.",
        ) from exc


def _resolve_config(namespace: argparse.Namespace) -> AppConfig:
    config = load_config(namespace.config)
    if namespace.no_terminal:
        config.use_terminal = False
    return config


def list_blocks(namespace: argparse.Namespace, config: AppConfig, stdout: TextIO) -> int:
    document = _load_document(namespace.file)
    runner = MarkdownRunner(config, presenter=OutputPresenter(stdout))
    for affordance in runner.affordances(document):
        suffix = f" {affordance.terminal_name}" if affordance.terminal_name else ""
        print(f"{affordance.line + 1}\t{affordance.language}{suffix}", file=stdout)
    return int(ExitCode.SUCCESS)


async def _run_once(runner: MarkdownRunner, namespace: argparse.Namespace) -> RunReport:
    document = _load_document(namespace.file)
    runner.activate()
    try:
        if namespace.offset is not None:
            return await runner.run_block_at_position(document, namespace.offset)
        return await runner.run_block_at_cursor(document, namespace.line - 1, namespace.column)
    finally:
        await runner.deactivate()


def run_block(
    namespace: argparse.Namespace,
    config: AppConfig,
    stdout: TextIO,
    *,
    prompt: Prompt | None = None,
) -> int:
    # A one-shot process cannot keep a terminal session alive between runs.
    config.use_terminal = False
    panel = ResultPanel(stdout, prompt=prompt) if prompt is not None else None
    runner = MarkdownRunner(config, presenter=OutputPresenter(stdout), panel=panel)
    report = asyncio.run(_run_once(runner, namespace))
    if report.failure is not None:
        raise report.failure
    if report.result is not None and not report.result.succeeded:
        raise CommandFailedError(report.result.exit_code)
    return int(ExitCode.SUCCESS)


async def _notebook_loop(runner: MarkdownRunner, path: Path, stdout: TextIO, prompt: Prompt) -> None:
    runner.activate()
    try:
        while True:
            try:
                raw = await asyncio.to_thread(prompt, "block> ")
            except EOFError:
                return
            command = raw.strip().lower()
            if not command:
                continue
            if command in _QUIT_COMMANDS:
                return
            try:
                document = _load_document(path)
                if command in _LIST_COMMANDS:
                    for affordance in runner.affordances(document):
                        print(f"{affordance.line + 1}\t{affordance.title} {affordance.tooltip}", file=stdout)
                    continue
                line = _line_type(command)
                await runner.run_block_at_cursor(document, line - 1)
            except argparse.ArgumentTypeError:
                print(user_facing_error(f"Unknown command '{raw.strip()}'", hint="Enter a line number, list or quit"), file=stdout)
            except MarkdownRunnerError as exc:
                print(user_facing_error(exc.message, hint=exc.hint), file=stdout)
    finally:
        await runner.deactivate()


def run_notebook(
    namespace: argparse.Namespace,
    config: AppConfig,
    stdout: TextIO,
    *,
    prompt: Prompt = input,
    registry: SessionRegistry | None = None,
) -> int:
    def echo(_session: Session, chunk: str) -> None:
        stdout.write(chunk)
        stdout.flush()

    runner = MarkdownRunner(
        config,
        registry=registry or SessionRegistry(shell=config.terminal_shell, output=echo),
        presenter=OutputPresenter(stdout),
        panel=ResultPanel(stdout, prompt=prompt),
    )
    asyncio.run(_notebook_loop(runner, namespace.file, stdout, prompt))
    return int(ExitCode.SUCCESS)


def main(
    argv: Sequence[str] | None = None,
    *,
    stdout: TextIO | None = None,
    prompt: Prompt | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    config = _resolve_config(namespace)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level or config.log_level, log_file=log_path)
    output = stdout or sys.stdout

    try:
        if namespace.command == "list":
            return list_blocks(namespace, config, output)
        if namespace.command == "run":
            interactive = prompt or (input if sys.stdin.isatty() else None)
            return run_block(namespace, config, output, prompt=interactive)
        logger.debug("Starting notebook loop for %s", namespace.file)
        return run_notebook(namespace, config, output, prompt=prompt or input)
    except MarkdownRunnerError as exc:
        logger.error(
            "Handled MarkdownRunnerError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        print(user_facing_error("Unexpected runtime failure", hint=f"Inspect logs: {log_path}"), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
