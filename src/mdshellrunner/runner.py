"""Captured-output execution of code blocks."""

from __future__ import annotations

import asyncio
import logging as py_logging
import os
import sys
import tempfile
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from mdshellrunner.errors import SpawnFailureError

logger = py_logging.getLogger(__name__)

ProcessSpawn = Callable[..., Awaitable[asyncio.subprocess.Process]]

_SCRIPT_PREFIX = "mdshellrunner"


@dataclass(frozen=True)
class ExecutionResult:
    stdout: str
    exit_code: int | None
    succeeded: bool
    stderr: str = ""

    @property
    def output(self) -> str:
        if self.succeeded:
            return self.stdout
        failure = f"Command failed with exit code {self.exit_code}\n{self.stderr}"
        if self.stdout:
            return f"{self.stdout.rstrip()}\n{failure}"
        return failure


async def _drain(stream: asyncio.StreamReader | None, chunks: list[bytes], chunk_size: int) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            return
        chunks.append(chunk)


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


class ProcessRunner:
    def __init__(
        self,
        *,
        spawn: ProcessSpawn | None = None,
        temp_dir: str | Path | None = None,
        python_interpreter: str = "",
        windows: bool | None = None,
        chunk_size: int = 4096,
    ) -> None:
        self._spawn = spawn or asyncio.create_subprocess_exec
        self.temp_dir = Path(temp_dir) if temp_dir is not None else None
        self.python_interpreter = python_interpreter.strip()
        self.windows = sys.platform == "win32" if windows is None else windows
        self.chunk_size = chunk_size

    def shell_command(self, command: str) -> list[str]:
        if self.windows:
            return ["cmd.exe", "/c", command]
        return ["/bin/sh", "-c", command]

    def interpreter_command(self, script_path: Path) -> list[str]:
        executable = self.python_interpreter or ("python" if self.windows else "python3")
        return [executable, str(script_path)]

    async def run_captured(
        self,
        command: str,
        interpreter: str | None = None,
        working_directory: str | Path | None = None,
    ) -> ExecutionResult:
        if interpreter is None:
            return await self._run(self.shell_command(command), working_directory)

        script_path = self._write_script(command)
        try:
            return await self._run(self.interpreter_command(script_path), working_directory)
        finally:
            self._remove_script(script_path)

    async def _run(self, argv: list[str], working_directory: str | Path | None) -> ExecutionResult:
        cwd = str(working_directory) if working_directory is not None else None
        logger.debug("Spawning %s cwd=%s", argv[0], cwd)
        try:
            process = await self._spawn(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as exc:
            logger.error("Failed to spawn %s: %s", argv[0], exc)
            raise SpawnFailureError(
                f"Failed to start {argv[0]}: {exc.strerror or exc}",
                hint="Check that the executable exists and the working directory is accessible.",
            ) from exc

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        readers = [
            asyncio.create_task(_drain(process.stdout, stdout_chunks, self.chunk_size)),
            asyncio.create_task(_drain(process.stderr, stderr_chunks, self.chunk_size)),
        ]
        exit_code = await process.wait()
        # Exit can be observed before the pipes are drained.
        await asyncio.gather(*readers)

        stdout = _decode(stdout_chunks)
        stderr = _decode(stderr_chunks)
        if exit_code == 0:
            if stderr:
                logger.debug("Discarding %s bytes of stderr from successful run", len(stderr))
            return ExecutionResult(stdout=stdout, exit_code=0, succeeded=True)

        logger.warning("Command failed returncode=%s executable=%s", exit_code, argv[0])
        return ExecutionResult(stdout=stdout, exit_code=exit_code, succeeded=False, stderr=stderr)

    def _write_script(self, code: str) -> Path:
        timestamp = int(time.time() * 1000)
        try:
            fd, raw_path = tempfile.mkstemp(
                prefix=f"{_SCRIPT_PREFIX}-{timestamp}-",
                suffix=".py",
                dir=str(self.temp_dir) if self.temp_dir is not None else None,
            )
        except OSError as exc:
            raise SpawnFailureError(
                "Failed to create temporary script file.",
                hint=str(exc) or "Check the temporary directory permissions.",
            ) from exc

        script_path = Path(raw_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(code)
        except OSError as exc:
            self._remove_script(script_path)
            raise SpawnFailureError(
                "Failed to write temporary script file.",
                hint=str(exc) or "Check the temporary directory free space.",
            ) from exc
        return script_path

    def _remove_script(self, script_path: Path) -> None:
        try:
            script_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete temporary script %s: %s", script_path, exc)
