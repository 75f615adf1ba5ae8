"""PTY lifecycle for interactive terminal sessions.

Windows terminals are spawned through pywinpty. POSIX terminals use the
standard library ``pty`` module with a ``subprocess.Popen`` child attached to
the slave side; the adapter exposes the same surface as ``winpty.PtyProcess``
so the backend does not care which one it holds.
"""

from __future__ import annotations

import atexit
import errno
import os
import select
import shutil
import signal
import subprocess
import sys
from collections.abc import Callable
from contextlib import suppress

from mdshellrunner.errors import ExitCode, MarkdownRunnerError, SpawnFailureError


PtySpawn = Callable[[list[str], str | None, dict[str, str] | None], object]


def build_shell_command(shell: str = "", *, windows: bool | None = None) -> list[str]:
    is_windows = sys.platform == "win32" if windows is None else windows
    if is_windows:
        return [shell.strip() or "powershell.exe", "-NoLogo"]
    resolved = shell.strip() or os.environ.get("SHELL", "").strip()
    if not resolved:
        resolved = "/bin/bash" if shutil.which("bash") else "/bin/sh"
    return [resolved, "-i"]


class _PosixPtyProcess:
    def __init__(self, process: subprocess.Popen, master_fd: int, *, poll_interval: float = 0.1) -> None:
        self._process = process
        self._master_fd = master_fd
        self._poll_interval = poll_interval
        self._closed = False

    @property
    def pid(self) -> int:
        return self._process.pid

    def write(self, payload: str) -> int:
        return os.write(self._master_fd, payload.encode("utf-8"))

    def read(self, size: int = 4096) -> bytes:
        """Wait up to one poll interval for output; ``b""`` means nothing arrived yet."""
        if self._closed:
            raise EOFError("PTY closed")
        try:
            ready, _, _ = select.select([self._master_fd], [], [], self._poll_interval)
            if not ready:
                return b""
            data = os.read(self._master_fd, size)
        except OSError as exc:
            # Linux reports EIO on the master once the child side is gone.
            if exc.errno in (errno.EIO, errno.EBADF):
                raise EOFError("PTY closed") from exc
            raise
        if not data:
            raise EOFError("PTY closed")
        return data

    def isalive(self) -> bool:
        return self._process.poll() is None

    def hangup(self) -> None:
        self._signal_group(signal.SIGHUP)

    def terminate(self, timeout: float = 1.0) -> None:
        if not self.isalive():
            return
        self.hangup()
        try:
            self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._signal_group(signal.SIGKILL)
            self._process.wait()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        os.close(self._master_fd)

    def _signal_group(self, signum: int) -> None:
        # The shell leads its own session, so its pid is the process group id.
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(self._process.pid, signum)


def _spawn_with_pty(command: list[str], cwd: str | None, env: dict[str, str] | None) -> object:
    import pty

    master_fd, slave_fd = pty.openpty()
    environment = dict(os.environ)
    environment.update(env or {})
    environment.setdefault("TERM", "xterm-256color")
    try:
        process = subprocess.Popen(
            command,
            cwd=cwd,
            env=environment,
            stdin=slave_fd,
            stdout=slave_fd,
            stderr=slave_fd,
            start_new_session=True,
            close_fds=True,
        )
    except OSError:
        os.close(master_fd)
        raise
    finally:
        os.close(slave_fd)
    return _PosixPtyProcess(process, master_fd)


def _spawn_with_pywinpty(command: list[str], cwd: str | None, env: dict[str, str] | None) -> object:
    try:
        from winpty import PtyProcess
    except ImportError as exc:
        raise SpawnFailureError(
            "pywinpty backend is unavailable.",
            hint="Install the pywinpty dependency on Windows.",
        ) from exc

    kwargs: dict[str, object] = {}
    if cwd:
        kwargs["cwd"] = cwd
    if env:
        kwargs["env"] = env
    return PtyProcess.spawn(subprocess.list2cmdline(command), **kwargs)


def default_spawn() -> PtySpawn:
    if sys.platform == "win32":
        return _spawn_with_pywinpty
    return _spawn_with_pty


class PtyBackend:
    def __init__(self, spawn: PtySpawn | None = None) -> None:
        self._spawn = spawn or default_spawn()
        self._sessions: dict[str, object] = {}
        atexit.register(self.stop_all)

    def start(
        self,
        terminal_id: str,
        *,
        command: list[str],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        if terminal_id in self._sessions:
            raise MarkdownRunnerError(
                f"Terminal already started: {terminal_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Stop the current PTY session before starting a new one.",
            )
        if not command:
            raise MarkdownRunnerError(
                "PTY command cannot be empty.",
                code=ExitCode.VALIDATION_ERROR,
                hint="Provide a shell command for the terminal.",
            )

        try:
            process = self._spawn(list(command), cwd, env)
        except MarkdownRunnerError:
            raise
        except Exception as exc:
            raise SpawnFailureError(
                f"Failed to start terminal shell: {command[0]}",
                hint=str(exc) or "Check the terminal_shell setting.",
            ) from exc

        self._sessions[terminal_id] = process

    def write(self, terminal_id: str, payload: str) -> None:
        process = self._require_session(terminal_id)
        try:
            process.write(payload)
        except Exception as exc:
            raise MarkdownRunnerError(
                f"Failed to write to terminal {terminal_id}.",
                code=ExitCode.RUNTIME_ERROR,
                hint=str(exc) or "Verify terminal process health.",
            ) from exc

    def read(self, terminal_id: str, *, max_bytes: int = 4096) -> str:
        """Read the next output chunk; raises EOFError once the terminal ends."""
        process = self._require_session(terminal_id)
        chunk: object
        try:
            chunk = process.read(max_bytes)
        except EOFError:
            raise
        except Exception as exc:
            raise MarkdownRunnerError(
                f"Failed to read from terminal {terminal_id}.",
                code=ExitCode.RUNTIME_ERROR,
                hint=str(exc) or "Verify PTY stream state.",
            ) from exc

        if chunk is None:
            return ""
        if isinstance(chunk, bytes):
            return chunk.decode("utf-8", errors="replace")
        return str(chunk)

    def hangup(self, terminal_id: str) -> None:
        """Ask the terminal process to exit without closing the PTY under a pending read."""
        process = self._sessions.get(terminal_id)
        if process is None or not _is_alive(process):
            return
        end = getattr(process, "hangup", None) or getattr(process, "terminate", None)
        if end is not None:
            with suppress(Exception):
                end()

    def stop(self, terminal_id: str) -> None:
        process = self._sessions.pop(terminal_id, None)
        if process is None:
            raise MarkdownRunnerError(
                f"Terminal not running: {terminal_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Select an active terminal session.",
            )
        self._close_session(process)

    def discard(self, terminal_id: str) -> None:
        if terminal_id in self._sessions:
            self.stop(terminal_id)

    def stop_all(self) -> None:
        for terminal_id in list(self._sessions):
            self.discard(terminal_id)

    def _require_session(self, terminal_id: str) -> object:
        process = self._sessions.get(terminal_id)
        if process is None:
            raise MarkdownRunnerError(
                f"Terminal not running: {terminal_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Start terminal before PTY I/O operations.",
            )
        return process

    def _close_session(self, process: object) -> None:
        alive = _is_alive(process)
        if alive and hasattr(process, "terminate"):
            with suppress(Exception):
                process.terminate()
        if hasattr(process, "close"):
            with suppress(Exception):
                process.close()


def _is_alive(process: object) -> bool:
    if hasattr(process, "isalive"):
        try:
            return bool(process.isalive())
        except Exception:
            return True
    return True
