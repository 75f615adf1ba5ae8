"""Session-affinity registry for persistent terminal sessions."""

from __future__ import annotations

import asyncio
import logging as py_logging
import re
import sys
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from mdshellrunner.errors import ExitCode, MarkdownRunnerError
from mdshellrunner.logging import log_session_event
from mdshellrunner.terminal.models import Session, SessionKey, SessionState
from mdshellrunner.terminal.pty_backend import PtyBackend, build_shell_command

logger = py_logging.getLogger(__name__)

# Leading space keeps the setup line itself out of history under ignorespace.
HISTORY_SUPPRESSION_COMMAND = (
    " set +H 2>/dev/null; setopt NO_BANG_HIST 2>/dev/null; export HISTCONTROL=ignoreboth"
)
# A bang followed by a blank, "=" or "(" never starts a history event.
_HISTORY_TRIGGER_RE = re.compile(r"(?m)^([ \t]*)!(?=[^\s=(])")
EVENT_HISTORY_LIMIT = 200

OutputSink = Callable[[Session, str], None]


@dataclass(frozen=True)
class SessionEvent:
    key: SessionKey
    terminal_id: str
    step: str
    message: str


def escape_history_expansion(code: str) -> str:
    return _HISTORY_TRIGGER_RE.sub(r"\1\\!", code)


def _log_output(session: Session, chunk: str) -> None:
    logger.debug("terminal-output terminal=%s bytes=%s", session.terminal_id, len(chunk))


class SessionRegistry:
    """Maps session keys to live terminal sessions.

    Owned by the application object and torn down with it. Entries are
    inserted by :meth:`acquire` and removed by :meth:`release`. Each session
    has an output pump; it calls :meth:`release` when the terminal process
    ends and is the only place a PTY gets closed while it runs.
    """

    def __init__(
        self,
        *,
        backend: PtyBackend | None = None,
        shell: str = "",
        output: OutputSink | None = None,
        windows: bool | None = None,
        event_limit: int = EVENT_HISTORY_LIMIT,
    ) -> None:
        self._backend = backend or PtyBackend()
        self._windows = sys.platform == "win32" if windows is None else windows
        self._command = build_shell_command(shell, windows=self._windows)
        self._output = output or _log_output
        self._sessions: dict[SessionKey, Session] = {}
        self._pumps: dict[str, asyncio.Task[None]] = {}
        self._events: deque[SessionEvent] = deque(maxlen=event_limit)
        self._next_index = 1
        self._lock = asyncio.Lock()

    @property
    def line_ending(self) -> str:
        return "\r\n" if self._windows else "\n"

    def get(self, key: SessionKey) -> Session | None:
        return self._sessions.get(key)

    def list_sessions(self) -> list[Session]:
        return sorted(self._sessions.values(), key=lambda session: session.index)

    def list_events(self) -> list[SessionEvent]:
        return list(self._events)

    async def acquire(self, key: SessionKey, working_directory: str | Path) -> Session:
        async with self._lock:
            existing = self._sessions.get(key)
            if existing is not None:
                return existing

            session = Session(key=key, index=self._next_index, working_directory=Path(working_directory))
            self._next_index += 1
            try:
                await asyncio.to_thread(
                    self._backend.start,
                    session.terminal_id,
                    command=self._command,
                    cwd=str(session.working_directory),
                )
            except MarkdownRunnerError as exc:
                session.state = SessionState.CLOSED
                self._record(session, "create-failed", exc.message)
                raise

            self._sessions[key] = session
            self._record(
                session,
                "create",
                f"Created '{session.display_name}' in {session.working_directory}.",
            )
            if not self._windows:
                try:
                    await self._write(session, HISTORY_SUPPRESSION_COMMAND + self.line_ending)
                except MarkdownRunnerError:
                    self.release(session)
                    raise
            self._pumps[session.terminal_id] = asyncio.create_task(self._pump(session))
            return session

    async def send(self, session: Session, code: str) -> None:
        if self._sessions.get(session.key) is not session:
            raise MarkdownRunnerError(
                f"Terminal session is closed: {session.display_name}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Run the block again to open a new session.",
            )
        payload = code if self._windows else escape_history_expansion(code)
        await self._write(session, payload + self.line_ending)
        self._record(session, "send", f"Sent {len(code.splitlines())} line(s).")

    def release(self, session: Session) -> bool:
        if self._sessions.get(session.key) is not session:
            return False
        del self._sessions[session.key]
        session.state = SessionState.CLOSED
        pump = self._pumps.get(session.terminal_id)
        if pump is None or pump.done():
            self._backend.discard(session.terminal_id)
        else:
            # The pump closes the PTY once its pending read returns.
            self._backend.hangup(session.terminal_id)
        self._record(session, "release", f"Closed '{session.display_name}'.")
        return True

    def close(self, key: SessionKey) -> bool:
        session = self._sessions.get(key)
        if session is None:
            return False
        return self.release(session)

    async def dispose(self) -> None:
        for session in self.list_sessions():
            self.release(session)
        pumps = list(self._pumps.values())
        if pumps:
            await asyncio.gather(*pumps, return_exceptions=True)
        self._backend.stop_all()

    async def _write(self, session: Session, payload: str) -> None:
        await asyncio.to_thread(self._backend.write, session.terminal_id, payload)

    async def _pump(self, session: Session) -> None:
        try:
            while self._sessions.get(session.key) is session:
                try:
                    chunk = await asyncio.to_thread(self._backend.read, session.terminal_id)
                except EOFError:
                    break
                except MarkdownRunnerError as exc:
                    if self._sessions.get(session.key) is session:
                        logger.warning("Terminal output failed terminal=%s: %s", session.terminal_id, exc.message)
                    break
                if chunk:
                    self._output(session, chunk)
        finally:
            self._pumps.pop(session.terminal_id, None)
            self.release(session)
            self._backend.discard(session.terminal_id)

    def _record(self, session: Session, step: str, message: str) -> None:
        self._events.append(SessionEvent(key=session.key, terminal_id=session.terminal_id, step=step, message=message))
        log_session_event(logger, key=session.key.label, step=step, message=message)
