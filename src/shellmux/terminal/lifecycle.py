"""Output, exit and error handling for spawned sessions.

Each session gets one reader thread. The thread never touches shared state:
it only posts callbacks onto the session's event loop, so chunks arrive in
the order the process produced them and the terminal ``exit``/``error``
always follows the last ``data`` chunk.
"""

from __future__ import annotations

import asyncio
import logging as py_logging
import threading
from collections.abc import Callable

from shellmux.config import DEFAULT_READ_CHUNK_SIZE
from shellmux.logging import log_session_event
from shellmux.terminal.messages import Envelope
from shellmux.terminal.models import ExitInfo, SessionStatus
from shellmux.terminal.pty_backend import KILL_SIGNAL, PtyProcessLike
from shellmux.terminal.registry import SessionRegistry
from shellmux.terminal.session import Session

logger = py_logging.getLogger(__name__)

Publish = Callable[[Envelope], None]


def collect_exit(process: PtyProcessLike) -> ExitInfo:
    """Reap the process and report ``(exit_code, signal)``.

    A signal-terminated process reports exit code 0 plus the signal number.
    """
    status: int | None = None
    try:
        status = process.wait()
    except Exception as exc:
        # ptyprocess refuses to wait on a child that isalive() already reaped.
        logger.debug("Process wait failed pid=%s: %s", getattr(process, "pid", None), exc)
    exit_code = getattr(process, "exitstatus", None)
    if exit_code is None:
        exit_code = status
    signal_status = getattr(process, "signalstatus", None)
    return ExitInfo(exit_code=int(exit_code or 0), signal=signal_status)


class LifecycleManager:
    def __init__(
        self,
        registry: SessionRegistry,
        publish: Publish,
        *,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
    ) -> None:
        self._registry = registry
        self._publish = publish
        self._read_chunk_size = read_chunk_size
        self._threads: dict[int, threading.Thread] = {}

    def attach(self, session: Session) -> None:
        session.transition(SessionStatus.RUNNING)
        self._record(session.id, "running", f"pid={session.pid} cwd={session.cwd}")
        thread = threading.Thread(
            target=self._pump,
            args=(session,),
            name=f"shellmux-pty-{session.id}",
            daemon=True,
        )
        self._threads[session.id] = thread
        thread.start()

    def reader_thread(self, session_id: int) -> threading.Thread | None:
        return self._threads.get(session_id)

    def handle_data(self, session: Session, chunk: bytes) -> None:
        if session.status is not SessionStatus.RUNNING:
            return
        self._publish(Envelope.data(session.id, chunk))

    def handle_exit(self, session: Session, info: ExitInfo) -> None:
        """Final callback posted by the reader thread; always closes the PTY."""
        if not session.transition(SessionStatus.EXITED):
            session.release()
            return
        self._record(session.id, "exit", f"code={info.exit_code} signal={info.signal}")
        envelope = Envelope.exit(session.id, info)
        self._publish(envelope)
        self._forget(session)
        session.release()
        session.resolve(envelope)

    def handle_error(self, session: Session, message: str) -> None:
        if not session.transition(SessionStatus.ERRORED):
            return
        self._record(session.id, "error", message)
        envelope = Envelope.error(session.id, message)
        self._publish(envelope)
        try:
            session.process.kill(KILL_SIGNAL)
        except Exception as exc:
            logger.error("Error trying to kill session id=%s after error: %s", session.id, exc)
        self._forget(session)
        session.resolve(envelope)

    def kill(self, session: Session) -> asyncio.Future[Envelope]:
        self._record(session.id, "kill", "Kill signal requested.")
        return session.terminate()

    def teardown_all(self) -> list[int]:
        """Kill every registered session and clear the registry without waiting for exits."""
        session_ids = self._registry.list_ids()
        if not session_ids:
            logger.debug("No sessions to tear down")
            return []
        logger.info("Tearing down %s session(s)", len(session_ids))
        for session_id in session_ids:
            session = self._registry.get(session_id)
            if session is not None:
                self.kill(session)
        self._registry.clear()
        return session_ids

    def _forget(self, session: Session) -> None:
        if self._registry.get(session.id) is session:
            self._registry.remove(session.id)
        self._threads.pop(session.id, None)

    def _pump(self, session: Session) -> None:
        process = session.process
        failure: str | None = None
        while True:
            try:
                chunk = process.read(self._read_chunk_size)
            except EOFError:
                break
            except OSError as exc:
                failure = f"PTY read failed: {exc}"
                break
            if chunk and not self._post(session, self.handle_data, session, bytes(chunk)):
                collect_exit(process)
                session.release()
                return

        session.draining = True
        if failure is not None:
            self._post(session, self.handle_error, session, failure)
        info = collect_exit(process)
        # The descriptor is closed on the loop, after the exit is published.
        if not self._post(session, self.handle_exit, session, info):
            session.release()

    def _post(self, session: Session, callback: Callable[..., None], *args: object) -> bool:
        try:
            session.loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # The host loop is gone (application shutdown); nobody can receive events.
            logger.debug("Event loop closed; dropping events for session id=%s", session.id)
            return False
        return True

    def _record(self, session_id: int, step: str, message: str) -> None:
        log_session_event(logger, session_id, step, message)
