"""Public session broker API composed from registry, spawner, lifecycle and router."""

from __future__ import annotations

import asyncio
import atexit
import logging as py_logging
from collections.abc import Iterable, Mapping

from shellmux.config import AppConfig
from shellmux.errors import ExitCode, ShellMuxError, SpawnError
from shellmux.terminal.lifecycle import LifecycleManager
from shellmux.terminal.messages import (
    Envelope,
    KillRequest,
    ResizeRequest,
    SpawnRequest,
    WriteRequest,
    parse_control_message,
)
from shellmux.terminal.models import ALL_EVENT_KINDS, EventKind, SpawnOptions, TerminalSize
from shellmux.terminal.pty_backend import Spawner
from shellmux.terminal.registry import SessionRegistry
from shellmux.terminal.router import Listener, MessageRouter, Subscription, SubscriptionHub
from shellmux.terminal.session import Session

logger = py_logging.getLogger(__name__)


class SessionBroker:
    """Creates, multiplexes and tears down PTY shell sessions.

    All methods must be called from the thread running the broker's event
    loop. The loop is taken from the first ``spawn`` call unless passed in.
    Teardown is registered with ``atexit`` and also runs from ``close()``;
    both paths are idempotent.
    """

    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        spawner: Spawner | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        register_atexit: bool = True,
    ) -> None:
        self.config = config or AppConfig()
        self.registry = SessionRegistry()
        self._spawner = spawner or Spawner(config=self.config)
        self._loop = loop
        self._hub = SubscriptionHub()
        self._router = MessageRouter(
            self.registry,
            self._hub,
            default_size=TerminalSize(self.config.default_cols, self.config.default_rows),
            on_failure=self._handle_failure,
        )
        self._lifecycle = LifecycleManager(
            self.registry,
            self._router.publish,
            read_chunk_size=self.config.read_chunk_size,
        )
        self._closed = False
        self._atexit_registered = register_atexit
        if register_atexit:
            atexit.register(self.teardown_all)

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, cols: int | None = None, rows: int | None = None, cwd: str | None = None) -> int:
        """Start a shell and return its session id; raises ``SpawnError``."""
        return self._spawn_session(SpawnOptions(cols=cols, rows=rows, cwd=cwd))

    def _spawn_session(self, options: SpawnOptions) -> int:
        if self._closed:
            raise SpawnError("Session broker is closed.", hint="Create a new broker instance.")
        loop = self._resolve_loop()
        spawned = self._spawner.spawn(options)

        session_id = self.registry.allocate()
        session = Session(session_id, spawned, loop=loop)
        self.registry.insert(session_id, session)
        logger.info(
            "PTY process spawned pid=%s mapped to session id=%s (%sx%s, cwd=%s)",
            session.pid,
            session_id,
            session.size.cols,
            session.size.rows,
            session.cwd,
        )
        self._lifecycle.attach(session)
        return session_id

    def write(self, session_id: int, data: bytes | str) -> None:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        self._router.dispatch(WriteRequest(id=session_id, data=payload))

    def resize(self, session_id: int, cols: int, rows: int) -> None:
        self._router.dispatch(ResizeRequest(id=session_id, cols=cols, rows=rows))

    def kill(self, session_id: int) -> asyncio.Future[Envelope] | None:
        """Signal the session; the returned future resolves with its exit/error envelope.

        Returns ``None`` for ids that are unknown or already removed.
        """
        return self._router.dispatch(KillRequest(id=session_id))

    def teardown_all(self) -> None:
        self._lifecycle.teardown_all()

    def subscribe(
        self,
        session_id: int,
        listener: Listener,
        kinds: Iterable[EventKind] = ALL_EVENT_KINDS,
    ) -> Subscription:
        return self._router.subscribe(session_id, listener, kinds)

    def subscribe_all(self, listener: Listener, kinds: Iterable[EventKind] = ALL_EVENT_KINDS) -> Subscription:
        return self._router.subscribe_all(listener, kinds)

    def handle(self, message: Mapping[str, object]) -> dict[str, object] | None:
        """Wire entry point: spawn answers ``{id}``/``{error}``, other ops answer nothing."""
        try:
            parsed = parse_control_message(message)
        except ShellMuxError as exc:
            logger.warning("Rejected control message: %s", exc)
            return {"error": exc.message}
        if isinstance(parsed, SpawnRequest):
            try:
                session_id = self._spawn_session(parsed.to_options())
            except SpawnError as exc:
                logger.error("Failed to spawn PTY process: %s", exc)
                return {"error": exc.message}
            return {"id": session_id}
        self._router.dispatch(parsed)
        return None

    def get(self, session_id: int) -> Session | None:
        return self.registry.get(session_id)

    def list_ids(self) -> list[int]:
        return self.registry.list_ids()

    async def wait_closed(self, session_id: int) -> Envelope | None:
        session = self.registry.get(session_id)
        if session is None:
            return None
        return await asyncio.shield(session.closed)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.teardown_all()
        if self._atexit_registered:
            atexit.unregister(self.teardown_all)
            self._atexit_registered = False

    def _handle_failure(self, session: Session, message: str) -> None:
        self._lifecycle.handle_error(session, message)

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError as exc:
                raise ShellMuxError(
                    "Session broker needs a running event loop.",
                    code=ExitCode.RUNTIME_ERROR,
                    hint="Call spawn() from a coroutine or pass loop= explicitly.",
                ) from exc
        if self._loop.is_closed():
            raise ShellMuxError(
                "Session broker event loop is closed.",
                code=ExitCode.RUNTIME_ERROR,
                hint="Create a new broker on the active event loop.",
            )
        return self._loop
