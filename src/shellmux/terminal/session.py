"""One live PTY-backed shell process and its transport state."""

from __future__ import annotations

import asyncio
import logging as py_logging
from contextlib import suppress
from typing import TYPE_CHECKING

from shellmux.terminal.models import SessionStatus, TerminalSize, can_transition
from shellmux.terminal.pty_backend import KILL_SIGNAL, PtyProcessLike, SpawnedProcess

if TYPE_CHECKING:
    from shellmux.terminal.messages import Envelope

logger = py_logging.getLogger(__name__)


class Session:
    """Exclusive owner of a spawned PTY process.

    ``closed`` resolves exactly once with the terminal ``exit`` or ``error``
    envelope, which makes kill confirmation awaitable.
    """

    def __init__(self, session_id: int, spawned: SpawnedProcess, *, loop: asyncio.AbstractEventLoop) -> None:
        self.id = session_id
        self.process: PtyProcessLike = spawned.process
        self.command = spawned.command
        self.cwd = spawned.cwd
        self.cwd_substituted = spawned.cwd_substituted
        self.size: TerminalSize = spawned.size
        self.status = SessionStatus.SPAWNING
        self.kill_requested = False
        # Set by the reader thread once the PTY reported EOF.
        self.draining = False
        self.loop = loop
        self.closed: asyncio.Future[Envelope] = loop.create_future()

    def __repr__(self) -> str:
        return f"Session(id={self.id}, pid={self.pid}, status={self.status.value}, cwd={self.cwd!r})"

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    def transition(self, target: SessionStatus) -> bool:
        if not can_transition(self.status, target):
            logger.debug(
                "Ignoring session transition id=%s from=%s to=%s",
                self.id,
                self.status.value,
                target.value,
            )
            return False
        self.status = target
        return True

    def write(self, data: bytes) -> None:
        self.process.write(data)

    def resize(self, size: TerminalSize) -> None:
        # Recorded first so the size reflects the request even if the ioctl fails.
        self.size = size
        self.process.setwinsize(size.rows, size.cols)

    def terminate(self, sig: int = KILL_SIGNAL) -> asyncio.Future[Envelope]:
        """Request termination; the ``closed`` future confirms it."""
        if self.status.is_terminal:
            return self.closed
        self.kill_requested = True
        try:
            self.process.kill(sig)
        except ProcessLookupError:
            logger.debug("Kill skipped; process already gone id=%s pid=%s", self.id, self.pid)
        except Exception as exc:
            logger.error("Error sending kill signal to session id=%s: %s", self.id, exc)
        return self.closed

    def resolve(self, envelope: Envelope) -> None:
        if not self.closed.done():
            self.closed.set_result(envelope)

    def release(self) -> None:
        """Close the PTY descriptor; repeated calls are harmless."""
        with suppress(Exception):
            self.process.close()
