"""Consumer-side binding of one terminal widget to one broker session."""

from __future__ import annotations

import logging as py_logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from shellmux.config import DEFAULT_CELL_HEIGHT, DEFAULT_CELL_WIDTH
from shellmux.errors import SpawnError
from shellmux.terminal.broker import SessionBroker
from shellmux.terminal.messages import Envelope
from shellmux.terminal.models import ErrorInfo, EventKind, ExitInfo, TerminalSize
from shellmux.terminal.pty_backend import line_terminator
from shellmux.terminal.router import Subscription

logger = py_logging.getLogger(__name__)


class TerminalWidget(Protocol):
    def render(self, data: bytes) -> None: ...

    def pixel_size(self) -> tuple[int, int]: ...

    def dispose(self) -> None: ...


@dataclass(frozen=True)
class CellMetrics:
    width: int = DEFAULT_CELL_WIDTH
    height: int = DEFAULT_CELL_HEIGHT


def fit_grid(width_px: int, height_px: int, metrics: CellMetrics | None = None) -> TerminalSize | None:
    """Columns/rows that fit the container; ``None`` while it has no measurable area."""
    cell = metrics or CellMetrics()
    if width_px <= 0 or height_px <= 0:
        return None
    return TerminalSize(cols=max(1, width_px // cell.width), rows=max(1, height_px // cell.height))


def exit_notice(info: ExitInfo) -> str:
    if info.signal is not None:
        return f"\r\n\r\n[Process exited with code {info.exit_code} (signal {info.signal})]\r\n"
    return f"\r\n\r\n[Process exited with code {info.exit_code}]\r\n"


class TerminalAdapter:
    """Owns exactly one session's lifetime from the widget side.

    ``activate`` spawns and binds, ``deactivate`` unsubscribes, kills and
    disposes. The initial command is written at most once per adapter,
    however many times ``activate`` is called.
    """

    def __init__(
        self,
        broker: SessionBroker,
        widget: TerminalWidget,
        *,
        cwd: str | None = None,
        initial_command: str | None = None,
        cell_metrics: CellMetrics | None = None,
        platform: str = sys.platform,
        on_bound: Callable[[int | None], None] | None = None,
        on_command_sent: Callable[[], None] | None = None,
    ) -> None:
        self.broker = broker
        self.widget = widget
        self.cwd = cwd
        self.pending_initial_command = initial_command or None
        self.initial_command_sent = False
        self.bound_session_id: int | None = None
        self.cell_metrics = cell_metrics or CellMetrics()
        self.platform = platform
        self.on_bound = on_bound
        self.on_command_sent = on_command_sent
        self._subscription: Subscription | None = None
        self._grid: TerminalSize | None = None
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def activate(self) -> int | None:
        if self._disposed:
            logger.warning("Ignoring activate() on a disposed terminal adapter")
            return None
        if self.bound_session_id is not None:
            return self.bound_session_id

        grid = fit_grid(*self.widget.pixel_size(), self.cell_metrics)
        try:
            session_id = self.broker.spawn(
                cols=grid.cols if grid else None,
                rows=grid.rows if grid else None,
                cwd=self.cwd,
            )
        except SpawnError as exc:
            logger.error("Failed to set up terminal: %s", exc)
            self.widget.render(f"\r\nError initializing terminal: {exc.message}\r\n".encode())
            self._notify_bound(None)
            return None

        # Subscribe before yielding to the loop so no early output is missed.
        self.bound_session_id = session_id
        self._subscription = self.broker.subscribe(session_id, self._on_event)
        session = self.broker.get(session_id)
        self._grid = session.size if session is not None else grid
        self._notify_bound(session_id)
        self._send_initial_command(session_id)
        return session_id

    def handle_input(self, data: bytes | str) -> None:
        if self.bound_session_id is None:
            logger.debug("Dropping terminal input; no session bound")
            return
        self.broker.write(self.bound_session_id, data)

    def handle_container_resize(self, width_px: int, height_px: int) -> None:
        grid = fit_grid(width_px, height_px, self.cell_metrics)
        if grid is None or self.bound_session_id is None or grid == self._grid:
            return
        self._grid = grid
        self.broker.resize(self.bound_session_id, grid.cols, grid.rows)

    def deactivate(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._release_subscription()
        if self.bound_session_id is not None:
            session_id, self.bound_session_id = self.bound_session_id, None
            logger.debug("Tearing down terminal; killing session id=%s", session_id)
            self.broker.kill(session_id)
            self._notify_bound(None)
        self.widget.dispose()

    def _send_initial_command(self, session_id: int) -> None:
        if not self.pending_initial_command or self.initial_command_sent:
            return
        self.initial_command_sent = True
        command = self.pending_initial_command.rstrip("\r\n")
        logger.info("Sending initial command to session id=%s: %s", session_id, command)
        self.broker.write(session_id, command + line_terminator(self.platform))
        if self.on_command_sent:
            self.on_command_sent()

    def _on_event(self, envelope: Envelope) -> None:
        if envelope.session_id != self.bound_session_id:
            return
        if envelope.kind is EventKind.DATA and isinstance(envelope.payload, bytes):
            self.widget.render(envelope.payload)
        elif envelope.kind is EventKind.EXIT and isinstance(envelope.payload, ExitInfo):
            self.widget.render(exit_notice(envelope.payload).encode())
            self._unbind()
        elif envelope.kind is EventKind.ERROR and isinstance(envelope.payload, ErrorInfo):
            self.widget.render(f"\r\n[Terminal error: {envelope.payload.message}]\r\n".encode())
            self._unbind()

    def _unbind(self) -> None:
        self.bound_session_id = None
        self._release_subscription()
        self._notify_bound(None)

    def _release_subscription(self) -> None:
        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None

    def _notify_bound(self, session_id: int | None) -> None:
        if self.on_bound:
            self.on_bound(session_id)
