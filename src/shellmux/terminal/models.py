"""Terminal session domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from typing_extensions import NotRequired, TypedDict

from shellmux.config import DEFAULT_COLS, DEFAULT_ROWS


class SessionStatus(str, Enum):
    SPAWNING = "spawning"
    RUNNING = "running"
    EXITED = "exited"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.EXITED, SessionStatus.ERRORED)


_ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SPAWNING: frozenset({SessionStatus.RUNNING, SessionStatus.ERRORED}),
    SessionStatus.RUNNING: frozenset({SessionStatus.EXITED, SessionStatus.ERRORED}),
    SessionStatus.EXITED: frozenset(),
    SessionStatus.ERRORED: frozenset(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


class EventKind(str, Enum):
    DATA = "data"
    EXIT = "exit"
    ERROR = "error"


ALL_EVENT_KINDS: frozenset[EventKind] = frozenset(EventKind)


@dataclass(frozen=True)
class TerminalSize:
    cols: int
    rows: int

    @classmethod
    def clamp(
        cls,
        cols: int | None,
        rows: int | None,
        *,
        default_cols: int = DEFAULT_COLS,
        default_rows: int = DEFAULT_ROWS,
    ) -> TerminalSize:
        """Replace missing or non-positive dimensions with defaults, never below 1x1."""
        resolved_cols = cols if cols and cols > 0 else default_cols
        resolved_rows = rows if rows and rows > 0 else default_rows
        return cls(cols=max(1, int(resolved_cols)), rows=max(1, int(resolved_rows)))


@dataclass(frozen=True)
class SpawnOptions:
    cols: int | None = None
    rows: int | None = None
    cwd: str | None = None


class ExitPayload(TypedDict):
    exitCode: int | None
    signal: NotRequired[int]


class ErrorPayload(TypedDict):
    message: str


@dataclass(frozen=True)
class ExitInfo:
    exit_code: int | None
    signal: int | None = None

    def to_wire(self) -> ExitPayload:
        payload = ExitPayload(exitCode=self.exit_code)
        if self.signal is not None:
            payload["signal"] = self.signal
        return payload


@dataclass(frozen=True)
class ErrorInfo:
    message: str

    def to_wire(self) -> ErrorPayload:
        return ErrorPayload(message=self.message)
