"""Authoritative map of live session ids to session handles."""

from __future__ import annotations

from typing import TYPE_CHECKING

from shellmux.errors import ExitCode, ShellMuxError

if TYPE_CHECKING:
    from shellmux.terminal.session import Session


class SessionRegistry:
    """Pure bookkeeping for one broker.

    Not thread-safe: every call must come from the broker's event loop thread.
    """

    def __init__(self) -> None:
        self._last_id = 0
        self._sessions: dict[int, Session] = {}

    def allocate(self) -> int:
        self._last_id += 1
        return self._last_id

    def insert(self, session_id: int, session: Session) -> None:
        if session_id < 1 or session_id > self._last_id:
            raise ShellMuxError(
                f"Session id was never allocated: {session_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Call allocate() before inserting a session.",
            )
        if session_id in self._sessions:
            raise ShellMuxError(
                f"Session id already registered: {session_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Session ids are never reused.",
            )
        self._sessions[session_id] = session

    def get(self, session_id: int) -> Session | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: int) -> Session | None:
        return self._sessions.pop(session_id, None)

    def list_ids(self) -> list[int]:
        return sorted(self._sessions)

    def clear(self) -> list[Session]:
        removed = [self._sessions[key] for key in sorted(self._sessions)]
        self._sessions.clear()
        return removed

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
