"""Terminal session subsystem: PTY sessions multiplexed behind one broker."""

from .adapter import CellMetrics, TerminalAdapter, TerminalWidget, fit_grid
from .broker import SessionBroker
from .lifecycle import LifecycleManager
from .messages import (
    Envelope,
    KillRequest,
    ResizeRequest,
    SpawnRequest,
    WriteRequest,
    parse_control_message,
)
from .models import (
    ErrorInfo,
    EventKind,
    ExitInfo,
    SessionStatus,
    SpawnOptions,
    TerminalSize,
)
from .pty_backend import Spawner, SpawnedProcess, build_shell_command, line_terminator, resolve_cwd
from .registry import SessionRegistry
from .router import MessageRouter, Subscription, SubscriptionHub
from .session import Session

__all__ = [
    "build_shell_command",
    "CellMetrics",
    "Envelope",
    "ErrorInfo",
    "EventKind",
    "ExitInfo",
    "fit_grid",
    "KillRequest",
    "LifecycleManager",
    "line_terminator",
    "MessageRouter",
    "parse_control_message",
    "ResizeRequest",
    "resolve_cwd",
    "Session",
    "SessionBroker",
    "SessionRegistry",
    "SessionStatus",
    "SpawnedProcess",
    "Spawner",
    "SpawnOptions",
    "SpawnRequest",
    "Subscription",
    "SubscriptionHub",
    "TerminalAdapter",
    "TerminalSize",
    "TerminalWidget",
    "WriteRequest",
]
