"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import sys
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import BinaryIO

from .config import AppConfig, load_config
from .errors import ExitCode, ShellMuxError, user_facing_error
from .logging import configure_logging, default_log_path, normalize_level
from .terminal import CellMetrics, EventKind, ExitInfo, SessionBroker, TerminalAdapter, TerminalSize
from .terminal.messages import Envelope
from .widgets import StreamWidget

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_STDIN_CHUNK_SIZE = 1024

SessionRunner = Callable[[argparse.Namespace, AppConfig], int]


def _dimension_type(value: str) -> int:
    try:
        count = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("terminal dimensions must be integers") from exc
    if count < 1:
        raise argparse.ArgumentTypeError("terminal dimensions must be positive")
    return count


def _log_level_type(value: str) -> str:
    normalized = normalize_level(value)
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shellmux",
        description="Run a PTY shell session headlessly through the session broker.",
    )
    parser.add_argument("--cwd", default=None, help="Working directory (falls back to home)")
    parser.add_argument("--command", default=None, help="Command injected once after the shell starts")
    parser.add_argument("--cols", type=_dimension_type, default=None)
    parser.add_argument("--rows", type=_dimension_type, default=None)
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def exit_status(envelope: Envelope | None) -> int:
    if envelope is None or envelope.kind is EventKind.ERROR:
        return int(ExitCode.RUNTIME_ERROR)
    info = envelope.payload
    if not isinstance(info, ExitInfo):
        return int(ExitCode.RUNTIME_ERROR)
    if info.signal:
        return 128 + info.signal
    return int(info.exit_code or 0)


def _start_stdin_pump(
    loop: asyncio.AbstractEventLoop,
    adapter: TerminalAdapter,
    stream: BinaryIO,
) -> threading.Thread:
    def pump() -> None:
        while True:
            try:
                chunk = stream.read1(_STDIN_CHUNK_SIZE) if hasattr(stream, "read1") else stream.read(_STDIN_CHUNK_SIZE)
            except (OSError, ValueError):
                return
            if not chunk:
                return
            try:
                loop.call_soon_threadsafe(adapter.handle_input, chunk)
            except RuntimeError:
                return

    thread = threading.Thread(target=pump, name="shellmux-stdin", daemon=True)
    thread.start()
    return thread


async def _run_session(
    namespace: argparse.Namespace,
    config: AppConfig,
    *,
    stdout: BinaryIO,
    stdin: BinaryIO | None,
) -> int:
    broker = SessionBroker(config=config)
    size = None
    if namespace.cols or namespace.rows:
        size = TerminalSize.clamp(
            namespace.cols,
            namespace.rows,
            default_cols=config.default_cols,
            default_rows=config.default_rows,
        )
    metrics = CellMetrics(width=config.cell_width, height=config.cell_height)
    widget = StreamWidget(stdout, size=size, metrics=metrics)
    adapter = TerminalAdapter(
        broker,
        widget,
        cwd=namespace.cwd,
        initial_command=namespace.command,
        cell_metrics=metrics,
    )
    try:
        session_id = adapter.activate()
        session = broker.get(session_id) if session_id is not None else None
        if session is None:
            return int(ExitCode.SPAWN_ERROR)
        if stdin is not None:
            _start_stdin_pump(asyncio.get_running_loop(), adapter, stdin)
        return exit_status(await session.closed)
    finally:
        adapter.deactivate()
        broker.close()


def run_session(namespace: argparse.Namespace, config: AppConfig) -> int:
    stdin = None if sys.stdin is None else sys.stdin.buffer
    return asyncio.run(_run_session(namespace, config, stdout=sys.stdout.buffer, stdin=stdin))


def main(
    argv: Sequence[str] | None = None,
    *,
    session_runner: SessionRunner | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    config = load_config(namespace.config)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    level = namespace.log_level or config.log_level
    logger = configure_logging(level=level, log_file=log_path)

    runner = session_runner or run_session
    try:
        logger.debug("Starting headless session cwd=%s command=%r", namespace.cwd, namespace.command)
        return runner(namespace, config)
    except ShellMuxError as exc:
        logger.error(
            "Handled ShellMuxError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=normalize_level(level) == "DEBUG",
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
