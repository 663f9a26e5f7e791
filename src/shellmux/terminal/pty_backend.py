"""PTY process creation for terminal sessions.

POSIX hosts spawn through ``ptyprocess``; Windows hosts spawn through
``pywinpty``, wrapped so that both backends expose the same bytes interface.
"""

from __future__ import annotations

import logging as py_logging
import os
import signal
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from shellmux.config import AppConfig
from shellmux.errors import ExitCode, SpawnError
from shellmux.terminal.models import SpawnOptions, TerminalSize

logger = py_logging.getLogger(__name__)

KILL_SIGNAL = int(getattr(signal, "SIGHUP", signal.SIGTERM))


class PtyProcessLike(Protocol):
    pid: int

    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> object: ...

    def setwinsize(self, rows: int, cols: int) -> None: ...

    def kill(self, sig: int) -> None: ...

    def wait(self) -> int | None: ...

    def isalive(self) -> bool: ...

    def close(self) -> None: ...


PtySpawn = Callable[[list[str], str, dict[str, str], TerminalSize], PtyProcessLike]


def is_windows(platform: str) -> bool:
    return platform.startswith("win")


def build_shell_command(platform: str = sys.platform) -> list[str]:
    if is_windows(platform):
        return ["powershell.exe"]
    return ["bash"]


def line_terminator(platform: str = sys.platform) -> str:
    return "\r\n" if is_windows(platform) else "\n"


def resolve_cwd(cwd: str | None, *, home: str | None = None) -> tuple[str, bool]:
    """Return ``(directory, substituted)``; missing or invalid paths fall back to home."""
    fallback = home or str(Path.home())
    if not cwd or not cwd.strip():
        return fallback, False
    try:
        candidate = Path(cwd).expanduser()
        is_dir = candidate.is_dir()
    except (OSError, RuntimeError, ValueError):
        is_dir = False
    if not is_dir:
        return fallback, True
    return str(candidate), False


def _spawn_with_ptyprocess(
    command: list[str], cwd: str, env: dict[str, str], size: TerminalSize
) -> PtyProcessLike:
    try:
        from ptyprocess import PtyProcess
    except Exception as exc:
        raise SpawnError(
            "ptyprocess backend is unavailable.",
            code=ExitCode.UNSUPPORTED_PLATFORM,
            hint="Install shellmux on a POSIX host with ptyprocess available.",
        ) from exc
    return PtyProcess.spawn(command, cwd=cwd, env=env, dimensions=(size.rows, size.cols))


class _TextPtyProcess:
    """Bytes facade over pywinpty's text-mode process."""

    def __init__(self, process: object) -> None:
        self._process = process

    @property
    def pid(self) -> int:
        return int(getattr(self._process, "pid", 0) or 0)

    @property
    def exitstatus(self) -> int | None:
        return getattr(self._process, "exitstatus", None)

    @property
    def signalstatus(self) -> int | None:
        return None

    def read(self, size: int) -> bytes:
        chunk = self._process.read(size)
        if isinstance(chunk, str):
            return chunk.encode("utf-8", errors="replace")
        return bytes(chunk or b"")

    def write(self, data: bytes) -> object:
        return self._process.write(data.decode("utf-8", errors="replace"))

    def setwinsize(self, rows: int, cols: int) -> None:
        self._process.setwinsize(rows, cols)

    def kill(self, sig: int) -> None:
        self._process.kill(sig)

    def wait(self) -> int | None:
        return self._process.wait()

    def isalive(self) -> bool:
        return bool(self._process.isalive())

    def close(self) -> None:
        self._process.close()


def _spawn_with_pywinpty(
    command: list[str], cwd: str, env: dict[str, str], size: TerminalSize
) -> PtyProcessLike:
    try:
        from winpty import PtyProcess
    except Exception as exc:
        raise SpawnError(
            "pywinpty backend is unavailable.",
            code=ExitCode.UNSUPPORTED_PLATFORM,
            hint="Install shellmux on Windows with pywinpty available.",
        ) from exc
    process = PtyProcess.spawn(command, cwd=cwd, env=env, dimensions=(size.rows, size.cols))
    return _TextPtyProcess(process)


@dataclass(frozen=True)
class SpawnedProcess:
    process: PtyProcessLike
    command: tuple[str, ...]
    cwd: str
    size: TerminalSize
    cwd_substituted: bool = False


class Spawner:
    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        spawn: PtySpawn | None = None,
        platform: str = sys.platform,
        home: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.platform = platform
        self._spawn = spawn or (_spawn_with_pywinpty if is_windows(platform) else _spawn_with_ptyprocess)
        self._home = home
        self._environ = environ

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ if self._environ is None else self._environ)
        env["TERM"] = self.config.term_name
        return env

    def spawn(self, options: SpawnOptions) -> SpawnedProcess:
        size = TerminalSize.clamp(
            options.cols,
            options.rows,
            default_cols=self.config.default_cols,
            default_rows=self.config.default_rows,
        )
        cwd, substituted = resolve_cwd(options.cwd, home=self._home)
        if substituted and self.config.warn_on_cwd_fallback:
            logger.warning("Working directory %r not found; using %s", options.cwd, cwd)

        command = build_shell_command(self.platform)
        logger.debug("Spawning PTY command=%s cwd=%s cols=%s rows=%s", command, cwd, size.cols, size.rows)
        try:
            process = self._spawn(list(command), cwd, self.build_env(), size)
        except SpawnError:
            raise
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            raise SpawnError(
                f"Failed to spawn shell '{command[0]}' in '{cwd}': {reason}",
                hint="Check that the shell is installed and executable.",
            ) from exc

        return SpawnedProcess(
            process=process,
            command=tuple(command),
            cwd=cwd,
            size=size,
            cwd_substituted=substituted,
        )
