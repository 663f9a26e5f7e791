"""Headless terminal widget that renders session bytes to a binary stream."""

from __future__ import annotations

import shutil
from typing import BinaryIO

from shellmux.terminal.adapter import CellMetrics
from shellmux.terminal.models import TerminalSize


class StreamWidget:
    def __init__(
        self,
        stream: BinaryIO,
        *,
        size: TerminalSize | None = None,
        metrics: CellMetrics | None = None,
    ) -> None:
        self._stream = stream
        self._size = size
        self.metrics = metrics or CellMetrics()
        self.disposed = False

    def grid(self) -> TerminalSize:
        if self._size is not None:
            return self._size
        columns, lines = shutil.get_terminal_size((80, 30))
        return TerminalSize.clamp(columns, lines)

    def pixel_size(self) -> tuple[int, int]:
        grid = self.grid()
        return grid.cols * self.metrics.width, grid.rows * self.metrics.height

    def render(self, data: bytes) -> None:
        if self.disposed:
            return
        self._stream.write(data)
        self._stream.flush()

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._stream.flush()
