"""Typed envelopes for the broker <-> adapter message protocol.

Outbound events travel as ``Envelope(kind, session_id, payload)``. Inbound
control messages are validated pydantic models discriminated by ``op``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from shellmux.errors import ExitCode, ShellMuxError
from shellmux.terminal.models import ErrorInfo, EventKind, ExitInfo, SpawnOptions


@dataclass(frozen=True)
class Envelope:
    kind: EventKind
    session_id: int
    payload: bytes | ExitInfo | ErrorInfo

    @classmethod
    def data(cls, session_id: int, chunk: bytes) -> Envelope:
        return cls(kind=EventKind.DATA, session_id=session_id, payload=chunk)

    @classmethod
    def exit(cls, session_id: int, info: ExitInfo) -> Envelope:
        return cls(kind=EventKind.EXIT, session_id=session_id, payload=info)

    @classmethod
    def error(cls, session_id: int, message: str) -> Envelope:
        return cls(kind=EventKind.ERROR, session_id=session_id, payload=ErrorInfo(message=message))

    def to_wire(self) -> dict[str, object]:
        payload: object = self.payload
        if isinstance(self.payload, (ExitInfo, ErrorInfo)):
            payload = self.payload.to_wire()
        return {"kind": self.kind.value, "sessionId": self.session_id, "payload": payload}


class _ControlModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class SpawnRequest(_ControlModel):
    op: Literal["spawn"] = "spawn"
    cols: int | None = None
    rows: int | None = None
    cwd: str | None = None

    def to_options(self) -> SpawnOptions:
        return SpawnOptions(cols=self.cols, rows=self.rows, cwd=self.cwd)


class WriteRequest(_ControlModel):
    op: Literal["write"] = "write"
    id: int
    data: bytes


class ResizeRequest(_ControlModel):
    op: Literal["resize"] = "resize"
    id: int
    cols: int
    rows: int


class KillRequest(_ControlModel):
    op: Literal["kill"] = "kill"
    id: int


SessionControl = Union[WriteRequest, ResizeRequest, KillRequest]
ControlMessage = Annotated[
    Union[SpawnRequest, WriteRequest, ResizeRequest, KillRequest],
    Field(discriminator="op"),
]
_CONTROL_MESSAGE: TypeAdapter[ControlMessage] = TypeAdapter(ControlMessage)


def parse_control_message(raw: Mapping[str, object] | _ControlModel) -> ControlMessage:
    if isinstance(raw, _ControlModel):
        return raw  # type: ignore[return-value]
    try:
        return _CONTROL_MESSAGE.validate_python(dict(raw) if isinstance(raw, Mapping) else raw)
    except ValidationError as exc:
        raise ShellMuxError(
            "Invalid control message.",
            code=ExitCode.VALIDATION_ERROR,
            hint=f"{exc.error_count()} validation error(s); expected op spawn/write/resize/kill.",
        ) from exc
