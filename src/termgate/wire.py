"""Wire protocol — JSON envelopes exchanged over the terminal websocket.

Every text frame carries one JSON object with a ``type`` discriminant:

    client -> server   {"type": "input",  "data": "ls\\r"}
    client -> server   {"type": "resize", "cols": 120, "rows": 40}
    server -> client   {"type": "data",   "data": "..."}
    server -> client   {"type": "error",  "message": "Project not found"}

Envelopes are frozen dataclasses. Unrecognized discriminants decode to
:class:`UnknownEnvelope` so dispatch can ignore them explicitly.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Union

from termgate.errors import MalformedFrame


class EnvelopeType(enum.Enum):
    INPUT = "input"
    RESIZE = "resize"
    DATA = "data"
    ERROR = "error"


@dataclass(frozen=True)
class InputEnvelope:
    """Keystrokes or pasted text destined for the shell's stdin."""

    data: str
    type: EnvelopeType = EnvelopeType.INPUT


@dataclass(frozen=True)
class ResizeEnvelope:
    """Viewport geometry.

    ``cols``/``rows`` are kept exactly as received; :attr:`geometry` is the
    only way to get a usable size out of it.
    """

    cols: Any = None
    rows: Any = None
    type: EnvelopeType = EnvelopeType.RESIZE

    @property
    def geometry(self) -> tuple[int, int] | None:
        """``(cols, rows)`` if both are positive integers, else None."""
        if _positive_int(self.cols) and _positive_int(self.rows):
            return self.cols, self.rows
        return None


@dataclass(frozen=True)
class DataEnvelope:
    """Output produced by the shell (or a gateway banner)."""

    data: str
    type: EnvelopeType = EnvelopeType.DATA


@dataclass(frozen=True)
class ErrorEnvelope:
    """A user-visible failure message."""

    message: str
    type: EnvelopeType = EnvelopeType.ERROR


@dataclass(frozen=True)
class UnknownEnvelope:
    """A well-formed frame with a discriminant we don't handle."""

    type: Any


Envelope = Union[
    InputEnvelope, ResizeEnvelope, DataEnvelope, ErrorEnvelope, UnknownEnvelope
]


def _positive_int(value: Any) -> bool:
    # bool is an int subclass; {"cols": true} is not a size
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _string_field(payload: dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str):
        raise MalformedFrame(f"'{name}' must be a string, got {type(value).__name__}")
    return value


def decode(frame: str | bytes) -> Envelope:
    """Decode one text frame into an envelope.

    Raises:
        MalformedFrame: the frame is not a JSON object with a string
            ``type``, or a known envelope is missing its payload field.
    """
    try:
        payload = json.loads(frame)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedFrame(f"Invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedFrame(f"Expected a JSON object, got {type(payload).__name__}")

    raw_type = payload.get("type")
    if not isinstance(raw_type, str):
        raise MalformedFrame("Missing 'type' discriminant")

    try:
        kind = EnvelopeType(raw_type)
    except ValueError:
        return UnknownEnvelope(type=raw_type)

    if kind is EnvelopeType.INPUT:
        return InputEnvelope(data=_string_field(payload, "data"))
    if kind is EnvelopeType.RESIZE:
        return ResizeEnvelope(cols=payload.get("cols"), rows=payload.get("rows"))
    if kind is EnvelopeType.DATA:
        return DataEnvelope(data=_string_field(payload, "data"))
    if kind is EnvelopeType.ERROR:
        return ErrorEnvelope(message=_string_field(payload, "message"))
    raise AssertionError(f"unhandled envelope type: {kind}")


def encode(envelope: Envelope) -> str:
    """Encode an envelope as a JSON text frame."""
    if isinstance(envelope, InputEnvelope):
        body: dict[str, Any] = {"type": "input", "data": envelope.data}
    elif isinstance(envelope, ResizeEnvelope):
        body = {"type": "resize", "cols": envelope.cols, "rows": envelope.rows}
    elif isinstance(envelope, DataEnvelope):
        body = {"type": "data", "data": envelope.data}
    elif isinstance(envelope, ErrorEnvelope):
        body = {"type": "error", "message": envelope.message}
    else:
        raise TypeError(f"Cannot encode {type(envelope).__name__}")
    return json.dumps(body)
