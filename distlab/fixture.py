"""A small example message used to exercise the codec."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .codec import FieldKind, Message, proto_field

__all__ = ["Msg", "MsgType"]


class MsgType(enum.IntEnum):
    """The kind of request a :class:`Msg` carries."""

    UNKNOWN = 0
    PUT = 1
    GET = 2
    DEL = 3


@dataclass
class Msg(Message):
    """A simple protobuf message."""

    type: int = proto_field(1, FieldKind.ENUM, enum=MsgType)
    id: int = proto_field(2, FieldKind.UINT64)
    name: str = proto_field(3, FieldKind.STRING)
    payload: list = proto_field(4, FieldKind.BYTES, repeated=True)

    def type_enum(self) -> MsgType:
        """Return ``type`` as a MsgType, or the default for unknown values."""
        try:
            return MsgType(self.type)
        except ValueError:
            return MsgType.UNKNOWN

    def set_type(self, value: MsgType) -> None:
        """Set ``type`` from a MsgType."""
        self.type = int(value)