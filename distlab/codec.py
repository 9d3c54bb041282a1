"""Protocol-buffer wire encoding for dataclass messages."""

from __future__ import annotations

import dataclasses
import enum
import functools
from collections.abc import Iterable
from typing import Any, TypeVar

__all__ = [
    "DecodeError",
    "EncodeError",
    "FieldKind",
    "Message",
    "decode",
    "encode",
    "proto_field",
]

_META_KEY = "proto"
_MASK32 = (1 << 32) - 1
_MASK64 = (1 << 64) - 1
_MAX_TAG = (1 << 29) - 1
_RECURSION_LIMIT = 100


class EncodeError(Exception):
    """Raised when a message cannot be encoded."""

    def __init__(self, description: str) -> None:
        super().__init__(description)
        self.description = description

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EncodeError):
            return NotImplemented
        return self.description == other.description

    def __hash__(self) -> int:
        return hash(self.description)


class DecodeError(Exception):
    """Raised when bytes are not a valid encoding of a message."""

    def __init__(self, description: str, path: Iterable[tuple[str, str]] = ()) -> None:
        super().__init__(description)
        self.description = description
        self.path = tuple(path)

    def push(self, message: str, field: str) -> DecodeError:
        """Return a copy of this error with one more field added to its path."""
        return DecodeError(self.description, self.path + ((message, field),))

    def __str__(self) -> str:
        where = "".join(f"{message}.{field}: " for message, field in self.path)
        return f"failed to decode Protobuf message: {where}{self.description}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DecodeError):
            return NotImplemented
        return (self.description, self.path) == (other.description, other.path)

    def __hash__(self) -> int:
        return hash((self.description, self.path))


class _WireType(enum.IntEnum):
    VARINT = 0
    SIXTY_FOUR_BIT = 1
    LENGTH_DELIMITED = 2
    START_GROUP = 3
    END_GROUP = 4
    THIRTY_TWO_BIT = 5


class FieldKind(enum.Enum):
    """The scalar type of a message field."""

    INT32 = "int32"
    INT64 = "int64"
    UINT32 = "uint32"
    UINT64 = "uint64"
    BOOL = "bool"
    ENUM = "enum"
    STRING = "string"
    BYTES = "bytes"

    @property
    def is_varint(self) -> bool:
        return self not in (FieldKind.STRING, FieldKind.BYTES)

    @property
    def wire_type(self) -> _WireType:
        return _WireType.VARINT if self.is_varint else _WireType.LENGTH_DELIMITED


_INT_RANGES = {
    FieldKind.INT32: (-(1 << 31), (1 << 31) - 1),
    FieldKind.ENUM: (-(1 << 31), (1 << 31) - 1),
    FieldKind.INT64: (-(1 << 63), (1 << 63) - 1),
    FieldKind.UINT32: (0, _MASK32),
    FieldKind.UINT64: (0, _MASK64),
}

_DEFAULTS: dict[FieldKind, Any] = {
    FieldKind.INT32: 0,
    FieldKind.INT64: 0,
    FieldKind.UINT32: 0,
    FieldKind.UINT64: 0,
    FieldKind.BOOL: False,
    FieldKind.ENUM: 0,
    FieldKind.STRING: "",
    FieldKind.BYTES: b"",
}


@dataclasses.dataclass(frozen=True)
class _FieldSpec:
    tag: int
    kind: FieldKind
    repeated: bool
    enum: type[enum.Enum] | None


def proto_field(tag: int, kind: FieldKind, *, repeated: bool = False, enum: Any = None) -> Any:
    """Declare a dataclass field carried on the wire under ``tag``."""
    if not 1 <= tag <= _MAX_TAG:
        raise ValueError(f"tag {tag} is out of range")
    if enum is not None and kind is not FieldKind.ENUM:
        raise ValueError("an enum type is only allowed for enum fields")
    metadata = {_META_KEY: _FieldSpec(tag, kind, repeated, enum)}
    if repeated:
        return dataclasses.field(default_factory=list, metadata=metadata)
    return dataclasses.field(default=_DEFAULTS[kind], metadata=metadata)


@functools.lru_cache(maxsize=None)
def _specs(cls: type) -> tuple[tuple[str, _FieldSpec], ...]:
    if not dataclasses.is_dataclass(cls):
        raise TypeError(f"{cls.__name__} is not a dataclass")
    specs = [
        (f.name, f.metadata[_META_KEY])
        for f in dataclasses.fields(cls)
        if _META_KEY in f.metadata
    ]
    tags = [spec.tag for _, spec in specs]
    if len(tags) != len(set(tags)):
        raise TypeError(f"{cls.__name__} declares a tag more than once")
    return tuple(sorted(specs, key=lambda item: item[1].tag))


class Message:
    """Base class for dataclass messages declared with :func:`proto_field`."""

    def encode(self) -> bytes:
        """Return the wire encoding of this message."""
        return encode(self)

    @classmethod
    def decode(cls: type[_M], data: bytes) -> _M:
        """Build a message of this type from its wire encoding."""
        return decode(cls, data)


_M = TypeVar("_M", bound=Message)


# Encoding ------------------------------------------------------------------


def _varint(value: int) -> bytes:
    out = bytearray()
    while value > 0x7F:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _key(tag: int, wire_type: _WireType) -> bytes:
    return _varint((tag << 3) | wire_type)


def _to_varint(kind: FieldKind, value: Any) -> int:
    if kind is FieldKind.BOOL:
        if not isinstance(value, bool):
            raise EncodeError(f"expected a bool, got {type(value).__name__}")
        return int(value)
    if not isinstance(value, int) or isinstance(value, bool):
        raise EncodeError(f"expected an int, got {type(value).__name__}")
    low, high = _INT_RANGES[kind]
    if not low <= value <= high:
        raise EncodeError(f"value {value} is out of range for {kind.value}")
    return int(value) & _MASK64


def _to_bytes(kind: FieldKind, value: Any) -> bytes:
    if kind is FieldKind.STRING:
        if not isinstance(value, str):
            raise EncodeError(f"expected a str, got {type(value).__name__}")
        try:
            return value.encode("utf-8")
        except UnicodeEncodeError as err:
            raise EncodeError("string is not encodable as UTF-8") from err
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise EncodeError(f"expected bytes, got {type(value).__name__}")
    return bytes(value)


def _encode_field(spec: _FieldSpec, value: Any) -> bytes:
    kind = spec.kind
    if spec.repeated:
        if isinstance(value, (str, bytes, bytearray)) or not isinstance(value, Iterable):
            raise EncodeError("a repeated field needs a sequence of values")
        items = list(value)
        if not items:
            return b""
        if kind.is_varint:
            body = b"".join(_varint(_to_varint(kind, item)) for item in items)
            return _key(spec.tag, _WireType.LENGTH_DELIMITED) + _varint(len(body)) + body
        return b"".join(
            _key(spec.tag, _WireType.LENGTH_DELIMITED) + _varint(len(data)) + data
            for data in (_to_bytes(kind, item) for item in items)
        )
    if kind.is_varint:
        raw = _to_varint(kind, value)
        return _key(spec.tag, _WireType.VARINT) + _varint(raw) if raw else b""
    data = _to_bytes(kind, value)
    if not data:
        return b""
    return _key(spec.tag, _WireType.LENGTH_DELIMITED) + _varint(len(data)) + data


def encode(message: Message) -> bytes:
    """Return the wire encoding of ``message``."""
    if not isinstance(message, Message):
        raise TypeError(f"{type(message).__name__} is not a Message")
    cls_name = type(message).__name__
    out = bytearray()
    for name, spec in _specs(type(message)):
        try:
            out += _encode_field(spec, getattr(message, name))
        except EncodeError as err:
            raise EncodeError(f"{cls_name}.{name}: {err.description}") from err
    return bytes(out)


# Decoding ------------------------------------------------------------------


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def exhausted(self) -> bool:
        return self._pos >= len(self._data)

    def varint(self) -> int:
        result = 0
        for shift in range(0, 70, 7):
            if self._pos >= len(self._data):
                raise DecodeError("invalid varint")
            byte = self._data[self._pos]
            self._pos += 1
            result |= (byte & 0x7F) << shift
            if byte < 0x80:
                return result & _MASK64
        raise DecodeError("invalid varint")

    def take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise DecodeError("buffer underflow")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def length_delimited(self) -> bytes:
        return self.take(self.varint())


def _split_key(key: int) -> tuple[int, _WireType]:
    if key > _MASK32:
        raise DecodeError(f"invalid key value: {key}")
    wire = key & 0x7
    if wire > _WireType.THIRTY_TWO_BIT:
        raise DecodeError(f"invalid wire type value: {wire}")
    tag = key >> 3
    if tag < 1:
        raise DecodeError("invalid tag value: 0")
    return tag, _WireType(wire)


def _skip(reader: _Reader, wire_type: _WireType, tag: int, depth: int = 0) -> None:
    if depth > _RECURSION_LIMIT:
        raise DecodeError("recursion limit reached")
    if wire_type is _WireType.VARINT:
        reader.varint()
    elif wire_type is _WireType.SIXTY_FOUR_BIT:
        reader.take(8)
    elif wire_type is _WireType.LENGTH_DELIMITED:
        reader.length_delimited()
    elif wire_type is _WireType.THIRTY_TWO_BIT:
        reader.take(4)
    elif wire_type is _WireType.START_GROUP:
        while True:
            inner_tag, inner_wire = _split_key(reader.varint())
            if inner_wire is _WireType.END_GROUP:
                if inner_tag != tag:
                    raise DecodeError("unexpected end group tag")
                return
            _skip(reader, inner_wire, inner_tag, depth + 1)
    else:
        raise DecodeError("unexpected end group tag")


def _from_varint(kind: FieldKind, raw: int) -> int | bool:
    if kind is FieldKind.BOOL:
        return raw != 0
    if kind in (FieldKind.INT32, FieldKind.ENUM):
        value = raw & _MASK32
        return value - (1 << 32) if value >= 1 << 31 else value
    if kind is FieldKind.INT64:
        return raw - (1 << 64) if raw >= 1 << 63 else raw
    if kind is FieldKind.UINT32:
        return raw & _MASK32
    return raw


def _merge_field(message: Message, name: str, spec: _FieldSpec, wire: _WireType, reader: _Reader) -> None:
    kind = spec.kind
    if spec.repeated and kind.is_varint and wire is _WireType.LENGTH_DELIMITED:
        packed = _Reader(reader.length_delimited())
        values = getattr(message, name)
        while not packed.exhausted:
            values.append(_from_varint(kind, packed.varint()))
        return
    if wire is not kind.wire_type:
        raise DecodeError(f"invalid wire type: {wire.name} (expected {kind.wire_type.name})")
    if kind.is_varint:
        value: Any = _from_varint(kind, reader.varint())
    else:
        raw = reader.length_delimited()
        if kind is FieldKind.BYTES:
            value = raw
        else:
            try:
                value = raw.decode("utf-8")
            except UnicodeDecodeError:
                raise DecodeError("invalid string value: data is not UTF-8 encoded") from None
    if spec.repeated:
        getattr(message, name).append(value)
    else:
        setattr(message, name, value)


def decode(message_type: type[_M], data: bytes) -> _M:
    """Build a ``message_type`` instance from its wire encoding."""
    if not (isinstance(message_type, type) and issubclass(message_type, Message)):
        raise TypeError(f"{message_type!r} is not a Message type")
    by_tag = {spec.tag: (name, spec) for name, spec in _specs(message_type)}
    message = message_type()
    reader = _Reader(bytes(data))
    while not reader.exhausted:
        tag, wire = _split_key(reader.varint())
        entry = by_tag.get(tag)
        if entry is None:
            _skip(reader, wire, tag)
            continue
        name, spec = entry
        try:
            _merge_field(message, name, spec, wire, reader)
        except DecodeError as err:
            raise err.push(message_type.__name__, name) from None
    return message