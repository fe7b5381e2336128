"""
Table-driven protobuf wire codec for descriptor messages.

Every field on the wire is a varint tag (field_number << 3 | wire_type)
followed by a payload:

Wire type  Name     Payload
---------  ----     -------
0          VARINT   base-128 integer, 1-10 bytes, little-endian groups of 7 bits
1          I64      8 bytes, little-endian
2          LEN      varint length, then that many bytes
3          SGROUP   fields up to the matching EGROUP tag
4          EGROUP   none
5          I32      4 bytes, little-endian

Layouts come from :class:`MiniTable`, built once per message type from the
``descriptor_pb2`` schema. Messages decode into :class:`Message` objects
allocated from an :class:`Arena`. Anything the table does not know, including
known fields carrying the wrong wire type, is kept verbatim as unknown bytes.

Malformed input raises :class:`~protodiff.errors.DecodeError` and nothing else.
"""

import struct
from dataclasses import dataclass
from typing import Any, Optional

from google.protobuf import descriptor_pb2
from google.protobuf.descriptor import Descriptor, FieldDescriptor

from protodiff.errors import CandidateError, DecodeError, EncodeError

WIRE_VARINT = 0
WIRE_I64 = 1
WIRE_LEN = 2
WIRE_SGROUP = 3
WIRE_EGROUP = 4
WIRE_I32 = 5

MAX_FIELD_NUMBER = (1 << 29) - 1
MAX_VARINT_BYTES = 10
DEFAULT_MAX_DEPTH = 100

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF

_WIRE_TYPE = {
    FieldDescriptor.TYPE_DOUBLE: WIRE_I64,
    FieldDescriptor.TYPE_FLOAT: WIRE_I32,
    FieldDescriptor.TYPE_INT64: WIRE_VARINT,
    FieldDescriptor.TYPE_UINT64: WIRE_VARINT,
    FieldDescriptor.TYPE_INT32: WIRE_VARINT,
    FieldDescriptor.TYPE_FIXED64: WIRE_I64,
    FieldDescriptor.TYPE_FIXED32: WIRE_I32,
    FieldDescriptor.TYPE_BOOL: WIRE_VARINT,
    FieldDescriptor.TYPE_STRING: WIRE_LEN,
    FieldDescriptor.TYPE_GROUP: WIRE_SGROUP,
    FieldDescriptor.TYPE_MESSAGE: WIRE_LEN,
    FieldDescriptor.TYPE_BYTES: WIRE_LEN,
    FieldDescriptor.TYPE_UINT32: WIRE_VARINT,
    FieldDescriptor.TYPE_ENUM: WIRE_VARINT,
    FieldDescriptor.TYPE_SFIXED32: WIRE_I32,
    FieldDescriptor.TYPE_SFIXED64: WIRE_I64,
    FieldDescriptor.TYPE_SINT32: WIRE_VARINT,
    FieldDescriptor.TYPE_SINT64: WIRE_VARINT,
}

_FIXED_FORMAT = {
    FieldDescriptor.TYPE_DOUBLE: "<d",
    FieldDescriptor.TYPE_FLOAT: "<f",
    FieldDescriptor.TYPE_FIXED64: "<Q",
    FieldDescriptor.TYPE_SFIXED64: "<q",
    FieldDescriptor.TYPE_FIXED32: "<I",
    FieldDescriptor.TYPE_SFIXED32: "<i",
}

_SUBMESSAGE_TYPES = (FieldDescriptor.TYPE_MESSAGE, FieldDescriptor.TYPE_GROUP)


def _is_repeated(field: FieldDescriptor) -> bool:
    flag = getattr(field, "is_repeated", None)
    if flag is not None:
        return bool(flag)
    return field.label == FieldDescriptor.LABEL_REPEATED


def _is_packed(field: FieldDescriptor) -> bool:
    flag = getattr(field, "is_packed", None)
    if flag is not None:
        return bool(flag)
    return field.has_options and field.GetOptions().packed


@dataclass(frozen=True)
class FieldInfo:
    """Layout of one field in a :class:`MiniTable`."""

    number: int
    name: str
    type: int
    repeated: bool
    packed: bool
    message_type: Optional[Descriptor] = None

    @property
    def wire_type(self) -> int:
        return _WIRE_TYPE[self.type]

    @property
    def is_submessage(self) -> bool:
        return self.type in _SUBMESSAGE_TYPES

    @property
    def packable(self) -> bool:
        """Repeated numeric fields may arrive packed regardless of ``packed``."""
        return self.repeated and self.wire_type in (WIRE_VARINT, WIRE_I64, WIRE_I32)


class MiniTable:
    """Field layout of one message type, indexed by number and by name."""

    def __init__(self, full_name: str, fields: list[FieldInfo]):
        self.full_name = full_name
        self.by_number = {f.number: f for f in fields}
        self.by_name = {f.name: f for f in fields}

    def sub_table(self, info: FieldInfo) -> "MiniTable":
        """Table for a message-typed field. Resolved lazily, the schema is recursive."""
        if info.message_type is None:
            raise CandidateError(f"{self.full_name}.{info.name} is not a message field")
        return table_for(info.message_type)

    def __repr__(self) -> str:
        return f"MiniTable({self.full_name}, {len(self.by_number)} fields)"


_TABLES: dict[str, MiniTable] = {}


def table_for(descriptor: Descriptor) -> MiniTable:
    """Return the (cached) MiniTable for a message descriptor."""
    table = _TABLES.get(descriptor.full_name)
    if table is None:
        fields = [
            FieldInfo(
                number=f.number,
                name=f.name,
                type=f.type,
                repeated=_is_repeated(f),
                packed=_is_packed(f),
                message_type=f.message_type if f.type in _SUBMESSAGE_TYPES else None,
            )
            for f in descriptor.fields
        ]
        table = MiniTable(descriptor.full_name, fields)
        _TABLES[descriptor.full_name] = table
    return table


def file_table() -> MiniTable:
    """MiniTable for google.protobuf.FileDescriptorProto."""
    return table_for(descriptor_pb2.FileDescriptorProto.DESCRIPTOR)


class Message:
    """Decoded message: known field values by number plus raw unknown bytes.

    Singular fields hold a value, repeated fields a list. String fields hold
    the raw bytes from the wire; callers decode them when they need text.
    """

    __slots__ = ("table", "fields", "unknown")

    def __init__(self, table: MiniTable):
        self.table = table
        self.fields: dict[int, Any] = {}
        self.unknown = bytearray()

    def _info(self, name: str) -> FieldInfo:
        info = self.table.by_name.get(name)
        if info is None:
            raise KeyError(f"{self.table.full_name} has no field {name!r}")
        return info

    def has(self, name: str) -> bool:
        return self._info(name).number in self.fields

    def get(self, name: str, default: Any = None) -> Any:
        info = self._info(name)
        if info.number in self.fields:
            return self.fields[info.number]
        return [] if info.repeated else default

    def set(self, name: str, value: Any) -> None:
        self.fields[self._info(name).number] = value

    def copy(self) -> "Message":
        """Deep copy, detached from any arena."""
        out = Message(self.table)
        for number, value in self.fields.items():
            if isinstance(value, list):
                out.fields[number] = [v.copy() if isinstance(v, Message) else v for v in value]
            elif isinstance(value, Message):
                out.fields[number] = value.copy()
            else:
                out.fields[number] = value
        out.unknown = bytearray(self.unknown)
        return out

    def clear(self) -> None:
        self.fields.clear()
        self.unknown.clear()

    def __repr__(self) -> str:
        return f"Message({self.table.full_name}, fields={sorted(self.fields)}, unknown={len(self.unknown)}B)"


class Arena:
    """Allocation scope for decoded messages.

    Everything allocated from an arena is cleared by :meth:`release`. Used as
    a context manager the release happens on every exit path.
    """

    def __init__(self):
        self._messages: list[Message] = []
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def allocated(self) -> int:
        """Number of live messages allocated from this arena."""
        return len(self._messages)

    def new_message(self, table: MiniTable) -> Message:
        if self._released:
            raise CandidateError("arena already released")
        msg = Message(table)
        self._messages.append(msg)
        return msg

    def release(self) -> None:
        for msg in self._messages:
            msg.clear()
        self._messages.clear()
        self._released = True

    def __enter__(self) -> "Arena":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


# ─────────────────────────────────────────────────────────────────────────────
# Decoding
# ─────────────────────────────────────────────────────────────────────────────


def _read_varint(data: bytes, pos: int, end: int) -> tuple[int, int]:
    """Read a varint at pos. Returns (value as uint64, new pos)."""
    result = 0
    for i in range(MAX_VARINT_BYTES):
        if pos >= end:
            raise DecodeError("truncated varint", pos)
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << (7 * i)
        if b < 0x80:
            return result & _U64, pos
    raise DecodeError("varint longer than 10 bytes", pos)


def _signed(value: int, bits: int) -> int:
    mask = (1 << bits) - 1
    value &= mask
    if value >> (bits - 1):
        value -= 1 << bits
    return value


def _zigzag_decode(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


def _convert_varint(ftype: int, raw: int) -> Any:
    if ftype in (FieldDescriptor.TYPE_INT32, FieldDescriptor.TYPE_ENUM):
        return _signed(raw, 32)
    if ftype == FieldDescriptor.TYPE_INT64:
        return _signed(raw, 64)
    if ftype == FieldDescriptor.TYPE_UINT32:
        return raw & _U32
    if ftype == FieldDescriptor.TYPE_BOOL:
        return raw != 0
    if ftype == FieldDescriptor.TYPE_SINT32:
        return _zigzag_decode(raw & _U32)
    if ftype == FieldDescriptor.TYPE_SINT64:
        return _zigzag_decode(raw)
    return raw


class _Decoder:
    def __init__(self, data: bytes, arena: Arena, max_depth: int):
        self.data = data
        self.arena = arena
        self.max_depth = max_depth

    def decode_fields(self, msg: Message, pos: int, end: int, depth: int, group: Optional[int] = None) -> int:
        """Decode fields in [pos, end) into msg. Returns the position after the last field.

        With ``group`` set, stops after the EGROUP tag for that field number.
        """
        data = self.data
        table = msg.table
        while pos < end:
            tag_pos = pos
            tag, pos = _read_varint(data, pos, end)
            number = tag >> 3
            wire = tag & 7
            if wire == WIRE_EGROUP:
                if group is None or number != group:
                    raise DecodeError(f"unexpected end-group tag for field {number}", tag_pos)
                return pos
            if number == 0:
                raise DecodeError("field number 0", tag_pos)
            if number > MAX_FIELD_NUMBER:
                raise DecodeError(f"field number {number} out of range", tag_pos)
            if wire > WIRE_I32:
                raise DecodeError(f"invalid wire type {wire}", tag_pos)

            info = table.by_number.get(number)
            if info is not None and wire == info.wire_type:
                pos = self._decode_value(msg, info, pos, end, depth)
            elif info is not None and wire == WIRE_LEN and info.packable:
                pos = self._decode_packed(msg, info, pos, end)
            else:
                pos = self._skip(wire, number, pos, end, depth)
                msg.unknown += data[tag_pos:pos]
        if group is not None:
            raise DecodeError(f"missing end-group tag for field {group}", end)
        return pos

    def _enter(self, depth: int, pos: int) -> int:
        if depth + 1 > self.max_depth:
            raise DecodeError(f"message nesting exceeds {self.max_depth}", pos)
        return depth + 1

    def _read_length(self, pos: int, end: int) -> tuple[int, int]:
        length, pos = _read_varint(self.data, pos, end)
        if length > end - pos:
            raise DecodeError(f"length {length} overruns buffer", pos)
        return length, pos

    def _store(self, msg: Message, info: FieldInfo, value: Any) -> None:
        if info.repeated:
            msg.fields.setdefault(info.number, []).append(value)
        else:
            msg.fields[info.number] = value

    def _decode_value(self, msg: Message, info: FieldInfo, pos: int, end: int, depth: int) -> int:
        wire = info.wire_type
        data = self.data
        if wire == WIRE_VARINT:
            raw, pos = _read_varint(data, pos, end)
            self._store(msg, info, _convert_varint(info.type, raw))
            return pos
        if wire in (WIRE_I64, WIRE_I32):
            size = 8 if wire == WIRE_I64 else 4
            if end - pos < size:
                raise DecodeError("truncated fixed-width value", pos)
            self._store(msg, info, struct.unpack_from(_FIXED_FORMAT[info.type], data, pos)[0])
            return pos + size
        if wire == WIRE_SGROUP:
            child_depth = self._enter(depth, pos)
            sub = self._submessage(msg, info)
            return self.decode_fields(sub, pos, end, child_depth, group=info.number)

        length, pos = self._read_length(pos, end)
        if info.type == FieldDescriptor.TYPE_MESSAGE:
            child_depth = self._enter(depth, pos)
            sub = self._submessage(msg, info)
            self.decode_fields(sub, pos, pos + length, child_depth)
        else:
            self._store(msg, info, bytes(data[pos : pos + length]))
        return pos + length

    def _submessage(self, msg: Message, info: FieldInfo) -> Message:
        """New element for repeated fields; singular sub-messages merge into the existing one."""
        if not info.repeated:
            existing = msg.fields.get(info.number)
            if existing is not None:
                return existing
        sub = self.arena.new_message(msg.table.sub_table(info))
        self._store(msg, info, sub)
        return sub

    def _decode_packed(self, msg: Message, info: FieldInfo, pos: int, end: int) -> int:
        length, pos = self._read_length(pos, end)
        stop = pos + length
        values = msg.fields.setdefault(info.number, [])
        if info.wire_type == WIRE_VARINT:
            while pos < stop:
                raw, pos = _read_varint(self.data, pos, stop)
                values.append(_convert_varint(info.type, raw))
            return stop
        size = 8 if info.wire_type == WIRE_I64 else 4
        if length % size:
            raise DecodeError(f"packed length {length} not a multiple of {size}", pos)
        fmt = _FIXED_FORMAT[info.type]
        for offset in range(pos, stop, size):
            values.append(struct.unpack_from(fmt, self.data, offset)[0])
        return stop

    def _skip(self, wire: int, number: int, pos: int, end: int, depth: int) -> int:
        """Skip one unknown payload. Returns the position after it."""
        if wire == WIRE_VARINT:
            return _read_varint(self.data, pos, end)[1]
        if wire == WIRE_I64:
            if end - pos < 8:
                raise DecodeError("truncated fixed64", pos)
            return pos + 8
        if wire == WIRE_I32:
            if end - pos < 4:
                raise DecodeError("truncated fixed32", pos)
            return pos + 4
        if wire == WIRE_LEN:
            length, pos = self._read_length(pos, end)
            return pos + length
        # WIRE_SGROUP: skip nested fields until the matching end tag
        child_depth = self._enter(depth, pos)
        while True:
            if pos >= end:
                raise DecodeError(f"missing end-group tag for field {number}", pos)
            tag_pos = pos
            tag, pos = _read_varint(self.data, pos, end)
            inner_number, inner_wire = tag >> 3, tag & 7
            if inner_wire == WIRE_EGROUP:
                if inner_number != number:
                    raise DecodeError(f"end-group tag {inner_number} does not match {number}", tag_pos)
                return pos
            if inner_number == 0 or inner_number > MAX_FIELD_NUMBER:
                raise DecodeError(f"invalid field number {inner_number}", tag_pos)
            if inner_wire > WIRE_I32:
                raise DecodeError(f"invalid wire type {inner_wire}", tag_pos)
            pos = self._skip(inner_wire, inner_number, pos, end, child_depth)


def decode(data: bytes, table: MiniTable, arena: Arena, max_depth: int = DEFAULT_MAX_DEPTH) -> Message:
    """Decode ``data`` as a message of ``table``'s type, allocating from ``arena``.

    Raises:
        DecodeError: On any malformed input
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodeError(f"expected bytes, got {type(data).__name__}")
    buf = bytes(data)
    msg = arena.new_message(table)
    _Decoder(buf, arena, max_depth).decode_fields(msg, 0, len(buf), 0)
    return msg


# ─────────────────────────────────────────────────────────────────────────────
# Encoding
# ─────────────────────────────────────────────────────────────────────────────


def _write_varint(out: bytearray, value: int) -> None:
    value &= _U64
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)


def _write_tag(out: bytearray, number: int, wire: int) -> None:
    _write_varint(out, (number << 3) | wire)


def _varint_payload(ftype: int, value: Any) -> int:
    if ftype == FieldDescriptor.TYPE_BOOL:
        return 1 if value else 0
    if ftype == FieldDescriptor.TYPE_SINT32:
        return ((value << 1) ^ (value >> 31)) & _U32
    if ftype == FieldDescriptor.TYPE_SINT64:
        return (value << 1) ^ (value >> 63)
    return value


def _encode_scalar(out: bytearray, info: FieldInfo, value: Any) -> None:
    """Encode a value without its tag."""
    wire = info.wire_type
    if wire == WIRE_VARINT:
        if not isinstance(value, int):
            raise EncodeError(f"field {info.name}: expected int, got {type(value).__name__}")
        _write_varint(out, _varint_payload(info.type, value))
    elif wire in (WIRE_I64, WIRE_I32):
        try:
            out += struct.pack(_FIXED_FORMAT[info.type], value)
        except struct.error as e:
            raise EncodeError(f"field {info.name}: {e}") from e
    else:
        if isinstance(value, str):
            value = value.encode("utf-8")
        if not isinstance(value, (bytes, bytearray)):
            raise EncodeError(f"field {info.name}: expected bytes, got {type(value).__name__}")
        _write_varint(out, len(value))
        out += value


def _encode_field(out: bytearray, info: FieldInfo, value: Any) -> None:
    if info.is_submessage:
        if not isinstance(value, Message):
            raise EncodeError(f"field {info.name}: expected Message, got {type(value).__name__}")
        if info.type == FieldDescriptor.TYPE_GROUP:
            _write_tag(out, info.number, WIRE_SGROUP)
            _encode_into(value, out)
            _write_tag(out, info.number, WIRE_EGROUP)
        else:
            body = bytearray()
            _encode_into(value, body)
            _write_tag(out, info.number, WIRE_LEN)
            _write_varint(out, len(body))
            out += body
        return
    _write_tag(out, info.number, info.wire_type)
    _encode_scalar(out, info, value)


def _encode_into(msg: Message, out: bytearray) -> None:
    for number in sorted(msg.fields):
        info = msg.table.by_number.get(number)
        if info is None:
            raise EncodeError(f"{msg.table.full_name} has no field number {number}")
        value = msg.fields[number]
        if not info.repeated:
            _encode_field(out, info, value)
            continue
        if not isinstance(value, list):
            raise EncodeError(f"field {info.name}: repeated field holds {type(value).__name__}")
        if info.packed and info.packable and value:
            body = bytearray()
            for v in value:
                _encode_scalar(body, info, v)
            _write_tag(out, number, WIRE_LEN)
            _write_varint(out, len(body))
            out += body
        else:
            for v in value:
                _encode_field(out, info, v)
    out += msg.unknown


def encode(msg: Message) -> bytes:
    """Serialize a message: known fields in field-number order, then unknown bytes verbatim.

    Raises:
        EncodeError: If a field holds a value of the wrong type
    """
    out = bytearray()
    _encode_into(msg, out)
    return bytes(out)


__all__ = [
    "Arena",
    "FieldInfo",
    "Message",
    "MiniTable",
    "decode",
    "encode",
    "file_table",
    "table_for",
    "DEFAULT_MAX_DEPTH",
    "MAX_FIELD_NUMBER",
]
