"""
Canonical comparator - deep equality over decoded descriptor messages.

Compares the fields *set* in each message (so an explicitly-set default differs
from an unset field), recursing into sub-messages, repeated fields (element by
element, order matters) and map fields (by key). Unknown fields are compared
too.

Floating-point fields compare equal when their IEEE-754 bit patterns match.
With ``treat_nan_as_equal`` (the default) any two NaNs are also equal, since
two independent implementations need not agree on NaN payloads.

Differences are reported one per line::

    added: message_type[0].field[2]: { name: "x" ... }
    deleted: package: "foo"
    modified: message_type[0].name: "A" -> "B"
"""

import math
import struct
from typing import Any, Union

from google.protobuf import text_format, unknown_fields
from google.protobuf.descriptor import FieldDescriptor
from google.protobuf.message import Message

from protodiff.types import CanonicalForm, ComparisonResult

_FLOAT_TYPES = (FieldDescriptor.CPPTYPE_FLOAT, FieldDescriptor.CPPTYPE_DOUBLE)

Comparable = Union[CanonicalForm, Message]


def _is_repeated(field: FieldDescriptor) -> bool:
    flag = getattr(field, "is_repeated", None)
    if flag is not None:
        return bool(flag)
    return field.label == FieldDescriptor.LABEL_REPEATED


def _is_map(field: FieldDescriptor) -> bool:
    entry = field.message_type
    return entry is not None and entry.GetOptions().map_entry


def _field_label(field: FieldDescriptor) -> str:
    return f"({field.full_name})" if field.is_extension else field.name


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _format(value: Any) -> str:
    if isinstance(value, Message):
        return "{ " + text_format.MessageToString(value, as_one_line=True) + " }"
    if isinstance(value, str):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return repr(value)


def _unknown_entries(fields) -> list[tuple]:
    out = []
    for i in range(len(fields)):
        f = fields[i]
        data = f.data
        if not isinstance(data, (bytes, int, float)):
            # Groups carry a nested UnknownFieldSet
            data = tuple(_unknown_entries(data))
        out.append((f.field_number, f.wire_type, data))
    return out


class Comparator:
    """Structural comparator for protobuf messages and canonical forms."""

    def __init__(self, treat_nan_as_equal: bool = True):
        self.treat_nan_as_equal = treat_nan_as_equal

    def compare(self, a: Comparable, b: Comparable) -> ComparisonResult:
        """Compare two canonical forms (or messages).

        Returns:
            ComparisonResult.EQUAL, or an unequal result with a diff
        """
        a_msg = a.message if isinstance(a, CanonicalForm) else a
        b_msg = b.message if isinstance(b, CanonicalForm) else b
        diffs: list[str] = []
        self._compare_messages(a_msg, b_msg, "", diffs)
        if not diffs:
            return ComparisonResult.EQUAL
        return ComparisonResult.unequal("\n".join(diffs))

    def floats_equal(self, a: float, b: float) -> bool:
        if math.isnan(a) and math.isnan(b):
            return self.treat_nan_as_equal
        return struct.pack("<d", a) == struct.pack("<d", b)

    def _compare_messages(self, a: Message, b: Message, path: str, diffs: list[str]) -> None:
        a_type, b_type = a.DESCRIPTOR.full_name, b.DESCRIPTOR.full_name
        if a_type != b_type:
            diffs.append(f"modified: {path or '<root>'}: message type {a_type} -> {b_type}")
            return

        a_fields = {f.number: (f, v) for f, v in a.ListFields()}
        b_fields = {f.number: (f, v) for f, v in b.ListFields()}
        for number in sorted(a_fields.keys() | b_fields.keys()):
            if number not in b_fields:
                field, value = a_fields[number]
                diffs.append(f"deleted: {_join(path, _field_label(field))}: {_format(value)}")
            elif number not in a_fields:
                field, value = b_fields[number]
                diffs.append(f"added: {_join(path, _field_label(field))}: {_format(value)}")
            else:
                field, a_value = a_fields[number]
                b_value = b_fields[number][1]
                self._compare_field(field, a_value, b_value, _join(path, _field_label(field)), diffs)

        a_unknown = _unknown_entries(unknown_fields.UnknownFieldSet(a))
        b_unknown = _unknown_entries(unknown_fields.UnknownFieldSet(b))
        if a_unknown != b_unknown:
            diffs.append(f"modified: {_join(path, '<unknown fields>')}: {a_unknown!r} -> {b_unknown!r}")

    def _compare_field(self, field: FieldDescriptor, a: Any, b: Any, path: str, diffs: list[str]) -> None:
        if _is_map(field):
            self._compare_maps(field, a, b, path, diffs)
        elif _is_repeated(field):
            for i in range(max(len(a), len(b))):
                item_path = f"{path}[{i}]"
                if i >= len(b):
                    diffs.append(f"deleted: {item_path}: {_format(a[i])}")
                elif i >= len(a):
                    diffs.append(f"added: {item_path}: {_format(b[i])}")
                else:
                    self._compare_values(field, a[i], b[i], item_path, diffs)
        else:
            self._compare_values(field, a, b, path, diffs)

    def _compare_maps(self, field: FieldDescriptor, a: Any, b: Any, path: str, diffs: list[str]) -> None:
        value_field = field.message_type.fields_by_name["value"]
        for key in sorted(set(a) | set(b), key=repr):
            item_path = f"{path}[{key!r}]"
            if key not in b:
                diffs.append(f"deleted: {item_path}: {_format(a[key])}")
            elif key not in a:
                diffs.append(f"added: {item_path}: {_format(b[key])}")
            else:
                self._compare_values(value_field, a[key], b[key], item_path, diffs)

    def _compare_values(self, field: FieldDescriptor, a: Any, b: Any, path: str, diffs: list[str]) -> None:
        if field.cpp_type == FieldDescriptor.CPPTYPE_MESSAGE:
            self._compare_messages(a, b, path, diffs)
            return
        if field.cpp_type in _FLOAT_TYPES:
            equal = self.floats_equal(a, b)
        else:
            equal = a == b
        if not equal:
            diffs.append(f"modified: {path}: {_format(a)} -> {_format(b)}")


def compare(a: Comparable, b: Comparable, treat_nan_as_equal: bool = True) -> ComparisonResult:
    """Compare two canonical forms with a default Comparator."""
    return Comparator(treat_nan_as_equal).compare(a, b)


__all__ = ["Comparator", "compare"]
