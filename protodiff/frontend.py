"""
Descriptors that no .proto front-end could produce.

The reference pool does part of its validation in the .proto parser, which it
never runs here. As a result it accepts descriptors like::

    file { name: "" package: "0" }

for which there is no .proto source. Names that are not valid UTF-8 (the upb
backend returns them as ``bytes``) fall in the same category. A lighter
candidate may reasonably reject such files. This is a known asymmetry, not a
candidate bug; the oracle uses :func:`frontend_unreachable` to recognise it
instead of reporting an acceptance-parity failure.
"""

import re
from typing import Iterator, Optional

from google.protobuf import descriptor_pb2

_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")


def _ident(name: str) -> bool:
    return bool(_IDENT.match(name))


def _names(file_proto: descriptor_pb2.FileDescriptorProto) -> Iterator[tuple[str, str]]:
    """(kind, name) for every named element in the file."""

    def message(msg):
        yield "message", msg.name
        for fld in msg.field:
            yield "field", fld.name
        for ext in msg.extension:
            yield "extension", ext.name
        for oneof in msg.oneof_decl:
            yield "oneof", oneof.name
        for nested in msg.nested_type:
            yield from message(nested)
        for enum in msg.enum_type:
            yield from enum_names(enum)

    def enum_names(enum):
        yield "enum", enum.name
        for value in enum.value:
            yield "enum value", value.name

    for msg in file_proto.message_type:
        yield from message(msg)
    for enum in file_proto.enum_type:
        yield from enum_names(enum)
    for ext in file_proto.extension:
        yield "extension", ext.name
    for service in file_proto.service:
        yield "service", service.name
        for method in service.method:
            yield "method", method.name


def frontend_unreachable(file_proto: descriptor_pb2.FileDescriptorProto) -> Optional[str]:
    """Reason why ``file_proto`` has no .proto source, or None if it could have one."""
    if isinstance(file_proto.name, bytes):
        return f"file name {file_proto.name!r} is not valid UTF-8"
    if not file_proto.name:
        return "empty file name"
    package = file_proto.package
    if isinstance(package, bytes):
        return f"package {package!r} is not valid UTF-8"
    if package and not all(_ident(part) for part in package.split(".")):
        return f"package {package!r} is not a valid identifier"
    for kind, name in _names(file_proto):
        if isinstance(name, bytes):
            return f"{kind} name {name!r} is not valid UTF-8"
        if not _ident(name):
            return f"{kind} name {name!r} is not a valid identifier"
    return None


__all__ = ["frontend_unreachable"]
