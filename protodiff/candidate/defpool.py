"""
Append-only definition pool for the candidate.

Files are registered one at a time from decoded FileDescriptorProto messages.
A file can only be registered once all of its imports are loaded in the same
pool. Registration is atomic: a rejected file leaves the pool untouched.

Validation is intentionally lighter than the reference's: structure, names,
symbol uniqueness and type resolution are checked; option interpretation,
proto3/editions feature rules and json_name conflicts are not.

Symbol table keys are fully-qualified names without the leading dot. Enum
values live in the scope enclosing their enum, as in C++.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, Optional

from google.protobuf.descriptor import FieldDescriptor

from protodiff.errors import RegistrationError
from protodiff.candidate.wire import MAX_FIELD_NUMBER, Message

logger = logging.getLogger(__name__)

KIND_MESSAGE = "message"
KIND_ENUM = "enum"
KIND_ENUM_VALUE = "enum value"
KIND_FIELD = "field"
KIND_SERVICE = "service"
KIND_METHOD = "method"

_TYPE_KINDS = (KIND_MESSAGE, KIND_ENUM)
_VALID_SYNTAX = ("", "proto2", "proto3", "editions")
_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")


def is_identifier(name: str) -> bool:
    return bool(_IDENT.match(name))


def is_full_identifier(name: str) -> bool:
    """True for dotted identifiers like ``foo.bar_baz``."""
    return all(is_identifier(part) for part in name.split("."))


@dataclass(frozen=True)
class FileDef:
    """A registered file. Owns a private copy of its FileDescriptorProto."""

    name: str
    package: str
    dependencies: tuple[str, ...]
    symbols: tuple[str, ...]
    proto: Message = field(repr=False, compare=False)

    def to_proto(self) -> Message:
        return self.proto


def _join(scope: str, name: str) -> str:
    return f"{scope}.{name}" if scope else name


class _FileBuilder:
    """Validates one file against the pool. Produces symbols and type references."""

    def __init__(self, pool: "DefPool", proto: Message):
        self.pool = pool
        self.proto = proto
        self.filename = ""
        self.symbols: dict[str, str] = {}
        # (scope, type_name, declared type, element) for every reference to resolve
        self._refs: list[tuple[str, str, Optional[int], str]] = []

    def error(self, element: str, message: str) -> RegistrationError:
        return RegistrationError(self.filename, element, message)

    def text(self, msg: Message, name: str, element: str = "") -> str:
        raw = msg.get(name, b"")
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            raise self.error(element, f"{name} is not valid UTF-8")

    def texts(self, msg: Message, name: str, element: str = "") -> list[str]:
        out = []
        for raw in msg.get(name):
            try:
                out.append(raw.decode("utf-8"))
            except UnicodeDecodeError:
                raise self.error(element, f"{name} is not valid UTF-8")
        return out

    def build(self) -> FileDef:
        proto = self.proto
        if not proto.has("name"):
            raise self.error("", "file has no name")
        self.filename = self.text(proto, "name")
        if self.filename in self.pool:
            raise self.error("", f"file {self.filename!r} already loaded")

        package = self.text(proto, "package")
        if package and not is_full_identifier(package):
            raise self.error(package, f"invalid package name {package!r}")

        syntax = self.text(proto, "syntax")
        if syntax not in _VALID_SYNTAX:
            raise self.error("", f"invalid syntax {syntax!r}")

        deps = self.texts(proto, "dependency")
        seen: set[str] = set()
        for dep in deps:
            if dep in seen:
                raise self.error(dep, f"import {dep!r} listed twice")
            seen.add(dep)
            if dep not in self.pool:
                raise self.error(dep, f"depends on file {dep!r}, but it has not been loaded")
        for label in ("public_dependency", "weak_dependency"):
            for index in proto.get(label):
                if not 0 <= index < len(deps):
                    raise self.error("", f"invalid {label} index {index}")

        for msg in proto.get("message_type"):
            self._add_message(package, msg)
        for enum in proto.get("enum_type"):
            self._add_enum(package, enum)
        for ext in proto.get("extension"):
            self._add_field(package, ext, oneof_count=0, extension=True)
        for service in proto.get("service"):
            self._add_service(package, service)

        for scope, type_name, declared, element in self._refs:
            self._resolve(scope, type_name, declared, element)

        return FileDef(
            name=self.filename,
            package=package,
            dependencies=tuple(deps),
            symbols=tuple(self.symbols),
            proto=proto.copy(),
        )

    def _add_symbol(self, full_name: str, kind: str) -> None:
        if full_name in self.symbols or self.pool.lookup(full_name) is not None:
            raise self.error(full_name, f"duplicate symbol {full_name!r}")
        self.symbols[full_name] = kind

    def _named(self, msg: Message, scope: str, kind: str) -> str:
        name = self.text(msg, "name", scope)
        if not is_identifier(name):
            raise self.error(_join(scope, name), f"invalid {kind} name {name!r}")
        full_name = _join(scope, name)
        self._add_symbol(full_name, kind)
        return full_name

    def _add_message(self, scope: str, msg: Message) -> None:
        full_name = self._named(msg, scope, KIND_MESSAGE)
        oneof_count = len(msg.get("oneof_decl"))
        for oneof in msg.get("oneof_decl"):
            oneof_name = self.text(oneof, "name", full_name)
            if not is_identifier(oneof_name):
                raise self.error(full_name, f"invalid oneof name {oneof_name!r}")
        for nested in msg.get("nested_type"):
            self._add_message(full_name, nested)
        for enum in msg.get("enum_type"):
            self._add_enum(full_name, enum)
        for fld in msg.get("field"):
            self._add_field(full_name, fld, oneof_count)
        for ext in msg.get("extension"):
            self._add_field(full_name, ext, oneof_count, extension=True)

    def _add_enum(self, scope: str, enum: Message) -> None:
        full_name = self._named(enum, scope, KIND_ENUM)
        for value in enum.get("value"):
            # Enum values are siblings of their enum
            self._named(value, scope, KIND_ENUM_VALUE)
        logger.debug(f"{self.filename}: enum {full_name} with {len(enum.get('value'))} values")

    def _add_field(self, scope: str, fld: Message, oneof_count: int, extension: bool = False) -> None:
        full_name = self._named(fld, scope, KIND_FIELD)
        number = fld.get("number")
        if number is None or not 1 <= number <= MAX_FIELD_NUMBER:
            raise self.error(full_name, f"invalid field number {number}")
        if fld.has("oneof_index"):
            index = fld.get("oneof_index")
            if extension or not 0 <= index < oneof_count:
                raise self.error(full_name, f"invalid oneof_index {index}")

        declared = fld.get("type")
        type_name = self.text(fld, "type_name", full_name)
        if type_name:
            self._refs.append((scope, type_name, declared, full_name))
        elif declared in (FieldDescriptor.TYPE_MESSAGE, FieldDescriptor.TYPE_GROUP, FieldDescriptor.TYPE_ENUM):
            raise self.error(full_name, "missing type_name")
        elif declared is None:
            raise self.error(full_name, "field has neither type nor type_name")

        if extension:
            extendee = self.text(fld, "extendee", full_name)
            if not extendee:
                raise self.error(full_name, "extension has no extendee")
            self._refs.append((scope, extendee, FieldDescriptor.TYPE_MESSAGE, full_name))

    def _add_service(self, scope: str, service: Message) -> None:
        full_name = self._named(service, scope, KIND_SERVICE)
        for method in service.get("method"):
            method_name = self._named(method, full_name, KIND_METHOD)
            for label in ("input_type", "output_type"):
                type_name = self.text(method, label, method_name)
                if not type_name:
                    raise self.error(method_name, f"missing {label}")
                self._refs.append((full_name, type_name, FieldDescriptor.TYPE_MESSAGE, method_name))

    def _lookup(self, full_name: str) -> Optional[str]:
        kind = self.symbols.get(full_name)
        return kind if kind is not None else self.pool.lookup(full_name)

    def _resolve(self, scope: str, type_name: str, declared: Optional[int], element: str) -> str:
        """Resolve a (possibly relative) type name from scope outwards."""
        kind = None
        if type_name.startswith("."):
            full_name = type_name[1:]
            kind = self._lookup(full_name)
        else:
            parts = scope.split(".") if scope else []
            while True:
                full_name = ".".join(parts + [type_name])
                kind = self._lookup(full_name)
                if kind in _TYPE_KINDS or not parts:
                    break
                parts.pop()
        if kind not in _TYPE_KINDS:
            raise self.error(element, f"{type_name!r} is not defined")

        if declared in (FieldDescriptor.TYPE_MESSAGE, FieldDescriptor.TYPE_GROUP) and kind != KIND_MESSAGE:
            raise self.error(element, f"{type_name!r} is not a message type")
        if declared == FieldDescriptor.TYPE_ENUM and kind != KIND_ENUM:
            raise self.error(element, f"{type_name!r} is not an enum type")
        return full_name


class DefPool:
    """Registry of loaded files and the symbols they define."""

    def __init__(self):
        self._files: dict[str, FileDef] = {}
        self._symbols: dict[str, str] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[FileDef]:
        return iter(self._files.values())

    def get(self, name: str) -> Optional[FileDef]:
        return self._files.get(name)

    def lookup(self, full_name: str) -> Optional[str]:
        """Kind of the symbol with this fully-qualified name, or None."""
        return self._symbols.get(full_name)

    def add_file(self, proto: Message) -> FileDef:
        """Validate and register a decoded FileDescriptorProto.

        Raises:
            RegistrationError: If the file is rejected (pool unchanged)
        """
        builder = _FileBuilder(self, proto)
        file_def = builder.build()
        self._files[file_def.name] = file_def
        self._symbols.update(builder.symbols)
        logger.debug(f"DefPool: loaded {file_def.name!r} ({len(file_def.symbols)} symbols)")
        return file_def


__all__ = ["DefPool", "FileDef", "is_identifier", "is_full_identifier"]
