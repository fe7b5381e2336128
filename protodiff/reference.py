"""
Reference side - the trusted, fully validating descriptor pool.

Wraps :class:`google.protobuf.descriptor_pool.DescriptorPool`. Each
:class:`ReferenceValidator` keeps its own pool for the lifetime of a run;
accepted files are added in order and never removed, so whether a file is
accepted depends on what was registered before it.

Imports are checked against the files *this validator* accepted before the
library sees the file. With ``enforce_weak_dependencies`` (the default) weak
imports must resolve as well; the library's permissive handling of weak
imports is never relied on.

Rejections are data: every failure becomes a ``Rejected`` outcome carrying
:class:`~protodiff.types.Diagnostic` entries, which are also handed to the
validator's :class:`ErrorCollector`.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterator, Optional

from google.protobuf import descriptor, descriptor_pb2, descriptor_pool
from google.protobuf.message import DecodeError as ProtoDecodeError

from protodiff.types import Accepted, CanonicalForm, Diagnostic, RawDocument, Rejected, ValidationOutcome, as_text

logger = logging.getLogger(__name__)


class ErrorCollector(ABC):
    """Receives diagnostics from the reference validator."""

    @abstractmethod
    def add_error(self, filename: str, element_name: str, message: str) -> None: ...

    def record_warning(self, filename: str, element_name: str, message: str) -> None:
        """Warnings are dropped unless a subclass keeps them."""


class NullErrorCollector(ErrorCollector):
    """Swallows everything. Expected-invalid corpora would otherwise be noisy."""

    def add_error(self, filename: str, element_name: str, message: str) -> None:
        pass


class ListErrorCollector(ErrorCollector):
    """Keeps every error and warning as a Diagnostic."""

    def __init__(self):
        self.errors: list[Diagnostic] = []
        self.warnings: list[Diagnostic] = []

    def add_error(self, filename: str, element_name: str, message: str) -> None:
        self.errors.append(Diagnostic(filename, element_name, message))

    def record_warning(self, filename: str, element_name: str, message: str) -> None:
        self.warnings.append(Diagnostic(filename, element_name, message))


class LoggingErrorCollector(ErrorCollector):
    """Logs errors (and warnings) through the logging module."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self._log = log or logger
        self._level = level

    def add_error(self, filename: str, element_name: str, message: str) -> None:
        self._log.log(self._level, f"reference rejected {filename or '<unnamed>'} [{element_name}]: {message}")

    def record_warning(self, filename: str, element_name: str, message: str) -> None:
        self._log.warning(f"reference warning {filename or '<unnamed>'} [{element_name}]: {message}")


def _parse(data: bytes) -> descriptor_pb2.FileDescriptorProto:
    return descriptor_pb2.FileDescriptorProto.FromString(bytes(data))


def canonicalize(file_desc) -> tuple[descriptor_pb2.FileDescriptorProto, bytes]:
    """Normalized proto and deterministic bytes for a built FileDescriptor.

    The bytes are parsed back, so a form that cannot be represented losslessly
    fails here with DecodeError.
    """
    normalized = descriptor_pb2.FileDescriptorProto()
    file_desc.CopyToProto(normalized)
    data = normalized.SerializeToString(deterministic=True)
    return _parse(data), data


class ReferenceValidator:
    """
    Trusted validator with an accumulated, insert-only pool.

    Example:
        ref = ReferenceValidator()
        outcome = ref.try_register(raw)
        if outcome.accepted:
            canonical = outcome.value  # CanonicalForm
    """

    def __init__(self, enforce_weak_dependencies: bool = True, collector: Optional[ErrorCollector] = None):
        self._enforce_weak = enforce_weak_dependencies
        self._collector = collector if collector is not None else NullErrorCollector()
        self._pool = descriptor_pool.DescriptorPool()
        self._accepted: dict[str, CanonicalForm] = {}

    @property
    def enforce_weak_dependencies(self) -> bool:
        return self._enforce_weak

    @property
    def collector(self) -> ErrorCollector:
        return self._collector

    def __contains__(self, name: str) -> bool:
        return name in self._accepted

    def __len__(self) -> int:
        return len(self._accepted)

    def names(self) -> list[str]:
        """Accepted file names, in registration order."""
        return list(self._accepted)

    def get(self, name: str) -> Optional[CanonicalForm]:
        return self._accepted.get(name)

    def _reject(self, filename: str, element_name: str, message: str) -> Rejected:
        self._collector.add_error(filename, element_name, message)
        logger.debug(f"reference rejected {filename or '<unnamed>'}: {message}")
        return Rejected((Diagnostic(filename, element_name, message),))

    def _check_dependencies(self, proto: descriptor_pb2.FileDescriptorProto) -> Optional[tuple[str, str]]:
        """Returns (element, message) for the first import problem, or None."""
        deps = [as_text(dep) for dep in proto.dependency]
        weak = set()
        for index in proto.weak_dependency:
            if not 0 <= index < len(deps):
                return "", f"Invalid weak dependency index {index}"
            weak.add(index)
        for index in proto.public_dependency:
            if not 0 <= index < len(deps):
                return "", f"Invalid public dependency index {index}"
        for index, dep in enumerate(deps):
            if dep in self._accepted:
                continue
            if index in weak and not self._enforce_weak:
                continue
            kind = "weak import" if index in weak else "import"
            return dep, f"Depends on file {dep!r} ({kind}), but it has not been loaded"
        return None

    def try_register(self, doc: RawDocument) -> ValidationOutcome:
        """Validate ``doc`` against the accumulated pool; register it on success.

        Returns:
            Accepted(CanonicalForm) or Rejected(diagnostics)
        """
        try:
            proto = _parse(doc)
            name = as_text(proto.name)
            problem = self._check_dependencies(proto)
        except (ProtoDecodeError, TypeError, ValueError) as e:
            return self._reject("", "", f"Unparseable FileDescriptorProto: {e}")

        if name in self._accepted:
            return self._reject(name, name, f"File {name!r} already exists in the pool")
        if problem is not None:
            return self._reject(name, *problem)

        try:
            file_desc = self._pool.AddSerializedFile(bytes(doc))
        except (descriptor.Error, TypeError, KeyError, ValueError) as e:
            return self._reject(name, name, str(e) or type(e).__name__)

        try:
            message, data = canonicalize(file_desc)
        except (ProtoDecodeError, ValueError) as e:
            return self._reject(name, name, f"Canonical form does not round-trip: {e}")

        canonical = CanonicalForm(name=name, message=message, data=data)
        self._accepted[name] = canonical
        logger.debug(f"reference accepted {name!r} ({len(data)} canonical bytes)")
        return Accepted(canonical)

    def parse_canonical(self, data: bytes, name: Optional[str] = None) -> CanonicalForm:
        """Decode bytes through the reference codec (used on candidate output).

        Raises:
            google.protobuf.message.DecodeError: If the bytes are not a FileDescriptorProto
        """
        message = _parse(data)
        return CanonicalForm(name=as_text(message.name) if name is None else name, message=message, data=bytes(data))

    def _dependency_closure(self, name: str) -> set[str]:
        closure: set[str] = set()
        entry = self._accepted.get(name)
        stack = [as_text(dep) for dep in entry.message.dependency] if entry is not None else []
        while stack:
            dep = stack.pop()
            if dep in closure or dep not in self._accepted:
                continue
            closure.add(dep)
            stack.extend(as_text(d) for d in self._accepted[dep].message.dependency)
        return closure

    def fork(self, name: Optional[str] = None) -> "ReferenceValidator":
        """Fresh validator seeded from this one's canonical forms.

        With ``name``, only the transitive imports of that file are replayed
        (not the file itself); otherwise the whole pool is.
        """
        clone = ReferenceValidator(self._enforce_weak, NullErrorCollector())
        wanted = self._dependency_closure(name) if name is not None else set(self._accepted)
        for entry in self._iter_entries():
            if entry.name not in wanted:
                continue
            outcome = clone.try_register(entry.data)
            if not outcome.accepted:
                logger.warning(f"fork: canonical form of {entry.name!r} rejected on replay: {outcome.message}")
        return clone

    def _iter_entries(self) -> Iterator[CanonicalForm]:
        return iter(self._accepted.values())


__all__ = [
    "ErrorCollector",
    "NullErrorCollector",
    "ListErrorCollector",
    "LoggingErrorCollector",
    "ReferenceValidator",
    "canonicalize",
]
