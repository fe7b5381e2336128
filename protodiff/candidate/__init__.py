"""
Candidate side - the descriptor implementation under test.

A candidate is anything implementing :class:`CandidateBackend`. The bundled
:class:`WireBackend` is a lightweight pure-Python implementation: a
table-driven wire codec (:mod:`protodiff.candidate.wire`) plus an append-only
definition pool (:mod:`protodiff.candidate.defpool`).

:class:`CandidateAdapter` is what the oracle talks to. It turns every
candidate result into a tagged outcome:

- controlled failures (:class:`~protodiff.errors.CandidateError`) become
  ``Rejected`` outcomes,
- anything else that escapes the backend becomes
  :class:`~protodiff.errors.CandidateCrash`.

Usage:
    adapter = CandidateAdapter(WireBackend())
    with adapter.scope():
        outcome = adapter.try_register(raw_bytes, name="foo.proto")
        if outcome.accepted:
            data = adapter.to_bytes(outcome)
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from protodiff.errors import CandidateCrash, CandidateError, RegistrationError
from protodiff.types import Accepted, Diagnostic, Rejected, ValidationOutcome
from protodiff.candidate import wire
from protodiff.candidate.defpool import DefPool, FileDef

logger = logging.getLogger(__name__)


class CandidateBackend(ABC):
    """
    Abstract base class for candidate implementations.

    Controlled failures must be raised as CandidateError (or a subclass).
    Any other exception is treated as a crash.
    """

    name = "abstract"

    @abstractmethod
    def arena(self) -> Any:
        """Return a new allocation scope (a context manager) for one document."""
        ...

    @abstractmethod
    def parse(self, data: bytes, arena: Any) -> Any:
        """Decode raw bytes into the backend's parsed representation."""
        ...

    @abstractmethod
    def register(self, parsed: Any) -> Any:
        """Register a parsed file into the backend's pool. Returns a handle owned by the pool."""
        ...

    @abstractmethod
    def serialize(self, registered: Any) -> bytes:
        """Re-encode a registered file from the backend's internal model."""
        ...


class WireBackend(CandidateBackend):
    """Pure-Python candidate: table-driven wire codec plus DefPool."""

    name = "wire"

    def __init__(self, max_depth: int = wire.DEFAULT_MAX_DEPTH):
        self.pool = DefPool()
        self.max_depth = max_depth

    def arena(self) -> wire.Arena:
        return wire.Arena()

    def parse(self, data: bytes, arena: wire.Arena) -> wire.Message:
        return wire.decode(data, wire.file_table(), arena, self.max_depth)

    def register(self, parsed: wire.Message) -> FileDef:
        return self.pool.add_file(parsed)

    def serialize(self, registered: FileDef) -> bytes:
        return wire.encode(registered.to_proto())


class CandidateAdapter:
    """Drives a CandidateBackend, translating its results into outcomes.

    Each document check runs inside one :meth:`scope`, which owns the arena
    for that document and releases it on every exit path.
    """

    def __init__(self, backend: CandidateBackend):
        self._backend = backend
        self._arena: Optional[Any] = None

    @property
    def backend(self) -> CandidateBackend:
        return self._backend

    @contextmanager
    def scope(self) -> Iterator[Any]:
        """Open the per-document arena scope."""
        if self._arena is not None:
            raise RuntimeError("candidate scope already open")
        try:
            arena = self._backend.arena()
        except Exception as e:
            # Any failure to open a scope is a crash, CandidateError included
            raise CandidateCrash("", "arena", e) from e
        self._arena = arena
        try:
            with arena:
                yield arena
        finally:
            self._arena = None

    def _call(self, stage: str, name: str, fn: Callable, *args) -> Any:
        try:
            return fn(*args)
        except CandidateError:
            raise
        except Exception as e:
            raise CandidateCrash(name, stage, e) from e

    def try_register(self, doc: bytes, name: str = "") -> ValidationOutcome:
        """Parse and register one document.

        Returns:
            Accepted(handle) or Rejected(diagnostics)

        Raises:
            CandidateCrash: If the backend failed in an uncontrolled way
        """
        if self._arena is None:
            with self.scope():
                return self.try_register(doc, name)
        try:
            parsed = self._call("parse", name, self._backend.parse, doc, self._arena)
            registered = self._call("register", name, self._backend.register, parsed)
        except CandidateError as e:
            logger.debug(f"candidate rejected {name or '<unnamed>'}: {e}")
            return Rejected((_diagnostic(name, e),))
        return Accepted(registered)

    def to_bytes(self, accepted: Any) -> bytes:
        """Re-serialize an accepted document (an ``Accepted`` outcome or its value).

        Raises:
            CandidateError: If the backend reports a controlled serialization failure
            CandidateCrash: On any uncontrolled failure or a non-bytes result
        """
        registered = accepted.value if isinstance(accepted, Accepted) else accepted
        name = getattr(registered, "name", "")
        data = self._call("serialize", name, self._backend.serialize, registered)
        if not isinstance(data, (bytes, bytearray)):
            raise CandidateCrash(name, "serialize", TypeError(f"serialize returned {type(data).__name__}"))
        return bytes(data)


def _diagnostic(name: str, error: CandidateError) -> Diagnostic:
    if isinstance(error, RegistrationError):
        return Diagnostic(error.filename or name, error.element_name, error.message)
    return Diagnostic(name, "", error.message)


__all__ = ["CandidateBackend", "WireBackend", "CandidateAdapter"]
