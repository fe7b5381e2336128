"""
Corpus loading and ordering.

A corpus is an ordered list of raw FileDescriptorProto documents. Order is a
correctness-relevant input: a file is only accepted once its imports have been
registered, so ``[b.proto, a.proto]`` where b imports a behaves differently
from ``[a.proto, b.proto]``.

The usual source is a descriptor set written by protoc::

    protoc --include_imports --descriptor_set_out=corpus.pb foo.proto

which already lists files in dependency order.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from google.protobuf import (
    any_pb2,
    api_pb2,
    descriptor_pb2,
    duration_pb2,
    empty_pb2,
    field_mask_pb2,
    source_context_pb2,
    struct_pb2,
    timestamp_pb2,
    type_pb2,
    wrappers_pb2,
)
from google.protobuf.message import DecodeError as ProtoDecodeError

from protodiff.errors import CorpusError
from protodiff.types import RawDocument, as_text

logger = logging.getLogger(__name__)

_WELL_KNOWN_MODULES = (
    any_pb2,
    source_context_pb2,
    type_pb2,
    api_pb2,
    duration_pb2,
    empty_pb2,
    field_mask_pb2,
    struct_pb2,
    timestamp_pb2,
    wrappers_pb2,
    descriptor_pb2,
)


def from_descriptor_set(data: bytes) -> list[RawDocument]:
    """Split a serialized FileDescriptorSet into per-file documents, in set order.

    Raises:
        CorpusError: If data is not a FileDescriptorSet
    """
    try:
        fds = descriptor_pb2.FileDescriptorSet.FromString(data)
    except (ProtoDecodeError, ValueError) as e:
        raise CorpusError(f"Not a FileDescriptorSet: {e}") from e
    return [f.SerializeToString() for f in fds.file]


def to_descriptor_set(docs: Iterable[RawDocument]) -> bytes:
    """Pack documents into a serialized FileDescriptorSet (documents must parse)."""
    fds = descriptor_pb2.FileDescriptorSet()
    for doc in docs:
        fds.file.add().MergeFromString(doc)
    return fds.SerializeToString()


def load(path: Union[str, Path]) -> list[RawDocument]:
    """Read a descriptor-set file (protoc --descriptor_set_out)."""
    p = Path(path)
    try:
        data = p.read_bytes()
    except OSError as e:
        raise CorpusError(f"Cannot read {p}: {e}") from e
    docs = from_descriptor_set(data)
    logger.debug(f"Loaded {len(docs)} documents from {p}")
    return docs


def _parse(doc: RawDocument) -> Optional[descriptor_pb2.FileDescriptorProto]:
    try:
        return descriptor_pb2.FileDescriptorProto.FromString(doc)
    except (ProtoDecodeError, TypeError, ValueError):
        return None


def document_name(doc: RawDocument) -> Optional[str]:
    """The file name declared by a document, or None if it does not parse."""
    proto = _parse(doc)
    return as_text(proto.name) if proto is not None else None


def order_by_dependencies(docs: list[RawDocument]) -> list[RawDocument]:
    """Stable topological sort: every file after the corpus files it imports.

    Imports not present in the corpus are ignored (they will simply fail to
    resolve). Unparseable documents keep their relative position.

    Raises:
        CorpusError: On an import cycle
    """
    protos = [_parse(doc) for doc in docs]
    provider: dict[str, int] = {}
    for i, proto in enumerate(protos):
        if proto is not None:
            provider.setdefault(proto.name, i)

    ordered: list[RawDocument] = []
    done: set[int] = set()
    visiting: list[int] = []

    def visit(i: int) -> None:
        if i in done:
            return
        if i in visiting:
            cycle = [as_text(protos[j].name) for j in visiting[visiting.index(i) :]] + [as_text(protos[i].name)]
            raise CorpusError(f"Import cycle: {' -> '.join(cycle)}")
        visiting.append(i)
        proto = protos[i]
        if proto is not None:
            for dep in proto.dependency:
                j = provider.get(dep)
                if j is not None:
                    visit(j)
        visiting.pop()
        done.add(i)
        ordered.append(docs[i])

    for i in range(len(docs)):
        visit(i)
    return ordered


def well_known_types() -> list[RawDocument]:
    """Descriptors of protobuf's bundled well-known types plus descriptor.proto.

    A ready-made corpus of valid files, in dependency order.
    """
    docs = []
    for module in _WELL_KNOWN_MODULES:
        proto = descriptor_pb2.FileDescriptorProto()
        module.DESCRIPTOR.CopyToProto(proto)
        docs.append(proto.SerializeToString())
    return order_by_dependencies(docs)


__all__ = [
    "from_descriptor_set",
    "to_descriptor_set",
    "load",
    "document_name",
    "order_by_dependencies",
    "well_known_types",
]
