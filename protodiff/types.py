"""
Core data types - outcomes, canonical forms, comparison results and verdicts.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from google.protobuf import descriptor_pb2

# One wire-encoded FileDescriptorProto. Borrowed read-only by both sides.
RawDocument = bytes


def as_text(value: Union[str, bytes]) -> str:
    """Printable form of a descriptor string field.

    The upb backend hands back ``bytes`` for string fields that are not valid
    UTF-8; those are decoded with backslash escapes.
    """
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="backslashreplace")
    return value


@dataclass(frozen=True)
class Diagnostic:
    """A single validation error collected while registering a file."""

    filename: str
    element_name: str
    message: str

    def __str__(self) -> str:
        where = self.filename or "<unnamed>"
        if self.element_name:
            where += f": {self.element_name}"
        return f"{where}: {self.message}"


@dataclass(frozen=True)
class CanonicalForm:
    """Normalized form of an accepted document, used only for comparison.

    Attributes:
        name: File name
        message: Decoded FileDescriptorProto
        data: Deterministic serialization of ``message``
    """

    name: str
    message: "descriptor_pb2.FileDescriptorProto" = field(compare=False, repr=False)
    data: bytes = field(repr=False)


@dataclass(frozen=True)
class Accepted:
    """The pool accepted the document. ``value`` is side-specific."""

    value: Any
    accepted: ClassVar[bool] = True

    @property
    def diagnostics(self) -> tuple:
        return ()


@dataclass(frozen=True)
class Rejected:
    """The pool rejected the document. Never carries an empty diagnostics tuple."""

    diagnostics: tuple[Diagnostic, ...]
    accepted: ClassVar[bool] = False

    def __post_init__(self):
        if not self.diagnostics:
            raise ValueError("Rejected requires at least one diagnostic")

    @property
    def message(self) -> str:
        """First diagnostic, formatted."""
        return str(self.diagnostics[0])


ValidationOutcome = Union[Accepted, Rejected]


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of a canonical comparison. Truthy iff equal."""

    equal: bool
    diff: str = ""

    EQUAL: ClassVar["ComparisonResult"]

    def __bool__(self) -> bool:
        return self.equal

    @classmethod
    def unequal(cls, diff: str) -> "ComparisonResult":
        return cls(equal=False, diff=diff)


ComparisonResult.EQUAL = ComparisonResult(equal=True)


class Verdict(Enum):
    """Terminal state of one document's check.

    Unchecked -> REFERENCE_REJECTED
              -> reference accepted -> CANDIDATE_REJECTED | TOLERATED_REJECTION
                                    -> candidate accepted -> EQUAL | MISMATCH | NOT_FIXPOINT
    CRASH can interrupt any candidate call.
    """

    EQUAL = "equal"
    REFERENCE_REJECTED = "reference-rejected"
    TOLERATED_REJECTION = "tolerated-rejection"
    CANDIDATE_REJECTED = "candidate-rejected"
    MISMATCH = "semantic-mismatch"
    NOT_FIXPOINT = "not-fixpoint"
    CRASH = "candidate-crash"

    @property
    def passed(self) -> bool:
        return self in (Verdict.EQUAL, Verdict.REFERENCE_REJECTED, Verdict.TOLERATED_REJECTION)

    @property
    def fatal(self) -> bool:
        return self is Verdict.CRASH


@dataclass(frozen=True)
class DocumentResult:
    """Verdict for one document plus enough context to localize a defect."""

    index: int
    name: str
    verdict: Verdict
    diff: str = ""
    detail: str = ""
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def passed(self) -> bool:
        return self.verdict.passed

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"index": self.index, "name": self.name, "verdict": self.verdict.value}
        if self.diff:
            out["diff"] = self.diff
        if self.detail:
            out["detail"] = self.detail
        if self.diagnostics:
            out["diagnostics"] = [str(d) for d in self.diagnostics]
        return out


# Reporting hook - called once per checked document, in corpus order
ResultCallback = Callable[[DocumentResult], None]
