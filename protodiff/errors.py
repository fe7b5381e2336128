"""
Exceptions for protodiff.

Candidate failures come in two flavours. A :class:`CandidateError` is a
*controlled* rejection: the candidate looked at the input and said no. A
:class:`CandidateCrash` means something else escaped a candidate entry point
(IndexError, RecursionError, ...), which is the bug class this package exists
to catch and ends the run.

Reference rejections are never raised to callers; the reference adapter
turns them into ``Rejected`` outcomes.
"""

from typing import Optional


class CandidateError(Exception):
    """Controlled failure reported by the candidate implementation."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class DecodeError(CandidateError):
    """Malformed wire bytes.

    Attributes:
        offset: Byte offset where decoding failed (None if unknown)
    """

    def __init__(self, message: str, offset: Optional[int] = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at byte {offset})"
        super().__init__(message)


class EncodeError(CandidateError):
    """The candidate's internal model could not be serialized."""


class RegistrationError(CandidateError):
    """The candidate pool refused a file.

    Attributes:
        filename: File being registered
        element_name: Fully-qualified element the error refers to ("" for file-level)
    """

    def __init__(self, filename: str, element_name: str, message: str):
        self.filename = filename
        self.element_name = element_name
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"RegistrationError(filename={self.filename!r}, element_name={self.element_name!r}, "
            f"message={self.message!r})"
        )


class CandidateCrash(Exception):
    """An uncontrolled fault escaped a candidate entry point.

    Fatal to the run. The original exception is chained via ``__cause__``.

    Attributes:
        document: Name of the document being processed ("" if unknown)
        stage: Entry point that faulted: "arena", "parse", "register" or "serialize"
        error: The original exception
    """

    def __init__(self, document: str, stage: str, error: BaseException):
        self.document = document
        self.stage = stage
        self.error = error
        super().__init__(f"candidate crashed during {stage} of {document or '<unnamed>'}: {type(error).__name__}: {error}")

    def __repr__(self) -> str:
        return f"CandidateCrash(document={self.document!r}, stage={self.stage!r}, error={self.error!r})"


class CorpusError(Exception):
    """Raised when a corpus cannot be loaded or ordered."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(ValueError):
    """Invalid configuration value or environment variable."""
