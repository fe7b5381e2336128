"""
protodiff - Differential conformance oracle for protobuf file descriptors.

Checks a lightweight descriptor parser/serializer (the candidate) against
protobuf's own validating DescriptorPool (the reference):

- every file the reference accepts, the candidate must accept too, and its
  re-serialized output must be semantically identical to the reference's
  canonical form (NaN == NaN);
- on files the reference rejects, the candidate may do anything except crash.

Quick start:
    import protodiff
    report = protodiff.run(protodiff.corpus.well_known_types())
    print(report.summary())

    # Or from a protoc descriptor set
    report = protodiff.run(protodiff.corpus.load("corpus.pb"))
"""

import logging

from protodiff import corpus
from protodiff.candidate import CandidateAdapter, CandidateBackend, WireBackend
from protodiff.compare import Comparator, compare
from protodiff.config import OracleConfig
from protodiff.errors import (
    CandidateCrash,
    CandidateError,
    ConfigError,
    CorpusError,
    DecodeError,
    EncodeError,
    RegistrationError,
)
from protodiff.frontend import frontend_unreachable
from protodiff.oracle import DifferentialOracle, run
from protodiff.reference import (
    ErrorCollector,
    ListErrorCollector,
    LoggingErrorCollector,
    NullErrorCollector,
    ReferenceValidator,
)
from protodiff.report import ResultLog, RunReport
from protodiff.types import (
    Accepted,
    CanonicalForm,
    ComparisonResult,
    Diagnostic,
    DocumentResult,
    RawDocument,
    Rejected,
    ResultCallback,
    ValidationOutcome,
    Verdict,
)

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

__all__ = [
    # Types
    "RawDocument",
    "Diagnostic",
    "CanonicalForm",
    "Accepted",
    "Rejected",
    "ValidationOutcome",
    "ComparisonResult",
    "Verdict",
    "DocumentResult",
    "ResultCallback",
    # Exceptions
    "CandidateError",
    "DecodeError",
    "EncodeError",
    "RegistrationError",
    "CandidateCrash",
    "CorpusError",
    "ConfigError",
    # Configuration
    "OracleConfig",
    # Reference
    "ReferenceValidator",
    "ErrorCollector",
    "NullErrorCollector",
    "ListErrorCollector",
    "LoggingErrorCollector",
    # Candidate
    "CandidateBackend",
    "CandidateAdapter",
    "WireBackend",
    # Comparison
    "Comparator",
    "compare",
    "frontend_unreachable",
    # Orchestration
    "DifferentialOracle",
    "run",
    "RunReport",
    "ResultLog",
    # Submodule
    "corpus",
]
