"""
Differential oracle - drives the reference and the candidate over a corpus.

Per document:

1. The reference validates the document against its accumulated pool.
2. Rejected: the candidate is fed the same bytes for the side effect only.
   Whatever it decides, the check passes, as long as it does not crash.
3. Accepted: the candidate is fed the reference's canonical bytes.
   a. Candidate rejects -> acceptance-parity failure (unless the file could
      not come from a .proto front-end and that asymmetry is tolerated).
   b. Candidate accepts -> its re-serialized output is decoded by the
      reference codec and compared to the reference canonical form with
      NaN-tolerant equality.

The two pools (reference and candidate) live for the whole run and evolve
independently. Documents are processed strictly in order, one at a time.

A candidate crash ends the run; every other failure is recorded and the run
continues unless ``stop_on_failure`` is set.
"""

import logging
from typing import Iterable, Optional

from google.protobuf.message import DecodeError as ProtoDecodeError

from protodiff.candidate import CandidateAdapter, CandidateBackend, WireBackend
from protodiff.compare import Comparator
from protodiff.config import OracleConfig
from protodiff.errors import CandidateCrash, CandidateError
from protodiff.frontend import frontend_unreachable
from protodiff.reference import ErrorCollector, ReferenceValidator
from protodiff.report import RunReport
from protodiff.types import (
    CanonicalForm,
    DocumentResult,
    RawDocument,
    ResultCallback,
    ValidationOutcome,
    Verdict,
)

logger = logging.getLogger(__name__)


class DifferentialOracle:
    """
    Differential conformance oracle for one corpus run.

    Args:
        candidate: Backend under test (default: WireBackend)
        config: OracleConfig (default: OracleConfig())
        comparator: Canonical comparator (default: NaN-tolerant Comparator)
        collector: ErrorCollector for reference diagnostics (default: swallow)
        reference: Pre-built ReferenceValidator (default: new one from config)
        on_result: Called with each DocumentResult as it is produced

    Example:
        oracle = DifferentialOracle()
        report = oracle.run(corpus.well_known_types())
        assert report.passed, report.summary()
    """

    def __init__(
        self,
        candidate: Optional[CandidateBackend] = None,
        config: Optional[OracleConfig] = None,
        comparator: Optional[Comparator] = None,
        collector: Optional[ErrorCollector] = None,
        reference: Optional[ReferenceValidator] = None,
        on_result: Optional[ResultCallback] = None,
    ):
        self.config = config if config is not None else OracleConfig()
        if reference is None:
            reference = ReferenceValidator(self.config.enforce_weak_dependencies, collector)
        self.reference = reference
        if candidate is None:
            candidate = WireBackend(max_depth=self.config.max_depth)
        self.candidate = CandidateAdapter(candidate)
        self.comparator = comparator if comparator is not None else Comparator()
        self._on_result = on_result

    def check(self, doc: RawDocument, index: int = 0) -> DocumentResult:
        """Run the per-document decision procedure.

        Raises:
            CandidateCrash: If the candidate faulted in an uncontrolled way
        """
        outcome = self.reference.try_register(doc)
        name = _outcome_name(outcome, index)

        with self.candidate.scope():
            if not outcome.accepted:
                self.candidate.try_register(doc, name)
                logger.debug(f"[{index}] {name}: reference rejected ({outcome.message})")
                return DocumentResult(index, name, Verdict.REFERENCE_REJECTED, diagnostics=outcome.diagnostics)

            ref: CanonicalForm = outcome.value
            cand = self.candidate.try_register(ref.data, name)
            if not cand.accepted:
                return self._candidate_rejected(index, name, ref, cand)
            try:
                data = self.candidate.to_bytes(cand)
            except CandidateError as e:
                return self._failed(index, name, Verdict.MISMATCH, detail=f"candidate could not serialize: {e}")

        try:
            round_trip = self.reference.parse_canonical(data, name)
        except (ProtoDecodeError, ValueError) as e:
            return self._failed(index, name, Verdict.MISMATCH, detail=f"reference could not parse candidate output: {e}")

        result = self.comparator.compare(ref, round_trip)
        if not result:
            return self._failed(index, name, Verdict.MISMATCH, diff=result.diff)

        if self.config.check_fixpoint:
            problem = self._check_fixpoint(ref)
            if problem is not None:
                return self._failed(index, name, Verdict.NOT_FIXPOINT, diff=problem)

        logger.debug(f"[{index}] {name}: equal")
        return DocumentResult(index, name, Verdict.EQUAL)

    def _candidate_rejected(
        self, index: int, name: str, ref: CanonicalForm, cand: ValidationOutcome
    ) -> DocumentResult:
        reason = frontend_unreachable(ref.message) if self.config.tolerate_frontend_asymmetry else None
        if reason is not None:
            logger.debug(f"[{index}] {name}: candidate rejected front-end-unreachable file ({reason})")
            return DocumentResult(
                index, name, Verdict.TOLERATED_REJECTION, detail=reason, diagnostics=cand.diagnostics
            )
        return self._failed(
            index, name, Verdict.CANDIDATE_REJECTED, detail=cand.message, diagnostics=cand.diagnostics
        )

    def _check_fixpoint(self, ref: CanonicalForm) -> Optional[str]:
        """Rebuild the canonical bytes in a scratch pool. Returns a diff if they change."""
        scratch = self.reference.fork(ref.name)
        again = scratch.try_register(ref.data)
        if not again.accepted:
            return f"canonical form rejected on rebuild: {again.message}"
        result = self.comparator.compare(ref, again.value)
        return None if result else result.diff

    def _failed(self, index: int, name: str, verdict: Verdict, **kwargs) -> DocumentResult:
        result = DocumentResult(index, name, verdict, **kwargs)
        logger.warning(f"[{index}] {name}: {verdict.value} {result.detail}".rstrip())
        return result

    def run(self, docs: Iterable[RawDocument]) -> RunReport:
        """Check every document in order.

        Hard failures accumulate. A candidate crash is recorded and ends the run.
        """
        report = RunReport()
        for index, doc in enumerate(docs):
            try:
                result = self.check(doc, index)
            except CandidateCrash as e:
                logger.error(f"[{index}] {e}")
                result = DocumentResult(index, e.document or f"#{index}", Verdict.CRASH, detail=str(e))
                report.add(result)
                report.aborted = True
                self._emit(result)
                break
            report.add(result)
            self._emit(result)
            if not result.passed and self.config.stop_on_failure:
                report.stopped_early = True
                break
        logger.info(report.summary())
        return report

    def _emit(self, result: DocumentResult) -> None:
        if self._on_result is not None:
            self._on_result(result)


def _outcome_name(outcome: ValidationOutcome, index: int) -> str:
    name = outcome.value.name if outcome.accepted else outcome.diagnostics[0].filename
    return name or f"#{index}"


def run(docs: Iterable[RawDocument], config: Optional[OracleConfig] = None, **kwargs) -> RunReport:
    """Run a fresh oracle over ``docs``. Extra kwargs go to DifferentialOracle."""
    return DifferentialOracle(config=config, **kwargs).run(docs)


__all__ = ["DifferentialOracle", "run"]
