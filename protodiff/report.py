"""
Run reports and a JSON-lines result log.

:class:`RunReport` accumulates per-document results for one corpus run.
:class:`ResultLog` is a sink for ``on_result`` that writes one JSON object per
document, for CI artifacts or later triage::

    {"ts": "...", "seq": 1, "index": 0, "name": "a.proto", "verdict": "equal"}
"""

import json
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from protodiff.types import DocumentResult, Verdict


@dataclass
class RunReport:
    """Results of one differential run, in corpus order.

    Attributes:
        results: One DocumentResult per checked document
        aborted: A candidate crash ended the run
        stopped_early: The run stopped at the first hard failure (stop_on_failure)
    """

    results: list[DocumentResult] = field(default_factory=list)
    aborted: bool = False
    stopped_early: bool = False

    def add(self, result: DocumentResult) -> None:
        self.results.append(result)

    def counts(self) -> dict[Verdict, int]:
        return dict(Counter(r.verdict for r in self.results))

    @property
    def failures(self) -> list[DocumentResult]:
        return [r for r in self.results if not r.passed]

    @property
    def crash(self) -> Optional[DocumentResult]:
        for r in self.results:
            if r.verdict.fatal:
                return r
        return None

    @property
    def passed(self) -> bool:
        """True for a conformance pass: no hard failures and no crash."""
        return not self.aborted and not self.failures

    def summary(self) -> str:
        counts = self.counts()
        parts = [f"{v.value}={counts[v]}" for v in Verdict if v in counts]
        status = "PASS" if self.passed else ("ABORTED" if self.aborted else "FAIL")
        return f"{status}: {len(self.results)} documents ({', '.join(parts) or 'none'})"

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "aborted": self.aborted,
            "stopped_early": self.stopped_early,
            "counts": {v.value: n for v, n in self.counts().items()},
            "results": [r.to_dict() for r in self.results],
        }


class ResultLog:
    """JSON-lines sink for document results.

    Args:
        path: Output file path (appended to).
        failures_only: Skip passing results.
        flush_interval: Flush every N writes (default: 1).
    """

    def __init__(self, path: str, failures_only: bool = False, flush_interval: int = 1):
        if flush_interval < 1:
            raise ValueError(f"flush_interval must be >= 1, got {flush_interval}")
        self._path = path
        self._failures_only = failures_only
        self._flush_interval = flush_interval
        self._lock = threading.Lock()
        self._file = None
        self._writes_since_flush = 0
        self._seq = 0

    def __call__(self, result: DocumentResult) -> None:
        self.log(result)

    def log(self, result: DocumentResult) -> None:
        if self._failures_only and result.passed:
            return
        with self._lock:
            self._seq += 1
            entry = {"ts": datetime.now(timezone.utc).isoformat(), "seq": self._seq}
            entry.update(result.to_dict())
            if self._file is None:
                self._file = open(self._path, "a")
            self._file.write(json.dumps(entry, separators=(",", ":")) + "\n")
            self._writes_since_flush += 1
            if self._writes_since_flush >= self._flush_interval:
                self._file.flush()
                self._writes_since_flush = 0

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.flush()
                self._file.close()
                self._file = None

    def __enter__(self) -> "ResultLog":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


__all__ = ["RunReport", "ResultLog"]
