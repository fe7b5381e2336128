"""protodiff-check -- Run the differential oracle over descriptor-set files."""

import argparse
import json
import logging
import sys
from typing import Optional

from protodiff import corpus
from protodiff.config import OracleConfig
from protodiff.errors import ConfigError, CorpusError
from protodiff.oracle import DifferentialOracle
from protodiff.report import ResultLog, RunReport

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE_ERROR = 2
EXIT_CRASH = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="protodiff-check",
        description="Check a candidate descriptor implementation against the protobuf reference",
    )
    parser.add_argument("paths", nargs="*", metavar="DESCRIPTOR_SET", help="FileDescriptorSet file(s)")
    parser.add_argument("--well-known", action="store_true", help="also check protobuf's well-known types")
    parser.add_argument("--order", action="store_true", help="sort files so imports come first")
    parser.add_argument("--stop-on-failure", action="store_true", default=None, help="stop at the first failure")
    parser.add_argument("--check-fixpoint", action="store_true", default=None, help="also check canonical fixpoint")
    parser.add_argument(
        "--format", dest="output_format", choices=("text", "json"), default="text", help="output format"
    )
    parser.add_argument("--log", default=None, metavar="PATH", help="append per-document results as JSON lines")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="verbose output (repeat for debug)")
    return parser


def format_report(report: RunReport, fmt: str = "text") -> str:
    if fmt == "json":
        return json.dumps(report.to_dict(), indent=2)
    lines = []
    for result in report.failures:
        lines.append(f"{result.verdict.value.upper()} [{result.index}] {result.name}")
        if result.detail:
            lines.append(f"  {result.detail}")
        for diff_line in result.diff.splitlines():
            lines.append(f"  {diff_line}")
    lines.append(report.summary())
    return "\n".join(lines)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING if args.verbose == 0 else (logging.INFO if args.verbose == 1 else logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if not args.paths and not args.well_known:
        print("Error: give at least one descriptor set or --well-known", file=sys.stderr)
        return EXIT_USAGE_ERROR

    overrides = {}
    if args.stop_on_failure is not None:
        overrides["stop_on_failure"] = args.stop_on_failure
    if args.check_fixpoint is not None:
        overrides["check_fixpoint"] = args.check_fixpoint
    try:
        config = OracleConfig.from_env(**overrides)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    try:
        docs = corpus.well_known_types() if args.well_known else []
        for path in args.paths:
            docs.extend(corpus.load(path))
        if args.order:
            docs = corpus.order_by_dependencies(docs)
    except CorpusError as e:
        print(f"Corpus error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    log = ResultLog(args.log) if args.log else None
    try:
        oracle = DifferentialOracle(config=config, on_result=log)
        report = oracle.run(docs)
    except KeyboardInterrupt:
        return 130
    finally:
        if log is not None:
            log.close()

    print(format_report(report, args.output_format))
    if report.aborted:
        return EXIT_CRASH
    return EXIT_OK if report.passed else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
