import logging

import protodiff
from protodiff import corpus
from protodiff.reference import LoggingErrorCollector

logging.basicConfig(level=logging.DEBUG, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

# This example checks the bundled candidate against protobuf's own pool, first on
# the well-known types (all must come out equal), then on the same files in
# reverse order, where every file with an unloaded import is rejected by the
# reference and the candidate only has to survive it.

docs = corpus.well_known_types()

report = protodiff.run(docs, config=protodiff.OracleConfig(check_fixpoint=True))
print("in order:", report.summary())

with protodiff.ResultLog("reversed.jsonl") as log:
    oracle = protodiff.DifferentialOracle(collector=LoggingErrorCollector(), on_result=log)
    report = oracle.run(list(reversed(docs)))
print("reversed:", report.summary())
for result in report.results:
    print(f"  {result.name}: {result.verdict.value}")
