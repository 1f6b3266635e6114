"""Trial orchestration and load worker handling."""

from proxybench.bench.orchestrator import BenchmarkOrchestrator, TrialResult
from proxybench.bench.worker import WorkerSample, parse_requests_per_second

__all__ = [
    "BenchmarkOrchestrator",
    "TrialResult",
    "WorkerSample",
    "parse_requests_per_second",
]
