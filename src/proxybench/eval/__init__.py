"""Statistics and reporting."""

from proxybench.eval.stats import RunningStats, RunResult, run_result, summarize

__all__ = ["RunResult", "RunningStats", "run_result", "summarize"]
