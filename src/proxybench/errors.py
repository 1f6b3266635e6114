"""
Exception types for proxybench.

Fatal categories propagate to the command line entry point, which logs them
and exits non-zero after cleanup has run.
"""

from __future__ import annotations


class BenchError(Exception):
    """Base exception for all proxybench errors."""


class ConfigError(BenchError):
    """Invalid or inconsistent benchmark configuration."""


class CommandError(BenchError):
    """An external command exited non-zero."""

    def __init__(self, argv: list[str], returncode: int, output: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.output = output
        msg = f"command failed ({returncode}): {' '.join(self.argv)}"
        if output.strip():
            msg += f"\n{output.strip()}"
        super().__init__(msg)


class PreconditionError(BenchError):
    """The host cannot run the benchmark (missing tool, kernel flag, CPUs)."""


class ProvisioningError(BenchError):
    """Namespace, link or service creation failed."""


class ReachabilityError(BenchError):
    """The topology failed an end-to-end sanity check."""

    def __init__(self, reasons: list[str]) -> None:
        self.reasons = list(reasons)
        lines = "\n".join(f"  - {r}" for r in self.reasons)
        super().__init__(f"sanity check failed:\n{lines}")


class MeasurementError(BenchError):
    """A load worker produced no usable throughput figure."""


class StatisticsError(BenchError):
    """Statistics requested over too few samples."""


class UndefinedStddevError(StatisticsError):
    """Sample standard deviation needs at least two samples."""
