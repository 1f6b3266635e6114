from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

from proxybench.errors import StatisticsError, UndefinedStddevError


class RunningStats:
    """Welford's online mean and variance."""

    def __init__(self) -> None:
        self._count = 0
        self._mean = 0.0
        self._m2 = 0.0

    @property
    def count(self) -> int:
        return self._count

    def push(self, value: float) -> None:
        x = float(value)
        if not math.isfinite(x):
            raise StatisticsError(f"sample is not finite: {value!r}")
        self._count += 1
        delta = x - self._mean
        self._mean += delta / self._count
        self._m2 += delta * (x - self._mean)

    def extend(self, values: Iterable[float]) -> None:
        for value in values:
            self.push(value)

    @property
    def mean(self) -> float:
        if self._count == 0:
            raise StatisticsError("mean of zero samples")
        return self._mean

    @property
    def variance(self) -> float:
        # sample variance, divisor n - 1
        if self._count < 2:
            raise UndefinedStddevError(
                f"sample standard deviation is undefined for {self._count} trial(s); need at least 2"
            )
        return self._m2 / (self._count - 1)

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)


@dataclass(frozen=True)
class RunResult:
    aggregates: Tuple[float, ...]
    mean: float
    stddev: float


def summarize(samples: Iterable[float]) -> Tuple[float, float]:
    stats = RunningStats()
    stats.extend(samples)
    return stats.mean, stats.stddev


def run_result(aggregates: Iterable[float]) -> RunResult:
    values = tuple(float(v) for v in aggregates)
    mean, stddev = summarize(values)
    return RunResult(aggregates=values, mean=mean, stddev=stddev)
