from __future__ import annotations

import math

import pytest

from proxybench.errors import StatisticsError, UndefinedStddevError
from proxybench.eval.stats import RunningStats, run_result, summarize


def test_three_trial_summary() -> None:
    mean, stddev = summarize([9800.0, 10050.0, 9900.0])
    assert mean == pytest.approx(9916.6667, abs=1e-3)
    assert round(stddev, 2) == 125.83


def test_identical_trials_have_zero_stddev() -> None:
    result = run_result([1500.0, 1500.0, 1500.0])
    assert result.aggregates == (1500.0, 1500.0, 1500.0)
    assert result.mean == 1500.0
    assert result.stddev == 0.0


def test_single_trial_stddev_is_undefined() -> None:
    stats = RunningStats()
    stats.push(12345.0)
    assert stats.mean == 12345.0
    with pytest.raises(UndefinedStddevError):
        _ = stats.stddev
    with pytest.raises(StatisticsError):
        run_result([12345.0])


def test_empty_input_has_no_mean() -> None:
    with pytest.raises(StatisticsError):
        _ = RunningStats().mean


def test_large_offset_is_numerically_stable() -> None:
    stats = RunningStats()
    stats.extend(1e9 + x for x in (4.0, 7.0, 13.0, 16.0))
    assert stats.count == 4
    assert stats.mean == pytest.approx(1e9 + 10.0)
    assert stats.variance == pytest.approx(30.0)


@pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
def test_non_finite_samples_are_rejected(bad: float) -> None:
    stats = RunningStats()
    stats.push(1.0)
    with pytest.raises(StatisticsError):
        stats.push(bad)
    assert stats.count == 1
