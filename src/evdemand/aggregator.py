"""
Monte Carlo aggregator.

Combines per-replication adjusted series into summary statistics using a
streaming reduction: per-series means and peaks are accumulated with
Welford's online algorithm, extremes with running max/min, and the mean
profile with a running sum. Partial aggregators combine with merge()
(Chan et al. pairwise update), so replications can be reduced in any
grouping. Confidence intervals use the normal approximation across
replications.
"""

import logging
import math
from typing import Optional

import numpy as np
from scipy.stats import norm

from .data_structures import ScenarioResult, SimulationSummary
from .errors import FatalError
from .utils import hour_of_day_profile

logger = logging.getLogger(__name__)


class RunningMoments:
    """Online mean and variance (Welford), mergeable (Chan et al.)."""

    def __init__(self):
        self.count = 0
        self.mean = 0.0
        self.m2 = 0.0

    def add(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)

    def merge(self, other: "RunningMoments") -> None:
        if other.count == 0:
            return
        if self.count == 0:
            self.count, self.mean, self.m2 = other.count, other.mean, other.m2
            return
        total = self.count + other.count
        delta = other.mean - self.mean
        self.mean += delta * other.count / total
        self.m2 += other.m2 + delta * delta * self.count * other.count / total
        self.count = total

    @property
    def variance(self) -> float:
        """Sample variance (0 for fewer than two values)."""
        if self.count < 2:
            return 0.0
        return self.m2 / (self.count - 1)

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    def __repr__(self) -> str:
        return f"RunningMoments(n={self.count}, mean={self.mean:.4f}, std={self.std:.4f})"


class MonteCarloAggregator:
    """
    Streaming reduction of replication results.

    Attributes:
        time_resolution: Bucket length in minutes
        confidence_level: Confidence level of the summary interval
        ci_target: Statistic the interval is computed for ("peak" or "mean")
        failed_runs: Number of replications excluded after a failure
    """

    def __init__(
        self,
        time_resolution: int = 15,
        confidence_level: float = 0.95,
        ci_target: str = "peak"
    ):
        self.time_resolution = time_resolution
        self.confidence_level = confidence_level
        self.ci_target = ci_target
        self.failed_runs = 0

        self._means = RunningMoments()
        self._peaks = RunningMoments()
        self._fc_sum = 0.0
        self._max = -math.inf
        self._min = math.inf
        self._profile_sum: Optional[np.ndarray] = None

    @property
    def count(self) -> int:
        """Number of aggregated replications."""
        return self._means.count

    def add(self, result: ScenarioResult) -> None:
        """
        Fold one replication into the running statistics.

        Args:
            result: Replication result with its adjusted series
        """
        series = result.adjusted_series
        if series is None:
            raise ValueError(
                f"replication {result.replication_index} has no adjusted series")

        self._means.add(result.mean_demand)
        self._peaks.add(result.peak_demand)
        self._fc_sum += result.coincidence_factor
        self._max = max(self._max, result.peak_demand)
        self._min = min(self._min, result.min_demand)

        if self._profile_sum is None:
            self._profile_sum = np.array(series, dtype=float)
        else:
            self._profile_sum += series

        logger.debug(
            f"Aggregated run {result.replication_index}: "
            f"peak={result.peak_demand:.2f}kW mean={result.mean_demand:.2f}kW"
        )

    def record_failure(self) -> None:
        self.failed_runs += 1

    def merge(self, other: "MonteCarloAggregator") -> "MonteCarloAggregator":
        """
        Combine another partial aggregator into this one.

        Returns:
            self, for chaining
        """
        self._means.merge(other._means)
        self._peaks.merge(other._peaks)
        self._fc_sum += other._fc_sum
        self._max = max(self._max, other._max)
        self._min = min(self._min, other._min)
        self.failed_runs += other.failed_runs
        if other._profile_sum is not None:
            if self._profile_sum is None:
                self._profile_sum = other._profile_sum.copy()
            else:
                self._profile_sum = self._profile_sum + other._profile_sum
        return self

    def mean_profile(self) -> np.ndarray:
        """Mean adjusted series across aggregated replications."""
        if self._profile_sum is None:
            return np.zeros(0)
        return self._profile_sum / self.count

    def confidence_interval(self):
        """
        Normal-approximation interval for the configured target.

        Returns:
            (lower, upper); the lower bound is clipped at zero
        """
        moments = self._peaks if self.ci_target == "peak" else self._means
        z = float(norm.ppf((1.0 + self.confidence_level) / 2.0))
        half_width = z * moments.std / math.sqrt(moments.count) if moments.count else 0.0
        return max(0.0, moments.mean - half_width), moments.mean + half_width

    def summarize(self, total_runs: Optional[int] = None) -> SimulationSummary:
        """
        Finalise the summary statistics.

        Args:
            total_runs: Replications attempted (defaults to aggregated + failed)

        Raises:
            FatalError: If no replication was aggregated
        """
        n = self.count
        if n == 0:
            raise FatalError("no successful replications to summarize",
                             {'failed_runs': self.failed_runs})

        mean_demand = self._means.mean
        peak = self._max
        ci_lower, ci_upper = self.confidence_interval()

        hourly = hour_of_day_profile(self.mean_profile(), self.time_resolution)

        return SimulationSummary(
            total_runs=total_runs if total_runs is not None else n + self.failed_runs,
            successful_runs=n,
            failed_runs=self.failed_runs,
            mean_daily_demand=mean_demand,
            peak_demand=peak,
            min_demand=self._min,
            load_factor=mean_demand / peak if peak > 0 else 0.0,
            std_dev=self._peaks.std,
            ci_lower=ci_lower,
            ci_upper=ci_upper,
            ci_target=self.ci_target,
            confidence_level=self.confidence_level,
            avg_coincidence_factor=self._fc_sum / n,
            peak_hour=int(np.argmax(hourly)),
            valley_hour=int(np.argmin(hourly))
        )

    def __repr__(self) -> str:
        return (f"MonteCarloAggregator(runs={self.count}, failed={self.failed_runs}, "
                f"peak={self._max:.2f}kW)")
