"""
Dynamic coincidence factor.

FC(n) = 0.222 + 0.036 * exp(-0.0003 * n), n = fleet size. FC lies in
(0.222, 0.258] and decreases strictly with n; multiplying the naively summed
demand by FC accounts for non-simultaneous charging.
"""

import math
from typing import Tuple

import numpy as np

from .errors import ConfigurationError

FC_BASE = 0.222
FC_AMPLITUDE = 0.036
FC_DECAY = 0.0003


def coincidence_factor(fleet_size: float) -> float:
    """
    Coincidence factor for a fleet of the given size.

    Examples:
        >>> round(coincidence_factor(1000), 4)
        0.2487
    """
    if fleet_size < 0 or not math.isfinite(fleet_size):
        raise ConfigurationError(
            "fleet size must be a nonnegative number", {'fleet_size': fleet_size})
    return FC_BASE + FC_AMPLITUDE * math.exp(-FC_DECAY * fleet_size)


class CoincidenceAdjuster:
    """
    Apply the coincidence factor to raw aggregate series.

    Attributes:
        fleet_size: Number of vehicles in the simulated fleet
        factor: Coincidence factor for fleet_size
    """

    def __init__(self, fleet_size: int):
        self.fleet_size = fleet_size
        self.factor = coincidence_factor(fleet_size)

    def adjust(self, raw_series: np.ndarray) -> Tuple[np.ndarray, float]:
        """
        Scale every bucket by the coincidence factor.

        Returns:
            (adjusted series, factor)
        """
        return np.asarray(raw_series, dtype=float) * self.factor, self.factor

    def __repr__(self) -> str:
        return f"CoincidenceAdjuster(n={self.fleet_size}, FC={self.factor:.4f})"
