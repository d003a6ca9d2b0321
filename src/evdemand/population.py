"""
Population generator for the EV demand engine.

Builds an immutable, heterogeneous population of EV agents. Categorical
attributes use weighted discrete sampling, annual mileage and SOC thresholds
use truncated normals, convenience and time flexibility use Beta
distributions, and charging access is drawn as independent Bernoulli flags.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import truncnorm

from .data_structures import Agent, BehavioralConfig, VehicleConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Stream identifier for the population within the global seed's SeedSequence
POPULATION_STREAM = 0
MAX_SOC_RESAMPLE_ATTEMPTS = 100


def population_rng(seed: int) -> np.random.Generator:
    """Random generator for the population, a pure function of the seed."""
    return np.random.default_rng(
        np.random.SeedSequence(entropy=seed, spawn_key=(POPULATION_STREAM,))
    )


def sample_truncated_normal(
    rng: np.random.Generator,
    mean: float,
    sd: float,
    lower: float,
    upper: float,
    size: int
) -> np.ndarray:
    """
    Draw from a normal distribution truncated to [lower, upper].

    Args:
        rng: Random generator to draw from
        mean: Mean of the untruncated distribution
        sd: Standard deviation of the untruncated distribution
        lower: Lower bound
        upper: Upper bound
        size: Number of draws

    Returns:
        Array of draws within [lower, upper]
    """
    a = (lower - mean) / sd
    b = (upper - mean) / sd
    return truncnorm.rvs(a, b, loc=mean, scale=sd, size=size, random_state=rng)


@dataclass(frozen=True)
class PopulationArrays:
    """
    Column view of a population used by the vectorised sampler.

    Attributes:
        charging_power: Charging power per agent (kW)
        home_access: Home charging access per agent
        work_access: Work charging access per agent
    """
    charging_power: np.ndarray
    home_access: np.ndarray
    work_access: np.ndarray

    @classmethod
    def from_agents(cls, agents: Sequence[Agent]) -> "PopulationArrays":
        return cls(
            charging_power=np.array([a.charging_power for a in agents], dtype=float),
            home_access=np.array([a.home_charging for a in agents], dtype=bool),
            work_access=np.array([a.work_charging for a in agents], dtype=bool),
        )

    def __len__(self) -> int:
        return int(self.charging_power.shape[0])


class PopulationGenerator:
    """
    Generate a heterogeneous EV agent population.

    The generator holds only configuration; all randomness comes from the
    generator passed to generate().

    Attributes:
        vehicle_config: Fleet composition and distribution parameters
        behavioral_config: Behavioural distribution parameters
    """

    def __init__(
        self,
        vehicle_config: Optional[VehicleConfig] = None,
        behavioral_config: Optional[BehavioralConfig] = None
    ):
        self.vehicle_config = vehicle_config or VehicleConfig()
        self.behavioral_config = behavioral_config or BehavioralConfig()

    def generate(self, rng: np.random.Generator) -> Tuple[Agent, ...]:
        """
        Generate exactly num_vehicles agents.

        Args:
            rng: Random generator; the same generator state yields the same
                population

        Returns:
            Tuple of frozen Agent records

        Examples:
            >>> generator = PopulationGenerator(VehicleConfig(num_vehicles=100))
            >>> agents = generator.generate(population_rng(42))
            >>> len(agents)
            100
        """
        vc = self.vehicle_config
        bc = self.behavioral_config
        n = vc.num_vehicles

        type_idx = rng.choice(len(vc.vehicle_types), size=n, p=vc.vehicle_type_probs)
        battery_sizes = rng.choice(vc.battery_sizes, size=n, p=vc.battery_size_probs)
        charging_powers = rng.choice(vc.charging_powers, size=n, p=vc.charging_power_probs)
        efficiency = np.asarray(vc.efficiency, dtype=float)[type_idx]

        annual_mileage = sample_truncated_normal(
            rng,
            vc.annual_mileage_mean,
            vc.annual_mileage_sd,
            vc.annual_mileage_min,
            vc.annual_mileage_max,
            n
        )
        daily_distance = annual_mileage / 365.0

        home_access = rng.random(n) < vc.home_access_prob
        work_access = rng.random(n) < vc.work_access_prob

        soc_start, soc_end = self._sample_soc_thresholds(rng, n)
        convenience = rng.beta(bc.convenience_alpha, bc.convenience_beta, size=n)
        flexibility = rng.beta(bc.flexibility_alpha, bc.flexibility_beta, size=n)

        agents = tuple(
            Agent(
                agent_id=i + 1,
                vehicle_type=vc.vehicle_types[type_idx[i]],
                battery_capacity=float(battery_sizes[i]),
                charging_power=float(charging_powers[i]),
                efficiency=float(efficiency[i]),
                annual_mileage=float(annual_mileage[i]),
                daily_distance=float(daily_distance[i]),
                home_charging=bool(home_access[i]),
                work_charging=bool(work_access[i]),
                soc_start_threshold=float(soc_start[i]),
                soc_end_threshold=float(soc_end[i]),
                convenience_factor=float(convenience[i]),
                time_flexibility=float(flexibility[i])
            )
            for i in range(n)
        )

        stats = describe_population(agents)
        logger.info(
            f"Generated {n:,} agents: "
            f"home access {stats['home_access_pct']:.1f}%, "
            f"work access {stats['work_access_pct']:.1f}%, "
            f"avg battery {stats['avg_battery_kwh']:.1f} kWh"
        )
        return agents

    def _sample_soc_thresholds(
        self,
        rng: np.random.Generator,
        n: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Sample SOC start/end pairs, re-sampling pairs where start >= end."""
        bc = self.behavioral_config
        start = sample_truncated_normal(
            rng, bc.soc_start_mean, bc.soc_start_sd, bc.soc_start_min, bc.soc_start_max, n)
        end = sample_truncated_normal(
            rng, bc.soc_end_mean, bc.soc_end_sd, bc.soc_end_min, bc.soc_end_max, n)

        invalid = np.flatnonzero(start >= end)
        attempts = 0
        while invalid.size > 0:
            attempts += 1
            if attempts > MAX_SOC_RESAMPLE_ATTEMPTS:
                raise ConfigurationError(
                    "SOC thresholds cannot satisfy start < end with the "
                    "configured distributions",
                    {'violations': int(invalid.size)}
                )
            k = invalid.size
            start[invalid] = sample_truncated_normal(
                rng, bc.soc_start_mean, bc.soc_start_sd, bc.soc_start_min, bc.soc_start_max, k)
            end[invalid] = sample_truncated_normal(
                rng, bc.soc_end_mean, bc.soc_end_sd, bc.soc_end_min, bc.soc_end_max, k)
            invalid = invalid[start[invalid] >= end[invalid]]

        if attempts:
            logger.debug(f"Re-sampled SOC thresholds in {attempts} rounds")
        return start, end


def describe_population(agents: Sequence[Agent]) -> Dict[str, float]:
    """
    Summarise a population.

    Returns:
        Dictionary with size, access shares and mean attributes
    """
    n = len(agents)
    if n == 0:
        return {
            'num_agents': 0,
            'home_access_pct': 0.0,
            'work_access_pct': 0.0,
            'avg_battery_kwh': 0.0,
            'avg_charging_power_kw': 0.0,
            'avg_daily_distance_km': 0.0,
        }
    return {
        'num_agents': n,
        'home_access_pct': 100.0 * sum(a.home_charging for a in agents) / n,
        'work_access_pct': 100.0 * sum(a.work_charging for a in agents) / n,
        'avg_battery_kwh': sum(a.battery_capacity for a in agents) / n,
        'avg_charging_power_kw': sum(a.charging_power for a in agents) / n,
        'avg_daily_distance_km': sum(a.daily_distance for a in agents) / n,
    }


def generate_population(
    vehicle_config: Optional[VehicleConfig] = None,
    behavioral_config: Optional[BehavioralConfig] = None,
    seed: int = 42
) -> Tuple[Agent, ...]:
    """
    Convenience function to generate a population from a global seed.

    Examples:
        >>> from evdemand.population import generate_population
        >>> agents = generate_population(VehicleConfig(num_vehicles=50), seed=42)
    """
    generator = PopulationGenerator(vehicle_config, behavioral_config)
    return generator.generate(population_rng(seed))
