"""
Scenario builder for Monte Carlo replications.

Each Scenario references the shared agent population and owns a random
stream that is a pure function of (global seed, replication index), so
results never depend on wall-clock time, worker identity or scheduling
order.

Random generator: numpy PCG64, seeded with
SeedSequence(entropy=global_seed, spawn_key=(1, replication_index)).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .data_structures import Agent, EVDemandConfig, ScenarioState, check_transition

logger = logging.getLogger(__name__)

REPLICATION_STREAM = 1


def replication_seed_sequence(seed: int, replication_index: int) -> np.random.SeedSequence:
    """SeedSequence of one replication, independent of execution order."""
    return np.random.SeedSequence(
        entropy=seed, spawn_key=(REPLICATION_STREAM, replication_index)
    )


@dataclass
class Scenario:
    """
    One Monte Carlo replication descriptor.

    Attributes:
        replication_index: Index of the replication (0-based)
        agents: Shared, immutable agent population
        seed: Global random seed
        days: Simulated days
        time_resolution: Bucket length in minutes
        state: Current lifecycle state
    """
    replication_index: int
    agents: Tuple[Agent, ...]
    seed: int
    days: int
    time_resolution: int
    state: ScenarioState = ScenarioState.CREATED
    history: List[ScenarioState] = field(default_factory=list, repr=False)

    def rng(self) -> np.random.Generator:
        """Fresh generator for this replication's random stream."""
        return np.random.Generator(
            np.random.PCG64(replication_seed_sequence(self.seed, self.replication_index))
        )

    def advance(self, target: ScenarioState) -> None:
        """Move to the next lifecycle state; back-transitions are rejected."""
        self.state = check_transition(self.state, target, self.replication_index)
        self.history.append(target)

    @property
    def fleet_size(self) -> int:
        return len(self.agents)

    @property
    def buckets_per_day(self) -> int:
        return 24 * 60 // self.time_resolution

    def __repr__(self) -> str:
        return (f"Scenario(run={self.replication_index}, agents={len(self.agents)}, "
                f"days={self.days}, state={self.state.value})")


class ScenarioBuilder:
    """
    Create the Monte Carlo replication descriptors for a run.

    Attributes:
        config: Engine configuration
    """

    def __init__(self, config: Optional[EVDemandConfig] = None):
        self.config = config or EVDemandConfig()

    def build(
        self,
        agents: Sequence[Agent],
        n_runs: Optional[int] = None
    ) -> List[Scenario]:
        """
        Build one Scenario per replication.

        Args:
            agents: Shared population
            n_runs: Number of replications (defaults to monte_carlo_runs)

        Returns:
            Scenarios ordered by replication index
        """
        sim = self.config.simulation
        n_runs = sim.monte_carlo_runs if n_runs is None else n_runs
        population = tuple(agents)

        scenarios = [
            Scenario(
                replication_index=i,
                agents=population,
                seed=sim.random_seed,
                days=sim.days,
                time_resolution=sim.time_resolution
            )
            for i in range(n_runs)
        ]
        logger.info(
            f"Built {n_runs} scenarios for {len(population):,} agents "
            f"({sim.days} days at {sim.time_resolution} min)"
        )
        return scenarios
