"""
Charging event sampler.

For every agent and simulated day, evaluates up to three candidate sessions
(home, work, public). A candidate is accepted when the agent has access to
the location and a Bernoulli draw against the location's daily charging
probability succeeds. Accepted sessions get a Normal start hour clipped to
[0, 24], a Weibull duration and the agent's charging power.

Draw order per replication is fixed: for each day, for each SessionKind in
declaration order, one uniform, one normal and one Weibull draw per agent.
"""

import logging
from typing import List, Optional

import numpy as np

from .data_structures import (
    ChargingConfig,
    ChargingSession,
    SessionBatch,
    SessionKind,
)
from .errors import ConfigurationError
from .population import PopulationArrays

logger = logging.getLogger(__name__)


class ChargingEventSampler:
    """
    Sample charging sessions for a population.

    Attributes:
        charging_config: Per-location charging parameters
    """

    def __init__(self, charging_config: Optional[ChargingConfig] = None):
        self.charging_config = charging_config or ChargingConfig()
        self.validate_parameters()

    def validate_parameters(self) -> None:
        """
        Re-check all distribution parameters before any sampling.

        Raises:
            ConfigurationError: If a parameter is out of range
        """
        self.charging_config.validate()

    def _access(self, kind: SessionKind, population: PopulationArrays) -> np.ndarray:
        if kind is SessionKind.HOME:
            return population.home_access
        if kind is SessionKind.WORK:
            return population.work_access
        return np.ones(len(population), dtype=bool)

    def sample(
        self,
        population: PopulationArrays,
        days: int,
        rng: np.random.Generator
    ) -> List[SessionBatch]:
        """
        Sample all sessions of one replication.

        Args:
            population: Column view of the agent population
            days: Number of simulated days
            rng: The replication's random generator

        Returns:
            One SessionBatch per (day, kind), possibly empty
        """
        if days < 1:
            raise ConfigurationError("days must be at least 1", {'days': days})

        n = len(population)
        batches = []
        for day in range(days):
            for kind in SessionKind:
                params = self.charging_config.params(kind)
                u = rng.random(n)
                starts = rng.normal(params.start_mean, params.start_sd, size=n)
                durations = rng.weibull(params.duration_shape, size=n) * params.duration_scale

                accepted = self._access(kind, population) & (u < params.probability)
                idx = np.flatnonzero(accepted)
                batches.append(SessionBatch(
                    day=day,
                    kind=kind,
                    agent_indices=idx,
                    start_hours=np.clip(starts[idx], 0.0, 24.0),
                    duration_hours=durations[idx],
                    power_kw=population.charging_power[idx]
                ))

        total = sum(len(b) for b in batches)
        logger.debug(f"Sampled {total} sessions for {n} agents over {days} days")
        return batches

    def sample_agent_day(
        self,
        agent_index: int,
        population: PopulationArrays,
        day: int,
        rng: np.random.Generator
    ) -> List[ChargingSession]:
        """
        Sample the sessions of a single agent on a single day.

        Returns:
            Zero to three sessions, one per accepted location
        """
        sessions = []
        for kind in SessionKind:
            params = self.charging_config.params(kind)
            u = rng.random()
            start = rng.normal(params.start_mean, params.start_sd)
            duration = rng.weibull(params.duration_shape) * params.duration_scale

            has_access = bool(self._access(kind, population)[agent_index])
            if has_access and u < params.probability:
                sessions.append(ChargingSession(
                    agent_index=agent_index,
                    day=day,
                    kind=kind,
                    start_hour=float(np.clip(start, 0.0, 24.0)),
                    duration_hours=float(duration),
                    power_kw=float(population.charging_power[agent_index])
                ))
        return sessions


def batches_to_sessions(batches: List[SessionBatch]) -> List[ChargingSession]:
    """Flatten session batches into ChargingSession records."""
    sessions = []
    for batch in batches:
        sessions.extend(batch.sessions())
    return sessions
