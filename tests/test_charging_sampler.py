"""
Tests for the charging event sampler.

This module tests:
- Batch layout per (day, location)
- Access gating and charging probabilities
- Start-time clipping and session attributes
- Determinism for a fixed generator state
"""

import numpy as np
import pytest

from evdemand import (
    ChargingConfig,
    ChargingEventSampler,
    ConfigurationError,
    LocationParams,
    PopulationArrays,
    SessionKind,
    VehicleConfig,
    generate_population,
)
from evdemand.charging_sampler import batches_to_sessions


def make_population(n: int = 500, seed: int = 1, **vehicle_kwargs) -> PopulationArrays:
    """Helper to build a column view of a fresh population."""
    agents = generate_population(VehicleConfig(num_vehicles=n, **vehicle_kwargs), seed=seed)
    return PopulationArrays.from_agents(agents)


class TestChargingEventSampler:
    """Tests for ChargingEventSampler.sample()."""

    def setup_method(self):
        """Set up test fixtures."""
        self.population = make_population()
        self.sampler = ChargingEventSampler()

    def test_batch_layout(self):
        """Test one batch per day and location in draw order."""
        batches = self.sampler.sample(self.population, days=3, rng=np.random.default_rng(0))

        assert len(batches) == 9
        expected = [(d, k) for d in range(3) for k in SessionKind]
        assert [(b.day, b.kind) for b in batches] == expected

    def test_deterministic_for_generator_state(self):
        first = self.sampler.sample(self.population, 2, np.random.default_rng(5))
        second = self.sampler.sample(self.population, 2, np.random.default_rng(5))

        for a, b in zip(first, second):
            np.testing.assert_array_equal(a.agent_indices, b.agent_indices)
            np.testing.assert_array_equal(a.start_hours, b.start_hours)
            np.testing.assert_array_equal(a.duration_hours, b.duration_hours)

    def test_access_gating(self):
        """Test that home/work sessions only go to agents with access."""
        batches = self.sampler.sample(self.population, 5, np.random.default_rng(2))
        for batch in batches:
            if batch.kind is SessionKind.HOME:
                assert self.population.home_access[batch.agent_indices].all()
            elif batch.kind is SessionKind.WORK:
                assert self.population.work_access[batch.agent_indices].all()

    def test_session_attributes(self):
        batches = self.sampler.sample(self.population, 2, np.random.default_rng(3))
        for batch in batches:
            assert np.all(batch.start_hours >= 0.0)
            assert np.all(batch.start_hours <= 24.0)
            assert np.all(batch.duration_hours >= 0.0)
            np.testing.assert_array_equal(
                batch.power_kw, self.population.charging_power[batch.agent_indices])

    def test_start_hours_clipped(self):
        """Test clipping with a start distribution spilling outside the day."""
        config = ChargingConfig(public=LocationParams(1.0, 12.0, 30.0, 1.0, 2.0))
        sampler = ChargingEventSampler(config)
        batches = sampler.sample(self.population, 1, np.random.default_rng(4))
        public = next(b for b in batches if b.kind is SessionKind.PUBLIC)

        assert len(public) == len(self.population)
        assert public.start_hours.min() == 0.0
        assert public.start_hours.max() == 24.0

    def test_zero_probability_yields_no_sessions(self):
        config = ChargingConfig(
            home=LocationParams(0.0, 19.0, 2.0, 2.0, 3.0),
            work=LocationParams(0.0, 9.0, 1.0, 1.5, 4.0),
            public=LocationParams(0.0, 14.0, 4.0, 1.0, 2.0),
        )
        batches = ChargingEventSampler(config).sample(
            self.population, 4, np.random.default_rng(0))
        assert sum(len(b) for b in batches) == 0

    def test_certain_home_charging(self):
        population = make_population(n=100, home_access_prob=1.0)
        config = ChargingConfig(home=LocationParams(1.0, 19.0, 2.0, 2.0, 3.0))
        batches = ChargingEventSampler(config).sample(
            population, 2, np.random.default_rng(0))

        for batch in batches:
            if batch.kind is SessionKind.HOME:
                assert len(batch) == 100

    def test_public_acceptance_rate(self):
        population = make_population(n=5000)
        batches = self.sampler.sample(population, 1, np.random.default_rng(8))
        public = next(b for b in batches if b.kind is SessionKind.PUBLIC)
        assert len(public) / 5000 == pytest.approx(0.1, abs=0.03)

    def test_invalid_days(self):
        with pytest.raises(ConfigurationError):
            self.sampler.sample(self.population, 0, np.random.default_rng(0))

    def test_parameters_checked_on_construction(self):
        config = ChargingConfig()
        config.work.probability = 2.0
        with pytest.raises(ConfigurationError):
            ChargingEventSampler(config)


class TestSessionRecords:
    """Tests for single-agent sampling and record conversion."""

    def setup_method(self):
        """Set up test fixtures."""
        self.population = make_population(n=50)
        self.sampler = ChargingEventSampler()

    def test_sample_agent_day(self):
        rng = np.random.default_rng(6)
        for index in range(len(self.population)):
            sessions = self.sampler.sample_agent_day(index, self.population, 0, rng)
            kinds = [s.kind for s in sessions]
            assert len(kinds) == len(set(kinds))
            assert len(sessions) <= 3
            for session in sessions:
                assert 0.0 <= session.start_hour <= 24.0
                assert session.end_hour <= 24.0

    def test_batches_to_sessions(self):
        batches = self.sampler.sample(self.population, 2, np.random.default_rng(7))
        sessions = batches_to_sessions(batches)

        assert len(sessions) == sum(len(b) for b in batches)
        for session in sessions:
            assert session.energy_kwh == pytest.approx(
                session.power_kw * session.clipped_duration)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
