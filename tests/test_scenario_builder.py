"""
Unit tests for scenario construction and the scenario lifecycle.
"""

import unittest

import numpy as np

from evdemand import (
    EVDemandConfig,
    Scenario,
    ScenarioBuilder,
    ScenarioExecutionError,
    ScenarioState,
    VehicleConfig,
    generate_population,
)
from evdemand.data_structures import check_transition
from evdemand.scenario_builder import replication_seed_sequence


class TestScenarioBuilder(unittest.TestCase):
    """Test replication descriptors."""

    def setUp(self):
        """Set up test data."""
        self.config = EVDemandConfig.from_dict({
            'simulation': {'days': 2, 'monte_carlo_runs': 8, 'random_seed': 11},
        })
        self.agents = generate_population(VehicleConfig(num_vehicles=20), seed=11)
        self.builder = ScenarioBuilder(self.config)

    def test_build_count_and_order(self):
        """Test one scenario per replication, ordered by index."""
        scenarios = self.builder.build(self.agents)

        self.assertEqual(len(scenarios), 8)
        self.assertEqual([s.replication_index for s in scenarios], list(range(8)))
        for scenario in scenarios:
            self.assertEqual(scenario.state, ScenarioState.CREATED)
            self.assertEqual(scenario.days, 2)
            self.assertEqual(scenario.fleet_size, 20)
            self.assertEqual(scenario.buckets_per_day, 96)

    def test_population_is_shared(self):
        scenarios = self.builder.build(self.agents, n_runs=3)
        self.assertIs(scenarios[0].agents, scenarios[2].agents)

    def test_stream_depends_only_on_seed_and_index(self):
        """Test that a replication's draws ignore construction order."""
        forward = self.builder.build(self.agents, n_runs=5)
        single = Scenario(
            replication_index=3, agents=(), seed=11, days=2, time_resolution=15)

        np.testing.assert_array_equal(
            forward[3].rng().random(10), single.rng().random(10))

    def test_streams_differ_between_replications(self):
        scenarios = self.builder.build(self.agents, n_runs=2)
        self.assertFalse(np.array_equal(
            scenarios[0].rng().random(10), scenarios[1].rng().random(10)))

    def test_seed_sequence_spawn_key(self):
        sequence = replication_seed_sequence(11, 4)
        self.assertEqual(sequence.entropy, 11)
        self.assertEqual(sequence.spawn_key, (1, 4))


class TestScenarioLifecycle(unittest.TestCase):
    """Test lifecycle transitions."""

    def setUp(self):
        """Set up test data."""
        self.scenario = Scenario(
            replication_index=0, agents=(), seed=1, days=1, time_resolution=60)

    def test_success_path(self):
        for state in (ScenarioState.SAMPLED, ScenarioState.COMPOSED,
                      ScenarioState.ADJUSTED, ScenarioState.AGGREGATED,
                      ScenarioState.DISCARDED):
            self.scenario.advance(state)

        self.assertEqual(self.scenario.state, ScenarioState.DISCARDED)
        self.assertEqual(len(self.scenario.history), 5)

    def test_failure_from_composed(self):
        self.scenario.advance(ScenarioState.SAMPLED)
        self.scenario.advance(ScenarioState.COMPOSED)
        self.scenario.advance(ScenarioState.FAILED)
        self.assertEqual(self.scenario.state, ScenarioState.FAILED)

    def test_skipping_states_rejected(self):
        with self.assertRaises(ScenarioExecutionError):
            self.scenario.advance(ScenarioState.ADJUSTED)

    def test_back_transition_rejected(self):
        self.scenario.advance(ScenarioState.SAMPLED)
        with self.assertRaises(ScenarioExecutionError):
            self.scenario.advance(ScenarioState.CREATED)

    def test_adjusted_cannot_fail(self):
        with self.assertRaises(ScenarioExecutionError):
            check_transition(ScenarioState.ADJUSTED, ScenarioState.FAILED)

    def test_terminal_states(self):
        for terminal in (ScenarioState.DISCARDED, ScenarioState.FAILED):
            for target in ScenarioState:
                with self.assertRaises(ScenarioExecutionError):
                    check_transition(terminal, target)

    def test_error_carries_index(self):
        with self.assertRaises(ScenarioExecutionError) as ctx:
            check_transition(ScenarioState.CREATED, ScenarioState.DISCARDED, 7)
        self.assertEqual(ctx.exception.replication_index, 7)
        self.assertEqual(ctx.exception.context['replication_index'], 7)


if __name__ == '__main__':
    unittest.main()
