"""
Tests for the end-to-end simulator.

This module tests:
- A small end-to-end run and its summary relations
- Bit-identical results across repeated runs and execution backends
- The reference run recomputed from the documented random streams
- Failure isolation, per-scenario timeouts and escalation to FatalError
- Persistence sinks and diagnostics propagation
"""

import json
import math
import re
import time

import numpy as np
import pytest

import evdemand.simulator as simulator_module
from evdemand import (
    ConfigurationError,
    DiagnosticKind,
    EVDemandConfig,
    EVDemandSimulator,
    FatalError,
    InMemorySink,
    JsonFileSink,
    ScenarioState,
    VehicleConfig,
    coincidence_factor,
    generate_population,
    run_simulation,
)


def small_config(**overrides) -> EVDemandConfig:
    """100 vehicles, 1 day at 15 minutes, 5 runs, seed 42."""
    data = {
        'vehicles': {'num_vehicles': 100},
        'simulation': {'days': 1, 'time_resolution': 15,
                       'monte_carlo_runs': 5, 'random_seed': 42},
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    return EVDemandConfig.from_dict(data)


class TestEndToEnd:
    """Tests for a complete small simulation."""

    def setup_method(self):
        """Set up test fixtures."""
        self.simulator = EVDemandSimulator(small_config())
        self.result = self.simulator.run()

    def test_result_shape(self):
        assert len(self.result.results) == 5
        assert [r.replication_index for r in self.result.results] == list(range(5))
        for run in self.result.results:
            assert run.adjusted_series.shape == (96,)
            assert run.raw_series.shape == (96,)
            assert run.state is ScenarioState.AGGREGATED
        assert self.result.mean_profile.shape == (96,)

    def test_summary_relations(self):
        summary = self.result.summary

        assert summary.total_runs == 5
        assert summary.successful_runs == 5
        assert summary.failed_runs == 0
        assert summary.peak_demand >= summary.mean_daily_demand >= summary.min_demand >= 0
        assert 0.0 <= summary.load_factor <= 1.0
        assert summary.ci_lower <= summary.ci_upper
        assert 0 <= summary.peak_hour < 24
        assert 0 <= summary.valley_hour < 24

    def test_coincidence_factor_applied(self):
        expected = coincidence_factor(100)
        assert self.result.summary.avg_coincidence_factor == pytest.approx(expected)
        for run in self.result.results:
            np.testing.assert_allclose(run.adjusted_series, run.raw_series * expected)

    def test_scenarios_discarded(self):
        states = self.simulator.get_scenario_states()
        assert set(states) == set(range(5))
        assert all(state is ScenarioState.DISCARDED for state in states.values())

    def test_simulation_id(self):
        assert re.fullmatch(r"EV_SIM_\d{8}_\d{6}_\d{4}", self.result.simulation_id)

    def test_get_summary(self):
        assert self.simulator.get_summary() == self.result.summary.to_dict()

    def test_export_dict_is_json_serialisable(self):
        data = self.result.to_dict(include_series=True)
        json.dumps(data, default=str)
        assert len(data['results']) == 5


class TestDeterminism:
    """Tests for reproducibility across runs and backends."""

    def run(self, **processing):
        return EVDemandSimulator(small_config(processing=processing)).run()

    def assert_identical(self, first, second):
        assert first.summary.to_dict() == second.summary.to_dict()
        np.testing.assert_array_equal(first.mean_profile, second.mean_profile)
        for a, b in zip(first.results, second.results):
            np.testing.assert_array_equal(a.adjusted_series, b.adjusted_series)

    def test_repeated_runs_identical(self):
        self.assert_identical(self.run(), self.run())

    def test_thread_backend_identical(self):
        self.assert_identical(self.run(), self.run(backend="thread", max_workers=3))

    def test_process_backend_identical(self):
        self.assert_identical(self.run(), self.run(backend="process", max_workers=2))

    def test_timeout_tracking_identical(self):
        self.assert_identical(
            self.run(), self.run(backend="thread", max_workers=2, scenario_timeout_s=60.0))
        self.assert_identical(
            self.run(), self.run(backend="process", max_workers=2, scenario_timeout_s=60.0))

    def test_seed_changes_results(self):
        first = EVDemandSimulator(small_config()).run()
        second = EVDemandSimulator(small_config(simulation={'random_seed': 43})).run()
        assert not np.array_equal(first.mean_profile, second.mean_profile)

    def test_keep_series_does_not_change_summary(self):
        kept = EVDemandSimulator(small_config()).run()
        dropped = EVDemandSimulator(small_config(simulation={'keep_series': False})).run()

        assert kept.summary.to_dict() == dropped.summary.to_dict()
        assert all(r.adjusted_series is None for r in dropped.results)
        np.testing.assert_array_equal(kept.mean_profile, dropped.mean_profile)


class TestReferenceScenario:
    """
    The reference run (100 vehicles, 1 day at 15 min, 5 runs, seed 42)
    recomputed directly from the documented random streams: replication i
    draws from PCG64(SeedSequence(42, spawn_key=(1, i))), per location in
    order home, work, public: n uniforms, n normals, n Weibulls.
    """

    LOCATIONS = (
        # kind, probability, start mean, start sd, Weibull shape, Weibull scale
        ('home', 0.8, 19.0, 2.0, 2.0, 3.0),
        ('work', 0.3, 9.0, 1.0, 1.5, 4.0),
        ('public', 0.1, 14.0, 4.0, 1.0, 2.0),
    )

    def setup_method(self):
        """Set up the engine run and the recomputed adjusted series."""
        self.simulator = EVDemandSimulator(small_config())
        self.agents = self.simulator.generate_population()
        self.result = self.simulator.run()
        self.expected = [self.expected_series(i) for i in range(5)]

    def expected_series(self, replication_index):
        n = len(self.agents)
        power = [a.charging_power for a in self.agents]
        access = {
            'home': [a.home_charging for a in self.agents],
            'work': [a.work_charging for a in self.agents],
            'public': [True] * n,
        }
        rng = np.random.Generator(np.random.PCG64(
            np.random.SeedSequence(entropy=42, spawn_key=(1, replication_index))))

        demand = np.zeros(96)
        for kind, probability, mu, sd, shape, scale in self.LOCATIONS:
            u = rng.random(n)
            starts = rng.normal(mu, sd, size=n)
            durations = rng.weibull(shape, size=n) * scale
            for a in range(n):
                if not (access[kind][a] and u[a] < probability):
                    continue
                start = min(max(starts[a], 0.0), 24.0)
                end = min(start + durations[a], 24.0)
                if start < 24.0 and end > start:
                    demand[math.floor(start * 4):math.ceil(end * 4)] += power[a]

        factor = 0.222 + 0.036 * math.exp(-0.0003 * n)
        return demand * factor

    def test_series_match_streams(self):
        for run, expected in zip(self.result.results, self.expected):
            np.testing.assert_allclose(run.adjusted_series, expected, rtol=1e-12, atol=1e-9)

    def test_summary_matches_streams(self):
        peaks = np.array([s.max() for s in self.expected])
        means = np.array([s.mean() for s in self.expected])
        std = float(np.std(peaks, ddof=1))
        half_width = 1.959963984540054 * std / math.sqrt(5)
        hourly = (sum(self.expected) / 5).reshape(24, 4).mean(axis=1)

        summary = self.result.summary
        assert summary.mean_daily_demand == pytest.approx(float(means.mean()), rel=1e-12)
        assert summary.peak_demand == pytest.approx(float(peaks.max()), rel=1e-12)
        assert summary.min_demand == pytest.approx(
            float(min(s.min() for s in self.expected)), abs=1e-9)
        assert summary.std_dev == pytest.approx(std, rel=1e-9)
        assert summary.ci_lower == pytest.approx(max(0.0, peaks.mean() - half_width), rel=1e-9)
        assert summary.ci_upper == pytest.approx(peaks.mean() + half_width, rel=1e-9)
        assert summary.peak_hour == int(np.argmax(hourly))
        assert summary.valley_hour == int(np.argmin(hourly))


class TestFailureHandling:
    """Tests for per-replication failure isolation."""

    def failing_compose(self, monkeypatch, fail_calls):
        """Patch composition to return NaN on the given (0-based) calls."""
        original = simulator_module.compose_aggregate
        calls = {'n': 0}

        def compose(batches, days, time_resolution):
            series = original(batches, days, time_resolution)
            call = calls['n']
            calls['n'] += 1
            if fail_calls is None or call in fail_calls:
                series[0] = np.nan
            return series

        monkeypatch.setattr(simulator_module, "compose_aggregate", compose)

    def test_single_failure_isolated(self, monkeypatch):
        self.failing_compose(monkeypatch, {1})
        simulator = EVDemandSimulator(small_config())
        result = simulator.run()

        assert result.summary.successful_runs == 4
        assert result.summary.failed_runs == 1
        assert result.summary.total_runs == 5
        assert [r.replication_index for r in result.results] == [0, 2, 3, 4]
        assert simulator.get_scenario_states()[1] is ScenarioState.FAILED

        failed = [d for d in result.diagnostics if d.kind is DiagnosticKind.SCENARIO_FAILED]
        assert len(failed) == 1
        assert failed[0].context['replication_index'] == 1

    def test_escalates_above_threshold(self, monkeypatch):
        self.failing_compose(monkeypatch, None)
        with pytest.raises(FatalError):
            EVDemandSimulator(small_config()).run()

    def test_threshold_boundary(self, monkeypatch):
        """Test that failures up to the tolerated fraction still summarise."""
        self.failing_compose(monkeypatch, {0, 1})
        config = small_config(processing={'max_failure_fraction': 0.4})
        result = EVDemandSimulator(config).run()
        assert result.summary.failed_runs == 2

    def test_all_failed_with_full_tolerance(self, monkeypatch):
        self.failing_compose(monkeypatch, None)
        config = small_config(processing={'max_failure_fraction': 1.0})
        with pytest.raises(FatalError):
            EVDemandSimulator(config).run()

    def slow_first_replication(self, monkeypatch, delay_s):
        """Patch pooled execution so replication 0 sleeps before running."""
        original = simulator_module.run_scenario

        def run(scenario, charging_config, population=None):
            if scenario.replication_index == 0:
                time.sleep(delay_s)
            return original(scenario, charging_config, population)

        monkeypatch.setattr(simulator_module, "run_scenario", run)

    def test_slow_replication_times_out_alone(self, monkeypatch):
        """Test that replications queued behind a slow one still run."""
        self.slow_first_replication(monkeypatch, 1.5)
        config = small_config(processing={
            'backend': 'thread', 'max_workers': 1, 'scenario_timeout_s': 0.5})
        simulator = EVDemandSimulator(config)
        result = simulator.run()

        timeouts = [d for d in result.diagnostics if d.kind is DiagnosticKind.SCENARIO_TIMEOUT]
        assert [d.context['replication_index'] for d in timeouts] == [0]
        assert result.summary.failed_runs == 1
        assert result.summary.successful_runs == 4
        assert [r.replication_index for r in result.results] == [1, 2, 3, 4]
        assert simulator.get_scenario_states()[0] is ScenarioState.FAILED

        serial = EVDemandSimulator(small_config()).run()
        for run, reference in zip(result.results, serial.results[1:]):
            np.testing.assert_array_equal(run.adjusted_series, reference.adjusted_series)

    def test_timeout_not_reached(self, monkeypatch):
        self.slow_first_replication(monkeypatch, 0.2)
        config = small_config(processing={
            'backend': 'thread', 'max_workers': 2, 'scenario_timeout_s': 30.0})
        result = EVDemandSimulator(config).run()

        assert result.summary.failed_runs == 0
        assert not [d for d in result.diagnostics if d.kind is DiagnosticKind.SCENARIO_TIMEOUT]

    def test_configuration_error_before_run(self):
        with pytest.raises(ConfigurationError):
            small_config(simulation={'time_resolution': 7})


class TestInputsAndOutputs:
    """Tests for explicit populations, sinks and diagnostics."""

    def test_explicit_population(self):
        agents = generate_population(VehicleConfig(num_vehicles=50), seed=3)
        result = EVDemandSimulator(small_config()).run(population=agents)

        assert result.summary.avg_coincidence_factor == pytest.approx(coincidence_factor(50))

    def test_in_memory_sink(self):
        sink = InMemorySink()
        result = EVDemandSimulator(small_config()).run(sink=sink)
        assert sink.saved == [result]

    def test_json_sink(self, tmp_path):
        path = tmp_path / "result.json"
        result = EVDemandSimulator(small_config()).run(sink=JsonFileSink(str(path)))

        data = json.loads(path.read_text())
        assert data['simulation_id'] == result.simulation_id
        assert data['summary']['successful_runs'] == 5
        assert 'adjusted_series' not in data['results'][0]

    def test_config_diagnostics_propagate(self):
        config = small_config(vehicles={'vehicle_type_probs': [2.0, 1.0, 1.0]})
        result = EVDemandSimulator(config).run()

        kinds = [d.kind for d in result.diagnostics]
        assert DiagnosticKind.WEIGHTS_RENORMALIZED in kinds

    def test_run_simulation(self):
        result = run_simulation(small_config())
        assert result.summary.successful_runs == 5

    def test_multi_day_hourly(self):
        config = small_config(simulation={'days': 3, 'time_resolution': 60})
        result = EVDemandSimulator(config).run()

        assert result.results[0].adjusted_series.shape == (72,)
        assert result.mean_profile.shape == (72,)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
