"""
Tests for validation against empirical series.

This module tests:
- Error metrics on known inputs
- MAPE exclusion of zero-valued empirical buckets
- Alignment of series with different lengths
- Diagnostics for short validation windows
"""

import math

import numpy as np
import pytest

from evdemand import (
    DataFormatError,
    DiagnosticKind,
    DiagnosticsLog,
    EVDemandConfig,
    run_simulation,
    validate_against_records,
    validate_series,
)


class TestValidateSeries:
    """Tests for validate_series()."""

    def test_identical_series(self):
        series = np.sin(np.linspace(0, 6, 200)) + 2.0
        metrics = validate_series(series, series)

        assert metrics.mae == 0.0
        assert metrics.rmse == 0.0
        assert metrics.mape == 0.0
        assert metrics.bias == 0.0
        assert metrics.correlation == pytest.approx(1.0)
        assert metrics.sample_count == 200

    def test_known_values(self):
        metrics = validate_series([2.0, 2.0, 2.0, 2.0], [1.0, 2.0, 3.0, 4.0])

        assert metrics.mae == pytest.approx(1.0)
        assert metrics.rmse == pytest.approx(math.sqrt(1.5))
        assert metrics.mape == pytest.approx((1.0 + 0.0 + 1.0 / 3.0 + 0.5) / 4 * 100)
        assert metrics.bias == pytest.approx(-0.5)
        assert metrics.sim_mean == pytest.approx(2.0)
        assert metrics.real_mean == pytest.approx(2.5)
        assert math.isnan(metrics.correlation)

    def test_metric_bounds(self):
        rng = np.random.default_rng(1)
        sim = rng.uniform(0, 100, size=500)
        real = rng.uniform(1, 100, size=500)
        metrics = validate_series(sim, real)

        assert 0.0 <= metrics.mae <= metrics.rmse
        assert metrics.mape >= 0.0
        assert -1.0 <= metrics.correlation <= 1.0

    def test_anticorrelated(self):
        series = np.linspace(1.0, 10.0, 150)
        metrics = validate_series(series, series[::-1])
        assert metrics.correlation == pytest.approx(-1.0)

    def test_zero_buckets_excluded_from_mape(self):
        """Test that zero empirical buckets are skipped and reported."""
        diagnostics = DiagnosticsLog()
        real = np.arange(150, dtype=float)
        sim = real * 1.1
        metrics = validate_series(sim, real, diagnostics)

        assert metrics.mape_excluded == 1
        assert metrics.mape == pytest.approx(10.0)
        assert diagnostics.count(DiagnosticKind.MAPE_ZERO_EXCLUDED) == 1

    def test_all_zero_empirical(self):
        metrics = validate_series(np.ones(120), np.zeros(120))

        assert math.isnan(metrics.mape)
        assert metrics.mape_excluded == 120
        assert metrics.mae == pytest.approx(1.0)

    def test_truncates_to_shorter(self):
        metrics = validate_series(np.ones(200), np.ones(150))
        assert metrics.sample_count == 150

    def test_few_points_diagnostic(self):
        diagnostics = DiagnosticsLog()
        validate_series([1.0, 2.0, 3.0], [1.0, 2.0, 4.0], diagnostics)
        assert diagnostics.count(DiagnosticKind.FEW_VALIDATION_POINTS) == 1

    def test_enough_points_no_diagnostic(self):
        diagnostics = DiagnosticsLog()
        validate_series(np.arange(1, 101), np.arange(1, 101), diagnostics)
        assert len(diagnostics) == 0

    @pytest.mark.parametrize("bad", [[], [1.0, math.nan], ['a', 'b']])
    def test_malformed_input(self, bad):
        with pytest.raises(DataFormatError):
            validate_series(bad, [1.0, 2.0])


class TestValidateAgainstRecords:
    """Tests for validating a simulation result against meter records."""

    def setup_method(self):
        """Set up test fixtures."""
        config = EVDemandConfig.from_dict({
            'vehicles': {'num_vehicles': 100},
            'simulation': {'days': 1, 'monte_carlo_runs': 2, 'random_seed': 42},
        })
        self.result = run_simulation(config)

    def test_perfect_agreement(self):
        series = self.result.results[0].adjusted_series
        records = [
            {'meter_id': 'M1', 'timestamp': t, 'consumption_kwh': value}
            for t, value in reversed(list(enumerate(series)))
        ]
        metrics = validate_against_records(self.result, records)

        assert metrics.sample_count == 96
        assert metrics.mae == pytest.approx(0.0, abs=1e-12)
        assert metrics.bias == pytest.approx(0.0, abs=1e-12)

    def test_no_series_kept(self):
        for result in self.result.results:
            result.drop_series()
        with pytest.raises(DataFormatError):
            validate_against_records(self.result, [])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
