"""
Calibration Workflow Example for the EV demand engine.

This example demonstrates how to:
1. Load metered consumption readings
2. Calibrate fleet size and charging times against them
3. Run the calibrated simulation
4. Validate the simulated hourly profile against the readings

Run from the repository root with `python -m examples.calibration_workflow`
so that data_generator can be imported.
"""

import numpy as np

from data_generator import generate_meter_records
from evdemand import (
    DiagnosticsLog,
    EVDemandConfig,
    EVDemandSimulator,
    calibrate_or_default,
    hour_of_day_profile,
    validate_series,
)
from evdemand.calibration import records_to_frame


def main():
    print("=" * 60)
    print("EV Demand Calibration Workflow")
    print("=" * 60)

    # Step 1: Meter data
    print("\n1. Generating synthetic meter readings...")
    records = generate_meter_records(fleet_size=800, n_meters=25, days=14, peak_hour=20)
    print(f"   {len(records)} readings")

    # Step 2: Calibrate
    print("\n2. Calibrating...")
    diagnostics = DiagnosticsLog()
    base = EVDemandConfig.from_dict({
        'simulation': {'days': 1, 'time_resolution': 60, 'monte_carlo_runs': 30},
    })
    outcome = calibrate_or_default(records, base, diagnostics)
    if not outcome.calibrated:
        print(f"   Calibration skipped: {outcome.diagnostic.message}")
    else:
        cal = outcome.calibration
        print(f"   Observed consumption: {cal.observed_daily_consumption_kwh:.1f} kWh/day")
        print(f"   Estimated fleet: {cal.estimated_fleet_size}")
        print(f"   Peak hour: {cal.peak_hour:02d}:00, valley hour: {cal.valley_hour:02d}:00")
        print(f"   Scaling factor: {cal.scaling_factor:.3f}")

    # Step 3: Simulate
    print("\n3. Running calibrated simulation...")
    result = EVDemandSimulator(outcome.config).run()
    print(f"   Peak demand: {result.summary.peak_demand:.1f} kW "
          f"at {result.summary.peak_hour:02d}:00")

    # Step 4: Validate hourly shapes (normalised, since units differ)
    print("\n4. Validating hourly profile...")
    frame = records_to_frame(records)
    observed = frame[frame['valid']].groupby('hour')['consumption_kwh'].sum()
    observed = observed.reindex(range(24), fill_value=0.0).to_numpy()
    simulated = hour_of_day_profile(result.mean_profile, 60)

    metrics = validate_series(
        simulated / max(simulated.sum(), 1e-9),
        observed / max(observed.sum(), 1e-9),
        diagnostics=diagnostics
    )
    print(f"   MAE: {metrics.mae:.4f}")
    print(f"   RMSE: {metrics.rmse:.4f}")
    print(f"   Correlation: {metrics.correlation:.3f}")
    print(f"   Peak hour match: {int(np.argmax(simulated)) == int(np.argmax(observed))}")

    print(f"\n   Diagnostics reported: {len(diagnostics)}")
    for diagnostic in diagnostics:
        print(f"     - [{diagnostic.kind.value}] {diagnostic.message}")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == '__main__':
    main()
