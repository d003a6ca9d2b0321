import json
from datetime import datetime

import numpy as np
import pandas as pd

from evdemand.calibration import DEFAULT_VEHICLE_DAILY_KWH


def generate_meter_records(fleet_size=500, n_meters=20, days=14, peak_hour=19,
                           noise=0.1, start="2024-01-01", seed=42):
    """
    Generates synthetic hourly meter readings for calibration runs.
    :param fleet_size: number of vehicles whose consumption the meters see
    :param n_meters: number of meters sharing the load
    :param days: length of the record in days
    :param peak_hour: hour of day with the highest consumption
    :param noise: relative standard deviation of multiplicative reading noise
    :param seed: seed for the reading noise
    """
    rng = np.random.default_rng(seed)

    # 1. Daily shape: evening bump centred on peak_hour, small daytime plateau
    hours = np.arange(24)
    distance = np.minimum(np.abs(hours - peak_hour), 24 - np.abs(hours - peak_hour))
    shape = 0.2 + np.exp(-0.5 * (distance / 2.0) ** 2)
    shape[(hours >= 9) & (hours < 17)] += 0.15
    shape = shape / shape.sum()

    # 2. Meter shares (some meters see more vehicles than others)
    shares = rng.dirichlet(np.full(n_meters, 5.0))

    daily_total = fleet_size * DEFAULT_VEHICLE_DAILY_KWH
    timestamps = pd.date_range(start, periods=days * 24, freq="60min")

    rows = []
    for m, share in enumerate(shares):
        factors = np.clip(rng.normal(1.0, noise, size=len(timestamps)), 0.0, None)
        for t, ts in enumerate(timestamps):
            rows.append({
                'meter_id': f'MTR_{m + 1:03d}',
                'timestamp': ts.isoformat(),
                'consumption_kwh': float(daily_total * share * shape[ts.hour] * factors[t])
            })
    return rows


def save_meter_records(rows, filename="meter_data.json", **metadata):
    output = {
        'metadata': {
            'generated_at': datetime.now().isoformat(),
            'readings': len(rows),
            **metadata
        },
        'records': rows
    }
    with open(filename, 'w') as f:
        json.dump(output, f, indent=4)

    print(f"{len(rows)} meter readings written to {filename}")


if __name__ == "__main__":
    fleet_size, peak_hour = 500, 19
    records = generate_meter_records(fleet_size=fleet_size, peak_hour=peak_hour)
    save_meter_records(records, fleet_size=fleet_size, peak_hour=peak_hour)
