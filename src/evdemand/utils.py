"""
Utility functions for the EV demand engine.

This module provides helpers for bucket arithmetic, hour-of-day profiles,
temporal resampling and DataFrame export of simulated series.
"""

from typing import Dict, Iterable, List, Sequence

import numpy as np
import pandas as pd


def buckets_per_day(time_resolution: int) -> int:
    """
    Number of buckets in one day.

    Examples:
        >>> buckets_per_day(15)
        96
    """
    return 24 * 60 // time_resolution


def buckets_per_hour(time_resolution: int) -> float:
    """Number of buckets in one hour (1.0 for hourly resolution)."""
    return 60.0 / time_resolution


def hour_of_day_profile(series: np.ndarray, time_resolution: int) -> np.ndarray:
    """
    Average a series by hour of day.

    Args:
        series: Series covering whole days
        time_resolution: Bucket length in minutes

    Returns:
        Array of 24 mean values, index = hour of day
    """
    bpd = buckets_per_day(time_resolution)
    values = np.asarray(series, dtype=float)
    if values.size == 0 or values.size % bpd != 0:
        raise ValueError(
            f"series length {values.size} is not a whole number of days "
            f"at {time_resolution} min resolution"
        )
    per_bucket = values.reshape(-1, bpd).mean(axis=0)
    return per_bucket.reshape(24, -1).mean(axis=1)


def resample_series(
    series: np.ndarray,
    time_resolution: int,
    freq: str = "hourly"
) -> np.ndarray:
    """
    Mean power per hour or per day.

    Args:
        series: Series at the native resolution
        time_resolution: Bucket length in minutes
        freq: "native", "hourly" or "daily"

    Returns:
        Resampled series
    """
    values = np.asarray(series, dtype=float)
    if freq == "native":
        return values.copy()
    if freq == "hourly":
        width = int(buckets_per_hour(time_resolution))
    elif freq == "daily":
        width = buckets_per_day(time_resolution)
    else:
        raise ValueError(f"Unknown aggregation: {freq}. Valid options: native, hourly, daily")
    if values.size % width != 0:
        raise ValueError(f"series length {values.size} is not divisible by {width}")
    return values.reshape(-1, width).mean(axis=1)


def series_to_frame(
    series: np.ndarray,
    start_date: str,
    time_resolution: int,
    name: str = "demand_kw"
) -> pd.DataFrame:
    """
    Attach timestamps to a series.

    Returns:
        DataFrame with 'timestamp' and value columns
    """
    timestamps = pd.date_range(
        start=start_date, periods=len(series), freq=f"{time_resolution}min"
    )
    return pd.DataFrame({'timestamp': timestamps, name: np.asarray(series, dtype=float)})


def results_to_frame(
    results: Iterable,
    start_date: str,
    time_resolution: int
) -> pd.DataFrame:
    """
    Long-format DataFrame of all kept replication series.

    Args:
        results: ScenarioResult records; those without series are skipped
        start_date: First simulated day
        time_resolution: Bucket length in minutes

    Returns:
        DataFrame with replication_index, timestamp, raw_kw, adjusted_kw
        and coincidence_factor columns
    """
    frames: List[pd.DataFrame] = []
    for result in results:
        if result.raw_series is None or result.adjusted_series is None:
            continue
        frame = series_to_frame(result.raw_series, start_date, time_resolution, "raw_kw")
        frame['adjusted_kw'] = result.adjusted_series
        frame['coincidence_factor'] = result.coincidence_factor
        frame.insert(0, 'replication_index', result.replication_index)
        frames.append(frame)
    if not frames:
        return pd.DataFrame(columns=[
            'replication_index', 'timestamp', 'raw_kw', 'adjusted_kw', 'coincidence_factor'
        ])
    return pd.concat(frames, ignore_index=True)


def calculate_summary_statistics(values: Sequence[float]) -> Dict[str, float]:
    """
    Calculate summary statistics for a list of values.

    Args:
        values: List of numeric values

    Returns:
        Dictionary with min, max, mean, std, sum statistics
    """
    if len(values) == 0:
        return {
            'min': 0.0,
            'max': 0.0,
            'mean': 0.0,
            'std': 0.0,
            'sum': 0.0,
            'count': 0,
        }

    arr = np.asarray(values, dtype=float)
    return {
        'min': float(arr.min()),
        'max': float(arr.max()),
        'mean': float(arr.mean()),
        'std': float(arr.std(ddof=1)) if arr.size > 1 else 0.0,
        'sum': float(arr.sum()),
        'count': int(arr.size),
    }
