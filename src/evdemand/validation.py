"""
Validation of simulated demand against empirical data.

Both series are aligned by truncating to the shorter length. MAPE excludes
buckets whose empirical value is exactly zero (division by zero); the number
of excluded buckets is reported in ValidationMetrics.mape_excluded and the
MAPE is NaN when every empirical value is zero. Correlation is NaN when
either aligned series is constant.
"""

import logging
import math
from typing import Any, Iterable, Mapping, Optional, Union

import numpy as np
import pandas as pd

from .calibration import records_to_frame
from .data_structures import SimulationResult, ValidationMetrics
from .diagnostics import DiagnosticKind, DiagnosticsLog
from .errors import DataFormatError

logger = logging.getLogger(__name__)

MIN_RELIABLE_POINTS = 100


def _as_series(values, name: str) -> np.ndarray:
    try:
        arr = np.asarray(values, dtype=float).ravel()
    except (TypeError, ValueError) as exc:
        raise DataFormatError(f"{name} series is not numeric: {exc}") from exc
    if arr.size == 0:
        raise DataFormatError(f"{name} series is empty")
    if not np.all(np.isfinite(arr)):
        raise DataFormatError(f"{name} series contains non-finite values")
    return arr


def validate_series(
    simulated,
    empirical,
    diagnostics: Optional[DiagnosticsLog] = None
) -> ValidationMetrics:
    """
    Compare a simulated series with an empirical series.

    Args:
        simulated: Simulated (adjusted) demand series
        empirical: Empirical series, in the same units and resolution
        diagnostics: Optional log for non-fatal conditions

    Returns:
        ValidationMetrics with MAE, RMSE, MAPE (%), Pearson correlation,
        bias = mean(sim) - mean(real) and the aligned sample count

    Raises:
        DataFormatError: If a series is empty, non-numeric or non-finite

    Examples:
        >>> metrics = validate_series([1.0, 2.0, 3.0], [1.0, 2.0, 4.0])
        >>> metrics.sample_count
        3
    """
    sim = _as_series(simulated, "simulated")
    real = _as_series(empirical, "empirical")

    n = min(sim.size, real.size)
    sim = sim[:n]
    real = real[:n]

    if n < MIN_RELIABLE_POINTS:
        message = f"only {n} aligned points; validation may be unreliable"
        if diagnostics is not None:
            diagnostics.report(DiagnosticKind.FEW_VALIDATION_POINTS, message, sample_count=n)
        else:
            logger.warning(message)

    error = sim - real
    mae = float(np.mean(np.abs(error)))
    rmse = float(math.sqrt(np.mean(error ** 2)))

    nonzero = real != 0
    excluded = int(n - nonzero.sum())
    if nonzero.any():
        mape = float(np.mean(np.abs(error[nonzero] / real[nonzero])) * 100.0)
    else:
        mape = float('nan')
    if excluded and diagnostics is not None:
        diagnostics.report(
            DiagnosticKind.MAPE_ZERO_EXCLUDED,
            f"{excluded} buckets with zero empirical value excluded from MAPE",
            excluded=excluded
        )

    if n > 1 and np.std(sim) > 0 and np.std(real) > 0:
        correlation = float(np.clip(np.corrcoef(sim, real)[0, 1], -1.0, 1.0))
    else:
        correlation = float('nan')

    sim_mean = float(np.mean(sim))
    real_mean = float(np.mean(real))
    metrics = ValidationMetrics(
        mae=mae,
        rmse=rmse,
        mape=mape,
        correlation=correlation,
        bias=sim_mean - real_mean,
        sample_count=n,
        sim_mean=sim_mean,
        real_mean=real_mean,
        mape_excluded=excluded
    )
    logger.info(f"Validation: {metrics}")
    return metrics


def validate_against_records(
    result: SimulationResult,
    records: Union[pd.DataFrame, Iterable[Mapping[str, Any]]],
    diagnostics: Optional[DiagnosticsLog] = None
) -> ValidationMetrics:
    """
    Validate the first kept replication against empirical records.

    Empirical consumption is taken from valid readings ordered by timestamp.

    Raises:
        DataFormatError: If the result holds no series or the records are
            malformed
        InsufficientDataError: If no records are supplied
    """
    kept = [r for r in result.results if r.adjusted_series is not None]
    if not kept:
        raise DataFormatError("simulation result holds no adjusted series to validate")

    frame = records_to_frame(records)
    valid = frame[frame['valid']].sort_values('timestamp', kind='mergesort')
    return validate_series(
        kept[0].adjusted_series,
        valid['consumption_kwh'].to_numpy(dtype=float),
        diagnostics=diagnostics
    )
