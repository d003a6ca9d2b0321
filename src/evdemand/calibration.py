"""
Calibration against empirical consumption data.

Derives a configuration overlay from metered consumption records
{meter_id, timestamp, consumption_kwh}:

- observed daily consumption: mean over days of the consumption summed
  across all meters on that day
- fleet size: observed / assumed per-vehicle daily consumption, rounded and
  capped at a practical maximum
- peak / valley hour: argmax / argmin of the mean consumption per hour of day
- scaling factor: observed / (fleet size * assumed per-vehicle consumption)

Timestamps may be datetimes (or strings pandas can parse) or numeric hour
offsets from the start of the record (hour of day = offset mod 24).
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Optional, Union

import numpy as np
import pandas as pd

from .data_structures import CalibrationResult, EVDemandConfig
from .diagnostics import Diagnostic, DiagnosticKind, DiagnosticsLog
from .errors import DataFormatError, InsufficientDataError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('meter_id', 'timestamp', 'consumption_kwh')

# 40 km/day at 7 km/kWh
DEFAULT_VEHICLE_DAILY_KWH = 40.0 / 7.0
DEFAULT_MAX_FLEET_SIZE = 50000
DEFAULT_MIN_READINGS = 24
WORK_START_OFFSET_HOURS = 8


def records_to_frame(
    records: Union[pd.DataFrame, Iterable[Mapping[str, Any]]]
) -> pd.DataFrame:
    """
    Normalise empirical records into a DataFrame with hour and day columns.

    The input is never modified.

    Returns:
        DataFrame with meter_id, timestamp, consumption_kwh, hour, day and
        valid columns

    Raises:
        DataFormatError: If required fields are missing or timestamps cannot
            be parsed
        InsufficientDataError: If no records are supplied
    """
    if isinstance(records, pd.DataFrame):
        frame = records.copy()
    else:
        try:
            frame = pd.DataFrame(list(records))
        except (TypeError, ValueError) as exc:
            raise DataFormatError(f"records are not tabular: {exc}") from exc

    if len(frame) == 0:
        raise InsufficientDataError("no empirical readings supplied", {'valid_readings': 0})

    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise DataFormatError(
            f"empirical records are missing fields: {missing}",
            {'missing': missing}
        )

    frame = frame[list(REQUIRED_COLUMNS)].copy()
    frame['consumption_kwh'] = pd.to_numeric(frame['consumption_kwh'], errors='coerce')

    timestamps = frame['timestamp']
    if pd.api.types.is_numeric_dtype(timestamps) and not pd.api.types.is_bool_dtype(timestamps):
        offsets = timestamps.astype(float)
        frame['hour'] = np.floor(offsets % 24)
        frame['day'] = np.floor(offsets // 24)
    else:
        try:
            parsed = pd.to_datetime(timestamps, errors='raise')
        except (TypeError, ValueError) as exc:
            raise DataFormatError(f"unparseable timestamps: {exc}") from exc
        frame['timestamp'] = parsed
        frame['hour'] = parsed.dt.hour
        frame['day'] = parsed.dt.normalize()

    frame['valid'] = (
        frame['consumption_kwh'].notna()
        & np.isfinite(frame['consumption_kwh'].fillna(-1.0))
        & (frame['consumption_kwh'] >= 0)
        & frame['hour'].notna()
        & frame['meter_id'].notna()
    )
    return frame


def calibrate(
    records: Union[pd.DataFrame, Iterable[Mapping[str, Any]]],
    vehicle_daily_kwh: float = DEFAULT_VEHICLE_DAILY_KWH,
    max_fleet_size: int = DEFAULT_MAX_FLEET_SIZE,
    min_readings: int = DEFAULT_MIN_READINGS
) -> CalibrationResult:
    """
    Estimate fleet size, peak/valley hour and scaling factor.

    Args:
        records: Iterable of {meter_id, timestamp, consumption_kwh} mappings
            or an equivalent DataFrame
        vehicle_daily_kwh: Assumed daily consumption of one vehicle (kWh)
        max_fleet_size: Practical maximum for the fleet estimate
        min_readings: Minimum number of valid readings required

    Returns:
        CalibrationResult overlay

    Raises:
        DataFormatError: For malformed records
        InsufficientDataError: If fewer than min_readings valid readings exist

    Examples:
        >>> records = [
        ...     {'meter_id': 'M1', 'timestamp': h, 'consumption_kwh': 1.0}
        ...     for h in range(48)
        ... ]
        >>> result = calibrate(records)
    """
    if vehicle_daily_kwh <= 0:
        raise ValueError("vehicle_daily_kwh must be positive")
    if max_fleet_size < 1:
        raise ValueError("max_fleet_size must be at least 1")

    frame = records_to_frame(records)
    valid = frame[frame['valid']]
    n_invalid = len(frame) - len(valid)
    if n_invalid:
        logger.info(f"Discarded {n_invalid} invalid readings")

    if len(valid) < min_readings:
        raise InsufficientDataError(
            f"only {len(valid)} valid readings, at least {min_readings} required",
            {'valid_readings': len(valid), 'min_readings': min_readings}
        )

    meter_means = valid.groupby('meter_id')['consumption_kwh'].mean()
    meters_analyzed = int((meter_means > 0).sum())
    if meters_analyzed == 0:
        raise InsufficientDataError(
            "no meter reports positive consumption",
            {'valid_readings': len(valid)}
        )

    daily_totals = valid.groupby('day')['consumption_kwh'].sum()
    observed = float(daily_totals.mean())

    hourly = valid.groupby('hour')['consumption_kwh'].mean()
    peak_hour = int(hourly.idxmax())
    valley_hour = int(hourly.idxmin())

    estimate = int(round(observed / vehicle_daily_kwh))
    capped = estimate > max_fleet_size
    fleet_size = min(max(estimate, 1), max_fleet_size)
    scaling_factor = observed / (fleet_size * vehicle_daily_kwh)

    logger.info(
        f"Calibration: observed {observed:.2f} kWh/day over {meters_analyzed} meters, "
        f"estimated fleet {fleet_size}, scaling factor {scaling_factor:.3f}, "
        f"peak hour {peak_hour:02d}:00"
    )
    if capped:
        logger.warning(
            f"Fleet estimate {estimate} exceeds the practical maximum {max_fleet_size}")

    return CalibrationResult(
        estimated_fleet_size=fleet_size,
        peak_hour=peak_hour,
        valley_hour=valley_hour,
        scaling_factor=scaling_factor,
        observed_daily_consumption_kwh=observed,
        assumed_vehicle_daily_kwh=vehicle_daily_kwh,
        meters_analyzed=meters_analyzed,
        valid_readings=len(valid),
        fleet_size_capped=capped
    )


def apply_calibration(
    config: EVDemandConfig,
    calibration: CalibrationResult
) -> EVDemandConfig:
    """
    Overlay a calibration result onto a base configuration.

    Sets the fleet size, moves the home start-time mean to the peak hour and
    the work start-time mean to eight hours earlier (wrapping around
    midnight). The base configuration is not modified.
    """
    charging = config.charging
    home = replace(charging.home, start_mean=float(calibration.peak_hour))
    work = replace(
        charging.work,
        start_mean=float((calibration.peak_hour - WORK_START_OFFSET_HOURS) % 24)
    )
    return replace(
        config,
        vehicles=replace(config.vehicles, num_vehicles=calibration.estimated_fleet_size),
        charging=replace(charging, home=home, work=work)
    )


@dataclass
class CalibrationOutcome:
    """
    Result of a calibration attempt with fallback.

    Attributes:
        config: Calibrated configuration, or the base configuration on fallback
        calibration: Calibration result, None on fallback
        diagnostic: Reason for the fallback, None on success
    """
    config: EVDemandConfig
    calibration: Optional[CalibrationResult] = None
    diagnostic: Optional[Diagnostic] = None

    @property
    def calibrated(self) -> bool:
        return self.calibration is not None


def calibrate_or_default(
    records: Union[pd.DataFrame, Iterable[Mapping[str, Any]]],
    config: Optional[EVDemandConfig] = None,
    diagnostics: Optional[DiagnosticsLog] = None,
    **kwargs: Any
) -> CalibrationOutcome:
    """
    Calibrate, falling back to the base configuration on insufficient data.

    DataFormatError still propagates to the caller.
    """
    config = config or EVDemandConfig()
    diagnostics = diagnostics if diagnostics is not None else DiagnosticsLog()
    try:
        calibration = calibrate(records, **kwargs)
    except InsufficientDataError as exc:
        diagnostic = diagnostics.report(
            DiagnosticKind.INSUFFICIENT_DATA,
            f"calibration skipped, using default configuration: {exc.message}",
            **exc.context
        )
        return CalibrationOutcome(config=config, diagnostic=diagnostic)

    if calibration.fleet_size_capped:
        diagnostics.report(
            DiagnosticKind.FLEET_SIZE_CAPPED,
            f"fleet size capped at {calibration.estimated_fleet_size}",
            estimated_fleet_size=calibration.estimated_fleet_size
        )
    return CalibrationOutcome(
        config=apply_calibration(config, calibration),
        calibration=calibration
    )
