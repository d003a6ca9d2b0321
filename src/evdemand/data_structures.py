"""
Data structures for the EV demand Monte Carlo engine.

This module defines the structured configuration (validated once at
construction), the immutable agent record, charging sessions, scenario
lifecycle states and the result records handed to the persistence sink.
"""

import json
import logging
import math
from dataclasses import MISSING, dataclass, field, fields, replace, asdict
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from .diagnostics import Diagnostic, DiagnosticKind
from .errors import ConfigurationError, ScenarioExecutionError

logger = logging.getLogger(__name__)


WEIGHT_TOLERANCE = 1e-9
VALID_RESOLUTIONS = (1, 5, 15, 30, 60)
MAX_VEHICLES = 1_000_000
MAX_DAYS = 365


# =============================================================================
# Agents and sessions
# =============================================================================

class SessionKind(Enum):
    """Location at which a charging session takes place."""
    HOME = "home"
    WORK = "work"
    PUBLIC = "public"


@dataclass(frozen=True)
class Agent:
    """
    One simulated EV with static attributes sampled once.

    Attributes:
        agent_id: Identifier, 1-based
        vehicle_type: Vehicle class (e.g. "compact")
        battery_capacity: Usable battery capacity (kWh)
        charging_power: Maximum charging power (kW)
        efficiency: Driving efficiency (km/kWh)
        annual_mileage: Distance driven per year (km)
        daily_distance: Average distance per day (km)
        home_charging: Whether the agent can charge at home
        work_charging: Whether the agent can charge at work
        soc_start_threshold: SOC below which the driver starts charging
        soc_end_threshold: SOC at which the driver stops charging
        convenience_factor: Willingness to charge, in [0, 1]
        time_flexibility: Schedule flexibility, in [0, 1]
    """
    agent_id: int
    vehicle_type: str
    battery_capacity: float
    charging_power: float
    efficiency: float
    annual_mileage: float
    daily_distance: float
    home_charging: bool
    work_charging: bool
    soc_start_threshold: float
    soc_end_threshold: float
    convenience_factor: float
    time_flexibility: float

    @property
    def daily_energy_kwh(self) -> float:
        """Energy needed for the average daily distance (kWh)."""
        return self.daily_distance / self.efficiency

    def has_access(self, kind: SessionKind) -> bool:
        """Whether the agent may charge at the given location."""
        if kind is SessionKind.HOME:
            return self.home_charging
        if kind is SessionKind.WORK:
            return self.work_charging
        return True

    def to_dict(self) -> Dict:
        """Convert to dictionary for export."""
        return asdict(self)


@dataclass(frozen=True)
class ChargingSession:
    """
    A single charging session of one agent on one simulated day.

    Attributes:
        agent_index: Position of the agent in the population
        day: Day index within the horizon (0-based)
        kind: Charging location
        start_hour: Start time within the day, in [0, 24]
        duration_hours: Sampled session length (hours)
        power_kw: Charging power drawn during the session (kW)
    """
    agent_index: int
    day: int
    kind: SessionKind
    start_hour: float
    duration_hours: float
    power_kw: float

    @property
    def end_hour(self) -> float:
        """End time clipped to the end of the day."""
        return min(self.start_hour + self.duration_hours, 24.0)

    @property
    def clipped_duration(self) -> float:
        return max(0.0, self.end_hour - self.start_hour)

    @property
    def energy_kwh(self) -> float:
        return self.power_kw * self.clipped_duration

    def __repr__(self) -> str:
        return (f"ChargingSession({self.kind.value}, agent={self.agent_index}, "
                f"day={self.day}, {self.start_hour:.2f}h-{self.end_hour:.2f}h, "
                f"{self.power_kw:.1f}kW)")


@dataclass
class SessionBatch:
    """
    Sessions of one kind on one day, stored column-wise.

    All arrays have the same length (number of accepted sessions).
    """
    day: int
    kind: SessionKind
    agent_indices: np.ndarray
    start_hours: np.ndarray
    duration_hours: np.ndarray
    power_kw: np.ndarray

    def __len__(self) -> int:
        return int(self.agent_indices.shape[0])

    def sessions(self) -> List[ChargingSession]:
        """Materialise the batch as ChargingSession records."""
        return [
            ChargingSession(
                agent_index=int(a),
                day=self.day,
                kind=self.kind,
                start_hour=float(s),
                duration_hours=float(d),
                power_kw=float(p)
            )
            for a, s, d, p in zip(
                self.agent_indices, self.start_hours,
                self.duration_hours, self.power_kw
            )
        ]


# =============================================================================
# Configuration
# =============================================================================

def _check(condition: bool, message: str, **context: Any) -> None:
    if not condition:
        raise ConfigurationError(message, context)


def _is_int(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def _normalize_weights(
    name: str,
    weights: List[float],
    n_options: int,
    diagnostics: List[Diagnostic]
) -> List[float]:
    """
    Return weights summing to 1.

    Weights already summing to 1 are returned unchanged; otherwise they are
    renormalised and a diagnostic is appended.
    """
    _check(len(weights) == n_options,
           f"{name} has {len(weights)} weights for {n_options} options",
           field=name)
    _check(all(math.isfinite(w) and w >= 0 for w in weights),
           f"{name} must contain finite, nonnegative weights", field=name)
    total = float(sum(weights))
    _check(total > 0, f"{name} must not sum to zero", field=name)

    if abs(total - 1.0) <= WEIGHT_TOLERANCE:
        return weights

    normalized = [w / total for w in weights]
    logger.warning(f"{name} summed to {total:.6f}; normalizing to 1")
    diagnostics.append(Diagnostic(
        kind=DiagnosticKind.WEIGHTS_RENORMALIZED,
        message=f"{name} summed to {total:.6f}; normalized to 1",
        context={'field': name, 'original_sum': total}
    ))
    return normalized


@dataclass
class VehicleConfig:
    """
    Vehicle population parameters.

    Attributes:
        num_vehicles: Fleet size (number of agents)
        vehicle_types: Vehicle classes
        vehicle_type_probs: Selection weights for vehicle_types
        efficiency: Efficiency per vehicle class (km/kWh)
        battery_sizes: Battery capacity options (kWh)
        battery_size_probs: Selection weights for battery_sizes
        charging_powers: Charging power options (kW)
        charging_power_probs: Selection weights for charging_powers
        annual_mileage_mean: Mean of the annual mileage distribution (km)
        annual_mileage_sd: Standard deviation of annual mileage (km)
        annual_mileage_min: Lower truncation bound (km)
        annual_mileage_max: Upper truncation bound (km)
        home_access_prob: Probability an agent can charge at home
        work_access_prob: Probability an agent can charge at work
    """
    num_vehicles: int = 10000
    vehicle_types: List[str] = field(default_factory=lambda: ["compact", "sedan", "suv"])
    vehicle_type_probs: List[float] = field(default_factory=lambda: [0.5, 0.3, 0.2])
    efficiency: List[float] = field(default_factory=lambda: [6.0, 7.0, 8.0])
    battery_sizes: List[float] = field(default_factory=lambda: [40.0, 60.0, 80.0])
    battery_size_probs: List[float] = field(default_factory=lambda: [0.4, 0.4, 0.2])
    charging_powers: List[float] = field(default_factory=lambda: [3.7, 7.4, 11.0, 22.0])
    charging_power_probs: List[float] = field(default_factory=lambda: [0.3, 0.4, 0.2, 0.1])
    annual_mileage_mean: float = 15000.0
    annual_mileage_sd: float = 5000.0
    annual_mileage_min: float = 5000.0
    annual_mileage_max: float = 50000.0
    home_access_prob: float = 0.7
    work_access_prob: float = 0.4
    diagnostics: List[Diagnostic] = field(
        default_factory=list, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Validate ranges and normalise selection weights."""
        _check(_is_int(self.num_vehicles) and 1 <= self.num_vehicles <= MAX_VEHICLES,
               f"num_vehicles must be an integer between 1 and {MAX_VEHICLES:,}",
               num_vehicles=self.num_vehicles)
        _check(len(self.vehicle_types) > 0, "vehicle_types cannot be empty")
        _check(len(self.efficiency) == len(self.vehicle_types),
               "efficiency needs one value per vehicle type")
        _check(all(e > 0 for e in self.efficiency), "efficiency values must be positive")
        _check(len(self.battery_sizes) > 0 and all(b > 0 for b in self.battery_sizes),
               "battery_sizes must be non-empty and positive")
        _check(len(self.charging_powers) > 0 and all(p > 0 for p in self.charging_powers),
               "charging_powers must be non-empty and positive")
        _check(self.annual_mileage_sd > 0, "annual_mileage_sd must be positive")
        _check(0 <= self.annual_mileage_min < self.annual_mileage_max,
               "annual mileage bounds must satisfy 0 <= min < max",
               min=self.annual_mileage_min, max=self.annual_mileage_max)
        for name in ('home_access_prob', 'work_access_prob'):
            value = getattr(self, name)
            _check(0.0 <= value <= 1.0, f"{name} must be between 0 and 1", value=value)

        self.vehicle_type_probs = _normalize_weights(
            'vehicle_type_probs', self.vehicle_type_probs,
            len(self.vehicle_types), self.diagnostics)
        self.battery_size_probs = _normalize_weights(
            'battery_size_probs', self.battery_size_probs,
            len(self.battery_sizes), self.diagnostics)
        self.charging_power_probs = _normalize_weights(
            'charging_power_probs', self.charging_power_probs,
            len(self.charging_powers), self.diagnostics)


@dataclass
class SimulationConfig:
    """
    Horizon, resolution and Monte Carlo parameters.

    Attributes:
        days: Number of simulated days
        time_resolution: Bucket length in minutes
        monte_carlo_runs: Number of replications
        random_seed: Global seed for all random streams
        start_date: First simulated day (ISO format), used for exports
        confidence_level: Confidence level of the summary interval
        ci_target: Statistic the interval is computed for ("peak" or "mean")
        keep_series: Keep per-replication series in the result
    """
    days: int = 30
    time_resolution: int = 15
    monte_carlo_runs: int = 1000
    random_seed: int = 42
    start_date: str = "2024-01-01"
    confidence_level: float = 0.95
    ci_target: str = "peak"
    keep_series: bool = True

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        _check(_is_int(self.days) and 1 <= self.days <= MAX_DAYS,
               f"days must be an integer between 1 and {MAX_DAYS}", days=self.days)
        _check(self.time_resolution in VALID_RESOLUTIONS,
               f"time_resolution must be one of {VALID_RESOLUTIONS} minutes",
               time_resolution=self.time_resolution)
        _check(_is_int(self.monte_carlo_runs) and self.monte_carlo_runs >= 1,
               "monte_carlo_runs must be an integer of at least 1",
               monte_carlo_runs=self.monte_carlo_runs)
        _check(_is_int(self.random_seed) and self.random_seed >= 0,
               "random_seed must be a nonnegative integer", random_seed=self.random_seed)
        _check(0.0 < self.confidence_level < 1.0,
               "confidence_level must be between 0 and 1 (exclusive)")
        _check(self.ci_target in ("peak", "mean"), "ci_target must be 'peak' or 'mean'")
        try:
            date.fromisoformat(self.start_date)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"start_date must be an ISO date, got {self.start_date!r}"
            ) from None

    @property
    def buckets_per_day(self) -> int:
        return 24 * 60 // self.time_resolution

    @property
    def series_length(self) -> int:
        return self.days * self.buckets_per_day


@dataclass
class LocationParams:
    """
    Distribution parameters for one charging location.

    Attributes:
        probability: Daily probability of a session when access exists
        start_mean: Mean start hour (Normal)
        start_sd: Standard deviation of the start hour
        duration_shape: Weibull shape of the session duration
        duration_scale: Weibull scale of the session duration (hours)
    """
    probability: float
    start_mean: float
    start_sd: float
    duration_shape: float
    duration_scale: float

    def validate(self, name: str = "location") -> None:
        _check(0.0 <= self.probability <= 1.0,
               f"{name}.probability must be between 0 and 1", value=self.probability)
        _check(math.isfinite(self.start_mean), f"{name}.start_mean must be finite")
        _check(self.start_sd >= 0, f"{name}.start_sd must be nonnegative",
               value=self.start_sd)
        _check(self.duration_shape > 0, f"{name}.duration_shape must be positive",
               value=self.duration_shape)
        _check(self.duration_scale > 0, f"{name}.duration_scale must be positive",
               value=self.duration_scale)


@dataclass
class ChargingConfig:
    """Per-location charging behaviour (home, work, public)."""
    home: LocationParams = field(
        default_factory=lambda: LocationParams(0.8, 19.0, 2.0, 2.0, 3.0))
    work: LocationParams = field(
        default_factory=lambda: LocationParams(0.3, 9.0, 1.0, 1.5, 4.0))
    public: LocationParams = field(
        default_factory=lambda: LocationParams(0.1, 14.0, 4.0, 1.0, 2.0))

    def __post_init__(self) -> None:
        for kind in SessionKind:
            params = getattr(self, kind.value)
            if isinstance(params, Mapping):
                setattr(self, kind.value, _build(LocationParams, params, kind.value))
        self.validate()

    def validate(self) -> None:
        for kind in SessionKind:
            self.params(kind).validate(kind.value)

    def params(self, kind: SessionKind) -> LocationParams:
        return getattr(self, kind.value)


@dataclass
class BehavioralConfig:
    """
    Distribution parameters for the behavioural agent attributes.

    SOC thresholds use truncated normals; convenience and time flexibility
    use Beta distributions.
    """
    soc_start_mean: float = 0.3
    soc_start_sd: float = 0.1
    soc_start_min: float = 0.1
    soc_start_max: float = 0.5
    soc_end_mean: float = 0.9
    soc_end_sd: float = 0.05
    soc_end_min: float = 0.7
    soc_end_max: float = 1.0
    convenience_alpha: float = 2.0
    convenience_beta: float = 1.0
    flexibility_alpha: float = 1.5
    flexibility_beta: float = 1.5

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        for prefix in ('soc_start', 'soc_end'):
            lo = getattr(self, f"{prefix}_min")
            hi = getattr(self, f"{prefix}_max")
            _check(0.0 <= lo < hi <= 1.0,
                   f"{prefix} bounds must satisfy 0 <= min < max <= 1", min=lo, max=hi)
            _check(getattr(self, f"{prefix}_sd") > 0, f"{prefix}_sd must be positive")
        _check(self.soc_start_min < self.soc_end_max,
               "soc_start_min must be below soc_end_max")
        for name in ('convenience_alpha', 'convenience_beta',
                     'flexibility_alpha', 'flexibility_beta'):
            _check(getattr(self, name) > 0, f"{name} must be positive")


@dataclass
class ProcessingConfig:
    """
    Execution substrate parameters.

    Attributes:
        backend: "serial", "thread" or "process"
        max_workers: Worker pool size (None lets the executor decide)
        scenario_timeout_s: Per-scenario timeout in seconds (None disables)
        max_failure_fraction: Failed share of replications tolerated
        enable_logging: Configure INFO-level logging on simulator creation
    """
    backend: str = "serial"
    max_workers: Optional[int] = None
    scenario_timeout_s: Optional[float] = None
    max_failure_fraction: float = 0.5
    enable_logging: bool = False

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        _check(self.backend in ("serial", "thread", "process"),
               "backend must be 'serial', 'thread' or 'process'", backend=self.backend)
        _check(self.max_workers is None or self.max_workers >= 1,
               "max_workers must be at least 1")
        _check(self.scenario_timeout_s is None or self.scenario_timeout_s > 0,
               "scenario_timeout_s must be positive")
        _check(0.0 <= self.max_failure_fraction <= 1.0,
               "max_failure_fraction must be between 0 and 1")


def _build(cls, mapping: Mapping, section: str):
    """Instantiate a config dataclass from a mapping, rejecting unknown keys."""
    if not isinstance(mapping, Mapping):
        raise ConfigurationError(f"section '{section}' must be a mapping")
    known = {f.name for f in fields(cls) if f.init}
    unknown = set(mapping) - known
    if unknown:
        raise ConfigurationError(
            f"unknown keys in section '{section}': {sorted(unknown)}",
            {'section': section}
        )
    required = {
        f.name for f in fields(cls)
        if f.init and f.default is MISSING and f.default_factory is MISSING
    }
    missing = required - set(mapping)
    if missing:
        raise ConfigurationError(
            f"missing keys in section '{section}': {sorted(missing)}",
            {'section': section}
        )
    try:
        return cls(**dict(mapping))
    except TypeError as exc:
        raise ConfigurationError(
            f"invalid value type in section '{section}': {exc}",
            {'section': section}
        ) from exc


@dataclass
class EVDemandConfig:
    """Complete engine configuration."""
    vehicles: VehicleConfig = field(default_factory=VehicleConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    charging: ChargingConfig = field(default_factory=ChargingConfig)
    behavioral: BehavioralConfig = field(default_factory=BehavioralConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)

    SECTIONS = {
        'vehicles': VehicleConfig,
        'simulation': SimulationConfig,
        'charging': ChargingConfig,
        'behavioral': BehavioralConfig,
        'processing': ProcessingConfig,
    }

    @classmethod
    def from_dict(cls, data: Mapping) -> "EVDemandConfig":
        """
        Build a configuration from nested plain mappings.

        Missing sections take their defaults; unknown sections or keys raise
        ConfigurationError.

        Examples:
            >>> config = EVDemandConfig.from_dict({
            ...     'vehicles': {'num_vehicles': 100},
            ...     'simulation': {'days': 1, 'monte_carlo_runs': 5},
            ... })
        """
        unknown = set(data) - set(cls.SECTIONS)
        if unknown:
            raise ConfigurationError(f"unknown configuration sections: {sorted(unknown)}")
        sections = {
            name: _build(section_cls, data[name], name)
            for name, section_cls in cls.SECTIONS.items()
            if name in data
        }
        return cls(**sections)

    @classmethod
    def from_json(cls, filepath: str) -> "EVDemandConfig":
        with open(filepath, 'r') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"invalid JSON in {filepath}: {exc}") from exc
        return cls.from_dict(data)

    def to_dict(self) -> Dict:
        """Convert to nested dictionary (without diagnostics)."""
        data = asdict(self)
        data['vehicles'].pop('diagnostics', None)
        return data

    @property
    def diagnostics(self) -> List[Diagnostic]:
        """Diagnostics raised while validating the configuration."""
        return list(self.vehicles.diagnostics)

    def with_overrides(self, **sections: Any) -> "EVDemandConfig":
        """Return a copy with whole sections replaced."""
        return replace(self, **sections)


# =============================================================================
# Scenario lifecycle
# =============================================================================

class ScenarioState(Enum):
    """Lifecycle of a Monte Carlo replication."""
    CREATED = "created"
    SAMPLED = "sampled"
    COMPOSED = "composed"
    ADJUSTED = "adjusted"
    AGGREGATED = "aggregated"
    DISCARDED = "discarded"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    ScenarioState.CREATED: {ScenarioState.SAMPLED, ScenarioState.FAILED},
    ScenarioState.SAMPLED: {ScenarioState.COMPOSED, ScenarioState.FAILED},
    ScenarioState.COMPOSED: {ScenarioState.ADJUSTED, ScenarioState.FAILED},
    ScenarioState.ADJUSTED: {ScenarioState.AGGREGATED},
    ScenarioState.AGGREGATED: {ScenarioState.DISCARDED},
    ScenarioState.DISCARDED: set(),
    ScenarioState.FAILED: set(),
}


@dataclass
class ScenarioResult:
    """
    Output of one replication.

    Attributes:
        replication_index: Index of the replication (0-based)
        coincidence_factor: Diversity factor applied to the raw series
        raw_series: Aggregate demand before the coincidence correction (kW)
        adjusted_series: Aggregate demand after the correction (kW)
        peak_demand: Maximum of the adjusted series (kW)
        mean_demand: Mean of the adjusted series (kW)
        min_demand: Minimum of the adjusted series (kW)
        n_sessions: Number of sampled charging sessions
        state: Final lifecycle state
    """
    replication_index: int
    coincidence_factor: float
    raw_series: Optional[np.ndarray]
    adjusted_series: Optional[np.ndarray]
    peak_demand: float
    mean_demand: float
    min_demand: float
    n_sessions: int = 0
    state: ScenarioState = ScenarioState.ADJUSTED

    @property
    def load_factor(self) -> float:
        """Mean over peak demand (0 when the series is all zero)."""
        if self.peak_demand <= 0:
            return 0.0
        return self.mean_demand / self.peak_demand

    def drop_series(self) -> None:
        self.raw_series = None
        self.adjusted_series = None

    def to_dict(self, include_series: bool = False) -> Dict:
        data = {
            'replication_index': self.replication_index,
            'coincidence_factor': self.coincidence_factor,
            'peak_demand': self.peak_demand,
            'mean_demand': self.mean_demand,
            'min_demand': self.min_demand,
            'load_factor': self.load_factor,
            'n_sessions': self.n_sessions,
            'state': self.state.value,
        }
        if include_series:
            data['raw_series'] = (None if self.raw_series is None
                                  else self.raw_series.tolist())
            data['adjusted_series'] = (None if self.adjusted_series is None
                                       else self.adjusted_series.tolist())
        return data

    def __repr__(self) -> str:
        return (f"ScenarioResult(run={self.replication_index}, "
                f"peak={self.peak_demand:.1f}kW, mean={self.mean_demand:.1f}kW, "
                f"FC={self.coincidence_factor:.4f})")


@dataclass
class SimulationSummary:
    """
    Summary statistics across all successful replications.

    Attributes:
        total_runs: Replications attempted
        successful_runs: Replications aggregated
        failed_runs: Replications excluded after a failure
        mean_daily_demand: Mean of per-replication mean demand (kW)
        peak_demand: Maximum over all replications and buckets (kW)
        min_demand: Minimum over all replications and buckets (kW)
        load_factor: mean_daily_demand / peak_demand
        std_dev: Sample standard deviation of per-replication peaks (kW)
        ci_lower: Lower confidence bound for ci_target
        ci_upper: Upper confidence bound for ci_target
        ci_target: "peak" or "mean"
        confidence_level: Confidence level of the interval
        avg_coincidence_factor: Mean coincidence factor applied
        peak_hour: Hour of day with the highest mean demand
        valley_hour: Hour of day with the lowest mean demand
    """
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    mean_daily_demand: float = 0.0
    peak_demand: float = 0.0
    min_demand: float = 0.0
    load_factor: float = 0.0
    std_dev: float = 0.0
    ci_lower: float = 0.0
    ci_upper: float = 0.0
    ci_target: str = "peak"
    confidence_level: float = 0.95
    avg_coincidence_factor: float = 0.0
    peak_hour: int = 0
    valley_hour: int = 0

    def to_dict(self) -> Dict:
        """Convert to dictionary for export."""
        return asdict(self)

    def __repr__(self) -> str:
        return (f"SimulationSummary(runs={self.successful_runs}/{self.total_runs}, "
                f"mean={self.mean_daily_demand:.2f}kW, peak={self.peak_demand:.2f}kW, "
                f"LF={self.load_factor:.3f}, peak_hour={self.peak_hour})")


@dataclass
class SimulationResult:
    """
    Complete output of a simulation run.

    Attributes:
        simulation_id: Run identifier
        config: Configuration the run used
        results: Per-replication results ordered by replication index
        summary: Summary statistics
        mean_profile: Mean adjusted series across replications (kW)
        diagnostics: Non-fatal conditions reported during the run
        duration_s: Wall-clock duration of the run (seconds)
    """
    simulation_id: str
    config: EVDemandConfig
    results: List[ScenarioResult]
    summary: SimulationSummary
    mean_profile: np.ndarray
    diagnostics: List[Diagnostic] = field(default_factory=list)
    duration_s: float = 0.0

    def to_dict(self, include_series: bool = False) -> Dict:
        return {
            'simulation_id': self.simulation_id,
            'config': self.config.to_dict(),
            'results': [r.to_dict(include_series) for r in self.results],
            'summary': self.summary.to_dict(),
            'mean_profile': self.mean_profile.tolist(),
            'diagnostics': [d.to_dict() for d in self.diagnostics],
            'duration_s': self.duration_s,
        }


@dataclass(frozen=True)
class CalibrationResult:
    """
    Configuration overlay derived from empirical consumption data.

    Attributes:
        estimated_fleet_size: Vehicles needed to match observed consumption
        peak_hour: Hour of day with the highest mean consumption
        valley_hour: Hour of day with the lowest mean consumption
        scaling_factor: Observed over assumed daily consumption
        observed_daily_consumption_kwh: Mean daily consumption over all meters
        assumed_vehicle_daily_kwh: Per-vehicle daily consumption constant
        meters_analyzed: Number of meters with valid readings
        valid_readings: Number of readings used
        fleet_size_capped: Whether the estimate hit the practical maximum
    """
    estimated_fleet_size: int
    peak_hour: int
    valley_hour: int
    scaling_factor: float
    observed_daily_consumption_kwh: float
    assumed_vehicle_daily_kwh: float
    meters_analyzed: int
    valid_readings: int
    fleet_size_capped: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class ValidationMetrics:
    """
    Agreement between a simulated and an empirical series.

    MAPE is computed only over buckets whose empirical value is nonzero;
    the number of excluded buckets is reported in mape_excluded.
    """
    mae: float
    rmse: float
    mape: float
    correlation: float
    bias: float
    sample_count: int
    sim_mean: float = 0.0
    real_mean: float = 0.0
    mape_excluded: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)

    def __repr__(self) -> str:
        return (f"ValidationMetrics(n={self.sample_count}, MAE={self.mae:.3f}, "
                f"RMSE={self.rmse:.3f}, MAPE={self.mape:.2f}%, "
                f"r={self.correlation:.3f}, bias={self.bias:.3f})")


def check_transition(
    current: ScenarioState,
    target: ScenarioState,
    replication_index: Optional[int] = None
) -> ScenarioState:
    """Return target if the lifecycle allows moving there from current."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise ScenarioExecutionError(
            f"invalid scenario transition {current.value} -> {target.value}",
            replication_index=replication_index
        )
    return target
