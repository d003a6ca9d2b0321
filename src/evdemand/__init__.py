"""
EV Demand Monte Carlo Engine

Estimates aggregate electricity demand from electric-vehicle charging by
combining an agent-based simulation of individual vehicles with Monte Carlo
replication, a fleet-size dependent coincidence factor and calibration and
validation against metered consumption data.

Main Components:
- EVDemandSimulator: Runs all replications and summarises them
- EVDemandConfig: Structured, validated configuration
- PopulationGenerator: Heterogeneous EV agent population
- ChargingEventSampler: Home, work and public charging sessions
- compose_aggregate: Sessions to fixed-resolution demand series
- CoincidenceAdjuster: Dynamic coincidence factor FC(n)
- MonteCarloAggregator: Streaming summary statistics
- calibrate / validate_series: Empirical calibration and validation

Quick Start:
    >>> from evdemand import EVDemandConfig, EVDemandSimulator
    >>>
    >>> config = EVDemandConfig.from_dict({
    ...     'vehicles': {'num_vehicles': 100},
    ...     'simulation': {'days': 1, 'monte_carlo_runs': 5, 'random_seed': 42},
    ... })
    >>> simulator = EVDemandSimulator(config)
    >>> result = simulator.run()
    >>> result.summary.successful_runs
    5

Version: 0.1.0
"""

from .data_structures import (
    Agent,
    SessionKind,
    ChargingSession,
    SessionBatch,
    VehicleConfig,
    SimulationConfig,
    LocationParams,
    ChargingConfig,
    BehavioralConfig,
    ProcessingConfig,
    EVDemandConfig,
    ScenarioState,
    ScenarioResult,
    SimulationSummary,
    SimulationResult,
    CalibrationResult,
    ValidationMetrics,
)
from .errors import (
    EVDemandError,
    ConfigurationError,
    DataFormatError,
    InsufficientDataError,
    ScenarioExecutionError,
    FatalError,
)
from .diagnostics import Diagnostic, DiagnosticKind, DiagnosticsLog
from .population import (
    PopulationArrays,
    PopulationGenerator,
    generate_population,
    population_rng,
)
from .scenario_builder import Scenario, ScenarioBuilder
from .charging_sampler import ChargingEventSampler
from .timeseries import (
    bucket_range,
    agent_demand_vector,
    compose_aggregate,
    individual_demand_matrix,
)
from .coincidence import CoincidenceAdjuster, coincidence_factor
from .aggregator import MonteCarloAggregator
from .calibration import (
    calibrate,
    apply_calibration,
    calibrate_or_default,
    CalibrationOutcome,
)
from .validation import validate_series, validate_against_records
from .simulator import (
    EVDemandSimulator,
    InMemorySink,
    JsonFileSink,
    run_scenario,
    run_simulation,
)
from .utils import (
    hour_of_day_profile,
    resample_series,
    series_to_frame,
    results_to_frame,
)

__version__ = "0.1.0"

__all__ = [
    # Simulator
    'EVDemandSimulator',
    'run_simulation',
    'run_scenario',
    'InMemorySink',
    'JsonFileSink',

    # Configuration
    'EVDemandConfig',
    'VehicleConfig',
    'SimulationConfig',
    'LocationParams',
    'ChargingConfig',
    'BehavioralConfig',
    'ProcessingConfig',

    # Agents and sessions
    'Agent',
    'SessionKind',
    'ChargingSession',
    'SessionBatch',

    # Scenarios and results
    'Scenario',
    'ScenarioBuilder',
    'ScenarioState',
    'ScenarioResult',
    'SimulationSummary',
    'SimulationResult',
    'CalibrationResult',
    'ValidationMetrics',

    # Errors and diagnostics
    'EVDemandError',
    'ConfigurationError',
    'DataFormatError',
    'InsufficientDataError',
    'ScenarioExecutionError',
    'FatalError',
    'Diagnostic',
    'DiagnosticKind',
    'DiagnosticsLog',

    # Pipeline components
    'PopulationArrays',
    'PopulationGenerator',
    'generate_population',
    'population_rng',
    'ChargingEventSampler',
    'bucket_range',
    'agent_demand_vector',
    'compose_aggregate',
    'individual_demand_matrix',
    'CoincidenceAdjuster',
    'coincidence_factor',
    'MonteCarloAggregator',

    # Calibration and validation
    'calibrate',
    'apply_calibration',
    'calibrate_or_default',
    'CalibrationOutcome',
    'validate_series',
    'validate_against_records',

    # Utilities
    'hour_of_day_profile',
    'resample_series',
    'series_to_frame',
    'results_to_frame',
]
