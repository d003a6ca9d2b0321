"""
EV demand simulator - main orchestration.

Runs the complete pipeline: population generation, scenario building,
per-replication sampling, composition and coincidence adjustment, then a
streaming Monte Carlo reduction into summary statistics.

Key Features:
- Random streams derived from (global seed, replication index) only, so
  results are bit-identical for any backend and worker count
- Serial, thread-pool or process-pool execution with optional per-scenario
  timeout
- Per-replication failure isolation with escalation to FatalError once the
  failed share exceeds the configured threshold
- Structured diagnostics for every non-fatal condition
"""

import json
import logging
import multiprocessing
import random
import time
from concurrent.futures import (
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    TimeoutError as FutureTimeoutError,
)
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np

from .aggregator import MonteCarloAggregator
from .charging_sampler import ChargingEventSampler
from .coincidence import CoincidenceAdjuster
from .data_structures import (
    Agent,
    ChargingConfig,
    EVDemandConfig,
    ScenarioResult,
    ScenarioState,
    SimulationResult,
)
from .diagnostics import DiagnosticKind, DiagnosticsLog
from .errors import FatalError, ScenarioExecutionError
from .population import PopulationArrays, PopulationGenerator, population_rng
from .scenario_builder import Scenario, ScenarioBuilder
from .timeseries import compose_aggregate


logger = logging.getLogger(__name__)

WORKER_STATES = (ScenarioState.SAMPLED, ScenarioState.COMPOSED, ScenarioState.ADJUSTED)


def generate_simulation_id() -> str:
    """Run identifier: EV_SIM_<YYYYmmdd_HHMMSS>_<4 digits>."""
    return f"EV_SIM_{datetime.now():%Y%m%d_%H%M%S}_{random.randint(1000, 9999)}"


def _check_series(series: np.ndarray, replication_index: int) -> None:
    if not np.all(np.isfinite(series)):
        raise ScenarioExecutionError(
            "non-finite values in demand series", replication_index=replication_index)
    if np.any(series < 0):
        raise ScenarioExecutionError(
            "negative values in demand series", replication_index=replication_index)


def run_scenario(
    scenario: Scenario,
    charging_config: ChargingConfig,
    population: Optional[PopulationArrays] = None
) -> ScenarioResult:
    """
    Execute one replication: sample, compose, adjust.

    Args:
        scenario: Replication descriptor (advanced through its states)
        charging_config: Per-location charging parameters
        population: Column view of scenario.agents (built if omitted)

    Returns:
        ScenarioResult with raw and adjusted series

    Raises:
        ScenarioExecutionError: On a numerical failure; the scenario is
            marked FAILED
    """
    index = scenario.replication_index
    try:
        if population is None:
            population = PopulationArrays.from_agents(scenario.agents)
        rng = scenario.rng()

        batches = ChargingEventSampler(charging_config).sample(population, scenario.days, rng)
        scenario.advance(ScenarioState.SAMPLED)

        raw = compose_aggregate(batches, scenario.days, scenario.time_resolution)
        _check_series(raw, index)
        scenario.advance(ScenarioState.COMPOSED)

        adjusted, factor = CoincidenceAdjuster(len(population)).adjust(raw)
        _check_series(adjusted, index)
        scenario.advance(ScenarioState.ADJUSTED)
    except ScenarioExecutionError:
        scenario.advance(ScenarioState.FAILED)
        raise
    except (ArithmeticError, ValueError) as exc:
        scenario.advance(ScenarioState.FAILED)
        raise ScenarioExecutionError(str(exc), replication_index=index) from exc

    return ScenarioResult(
        replication_index=index,
        coincidence_factor=factor,
        raw_series=raw,
        adjusted_series=adjusted,
        peak_demand=float(adjusted.max()),
        mean_demand=float(adjusted.mean()),
        min_demand=float(adjusted.min()),
        n_sessions=sum(len(b) for b in batches),
        state=ScenarioState.ADJUSTED
    )


# Poll interval while a submitted scenario waits for a free worker
START_POLL_S = 0.05


def _run_scenario_task(started, scenario, charging_config, population):
    """Pool entry point: note the start time, then run the scenario."""
    if started is not None:
        started[scenario.replication_index] = time.time()
    return run_scenario(scenario, charging_config, population)


def _wait_for_scenario(future, started, replication_index, timeout):
    """
    Result of a pooled scenario, waiting at most timeout seconds after it
    started running.

    Raises:
        concurrent.futures.TimeoutError: If the scenario has run for longer
            than timeout
    """
    if timeout is None:
        return future.result()
    while True:
        began = started.get(replication_index)
        if began is None:
            wait = START_POLL_S
        else:
            wait = began + timeout - time.time()
            if wait <= 0:
                raise FutureTimeoutError()
        try:
            return future.result(timeout=wait)
        except FutureTimeoutError:
            continue


class InMemorySink:
    """Persistence sink keeping results in a list."""

    def __init__(self):
        self.saved: List[SimulationResult] = []

    def save(self, result: SimulationResult) -> None:
        self.saved.append(result)


class JsonFileSink:
    """
    Persistence sink writing each result to a JSON file.

    Attributes:
        filepath: Output path
        include_series: Whether per-replication series are written
    """

    def __init__(self, filepath: str, include_series: bool = False):
        self.filepath = filepath
        self.include_series = include_series

    def save(self, result: SimulationResult) -> None:
        with open(self.filepath, 'w') as f:
            json.dump(result.to_dict(self.include_series), f, indent=2, default=str)
        logger.info(f"Saved simulation {result.simulation_id} to {self.filepath}")


class EVDemandSimulator:
    """
    Agent-based Monte Carlo EV demand simulator.

    Attributes:
        config: Engine configuration
        diagnostics: Non-fatal conditions reported so far
        population_generator: Builds the agent population
        scenario_builder: Builds replication descriptors
        sampler: Charging event sampler (validated eagerly)
        scenario_states: Final lifecycle state per replication of the last run
        last_result: Result of the last successful run

    Examples:
        >>> config = EVDemandConfig.from_dict({
        ...     'vehicles': {'num_vehicles': 100},
        ...     'simulation': {'days': 1, 'monte_carlo_runs': 5, 'random_seed': 42},
        ... })
        >>> simulator = EVDemandSimulator(config)
        >>> result = simulator.run()
        >>> result.summary.peak_demand >= result.summary.mean_daily_demand
        True
    """

    def __init__(self, config: Optional[EVDemandConfig] = None):
        self.config = config or EVDemandConfig()

        if self.config.processing.enable_logging:
            logging.basicConfig(level=logging.INFO)

        self.diagnostics = DiagnosticsLog()
        self.diagnostics.extend(self.config.diagnostics)

        self.population_generator = PopulationGenerator(
            self.config.vehicles, self.config.behavioral)
        self.scenario_builder = ScenarioBuilder(self.config)
        self.sampler = ChargingEventSampler(self.config.charging)

        self.scenario_states: Dict[int, ScenarioState] = {}
        self.last_result: Optional[SimulationResult] = None

        logger.info(f"EV demand simulator initialized with config: {self.config}")

    def generate_population(self) -> Sequence[Agent]:
        """Population for the configured seed."""
        return self.population_generator.generate(
            population_rng(self.config.simulation.random_seed))

    def run(
        self,
        population: Optional[Sequence[Agent]] = None,
        sink=None
    ) -> SimulationResult:
        """
        Run all Monte Carlo replications and summarise them.

        With processing.scenario_timeout_s set, a pooled replication that runs
        longer than the timeout is excluded as SCENARIO_TIMEOUT. Threads cannot
        be interrupted: the timed-out worker keeps its pool slot until it
        returns, so with a single worker the replications queued behind it
        start only then. The run does not wait for such a thread on exit.
        A timed-out process worker is waited for when the pool shuts down.

        Args:
            population: Agents to simulate (generated from the seed if None)
            sink: Optional object with a save(SimulationResult) method

        Returns:
            SimulationResult with per-replication results and summary

        Raises:
            FatalError: If the failed share of replications exceeds
                processing.max_failure_fraction, or none succeeded
        """
        start = time.perf_counter()
        sim = self.config.simulation
        processing = self.config.processing
        simulation_id = generate_simulation_id()

        agents = tuple(population) if population is not None else tuple(self.generate_population())
        arrays = PopulationArrays.from_agents(agents)
        scenarios = self.scenario_builder.build(agents)
        total = len(scenarios)

        logger.info(
            f"Starting simulation {simulation_id}: {total} runs, "
            f"{len(agents):,} agents, backend={processing.backend}"
        )

        aggregator = MonteCarloAggregator(
            time_resolution=sim.time_resolution,
            confidence_level=sim.confidence_level,
            ci_target=sim.ci_target
        )
        results: List[ScenarioResult] = []
        self.scenario_states = {}

        if processing.backend == "serial":
            outcomes = self._run_serial(scenarios, arrays)
        else:
            outcomes = self._run_pool(scenarios, arrays)

        for scenario, outcome in outcomes:
            if isinstance(outcome, ScenarioResult):
                aggregator.add(outcome)
                scenario.advance(ScenarioState.AGGREGATED)
                outcome.state = ScenarioState.AGGREGATED
                if not sim.keep_series:
                    outcome.drop_series()
                results.append(outcome)
                scenario.advance(ScenarioState.DISCARDED)
            else:
                self._record_failure(scenario, outcome, aggregator)
                if aggregator.failed_runs / total > processing.max_failure_fraction:
                    outcomes.close()
                    raise FatalError(
                        f"{aggregator.failed_runs} of {total} replications failed, "
                        f"above the tolerated fraction {processing.max_failure_fraction}",
                        {'failed_runs': aggregator.failed_runs, 'total_runs': total}
                    )
            self.scenario_states[scenario.replication_index] = scenario.state

        summary = aggregator.summarize(total_runs=total)
        result = SimulationResult(
            simulation_id=simulation_id,
            config=self.config,
            results=results,
            summary=summary,
            mean_profile=aggregator.mean_profile(),
            diagnostics=list(self.diagnostics),
            duration_s=time.perf_counter() - start
        )
        logger.info(f"Simulation {simulation_id} completed: {summary}")

        if sink is not None:
            sink.save(result)
        self.last_result = result
        return result

    def _run_serial(self, scenarios: List[Scenario], arrays: PopulationArrays):
        """Yield (scenario, result or exception) in replication order."""
        for scenario in scenarios:
            try:
                yield scenario, run_scenario(scenario, self.config.charging, arrays)
            except ScenarioExecutionError as exc:
                yield scenario, exc

    def _run_pool(self, scenarios: List[Scenario], arrays: PopulationArrays):
        """
        Yield (scenario, result or exception) in replication order.

        Work runs on a thread or process pool; results are consumed in
        submission order so the reduction order never depends on completion
        order. The per-scenario timeout counts from the moment a worker picks
        the scenario up, so replications queued behind a slow one keep their
        full allowance.
        """
        processing = self.config.processing
        timeout = processing.scenario_timeout_s
        threaded = processing.backend == "thread"
        executor_cls = ThreadPoolExecutor if threaded else ProcessPoolExecutor
        executor: Executor = executor_cls(max_workers=processing.max_workers)
        manager = None
        if timeout is None:
            started = None
        elif threaded:
            started = {}
        else:
            manager = multiprocessing.Manager()
            started = manager.dict()
        timed_out = False
        try:
            futures = []
            for scenario in scenarios:
                # Workers advance a private copy; states are mirrored back below
                task = replace(scenario, agents=(), history=[])
                futures.append(executor.submit(
                    _run_scenario_task, started, task, self.config.charging, arrays))

            for scenario, future in zip(scenarios, futures):
                try:
                    outcome = _wait_for_scenario(
                        future, started, scenario.replication_index, timeout)
                except ScenarioExecutionError as exc:
                    outcome = exc
                except FutureTimeoutError:
                    timed_out = True
                    outcome = ScenarioExecutionError(
                        f"timed out after {timeout}s",
                        replication_index=scenario.replication_index,
                        context={'timeout': True}
                    )
                self._mirror_worker_states(scenario, outcome)
                yield scenario, outcome
        finally:
            # A timed-out thread cannot be stopped; leave it running rather
            # than block the run on it
            executor.shutdown(wait=not (threaded and timed_out), cancel_futures=True)
            if manager is not None:
                manager.shutdown()

    @staticmethod
    def _mirror_worker_states(scenario: Scenario, outcome) -> None:
        """Replay states reached by a pool worker on the parent's scenario."""
        if isinstance(outcome, ScenarioResult):
            for state in WORKER_STATES:
                scenario.advance(state)

    def _record_failure(
        self,
        scenario: Scenario,
        error: ScenarioExecutionError,
        aggregator: MonteCarloAggregator
    ) -> None:
        if scenario.state is not ScenarioState.FAILED:
            scenario.advance(ScenarioState.FAILED)
        aggregator.record_failure()
        kind = (DiagnosticKind.SCENARIO_TIMEOUT if error.context.get('timeout')
                else DiagnosticKind.SCENARIO_FAILED)
        self.diagnostics.report(
            kind,
            f"replication {scenario.replication_index} excluded: {error.message}",
            **error.context
        )

    def get_scenario_states(self) -> Dict[int, ScenarioState]:
        return dict(self.scenario_states)

    def get_summary(self) -> Optional[Dict]:
        """Summary of the last run as a dictionary, None before any run."""
        if self.last_result is None:
            return None
        return self.last_result.summary.to_dict()

    def __repr__(self) -> str:
        return (f"EVDemandSimulator(vehicles={self.config.vehicles.num_vehicles}, "
                f"runs={self.config.simulation.monte_carlo_runs}, "
                f"backend={self.config.processing.backend})")


def run_simulation(
    config: Optional[EVDemandConfig] = None,
    population: Optional[Sequence[Agent]] = None,
    sink=None
) -> SimulationResult:
    """
    Convenience function to run a simulation.

    Examples:
        >>> from evdemand import run_simulation
        >>> result = run_simulation(EVDemandConfig.from_dict({
        ...     'vehicles': {'num_vehicles': 100},
        ...     'simulation': {'days': 1, 'monte_carlo_runs': 5},
        ... }))
    """
    return EVDemandSimulator(config).run(population=population, sink=sink)
