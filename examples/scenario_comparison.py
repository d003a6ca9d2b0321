"""
Scenario Comparison Example for the EV demand engine.

This example compares fleet sizes and charging-access assumptions and shows
how the coincidence factor shrinks per-vehicle peak demand as fleets grow.
"""

from evdemand import EVDemandConfig, EVDemandSimulator


SCENARIOS = {
    'Small fleet': {'vehicles': {'num_vehicles': 100}},
    'Medium fleet': {'vehicles': {'num_vehicles': 1000}},
    'Large fleet': {'vehicles': {'num_vehicles': 5000}},
    'Low home access': {'vehicles': {'num_vehicles': 1000, 'home_access_prob': 0.3}},
    'High work access': {'vehicles': {'num_vehicles': 1000, 'work_access_prob': 0.8}},
}


def run_scenario(name: str, overrides: dict, runs: int = 20):
    """Run one configuration and collect summary metrics."""
    data = {
        'simulation': {'days': 3, 'time_resolution': 15,
                       'monte_carlo_runs': runs, 'random_seed': 42},
        'processing': {'backend': 'thread', 'max_workers': 4},
    }
    data.update(overrides)
    config = EVDemandConfig.from_dict(data)

    result = EVDemandSimulator(config).run()
    summary = result.summary
    n = config.vehicles.num_vehicles

    return {
        'scenario': name,
        'vehicles': n,
        'peak_kw': summary.peak_demand,
        'mean_kw': summary.mean_daily_demand,
        'peak_per_vehicle': summary.peak_demand / n,
        'load_factor': summary.load_factor,
        'fc': summary.avg_coincidence_factor,
        'peak_hour': summary.peak_hour,
    }


def main():
    print("=" * 70)
    print("EV Demand Scenario Comparison")
    print("=" * 70)

    results = []
    for name, overrides in SCENARIOS.items():
        print(f"\nRunning {name}...")
        results.append(run_scenario(name, overrides))

    print("\n" + "=" * 70)
    print(f"{'Scenario':<18} {'EVs':>6} {'Peak kW':>9} {'Mean kW':>9} "
          f"{'kW/EV':>7} {'LF':>6} {'FC':>7} {'Peak h':>7}")
    print("-" * 70)
    for r in results:
        print(f"{r['scenario']:<18} {r['vehicles']:>6} {r['peak_kw']:>9.1f} "
              f"{r['mean_kw']:>9.1f} {r['peak_per_vehicle']:>7.3f} "
              f"{r['load_factor']:>6.3f} {r['fc']:>7.4f} {r['peak_hour']:>7}")
    print("=" * 70)


if __name__ == '__main__':
    main()
