"""
Basic Usage Example for the EV demand engine.

This example demonstrates how to:
1. Create an engine configuration
2. Generate a vehicle population
3. Run the Monte Carlo simulation
4. Examine the summary and the hourly profile
"""

from evdemand import (
    EVDemandConfig,
    EVDemandSimulator,
    hour_of_day_profile,
)
from evdemand.population import describe_population


def main():
    print("=" * 60)
    print("EV Demand Basic Usage Example")
    print("=" * 60)

    # Step 1: Create configuration
    print("\n1. Creating configuration...")
    config = EVDemandConfig.from_dict({
        'vehicles': {'num_vehicles': 1000},
        'simulation': {
            'days': 7,
            'time_resolution': 15,
            'monte_carlo_runs': 50,
            'random_seed': 42,
        },
        'processing': {'enable_logging': True},
    })
    sim = config.simulation
    print(f"   Config: {config.vehicles.num_vehicles} vehicles, {sim.days} days, "
          f"{sim.time_resolution} min, {sim.monte_carlo_runs} runs")

    # Step 2: Create simulator and population
    print("\n2. Initializing simulator...")
    simulator = EVDemandSimulator(config)
    print(f"   Simulator: {simulator}")

    agents = simulator.generate_population()
    stats = describe_population(agents)
    print(f"   Generated {stats['num_agents']} agents")
    print(f"   Home access: {stats['home_access_pct']:.1f}%")
    print(f"   Work access: {stats['work_access_pct']:.1f}%")
    print(f"   Avg battery: {stats['avg_battery_kwh']:.1f} kWh")

    # Step 3: Run simulation
    print("\n3. Running Monte Carlo simulation...")
    result = simulator.run(population=agents)
    print(f"   {result.simulation_id} finished in {result.duration_s:.2f}s")

    # Step 4: Summary
    summary = result.summary
    print("\n4. Summary:")
    print(f"   Successful runs: {summary.successful_runs}/{summary.total_runs}")
    print(f"   Mean demand: {summary.mean_daily_demand:.1f} kW")
    print(f"   Peak demand: {summary.peak_demand:.1f} kW")
    print(f"   Load factor: {summary.load_factor:.3f}")
    print(f"   {summary.confidence_level:.0%} CI ({summary.ci_target}): "
          f"[{summary.ci_lower:.1f}, {summary.ci_upper:.1f}] kW")
    print(f"   Coincidence factor: {summary.avg_coincidence_factor:.4f}")
    print(f"   Peak hour: {summary.peak_hour:02d}:00, valley hour: {summary.valley_hour:02d}:00")

    # Step 5: Hourly profile
    print("\n5. Mean hourly profile:")
    hourly = hour_of_day_profile(result.mean_profile, sim.time_resolution)
    scale = max(hourly.max(), 1e-9)
    for hour, value in enumerate(hourly):
        bar = "#" * int(40 * value / scale)
        print(f"   {hour:02d}:00 {value:8.1f} kW {bar}")

    if result.diagnostics:
        print(f"\n   Diagnostics: {len(result.diagnostics)}")
        for diagnostic in result.diagnostics:
            print(f"     - {diagnostic.message}")
    else:
        print("\n   No diagnostics reported")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == '__main__':
    main()
