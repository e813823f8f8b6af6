import json
import logging
import time
from typing import Optional

from smartflow.domain.config import SimulationConfig
from smartflow.domain.models import ControlStrategy
from smartflow.kernel.simulation_kernel import SimulationKernel

logger = logging.getLogger(__name__)

def run_headless_experiment(config_path: Optional[str], output_path: str, seed: int = 42,
                            duration_ticks: int = 3600,
                            strategy: ControlStrategy = ControlStrategy.FIXED,
                            sample_every: int = 60) -> list:
    config = SimulationConfig.from_file(config_path) if config_path else SimulationConfig()

    kernel = SimulationKernel(config, seed=seed)
    kernel.set_strategy(strategy)

    results = []

    start_time = time.time()
    for _ in range(duration_ticks):
        kernel.run_tick()
        if kernel.state.tick_id % sample_every != 0:
            continue
        snapshot = kernel.snapshot()
        results.append({
            "tick": snapshot.tick,
            "time": snapshot.time,
            "vehicle_count": len(snapshot.vehicles),
            "active_axis": snapshot.active_axis.value,
            "average_wait": kernel.average_wait_seconds(),
            "congestion": kernel.congestion_level(),
            "incidents": len(snapshot.incidents),
            "alerts": len(snapshot.alerts),
            "vehicles_passed": kernel.vehicles.vehicles_passed,
        })

    end_time = time.time()
    logger.info("Experiment (%s, seed=%d) finished %d ticks in %.4fs",
                strategy.value, seed, duration_ticks, end_time - start_time)

    with open(output_path, 'w') as f:
        json.dump(results, f, indent=2)
    return results

if __name__ == "__main__":
    import argparse

    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Run the simulation headless and dump a JSON trace")
    parser.add_argument("output")
    parser.add_argument("--config", default=None)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--ticks", type=int, default=3600)
    parser.add_argument("--strategy", choices=[s.value for s in ControlStrategy], default=ControlStrategy.FIXED.value)
    args = parser.parse_args()

    run_headless_experiment(args.config, args.output, seed=args.seed, duration_ticks=args.ticks,
                            strategy=ControlStrategy(args.strategy))
