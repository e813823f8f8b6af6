from typing import Any
from smartflow.domain.models import SimulationSnapshot, VehicleView, ControlStrategy

class SnapshotBuilder:
    def build(self, kernel: Any) -> SimulationSnapshot:
        state = kernel.state
        return SimulationSnapshot(
            tick=state.tick_id,
            time=state.time,
            strategy=state.strategy,
            coordination_strategy=state.coordination_strategy,
            active_axis=kernel.signal.active_axis,
            vehicles=[
                VehicleView(
                    id=v.id,
                    x=v.x,
                    y=v.y,
                    direction=v.direction,
                    type=v.type,
                    waiting_time=v.waiting_time,
                )
                for v in kernel.vehicles.vehicles.values()
            ],
            lights=kernel.signal.lights(),
            incidents=[i.model_copy(deep=True) for i in kernel.incidents.active_incidents()],
            flow=state.last_flow,
            alerts=kernel.metrics.active_alerts(),
            network=state.last_network_metrics,
            last_timing=state.last_timing,
            rl_stats=kernel.agent.training_stats() if state.strategy == ControlStrategy.REINFORCEMENT else None,
            adaptive_stats=kernel.adaptive.performance_stats() if state.strategy == ControlStrategy.ADAPTIVE else None,
        )
