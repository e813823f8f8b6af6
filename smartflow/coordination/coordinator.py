import logging
import math
import random
from typing import Dict, List, Optional, Set

from smartflow.domain.config import CoordinationConfig
from smartflow.domain.graph import RoadNetwork
from smartflow.domain.models import (
    IntersectionNode, Position, Axis, Direction, SignalState, TrafficWave,
    CoordinationStrategy, CoordinationStrategyType, NetworkMetrics
)

logger = logging.getLogger(__name__)

STRATEGY_DESCRIPTIONS = {
    CoordinationStrategyType.GREEN_WAVE: "Chained phase offsets along the corridor",
    CoordinationStrategyType.ADAPTIVE_OFFSET: "Adaptive offset coordination based on real-time traffic",
    CoordinationStrategyType.DISTRIBUTED_CONTROL: "Each intersection reacts to neighbour congestion",
    CoordinationStrategyType.PREDICTIVE: "Pre-switches phases ahead of predicted platoons",
}


class MultiIntersectionCoordinator:
    """Coordinates phases across a graph of intersections.

    Nodes hold the per-intersection summary, the RoadNetwork holds the
    topology. Every strategy is a no-op on an empty network.
    """

    def __init__(self, config: Optional[CoordinationConfig] = None):
        self.config = config or CoordinationConfig()
        self.network = RoadNetwork()
        self.intersections: Dict[str, IntersectionNode] = {}
        self.traffic_waves: List[TrafficWave] = []
        self.strategy = CoordinationStrategy(
            type=CoordinationStrategyType.ADAPTIVE_OFFSET,
            description=STRATEGY_DESCRIPTIONS[CoordinationStrategyType.ADAPTIVE_OFFSET],
        )
        self.now = 0.0

    def reset(self):
        self.network.clear()
        self.intersections = {}
        self.traffic_waves = []
        self.now = 0.0

    # Topology

    def add_intersection(self, node: IntersectionNode):
        self.intersections[node.id] = node
        self.network.add_intersection(node.id, (node.position.x, node.position.y))
        for other in node.connected_intersections:
            if other in self.network:
                self.network.connect(node.id, other)

    def remove_intersection(self, intersection_id: str):
        if self.intersections.pop(intersection_id, None) is None:
            return
        self.network.remove_intersection(intersection_id)
        for node in self.intersections.values():
            if intersection_id in node.connected_intersections:
                node.connected_intersections = [i for i in node.connected_intersections if i != intersection_id]

    def update_intersection(self, intersection_id: str, **updates) -> Optional[IntersectionNode]:
        node = self.intersections.get(intersection_id)
        if node is None:
            return None
        node = IntersectionNode.model_validate({**node.model_dump(), **updates})
        self.intersections[intersection_id] = node
        if "position" in updates:
            self.network.set_node_pos(intersection_id, (node.position.x, node.position.y))
        return node

    def neighbors(self, intersection_id: str) -> List[IntersectionNode]:
        return [self.intersections[n] for n in self.network.neighbors(intersection_id) if n in self.intersections]

    def initialize_grid(self, rows: int, cols: int, rng: Optional[random.Random] = None):
        rng = rng or random.Random()
        spacing = self.config.grid_spacing
        start = 100.0

        self.reset()
        for row in range(rows):
            for col in range(cols):
                connected = []
                if col > 0:
                    connected.append(f"intersection-{row}-{col - 1}")
                if col < cols - 1:
                    connected.append(f"intersection-{row}-{col + 1}")
                if row > 0:
                    connected.append(f"intersection-{row - 1}-{col}")
                if row < rows - 1:
                    connected.append(f"intersection-{row + 1}-{col}")

                phase = Axis.NORTH_SOUTH if rng.random() > 0.5 else Axis.EAST_WEST
                self.add_intersection(IntersectionNode(
                    id=f"intersection-{row}-{col}",
                    name=f"Int {row + 1}-{col + 1}",
                    position=Position(x=start + col * spacing, y=start + row * spacing),
                    current_phase=phase,
                    phase_timer=rng.randrange(30),
                    phase_duration=self.config.base_phase_duration,
                    vehicle_count=rng.randrange(20) + 5,
                    congestion_level=rng.randrange(80) + 20,
                    connected_intersections=connected,
                    signal_state=self.signal_state_for(phase),
                    average_wait_time=rng.randrange(30) + 10,
                    throughput=rng.randrange(50) + 20,
                ))
        logger.info("Coordination grid initialised with %d intersections", len(self.intersections))

    @staticmethod
    def signal_state_for(phase: Axis) -> Dict[Direction, SignalState]:
        return {d: SignalState.GREEN if d.axis == phase else SignalState.RED for d in Direction}

    def _set_phase(self, intersection_id: str, phase: Axis):
        self.update_intersection(intersection_id, current_phase=phase, phase_timer=0.0,
                                 signal_state=self.signal_state_for(phase))

    # Travel

    def travel_time(self, distance: float) -> float:
        """Seconds to cover a pixel distance at the assumed average speed."""
        return (distance / self.config.pixels_per_km) * (3600 / self.config.average_speed_kmh)

    @staticmethod
    def _distance(a: IntersectionNode, b: IntersectionNode) -> float:
        return math.hypot(b.position.x - a.position.x, b.position.y - a.position.y)

    def _ordered(self) -> List[IntersectionNode]:
        # Rows first (top to bottom), left to right within a row
        tolerance = self.config.row_tolerance
        nodes = sorted(self.intersections.values(), key=lambda n: (n.position.y, n.position.x))
        rows: List[List[IntersectionNode]] = []
        for node in nodes:
            if rows and abs(rows[-1][0].position.y - node.position.y) < tolerance:
                rows[-1].append(node)
            else:
                rows.append([node])
        return [n for row in rows for n in sorted(row, key=lambda n: n.position.x)]

    def calculate_green_wave_offsets(self) -> Dict[str, float]:
        offsets: Dict[str, float] = {}
        previous = None
        for node in self._ordered():
            if previous is None:
                offsets[node.id] = 0.0
            else:
                offset = offsets[previous.id] + self.travel_time(self._distance(previous, node))
                offsets[node.id] = offset % self.config.cycle_length
            previous = node
        return offsets

    def predict_traffic_waves(self) -> List[TrafficWave]:
        waves = []
        for source, target in self.network.edges():
            a = self.intersections.get(source)
            b = self.intersections.get(target)
            if a is None or b is None:
                continue
            count = int(math.floor(a.vehicle_count * self.config.wave_fraction))
            if count <= 0:
                continue
            waves.append(TrafficWave(
                source_intersection=source,
                target_intersection=target,
                vehicle_count=count,
                estimated_arrival_time=self.now + self.travel_time(self._distance(a, b)),
                speed=self.config.average_speed_kmh,
            ))
        self.traffic_waves = waves
        return waves

    # Strategies

    def green_wave(self) -> Set[str]:
        for node_id, offset in self.calculate_green_wave_offsets().items():
            self.update_intersection(node_id, offset=offset)
        return set()

    def adaptive_offset_coordination(self) -> Set[str]:
        cfg = self.config
        for node_id, offset in self.calculate_green_wave_offsets().items():
            node = self.intersections[node_id]
            duration = cfg.base_phase_duration
            if node.congestion_level > cfg.hotspot_threshold:
                duration = cfg.congested_phase_duration
            elif node.congestion_level < 30:
                duration = cfg.light_phase_duration
            self.update_intersection(
                node_id,
                offset=offset,
                phase_duration=duration,
                phase_timer=(node.phase_timer + offset) % duration,
            )
        return set()

    def distributed_control(self) -> Set[str]:
        cfg = self.config
        switched = set()
        for node_id in list(self.intersections):
            node = self.intersections[node_id]
            neighbours = self.neighbors(node_id)
            if not neighbours:
                continue
            average = sum(n.congestion_level for n in neighbours) / len(neighbours)
            if average > cfg.neighbor_congestion_threshold and node.phase_timer > cfg.min_phase_before_switch:
                self._set_phase(node_id, node.current_phase.other)
                switched.add(node_id)
        return switched

    def predictive_coordination(self) -> Set[str]:
        switched = set()
        for wave in self.predict_traffic_waves():
            target = self.intersections.get(wave.target_intersection)
            source = self.intersections.get(wave.source_intersection)
            if target is None or source is None:
                continue
            until = wave.estimated_arrival_time - self.now
            if not 0 < until < self.config.prediction_horizon:
                continue
            dx = target.position.x - source.position.x
            dy = target.position.y - source.position.y
            required = Axis.EAST_WEST if abs(dx) > abs(dy) else Axis.NORTH_SOUTH
            if target.current_phase != required:
                self._set_phase(target.id, required)
                switched.add(target.id)
        return switched

    def execute_strategy(self) -> Set[str]:
        """Runs the selected strategy. Returns ids whose phase was switched."""
        if not self.intersections:
            return set()

        handlers = {
            CoordinationStrategyType.GREEN_WAVE: self.green_wave,
            CoordinationStrategyType.ADAPTIVE_OFFSET: self.adaptive_offset_coordination,
            CoordinationStrategyType.DISTRIBUTED_CONTROL: self.distributed_control,
            CoordinationStrategyType.PREDICTIVE: self.predictive_coordination,
        }
        switched = handlers[self.strategy.type]()
        self.strategy.efficiency = self.network_metrics().coordination_efficiency
        if switched:
            logger.debug("Coordination %s switched %s", self.strategy.type.value, sorted(switched))
        return switched

    def set_strategy(self, strategy_type: CoordinationStrategyType):
        strategy_type = CoordinationStrategyType(strategy_type)
        self.strategy = CoordinationStrategy(type=strategy_type, description=STRATEGY_DESCRIPTIONS[strategy_type])
        logger.info("Coordination strategy set to %s", strategy_type.value)

    def advance(self, dt: float):
        """Advances node phase timers, cycling phases that outrun their duration."""
        self.now += max(0.0, dt)
        for node_id in list(self.intersections):
            node = self.intersections[node_id]
            timer = node.phase_timer + max(0.0, dt)
            if timer >= node.phase_duration:
                self._set_phase(node_id, node.current_phase.other)
            else:
                self.update_intersection(node_id, phase_timer=timer)

    def network_metrics(self) -> NetworkMetrics:
        nodes = list(self.intersections.values())
        if not nodes:
            return NetworkMetrics()

        total = sum(n.vehicle_count for n in nodes)
        avg_congestion = sum(n.congestion_level for n in nodes) / len(nodes)
        efficiency = max(0.0, 100 - avg_congestion)

        return NetworkMetrics(
            total_vehicles=total,
            average_wait_time=sum(n.average_wait_time for n in nodes) / len(nodes),
            network_throughput=sum(n.throughput for n in nodes),
            congestion_hotspots=[n.name for n in nodes if n.congestion_level > self.config.hotspot_threshold],
            coordination_efficiency=efficiency,
            co2_reduction=efficiency if total > 0 else 0.0,
        )
