import logging
import math
import random
from typing import Dict, Optional

from smartflow.analytics.flow_analyzer import FlowAnalyzer
from smartflow.analytics.incident_detector import IncidentDetector
from smartflow.analytics.performance_metrics import PerformanceMetricsService
from smartflow.controllers.adaptive import AdaptiveConditions, AdaptiveTimingSystem
from smartflow.controllers.base import Controller
from smartflow.controllers.dynamic import DynamicSignalController, TrafficConditions
from smartflow.controllers.implementations import (
    FixedController, DynamicController, AdaptiveController, RLController
)
from smartflow.controllers.rl_agent import QLearningAgent, TrafficState
from smartflow.coordination.coordinator import MultiIntersectionCoordinator
from smartflow.domain.config import SimulationConfig
from smartflow.domain.models import (
    ControlStrategy, CoordinationStrategyType, Direction, MetricCategory, ReportPeriod,
    SimulationSnapshot
)
from smartflow.domain.state import SimulationState
from smartflow.kernel.command_queue import CommandQueue
from smartflow.kernel.commands import Command
from smartflow.kernel.snapshot_builder import SnapshotBuilder
from smartflow.systems.signal_system import SignalSystem
from smartflow.systems.vehicle_system import VehicleSystem

logger = logging.getLogger(__name__)

MIN_SPEED_MULTIPLIER = 0.5
MAX_SPEED_MULTIPLIER = 3.0
SPEED_TO_KMH = 60.0 # px/tick to nominal km/h for flow analysis
CONGESTION_POPULATION = 20.0 # vehicles at which intersection congestion reads 100


class SimulationKernel:
    """Single owner of all simulation state.

    run_tick() is the only mutator: it drains the command queue, lets the
    active strategy adjust signal timing, advances the signal and the
    vehicles, then runs the throttled analytics.
    """

    def __init__(self, config: Optional[SimulationConfig] = None, seed: int = 42):
        self.config = config or SimulationConfig()
        self.seed = seed
        self.rng = random.Random(seed)
        self.command_queue = CommandQueue()
        cfg = self.config

        self.vehicles = VehicleSystem(cfg.bounds, cfg.vehicles, self.rng)
        self.signal = SignalSystem(cfg.signals)
        self.dynamic = DynamicSignalController(cfg.dynamic)
        self.adaptive = AdaptiveTimingSystem(cfg.adaptive)
        self.agent = QLearningAgent(cfg.rl, self.rng)
        self.controllers: Dict[ControlStrategy, Controller] = {
            ControlStrategy.FIXED: FixedController(),
            ControlStrategy.DYNAMIC: DynamicController(self.dynamic),
            ControlStrategy.ADAPTIVE: AdaptiveController(self.adaptive),
            ControlStrategy.REINFORCEMENT: RLController(self.agent, cfg.scheduling.rl_decision_interval),
        }
        self.flow = FlowAnalyzer(cfg.flow)
        self.incidents = IncidentDetector(cfg.incidents, (cfg.bounds.center_x, cfg.bounds.center_y))
        self.coordinator = MultiIntersectionCoordinator(cfg.coordination)
        self.metrics = PerformanceMetricsService(cfg.performance, clock=lambda: self.state.time)
        self.snapshot_builder = SnapshotBuilder()

        self.state = SimulationState()
        self.reset()

    @property
    def local_intersection_id(self) -> str:
        c = self.config.coordination
        return f"intersection-{c.grid_rows // 2}-{c.grid_cols // 2}"

    def reset(self, seed: Optional[int] = None):
        """Clears every collection and reinitialises controllers deterministically."""
        if seed is not None:
            self.seed = seed
        self.rng.seed(self.seed)
        self.state = SimulationState()
        self.command_queue.clear()

        self.vehicles.reset()
        self.signal.reset()
        for controller in self.controllers.values():
            controller.reset()
        self.agent.reset()
        self.flow.clear()
        self.incidents.reset()
        self.metrics.reset()

        c = self.config.coordination
        self.coordinator.initialize_grid(c.grid_rows, c.grid_cols, self.rng)

        self.vehicles.spawn_initial(self.config.vehicles.initial_vehicles)
        logger.info("Kernel reset (seed=%s, vehicles=%d)", self.seed, len(self.vehicles))

    # Commands

    def queue_command(self, command: Command):
        self.command_queue.add(command)

    def set_strategy(self, strategy: ControlStrategy):
        strategy = ControlStrategy(strategy)
        if strategy == self.state.strategy:
            return
        self.controllers[strategy].reset()
        self.state.strategy = strategy
        logger.info("Signal control strategy set to %s", strategy.value)

    def set_coordination_strategy(self, strategy: Optional[CoordinationStrategyType]):
        if strategy is not None:
            self.coordinator.set_strategy(strategy)
        self.state.coordination_strategy = strategy

    def set_speed(self, speed: float):
        if speed is None or math.isnan(speed):
            return
        self.state.speed = min(MAX_SPEED_MULTIPLIER, max(MIN_SPEED_MULTIPLIER, float(speed)))

    # Loop

    def run_frame(self) -> int:
        """One rendered frame. Returns the number of ticks advanced."""
        speed = self.state.speed
        frames_per_update = 1 if speed >= 1.5 else max(1, int(round(2 / speed)))
        updates_per_frame = int(math.floor(speed)) if speed > 1.5 else 1

        self.state.frame_count += 1
        if self.state.frame_count % frames_per_update != 0:
            return 0
        for _ in range(updates_per_frame):
            self.run_tick()
        return updates_per_frame

    def run_tick(self):
        # 1. Process Commands
        self.command_queue.drain(self)

        # 2. Signal decision, then motion
        self.controllers[self.state.strategy].run_tick(self)
        self.signal.update()
        self.vehicles.tick(self.signal.states())

        # 3. Time Advance
        self.state.tick_id += 1
        self.state.time = self.state.tick_id / self.config.signals.tick_rate

        # 4. Throttled analytics
        tick = self.state.tick_id
        sched = self.config.scheduling
        if tick % sched.flow_sample_interval == 0:
            self._sample_flow()
        if sched.incident_detection_enabled and tick % sched.incident_interval == 0:
            self._detect_incidents()
        if tick % sched.metrics_interval == 0:
            self._record_metrics()
        if (sched.coordination_enabled and self.state.coordination_strategy is not None
                and tick % sched.coordination_interval == 0):
            self._coordinate(sched.coordination_interval / self.config.signals.tick_rate)

        report_every = self.config.performance.reporting_interval * 60
        if self.state.time - self.state.last_report_time >= report_every:
            self.state.last_report = self.metrics.generate_report(ReportPeriod.HOURLY)
            self.state.last_report_time = self.state.time

    def run(self, ticks: int):
        for _ in range(max(0, ticks)):
            self.run_tick()

    # Readings

    def _seconds(self, ticks: float) -> float:
        return ticks / self.config.signals.tick_rate

    def congestion_level(self) -> float:
        return min(len(self.vehicles) / CONGESTION_POPULATION, 1.0) * 100

    def average_wait_seconds(self) -> float:
        return self._seconds(self.vehicles.average_waiting_time())

    def traffic_conditions(self) -> TrafficConditions:
        counts = self.vehicles.counts_by_direction()
        waiting = self.vehicles.waiting_by_direction()
        queues = self.vehicles.queue_lengths(self.config.dynamic.queue_wait_ticks)
        return TrafficConditions(
            density={d: float(counts[d]) for d in Direction},
            waiting_times={d: self._seconds(waiting[d]) for d in Direction},
            queue_lengths={d: float(queues[d]) for d in Direction},
            average_speed=self.vehicles.average_speed(),
            congestion_level=self.congestion_level(),
            phase_duration=self.signal.phase_elapsed_seconds,
        )

    def adaptive_conditions(self) -> AdaptiveConditions:
        hour, day = self.adaptive.clock(self.state.time)
        flow = self.state.last_flow
        return AdaptiveConditions(
            time_of_day=hour,
            day_of_week=day,
            flow_rate=flow.flow_rate if flow else 0.0,
            congestion_level=self.congestion_level(),
            waiting_time=self.average_wait_seconds(),
            vehicle_counts=self.vehicles.counts_by_direction(),
        )

    def rl_state(self) -> TrafficState:
        waiting = self.vehicles.waiting_by_direction()
        return TrafficState(
            vehicle_counts=self.vehicles.counts_by_direction(),
            waiting_times={d: self._seconds(waiting[d]) for d in Direction},
            current_phase=self.signal.active_axis,
            phase_duration=self.signal.phase_elapsed_seconds,
            congestion_level=self.congestion_level(),
        )

    # Analytics

    def _sample_flow(self):
        active = list(self.vehicles.vehicles.values())
        avg_speed = sum(v.effective_speed for v in active) / len(active) if active else 0.0
        sample = self.flow.compute_metrics(len(active), avg_speed * SPEED_TO_KMH, timestamp=self.state.time)
        self.flow.add_sample(sample)
        self.state.last_flow = sample
        self.state.flow_predictions = self.flow.predict(1)

    def _detect_incidents(self):
        observations = self.incidents.observe(self.vehicles.vehicles.values(), speed_scale=SPEED_TO_KMH)
        self.incidents.analyze(observations, self.state.time)
        self.incidents.advance(self.state.time)

    def _record_metrics(self):
        flow = self.state.last_flow
        congestion = self.congestion_level()
        now = self.state.time
        record = self.metrics.record
        record("waitTime", self.average_wait_seconds(), "seconds", MetricCategory.EFFICIENCY, 20, timestamp=now)
        record("throughput", flow.throughput if flow else 0.0, "vehicles/hour", MetricCategory.EFFICIENCY, 100, timestamp=now)
        record("flowRate", flow.flow_rate if flow else 0.0, "vehicles/min", MetricCategory.EFFICIENCY, 50, timestamp=now)
        record("signalEfficiency", 100 - congestion, "%", MetricCategory.EFFICIENCY, 80, timestamp=now)
        record("incidentCount", len(self.incidents.active_incidents()), "incidents", MetricCategory.SAFETY, 2, timestamp=now)
        record("congestionLevel", congestion, "%", MetricCategory.EFFICIENCY, 30, timestamp=now)

    def _coordinate(self, dt: float):
        coordinator = self.coordinator
        coordinator.advance(dt)
        coordinator.now = self.state.time

        local = self.local_intersection_id
        coordinator.update_intersection(
            local,
            current_phase=self.signal.active_axis,
            phase_timer=self.signal.phase_elapsed_seconds,
            vehicle_count=len(self.vehicles),
            congestion_level=self.congestion_level(),
            signal_state=self.signal.states(),
            average_wait_time=self.average_wait_seconds(),
            throughput=self.state.last_flow.throughput if self.state.last_flow else 0.0,
        )

        switched = coordinator.execute_strategy()
        node = coordinator.intersections.get(local)
        if local in switched and node is not None and node.current_phase != self.signal.active_axis:
            self.signal.request_switch()
            logger.debug("Coordinator requested a phase switch at %s", local)

        self.state.last_network_metrics = coordinator.network_metrics()

    # Views

    def snapshot(self) -> SimulationSnapshot:
        return self.snapshot_builder.build(self)
