import logging
from collections import deque
from typing import Deque, Dict, Mapping, Optional

from pydantic import BaseModel, Field, model_validator

from smartflow.domain.config import DynamicControlConfig
from smartflow.domain.models import Axis, Direction, SignalTiming

logger = logging.getLogger(__name__)

DirectionValues = Dict[Direction, float]


def _zero() -> DirectionValues:
    return {d: 0.0 for d in Direction}


class TrafficConditions(BaseModel):
    """Per-direction readings the dynamic controller scores."""
    density: DirectionValues = Field(default_factory=_zero)
    waiting_times: DirectionValues = Field(default_factory=_zero)
    queue_lengths: DirectionValues = Field(default_factory=_zero)
    average_speed: float = 0.0
    congestion_level: Optional[float] = None # 0-100, derived from density when omitted
    phase_duration: float = 0.0 # seconds the current phase has been running

    @model_validator(mode="after")
    def _fill(self):
        for field in (self.density, self.waiting_times, self.queue_lengths):
            for d in Direction:
                field[d] = max(0.0, float(field.get(d, 0.0)))
        if self.congestion_level is None:
            self.congestion_level = min(self.total / 20.0, 1.0) * 100.0
        self.congestion_level = min(100.0, max(0.0, self.congestion_level))
        self.phase_duration = max(0.0, self.phase_duration)
        return self

    @property
    def total(self) -> float:
        return sum(self.density.values())

    def axis_density(self, axis: Axis) -> float:
        return sum(self.density[d] for d in axis.directions)

    def axis_max_wait(self, axis: Axis) -> float:
        return max(self.waiting_times[d] for d in axis.directions)


class DynamicSignalController:
    """Density scored phase selection.

    Each decision normalises density, waiting time and queue length per
    direction against the busiest direction, adds a trend term from the
    density history and combines them per axis with fixed weights.
    """

    WEIGHTS = (0.4, 0.3, 0.2, 0.1)

    def __init__(self, config: Optional[DynamicControlConfig] = None):
        self.config = config or DynamicControlConfig()
        self.current_phase: Optional[Axis] = None
        self.density_history: Deque[DirectionValues] = deque(maxlen=self.config.history_size)

    def reset(self):
        self.current_phase = None
        self.density_history.clear()

    def calculate_optimal_timing(self, conditions: TrafficConditions) -> SignalTiming:
        conditions = self._apply_density_threshold(conditions)
        self.density_history.append(dict(conditions.density))

        density = self._normalise(conditions.density)
        waiting = self._normalise(conditions.waiting_times)
        queues = self._normalise(conditions.queue_lengths)
        trend = self._trend_scores()

        scores = {
            axis: self._combine(
                sum(density[d] for d in axis.directions),
                sum(waiting[d] for d in axis.directions),
                sum(queues[d] for d in axis.directions),
                sum(trend[d] for d in axis.directions),
            )
            for axis in Axis
        }

        if self.current_phase is None or self._should_switch(scores, conditions):
            if scores[Axis.EAST_WEST] > scores[Axis.NORTH_SOUTH]:
                phase = Axis.EAST_WEST
            else:
                phase = Axis.NORTH_SOUTH
            duration = self._phase_duration(phase, conditions)
            reason = f"High {phase.value} traffic density ({conditions.axis_density(phase):g} vehicles)"
        else:
            phase = self.current_phase
            duration = self._phase_extension(phase, conditions)
            reason = f"Extending {phase.value} phase due to ongoing traffic"

        duration = max(self.config.min_green_time, min(duration, self.config.max_green_time))
        self.current_phase = phase

        logger.debug("Dynamic timing: %s for %.1fs (%s)", phase.value, duration, reason)
        return SignalTiming(phase=phase, duration=duration, priority=scores[phase], reason=reason)

    def _apply_density_threshold(self, conditions: TrafficConditions) -> TrafficConditions:
        # Directions below the threshold count as empty
        threshold = self.config.density_threshold
        density = {d: (v if v >= threshold else 0.0) for d, v in conditions.density.items()}
        return conditions.model_copy(update={"density": density})

    @staticmethod
    def _normalise(values: Mapping[Direction, float]) -> DirectionValues:
        peak = max(max(values.values()), 1.0)
        return {d: values[d] / peak for d in Direction}

    def _trend_scores(self) -> DirectionValues:
        if len(self.density_history) < 2:
            return _zero()
        recent = self.density_history[-1]
        previous = self.density_history[-2]
        return {d: max(0.0, recent[d] - previous[d]) for d in Direction}

    def _combine(self, density: float, waiting: float, queue: float, trend: float) -> float:
        wd, ww, wq, wt = self.WEIGHTS
        return density * wd + waiting * ww + queue * wq + trend * wt

    def _should_switch(self, scores: Dict[Axis, float], conditions: TrafficConditions) -> bool:
        cfg = self.config
        current = scores[self.current_phase]
        other = scores[self.current_phase.other]

        if current > cfg.busy_threshold:
            return False
        if other > current + cfg.switch_margin:
            return True
        if conditions.axis_max_wait(self.current_phase.other) > cfg.waiting_time_threshold:
            return True
        if conditions.phase_duration > cfg.max_green_time:
            return True
        return False

    def _phase_duration(self, phase: Axis, conditions: TrafficConditions) -> float:
        cfg = self.config
        duration = cfg.min_green_time + conditions.axis_density(phase) * cfg.seconds_per_vehicle

        if conditions.congestion_level > cfg.high_congestion:
            duration *= cfg.high_congestion_factor
        elif conditions.congestion_level < cfg.low_congestion:
            duration *= cfg.low_congestion_factor

        return min(duration, cfg.max_green_time)

    def _phase_extension(self, phase: Axis, conditions: TrafficConditions) -> float:
        cfg = self.config
        extension = 0.0
        if conditions.axis_density(phase) > cfg.extension_vehicle_threshold:
            extension += cfg.extension_vehicle_bonus
        if conditions.axis_max_wait(phase) > cfg.extension_wait_threshold:
            extension += cfg.extension_wait_bonus
        return min(extension, cfg.max_green_time - cfg.min_green_time)
