import logging
import math
from typing import Dict, List, Mapping, Optional

from smartflow.domain.config import SignalTimingConfig
from smartflow.domain.models import TrafficLight, SignalState, Direction, Axis

logger = logging.getLogger(__name__)


class SignalSystem:
    """Round-robin signal state machine for one intersection.

    One axis holds right-of-way at a time and cycles green -> yellow -> red
    (all-red clearance) before the other axis turns green. The stage timer
    counts ticks and resets to zero on every transition. The four
    TrafficLight views are derived from (active_axis, stage, timer).
    """

    def __init__(self, config: SignalTimingConfig):
        self.config = config
        self.reset()

    def reset(self):
        self.active_axis = Axis.NORTH_SOUTH
        self.stage = SignalState.GREEN
        self.timer = 0
        self.green_ticks = self.config.to_ticks(self.config.base_green_time)
        self.pending_green_ticks: Optional[int] = None
        self.switch_requested = False

    # Timing

    def green_duration(self, axis_vehicle_count: int) -> float:
        """Density-scaled green time in seconds."""
        cfg = self.config
        bonus = min(max(0, axis_vehicle_count) * cfg.per_vehicle_bonus, cfg.max_density_bonus)
        return min(cfg.max_green_time, max(cfg.min_green_time, cfg.base_green_time + bonus))

    def stage_budget(self) -> int:
        if self.stage == SignalState.GREEN:
            return self.green_ticks
        if self.stage == SignalState.YELLOW:
            return self.config.to_ticks(self.config.yellow_time)
        return self.config.to_ticks(self.config.red_time)

    def set_green_budget(self, seconds: float):
        """Sets the budget of the running green, clamped to [min, max] green."""
        seconds = min(self.config.max_green_time, max(self.config.min_green_time, seconds))
        self.green_ticks = self.config.to_ticks(seconds)

    def extend_green(self, seconds: float, cap: Optional[float] = None):
        if self.stage != SignalState.GREEN:
            return
        limit = self.config.max_green_time if cap is None else min(cap, self.config.max_green_time)
        current = self.green_ticks / self.config.tick_rate
        self.set_green_budget(min(current + max(0.0, seconds), limit))

    def set_next_green(self, seconds: float):
        seconds = min(self.config.max_green_time, max(self.config.min_green_time, seconds))
        self.pending_green_ticks = self.config.to_ticks(seconds)

    def request_switch(self, next_green: Optional[float] = None) -> bool:
        """Ends the running green early. Yellow and red clearance still apply."""
        if next_green is not None:
            self.set_next_green(next_green)
        if self.stage != SignalState.GREEN:
            return False
        self.switch_requested = True
        return True

    @property
    def phase_elapsed_seconds(self) -> float:
        return self.timer / self.config.tick_rate

    @property
    def green_expiring(self) -> bool:
        """True when the next tick would end the running green."""
        return self.stage == SignalState.GREEN and self.timer + 1 >= self.green_ticks

    @property
    def at_max_green(self) -> bool:
        return self.green_ticks >= self.config.to_ticks(self.config.max_green_time)

    # Tick

    def update(self) -> bool:
        """Advances the stage timer by one tick. Returns True on a transition."""
        self.timer += 1
        if self.switch_requested or self.timer >= self.stage_budget():
            self._advance_stage()
            return True
        return False

    def _advance_stage(self):
        self.switch_requested = False
        if self.stage == SignalState.GREEN:
            self.stage = SignalState.YELLOW
        elif self.stage == SignalState.YELLOW:
            self.stage = SignalState.RED
        else:
            self.active_axis = self.active_axis.other
            self.stage = SignalState.GREEN
            if self.pending_green_ticks is not None:
                self.green_ticks = self.pending_green_ticks
                self.pending_green_ticks = None
            else:
                self.green_ticks = self.config.to_ticks(self.config.base_green_time)
        self.timer = 0
        logger.debug("Signal %s -> %s", self.active_axis.value, self.stage.value)

    # Views

    def state_of(self, direction: Direction) -> SignalState:
        if direction.axis == self.active_axis:
            return self.stage
        return SignalState.RED

    def states(self) -> Dict[Direction, SignalState]:
        return {d: self.state_of(d) for d in Direction}

    def _remaining_ticks(self, direction: Direction) -> int:
        yellow = self.config.to_ticks(self.config.yellow_time)
        red = self.config.to_ticks(self.config.red_time)
        left = self.stage_budget() - self.timer
        if direction.axis == self.active_axis:
            if self.stage == SignalState.RED:
                # Waits for the other axis to run a full green
                return left + self.config.to_ticks(self.config.base_green_time) + yellow + red
            return left
        if self.stage == SignalState.GREEN:
            return left + yellow + red
        if self.stage == SignalState.YELLOW:
            return left + red
        return left

    def lights(self) -> List[TrafficLight]:
        budget = self.stage_budget()
        lights = []
        for d in Direction:
            remaining = max(0, math.ceil(self._remaining_ticks(d) / self.config.tick_rate))
            lights.append(TrafficLight(
                direction=d,
                state=self.state_of(d),
                timer=self.timer,
                max_timer=budget,
                remaining_time=remaining,
            ))
        return lights

    def axis_count(self, counts: Mapping[Direction, int], axis: Axis) -> int:
        return sum(counts.get(d, 0) for d in axis.directions)
