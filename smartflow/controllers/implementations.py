import logging
from typing import Any, Dict, Optional, Tuple

from smartflow.controllers.base import Controller
from smartflow.controllers.adaptive import AdaptiveTimingSystem
from smartflow.controllers.dynamic import DynamicSignalController
from smartflow.controllers.rl_agent import QLearningAgent, TrafficState, Action, ActionType
from smartflow.domain.models import Axis, ControlStrategy, SignalState, SignalTiming

logger = logging.getLogger(__name__)

class FixedController(Controller):
    """Density-scaled round robin: the running green tracks its axis' vehicle count."""
    strategy = ControlStrategy.FIXED

    def run_tick(self, kernel: Any):
        signal = kernel.signal
        if signal.stage != SignalState.GREEN:
            return
        count = signal.axis_count(kernel.vehicles.counts_by_direction(), signal.active_axis)
        duration = signal.green_duration(count)
        signal.set_green_budget(duration)
        if signal.timer == 0:
            kernel.state.last_timing = SignalTiming(
                phase=signal.active_axis,
                duration=duration,
                priority=0.0,
                reason=f"Fixed cycle with {count} vehicles on {signal.active_axis.value}",
            )

class DynamicController(Controller):
    """Consults the dynamic scorer whenever the running green is about to end."""
    strategy = ControlStrategy.DYNAMIC

    def __init__(self, scorer: DynamicSignalController):
        self.scorer = scorer

    def reset(self):
        self.scorer.reset()

    def run_tick(self, kernel: Any):
        signal = kernel.signal
        if not signal.green_expiring:
            return

        if self.scorer.current_phase is not None:
            self.scorer.current_phase = signal.active_axis
        timing = self.scorer.calculate_optimal_timing(kernel.traffic_conditions())
        kernel.state.last_timing = timing

        if timing.phase == signal.active_axis and not signal.at_max_green:
            signal.extend_green(timing.duration)
        else:
            signal.set_next_green(timing.duration)
            self.scorer.current_phase = signal.active_axis.other
            logger.debug("Ending %s green, next green %.1fs", signal.active_axis.value, timing.duration)

class AdaptiveController(Controller):
    """Re-plans the green from time-of-day patterns each time a green starts."""
    strategy = ControlStrategy.ADAPTIVE

    def __init__(self, system: AdaptiveTimingSystem):
        self.system = system
        self.applied: Optional[Dict[Axis, float]] = None

    def reset(self):
        self.system.reset()
        self.applied = None

    def run_tick(self, kernel: Any):
        signal = kernel.signal
        if signal.stage != SignalState.GREEN or signal.timer != 0:
            return

        conditions = kernel.adaptive_conditions()
        if self.applied is not None:
            performance = 100 - conditions.congestion_level
            self.system.learn_from_performance(self.applied, performance, conditions, kernel.state.time)

        self.system.calculate_optimal_timing(conditions)
        self.applied = dict(self.system.current_timings)
        duration = self.applied[signal.active_axis]
        signal.set_green_budget(duration)

        pattern = self.system.current_pattern(conditions)
        kernel.state.last_timing = SignalTiming(
            phase=signal.active_axis,
            duration=duration,
            priority=pattern.confidence,
            reason=f"Adaptive pattern for {conditions.time_of_day:02d}:00",
        )

class RLController(Controller):
    """Queries the Q-learning agent at a fixed tick interval during green."""
    strategy = ControlStrategy.REINFORCEMENT

    def __init__(self, agent: QLearningAgent, interval: int):
        self.agent = agent
        self.interval = interval
        self.previous: Optional[Tuple[TrafficState, Action]] = None

    def reset(self):
        self.previous = None

    def run_tick(self, kernel: Any):
        signal = kernel.signal
        if signal.stage != SignalState.GREEN or kernel.state.tick_id % self.interval != 0:
            return

        state = kernel.rl_state()
        if self.previous is not None:
            prev_state, prev_action = self.previous
            reward = self.agent.calculate_reward(prev_state, prev_action, state)
            self.agent.train(prev_state, prev_action, reward, state)

        action = self.agent.get_action(state)
        self.apply(action, kernel)
        self.previous = (state, action)

    def apply(self, action: Action, kernel: Any):
        cfg = self.agent.config
        signal = kernel.signal
        if action.type == ActionType.EXTEND_GREEN:
            signal.extend_green(cfg.extend_green_seconds, cap=cfg.extend_green_cap)
        elif action.type == ActionType.SWITCH_PHASE:
            signal.request_switch(next_green=cfg.switch_green_seconds)

        kernel.state.last_timing = SignalTiming(
            phase=action.direction,
            duration=action.duration,
            priority=self.agent.epsilon,
            reason=f"RL action {action.type.value}",
        )
