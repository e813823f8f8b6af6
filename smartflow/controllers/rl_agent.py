import logging
import math
import random
from collections import OrderedDict
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from smartflow.domain.config import RLConfig
from smartflow.domain.models import Axis, Direction, RLStats

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    MAINTAIN_CURRENT = "maintain_current"
    EXTEND_GREEN = "extend_green"
    SWITCH_PHASE = "switch_phase"


class Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ActionType
    duration: float # seconds
    direction: Axis


class TrafficState(BaseModel):
    vehicle_counts: Dict[Direction, int] = Field(default_factory=lambda: {d: 0 for d in Direction})
    waiting_times: Dict[Direction, float] = Field(default_factory=lambda: {d: 0.0 for d in Direction})
    current_phase: Axis = Axis.NORTH_SOUTH
    phase_duration: float = 0.0 # seconds
    congestion_level: float = 0.0 # 0-100

    def axis_count(self, axis: Axis) -> int:
        return sum(self.vehicle_counts.get(d, 0) for d in axis.directions)

    def total_waiting(self) -> float:
        return sum(self.waiting_times.values())

    def max_waiting(self) -> float:
        return max(self.waiting_times.values(), default=0.0)


class StateKey(NamedTuple):
    counts: Tuple[int, ...]
    waiting: Tuple[int, ...]
    phase: Axis
    congestion: int
    phase_duration: int


QValues = Dict[Action, float]


class QLearningAgent:
    """Tabular Q-learning over {maintain, extend, switch}.

    The table is an LRU-bounded mapping of StateKey -> {Action: value}.
    Exploration draws from the injected rng so runs are reproducible.
    """

    def __init__(self, config: Optional[RLConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or RLConfig()
        self.rng = rng or random.Random()
        self.q_table: "OrderedDict[StateKey, QValues]" = OrderedDict()
        self.epsilon = self.config.epsilon
        self.episode = 0

    def reset(self, rng: Optional[random.Random] = None):
        if rng is not None:
            self.rng = rng
        self.q_table.clear()
        self.epsilon = self.config.epsilon
        self.episode = 0

    def state_key(self, state: TrafficState) -> StateKey:
        cfg = self.config
        return StateKey(
            counts=tuple(int(state.vehicle_counts.get(d, 0)) for d in Direction),
            waiting=tuple(
                int(math.floor(state.waiting_times.get(d, 0.0) / cfg.waiting_bucket) * cfg.waiting_bucket)
                for d in Direction
            ),
            phase=state.current_phase,
            congestion=int(math.floor(state.congestion_level / cfg.congestion_bucket) * cfg.congestion_bucket),
            phase_duration=int(math.floor(state.phase_duration / cfg.phase_bucket) * cfg.phase_bucket),
        )

    def available_actions(self, state: TrafficState) -> List[Action]:
        actions = [Action(type=ActionType.MAINTAIN_CURRENT, duration=5, direction=state.current_phase)]
        if state.phase_duration < self.config.extend_max_phase_duration:
            actions.append(Action(type=ActionType.EXTEND_GREEN, duration=10, direction=state.current_phase))
        if state.phase_duration >= self.config.switch_min_phase_duration:
            actions.append(Action(type=ActionType.SWITCH_PHASE, duration=5, direction=state.current_phase.other))
        return actions

    def _values(self, key: StateKey, create: bool = False) -> Optional[QValues]:
        values = self.q_table.get(key)
        if values is None and create:
            values = {}
            self.q_table[key] = values
            while len(self.q_table) > self.config.max_q_states:
                self.q_table.popitem(last=False)
        if values is not None:
            self.q_table.move_to_end(key)
        return values

    def select_action(self, state: TrafficState) -> Action:
        actions = self.available_actions(state)
        values = self._values(self.state_key(state), create=True)

        if self.rng.random() < self.epsilon:
            return actions[self.rng.randrange(len(actions))]

        best = actions[0]
        best_value = values.get(best, 0.0)
        for action in actions:
            value = values.get(action, 0.0)
            if value > best_value:
                best, best_value = action, value
        return best

    def get_action(self, state: TrafficState) -> Action:
        action = self.select_action(state)
        self.epsilon = max(self.config.min_epsilon, self.epsilon * self.config.epsilon_decay)
        logger.debug("RL action %s (epsilon=%.3f)", action.type.value, self.epsilon)
        return action

    def calculate_reward(self, state: TrafficState, action: Action, next_state: TrafficState) -> float:
        cfg = self.config
        reward = (state.total_waiting() - next_state.total_waiting()) * cfg.waiting_weight
        reward += (state.congestion_level - next_state.congestion_level) * cfg.congestion_weight

        if action.type == ActionType.SWITCH_PHASE:
            reward -= cfg.switch_penalty

        if action.type == ActionType.EXTEND_GREEN and state.phase_duration > cfg.extend_bonus_min_phase:
            if state.axis_count(state.current_phase) > cfg.busy_vehicle_count:
                reward += cfg.extend_bonus

        if state.max_waiting() > cfg.excessive_wait_threshold:
            reward -= cfg.excessive_wait_penalty

        return reward

    def train(self, state: TrafficState, action: Action, reward: float, next_state: TrafficState):
        if self.training_complete:
            return
        next_values = self._values(self.state_key(next_state))
        max_next = max(next_values.values(), default=0.0) if next_values else 0.0
        max_next = max(0.0, max_next)

        values = self._values(self.state_key(state), create=True)
        current = values.get(action, 0.0)
        values[action] = current + self.config.learning_rate * (
            reward + self.config.discount_factor * max_next - current
        )
        self.episode += 1

    @property
    def training_complete(self) -> bool:
        """The table is frozen once max_iterations updates have been applied."""
        return self.episode >= self.config.max_iterations

    def get_q_value(self, state: TrafficState, action: Action) -> float:
        values = self.q_table.get(self.state_key(state))
        if values is None:
            return 0.0
        return values.get(action, 0.0)

    def training_stats(self) -> RLStats:
        return RLStats(
            episode=self.episode,
            epsilon=self.epsilon,
            q_table_size=len(self.q_table),
            total_q_values=sum(len(v) for v in self.q_table.values()),
            training_complete=self.training_complete,
        )

    def export_q_table(self) -> List[dict]:
        rows = []
        for key, values in self.q_table.items():
            for action, value in values.items():
                rows.append({
                    "state": {
                        "counts": list(key.counts),
                        "waiting": list(key.waiting),
                        "phase": key.phase.value,
                        "congestion": key.congestion,
                        "phase_duration": key.phase_duration,
                    },
                    "action": action.model_dump(mode="json"),
                    "value": value,
                })
        return rows

    def load_q_table(self, rows: List[dict]):
        self.q_table.clear()
        for row in rows:
            s = row["state"]
            key = StateKey(
                counts=tuple(s["counts"]),
                waiting=tuple(s["waiting"]),
                phase=Axis(s["phase"]),
                congestion=s["congestion"],
                phase_duration=s["phase_duration"],
            )
            values = self._values(key, create=True)
            values[Action.model_validate(row["action"])] = float(row["value"])
