import logging
import math
import random
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from smartflow.domain.config import SimulationBoundsConfig, VehicleConfig
from smartflow.domain.models import (
    Vehicle, Direction, SignalState, VehicleType, DetectionInput
)

logger = logging.getLogger(__name__)

LEFT_TURNS = {
    Direction.NORTH: Direction.WEST,
    Direction.SOUTH: Direction.EAST,
    Direction.EAST: Direction.NORTH,
    Direction.WEST: Direction.SOUTH,
}

RIGHT_TURNS = {
    Direction.NORTH: Direction.EAST,
    Direction.SOUTH: Direction.WEST,
    Direction.EAST: Direction.SOUTH,
    Direction.WEST: Direction.NORTH,
}

DIRECTIONS = [Direction.NORTH, Direction.SOUTH, Direction.EAST, Direction.WEST]


class VehicleSystem:
    """Owns the vehicle population of a single intersection.

    Vehicles live in an insertion-ordered arena keyed by id. Each tick every
    vehicle proposes a move which is committed only if the lane-following,
    absolute-distance and signal rules all allow it. Moves are evaluated
    against positions already committed this tick, so the safety distance
    holds pairwise after every tick.

    Lanes outside the centre box are at least the absolute distance apart,
    so vehicles in different lanes only meet inside the box. The box admits
    one vehicle at a time and the vehicle inside has right of way.
    """

    def __init__(self, bounds: SimulationBoundsConfig, config: VehicleConfig,
                 rng: Optional[random.Random] = None):
        self.bounds = bounds
        self.config = config
        self.rng = rng or random.Random()
        self.vehicles: Dict[str, Vehicle] = {}
        self.next_id = 0
        self.vehicles_passed = 0
        self.external_source = False

    def reset(self, rng: Optional[random.Random] = None):
        if rng is not None:
            self.rng = rng
        self.vehicles = {}
        self.next_id = 0
        self.vehicles_passed = 0
        self.external_source = False

    # Spawning

    def spawn(self, direction: Optional[Direction] = None) -> Optional[Vehicle]:
        if direction is None:
            direction = self.rng.choice(DIRECTIONS)
        target = self._pick_target(direction)
        x, y = self._entry_point(direction)

        if not self._is_clear(x, y):
            return None

        vehicle = Vehicle(
            id=f"vehicle-{self.next_id}",
            x=x,
            y=y,
            direction=direction,
            target_direction=target,
            speed=self.rng.uniform(self.config.min_speed, self.config.max_speed),
            type=VehicleType.CAR,
        )
        self.next_id += 1
        self.vehicles[vehicle.id] = vehicle
        return vehicle

    def spawn_initial(self, count: int):
        for _ in range(count):
            self._spawn_any()

    def _spawn_any(self) -> Optional[Vehicle]:
        # Try every entry direction once, in random order
        directions = list(DIRECTIONS)
        self.rng.shuffle(directions)
        for direction in directions:
            vehicle = self.spawn(direction)
            if vehicle is not None:
                return vehicle
        return None

    def _pick_target(self, direction: Direction) -> Direction:
        roll = self.rng.random()
        if roll < self.config.left_share:
            return LEFT_TURNS[direction]
        if roll < self.config.left_share + (1.0 - self.config.left_share - self.config.straight_share):
            return RIGHT_TURNS[direction]
        return direction

    def _entry_point(self, direction: Direction) -> Tuple[float, float]:
        b = self.bounds
        jitter = self.rng.random() * b.lane_jitter
        if direction == Direction.NORTH:
            return b.center_x + b.lane_offset + jitter, b.height
        if direction == Direction.SOUTH:
            return b.center_x - b.lane_offset - jitter, 0.0
        if direction == Direction.EAST:
            return 0.0, b.center_y + b.lane_offset + jitter
        return b.width, b.center_y - b.lane_offset - jitter

    def _is_clear(self, x: float, y: float) -> bool:
        limit = self.config.min_absolute_distance
        for other in self.vehicles.values():
            if math.hypot(x - other.x, y - other.y) < limit:
                return False
        return True

    def add_vehicle(self, x: float, y: float, direction: Direction,
                    target_direction: Optional[Direction] = None, speed: float = 1.0,
                    waiting_time: int = 0, vehicle_id: Optional[str] = None,
                    vehicle_type: VehicleType = VehicleType.CAR) -> Vehicle:
        """Places a vehicle directly, clamping its inputs. No clearance check."""
        if vehicle_id is None:
            vehicle_id = f"vehicle-{self.next_id}"
            self.next_id += 1
        vehicle = Vehicle(
            id=vehicle_id,
            x=x,
            y=y,
            direction=direction,
            target_direction=target_direction or direction,
            speed=speed,
            waiting_time=waiting_time,
            type=vehicle_type,
        )
        self.vehicles[vehicle.id] = vehicle
        return vehicle

    def remove_vehicle(self, vehicle_id: str) -> bool:
        return self.vehicles.pop(vehicle_id, None) is not None

    def ingest_detections(self, detections: Iterable[DetectionInput]):
        """Replaces the population with externally detected vehicles."""
        self.vehicles = {}
        for d in detections:
            self.add_vehicle(
                x=d.x, y=d.y, direction=d.direction,
                target_direction=d.target_direction, speed=d.speed,
                waiting_time=d.waiting_time, vehicle_id=d.id, vehicle_type=d.type,
            )
        self.external_source = True

    def release_external_source(self):
        self.external_source = False

    # Tick

    def tick(self, signal_states: Mapping[Direction, SignalState]) -> int:
        """Advances every vehicle one step. Returns the number of vehicles removed."""
        for vehicle in list(self.vehicles.values()):
            self._update_single_vehicle(vehicle, signal_states)

        removed = [vid for vid, v in self.vehicles.items() if not self.bounds.contains(v.x, v.y)]
        for vid in removed:
            del self.vehicles[vid]
        self.vehicles_passed += len(removed)

        if self.config.spawn_enabled and not self.external_source:
            self._regulate_population()

        return len(removed)

    def _update_single_vehicle(self, v: Vehicle, signal_states: Mapping[Direction, SignalState]):
        light = signal_states.get(v.direction, SignalState.GREEN)
        if light in (SignalState.RED, SignalState.YELLOW) and self.in_stop_zone(v):
            self._hold(v)
            return

        direction = v.direction
        has_turned = v.has_turned
        if self.in_center_box(v) and not has_turned and v.target_direction != v.direction:
            direction = v.target_direction
            has_turned = True

        new_x, new_y = self._propose(v, direction)
        if self._box_taken(v, new_x, new_y) or self._is_blocked(v, direction, new_x, new_y):
            self._hold(v)
            return

        v.x = new_x
        v.y = new_y
        v.direction = direction
        v.has_turned = has_turned
        v.waiting_time = 0
        v.moved = True

    def _hold(self, v: Vehicle):
        v.waiting_time += 1
        v.moved = False

    def _propose(self, v: Vehicle, direction: Direction) -> Tuple[float, float]:
        b = self.bounds
        if direction == Direction.NORTH:
            return b.center_x + b.lane_offset, v.y - v.speed
        if direction == Direction.SOUTH:
            return b.center_x - b.lane_offset, v.y + v.speed
        if direction == Direction.EAST:
            return v.x + v.speed, b.center_y + b.lane_offset
        return v.x - v.speed, b.center_y - b.lane_offset

    def _is_blocked(self, v: Vehicle, direction: Direction, new_x: float, new_y: float) -> bool:
        following = self.config.safe_following_distance
        absolute = self.config.min_absolute_distance

        for other in self.vehicles.values():
            if other.id == v.id:
                continue

            if other.direction == direction:
                ahead, distance = self._ahead_of(direction, v.x, v.y, other.x, other.y)
                if ahead and distance < following:
                    return True

            proposed = math.hypot(new_x - other.x, new_y - other.y)
            if proposed < absolute:
                current = math.hypot(v.x - other.x, v.y - other.y)
                if proposed < current:
                    return True
        return False

    @staticmethod
    def _ahead_of(direction: Direction, x: float, y: float, ox: float, oy: float) -> Tuple[bool, float]:
        if direction == Direction.NORTH:
            return oy < y, y - oy
        if direction == Direction.SOUTH:
            return oy > y, oy - y
        if direction == Direction.EAST:
            return ox > x, ox - x
        return ox < x, x - ox

    def box_contains(self, x: float, y: float) -> bool:
        b = self.bounds
        return abs(x - b.center_x) < b.center_box_half and abs(y - b.center_y) < b.center_box_half

    def in_center_box(self, v: Vehicle) -> bool:
        return self.box_contains(v.x, v.y)

    def _box_taken(self, v: Vehicle, new_x: float, new_y: float) -> bool:
        """True when the move would enter the box while another vehicle is inside."""
        if self.in_center_box(v) or not self.box_contains(new_x, new_y):
            return False
        return any(other.id != v.id and self.in_center_box(other) for other in self.vehicles.values())

    def in_stop_zone(self, v: Vehicle) -> bool:
        """True when the vehicle is in the band just before entering the box."""
        b = self.bounds
        inner = b.center_box_half
        outer = b.center_box_half + b.stop_zone_length
        if v.direction == Direction.NORTH:
            return b.center_y + inner < v.y < b.center_y + outer
        if v.direction == Direction.SOUTH:
            return b.center_y - outer < v.y < b.center_y - inner
        if v.direction == Direction.EAST:
            return b.center_x - outer < v.x < b.center_x - inner
        return b.center_x + inner < v.x < b.center_x + outer

    def _regulate_population(self):
        cfg = self.config
        congestion = min(len(self.vehicles) / cfg.congestion_population, 1.0)

        spawn_rate = cfg.base_spawn_rate
        if congestion > cfg.heavy_congestion:
            spawn_rate = cfg.heavy_spawn_rate
        elif congestion > cfg.moderate_congestion:
            spawn_rate = cfg.moderate_spawn_rate

        if self.rng.random() < spawn_rate:
            self.spawn()

        if len(self.vehicles) < cfg.min_vehicles:
            self._spawn_any()

        if len(self.vehicles) > cfg.max_vehicles:
            self._evict_farthest(len(self.vehicles) - cfg.max_vehicles)

    def _evict_farthest(self, count: int):
        cx, cy = self.bounds.center_x, self.bounds.center_y
        ranked = sorted(
            self.vehicles.values(),
            key=lambda v: math.hypot(v.x - cx, v.y - cy),
            reverse=True,
        )
        for v in ranked[:count]:
            del self.vehicles[v.id]
        logger.debug("Evicted %d vehicles over population ceiling", count)

    # Queries

    def active_vehicles(self) -> List[Vehicle]:
        return [v.model_copy() for v in self.vehicles.values()]

    def counts_by_direction(self) -> Dict[Direction, int]:
        counts = {d: 0 for d in DIRECTIONS}
        for v in self.vehicles.values():
            counts[v.direction] += 1
        return counts

    def waiting_by_direction(self) -> Dict[Direction, int]:
        waiting = {d: 0 for d in DIRECTIONS}
        for v in self.vehicles.values():
            waiting[v.direction] += v.waiting_time
        return waiting

    def queue_lengths(self, min_wait: int) -> Dict[Direction, int]:
        queues = {d: 0 for d in DIRECTIONS}
        for v in self.vehicles.values():
            if v.waiting_time > min_wait:
                queues[v.direction] += 1
        return queues

    def average_speed(self) -> float:
        if not self.vehicles:
            return 0.0
        return sum(v.speed for v in self.vehicles.values()) / len(self.vehicles)

    def average_waiting_time(self) -> float:
        if not self.vehicles:
            return 0.0
        return sum(v.waiting_time for v in self.vehicles.values()) / len(self.vehicles)

    def __len__(self) -> int:
        return len(self.vehicles)
