# Simulation Configuration
import json
from typing import FrozenSet, Union
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Canvas / Intersection Geometry
CANVAS_WIDTH = 800.0
CANVAS_HEIGHT = 600.0
INTERSECTION_X = 400.0
INTERSECTION_Y = 300.0
BOUNDS_MARGIN = 50.0         # Vehicles are dropped once this far outside the canvas
LANE_OFFSET = 15.0           # Distance from centre line to lane centre
LANE_JITTER = 8.0            # Spawn scatter across the lane
CENTER_BOX_HALF = 45.0       # Half-size of the intersection box (turn zone, one vehicle at a time)
STOP_ZONE_LENGTH = 50.0      # Stop band length in front of the box

# Time
TICK_RATE = 60               # Ticks per simulated second

# Vehicle Physics
MIN_SPEED = 0.8              # px/tick
MAX_SPEED = 1.2
SAFE_FOLLOWING_DISTANCE = 40.0
MIN_ABSOLUTE_DISTANCE = 30.0

# Spawning
BASE_SPAWN_RATE = 0.005
MODERATE_SPAWN_RATE = 0.003
HEAVY_SPAWN_RATE = 0.002
MODERATE_CONGESTION = 0.5
HEAVY_CONGESTION = 0.7
CONGESTION_POPULATION = 15   # Population at which spawn congestion saturates
MIN_VEHICLES = 6
MAX_VEHICLES = 18
INITIAL_VEHICLES = 8
STRAIGHT_SHARE = 0.30
LEFT_SHARE = 0.35

# Signal Timings (seconds)
MIN_GREEN_TIME = 10.0
MAX_GREEN_TIME = 60.0
BASE_GREEN_TIME = 20.0
PER_VEHICLE_BONUS = 2.0
MAX_DENSITY_BONUS = 25.0
YELLOW_TIME = 3.0
RED_TIME = 2.0

# Dynamic Control
DENSITY_WEIGHT = 0.4
WAITING_WEIGHT = 0.3
QUEUE_WEIGHT = 0.2
TREND_WEIGHT = 0.1
BUSY_THRESHOLD = 0.6
SWITCH_MARGIN = 0.3
WAITING_TIME_THRESHOLD = 15.0
QUEUE_WAIT_TICKS = 5
DENSITY_HISTORY_SIZE = 10

# Reinforcement Learning
LEARNING_RATE = 0.1
DISCOUNT_FACTOR = 0.9
EPSILON = 0.9
EPSILON_DECAY = 0.995
MIN_EPSILON = 0.01
MAX_Q_STATES = 50000

# Adaptive Timing
ADAPTIVE_LEARNING_RATE = 0.1
PATTERN_MEMORY_DAYS = 30
ADAPTATION_THRESHOLD = 2.0     # seconds
START_HOUR = 8               # Simulated clock at tick 0
START_DAY = 1                # Monday

# Flow Analysis
FLOW_HISTORY_SIZE = 1000
FLOW_WINDOW = 5
TREND_WINDOW = 10
VEHICLE_CAPACITY = 50
FREE_FLOW_SPEED = 60.0       # km/h

# Incident Detection
ACCIDENT_THRESHOLD = 2
CONGESTION_THRESHOLD = 5
SPEED_ANOMALY_THRESHOLD = 2.0
DETECTION_RADIUS = 100.0     # Merge radius for duplicate incidents
CLUSTER_RADIUS = 50.0

# Coordination
PIXELS_PER_KM = 100.0
AVERAGE_SPEED_KMH = 40.0
CYCLE_LENGTH = 60.0

# Performance Metrics
DATA_RETENTION_DAYS = 30
REPORTING_INTERVAL_MINUTES = 15
INDUSTRY_AVERAGE = 75.0

# Scheduling (ticks)
INCIDENT_INTERVAL = 30
METRICS_INTERVAL = 60
COORDINATION_INTERVAL = 60
FLOW_SAMPLE_INTERVAL = 30
RL_DECISION_INTERVAL = 60


class _Config(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class SimulationBoundsConfig(_Config):
    width: float = Field(CANVAS_WIDTH, gt=0)
    height: float = Field(CANVAS_HEIGHT, gt=0)
    center_x: float = INTERSECTION_X
    center_y: float = INTERSECTION_Y
    margin: float = Field(BOUNDS_MARGIN, ge=0)
    lane_offset: float = Field(LANE_OFFSET, ge=0)
    lane_jitter: float = Field(LANE_JITTER, ge=0)
    center_box_half: float = Field(CENTER_BOX_HALF, gt=0)
    stop_zone_length: float = Field(STOP_ZONE_LENGTH, ge=0)

    def contains(self, x: float, y: float) -> bool:
        return (-self.margin <= x <= self.width + self.margin
                and -self.margin <= y <= self.height + self.margin)


class VehicleConfig(_Config):
    min_speed: float = Field(MIN_SPEED, ge=0)
    max_speed: float = Field(MAX_SPEED, ge=0)
    safe_following_distance: float = Field(SAFE_FOLLOWING_DISTANCE, ge=0)
    min_absolute_distance: float = Field(MIN_ABSOLUTE_DISTANCE, ge=0)
    base_spawn_rate: float = Field(BASE_SPAWN_RATE, ge=0, le=1)
    moderate_spawn_rate: float = Field(MODERATE_SPAWN_RATE, ge=0, le=1)
    heavy_spawn_rate: float = Field(HEAVY_SPAWN_RATE, ge=0, le=1)
    moderate_congestion: float = Field(MODERATE_CONGESTION, ge=0, le=1)
    heavy_congestion: float = Field(HEAVY_CONGESTION, ge=0, le=1)
    congestion_population: int = Field(CONGESTION_POPULATION, gt=0)
    min_vehicles: int = Field(MIN_VEHICLES, ge=0)
    max_vehicles: int = Field(MAX_VEHICLES, ge=0)
    initial_vehicles: int = Field(INITIAL_VEHICLES, ge=0)
    straight_share: float = Field(STRAIGHT_SHARE, ge=0, le=1)
    left_share: float = Field(LEFT_SHARE, ge=0, le=1)
    spawn_enabled: bool = True

    @model_validator(mode="after")
    def _check_ranges(self):
        if self.min_speed > self.max_speed:
            raise ValueError("min_speed must not exceed max_speed")
        if self.min_vehicles > self.max_vehicles:
            raise ValueError("min_vehicles must not exceed max_vehicles")
        if self.moderate_congestion > self.heavy_congestion:
            raise ValueError("moderate_congestion must not exceed heavy_congestion")
        if self.straight_share + self.left_share > 1.0:
            raise ValueError("straight_share + left_share must not exceed 1")
        return self


class SignalTimingConfig(_Config):
    tick_rate: int = Field(TICK_RATE, gt=0)
    min_green_time: float = Field(MIN_GREEN_TIME, gt=0)
    max_green_time: float = Field(MAX_GREEN_TIME, gt=0)
    base_green_time: float = Field(BASE_GREEN_TIME, gt=0)
    per_vehicle_bonus: float = Field(PER_VEHICLE_BONUS, ge=0)
    max_density_bonus: float = Field(MAX_DENSITY_BONUS, ge=0)
    yellow_time: float = Field(YELLOW_TIME, gt=0)
    red_time: float = Field(RED_TIME, gt=0)

    @model_validator(mode="after")
    def _check_durations(self):
        if self.min_green_time > self.max_green_time:
            raise ValueError("min_green_time must not exceed max_green_time")
        if not self.min_green_time <= self.base_green_time <= self.max_green_time:
            raise ValueError("base_green_time must lie within [min_green_time, max_green_time]")
        return self

    def to_ticks(self, seconds: float) -> int:
        return max(1, int(round(seconds * self.tick_rate)))


class DynamicControlConfig(_Config):
    min_green_time: float = Field(MIN_GREEN_TIME, gt=0)
    max_green_time: float = Field(MAX_GREEN_TIME, gt=0)
    density_threshold: int = Field(1, ge=0)
    waiting_time_threshold: float = Field(WAITING_TIME_THRESHOLD, ge=0)
    busy_threshold: float = Field(BUSY_THRESHOLD, ge=0)
    switch_margin: float = Field(SWITCH_MARGIN, ge=0)
    seconds_per_vehicle: float = Field(2.0, ge=0)
    high_congestion: float = Field(70.0, ge=0, le=100)
    low_congestion: float = Field(30.0, ge=0, le=100)
    high_congestion_factor: float = Field(1.5, gt=0)
    low_congestion_factor: float = Field(0.8, gt=0)
    extension_vehicle_threshold: int = Field(3, ge=0)
    extension_vehicle_bonus: float = Field(5.0, ge=0)
    extension_wait_threshold: float = Field(10.0, ge=0)
    extension_wait_bonus: float = Field(3.0, ge=0)
    queue_wait_ticks: int = Field(QUEUE_WAIT_TICKS, ge=0)
    history_size: int = Field(DENSITY_HISTORY_SIZE, gt=1)

    @model_validator(mode="after")
    def _check_durations(self):
        if self.min_green_time > self.max_green_time:
            raise ValueError("min_green_time must not exceed max_green_time")
        if self.low_congestion > self.high_congestion:
            raise ValueError("low_congestion must not exceed high_congestion")
        return self


class AdaptiveTimingConfig(_Config):
    learning_rate: float = Field(ADAPTIVE_LEARNING_RATE, gt=0, le=1)
    min_green_time: float = Field(MIN_GREEN_TIME, gt=0)
    max_green_time: float = Field(MAX_GREEN_TIME, gt=0)
    default_green_time: float = Field(BASE_GREEN_TIME, gt=0)
    pattern_memory_days: float = Field(PATTERN_MEMORY_DAYS, gt=0)
    adaptation_threshold: float = Field(ADAPTATION_THRESHOLD, ge=0)
    start_hour: int = Field(START_HOUR, ge=0, le=23)
    start_day: int = Field(START_DAY, ge=0, le=6) # 0 = Sunday
    min_learning_samples: int = Field(10, ge=1)
    min_group_samples: int = Field(3, ge=1)
    max_history: int = Field(1000, gt=0)

    @model_validator(mode="after")
    def _check_durations(self):
        if self.min_green_time > self.max_green_time:
            raise ValueError("min_green_time must not exceed max_green_time")
        return self


class RLConfig(_Config):
    learning_rate: float = Field(LEARNING_RATE, gt=0, le=1)
    discount_factor: float = Field(DISCOUNT_FACTOR, ge=0, le=1)
    epsilon: float = Field(EPSILON, ge=0, le=1)
    epsilon_decay: float = Field(EPSILON_DECAY, gt=0, le=1)
    min_epsilon: float = Field(MIN_EPSILON, ge=0, le=1)
    max_iterations: int = Field(1000, gt=0)
    max_q_states: int = Field(MAX_Q_STATES, gt=0)
    extend_max_phase_duration: float = Field(30.0, ge=0)
    switch_min_phase_duration: float = Field(10.0, ge=0)
    waiting_bucket: float = Field(10.0, gt=0)
    congestion_bucket: float = Field(10.0, gt=0)
    phase_bucket: float = Field(5.0, gt=0)
    waiting_weight: float = Field(0.1, ge=0)
    congestion_weight: float = Field(0.2, ge=0)
    switch_penalty: float = Field(0.1, ge=0)
    extend_bonus: float = Field(0.3, ge=0)
    extend_bonus_min_phase: float = Field(15.0, ge=0)
    busy_vehicle_count: int = Field(3, ge=0)
    excessive_wait_threshold: float = Field(20.0, ge=0)
    excessive_wait_penalty: float = Field(0.5, ge=0)
    extend_green_seconds: float = Field(10.0, ge=0)
    extend_green_cap: float = Field(40.0, gt=0)
    switch_green_seconds: float = Field(20.0, gt=0)

    @model_validator(mode="after")
    def _check_epsilon(self):
        if self.min_epsilon > self.epsilon:
            raise ValueError("min_epsilon must not exceed epsilon")
        return self


class FlowConfig(_Config):
    max_history: int = Field(FLOW_HISTORY_SIZE, gt=0)
    flow_window: int = Field(FLOW_WINDOW, ge=2)
    trend_window: int = Field(TREND_WINDOW, ge=2)
    vehicle_capacity: int = Field(VEHICLE_CAPACITY, gt=0)
    free_flow_speed: float = Field(FREE_FLOW_SPEED, gt=0)
    road_length: float = Field(1.0, gt=0)
    high_congestion: float = Field(70.0, ge=0, le=100)


class IncidentConfig(_Config):
    accident_threshold: int = Field(ACCIDENT_THRESHOLD, ge=1)
    congestion_threshold: int = Field(CONGESTION_THRESHOLD, ge=1)
    speed_anomaly_threshold: float = Field(SPEED_ANOMALY_THRESHOLD, gt=0)
    detection_radius: float = Field(DETECTION_RADIUS, ge=0)
    cluster_radius: float = Field(CLUSTER_RADIUS, ge=0)
    stopped_speed: float = Field(1.0, ge=0)
    stopped_wait_ticks: int = Field(30, ge=0)
    slow_speed: float = Field(10.0, ge=0)
    min_anomaly_samples: int = Field(5, ge=2)
    lane_band: float = Field(100.0, ge=0)
    response_time_limit: float = Field(10.0, ge=0)
    false_alarm_threshold: float = Field(0.7, ge=0, le=1)
    max_incidents: int = Field(500, gt=0)


class CoordinationConfig(_Config):
    pixels_per_km: float = Field(PIXELS_PER_KM, gt=0)
    average_speed_kmh: float = Field(AVERAGE_SPEED_KMH, gt=0)
    cycle_length: float = Field(CYCLE_LENGTH, gt=0)
    wave_fraction: float = Field(0.3, ge=0, le=1)
    row_tolerance: float = Field(50.0, ge=0)
    base_phase_duration: float = Field(30.0, gt=0)
    congested_phase_duration: float = Field(40.0, gt=0)
    light_phase_duration: float = Field(25.0, gt=0)
    neighbor_congestion_threshold: float = Field(60.0, ge=0, le=100)
    min_phase_before_switch: float = Field(20.0, ge=0)
    prediction_horizon: float = Field(10.0, gt=0)
    hotspot_threshold: float = Field(70.0, ge=0, le=100)
    co2_per_vehicle_kg: float = Field(0.2, ge=0)
    grid_rows: int = Field(3, ge=0)
    grid_cols: int = Field(3, ge=0)
    grid_spacing: float = Field(200.0, gt=0)


class AlertThresholds(_Config):
    wait_time: float = Field(30.0, ge=0)
    incident_rate: float = Field(5.0, ge=0)
    efficiency: float = Field(70.0, ge=0)


class PerformanceTargets(_Config):
    max_wait_time: float = Field(20.0, ge=0)
    min_throughput: float = Field(100.0, ge=0)
    max_incidents: float = Field(2.0, ge=0)


class PerformanceConfig(_Config):
    data_retention_days: float = Field(DATA_RETENTION_DAYS, gt=0)
    reporting_interval: float = Field(REPORTING_INTERVAL_MINUTES, gt=0)
    max_samples_per_metric: int = Field(10000, gt=10)
    alert_thresholds: AlertThresholds = AlertThresholds()
    targets: PerformanceTargets = PerformanceTargets()
    industry_average: float = Field(INDUSTRY_AVERAGE, ge=0)
    lower_is_better: FrozenSet[str] = frozenset({
        "waitTime", "incidents", "incidentCount", "emissions", "noise",
        "congestionLevel", "queueLength",
    })

    @property
    def retention_seconds(self) -> float:
        return self.data_retention_days * 24 * 60 * 60


class SchedulingConfig(_Config):
    incident_interval: int = Field(INCIDENT_INTERVAL, gt=0)
    metrics_interval: int = Field(METRICS_INTERVAL, gt=0)
    coordination_interval: int = Field(COORDINATION_INTERVAL, gt=0)
    flow_sample_interval: int = Field(FLOW_SAMPLE_INTERVAL, gt=0)
    rl_decision_interval: int = Field(RL_DECISION_INTERVAL, gt=0)
    incident_detection_enabled: bool = True
    coordination_enabled: bool = True


class SimulationConfig(_Config):
    bounds: SimulationBoundsConfig = SimulationBoundsConfig()
    vehicles: VehicleConfig = VehicleConfig()
    signals: SignalTimingConfig = SignalTimingConfig()
    dynamic: DynamicControlConfig = DynamicControlConfig()
    adaptive: AdaptiveTimingConfig = AdaptiveTimingConfig()
    rl: RLConfig = RLConfig()
    flow: FlowConfig = FlowConfig()
    incidents: IncidentConfig = IncidentConfig()
    coordination: CoordinationConfig = CoordinationConfig()
    performance: PerformanceConfig = PerformanceConfig()
    scheduling: SchedulingConfig = SchedulingConfig()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "SimulationConfig":
        with open(path) as f:
            return cls.model_validate(json.load(f))

    @model_validator(mode="after")
    def _check_geometry(self):
        spacing = self.vehicles.min_absolute_distance
        if 2 * self.bounds.lane_offset < spacing:
            raise ValueError("opposing lanes must be at least min_absolute_distance apart")
        if self.bounds.center_box_half - self.bounds.lane_offset < spacing:
            raise ValueError("center_box_half must clear the crossing lanes by min_absolute_distance")
        return self
