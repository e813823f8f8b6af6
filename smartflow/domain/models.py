from enum import Enum
from typing import List, Optional, Dict
from pydantic import BaseModel, ConfigDict, Field, field_validator

class Direction(str, Enum):
    NORTH = "north"
    SOUTH = "south"
    EAST = "east"
    WEST = "west"

    @property
    def axis(self) -> "Axis":
        if self in (Direction.NORTH, Direction.SOUTH):
            return Axis.NORTH_SOUTH
        return Axis.EAST_WEST

class Axis(str, Enum):
    NORTH_SOUTH = "north-south"
    EAST_WEST = "east-west"

    @property
    def directions(self) -> tuple:
        if self == Axis.NORTH_SOUTH:
            return (Direction.NORTH, Direction.SOUTH)
        return (Direction.EAST, Direction.WEST)

    @property
    def other(self) -> "Axis":
        return Axis.EAST_WEST if self == Axis.NORTH_SOUTH else Axis.NORTH_SOUTH

class SignalState(str, Enum):
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"

class VehicleType(str, Enum):
    CAR = "car"
    TRUCK = "truck"
    BUS = "bus"
    MOTORCYCLE = "motorcycle"

class ControlStrategy(str, Enum):
    FIXED = "fixed"
    DYNAMIC = "dynamic"
    ADAPTIVE = "adaptive"
    REINFORCEMENT = "reinforcement"

class CoordinationStrategyType(str, Enum):
    GREEN_WAVE = "green_wave"
    ADAPTIVE_OFFSET = "adaptive_offset"
    DISTRIBUTED_CONTROL = "distributed_control"
    PREDICTIVE = "predictive"

class Vehicle(BaseModel):
    id: str
    x: float
    y: float
    direction: Direction
    target_direction: Direction
    speed: float # px per tick
    waiting_time: int = 0 # ticks spent blocked
    type: VehicleType = VehicleType.CAR
    has_turned: bool = False
    moved: bool = True # advanced on the last tick

    @field_validator("speed", mode="before")
    @classmethod
    def _clamp_speed(cls, v):
        v = float(v)
        return v if v > 0 else 0.0

    @field_validator("waiting_time", mode="before")
    @classmethod
    def _clamp_waiting(cls, v):
        return max(0, int(v))

    @property
    def is_stopped(self) -> bool:
        return not self.moved or self.speed <= 0.0

    @property
    def effective_speed(self) -> float:
        return 0.0 if self.is_stopped else self.speed

class TrafficLight(BaseModel):
    direction: Direction
    state: SignalState
    timer: int # ticks in current state
    max_timer: int # tick budget for current state
    remaining_time: int = 0 # seconds, rounded up

class Position(BaseModel):
    x: float
    y: float

class IntersectionNode(BaseModel):
    id: str
    name: str
    position: Position
    current_phase: Axis = Axis.NORTH_SOUTH
    phase_timer: float = 0.0 # seconds
    phase_duration: float = 30.0
    offset: float = 0.0
    vehicle_count: int = 0
    congestion_level: float = 0.0
    connected_intersections: List[str] = []
    signal_state: Dict[Direction, SignalState] = {}
    average_wait_time: float = 0.0
    throughput: float = 0.0

    @field_validator("congestion_level", mode="before")
    @classmethod
    def _clamp_congestion(cls, v):
        return min(100.0, max(0.0, float(v)))

    @field_validator("vehicle_count", mode="before")
    @classmethod
    def _clamp_count(cls, v):
        return max(0, int(v))

    @field_validator("phase_timer", mode="before")
    @classmethod
    def _clamp_timer(cls, v):
        return max(0.0, float(v))

class TrafficWave(BaseModel):
    source_intersection: str
    target_intersection: str
    vehicle_count: int
    estimated_arrival_time: float # simulation seconds
    speed: float

class CoordinationStrategy(BaseModel):
    type: CoordinationStrategyType
    description: str = ""
    efficiency: float = 0.0

class NetworkMetrics(BaseModel):
    total_vehicles: int = 0
    average_wait_time: float = 0.0
    network_throughput: float = 0.0
    congestion_hotspots: List[str] = []
    coordination_efficiency: float = 0.0
    co2_reduction: float = 0.0

# Flow Analysis

class FlowSample(BaseModel):
    timestamp: float # simulation seconds
    vehicle_count: float
    average_speed: float
    congestion_level: float
    flow_rate: float # vehicles per minute
    density: float # vehicles per km
    throughput: float # vehicles per hour

class IntersectionMetrics(BaseModel):
    id: str
    total_vehicles: int
    average_wait_time: float
    queue_length: int
    green_time_utilization: float
    efficiency: float
    throughput: float

class FlowPattern(BaseModel):
    time_of_day: str
    average_flow: float
    peak_hours: List[str]
    congestion_points: List[str]
    optimal_timings: Dict[str, int]

# Incidents

class IncidentType(str, Enum):
    ACCIDENT = "accident"
    BREAKDOWN = "breakdown"
    CONGESTION = "congestion"
    EMERGENCY_VEHICLE = "emergency_vehicle"
    PEDESTRIAN = "pedestrian"
    HAZARD = "hazard"

class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class IncidentStatus(str, Enum):
    DETECTED = "detected"
    RESPONDING = "responding"
    RESOLVED = "resolved"
    FALSE_ALARM = "false_alarm"

class ResponseActionType(str, Enum):
    SIGNAL_OVERRIDE = "signal_override"
    LANE_CLOSURE = "lane_closure"
    EMERGENCY_CLEARANCE = "emergency_clearance"
    TRAFFIC_REROUTE = "traffic_reroute"
    ALERT_DISPATCH = "alert_dispatch"

class IncidentLocation(BaseModel):
    x: float
    y: float
    lane: Direction

class ResponseAction(BaseModel):
    id: str
    type: ResponseActionType
    priority: int # 1-10
    description: str
    executed: bool = False
    timestamp: float
    estimated_completion: float # seconds after timestamp

class Incident(BaseModel):
    id: str
    type: IncidentType
    severity: Severity
    location: IncidentLocation
    timestamp: float
    description: str
    status: IncidentStatus = IncidentStatus.DETECTED
    affected_vehicles: List[str] = []
    estimated_duration: float # minutes
    response_actions: List[ResponseAction] = []
    detected_at: float = 0.0 # first detection, simulation seconds
    detection_passes: int = 0
    confirmations: int = 0
    confidence: float = 1.0 # share of detection passes that re-confirmed the incident

    @property
    def is_open(self) -> bool:
        return self.status in (IncidentStatus.DETECTED, IncidentStatus.RESPONDING)

class VehicleObservation(BaseModel):
    """Read-only view of a vehicle as seen by the incident detector."""
    id: str
    x: float
    y: float
    speed: float
    direction: Direction
    waiting_time: int = 0
    is_stopped: bool = False

class IncidentStats(BaseModel):
    total: int
    active: int
    resolved: int
    by_type: Dict[str, int]
    by_severity: Dict[str, int]

# Performance Metrics

class MetricCategory(str, Enum):
    EFFICIENCY = "efficiency"
    SAFETY = "safety"
    ENVIRONMENTAL = "environmental"
    USER_EXPERIENCE = "user_experience"

class Trend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"

class MetricStatus(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"

class ReportPeriod(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

class PerformanceMetric(BaseModel):
    id: str
    name: str
    value: float
    unit: str
    category: MetricCategory
    timestamp: float
    trend: Trend = Trend.STABLE
    target: float
    status: MetricStatus

class Alert(BaseModel):
    id: str
    type: str
    message: str
    severity: Severity
    timestamp: float
    resolved: bool = False

class EfficiencyAnalytics(BaseModel):
    average_wait_time: float = 0.0
    throughput: float = 0.0
    flow_rate: float = 0.0
    signal_efficiency: float = 0.0
    queue_length: float = 0.0

class SafetyAnalytics(BaseModel):
    incident_count: float = 0.0
    speed_violations: float = 0.0
    near_misses: float = 0.0
    emergency_response_time: float = 0.0
    safety_score: float = 100.0

class EnvironmentalAnalytics(BaseModel):
    emissions_reduction: float = 0.0
    fuel_efficiency: float = 0.0
    noise_reduction: float = 0.0
    air_quality: float = 0.0

class UserExperienceAnalytics(BaseModel):
    satisfaction_score: float = 0.0
    complaint_count: float = 0.0
    accessibility_score: float = 0.0
    reliability_score: float = 0.0

class TrafficAnalytics(BaseModel):
    efficiency: EfficiencyAnalytics
    safety: SafetyAnalytics
    environmental: EnvironmentalAnalytics
    user_experience: UserExperienceAnalytics

class ReportSummary(BaseModel):
    overall_score: float
    key_achievements: List[str]
    areas_for_improvement: List[str]
    recommendations: List[str]

class ReportComparisons(BaseModel):
    previous_period: float
    target: float
    industry_average: float

class PerformanceReport(BaseModel):
    period: ReportPeriod
    start_time: float
    end_time: float
    summary: ReportSummary
    metrics: List[PerformanceMetric]
    analytics: TrafficAnalytics
    comparisons: ReportComparisons

# API/Response Models

class VehicleView(BaseModel):
    id: str
    x: float
    y: float
    direction: Direction
    type: VehicleType
    waiting_time: int

class RLStats(BaseModel):
    episode: int = 0
    epsilon: float = 0.0
    q_table_size: int = 0
    total_q_values: int = 0
    training_complete: bool = False

class TimingAdjustment(BaseModel):
    phase: Axis
    adjustment: float # percent change of the axis green
    reason: str
    confidence: float
    duration: float # minutes the adjustment is expected to hold

class AdaptiveStats(BaseModel):
    average_performance: float = 0.0
    total_samples: int = 0
    recent_trend: Trend = Trend.STABLE
    best_timing: Dict[Axis, float] = {}
    current_timings: Dict[Axis, float] = {}
    last_adjustments: List[TimingAdjustment] = []

class SignalTiming(BaseModel):
    phase: Axis
    duration: float # seconds
    priority: float
    reason: str

class SimulationSnapshot(BaseModel):
    tick: int
    time: float
    strategy: ControlStrategy
    coordination_strategy: Optional[CoordinationStrategyType] = None
    active_axis: Axis
    vehicles: List[VehicleView]
    lights: List[TrafficLight]
    incidents: List[Incident]
    flow: Optional[FlowSample] = None
    alerts: List[Alert]
    network: Optional[NetworkMetrics] = None
    last_timing: Optional[SignalTiming] = None
    rl_stats: Optional[RLStats] = None
    adaptive_stats: Optional[AdaptiveStats] = None

class DetectionInput(BaseModel):
    """Externally supplied vehicle detection (e.g. from a vision pipeline)."""
    model_config = ConfigDict(extra="ignore")

    id: str
    x: float
    y: float
    direction: Direction
    target_direction: Optional[Direction] = None
    speed: float = 1.0
    waiting_time: int = 0
    type: VehicleType = VehicleType.CAR

class StrategyUpdate(BaseModel):
    strategy: ControlStrategy

class CoordinationUpdate(BaseModel):
    strategy: Optional[CoordinationStrategyType] = None

class SpeedUpdate(BaseModel):
    speed: float = Field(1.0)
