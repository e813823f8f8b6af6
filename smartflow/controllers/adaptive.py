import logging
from collections import deque
from typing import Deque, Dict, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel, Field

from smartflow.domain.config import AdaptiveTimingConfig
from smartflow.domain.models import AdaptiveStats, Axis, Direction, TimingAdjustment, Trend

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR
WEEKEND = (0, 6)
MORNING_RUSH = range(7, 10)
EVENING_RUSH = range(17, 20)

Timings = Dict[Axis, float]
PatternKey = Tuple[Optional[int], int] # (weekend day or None, hour)


class TrafficPattern(BaseModel):
    time_of_day: int # 0-23
    day_of_week: int # 0-6, 0 = Sunday
    average_flow: float # vehicles per minute
    peak_flow: float
    congestion_level: float # 0-100
    optimal_timings: Timings
    confidence: float # 0-1


class AdaptiveConditions(BaseModel):
    time_of_day: int = 0
    day_of_week: int = 1
    flow_rate: float = 0.0 # vehicles per minute
    congestion_level: float = 0.0 # 0-100
    waiting_time: float = 0.0 # seconds
    vehicle_counts: Dict[Direction, int] = Field(default_factory=lambda: {d: 0 for d in Direction})


class PerformanceRecord(NamedTuple):
    timestamp: float
    timing: Timings
    performance: float
    flow: float
    congestion: float
    waiting_time: float


def pattern_key(day_of_week: int, hour: int) -> PatternKey:
    return (day_of_week if day_of_week in WEEKEND else None, hour)


def _both(seconds: float) -> Timings:
    return {Axis.NORTH_SOUTH: seconds, Axis.EAST_WEST: seconds}


class AdaptiveTimingSystem:
    """Time-of-day pattern timing with real-time corrections.

    Each calculation picks the stored pattern for the simulated hour and day,
    scales its per-axis greens by the observed flow and congestion, then
    applies a vehicle-distribution and waiting-time correction. Performance
    samples fed back through learn_from_performance() replace a pattern's
    timings with the best performing ones seen in that hour.
    """

    def __init__(self, config: Optional[AdaptiveTimingConfig] = None):
        self.config = config or AdaptiveTimingConfig()
        self.patterns: Dict[PatternKey, TrafficPattern] = {}
        self.current_timings: Timings = _both(self.config.default_green_time)
        self.performance_history: Deque[PerformanceRecord] = deque(maxlen=self.config.max_history)
        self.last_adjustments: List[TimingAdjustment] = []
        self.reset()

    def reset(self):
        self.patterns.clear()
        self.performance_history.clear()
        self.current_timings = _both(self.config.default_green_time)
        self.last_adjustments = []
        self._initialize_default_patterns()

    def _initialize_default_patterns(self):
        for hour in MORNING_RUSH:
            self.patterns[pattern_key(1, hour)] = TrafficPattern(
                time_of_day=hour, day_of_week=1, average_flow=17.5, peak_flow=30.0,
                congestion_level=75.0, optimal_timings=_both(30), confidence=0.8,
            )
        for hour in EVENING_RUSH:
            self.patterns[pattern_key(1, hour)] = TrafficPattern(
                time_of_day=hour, day_of_week=1, average_flow=21.5, peak_flow=37.5,
                congestion_level=82.5, optimal_timings=_both(35), confidence=0.9,
            )
        for hour in range(24):
            if hour < 7 or hour > 19:
                self.patterns[pattern_key(1, hour)] = TrafficPattern(
                    time_of_day=hour, day_of_week=1, average_flow=5.0, peak_flow=11.5,
                    congestion_level=20.0, optimal_timings=_both(15), confidence=0.6,
                )
        for day in WEEKEND:
            for hour in range(24):
                self.patterns[pattern_key(day, hour)] = TrafficPattern(
                    time_of_day=hour, day_of_week=day, average_flow=4.0, peak_flow=9.0,
                    congestion_level=12.5, optimal_timings=_both(12), confidence=0.5,
                )

    # Simulated clock

    def clock(self, sim_time: float) -> Tuple[int, int]:
        """(hour, day of week) for a simulation time in seconds."""
        elapsed = self.config.start_hour * SECONDS_PER_HOUR + max(0.0, sim_time)
        hour = int(elapsed // SECONDS_PER_HOUR) % 24
        day = (self.config.start_day + int(elapsed // SECONDS_PER_DAY)) % 7
        return hour, day

    # Timing

    def current_pattern(self, conditions: AdaptiveConditions) -> TrafficPattern:
        pattern = self.patterns.get(pattern_key(conditions.day_of_week, conditions.time_of_day))
        if pattern is not None:
            return pattern
        return TrafficPattern(
            time_of_day=conditions.time_of_day,
            day_of_week=conditions.day_of_week,
            average_flow=conditions.flow_rate,
            peak_flow=conditions.flow_rate * 1.5,
            congestion_level=conditions.congestion_level,
            optimal_timings=_both(self.config.default_green_time),
            confidence=0.3,
        )

    def calculate_optimal_timing(self, conditions: AdaptiveConditions) -> List[TimingAdjustment]:
        """Recomputes both axis greens. Returns the adjustments above the adaptation threshold."""
        pattern = self.current_pattern(conditions)
        base = self._base_timing(pattern, conditions)
        corrections = self._real_time_corrections(conditions)
        final = {axis: self._clamp(base[axis] * (1 + corrections[axis])) for axis in Axis}

        adjustments = []
        for axis in Axis:
            previous = self.current_timings[axis]
            if abs(final[axis] - previous) > self.config.adaptation_threshold:
                adjustments.append(TimingAdjustment(
                    phase=axis,
                    adjustment=(final[axis] - previous) / previous * 100,
                    reason=self._reason(axis, conditions),
                    confidence=pattern.confidence,
                    duration=self._adjustment_duration(conditions),
                ))

        self.current_timings = final
        self.last_adjustments = adjustments
        for a in adjustments:
            logger.debug("Adaptive %s green %+.0f%%: %s", a.phase.value, a.adjustment, a.reason)
        return adjustments

    def _clamp(self, seconds: float) -> float:
        return max(self.config.min_green_time, min(seconds, self.config.max_green_time))

    def _base_timing(self, pattern: TrafficPattern, conditions: AdaptiveConditions) -> Timings:
        factor = 1.0
        if pattern.average_flow > 0:
            ratio = conditions.flow_rate / pattern.average_flow
            if ratio > 1.2:
                factor *= 1.2
            elif ratio < 0.8:
                factor *= 0.8

        if conditions.congestion_level > 70:
            factor *= 1.3
        elif conditions.congestion_level < 30:
            factor *= 0.9

        return {axis: self._clamp(pattern.optimal_timings[axis] * factor) for axis in Axis}

    def _real_time_corrections(self, conditions: AdaptiveConditions) -> Timings:
        corrections = _both(0.0)
        counts = conditions.vehicle_counts
        total = sum(counts.values())
        if total > 0:
            ns = sum(counts.get(d, 0) for d in Axis.NORTH_SOUTH.directions) / total
            ew = sum(counts.get(d, 0) for d in Axis.EAST_WEST.directions) / total
            if ns > 0.6:
                corrections = {Axis.NORTH_SOUTH: 0.2, Axis.EAST_WEST: -0.1}
            elif ew > 0.6:
                corrections = {Axis.NORTH_SOUTH: -0.1, Axis.EAST_WEST: 0.2}

        if conditions.waiting_time > 20:
            shift = 0.15
        elif conditions.waiting_time < 5:
            shift = -0.1
        else:
            shift = 0.0
        return {axis: value + shift for axis, value in corrections.items()}

    @staticmethod
    def _reason(axis: Axis, conditions: AdaptiveConditions) -> str:
        reasons = []
        if conditions.congestion_level > 70:
            reasons.append("high congestion")
        if conditions.waiting_time > 15:
            reasons.append("long waiting times")
        if conditions.flow_rate > 20:
            reasons.append("high traffic flow")
        if conditions.time_of_day in MORNING_RUSH:
            reasons.append("morning rush hour")
        elif conditions.time_of_day in EVENING_RUSH:
            reasons.append("evening rush hour")

        if reasons:
            return f"Adjusting {axis.value} timing due to {', '.join(reasons)}"
        return f"Optimizing {axis.value} timing for current conditions"

    @staticmethod
    def _adjustment_duration(conditions: AdaptiveConditions) -> float:
        rush = conditions.time_of_day in MORNING_RUSH or conditions.time_of_day in EVENING_RUSH
        duration = 10.0 if rush else 5.0
        if conditions.congestion_level > 70:
            duration += 5
        return duration

    # Learning

    def learn_from_performance(self, timing: Timings, performance: float,
                               conditions: AdaptiveConditions, now: float):
        self.performance_history.append(PerformanceRecord(
            timestamp=now,
            timing=dict(timing),
            performance=performance,
            flow=conditions.flow_rate,
            congestion=conditions.congestion_level,
            waiting_time=conditions.waiting_time,
        ))

        cutoff = now - self.config.pattern_memory_days * SECONDS_PER_DAY
        while self.performance_history and self.performance_history[0].timestamp < cutoff:
            self.performance_history.popleft()

        self._update_patterns()

    def _update_patterns(self):
        if len(self.performance_history) < self.config.min_learning_samples:
            return

        groups: Dict[PatternKey, List[PerformanceRecord]] = {}
        for record in self.performance_history:
            hour, day = self.clock(record.timestamp)
            groups.setdefault(pattern_key(day, hour), []).append(record)

        for key, records in groups.items():
            pattern = self.patterns.get(key)
            if pattern is None or len(records) < self.config.min_group_samples:
                continue
            average = sum(r.performance for r in records) / len(records)
            best = max(records, key=lambda r: r.performance)
            if average > 70 and best.performance > average + 10:
                pattern.optimal_timings = dict(best.timing)
                pattern.confidence = min(1.0, pattern.confidence + self.config.learning_rate)
                logger.info("Adaptive pattern %s updated (confidence %.2f)", key, pattern.confidence)

    def performance_stats(self) -> AdaptiveStats:
        history = list(self.performance_history)
        if not history:
            return AdaptiveStats(
                best_timing=_both(self.config.default_green_time),
                current_timings=dict(self.current_timings),
                last_adjustments=list(self.last_adjustments),
            )

        average = sum(r.performance for r in history) / len(history)
        recent = history[-10:]
        older = history[-20:-10]
        trend = Trend.STABLE
        if len(recent) >= 5 and len(older) >= 5:
            recent_avg = sum(r.performance for r in recent) / len(recent)
            older_avg = sum(r.performance for r in older) / len(older)
            if recent_avg > older_avg + 5:
                trend = Trend.IMPROVING
            elif recent_avg < older_avg - 5:
                trend = Trend.DECLINING

        best = max(history, key=lambda r: r.performance)
        return AdaptiveStats(
            average_performance=average,
            total_samples=len(history),
            recent_trend=trend,
            best_timing=dict(best.timing),
            current_timings=dict(self.current_timings),
            last_adjustments=list(self.last_adjustments),
        )
