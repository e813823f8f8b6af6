import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from smartflow.domain.config import FlowConfig
from smartflow.domain.models import FlowSample, FlowPattern, IntersectionMetrics

logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60.0
SECONDS_PER_HOUR = 3600.0


class FlowAnalyzer:
    """Bounded flow history with derived metrics and a linear short-range forecast."""

    def __init__(self, config: Optional[FlowConfig] = None):
        self.config = config or FlowConfig()
        self.flow_history: Deque[FlowSample] = deque(maxlen=self.config.max_history)

    def add_sample(self, sample: FlowSample):
        self.flow_history.append(sample)

    def compute_metrics(self, vehicle_count: float, average_speed: float,
                        road_length: Optional[float] = None, timestamp: float = 0.0) -> FlowSample:
        if road_length is None or road_length <= 0:
            road_length = self.config.road_length
        vehicle_count = max(0.0, vehicle_count)
        average_speed = max(0.0, average_speed)

        flow_rate = self._flow_rate(vehicle_count)
        return FlowSample(
            timestamp=timestamp,
            vehicle_count=vehicle_count,
            average_speed=average_speed,
            congestion_level=self.congestion_level(vehicle_count, average_speed),
            flow_rate=flow_rate,
            density=vehicle_count / road_length,
            throughput=flow_rate * 60,
        )

    def congestion_level(self, vehicle_count: float, average_speed: float) -> float:
        cfg = self.config
        density_factor = min(vehicle_count / cfg.vehicle_capacity, 1.0)
        speed_factor = max(0.0, (cfg.free_flow_speed - average_speed) / cfg.free_flow_speed)
        return min((density_factor + speed_factor) * 50, 100.0)

    def _flow_rate(self, vehicle_count: float) -> float:
        if len(self.flow_history) < 2:
            return vehicle_count

        recent = list(self.flow_history)[-self.config.flow_window:]
        span = (recent[-1].timestamp - recent[0].timestamp) / SECONDS_PER_MINUTE
        if span <= 0:
            return vehicle_count

        change = recent[-1].vehicle_count - recent[0].vehicle_count
        return max(0.0, change / span)

    # Prediction

    def predict(self, hours_ahead: int = 1) -> List[FlowSample]:
        recent = list(self.flow_history)[-self.config.trend_window:]
        if len(recent) < 2:
            return []

        count_trend, speed_trend = self._trend(recent)
        base = recent[-1]
        predictions = []
        for hour in range(1, max(0, hours_ahead) + 1):
            minutes = hour * 60
            count = max(0.0, base.vehicle_count + count_trend * minutes)
            speed = max(0.0, base.average_speed + speed_trend * minutes)
            predictions.append(self.compute_metrics(
                count, speed, timestamp=base.timestamp + hour * SECONDS_PER_HOUR
            ))
        return predictions

    @staticmethod
    def _trend(samples: List[FlowSample]) -> Tuple[float, float]:
        first, last = samples[0], samples[-1]
        span = (last.timestamp - first.timestamp) / SECONDS_PER_MINUTE
        if span <= 0:
            return 0.0, 0.0
        return (
            (last.vehicle_count - first.vehicle_count) / span,
            (last.average_speed - first.average_speed) / span,
        )

    # Patterns

    def analyze_patterns(self) -> List[FlowPattern]:
        if self.flow_history:
            now = self.flow_history[-1].timestamp
        else:
            now = 0.0
        time_of_day = self._hour_label(now)

        pattern = FlowPattern(
            time_of_day=time_of_day,
            average_flow=self.average_flow(),
            peak_hours=self._peak_hours(),
            congestion_points=self._congestion_points(),
            optimal_timings=self._optimal_timings(),
        )
        logger.debug("Flow pattern %s: average %.1f vehicles/min", time_of_day, pattern.average_flow)
        return [pattern]

    @staticmethod
    def _hour_label(timestamp: float) -> str:
        hour = int(timestamp // SECONDS_PER_HOUR) % 24
        return f"{hour:02d}:00"

    def _peak_hours(self) -> List[str]:
        by_hour: Dict[str, List[float]] = {}
        for sample in self.flow_history:
            by_hour.setdefault(self._hour_label(sample.timestamp), []).append(sample.flow_rate)

        averages = [(label, sum(rates) / len(rates)) for label, rates in by_hour.items()]
        averages.sort(key=lambda item: item[1], reverse=True)
        return [label for label, _ in averages[:3]]

    def _congestion_points(self) -> List[str]:
        recent = list(self.flow_history)[-20:]
        congested = [s for s in recent if s.congestion_level > self.config.high_congestion]

        points = []
        if len(congested) > 5:
            points.append("Main Intersection")
        if any(s.average_speed < 20 for s in congested):
            points.append("Approach Lanes")
        return points

    def _optimal_timings(self) -> Dict[str, int]:
        recent = list(self.flow_history)[-50:]
        if not recent:
            return {"north-south": 20, "east-west": 20}

        avg_congestion = sum(s.congestion_level for s in recent) / len(recent)
        multiplier = max(0.5, min(2.0, avg_congestion / 50))
        green = int(round(20 * multiplier))
        return {"north-south": green, "east-west": green}

    def average_flow(self) -> float:
        if not self.flow_history:
            return 0.0
        return sum(s.flow_rate for s in self.flow_history) / len(self.flow_history)

    # Intersection

    def intersection_metrics(self, intersection_id: str, total_vehicles: int, average_wait_time: float,
                             queue_length: int, green_time_utilization: float) -> IntersectionMetrics:
        wait_score = max(0.0, 100 - average_wait_time * 2)
        efficiency = (wait_score + green_time_utilization * 100) / 2

        if average_wait_time <= 0:
            throughput = total_vehicles * 60.0
        else:
            throughput = total_vehicles / (average_wait_time * 2) * SECONDS_PER_HOUR

        return IntersectionMetrics(
            id=intersection_id,
            total_vehicles=total_vehicles,
            average_wait_time=average_wait_time,
            queue_length=queue_length,
            green_time_utilization=green_time_utilization,
            efficiency=efficiency,
            throughput=throughput,
        )

    def history(self) -> List[FlowSample]:
        return list(self.flow_history)

    def clear(self):
        self.flow_history.clear()
