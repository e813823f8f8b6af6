import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from smartflow.domain.config import PerformanceConfig
from smartflow.domain.models import (
    PerformanceMetric, MetricCategory, MetricStatus, Trend, Alert, Severity,
    ReportPeriod, PerformanceReport, ReportSummary, ReportComparisons, TrafficAnalytics,
    EfficiencyAnalytics, SafetyAnalytics, EnvironmentalAnalytics, UserExperienceAnalytics
)

logger = logging.getLogger(__name__)

DEFAULT_TARGETS = {
    "waitTime": 30.0, # seconds
    "throughput": 100.0, # vehicles per hour
    "flowRate": 50.0, # vehicles per minute
    "signalEfficiency": 80.0, # percent
    "incidentCount": 0.0,
    "speedViolations": 5.0,
    "emissionsReduction": 20.0, # percent
    "satisfactionScore": 4.0, # out of 5
}
FALLBACK_TARGET = 100.0

PERIOD_SECONDS = {
    ReportPeriod.HOURLY: 60 * 60,
    ReportPeriod.DAILY: 24 * 60 * 60,
    ReportPeriod.WEEKLY: 7 * 24 * 60 * 60,
    ReportPeriod.MONTHLY: 30 * 24 * 60 * 60,
}

STATUS_SCORES = {
    MetricStatus.EXCELLENT: 100,
    MetricStatus.GOOD: 80,
    MetricStatus.FAIR: 60,
    MetricStatus.POOR: 40,
    MetricStatus.CRITICAL: 20,
}


class PerformanceMetricsService:
    def __init__(self, config: Optional[PerformanceConfig] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.config = config or PerformanceConfig()
        self.clock = clock or time.time
        self.metrics: Dict[str, Deque[PerformanceMetric]] = {}
        self.alerts: List[Alert] = []
        self._sequence = 0

    def reset(self):
        self.metrics = {}
        self.alerts = []
        self._sequence = 0

    def _next_id(self, prefix: str) -> str:
        self._sequence += 1
        return f"{prefix}-{self._sequence}"

    # Recording

    def record(self, name: str, value: float, unit: str, category: MetricCategory,
               target: Optional[float] = None, timestamp: Optional[float] = None) -> PerformanceMetric:
        now = self.clock() if timestamp is None else timestamp
        target_value = target if target is not None else self.default_target(name)

        metric = PerformanceMetric(
            id=self._next_id(name),
            name=name,
            value=value,
            unit=unit,
            category=category,
            timestamp=now,
            trend=self.calculate_trend(name),
            target=target_value,
            status=self.calculate_status(name, value, target_value),
        )

        history = self.metrics.get(name)
        if history is None:
            history = deque(maxlen=self.config.max_samples_per_metric)
            self.metrics[name] = history
        history.append(metric)

        cutoff = now - self.config.retention_seconds
        while history and history[0].timestamp <= cutoff:
            history.popleft()

        self._check_alerts(metric)
        return metric

    @staticmethod
    def default_target(name: str) -> float:
        return DEFAULT_TARGETS.get(name, FALLBACK_TARGET)

    def calculate_trend(self, name: str) -> Trend:
        """Compares the last 5 recorded values against the 5 before them."""
        history = list(self.metrics.get(name, ()))
        recent = history[-5:]
        older = history[-10:-5]
        if len(recent) < 2 or len(older) < 2:
            return Trend.STABLE

        recent_avg = sum(m.value for m in recent) / len(recent)
        older_avg = sum(m.value for m in older) / len(older)
        if older_avg == 0:
            return Trend.STABLE

        change = (recent_avg - older_avg) / older_avg
        if change > 0.05:
            return Trend.IMPROVING
        if change < -0.05:
            return Trend.DECLINING
        return Trend.STABLE

    def calculate_status(self, name: str, value: float, target: float) -> MetricStatus:
        lower_is_better = name in self.config.lower_is_better

        if target == 0:
            if lower_is_better and value > 0:
                return MetricStatus.CRITICAL
            return MetricStatus.EXCELLENT

        ratio = value / target
        if lower_is_better:
            if ratio <= 0.5:
                return MetricStatus.EXCELLENT
            if ratio <= 0.8:
                return MetricStatus.GOOD
            if ratio <= 1.0:
                return MetricStatus.FAIR
            if ratio <= 1.5:
                return MetricStatus.POOR
            return MetricStatus.CRITICAL

        if ratio >= 1.5:
            return MetricStatus.EXCELLENT
        if ratio >= 1.2:
            return MetricStatus.GOOD
        if ratio >= 1.0:
            return MetricStatus.FAIR
        if ratio >= 0.8:
            return MetricStatus.POOR
        return MetricStatus.CRITICAL

    # Alerts

    def _check_alerts(self, metric: PerformanceMetric):
        thresholds = self.config.alert_thresholds
        alert = None

        if metric.name == "waitTime" and metric.value > thresholds.wait_time:
            alert = Alert(
                id=self._next_id("wait-time"),
                type="wait_time",
                message=f"Average wait time is {metric.value:.1f}s, exceeding threshold of {thresholds.wait_time:g}s",
                severity=Severity.CRITICAL if metric.value > thresholds.wait_time * 1.5 else Severity.HIGH,
                timestamp=metric.timestamp,
            )
        elif metric.name == "incidentCount" and metric.value > thresholds.incident_rate:
            alert = Alert(
                id=self._next_id("incident-rate"),
                type="incident_rate",
                message=f"Incident count is {metric.value:g}, exceeding threshold of {thresholds.incident_rate:g}",
                severity=Severity.CRITICAL if metric.value > thresholds.incident_rate * 2 else Severity.HIGH,
                timestamp=metric.timestamp,
            )
        elif metric.name == "signalEfficiency" and metric.value < thresholds.efficiency:
            alert = Alert(
                id=self._next_id("efficiency"),
                type="efficiency",
                message=f"Signal efficiency is {metric.value:.1f}%, below threshold of {thresholds.efficiency:g}%",
                severity=Severity.CRITICAL if metric.value < thresholds.efficiency * 0.7 else Severity.MEDIUM,
                timestamp=metric.timestamp,
            )

        if alert is not None:
            self.alerts.append(alert)
            logger.warning("Performance alert: %s", alert.message)

    def active_alerts(self) -> List[Alert]:
        return [a for a in self.alerts if not a.resolved]

    def resolve_alert(self, alert_id: str) -> bool:
        for alert in self.alerts:
            if alert.id == alert_id:
                alert.resolved = True
                return True
        return False

    # Analytics

    def latest(self, name: str) -> Optional[PerformanceMetric]:
        history = self.metrics.get(name)
        return history[-1] if history else None

    def _latest_value(self, name: str) -> float:
        metric = self.latest(name)
        return metric.value if metric is not None else 0.0

    def history(self, name: str) -> List[PerformanceMetric]:
        return list(self.metrics.get(name, ()))

    def safety_score(self) -> float:
        score = 100.0
        score -= self._latest_value("incidentCount") * 10
        score -= self._latest_value("speedViolations") * 2
        score -= self._latest_value("nearMisses") * 5
        return max(0.0, min(100.0, score))

    def current_analytics(self) -> TrafficAnalytics:
        v = self._latest_value
        return TrafficAnalytics(
            efficiency=EfficiencyAnalytics(
                average_wait_time=v("waitTime"),
                throughput=v("throughput"),
                flow_rate=v("flowRate"),
                signal_efficiency=v("signalEfficiency"),
                queue_length=v("queueLength"),
            ),
            safety=SafetyAnalytics(
                incident_count=v("incidentCount"),
                speed_violations=v("speedViolations"),
                near_misses=v("nearMisses"),
                emergency_response_time=v("emergencyResponseTime"),
                safety_score=self.safety_score(),
            ),
            environmental=EnvironmentalAnalytics(
                emissions_reduction=v("emissionsReduction"),
                fuel_efficiency=v("fuelEfficiency"),
                noise_reduction=v("noiseReduction"),
                air_quality=v("airQuality"),
            ),
            user_experience=UserExperienceAnalytics(
                satisfaction_score=v("satisfactionScore"),
                complaint_count=v("complaintCount"),
                accessibility_score=v("accessibilityScore"),
                reliability_score=v("reliabilityScore"),
            ),
        )

    # Reports

    def metrics_in_period(self, start: float, end: float) -> List[PerformanceMetric]:
        selected = [
            m for history in self.metrics.values() for m in history
            if start <= m.timestamp <= end
        ]
        selected.sort(key=lambda m: m.timestamp)
        return selected

    def generate_report(self, period: ReportPeriod = ReportPeriod.HOURLY,
                        now: Optional[float] = None) -> PerformanceReport:
        period = ReportPeriod(period)
        end = self.clock() if now is None else now
        start = end - PERIOD_SECONDS[period]
        metrics = self.metrics_in_period(start, end)

        report = PerformanceReport(
            period=period,
            start_time=start,
            end_time=end,
            summary=ReportSummary(
                overall_score=self.overall_score(metrics),
                key_achievements=self._achievements(metrics),
                areas_for_improvement=self._improvement_areas(metrics),
                recommendations=self._recommendations(metrics),
            ),
            metrics=metrics,
            analytics=self.current_analytics(),
            comparisons=ReportComparisons(
                previous_period=self._previous_period_change(period, start, end),
                target=self._target_comparison(metrics),
                industry_average=self.config.industry_average,
            ),
        )
        logger.info("Generated %s report: score %.1f over %d metrics",
                    period.value, report.summary.overall_score, len(metrics))
        return report

    @staticmethod
    def overall_score(metrics: List[PerformanceMetric]) -> float:
        """Average over categories of each category's average status score."""
        if not metrics:
            return 0.0
        totals: Dict[MetricCategory, List[int]] = {}
        for m in metrics:
            totals.setdefault(m.category, []).append(STATUS_SCORES[m.status])
        return sum(sum(s) / len(s) for s in totals.values()) / len(totals)

    @staticmethod
    def _last_named(metrics: List[PerformanceMetric], name: str) -> Optional[PerformanceMetric]:
        for m in reversed(metrics):
            if m.name == name:
                return m
        return None

    def _achievements(self, metrics: List[PerformanceMetric]) -> List[str]:
        achievements = []
        excellent = sum(1 for m in metrics if m.status == MetricStatus.EXCELLENT)
        if excellent:
            achievements.append(f"{excellent} metrics performing excellently")
        improving = sum(1 for m in metrics if m.trend == Trend.IMPROVING)
        if improving:
            achievements.append(f"{improving} metrics showing improvement")

        wait = self._last_named(metrics, "waitTime")
        if wait is not None and wait.value < 20:
            achievements.append("Average wait time below 20 seconds")
        efficiency = self._last_named(metrics, "signalEfficiency")
        if efficiency is not None and efficiency.value > 85:
            achievements.append("Signal efficiency above 85%")
        return achievements

    @staticmethod
    def _improvement_areas(metrics: List[PerformanceMetric]) -> List[str]:
        areas = []
        critical = sum(1 for m in metrics if m.status == MetricStatus.CRITICAL)
        if critical:
            areas.append(f"{critical} metrics need immediate attention")
        declining = sum(1 for m in metrics if m.trend == Trend.DECLINING)
        if declining:
            areas.append(f"{declining} metrics showing decline")
        poor = sum(1 for m in metrics if m.status == MetricStatus.POOR)
        if poor:
            areas.append(f"{poor} metrics performing poorly")
        return areas

    def _recommendations(self, metrics: List[PerformanceMetric]) -> List[str]:
        checks = [
            ("waitTime", lambda v: v > 30, "Consider adjusting signal timing to reduce wait times"),
            ("incidentCount", lambda v: v > 5, "Implement additional safety measures to reduce incidents"),
            ("signalEfficiency", lambda v: v < 70, "Optimize signal coordination to improve efficiency"),
            ("speedViolations", lambda v: v > 10, "Increase speed monitoring and enforcement"),
        ]
        recommendations = []
        for name, breached, text in checks:
            metric = self._last_named(metrics, name)
            if metric is not None and breached(metric.value):
                recommendations.append(text)
        return recommendations

    def _previous_period_change(self, period: ReportPeriod, start: float, end: float) -> float:
        previous_start = start - PERIOD_SECONDS[period]
        current = self.overall_score(self.metrics_in_period(start, end))
        previous = self.overall_score(self.metrics_in_period(previous_start, start))
        if previous <= 0:
            return 0.0
        return (current - previous) / previous * 100

    @staticmethod
    def _target_comparison(metrics: List[PerformanceMetric]) -> float:
        achieved = [m.value / m.target * 100 for m in metrics if m.target > 0]
        if not achieved:
            return 0.0
        return sum(achieved) / len(achieved)
