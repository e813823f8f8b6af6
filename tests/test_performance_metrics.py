import unittest

from smartflow.analytics.performance_metrics import PerformanceMetricsService
from smartflow.domain.config import PerformanceConfig
from smartflow.domain.models import MetricCategory, MetricStatus, ReportPeriod, Severity, Trend

EFF = MetricCategory.EFFICIENCY

class TestMetricsRecording(unittest.TestCase):
    def setUp(self):
        self.service = PerformanceMetricsService(clock=lambda: 0.0)

    def test_wait_time_alert(self):
        self.service.record("waitTime", 45, "seconds", EFF)
        alerts = self.service.active_alerts()
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].type, "wait_time")
        self.assertEqual(alerts[0].severity, Severity.HIGH)
        self.assertFalse(alerts[0].resolved)

    def test_alert_severity_escalates(self):
        self.service.record("waitTime", 50, "seconds", EFF)
        self.assertEqual(self.service.active_alerts()[0].severity, Severity.CRITICAL)

    def test_no_alert_below_threshold(self):
        self.service.record("waitTime", 25, "seconds", EFF)
        self.service.record("signalEfficiency", 90, "%", EFF)
        self.assertEqual(self.service.active_alerts(), [])

    def test_efficiency_and_incident_alerts(self):
        self.service.record("signalEfficiency", 40, "%", EFF)
        self.service.record("incidentCount", 6, "incidents", MetricCategory.SAFETY)
        types = sorted(a.type for a in self.service.active_alerts())
        self.assertEqual(types, ["efficiency", "incident_rate"])

    def test_resolve_alert(self):
        self.service.record("waitTime", 45, "seconds", EFF)
        alert = self.service.active_alerts()[0]
        self.assertTrue(self.service.resolve_alert(alert.id))
        self.assertEqual(self.service.active_alerts(), [])
        self.assertFalse(self.service.resolve_alert("missing"))

    def test_status(self):
        status = self.service.calculate_status
        self.assertEqual(status("waitTime", 45, 30), MetricStatus.POOR)
        self.assertEqual(status("waitTime", 10, 30), MetricStatus.EXCELLENT)
        self.assertEqual(status("waitTime", 60, 30), MetricStatus.CRITICAL)
        self.assertEqual(status("throughput", 150, 100), MetricStatus.EXCELLENT)
        self.assertEqual(status("throughput", 100, 100), MetricStatus.FAIR)
        self.assertEqual(status("throughput", 50, 100), MetricStatus.CRITICAL)
        self.assertEqual(status("incidentCount", 0, 0), MetricStatus.EXCELLENT)
        self.assertEqual(status("incidentCount", 1, 0), MetricStatus.CRITICAL)

    def test_default_target(self):
        metric = self.service.record("throughput", 120, "vehicles/hour", EFF)
        self.assertEqual(metric.target, 100)
        self.assertEqual(self.service.record("custom", 1, "", EFF).target, 100)

    def test_trend_from_prior_samples(self):
        for _ in range(5):
            self.service.record("flowRate", 10, "vehicles/min", EFF)
        for _ in range(5):
            self.service.record("flowRate", 20, "vehicles/min", EFF)

        metric = self.service.record("flowRate", 20, "vehicles/min", EFF)
        self.assertEqual(metric.trend, Trend.IMPROVING)

    def test_trend_declining(self):
        for value in [20] * 5 + [10] * 5:
            self.service.record("flowRate", value, "vehicles/min", EFF)
        self.assertEqual(self.service.calculate_trend("flowRate"), Trend.DECLINING)

    def test_retention(self):
        service = PerformanceMetricsService(PerformanceConfig(data_retention_days=1))
        service.record("flowRate", 10, "vehicles/min", EFF, timestamp=0)
        service.record("flowRate", 12, "vehicles/min", EFF, timestamp=2 * 86400)
        self.assertEqual([m.value for m in service.history("flowRate")], [12])

    def test_safety_score(self):
        self.service.record("incidentCount", 2, "incidents", MetricCategory.SAFETY)
        self.assertEqual(self.service.safety_score(), 80)
        self.assertEqual(self.service.current_analytics().safety.incident_count, 2)

class TestReports(unittest.TestCase):
    def setUp(self):
        self.service = PerformanceMetricsService(clock=lambda: 3600.0)

    def test_hourly_report(self):
        self.service.record("waitTime", 45, "seconds", EFF, target=30, timestamp=100)
        self.service.record("throughput", 150, "vehicles/hour", EFF, target=100, timestamp=200)

        report = self.service.generate_report(ReportPeriod.HOURLY)

        self.assertEqual(report.period, ReportPeriod.HOURLY)
        self.assertEqual(report.start_time, 0)
        self.assertEqual(report.end_time, 3600)
        self.assertEqual(len(report.metrics), 2)
        # poor (40) and excellent (100) in one category
        self.assertEqual(report.summary.overall_score, 70)
        self.assertIn("Consider adjusting signal timing to reduce wait times", report.summary.recommendations)
        self.assertIn("1 metrics performing excellently", report.summary.key_achievements)
        self.assertIn("1 metrics performing poorly", report.summary.areas_for_improvement)
        self.assertEqual(report.comparisons.industry_average, 75)
        self.assertEqual(report.comparisons.target, 150)

    def test_report_excludes_old_metrics(self):
        self.service.record("waitTime", 10, "seconds", EFF, timestamp=-10)
        report = self.service.generate_report(ReportPeriod.HOURLY, now=3600)
        self.assertEqual(report.metrics, [])
        self.assertEqual(report.summary.overall_score, 0)

    def test_overall_score_averages_categories(self):
        self.service.record("throughput", 150, "vehicles/hour", EFF, target=100, timestamp=10)
        self.service.record("flowRate", 40, "vehicles/min", EFF, target=50, timestamp=20)
        self.service.record("incidentCount", 1, "incidents", MetricCategory.SAFETY, target=0, timestamp=30)
        # efficiency (100 + 40) / 2 = 70, safety 20
        self.assertEqual(self.service.generate_report().summary.overall_score, 45)

    def test_previous_period_change(self):
        self.service.record("throughput", 50, "vehicles/hour", EFF, target=100, timestamp=-1800)
        self.service.record("throughput", 150, "vehicles/hour", EFF, target=100, timestamp=1800)
        report = self.service.generate_report(ReportPeriod.HOURLY)
        # critical (20) -> excellent (100)
        self.assertEqual(report.comparisons.previous_period, 400)

if __name__ == '__main__':
    unittest.main()
