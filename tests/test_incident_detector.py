from types import SimpleNamespace
import unittest

from smartflow.analytics.incident_detector import IncidentDetector
from smartflow.domain.config import IncidentConfig
from smartflow.domain.models import (
    Direction, IncidentStatus, IncidentType, ResponseActionType, Severity, VehicleObservation
)

def stopped(vid, x, y, waiting=40):
    return VehicleObservation(id=vid, x=x, y=y, speed=0.0, direction=Direction.NORTH,
                              waiting_time=waiting, is_stopped=True)

def moving(vid, x, y, speed):
    return VehicleObservation(id=vid, x=x, y=y, speed=speed, direction=Direction.NORTH)

CLUSTER = [stopped("a", 100, 100), stopped("b", 110, 105), stopped("c", 105, 115)]

class TestAccidentDetection(unittest.TestCase):
    def setUp(self):
        self.detector = IncidentDetector()

    def test_three_stopped_vehicles_make_one_medium_accident(self):
        active = self.detector.analyze(CLUSTER, now=0.0)
        self.assertEqual(len(active), 1)
        incident = active[0]
        self.assertEqual(incident.type, IncidentType.ACCIDENT)
        self.assertEqual(incident.severity, Severity.MEDIUM)
        self.assertEqual(sorted(incident.affected_vehicles), ["a", "b", "c"])
        self.assertEqual(incident.status, IncidentStatus.DETECTED)

    def test_short_wait_is_not_stopped(self):
        vehicles = [stopped("a", 100, 100, waiting=20), stopped("b", 110, 100, waiting=20)]
        self.assertEqual(self.detector.analyze(vehicles, now=0.0), [])

    def test_repeat_detection_merges(self):
        first = self.detector.analyze(CLUSTER, now=0.0)[0]
        active = self.detector.analyze(CLUSTER, now=1.0)
        self.assertEqual(len(active), 1)
        self.assertEqual(active[0].id, first.id)
        self.assertEqual(active[0].timestamp, 1.0)

    def test_distant_clusters_are_separate(self):
        far = [stopped("d", 600, 500), stopped("e", 610, 500)]
        active = self.detector.analyze(CLUSTER + far, now=0.0)
        self.assertEqual(len(active), 2)
        self.assertEqual(len({i.id for i in active}), 2)

    def test_single_link_chain(self):
        chain = [stopped(f"v{i}", 100 + i * 45, 100) for i in range(4)]
        active = self.detector.analyze(chain, now=0.0)
        self.assertEqual(len(active), 1)
        self.assertEqual(active[0].severity, Severity.HIGH)
        types = [a.type for a in active[0].response_actions]
        self.assertIn(ResponseActionType.LANE_CLOSURE, types)

    def test_cluster_components(self):
        groups = IncidentDetector.cluster(CLUSTER + [stopped("far", 500, 500)], 50)
        self.assertEqual(sorted(len(g) for g in groups), [1, 3])

    def test_response_actions_complete_over_time(self):
        incident = self.detector.analyze(CLUSTER, now=0.0)[0]
        actions = {a.type: a for a in incident.response_actions}
        self.assertEqual(actions[ResponseActionType.SIGNAL_OVERRIDE].priority, 8)
        self.assertEqual(actions[ResponseActionType.ALERT_DISPATCH].priority, 10)
        self.assertTrue(actions[ResponseActionType.ALERT_DISPATCH].id.startswith(incident.id))

        self.detector.advance(1.0)
        self.assertEqual(incident.status, IncidentStatus.DETECTED)

        self.detector.advance(2.0)
        self.assertTrue(actions[ResponseActionType.SIGNAL_OVERRIDE].executed)
        self.assertFalse(actions[ResponseActionType.ALERT_DISPATCH].executed)
        self.assertEqual(incident.status, IncidentStatus.RESPONDING)

        self.detector.advance(5.0)
        self.assertTrue(all(a.executed for a in incident.response_actions))

class TestCongestionAndAnomalies(unittest.TestCase):
    def test_slow_lane_is_congestion(self):
        detector = IncidentDetector()
        vehicles = [moving(f"v{i}", 100 + i * 100, 50, 5) for i in range(5)]
        active = detector.analyze(vehicles, now=0.0)
        self.assertEqual(len(active), 1)
        self.assertEqual(active[0].type, IncidentType.CONGESTION)
        self.assertEqual(active[0].severity, Severity.MEDIUM)
        self.assertEqual(active[0].location.lane, Direction.NORTH)

    def test_speed_anomaly(self):
        detector = IncidentDetector(IncidentConfig(congestion_threshold=50))
        vehicles = [moving(f"v{i}", i * 60, 100, 1.0) for i in range(9)]
        vehicles.append(moving("fast", 700, 500, 10.0))
        active = detector.analyze(vehicles, now=0.0)
        self.assertEqual(len(active), 1)
        self.assertEqual(active[0].type, IncidentType.HAZARD)
        self.assertEqual(active[0].affected_vehicles, ["fast"])

    def test_uniform_speeds_are_not_anomalous(self):
        detector = IncidentDetector(IncidentConfig(congestion_threshold=50))
        vehicles = [moving(f"v{i}", i * 60, 100, 3.0) for i in range(6)]
        self.assertEqual(detector.analyze(vehicles, now=0.0), [])

class TestIncidentStore(unittest.TestCase):
    def setUp(self):
        self.detector = IncidentDetector()
        self.incident = self.detector.analyze(CLUSTER, now=0.0)[0]

    def test_resolve(self):
        self.assertTrue(self.detector.resolve(self.incident.id))
        self.assertEqual(self.detector.active_incidents(), [])
        self.assertFalse(self.detector.resolve("missing"))

        stats = self.detector.stats()
        self.assertEqual(stats.total, 1)
        self.assertEqual(stats.active, 0)
        self.assertEqual(stats.resolved, 1)
        self.assertEqual(stats.by_type, {"accident": 1})

    def test_resolved_incident_not_merged(self):
        self.detector.resolve(self.incident.id)
        active = self.detector.analyze(CLUSTER, now=5.0)
        self.assertEqual(len(active), 1)
        self.assertNotEqual(active[0].id, self.incident.id)

    def test_false_alarm(self):
        self.assertTrue(self.detector.mark_false_alarm(self.incident.id))
        self.assertEqual(self.detector.get(self.incident.id).status, IncidentStatus.FALSE_ALARM)

    def test_queries(self):
        self.assertEqual(self.detector.by_type(IncidentType.ACCIDENT), [self.incident])
        self.assertEqual(self.detector.by_severity(Severity.MEDIUM), [self.incident])
        self.assertEqual(self.detector.by_severity(Severity.CRITICAL), [])

    def test_capacity_drops_closed_first(self):
        detector = IncidentDetector(IncidentConfig(max_incidents=2))
        first = detector.analyze([stopped("a", 10, 10), stopped("b", 20, 10)], now=0.0)[0]
        detector.resolve(first.id)
        detector.analyze([stopped("c", 300, 10), stopped("d", 310, 10)], now=1.0)
        detector.analyze([stopped("e", 600, 10), stopped("f", 610, 10)], now=2.0)
        self.assertEqual(len(detector.incidents), 2)
        self.assertIsNone(detector.get(first.id))

class TestConfidence(unittest.TestCase):
    def setUp(self):
        self.detector = IncidentDetector(IncidentConfig(response_time_limit=1))
        self.incident = self.detector.analyze(CLUSTER, now=0.0)[0]

    def test_unconfirmed_incident_becomes_false_alarm(self):
        for now in (10.0, 20.0, 30.0):
            self.detector.analyze([], now=now)
        self.assertAlmostEqual(self.incident.confidence, 0.25)

        self.detector.advance(30.0)
        self.assertTrue(self.incident.is_open)

        self.detector.advance(60.0)
        self.assertEqual(self.incident.status, IncidentStatus.FALSE_ALARM)
        self.assertEqual(self.detector.active_incidents(), [])

    def test_confirmed_incident_stays_open(self):
        for now in (10.0, 20.0, 30.0):
            self.detector.analyze(CLUSTER, now=now)
        self.assertEqual(self.incident.confidence, 1.0)
        self.assertEqual(self.incident.detection_passes, 4)

        self.detector.advance(60.0)
        self.assertEqual(self.incident.status, IncidentStatus.RESPONDING)

class TestObserve(unittest.TestCase):
    def vehicle(self, vid, x, speed):
        return SimpleNamespace(id=vid, x=x, y=315.0, effective_speed=speed, direction=Direction.EAST,
                               waiting_time=0, is_stopped=False)

    def test_speed_scale_converts_simulator_speeds(self):
        detector = IncidentDetector()
        lane = [self.vehicle(f"v{i}", 50 + i * 50, 1.0) for i in range(5)]

        raw = detector.observe(lane)
        self.assertEqual(raw[0].speed, 1.0)
        self.assertEqual(detector.analyze(raw, now=0.0)[0].type, IncidentType.CONGESTION)

        detector.reset()
        scaled = detector.observe(lane, speed_scale=60.0)
        self.assertEqual(scaled[0].speed, 60.0)
        self.assertEqual(detector.analyze(scaled, now=0.0), [])

if __name__ == '__main__':
    unittest.main()
