import logging
import math
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence, Set

import networkx as nx

from smartflow.domain.config import IncidentConfig, INTERSECTION_X, INTERSECTION_Y
from smartflow.domain.models import (
    Incident, IncidentType, IncidentStatus, IncidentLocation, IncidentStats,
    ResponseAction, ResponseActionType, Severity, VehicleObservation, Direction
)

logger = logging.getLogger(__name__)


class IncidentDetector:
    """Heuristic accident, congestion and speed-anomaly detection.

    Detection is soft: every rule only produces candidate incidents, which are
    merged into an open incident of the same type nearby instead of being
    duplicated. Response actions complete on simulation time via advance().
    An incident whose confidence (share of detection passes that confirmed
    it) is below false_alarm_threshold once response_time_limit minutes have
    passed is closed as a false alarm.
    """

    def __init__(self, config: Optional[IncidentConfig] = None,
                 center: tuple = (INTERSECTION_X, INTERSECTION_Y)):
        self.config = config or IncidentConfig()
        self.center = center
        self.incidents: "OrderedDict[str, Incident]" = OrderedDict()
        self._next_id = 0

    def reset(self):
        self.incidents.clear()
        self._next_id = 0

    def analyze(self, vehicles: Sequence[VehicleObservation], now: float) -> List[Incident]:
        """Runs every rule over the observations. Returns the open incidents."""
        candidates = []
        candidates.extend(self._detect_accidents(vehicles, now))
        candidates.extend(self._detect_congestion(vehicles, now))
        candidates.extend(self._detect_speed_anomalies(vehicles, now))

        confirmed = {self._process(incident, now).id for incident in candidates}
        self._update_confidence(confirmed)

        return self.active_incidents()

    # Rules

    def _is_stopped(self, v: VehicleObservation) -> bool:
        slow = v.is_stopped or v.speed < self.config.stopped_speed
        return slow and v.waiting_time > self.config.stopped_wait_ticks

    def _detect_accidents(self, vehicles: Sequence[VehicleObservation], now: float) -> List[Incident]:
        stopped = [v for v in vehicles if self._is_stopped(v)]
        incidents = []
        for group in self.cluster(stopped, self.config.cluster_radius):
            if len(group) < self.config.accident_threshold:
                continue
            severity = self.accident_severity(len(group))
            location = self._center_of(group)
            incidents.append(self._new_incident(
                IncidentType.ACCIDENT, severity, location, now,
                description=f"Vehicle accident detected with {len(group)} vehicles involved",
                affected=[v.id for v in group],
                duration={Severity.CRITICAL: 60, Severity.HIGH: 45}.get(severity, 30),
                actions=self._accident_actions(severity, location, now),
            ))
        return incidents

    def _detect_congestion(self, vehicles: Sequence[VehicleObservation], now: float) -> List[Incident]:
        slow = [v for v in vehicles if v.speed < self.config.slow_speed and not self._is_stopped(v)]

        by_lane: Dict[Direction, List[VehicleObservation]] = {}
        for v in slow:
            by_lane.setdefault(self.lane_of(v.x, v.y), []).append(v)

        incidents = []
        for lane, group in by_lane.items():
            if len(group) < self.config.congestion_threshold:
                continue
            severity = self.congestion_severity(len(group))
            incidents.append(self._new_incident(
                IncidentType.CONGESTION, severity, self._center_of(group), now,
                description=f"Traffic congestion detected in {lane.value} lane with {len(group)} vehicles",
                affected=[v.id for v in group],
                duration=30 if severity == Severity.HIGH else 15,
                actions=self._congestion_actions(lane, now),
            ))
        return incidents

    def _detect_speed_anomalies(self, vehicles: Sequence[VehicleObservation], now: float) -> List[Incident]:
        moving = [v for v in vehicles if v.speed > 0]
        if len(moving) < self.config.min_anomaly_samples:
            return []

        mean = sum(v.speed for v in moving) / len(moving)
        std = math.sqrt(sum((v.speed - mean) ** 2 for v in moving) / len(moving))
        limit = self.config.speed_anomaly_threshold * std
        anomalies = [v for v in moving if abs(v.speed - mean) > limit]
        if not anomalies:
            return []

        location = self._center_of(anomalies)
        return [self._new_incident(
            IncidentType.HAZARD, Severity.MEDIUM, location, now,
            description=f"Speed anomaly detected with {len(anomalies)} vehicles",
            affected=[v.id for v in anomalies],
            duration=10,
            actions=[self._action(ResponseActionType.ALERT_DISPATCH, 4,
                                  "Investigate speed anomaly in traffic flow", now, 5)],
        )]

    # Helpers

    @staticmethod
    def cluster(vehicles: Sequence[VehicleObservation], radius: float) -> List[List[VehicleObservation]]:
        """Single-link clusters: connected components of the proximity graph."""
        graph = nx.Graph()
        graph.add_nodes_from(range(len(vehicles)))
        for i in range(len(vehicles)):
            for j in range(i + 1, len(vehicles)):
                a, b = vehicles[i], vehicles[j]
                if math.hypot(a.x - b.x, a.y - b.y) <= radius:
                    graph.add_edge(i, j)
        return [[vehicles[i] for i in sorted(component)] for component in nx.connected_components(graph)]

    def lane_of(self, x: float, y: float) -> Direction:
        cx, cy = self.center
        band = self.config.lane_band
        if y < cy - band:
            return Direction.NORTH
        if y > cy + band:
            return Direction.SOUTH
        if x < cx - band:
            return Direction.WEST
        return Direction.EAST

    def _center_of(self, group: Sequence[VehicleObservation]) -> IncidentLocation:
        x = sum(v.x for v in group) / len(group)
        y = sum(v.y for v in group) / len(group)
        return IncidentLocation(x=x, y=y, lane=self.lane_of(x, y))

    @staticmethod
    def accident_severity(size: int) -> Severity:
        if size >= 6:
            return Severity.CRITICAL
        if size >= 4:
            return Severity.HIGH
        if size >= 2:
            return Severity.MEDIUM
        return Severity.LOW

    @staticmethod
    def congestion_severity(size: int) -> Severity:
        if size >= 15:
            return Severity.CRITICAL
        if size >= 10:
            return Severity.HIGH
        if size >= 5:
            return Severity.MEDIUM
        return Severity.LOW

    def _new_incident(self, type_: IncidentType, severity: Severity, location: IncidentLocation,
                      now: float, description: str, affected: List[str], duration: float,
                      actions: List[ResponseAction]) -> Incident:
        return Incident(
            id=f"{type_.value}-{now:g}",
            type=type_,
            severity=severity,
            location=location,
            timestamp=now,
            detected_at=now,
            description=description,
            affected_vehicles=affected,
            estimated_duration=duration,
            response_actions=actions,
        )

    def _action(self, type_: ResponseActionType, priority: int, description: str,
                now: float, completion: float) -> ResponseAction:
        return ResponseAction(
            id=type_.value,
            type=type_,
            priority=priority,
            description=description,
            timestamp=now,
            estimated_completion=completion,
        )

    def _accident_actions(self, severity: Severity, location: IncidentLocation, now: float) -> List[ResponseAction]:
        actions = [
            self._action(ResponseActionType.SIGNAL_OVERRIDE, 10 if severity == Severity.CRITICAL else 8,
                         "Override traffic signals for emergency vehicle access", now, 2),
            self._action(ResponseActionType.ALERT_DISPATCH, 10,
                         "Dispatch emergency services to accident location", now, 5),
        ]
        if severity in (Severity.HIGH, Severity.CRITICAL):
            actions.append(self._action(ResponseActionType.LANE_CLOSURE, 7,
                                        f"Close {location.lane.value} lane for accident investigation", now, 1))
        return actions

    def _congestion_actions(self, lane: Direction, now: float) -> List[ResponseAction]:
        return [
            self._action(ResponseActionType.TRAFFIC_REROUTE, 6,
                         f"Reroute traffic away from congested {lane.value} lane", now, 3),
            self._action(ResponseActionType.SIGNAL_OVERRIDE, 5,
                         "Adjust signal timing to clear congestion", now, 2),
        ]

    # Store

    def _process(self, candidate: Incident, now: float) -> Incident:
        existing = self._find_similar(candidate)
        if existing is not None:
            existing.severity = candidate.severity
            existing.location = candidate.location
            existing.description = candidate.description
            existing.affected_vehicles = candidate.affected_vehicles
            existing.timestamp = now
            return existing

        self._next_id += 1
        candidate.id = f"{candidate.type.value}-{self._next_id}"
        for action in candidate.response_actions:
            action.id = f"{candidate.id}-{action.id}"
        self.incidents[candidate.id] = candidate
        self._enforce_capacity()
        logger.info("Incident %s detected (%s, %s)", candidate.id, candidate.type.value, candidate.severity.value)
        return candidate

    def _update_confidence(self, confirmed: Set[str]):
        for incident in self.active_incidents():
            incident.detection_passes += 1
            if incident.id in confirmed:
                incident.confirmations += 1
            incident.confidence = incident.confirmations / incident.detection_passes

    def _find_similar(self, candidate: Incident) -> Optional[Incident]:
        for existing in self.incidents.values():
            if existing.type != candidate.type or not existing.is_open:
                continue
            distance = math.hypot(existing.location.x - candidate.location.x,
                                  existing.location.y - candidate.location.y)
            if distance < self.config.detection_radius:
                return existing
        return None

    def _enforce_capacity(self):
        while len(self.incidents) > self.config.max_incidents:
            closed = next((i for i, inc in self.incidents.items() if not inc.is_open), None)
            if closed is None:
                self.incidents.popitem(last=False)
            else:
                del self.incidents[closed]

    def advance(self, now: float):
        """Marks response actions executed once their completion time has elapsed
        and closes unconfirmed incidents past the response time limit."""
        limit = self.config.response_time_limit * 60
        for incident in self.incidents.values():
            if not incident.is_open:
                continue
            for action in incident.response_actions:
                if not action.executed and now >= action.timestamp + action.estimated_completion:
                    action.executed = True
                    logger.debug("Executed response action: %s", action.description)
                    if incident.status == IncidentStatus.DETECTED:
                        incident.status = IncidentStatus.RESPONDING

            if now - incident.detected_at >= limit and incident.confidence < self.config.false_alarm_threshold:
                incident.status = IncidentStatus.FALSE_ALARM
                logger.info("Incident %s closed as false alarm (confidence %.2f)", incident.id, incident.confidence)

    # Queries

    def active_incidents(self) -> List[Incident]:
        return [i for i in self.incidents.values() if i.is_open]

    def get(self, incident_id: str) -> Optional[Incident]:
        return self.incidents.get(incident_id)

    def by_type(self, type_: IncidentType) -> List[Incident]:
        return [i for i in self.incidents.values() if i.type == type_]

    def by_severity(self, severity: Severity) -> List[Incident]:
        return [i for i in self.incidents.values() if i.severity == severity]

    def resolve(self, incident_id: str) -> bool:
        incident = self.incidents.get(incident_id)
        if incident is None:
            return False
        incident.status = IncidentStatus.RESOLVED
        logger.info("Incident %s resolved", incident_id)
        return True

    def mark_false_alarm(self, incident_id: str) -> bool:
        incident = self.incidents.get(incident_id)
        if incident is None:
            return False
        incident.status = IncidentStatus.FALSE_ALARM
        return True

    def stats(self) -> IncidentStats:
        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for incident in self.incidents.values():
            by_type[incident.type.value] = by_type.get(incident.type.value, 0) + 1
            by_severity[incident.severity.value] = by_severity.get(incident.severity.value, 0) + 1

        return IncidentStats(
            total=len(self.incidents),
            active=len(self.active_incidents()),
            resolved=sum(1 for i in self.incidents.values() if i.status == IncidentStatus.RESOLVED),
            by_type=by_type,
            by_severity=by_severity,
        )

    def observe(self, vehicles: Iterable, speed_scale: float = 1.0) -> List[VehicleObservation]:
        """Builds observations from simulator vehicles. speed_scale converts
        simulator speeds into the units of the speed thresholds."""
        return [
            VehicleObservation(
                id=v.id, x=v.x, y=v.y, speed=v.effective_speed * speed_scale, direction=v.direction,
                waiting_time=v.waiting_time, is_stopped=v.is_stopped,
            )
            for v in vehicles
        ]
