from abc import ABC, abstractmethod
from typing import Any, List, Optional

from smartflow.domain.models import ControlStrategy, CoordinationStrategyType, DetectionInput, Direction

class Command(ABC):
    @abstractmethod
    def execute(self, kernel: Any):
        pass

class SetStrategyCommand(Command):
    def __init__(self, strategy: ControlStrategy):
        self.strategy = ControlStrategy(strategy)

    def execute(self, kernel: Any):
        kernel.set_strategy(self.strategy)

class SetCoordinationStrategyCommand(Command):
    def __init__(self, strategy: Optional[CoordinationStrategyType]):
        self.strategy = CoordinationStrategyType(strategy) if strategy is not None else None

    def execute(self, kernel: Any):
        kernel.set_coordination_strategy(self.strategy)

class SetSpeedCommand(Command):
    def __init__(self, speed: float):
        self.speed = speed

    def execute(self, kernel: Any):
        kernel.set_speed(self.speed)

class ResolveIncidentCommand(Command):
    def __init__(self, incident_id: str):
        self.incident_id = incident_id

    def execute(self, kernel: Any):
        return kernel.incidents.resolve(self.incident_id)

class ResolveAlertCommand(Command):
    def __init__(self, alert_id: str):
        self.alert_id = alert_id

    def execute(self, kernel: Any):
        return kernel.metrics.resolve_alert(self.alert_id)

class IngestDetectionsCommand(Command):
    def __init__(self, detections: List[DetectionInput]):
        self.detections = detections

    def execute(self, kernel: Any):
        kernel.vehicles.ingest_detections(self.detections)

class ReleaseDetectionsCommand(Command):
    def execute(self, kernel: Any):
        kernel.vehicles.release_external_source()

class SpawnVehicleCommand(Command):
    def __init__(self, direction: Optional[Direction] = None):
        self.direction = direction

    def execute(self, kernel: Any):
        # Force a spawn attempt
        return kernel.vehicles.spawn(self.direction)

class ResetCommand(Command):
    def execute(self, kernel: Any):
        kernel.reset()
