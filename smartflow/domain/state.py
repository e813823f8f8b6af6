from typing import List, Optional
from pydantic import BaseModel
from smartflow.domain.models import (
    ControlStrategy, CoordinationStrategyType, FlowSample, SignalTiming,
    NetworkMetrics, PerformanceReport
)

class SimulationState(BaseModel):
    tick_id: int = 0
    time: float = 0.0 # simulation seconds

    strategy: ControlStrategy = ControlStrategy.FIXED
    coordination_strategy: Optional[CoordinationStrategyType] = None
    speed: float = 1.0
    frame_count: int = 0

    last_flow: Optional[FlowSample] = None
    flow_predictions: List[FlowSample] = []
    last_timing: Optional[SignalTiming] = None
    last_network_metrics: Optional[NetworkMetrics] = None
    last_report: Optional[PerformanceReport] = None
    last_report_time: float = 0.0
