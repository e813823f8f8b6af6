import asyncio
import logging
import os
import time
from fastapi import FastAPI, HTTPException
from typing import List
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from smartflow.kernel.simulation_kernel import SimulationKernel
from smartflow.kernel.commands import (
    SetStrategyCommand, SetCoordinationStrategyCommand, SetSpeedCommand, ResolveIncidentCommand,
    ResolveAlertCommand, IngestDetectionsCommand, ReleaseDetectionsCommand, SpawnVehicleCommand,
    ResetCommand
)
from smartflow.domain.config import SimulationConfig
from smartflow.domain.models import (
    SimulationSnapshot, TrafficLight, Incident, Alert, FlowSample, NetworkMetrics,
    IntersectionNode, PerformanceReport, ReportPeriod, DetectionInput, StrategyUpdate, FlowPattern,
    CoordinationUpdate, SpeedUpdate, IncidentStats, RLStats, AdaptiveStats
)

logging.basicConfig(
    level=os.environ.get("SMARTFLOW_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

def load_config() -> SimulationConfig:
    path = os.environ.get("SMARTFLOW_CONFIG")
    if path:
        return SimulationConfig.from_file(path)
    return SimulationConfig()

# Initialize Kernel
kernel = SimulationKernel(load_config(), seed=int(os.environ.get("SMARTFLOW_SEED", "42")))

# Background task for simulation loop
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Start the simulation loop
    loop_task = asyncio.create_task(run_simulation())
    logger.info("Simulation loop started at %d ticks/s", kernel.config.signals.tick_rate)
    yield
    # Shutdown
    loop_task.cancel()
    logger.info("Simulation loop stopped at tick %d", kernel.state.tick_id)

app = FastAPI(title="SmartFlow Engine", lifespan=lifespan)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

async def run_simulation():
    """Runs one frame per tick interval; the speed multiplier decides how many ticks a frame advances"""
    dt = 1.0 / kernel.config.signals.tick_rate

    while True:
        start_time = time.time()

        kernel.run_frame()

        # Sleep to maintain frame rate
        elapsed = time.time() - start_time
        sleep_time = max(0.0, dt - elapsed)
        await asyncio.sleep(sleep_time)

@app.get("/api/state", response_model=SimulationSnapshot)
async def get_state():
    """Returns the read-only snapshot of the current tick"""
    return kernel.snapshot()

@app.get("/api/signals", response_model=List[TrafficLight])
async def get_signals():
    """Returns the four signal heads with remaining time"""
    return kernel.signal.lights()

@app.post("/api/signals/strategy")
async def set_strategy(update: StrategyUpdate):
    """Selects fixed, dynamic or reinforcement signal control"""
    kernel.queue_command(SetStrategyCommand(update.strategy))
    return {"status": "Strategy Queued", "strategy": update.strategy}

@app.get("/api/incidents", response_model=List[Incident])
async def get_incidents():
    """Returns open incidents"""
    return kernel.incidents.active_incidents()

@app.get("/api/incidents/stats", response_model=IncidentStats)
async def get_incident_stats():
    return kernel.incidents.stats()

@app.post("/api/incidents/{incident_id}/resolve", response_model=Incident)
async def resolve_incident(incident_id: str):
    """Marks an incident resolved on the next tick"""
    incident = kernel.incidents.get(incident_id)
    if not incident:
        raise HTTPException(status_code=404, detail="Incident not found")
    kernel.queue_command(ResolveIncidentCommand(incident_id))
    return incident

@app.get("/api/flow", response_model=List[FlowSample])
async def get_flow_history():
    return kernel.flow.history()

@app.get("/api/flow/predictions", response_model=List[FlowSample])
async def get_flow_predictions(hours: int = 1):
    """Linear flow forecast from the most recent samples"""
    return kernel.flow.predict(max(0, min(hours, 24)))

@app.get("/api/flow/patterns", response_model=List[FlowPattern])
async def get_flow_patterns():
    return kernel.flow.analyze_patterns()

@app.get("/api/alerts", response_model=List[Alert])
async def get_alerts():
    return kernel.metrics.active_alerts()

@app.post("/api/alerts/{alert_id}/resolve")
async def resolve_alert(alert_id: str):
    if not any(a.id == alert_id for a in kernel.metrics.active_alerts()):
        raise HTTPException(status_code=404, detail="Alert not found")
    kernel.queue_command(ResolveAlertCommand(alert_id))
    return {"status": "Alert Resolution Queued", "id": alert_id}

@app.get("/api/report", response_model=PerformanceReport)
async def get_report(period: ReportPeriod = ReportPeriod.HOURLY):
    """Generates a performance report over the given period"""
    return kernel.metrics.generate_report(period)

@app.get("/api/network", response_model=NetworkMetrics)
async def get_network_metrics():
    return kernel.coordinator.network_metrics()

@app.get("/api/network/intersections", response_model=List[IntersectionNode])
async def get_intersections():
    """Returns all coordinated intersections sorted by id"""
    return [kernel.coordinator.intersections[i] for i in sorted(kernel.coordinator.intersections)]

@app.post("/api/network/strategy")
async def set_coordination_strategy(update: CoordinationUpdate):
    """Selects a coordination strategy; null disables coordination"""
    kernel.queue_command(SetCoordinationStrategyCommand(update.strategy))
    return {"status": "Coordination Strategy Queued", "strategy": update.strategy}

@app.get("/api/rl/stats", response_model=RLStats)
async def get_rl_stats():
    return kernel.agent.training_stats()

@app.get("/api/adaptive/stats", response_model=AdaptiveStats)
async def get_adaptive_stats():
    return kernel.adaptive.performance_stats()

@app.post("/api/simulation/speed")
async def set_speed(update: SpeedUpdate):
    kernel.queue_command(SetSpeedCommand(update.speed))
    return {"status": "Speed Queued", "speed": update.speed}

@app.post("/api/simulation/reset")
async def reset_simulation():
    kernel.queue_command(ResetCommand())
    return {"status": "Reset Queued"}

@app.post("/api/vehicles/spawn")
async def spawn_vehicle():
    kernel.queue_command(SpawnVehicleCommand())
    return {"status": "Spawn Queued"}

@app.post("/api/detections")
async def ingest_detections(detections: List[DetectionInput]):
    """Replaces the simulated population with externally detected vehicles"""
    kernel.queue_command(IngestDetectionsCommand(detections))
    return {"status": "Detections Queued", "count": len(detections)}

@app.delete("/api/detections")
async def release_detections():
    """Returns to simulated spawning"""
    kernel.queue_command(ReleaseDetectionsCommand())
    return {"status": "Detections Released"}

@app.get("/")
def read_root():
    return {"status": "SmartFlow Engine Running (Deterministic Kernel)"}

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=int(os.environ.get("SMARTFLOW_PORT", "8001")))
