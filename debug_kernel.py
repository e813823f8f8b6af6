from smartflow.kernel.simulation_kernel import SimulationKernel
from smartflow.domain.config import SimulationConfig, VehicleConfig
from smartflow.domain.models import Direction, ControlStrategy

print("Debugging Density Scoring...")

# Spawning off so only the placed vehicles are on the road
config = SimulationConfig(vehicles=VehicleConfig(spawn_enabled=False, initial_vehicles=0))
kernel = SimulationKernel(config, seed=1)
kernel.set_strategy(ControlStrategy.DYNAMIC)

# Queue four vehicles on the south approach (moving north) and one heading east
print("Placing test vehicles...")
for i in range(4):
    kernel.vehicles.add_vehicle(x=415.0, y=360.0 + i * 40.0, direction=Direction.NORTH, speed=1.0)
kernel.vehicles.add_vehicle(x=100.0, y=315.0, direction=Direction.EAST, speed=1.0)

conditions = kernel.traffic_conditions()
print("Density:", {d.value: v for d, v in conditions.density.items()})
print(f"Congestion: {conditions.congestion_level:.1f}%")

timing = kernel.dynamic.calculate_optimal_timing(conditions)
print(f"Timing: {timing.phase.value} for {timing.duration:.1f}s ({timing.reason})")

if timing.phase.value == "north-south":
    print("SUCCESS: Busy axis selected.")
else:
    print("FAILURE: Expected north-south to win.")

# Drive the red light and check the queue forms
kernel.dynamic.reset()
kernel.signal.request_switch()
kernel.run(400)
waiting = kernel.vehicles.waiting_by_direction()
print(f"Waiting ticks after switch: {waiting[Direction.NORTH]} (north), {waiting[Direction.EAST]} (east)")
print("Lights:", [(l.direction.value, l.state.value, l.remaining_time) for l in kernel.signal.lights()])
