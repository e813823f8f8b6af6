import unittest

from fastapi.testclient import TestClient

from smartflow.domain.models import ControlStrategy, CoordinationStrategyType
from smartflow.main import app, kernel

# No context manager: the lifespan loop stays off and ticks are driven by hand
client = TestClient(app)

class TestReadEndpoints(unittest.TestCase):
    def setUp(self):
        kernel.reset()

    def test_root(self):
        response = client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("status", response.json())

    def test_state(self):
        kernel.run(30)
        response = client.get("/api/state")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["tick"], 30)
        self.assertEqual(len(data["lights"]), 4)
        self.assertEqual(len(data["vehicles"]), len(kernel.vehicles))
        self.assertIsNotNone(data["flow"])

    def test_signals(self):
        lights = client.get("/api/signals").json()
        states = {l["direction"]: l["state"] for l in lights}
        self.assertEqual(states, {"north": "green", "south": "green", "east": "red", "west": "red"})

    def test_report(self):
        kernel.run(60)
        response = client.get("/api/report", params={"period": "daily"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["period"], "daily")

    def test_network(self):
        self.assertEqual(len(client.get("/api/network/intersections").json()), 9)
        self.assertEqual(client.get("/api/network").status_code, 200)

    def test_flow_and_predictions(self):
        self.assertEqual(client.get("/api/flow/predictions", params={"hours": 2}).json(), [])
        kernel.run(90)
        self.assertEqual(len(client.get("/api/flow").json()), 3)
        self.assertEqual(len(client.get("/api/flow/predictions", params={"hours": 2}).json()), 2)

    def test_flow_patterns(self):
        kernel.run(90)
        patterns = client.get("/api/flow/patterns").json()
        self.assertEqual(len(patterns), 1)
        self.assertIn("optimal_timings", patterns[0])

    def test_incident_and_rl_stats(self):
        self.assertEqual(client.get("/api/incidents").json(), [])
        self.assertEqual(client.get("/api/incidents/stats").json()["total"], 0)
        self.assertEqual(client.get("/api/rl/stats").json()["episode"], 0)

class TestCommandEndpoints(unittest.TestCase):
    def setUp(self):
        kernel.reset()

    def tearDown(self):
        kernel.reset()

    def test_set_strategy(self):
        response = client.post("/api/signals/strategy", json={"strategy": "dynamic"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(kernel.state.strategy, ControlStrategy.FIXED)
        kernel.run_tick()
        self.assertEqual(kernel.state.strategy, ControlStrategy.DYNAMIC)

    def test_adaptive_strategy(self):
        client.post("/api/signals/strategy", json={"strategy": "adaptive"})
        kernel.run_tick()
        self.assertEqual(kernel.state.strategy, ControlStrategy.ADAPTIVE)
        self.assertTrue(kernel.state.last_timing.reason.startswith("Adaptive pattern for 08:00"))

        stats = client.get("/api/adaptive/stats").json()
        self.assertEqual(stats["total_samples"], 0)
        self.assertEqual(set(stats["current_timings"]), {"north-south", "east-west"})

    def test_invalid_strategy(self):
        response = client.post("/api/signals/strategy", json={"strategy": "genetic"})
        self.assertEqual(response.status_code, 422)

    def test_coordination_strategy(self):
        client.post("/api/network/strategy", json={"strategy": "predictive"})
        kernel.run_tick()
        self.assertEqual(kernel.state.coordination_strategy, CoordinationStrategyType.PREDICTIVE)

        client.post("/api/network/strategy", json={"strategy": None})
        kernel.run_tick()
        self.assertIsNone(kernel.state.coordination_strategy)

    def test_speed(self):
        client.post("/api/simulation/speed", json={"speed": 10})
        kernel.run_tick()
        self.assertEqual(kernel.state.speed, 3.0)

    def test_missing_entities(self):
        self.assertEqual(client.post("/api/incidents/nope/resolve").status_code, 404)
        self.assertEqual(client.post("/api/alerts/nope/resolve").status_code, 404)

    def test_detections(self):
        payload = [
            {"id": "cam-1", "x": 100, "y": 310, "direction": "east"},
            {"id": "cam-2", "x": 700, "y": 290, "direction": "west", "speed": 0.9},
        ]
        response = client.post("/api/detections", json=payload)
        self.assertEqual(response.json()["count"], 2)
        kernel.run_tick()
        self.assertEqual(sorted(kernel.vehicles.vehicles), ["cam-1", "cam-2"])

        client.delete("/api/detections")
        kernel.run_tick()
        self.assertFalse(kernel.vehicles.external_source)

    def test_reset(self):
        kernel.run(50)
        client.post("/api/simulation/reset")
        kernel.run_tick()
        self.assertEqual(kernel.state.tick_id, 1)

    def test_spawn(self):
        before = kernel.vehicles.next_id
        client.post("/api/vehicles/spawn")
        kernel.run_tick()
        self.assertGreaterEqual(kernel.vehicles.next_id, before)

if __name__ == '__main__':
    unittest.main()
