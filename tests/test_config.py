import json
import os
import tempfile
import unittest

from pydantic import ValidationError

from smartflow.domain.config import (
    SimulationConfig, SignalTimingConfig, VehicleConfig, IncidentConfig, RLConfig,
    SimulationBoundsConfig, AdaptiveTimingConfig
)

class TestConfigValidation(unittest.TestCase):
    def test_defaults(self):
        config = SimulationConfig()
        self.assertEqual(config.signals.tick_rate, 60)
        self.assertEqual(config.signals.to_ticks(config.signals.yellow_time), 180)
        self.assertEqual(config.vehicles.min_absolute_distance, 30)

    def test_green_bounds(self):
        with self.assertRaises(ValidationError):
            SignalTimingConfig(min_green_time=70)
        with self.assertRaises(ValidationError):
            SignalTimingConfig(base_green_time=5)

    def test_population_bounds(self):
        with self.assertRaises(ValidationError):
            VehicleConfig(min_vehicles=20, max_vehicles=10)

    def test_probabilities(self):
        with self.assertRaises(ValidationError):
            VehicleConfig(base_spawn_rate=1.5)
        with self.assertRaises(ValidationError):
            VehicleConfig(straight_share=0.7, left_share=0.5)

    def test_negative_thresholds(self):
        with self.assertRaises(ValidationError):
            IncidentConfig(cluster_radius=-1)
        with self.assertRaises(ValidationError):
            VehicleConfig(safe_following_distance=-5)

    def test_rl_domains(self):
        with self.assertRaises(ValidationError):
            RLConfig(learning_rate=0)
        with self.assertRaises(ValidationError):
            RLConfig(epsilon=0.1, min_epsilon=0.5)

    def test_lane_geometry(self):
        with self.assertRaises(ValidationError):
            SimulationConfig(bounds=SimulationBoundsConfig(lane_offset=10))
        with self.assertRaises(ValidationError):
            SimulationConfig(bounds=SimulationBoundsConfig(center_box_half=40))
        SimulationConfig(bounds=SimulationBoundsConfig(lane_offset=20, center_box_half=50))

    def test_adaptive_green_bounds(self):
        with self.assertRaises(ValidationError):
            AdaptiveTimingConfig(min_green_time=40, max_green_time=30)
        with self.assertRaises(ValidationError):
            AdaptiveTimingConfig(start_day=7)

    def test_frozen_and_strict(self):
        config = SignalTimingConfig()
        with self.assertRaises(ValidationError):
            config.min_green_time = 5
        with self.assertRaises(ValidationError):
            SignalTimingConfig(green_time=5)

    def test_bounds_contains(self):
        bounds = SimulationBoundsConfig()
        self.assertTrue(bounds.contains(-50, 650))
        self.assertFalse(bounds.contains(-50.1, 300))

    def test_from_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "config.json")
            with open(path, "w") as f:
                json.dump({"signals": {"base_green_time": 30}, "vehicles": {"max_vehicles": 12}}, f)
            config = SimulationConfig.from_file(path)
            self.assertEqual(config.signals.base_green_time, 30)
            self.assertEqual(config.vehicles.max_vehicles, 12)

            with open(path, "w") as f:
                json.dump({"signals": {"yellow_time": 0}}, f)
            with self.assertRaises(ValidationError):
                SimulationConfig.from_file(path)

if __name__ == '__main__':
    unittest.main()
