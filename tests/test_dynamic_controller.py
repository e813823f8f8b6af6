import unittest

from smartflow.controllers.dynamic import DynamicSignalController, TrafficConditions
from smartflow.domain.config import DynamicControlConfig
from smartflow.domain.models import Axis, Direction

def conditions(density, waiting=None, **kwargs):
    return TrafficConditions(
        density={d: float(v) for d, v in density.items()},
        waiting_times={d: float(v) for d, v in (waiting or {}).items()},
        **kwargs,
    )

BUSY_NS = {Direction.NORTH: 10, Direction.SOUTH: 10, Direction.EAST: 1, Direction.WEST: 1}
EQUAL_WAIT = {d: 5 for d in Direction}

class TestDynamicSignalController(unittest.TestCase):
    def setUp(self):
        self.controller = DynamicSignalController()

    def test_busy_axis_gets_capped_green(self):
        timing = self.controller.calculate_optimal_timing(conditions(BUSY_NS, EQUAL_WAIT))
        self.assertEqual(timing.phase, Axis.NORTH_SOUTH)
        # 10 + 20 * 2 = 50, x1.5 for high congestion, capped at 60
        self.assertEqual(timing.duration, 60.0)
        self.assertIn("north-south", timing.reason)

    def test_low_congestion_shortens_green(self):
        timing = self.controller.calculate_optimal_timing(conditions(BUSY_NS, EQUAL_WAIT, congestion_level=10))
        self.assertAlmostEqual(timing.duration, 40.0)

    def test_busy_current_phase_is_extended(self):
        self.controller.calculate_optimal_timing(conditions(BUSY_NS, EQUAL_WAIT))
        timing = self.controller.calculate_optimal_timing(conditions(BUSY_NS, EQUAL_WAIT))
        self.assertEqual(timing.phase, Axis.NORTH_SOUTH)
        self.assertTrue(timing.reason.startswith("Extending"))
        # 5s extension raised to the 10s minimum green
        self.assertEqual(timing.duration, 10.0)

    def test_switches_to_waiting_axis(self):
        self.controller.current_phase = Axis.NORTH_SOUTH
        density = {Direction.NORTH: 0, Direction.SOUTH: 0, Direction.EAST: 2, Direction.WEST: 2}
        timing = self.controller.calculate_optimal_timing(conditions(density, {Direction.EAST: 20}))
        self.assertEqual(timing.phase, Axis.EAST_WEST)
        # (10 + 4 * 2) * 0.8 at low congestion
        self.assertAlmostEqual(timing.duration, 14.4)
        self.assertEqual(self.controller.current_phase, Axis.EAST_WEST)

    def test_sparse_directions_count_as_empty(self):
        density = {Direction.NORTH: 1, Direction.SOUTH: 0, Direction.EAST: 2, Direction.WEST: 2}
        timing = self.controller.calculate_optimal_timing(conditions(density))
        self.assertEqual(timing.phase, Axis.EAST_WEST)

        sparse = DynamicSignalController(DynamicControlConfig(density_threshold=3))
        timing = sparse.calculate_optimal_timing(conditions(density))
        self.assertEqual(timing.phase, Axis.NORTH_SOUTH)
        self.assertEqual(sparse.density_history[-1][Direction.EAST], 0.0)

    def test_duration_always_within_bounds(self):
        for n in range(0, 40, 3):
            density = {d: n for d in Direction}
            timing = self.controller.calculate_optimal_timing(conditions(density))
            self.assertGreaterEqual(timing.duration, 10.0)
            self.assertLessEqual(timing.duration, 60.0)

    def test_density_history_bounded(self):
        for _ in range(25):
            self.controller.calculate_optimal_timing(conditions(BUSY_NS))
        self.assertEqual(len(self.controller.density_history), 10)

    def test_reset(self):
        self.controller.calculate_optimal_timing(conditions(BUSY_NS))
        self.controller.reset()
        self.assertIsNone(self.controller.current_phase)
        self.assertEqual(len(self.controller.density_history), 0)

    def test_missing_directions_default_to_zero(self):
        c = TrafficConditions(density={Direction.NORTH: 4.0})
        self.assertEqual(c.density[Direction.WEST], 0.0)
        self.assertEqual(c.congestion_level, 20.0)

if __name__ == '__main__':
    unittest.main()
