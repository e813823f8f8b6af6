import unittest

from smartflow.domain.config import SignalTimingConfig
from smartflow.domain.models import Axis, Direction, SignalState
from smartflow.systems.signal_system import SignalSystem

class TestSignalCycle(unittest.TestCase):
    def setUp(self):
        self.signal = SignalSystem(SignalTimingConfig())

    def test_initial_state(self):
        self.assertEqual(self.signal.active_axis, Axis.NORTH_SOUTH)
        self.assertEqual(self.signal.stage, SignalState.GREEN)
        self.assertEqual(self.signal.state_of(Direction.NORTH), SignalState.GREEN)
        self.assertEqual(self.signal.state_of(Direction.EAST), SignalState.RED)

    def test_full_cycle_durations(self):
        # 20s green, 3s yellow, 2s all-red at 60 ticks/s
        for _ in range(1199):
            self.signal.update()
        self.assertEqual(self.signal.stage, SignalState.GREEN)

        self.assertTrue(self.signal.update())
        self.assertEqual(self.signal.stage, SignalState.YELLOW)
        self.assertEqual(self.signal.timer, 0)

        for _ in range(180):
            self.signal.update()
        self.assertEqual(self.signal.stage, SignalState.RED)
        self.assertEqual(self.signal.active_axis, Axis.NORTH_SOUTH)
        self.assertTrue(all(s == SignalState.RED for s in self.signal.states().values()))

        for _ in range(120):
            self.signal.update()
        self.assertEqual(self.signal.stage, SignalState.GREEN)
        self.assertEqual(self.signal.active_axis, Axis.EAST_WEST)

    def test_mutual_exclusion_and_monotonic_timer(self):
        previous = (self.signal.active_axis, self.signal.stage)
        previous_timer = self.signal.timer
        for _ in range(6000):
            self.signal.update()
            states = self.signal.states()
            permissive = [d for d, s in states.items() if s != SignalState.RED]
            self.assertLessEqual(len({d.axis for d in permissive}), 1)
            self.assertLessEqual(len({states[d] for d in permissive}), 1)

            current = (self.signal.active_axis, self.signal.stage)
            if current == previous:
                self.assertEqual(self.signal.timer, previous_timer + 1)
            else:
                self.assertEqual(self.signal.timer, 0)
            previous, previous_timer = current, self.signal.timer

    def test_remaining_time(self):
        lights = {l.direction: l for l in self.signal.lights()}
        self.assertEqual(lights[Direction.NORTH].remaining_time, 20)
        self.assertEqual(lights[Direction.EAST].remaining_time, 25)
        self.assertEqual(lights[Direction.NORTH].max_timer, 1200)

class TestSignalTiming(unittest.TestCase):
    def setUp(self):
        self.signal = SignalSystem(SignalTimingConfig())

    def test_green_duration_scales_with_density(self):
        self.assertEqual(self.signal.green_duration(0), 20.0)
        self.assertEqual(self.signal.green_duration(5), 30.0)
        # Bonus capped at 25 seconds
        self.assertEqual(self.signal.green_duration(20), 45.0)

    def test_green_duration_clamped_to_max(self):
        signal = SignalSystem(SignalTimingConfig(max_green_time=40.0))
        self.assertEqual(signal.green_duration(20), 40.0)

    def test_extend_green_respects_cap(self):
        self.signal.extend_green(10, cap=25)
        self.assertEqual(self.signal.green_ticks, 25 * 60)
        self.signal.extend_green(100)
        self.assertEqual(self.signal.green_ticks, 60 * 60)
        self.assertTrue(self.signal.at_max_green)

    def test_set_green_budget_clamps(self):
        self.signal.set_green_budget(1)
        self.assertEqual(self.signal.green_ticks, 10 * 60)

    def test_request_switch_goes_through_yellow(self):
        self.assertTrue(self.signal.request_switch(next_green=15))
        self.signal.update()
        self.assertEqual(self.signal.stage, SignalState.YELLOW)
        self.assertFalse(self.signal.request_switch())

        for _ in range(300):
            self.signal.update()
        self.assertEqual(self.signal.active_axis, Axis.EAST_WEST)
        self.assertEqual(self.signal.stage, SignalState.GREEN)
        self.assertEqual(self.signal.green_ticks, 15 * 60)

    def test_green_expiring(self):
        self.signal.set_green_budget(10)
        for _ in range(598):
            self.signal.update()
        self.assertFalse(self.signal.green_expiring)
        self.signal.update()
        self.assertTrue(self.signal.green_expiring)

if __name__ == '__main__':
    unittest.main()
