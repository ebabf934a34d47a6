import threading
import unittest

from lid_quiz.timer import CountdownTimer


class TestCountdownTimer(unittest.TestCase):
    def test_format_time(self):
        timer = CountdownTimer(45)
        self.assertEqual(timer.remaining, 45 * 60)
        self.assertEqual(timer.format_time(), "45:00")
        timer.tick()
        self.assertEqual(timer.format_time(), "44:59")

    def test_zero_duration_means_no_timer(self):
        calls = []
        timer = CountdownTimer(0, lambda: calls.append(1))
        self.assertFalse(timer.enabled)
        timer.start()
        self.assertFalse(timer.running)
        timer.tick()
        self.assertEqual(calls, [])
        self.assertEqual(timer.format_time(), "00:00")

    def test_time_up_fires_exactly_once(self):
        calls = []
        timer = CountdownTimer(1 / 60, lambda: calls.append(1))  # 1 秒
        self.assertEqual(timer.remaining, 1)
        timer.tick()
        timer.tick()
        timer.tick()
        self.assertEqual(calls, [1])
        self.assertTrue(timer.expired)
        self.assertEqual(timer.remaining, 0)

    def test_pause_and_resume(self):
        timer = CountdownTimer(1)
        timer.pause()
        timer.tick()
        self.assertEqual(timer.remaining, 60)
        timer.resume()
        timer.tick()
        self.assertEqual(timer.remaining, 59)

    def test_reset(self):
        calls = []
        timer = CountdownTimer(1 / 60, lambda: calls.append(1))
        timer.tick()
        timer.reset()
        self.assertEqual(timer.remaining, 1)
        self.assertFalse(timer.expired)
        timer.tick()
        self.assertEqual(calls, [1, 1])

    def test_callback_errors_are_contained(self):
        def boom():
            raise RuntimeError("x")

        timer = CountdownTimer(1 / 60, boom)
        self.assertEqual(timer.tick(), 0)

    def test_thread_runs_down_and_stops(self):
        done = threading.Event()
        timer = CountdownTimer(2 / 60, done.set, interval=0.01)
        timer.start()
        self.assertTrue(done.wait(2.0))
        timer.cancel()
        self.assertFalse(timer.running)
        self.assertEqual(timer.remaining, 0)

    def test_cancel_stops_ticking(self):
        timer = CountdownTimer(10, interval=0.01)
        timer.start()
        self.assertTrue(timer.running)
        timer.cancel()
        self.assertFalse(timer.running)
        remaining = timer.remaining
        threading.Event().wait(0.05)
        self.assertEqual(timer.remaining, remaining)


if __name__ == "__main__":
    unittest.main()
