import logging
import unittest
from unittest import mock

import logging_utils
from logging_utils import LogThrottle, get_log_level, log_event, set_log_level


class TestLoggingUtils(unittest.TestCase):
    def setUp(self):
        self._level = get_log_level()

    def tearDown(self):
        set_log_level(self._level)

    def test_log_event_appends_fields_and_tag(self):
        with self.assertLogs("pulsebeats", level="INFO") as captured:
            log_event("WARN", "Capture", "Error reading", error="stream ended", frames=3)

        record = captured.records[0]
        self.assertEqual(record.levelno, logging.WARNING)
        self.assertEqual(record.tag, "Capture")
        self.assertEqual(record.getMessage(), "Error reading | error=stream ended frames=3")

    def test_unknown_level_falls_back_to_info(self):
        with self.assertLogs("pulsebeats", level="INFO") as captured:
            log_event("chatty", "Driver", "Started")
        self.assertEqual(captured.records[0].levelno, logging.INFO)

    def test_set_log_level(self):
        set_log_level("debug")
        self.assertEqual(get_log_level(), "DEBUG")
        set_log_level("")
        self.assertEqual(get_log_level(), "INFO")
        self.assertIs(logging_utils._logger, logging.getLogger("pulsebeats"))


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestLogThrottle(unittest.TestCase):
    def test_first_message_always_logs(self):
        throttle = LogThrottle(interval_s=1.0, clock=FakeClock())
        with mock.patch("logging_utils.log_event") as log_event_mock:
            self.assertTrue(throttle.log("WARN", "Capture", "Error reading", error="eof"))
        log_event_mock.assert_called_once_with("WARN", "Capture", "Error reading", error="eof")

    def test_repeats_inside_interval_are_counted_then_reported(self):
        clock = FakeClock()
        throttle = LogThrottle(interval_s=1.0, clock=clock)
        with mock.patch("logging_utils.log_event") as log_event_mock:
            throttle.log("WARN", "Capture", "Error reading")
            for _ in range(3):
                clock.now += 0.1
                self.assertFalse(throttle.log("WARN", "Capture", "Error reading"))
            self.assertEqual(throttle.suppressed, 3)

            clock.now += 1.0
            self.assertTrue(throttle.log("WARN", "Capture", "Error reading"))

        self.assertEqual(log_event_mock.call_count, 2)
        _, kwargs = log_event_mock.call_args
        self.assertEqual(kwargs["suppressed"], 3)
        self.assertEqual(throttle.suppressed, 0)

    def test_zero_interval_never_suppresses(self):
        throttle = LogThrottle(interval_s=0.0, clock=FakeClock())
        with mock.patch("logging_utils.log_event") as log_event_mock:
            for _ in range(4):
                throttle.log("WARN", "Capture", "Error reading")
        self.assertEqual(log_event_mock.call_count, 4)


if __name__ == "__main__":
    unittest.main()
