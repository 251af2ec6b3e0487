import threading
import unittest
from unittest import mock

from icsync.models import AppConfig
from icsync.scheduler import SyncScheduler


class SyncSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config_manager = mock.Mock()
        self.config_manager.load.return_value = AppConfig.from_dict({"sync": {"interval_seconds": 3600}})
        self.engine = mock.Mock()
        self.manual_ran = threading.Event()

        def run_once(trigger="scheduled", force=False):
            if trigger == "manual":
                self.manual_ran.set()

        self.engine.run_once.side_effect = run_once
        self.scheduler = SyncScheduler(self.engine, self.config_manager)

    def tearDown(self) -> None:
        self.scheduler.stop()

    def test_startup_run_then_manual_trigger_forces_cycle(self) -> None:
        self.scheduler.start()
        self.scheduler.trigger_manual()

        self.assertTrue(self.manual_ran.wait(timeout=5))
        self.engine.run_once.assert_any_call(trigger="startup")
        self.engine.run_once.assert_any_call(trigger="manual", force=True)

    def test_interval_falls_back_when_config_unreadable(self) -> None:
        self.config_manager.load.side_effect = RuntimeError("bad yaml")

        with self.assertLogs("icsync.scheduler", level="WARNING"):
            self.assertEqual(self.scheduler._interval_seconds(), 300)

    def test_interval_has_a_floor(self) -> None:
        self.config_manager.load.return_value = AppConfig.from_dict({"sync": {"interval_seconds": 1}})
        self.assertEqual(self.scheduler._interval_seconds(), 30)


if __name__ == "__main__":
    unittest.main()
