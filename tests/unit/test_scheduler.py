import math
import sys
import threading
import time
import unittest
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from hostmon_telemetry.models import (
    BatteryState,
    CpuState,
    DiskState,
    MemoryState,
    NetworkState,
    SensorState,
    Snapshot,
    Visibility,
)
from hostmon_telemetry.scheduler import SamplingScheduler, SchedulerState

INTERVAL = 0.05


class FakeProvider:
    def __init__(self):
        self.visibility = Visibility()
        self.polls = 0
        self.closed = 0
        self._lock = threading.Lock()

    def poll(self):
        with self._lock:
            self.polls += 1
            sequence = self.polls
        return Snapshot(
            sequence=sequence,
            timestamp=datetime.now(timezone.utc),
            cpu=CpuState(),
            memory=MemoryState(),
            network=NetworkState(),
            disk=DiskState(),
            battery=BatteryState(),
            sensors=SensorState(),
            visibility=self.visibility,
        )

    def close(self):
        self.closed += 1


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class SamplingSchedulerTests(unittest.TestCase):
    def setUp(self):
        self.provider = FakeProvider()
        self.scheduler = SamplingScheduler(self.provider, refresh_interval=INTERVAL)

    def tearDown(self):
        self.scheduler.close()

    def test_first_snapshot_is_published_synchronously(self):
        received = []
        self.scheduler.subscribe(received.append)
        self.scheduler.start()
        self.assertEqual(len(received), 1)
        self.assertIsNotNone(self.scheduler.latest)
        self.assertEqual(self.scheduler.status.state, SchedulerState.RUNNING)

    def test_cycles_recur(self):
        received = []
        self.scheduler.subscribe(received.append)
        self.scheduler.start()
        self.assertTrue(_wait_for(lambda: len(received) >= 4))
        sequences = [s.sequence for s in received]
        self.assertEqual(sequences, sorted(sequences))

    def test_no_cycle_after_stop(self):
        received = []
        self.scheduler.subscribe(received.append)
        self.scheduler.start()
        _wait_for(lambda: len(received) >= 2)
        self.scheduler.stop()
        polls, published = self.provider.polls, len(received)
        time.sleep(INTERVAL * 4)
        self.assertEqual(self.provider.polls, polls)
        self.assertEqual(len(received), published)
        self.assertFalse(self.scheduler.is_running)

    def test_unsubscribe_is_exact(self):
        received = []
        subscription = self.scheduler.subscribe(received.append)
        self.scheduler.start()
        _wait_for(lambda: len(received) >= 2)
        subscription.unsubscribe()
        count = len(received)
        time.sleep(INTERVAL * 4)
        self.assertEqual(len(received), count)

    def test_stop_from_inside_callback(self):
        received = []

        def _on_snapshot(snapshot):
            received.append(snapshot)
            if len(received) == 2:
                self.scheduler.stop()

        self.scheduler.subscribe(_on_snapshot)
        self.scheduler.start()
        self.assertTrue(_wait_for(lambda: not self.scheduler.is_running))
        time.sleep(INTERVAL * 4)
        self.assertEqual(len(received), 2)

    def test_later_subscribers_skipped_after_stop_in_callback(self):
        late = []
        self.scheduler.subscribe(lambda _s: self.scheduler.stop())
        self.scheduler.subscribe(late.append)
        self.scheduler.start()
        self.assertEqual(late, [])

    def test_interval_change_while_running(self):
        received = []
        self.scheduler.subscribe(received.append)
        self.scheduler.refresh_interval = 5.0
        self.scheduler.start()
        self.scheduler.refresh_interval = INTERVAL
        self.assertTrue(_wait_for(lambda: len(received) >= 3, timeout=1.0))
        self.assertEqual(self.scheduler.status.refresh_interval, INTERVAL)

    def test_huge_interval_keeps_worker_alive(self):
        received = []
        self.scheduler.subscribe(received.append)
        self.scheduler.refresh_interval = 1e12
        self.scheduler.start()
        time.sleep(INTERVAL)
        self.scheduler.refresh_interval = INTERVAL
        self.assertTrue(_wait_for(lambda: len(received) >= 3, timeout=1.0))
        self.assertTrue(self.scheduler.is_running)

    def test_rejects_non_positive_intervals(self):
        for bad in (0, -1, math.nan, math.inf):
            with self.assertRaises(ValueError):
                self.scheduler.refresh_interval = bad
        with self.assertRaises(ValueError):
            SamplingScheduler(self.provider, refresh_interval=0)
        self.assertEqual(self.scheduler.refresh_interval, INTERVAL)

    def test_subscriber_error_does_not_stop_others(self):
        received = []

        def _broken(_snapshot):
            raise RuntimeError("boom")

        self.scheduler.subscribe(_broken)
        self.scheduler.subscribe(received.append)
        with self.assertLogs("hostmon.telemetry.scheduler", level="ERROR"):
            self.scheduler.start()
        self.assertEqual(len(received), 1)
        self.assertTrue(_wait_for(lambda: len(received) >= 2))

    def test_start_and_stop_are_idempotent(self):
        self.scheduler.start()
        self.scheduler.start()
        self.assertEqual(self.provider.polls, 1)
        self.scheduler.stop()
        self.scheduler.stop()
        self.assertFalse(self.scheduler.is_running)

    def test_restart_after_stop(self):
        received = []
        self.scheduler.subscribe(received.append)
        self.scheduler.start()
        self.scheduler.stop()
        self.scheduler.start()
        self.assertTrue(_wait_for(lambda: len(received) >= 3))

    def test_close_releases_provider_once(self):
        self.scheduler.start()
        self.scheduler.close()
        self.scheduler.close()
        self.assertEqual(self.provider.closed, 1)
        with self.assertRaises(RuntimeError):
            self.scheduler.start()

    def test_visibility_reaches_snapshots(self):
        self.scheduler.visibility = Visibility(network=False)
        self.scheduler.start()
        self.assertFalse(self.scheduler.latest.visibility.network)
        self.assertEqual(self.provider.polls, 1)

    def test_events_are_recorded(self):
        self.scheduler.start()
        self.scheduler.stop()
        events = [row["event"] for row in self.scheduler.recent_events()]
        self.assertEqual(events[:2], ["start", "stop"])


if __name__ == "__main__":
    unittest.main()
