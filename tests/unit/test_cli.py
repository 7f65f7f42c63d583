import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "apps" / "cli"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from hostmon_app.cli import build_parser, render_line, snapshot_to_dict
from hostmon_telemetry.models import (
    BatteryState,
    ControllerState,
    CpuState,
    DiskInfo,
    DiskState,
    FanInfo,
    MemoryState,
    NetworkState,
    SensorState,
    Snapshot,
    Visibility,
)


def _snapshot(visibility=None, battery=None, sensors=None):
    return Snapshot(
        sequence=3,
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
        cpu=CpuState(usage=12.5),
        memory=MemoryState(total=1_073_741_824, used=536_870_912, usage_percent=50.0),
        network=NetworkState(download_speed=2048.0, upload_speed=100.0),
        disk=DiskState(volumes=(DiskInfo("Macintosh HD", "/", 1000, 250),)),
        battery=battery or BatteryState(),
        sensors=sensors or SensorState(),
        visibility=visibility or Visibility(),
    )


class CliTests(unittest.TestCase):
    def test_watch_command(self):
        args = build_parser().parse_args(["watch", "--interval", "0.5", "--count", "3"])
        self.assertEqual(args.command, "watch")
        self.assertEqual(args.interval, 0.5)
        self.assertEqual(args.count, 3)

    def test_watch_rejects_bad_intervals(self):
        for bad in ("0", "-1", "nan", "inf", "soon"):
            with self.subTest(interval=bad), self.assertRaises(SystemExit):
                build_parser().parse_args(["watch", "--interval", bad])

    def test_global_flags(self):
        args = build_parser().parse_args(["--config", "x.json", "--verbose", "doctor"])
        self.assertEqual(args.command, "doctor")
        self.assertEqual(args.config, "x.json")
        self.assertTrue(args.verbose)

    def test_render_line(self):
        line = render_line(_snapshot())
        self.assertIn("cpu 12.5%", line)
        self.assertIn("mem 512.0 MB/1.00 GB 50.0%", line)
        self.assertIn("net down 2.0 KB/s up 100 B/s", line)
        self.assertIn("disk Macintosh HD 75.0%", line)
        self.assertNotIn("battery", line)
        self.assertNotIn("temp", line)

    def test_render_line_respects_visibility(self):
        line = render_line(_snapshot(visibility=Visibility(cpu=False, disk=False)))
        self.assertNotIn("cpu", line)
        self.assertNotIn("disk", line)
        self.assertIn("mem", line)

    def test_render_line_with_battery_and_sensors(self):
        sensors = SensorState(
            cpu_temperature_c=61.2,
            fans=(FanInfo(0, "Fan 1", 1800),),
            controller_state=ControllerState.OPEN,
        )
        battery = BatteryState(is_present=True, current_capacity_percent=80, time_remaining_minutes=95, power_source="Battery")
        line = render_line(_snapshot(battery=battery, sensors=sensors))
        self.assertIn("battery 80% Battery 1:35", line)
        self.assertIn("temp cpu 61°C gpu -- fans 1800 RPM", line)

    def test_snapshot_to_dict(self):
        data = snapshot_to_dict(_snapshot())
        self.assertEqual(data["sequence"], 3)
        self.assertEqual(data["disk"]["volumes"][0]["used_bytes"], 750)
        self.assertEqual(data["sensors"]["controller_state"], ControllerState.CLOSED)


if __name__ == "__main__":
    unittest.main()
