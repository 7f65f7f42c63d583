import math
import struct
import sys
import threading
import time
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from hostmon_telemetry.errors import ControllerUnavailable, TransientReadError
from hostmon_telemetry.models import ControllerState
from hostmon_telemetry.samplers.sensors import SensorSampler
from hostmon_telemetry.smc import RawValue, decode_value, fourcc, fourcc_str


def sp78(value):
    return RawValue("sp78", struct.pack(">h", int(value * 256)))


def fpe2(value):
    return RawValue("fpe2", struct.pack(">H", int(value * 4)))


def flt(value):
    return RawValue("flt ", struct.pack("<f", value))


def ui8(value):
    return RawValue("ui8 ", bytes([value]))


class FakeController:
    def __init__(self, registers=None, fail_open=False, read_delay=0.0):
        self.registers = dict(registers or {})
        self.fail_open = fail_open
        self.read_delay = read_delay
        self.open_calls = 0
        self.close_calls = 0
        self.is_open = False

    def open(self):
        self.open_calls += 1
        if self.fail_open:
            raise ControllerUnavailable("AppleSMC service not found")
        self.is_open = True

    def close(self):
        self.close_calls += 1
        self.is_open = False

    def read_key(self, key):
        if self.read_delay:
            time.sleep(self.read_delay)
        if not self.is_open:
            raise TransientReadError("connection closed")
        value = self.registers.get(key)
        if isinstance(value, Exception):
            raise value
        return value


class DecodeTests(unittest.TestCase):
    def test_fixed_point_types(self):
        self.assertEqual(decode_value(sp78(45.5)), 45.5)
        self.assertEqual(decode_value(sp78(-3.25)), -3.25)
        self.assertEqual(decode_value(fpe2(1800)), 1800.0)

    def test_float_and_integers(self):
        self.assertAlmostEqual(decode_value(RawValue("flt ", struct.pack("<f", 51.25))), 51.25)
        self.assertEqual(decode_value(ui8(2)), 2.0)
        self.assertEqual(decode_value(RawValue("ui16", b"\x01\x00")), 256.0)
        self.assertEqual(decode_value(RawValue("ui32", b"\x00\x00\x01\x00")), 256.0)

    def test_unknown_or_short_payload(self):
        self.assertIsNone(decode_value(None))
        self.assertIsNone(decode_value(RawValue("ch8*", b"abcd")))
        self.assertIsNone(decode_value(RawValue("sp78", b"\x01")))
        self.assertIsNone(decode_value(RawValue("ui8 ", b"")))

    def test_fourcc_round_trip(self):
        self.assertEqual(fourcc("TC0P"), 0x54433050)
        self.assertEqual(fourcc_str(fourcc("F0Ac")), "F0Ac")


class SensorSamplerTests(unittest.TestCase):
    def test_failed_open_is_permanent(self):
        controller = FakeController(fail_open=True)
        sampler = SensorSampler(controller=controller)
        for _ in range(100):
            state = sampler.update()
            self.assertEqual(state.cpu_temperature_c, 0.0)
            self.assertEqual(state.gpu_temperature_c, 0.0)
            self.assertEqual(state.fans, ())
            self.assertEqual(state.controller_state, ControllerState.FAILED)
        self.assertEqual(controller.open_calls, 1)
        self.assertEqual(sampler.open_attempts, 1)

    def test_lazy_open_and_readings(self):
        controller = FakeController(
            {
                "TC0P": sp78(52.5),
                "TG0P": sp78(47.0),
                "FNum": ui8(2),
                "F0Ac": fpe2(1800),
                "F1Ac": fpe2(2000),
                "F0Mn": fpe2(1200),
                "F0Mx": fpe2(6000),
            }
        )
        sampler = SensorSampler(controller=controller)
        self.assertEqual(controller.open_calls, 0)

        state = sampler.update()
        self.assertTrue(state.available)
        self.assertEqual(state.cpu_temperature_c, 52.5)
        self.assertEqual(state.gpu_temperature_c, 47.0)
        self.assertEqual([f.name for f in state.fans], ["Left Fan", "Right Fan"])
        self.assertEqual([f.rpm for f in state.fans], [1800, 2000])
        self.assertEqual((state.fans[0].min_rpm, state.fans[0].max_rpm), (1200, 6000))
        self.assertEqual((state.fans[1].min_rpm, state.fans[1].max_rpm), (0, 0))

        sampler.update()
        self.assertEqual(controller.open_calls, 1)

    def test_temperature_fallback_chain(self):
        controller = FakeController({"TC0P": sp78(0), "TC0D": sp78(61.0)})
        self.assertEqual(SensorSampler(controller=controller).update().cpu_temperature_c, 61.0)

    def test_out_of_range_is_unavailable(self):
        controller = FakeController({"TC0P": sp78(151.0), "TG0P": sp78(-5.0)})
        state = SensorSampler(controller=controller).update()
        self.assertEqual(state.cpu_temperature_c, 0.0)
        self.assertEqual(state.gpu_temperature_c, 0.0)

    def test_fan_probe_without_count(self):
        controller = FakeController({"F0Ac": fpe2(2400)})
        fans = SensorSampler(controller=controller).update().fans
        self.assertEqual(len(fans), 1)
        self.assertEqual(fans[0].name, "Fan 1")
        self.assertEqual(fans[0].rpm, 2400)

    def test_non_finite_fan_count_probes(self):
        for bad in (math.nan, math.inf, -2.0):
            with self.subTest(count=bad):
                controller = FakeController({"FNum": flt(bad), "TC0P": flt(50.0), "F1Ac": fpe2(1800)})
                state = SensorSampler(controller=controller).update()
                self.assertEqual(state.cpu_temperature_c, 50.0)
                self.assertEqual([(f.id, f.rpm) for f in state.fans], [(1, 1800)])

    def test_fan_count_is_capped(self):
        registers = {"FNum": ui8(9)}
        registers.update({f"F{i}Ac": fpe2(1000 + i) for i in range(9)})
        fans = SensorSampler(controller=FakeController(registers)).update().fans
        self.assertEqual([f.id for f in fans], [0, 1, 2, 3])

    def test_read_error_is_unavailable(self):
        controller = FakeController({"TC0P": TransientReadError("busy"), "TC0D": TransientReadError("busy")})
        state = SensorSampler(controller=controller).update()
        self.assertTrue(state.available)
        self.assertEqual(state.cpu_temperature_c, 0.0)

    def test_close_releases_once_and_never_reopens(self):
        controller = FakeController({"TC0P": sp78(50.0)})
        sampler = SensorSampler(controller=controller)
        sampler.update()
        sampler.close()
        sampler.close()
        self.assertEqual(controller.close_calls, 1)

        state = sampler.update()
        self.assertFalse(state.available)
        self.assertEqual(state.cpu_temperature_c, 0.0)
        self.assertEqual(controller.open_calls, 1)

    def test_close_before_open_does_not_touch_controller(self):
        controller = FakeController()
        sampler = SensorSampler(controller=controller)
        sampler.close()
        sampler.update()
        self.assertEqual(controller.open_calls, 0)
        self.assertEqual(controller.close_calls, 0)

    def test_close_waits_for_in_flight_update(self):
        controller = FakeController({"TC0P": sp78(50.0)}, read_delay=0.01)
        sampler = SensorSampler(controller=controller)
        sampler.update()

        worker = threading.Thread(target=sampler.update)
        worker.start()
        time.sleep(0.005)
        sampler.close()
        worker.join(timeout=5)

        self.assertFalse(worker.is_alive())
        self.assertEqual(controller.close_calls, 1)
        self.assertFalse(sampler.update().available)


if __name__ == "__main__":
    unittest.main()
