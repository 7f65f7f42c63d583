"""Temperatures and fan speeds from a keyed hardware controller."""

from __future__ import annotations

import logging
import math
import platform
import re
import struct
import threading
import time

import psutil

from ..errors import ControllerUnavailable, TelemetryError
from ..models import ControllerState, FanInfo, SensorState
from ..smc import AppleSmcController, RawValue, SensorController, decode_value

log = logging.getLogger("hostmon.telemetry.sensors")

CPU_TEMPERATURE_KEYS = ("TC0P", "TC0D", "Tp09", "Tp01")
GPU_TEMPERATURE_KEYS = ("TG0P", "TG0D")
FAN_COUNT_KEY = "FNum"
MAX_FANS = 4

_TEMPERATURE_RANGE = (0.0, 150.0)
_RPM_RANGE = (0.0, 10000.0)
_FAN_KEY_RE = re.compile(r"^F(\d)(Ac|Mn|Mx)$")
_CPU_CHIPS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "acpitz")
_GPU_CHIPS = ("amdgpu", "nouveau", "radeon", "i915")


def _flt(value: float) -> RawValue:
    return RawValue(data_type="flt ", payload=struct.pack("<f", value))


class PsutilSensorController:
    """Answers register keys from ``psutil`` sensor tables.

    Temperature keys resolve to the first known CPU or GPU chip; fan keys
    index the fans in the order psutil lists them. GPU temperature falls back
    to NVML when ``pynvml`` is importable.
    """

    def __init__(self, cache_ttl: float = 0.2) -> None:
        self._cache_ttl = cache_ttl
        self._cached_at = 0.0
        self._temps: dict = {}
        self._fans: list = []
        self._nvml = None
        self._open = False

    def open(self) -> None:
        if self._open:
            return
        if not hasattr(psutil, "sensors_temperatures") and not hasattr(psutil, "sensors_fans"):
            raise ControllerUnavailable("psutil has no sensor support on this platform")
        try:
            import pynvml  # type: ignore

            pynvml.nvmlInit()
            self._nvml = pynvml
        except Exception:
            self._nvml = None
        self._open = True

    def close(self) -> None:
        if not self._open:
            return
        if self._nvml is not None:
            try:
                self._nvml.nvmlShutdown()
            except Exception as exc:
                log.debug("nvml shutdown failed: %s", exc)
            self._nvml = None
        self._open = False

    def _refresh(self) -> None:
        now = time.monotonic()
        if self._cached_at and now - self._cached_at < self._cache_ttl:
            return
        temps_fn = getattr(psutil, "sensors_temperatures", None)
        fans_fn = getattr(psutil, "sensors_fans", None)
        try:
            self._temps = temps_fn() if temps_fn else {}
            fans = fans_fn() if fans_fn else {}
        except (OSError, psutil.Error) as exc:
            raise TelemetryError(f"psutil sensors failed: {exc}") from exc
        self._fans = [entry for entries in fans.values() for entry in entries]
        self._cached_at = now

    def _chip_temperature(self, chips: tuple[str, ...]) -> float | None:
        for name in chips:
            entries = self._temps.get(name)
            if entries and entries[0].current is not None:
                return float(entries[0].current)
        return None

    def _nvml_temperature(self) -> float | None:
        nvml = self._nvml
        if nvml is None:
            return None
        try:
            if nvml.nvmlDeviceGetCount() < 1:
                return None
            handle = nvml.nvmlDeviceGetHandleByIndex(0)
            return float(nvml.nvmlDeviceGetTemperature(handle, nvml.NVML_TEMPERATURE_GPU))
        except Exception as exc:
            log.debug("nvml temperature failed: %s", exc)
            return None

    def read_key(self, key: str) -> RawValue | None:
        if not self._open:
            return None
        self._refresh()
        if key in CPU_TEMPERATURE_KEYS:
            value = self._chip_temperature(_CPU_CHIPS)
            return _flt(value) if value is not None else None
        if key in GPU_TEMPERATURE_KEYS:
            value = self._chip_temperature(_GPU_CHIPS)
            if value is None:
                value = self._nvml_temperature()
            return _flt(value) if value is not None else None
        if key == FAN_COUNT_KEY:
            return RawValue(data_type="ui8 ", payload=bytes([min(len(self._fans), 255)]))
        match = _FAN_KEY_RE.match(key)
        if match and match.group(2) == "Ac":
            index = int(match.group(1))
            if index < len(self._fans):
                return _flt(float(self._fans[index].current))
        return None


def default_controller() -> SensorController:
    if platform.system() == "Darwin":
        return AppleSmcController()
    return PsutilSensorController()


def fan_name(index: int, count: int) -> str:
    if count == 2:
        return ("Left Fan", "Right Fan")[index]
    return f"Fan {index + 1}"


def _in_range(value: float | None, bounds: tuple[float, float]) -> bool:
    return value is not None and bounds[0] < value < bounds[1]


class SensorSampler:
    """Owns the controller connection: Closed -> Open, or Closed -> Failed.

    Opening happens lazily on the first update. A failed open is permanent for
    the session. After ``close`` every update reports unavailable and the
    connection is never reopened.
    """

    def __init__(
        self,
        controller: SensorController | None = None,
        cpu_keys: tuple[str, ...] = CPU_TEMPERATURE_KEYS,
        gpu_keys: tuple[str, ...] = GPU_TEMPERATURE_KEYS,
    ) -> None:
        self._controller = controller if controller is not None else default_controller()
        self._cpu_keys = cpu_keys
        self._gpu_keys = gpu_keys
        self._lock = threading.Lock()
        self._connection = ControllerState.CLOSED
        self._released = False
        self.open_attempts = 0
        self._state = SensorState()

    @property
    def state(self) -> SensorState:
        return self._state

    @property
    def connection_state(self) -> ControllerState:
        return self._connection

    def _ensure_open(self) -> None:
        if self._connection is not ControllerState.CLOSED or self._released:
            return
        self.open_attempts += 1
        try:
            self._controller.open()
        except (ControllerUnavailable, OSError) as exc:
            self._connection = ControllerState.FAILED
            log.warning("sensor controller unavailable: %s", exc, extra={"event": "sensor_unavailable"})
            return
        self._connection = ControllerState.OPEN

    def _read(self, key: str) -> float | None:
        try:
            return decode_value(self._controller.read_key(key))
        except (TelemetryError, OSError) as exc:
            log.debug("sensor key %s unreadable: %s", key, exc)
            return None

    def _temperature(self, keys: tuple[str, ...]) -> float:
        for key in keys:
            value = self._read(key)
            if _in_range(value, _TEMPERATURE_RANGE):
                return float(value)
        return 0.0

    def _fans(self) -> tuple[FanInfo, ...]:
        count = self._read(FAN_COUNT_KEY)
        probing = count is None or not math.isfinite(count) or count < 0
        indexes = range(MAX_FANS) if probing else range(min(int(count), MAX_FANS))

        readings: list[tuple[int, float | None]] = []
        for index in indexes:
            rpm = self._read(f"F{index}Ac")
            if probing and rpm is None:
                continue
            readings.append((index, rpm))

        fans = []
        for position, (index, rpm) in enumerate(readings):
            low = self._read(f"F{index}Mn")
            high = self._read(f"F{index}Mx")
            fans.append(
                FanInfo(
                    id=index,
                    name=fan_name(position, len(readings)),
                    rpm=int(rpm) if _in_range(rpm, _RPM_RANGE) else 0,
                    min_rpm=int(low) if _in_range(low, _RPM_RANGE) else 0,
                    max_rpm=int(high) if _in_range(high, _RPM_RANGE) else 0,
                )
            )
        return tuple(fans)

    def update(self) -> SensorState:
        with self._lock:
            self._ensure_open()
            if self._connection is not ControllerState.OPEN:
                self._state = SensorState(controller_state=self._connection)
                return self._state
            self._state = SensorState(
                cpu_temperature_c=self._temperature(self._cpu_keys),
                gpu_temperature_c=self._temperature(self._gpu_keys),
                fans=self._fans(),
                controller_state=ControllerState.OPEN,
            )
            return self._state

    def close(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            if self._connection is ControllerState.OPEN:
                try:
                    self._controller.close()
                except (TelemetryError, OSError) as exc:
                    log.warning("sensor controller close failed: %s", exc)
            self._connection = ControllerState.CLOSED
            self._state = SensorState(controller_state=ControllerState.CLOSED)
