"""Battery and power-source state."""

from __future__ import annotations

import logging
import platform
import plistlib
import subprocess
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable

import psutil

from ..errors import TransientReadError
from ..models import BatteryState

log = logging.getLogger("hostmon.telemetry.battery")

AC_POWER = "AC Power"
BATTERY_POWER = "Battery"
SYSFS_POWER_SUPPLY = Path("/sys/class/power_supply")
_IOREG_UNKNOWN_TIME = 65535


@dataclass(frozen=True)
class PowerSourceDescriptor:
    """One power source as reported by the OS. Times are minutes, -1 when unknown."""

    is_charging: bool = False
    current_capacity: int = 0
    max_capacity: int | None = None
    design_capacity: int | None = None
    cycle_count: int | None = None
    time_to_empty: int = -1
    time_to_full: int = -1
    power_source_state: str | None = None


def _psutil_source() -> PowerSourceDescriptor | None:
    sensors_battery = getattr(psutil, "sensors_battery", None)
    if sensors_battery is None:
        return None
    try:
        battery = sensors_battery()
    except (OSError, psutil.Error) as exc:
        raise TransientReadError(f"sensors_battery failed: {exc}") from exc
    if battery is None:
        return None

    plugged = battery.power_plugged
    secs = battery.secsleft
    time_to_empty = int(secs // 60) if (not plugged and isinstance(secs, (int, float)) and secs >= 0) else -1
    return PowerSourceDescriptor(
        is_charging=bool(plugged) and battery.percent < 100,
        current_capacity=int(round(battery.percent)),
        time_to_empty=time_to_empty,
        power_source_state=(None if plugged is None else (AC_POWER if plugged else BATTERY_POWER)),
    )


def _ioreg_minutes(value: Any) -> int:
    if not isinstance(value, int) or value <= 0 or value >= _IOREG_UNKNOWN_TIME:
        return -1
    return value


def parse_smart_battery(entry: dict[str, Any], base: PowerSourceDescriptor | None) -> PowerSourceDescriptor:
    base = base or PowerSourceDescriptor()
    max_capacity = entry.get("AppleRawMaxCapacity", entry.get("MaxCapacity"))
    external = entry.get("ExternalConnected")
    state = base.power_source_state
    if isinstance(external, bool):
        state = AC_POWER if external else BATTERY_POWER
    return replace(
        base,
        is_charging=bool(entry.get("IsCharging", base.is_charging)),
        max_capacity=(int(max_capacity) if max_capacity is not None else None),
        design_capacity=(int(entry["DesignCapacity"]) if "DesignCapacity" in entry else None),
        cycle_count=(int(entry["CycleCount"]) if "CycleCount" in entry else None),
        time_to_empty=_ioreg_minutes(entry.get("AvgTimeToEmpty")),
        time_to_full=_ioreg_minutes(entry.get("AvgTimeToFull")),
        power_source_state=state,
    )


def _darwin_sources() -> list[PowerSourceDescriptor]:
    base = _psutil_source()
    try:
        result = subprocess.run(
            ["ioreg", "-rn", "AppleSmartBattery", "-a"],
            capture_output=True,
            timeout=2.0,
            check=True,
        )
        entries = plistlib.loads(result.stdout) if result.stdout.strip() else []
    except (OSError, subprocess.SubprocessError, plistlib.InvalidFileException, ValueError) as exc:
        log.debug("ioreg unavailable, using psutil only: %s", exc)
        entries = []
    if not entries:
        return [base] if base is not None else []
    return [parse_smart_battery(entry, base) for entry in entries]


def _read_uevent(path: Path) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.partition("=")
        if sep:
            fields[key.removeprefix("POWER_SUPPLY_")] = value.strip()
    return fields


def _uevent_int(fields: dict[str, str], *names: str) -> int | None:
    for name in names:
        if name in fields:
            try:
                return int(fields[name])
            except ValueError:
                continue
    return None


def parse_uevent(fields: dict[str, str], on_ac: bool | None) -> PowerSourceDescriptor:
    status = fields.get("STATUS", "")
    # sysfs reports micro-units; keep mAh / mWh like other platforms.
    full = _uevent_int(fields, "CHARGE_FULL", "ENERGY_FULL")
    design = _uevent_int(fields, "CHARGE_FULL_DESIGN", "ENERGY_FULL_DESIGN")
    if on_ac is None:
        on_ac = status in ("Charging", "Full", "Not charging")
    return PowerSourceDescriptor(
        is_charging=status == "Charging",
        current_capacity=_uevent_int(fields, "CAPACITY") or 0,
        max_capacity=(full // 1000 if full is not None else None),
        design_capacity=(design // 1000 if design is not None else None),
        cycle_count=_uevent_int(fields, "CYCLE_COUNT"),
        power_source_state=AC_POWER if on_ac else BATTERY_POWER,
    )


def read_sysfs_sources(root: Path = SYSFS_POWER_SUPPLY) -> list[PowerSourceDescriptor]:
    if not root.is_dir():
        return []
    on_ac: bool | None = None
    batteries: list[dict[str, str]] = []
    try:
        for supply in sorted(root.iterdir()):
            uevent = supply / "uevent"
            if not uevent.is_file():
                continue
            fields = _read_uevent(uevent)
            kind = fields.get("TYPE", "")
            if kind == "Mains":
                on_ac = bool(on_ac) or fields.get("ONLINE") == "1"
            elif kind == "Battery" and fields.get("PRESENT", "1") == "1":
                batteries.append(fields)
    except OSError as exc:
        raise TransientReadError(f"power_supply read failed: {exc}") from exc
    return [parse_uevent(fields, on_ac) for fields in batteries]


def read_power_sources() -> list[PowerSourceDescriptor]:
    system = platform.system()
    if system == "Darwin":
        return _darwin_sources()
    if system == "Linux":
        sources = read_sysfs_sources()
        if sources:
            return sources
    base = _psutil_source()
    return [base] if base is not None else []


def _time_remaining(source: PowerSourceDescriptor) -> int:
    ordered = (source.time_to_full, source.time_to_empty) if source.is_charging else (source.time_to_empty, source.time_to_full)
    for minutes in ordered:
        if minutes > 0:
            return minutes
    return -1


class BatterySampler:
    """Folds the power-source list into one ``BatteryState``.

    With several sources the last one wins; no aggregation is attempted.
    When the list is empty only ``is_present`` changes, so consumers must gate
    every battery field on it.
    """

    def __init__(self, reader: Callable[[], list[PowerSourceDescriptor]] = read_power_sources) -> None:
        self._reader = reader
        self._state = BatteryState()

    @property
    def state(self) -> BatteryState:
        return self._state

    def update(self) -> BatteryState:
        try:
            sources = self._reader()
        except TransientReadError as exc:
            log.debug("power source read skipped: %s", exc)
            return self._state

        if not sources:
            self._state = replace(self._state, is_present=False)
            return self._state

        state = self._state
        for source in sources:
            state = replace(
                state,
                is_present=True,
                is_charging=source.is_charging,
                current_capacity_percent=source.current_capacity,
                time_remaining_minutes=_time_remaining(source),
            )
            if source.max_capacity is not None:
                state = replace(state, max_capacity=source.max_capacity)
            if source.design_capacity is not None:
                state = replace(state, design_capacity=source.design_capacity)
            if source.design_capacity and source.design_capacity > 0 and state.max_capacity > 0:
                state = replace(state, health=state.max_capacity / source.design_capacity * 100)
            if source.cycle_count is not None:
                state = replace(state, cycle_count=source.cycle_count)
            if source.power_source_state is not None:
                state = replace(state, power_source=AC_POWER if source.power_source_state == AC_POWER else BATTERY_POWER)

        self._state = state
        return self._state
