"""Typed telemetry models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .history import HISTORY_SIZE

_EMPTY_HISTORY: tuple[float, ...] = (0.0,) * HISTORY_SIZE


class ControllerState(str, Enum):
    CLOSED = "Closed"
    OPEN = "Open"
    FAILED = "Failed"


@dataclass(frozen=True)
class CpuState:
    usage: float = 0.0
    user_usage: float = 0.0
    system_usage: float = 0.0
    idle_usage: float = 0.0
    nice_usage: float = 0.0
    history: tuple[float, ...] = _EMPTY_HISTORY


@dataclass(frozen=True)
class MemoryState:
    total: int = 0
    used: int = 0
    free: int = 0
    active: int = 0
    inactive: int = 0
    wired: int = 0
    compressed: int = 0
    usage_percent: float = 0.0
    history: tuple[float, ...] = _EMPTY_HISTORY


@dataclass(frozen=True)
class NetworkState:
    download_speed: float = 0.0
    upload_speed: float = 0.0
    total_download_bytes: int = 0
    total_upload_bytes: int = 0
    download_history: tuple[float, ...] = _EMPTY_HISTORY
    upload_history: tuple[float, ...] = _EMPTY_HISTORY


@dataclass(frozen=True)
class DiskInfo:
    name: str
    mount_point: str
    total_bytes: int
    free_bytes: int

    @property
    def used_bytes(self) -> int:
        return max(self.total_bytes - self.free_bytes, 0)

    @property
    def usage_percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return self.used_bytes / self.total_bytes * 100


@dataclass(frozen=True)
class DiskState:
    volumes: tuple[DiskInfo, ...] = ()
    # Block-level throughput needs privileged I/O counters; always 0 here.
    read_bytes_per_sec: float = 0.0
    write_bytes_per_sec: float = 0.0


@dataclass(frozen=True)
class BatteryState:
    is_present: bool = False
    is_charging: bool = False
    current_capacity_percent: int = 0
    max_capacity: int = 0
    design_capacity: int = 0
    health: float = 0.0
    cycle_count: int = 0
    time_remaining_minutes: int = -1
    power_source: str = "Unknown"


@dataclass(frozen=True)
class FanInfo:
    id: int
    name: str
    rpm: int
    min_rpm: int = 0
    max_rpm: int = 0


@dataclass(frozen=True)
class SensorState:
    cpu_temperature_c: float = 0.0
    gpu_temperature_c: float = 0.0
    fans: tuple[FanInfo, ...] = ()
    controller_state: ControllerState = ControllerState.CLOSED

    @property
    def available(self) -> bool:
        return self.controller_state is ControllerState.OPEN


@dataclass(frozen=True)
class Visibility:
    cpu: bool = True
    memory: bool = True
    network: bool = True
    disk: bool = True
    battery: bool = True
    sensors: bool = True


@dataclass(frozen=True)
class Snapshot:
    sequence: int
    timestamp: datetime
    cpu: CpuState
    memory: MemoryState
    network: NetworkState
    disk: DiskState
    battery: BatteryState
    sensors: SensorState
    visibility: Visibility = field(default_factory=Visibility)
