"""Host telemetry sampling engine: samplers, snapshots, and the scheduler."""

from .history import HISTORY_SIZE, HistoryBuffer
from .models import (
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
from .provider import TelemetryProvider
from .scheduler import REFRESH_INTERVAL_CHOICES, SamplingScheduler, SchedulerState, SchedulerStatus, Subscription

__all__ = [
    "BatteryState",
    "ControllerState",
    "CpuState",
    "DiskInfo",
    "DiskState",
    "FanInfo",
    "HISTORY_SIZE",
    "HistoryBuffer",
    "MemoryState",
    "NetworkState",
    "REFRESH_INTERVAL_CHOICES",
    "SamplingScheduler",
    "SchedulerState",
    "SchedulerStatus",
    "SensorState",
    "Snapshot",
    "Subscription",
    "TelemetryProvider",
    "Visibility",
]
