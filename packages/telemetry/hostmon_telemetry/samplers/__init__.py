"""Per-domain samplers. Each owns its counter state and history."""

from .battery import BatterySampler, PowerSourceDescriptor
from .cpu import CpuSampler, CpuTicks
from .disk import DiskSampler, VolumeMount, VolumeUsage
from .memory import MemorySampler, VmStatistics
from .network import InterfaceCounters, NetworkSampler
from .sensors import PsutilSensorController, SensorSampler

__all__ = [
    "BatterySampler",
    "CpuSampler",
    "CpuTicks",
    "DiskSampler",
    "InterfaceCounters",
    "MemorySampler",
    "NetworkSampler",
    "PowerSourceDescriptor",
    "PsutilSensorController",
    "SensorSampler",
    "VmStatistics",
    "VolumeMount",
    "VolumeUsage",
]
