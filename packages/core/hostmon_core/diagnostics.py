"""Doctor payload: what this host can and cannot report."""

from __future__ import annotations

import platform
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

import psutil

from hostmon_telemetry import Snapshot

from .config import AppConfig, config_path


def _domains(snapshot: Snapshot) -> dict[str, Any]:
    sensors = snapshot.sensors
    return {
        "cpu": {"available": True, "usage_percent": snapshot.cpu.usage},
        "memory": {"available": snapshot.memory.total > 0, "total_bytes": snapshot.memory.total},
        "network": {
            "available": True,
            "total_download_bytes": snapshot.network.total_download_bytes,
            "total_upload_bytes": snapshot.network.total_upload_bytes,
        },
        "disk": {
            "available": bool(snapshot.disk.volumes),
            "volumes": [v.mount_point for v in snapshot.disk.volumes],
        },
        "battery": {"available": snapshot.battery.is_present, "power_source": snapshot.battery.power_source},
        "sensors": {
            "available": sensors.available,
            "controller_state": sensors.controller_state.value,
            "cpu_temperature_reported": sensors.cpu_temperature_c > 0,
            "gpu_temperature_reported": sensors.gpu_temperature_c > 0,
            "fan_count": len(sensors.fans),
        },
    }


def build_doctor_payload(cfg: AppConfig, snapshot: Snapshot | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "ts_utc": datetime.now(timezone.utc).isoformat(),
        "platform": platform.platform(),
        "python": platform.python_version(),
        "psutil": psutil.__version__,
        "config_path": str(config_path()),
        "config": asdict(cfg),
    }
    if snapshot is not None:
        payload["sequence"] = snapshot.sequence
        payload["domains"] = _domains(snapshot)
    return payload
