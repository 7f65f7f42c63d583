"""Settings schema, load helpers, and engine wiring.

Settings are read here but never written; persisting user choices belongs to
the enclosing application.
"""

from __future__ import annotations

import json
import logging
import math
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostmon_telemetry import SamplingScheduler, TelemetryProvider, Visibility
from hostmon_telemetry.samplers.disk import DEFAULT_HIDDEN_PREFIXES
from hostmon_telemetry.samplers.network import DEFAULT_INTERFACE_PREFIXES

log = logging.getLogger("hostmon.config")

CONFIG_VERSION = 2
MIN_REFRESH_INTERVAL = 0.1
MAX_REFRESH_INTERVAL = 3600.0


@dataclass
class SamplingConfig:
    refresh_interval: float = 1.0


@dataclass
class VisibilityConfig:
    cpu: bool = True
    memory: bool = True
    network: bool = True
    disk: bool = True
    battery: bool = True
    sensors: bool = True


@dataclass
class NetworkConfig:
    interface_prefixes: list[str] = field(default_factory=lambda: list(DEFAULT_INTERFACE_PREFIXES))


@dataclass
class DiskConfig:
    hidden_prefixes: list[str] = field(default_factory=lambda: list(DEFAULT_HIDDEN_PREFIXES))


@dataclass
class SensorsConfig:
    enabled: bool = True


@dataclass
class DiagnosticsConfig:
    keep_log_files: int = 7


@dataclass
class AppConfig:
    config_version: int = CONFIG_VERSION
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    visibility: VisibilityConfig = field(default_factory=VisibilityConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    disk: DiskConfig = field(default_factory=DiskConfig)
    sensors: SensorsConfig = field(default_factory=SensorsConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)


def config_root() -> Path:
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "hostmon"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "hostmon"
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / "hostmon"


def config_path() -> Path:
    return config_root() / "config.json"


def _merge(dataclass_type, raw: Any):
    defaults = dataclass_type()  # type: ignore[misc]
    if not isinstance(raw, dict):
        return defaults
    for k, v in raw.items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _normalize_sampling(cfg: AppConfig) -> None:
    try:
        interval = float(cfg.sampling.refresh_interval)
    except (TypeError, ValueError):
        interval = SamplingConfig.refresh_interval
    if not math.isfinite(interval) or interval <= 0:
        interval = SamplingConfig.refresh_interval
    cfg.sampling.refresh_interval = max(MIN_REFRESH_INTERVAL, min(MAX_REFRESH_INTERVAL, interval))


def _normalize_lists(cfg: AppConfig) -> None:
    if not isinstance(cfg.network.interface_prefixes, list) or not cfg.network.interface_prefixes:
        cfg.network.interface_prefixes = list(DEFAULT_INTERFACE_PREFIXES)
    cfg.network.interface_prefixes = [str(p) for p in cfg.network.interface_prefixes]
    if not isinstance(cfg.disk.hidden_prefixes, list):
        cfg.disk.hidden_prefixes = list(DEFAULT_HIDDEN_PREFIXES)
    cfg.disk.hidden_prefixes = [str(p) for p in cfg.disk.hidden_prefixes]


def _normalize_flags(cfg: AppConfig) -> None:
    for name in ("cpu", "memory", "network", "disk", "battery", "sensors"):
        setattr(cfg.visibility, name, bool(getattr(cfg.visibility, name)))
    cfg.sensors.enabled = bool(cfg.sensors.enabled)
    try:
        cfg.diagnostics.keep_log_files = max(2, int(cfg.diagnostics.keep_log_files))
    except (TypeError, ValueError):
        cfg.diagnostics.keep_log_files = DiagnosticsConfig.keep_log_files


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    version = int(raw.get("config_version", 1))
    data = dict(raw)

    if version < 2:
        # v1 stored a flat poll period in milliseconds and a "show" map.
        sampling = dict(data.get("sampling", {}) or {})
        if "poll_ms" in data:
            sampling.setdefault("refresh_interval", float(data.pop("poll_ms")) / 1000.0)
        data["sampling"] = sampling
        if "show" in data:
            data.setdefault("visibility", data.pop("show"))
        data["config_version"] = 2

    return data


def load_config(path: Path | None = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        return AppConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.warning("unreadable config %s, using defaults: %s", path, exc, extra={"event": "config_invalid"})
        return AppConfig()
    if not isinstance(raw, dict):
        log.warning("config %s is not a JSON object, using defaults", path, extra={"event": "config_invalid"})
        return AppConfig()

    try:
        data = _migrate(raw)
    except (TypeError, ValueError) as exc:
        log.warning("config %s cannot be migrated, using defaults: %s", path, exc, extra={"event": "config_invalid"})
        return AppConfig()
    cfg = AppConfig(
        config_version=CONFIG_VERSION,
        sampling=_merge(SamplingConfig, data.get("sampling", {})),
        visibility=_merge(VisibilityConfig, data.get("visibility", {})),
        network=_merge(NetworkConfig, data.get("network", {})),
        disk=_merge(DiskConfig, data.get("disk", {})),
        sensors=_merge(SensorsConfig, data.get("sensors", {})),
        diagnostics=_merge(DiagnosticsConfig, data.get("diagnostics", {})),
    )

    _normalize_sampling(cfg)
    _normalize_lists(cfg)
    _normalize_flags(cfg)
    return cfg


def visibility_from(cfg: AppConfig) -> Visibility:
    v = cfg.visibility
    return Visibility(
        cpu=v.cpu,
        memory=v.memory,
        network=v.network,
        disk=v.disk,
        battery=v.battery,
        sensors=v.sensors,
    )


def build_scheduler(cfg: AppConfig) -> SamplingScheduler:
    provider = TelemetryProvider.create(
        interface_prefixes=cfg.network.interface_prefixes,
        hidden_prefixes=cfg.disk.hidden_prefixes,
        sensors_enabled=cfg.sensors.enabled,
        visibility=visibility_from(cfg),
    )
    return SamplingScheduler(provider, refresh_interval=cfg.sampling.refresh_interval)
