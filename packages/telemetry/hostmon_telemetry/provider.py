"""Snapshot aggregator: one collection cycle across every sampler."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Iterable

from .errors import ControllerUnavailable
from .history import HISTORY_SIZE
from .models import Snapshot, Visibility
from .samplers import BatterySampler, CpuSampler, DiskSampler, MemorySampler, NetworkSampler, SensorSampler
from .samplers.disk import DEFAULT_HIDDEN_PREFIXES
from .samplers.network import DEFAULT_INTERFACE_PREFIXES

log = logging.getLogger("hostmon.telemetry")


class TelemetryProvider:
    """Runs every sampler in a fixed order and composes an immutable ``Snapshot``.

    The order carries no dependency; samplers never read each other. A
    sampler that raises keeps its previous state for the cycle.
    """

    def __init__(
        self,
        cpu: CpuSampler | None = None,
        memory: MemorySampler | None = None,
        network: NetworkSampler | None = None,
        disk: DiskSampler | None = None,
        battery: BatterySampler | None = None,
        sensors: SensorSampler | None = None,
        visibility: Visibility | None = None,
    ) -> None:
        self.cpu = cpu or CpuSampler()
        self.memory = memory or MemorySampler()
        self.network = network or NetworkSampler()
        self.disk = disk or DiskSampler()
        self.battery = battery or BatterySampler()
        self.sensors = sensors or SensorSampler()
        self.visibility = visibility or Visibility()
        self._cycle_lock = threading.Lock()
        self._sequence = 0
        self._closed = False

    @classmethod
    def create(
        cls,
        history_size: int = HISTORY_SIZE,
        interface_prefixes: Iterable[str] = DEFAULT_INTERFACE_PREFIXES,
        hidden_prefixes: Iterable[str] = DEFAULT_HIDDEN_PREFIXES,
        sensors_enabled: bool = True,
        visibility: Visibility | None = None,
    ) -> TelemetryProvider:
        sensors = SensorSampler() if sensors_enabled else SensorSampler(controller=_DisabledController())
        return cls(
            cpu=CpuSampler(history_size=history_size),
            memory=MemorySampler(history_size=history_size),
            network=NetworkSampler(interface_prefixes=interface_prefixes, history_size=history_size),
            disk=DiskSampler(hidden_prefixes=hidden_prefixes),
            battery=BatterySampler(),
            sensors=sensors,
            visibility=visibility,
        )

    def _run(self, name: str, sampler: Any):
        try:
            return sampler.update()
        except Exception:
            log.exception("%s sampler failed, keeping previous state", name, extra={"event": "sampler_error"})
            return sampler.state

    def poll(self) -> Snapshot:
        with self._cycle_lock:
            cpu = self._run("cpu", self.cpu)
            memory = self._run("memory", self.memory)
            network = self._run("network", self.network)
            disk = self._run("disk", self.disk)
            battery = self._run("battery", self.battery)
            sensors = self._run("sensors", self.sensors)
            self._sequence += 1
            return Snapshot(
                sequence=self._sequence,
                timestamp=datetime.now(timezone.utc),
                cpu=cpu,
                memory=memory,
                network=network,
                disk=disk,
                battery=battery,
                sensors=sensors,
                visibility=self.visibility,
            )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.sensors.close()


class _DisabledController:
    """Controller for hosts where sensor polling is switched off in settings."""

    def open(self) -> None:
        raise ControllerUnavailable("sensor polling disabled")

    def close(self) -> None:
        return None

    def read_key(self, key: str):
        return None
