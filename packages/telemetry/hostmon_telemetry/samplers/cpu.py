"""CPU usage from cumulative tick counters."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import psutil

from ..errors import TransientReadError
from ..history import HISTORY_SIZE, HistoryBuffer
from ..models import CpuState

log = logging.getLogger("hostmon.telemetry.cpu")


@dataclass(frozen=True)
class CpuTicks:
    user: float
    system: float
    idle: float
    nice: float

    def minus(self, other: CpuTicks) -> CpuTicks:
        return CpuTicks(
            user=self.user - other.user,
            system=self.system - other.system,
            idle=self.idle - other.idle,
            nice=self.nice - other.nice,
        )

    def any_negative(self) -> bool:
        return self.user < 0 or self.system < 0 or self.idle < 0 or self.nice < 0


def read_cpu_ticks() -> CpuTicks:
    try:
        times = psutil.cpu_times()
    except (OSError, psutil.Error) as exc:
        raise TransientReadError(f"cpu_times failed: {exc}") from exc
    return CpuTicks(
        user=float(times.user),
        system=float(times.system),
        idle=float(times.idle),
        nice=float(getattr(times, "nice", 0.0)),
    )


class CpuSampler:
    def __init__(self, reader: Callable[[], CpuTicks] = read_cpu_ticks, history_size: int = HISTORY_SIZE) -> None:
        self._reader = reader
        self._previous: CpuTicks | None = None
        self._history = HistoryBuffer(history_size)
        self._state = CpuState(history=self._history.values())

    @property
    def state(self) -> CpuState:
        return self._state

    def update(self) -> CpuState:
        try:
            current = self._reader()
        except TransientReadError as exc:
            log.debug("cpu read skipped: %s", exc)
            return self._state

        previous = self._previous
        self._previous = current
        if previous is None:
            return self._state

        diff = current.minus(previous)
        if diff.any_negative():
            log.info("cpu tick counters went backwards, re-seeding", extra={"event": "counter_reset"})
            return self._state

        total = diff.user + diff.system + diff.idle + diff.nice
        if total <= 0:
            return self._state

        usage = (diff.user + diff.system + diff.nice) / total * 100
        self._history.append(usage)
        self._state = CpuState(
            usage=usage,
            user_usage=diff.user / total * 100,
            system_usage=diff.system / total * 100,
            idle_usage=diff.idle / total * 100,
            nice_usage=diff.nice / total * 100,
            history=self._history.values(),
        )
        return self._state
