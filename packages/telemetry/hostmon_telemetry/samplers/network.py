"""Network throughput from cumulative interface byte counters."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

import psutil

from ..errors import TransientReadError
from ..history import HISTORY_SIZE, HistoryBuffer
from ..models import NetworkState

log = logging.getLogger("hostmon.telemetry.network")

DEFAULT_INTERFACE_PREFIXES = ("en", "eth", "wl", "lo")


@dataclass(frozen=True)
class InterfaceCounters:
    bytes_recv: int
    bytes_sent: int


def read_interface_counters() -> Mapping[str, Any]:
    try:
        return psutil.net_io_counters(pernic=True)
    except (OSError, psutil.Error) as exc:
        raise TransientReadError(f"net_io_counters failed: {exc}") from exc


def _rate(current: int, previous: int, interval: float) -> float:
    if current < previous:
        return 0.0
    return (current - previous) / interval


class NetworkSampler:
    """Sums allow-listed interfaces and differences the totals over wall time.

    Unlike CPU and memory, the history advances on every call, appending 0
    when no rate is available, so both histories stay aligned with the polling
    cadence.
    """

    def __init__(
        self,
        reader: Callable[[], Mapping[str, Any]] = read_interface_counters,
        interface_prefixes: Iterable[str] = DEFAULT_INTERFACE_PREFIXES,
        clock: Callable[[], float] = time.monotonic,
        history_size: int = HISTORY_SIZE,
    ) -> None:
        self._reader = reader
        self._prefixes = tuple(interface_prefixes)
        self._clock = clock
        self._previous_download = 0
        self._previous_upload = 0
        self._last_update: float | None = None
        self._download_history = HistoryBuffer(history_size)
        self._upload_history = HistoryBuffer(history_size)
        self._state = NetworkState(
            download_history=self._download_history.values(),
            upload_history=self._upload_history.values(),
        )

    @property
    def state(self) -> NetworkState:
        return self._state

    def _included(self, name: str) -> bool:
        return name.startswith(self._prefixes)

    def update(self) -> NetworkState:
        try:
            counters = self._reader()
        except TransientReadError as exc:
            log.debug("network read skipped: %s", exc)
            return self._publish(0.0, 0.0, self._state.total_download_bytes, self._state.total_upload_bytes)

        current_download = 0
        current_upload = 0
        for name, entry in counters.items():
            if self._included(name):
                current_download += int(entry.bytes_recv)
                current_upload += int(entry.bytes_sent)

        now = self._clock()
        interval = now - self._last_update if self._last_update is not None else 0.0

        download_speed = 0.0
        upload_speed = 0.0
        if self._previous_download > 0 and interval > 0:
            download_speed = _rate(current_download, self._previous_download, interval)
            upload_speed = _rate(current_upload, self._previous_upload, interval)
            if current_download < self._previous_download or current_upload < self._previous_upload:
                log.info("interface counters went backwards, re-baselining", extra={"event": "counter_reset"})

        self._previous_download = current_download
        self._previous_upload = current_upload
        self._last_update = now
        return self._publish(download_speed, upload_speed, current_download, current_upload)

    def _publish(self, download: float, upload: float, total_down: int, total_up: int) -> NetworkState:
        self._download_history.append(download)
        self._upload_history.append(upload)
        self._state = NetworkState(
            download_speed=download,
            upload_speed=upload,
            total_download_bytes=total_down,
            total_upload_bytes=total_up,
            download_history=self._download_history.values(),
            upload_history=self._upload_history.values(),
        )
        return self._state
