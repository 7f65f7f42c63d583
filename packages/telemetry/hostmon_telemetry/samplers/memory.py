"""Physical memory usage from page-granular VM statistics."""

from __future__ import annotations

import logging
import mmap
import platform
import re
import subprocess
from dataclasses import dataclass
from typing import Callable

import psutil

from ..errors import TransientReadError
from ..history import HISTORY_SIZE, HistoryBuffer
from ..models import MemoryState

log = logging.getLogger("hostmon.telemetry.memory")

_PAGE_SIZE_RE = re.compile(r"page size of (\d+) bytes")
_VM_STAT_FIELDS = {
    "Pages free": "free",
    "Pages active": "active",
    "Pages inactive": "inactive",
    "Pages wired down": "wired",
    "Pages occupied by compressor": "compressed",
}


@dataclass(frozen=True)
class VmStatistics:
    """Page counts from one VM statistics query."""

    page_size: int
    free: int = 0
    active: int = 0
    inactive: int = 0
    wired: int = 0
    compressed: int = 0


def read_total_memory() -> int:
    try:
        return int(psutil.virtual_memory().total)
    except (OSError, psutil.Error) as exc:
        raise TransientReadError(f"virtual_memory failed: {exc}") from exc


def parse_vm_stat(output: str) -> VmStatistics:
    match = _PAGE_SIZE_RE.search(output)
    page_size = int(match.group(1)) if match else mmap.PAGESIZE
    counts: dict[str, int] = {}
    for line in output.splitlines():
        label, sep, value = line.partition(":")
        if not sep:
            continue
        key = _VM_STAT_FIELDS.get(label.strip())
        if key is None:
            continue
        try:
            counts[key] = int(value.strip().rstrip("."))
        except ValueError:
            continue
    if "active" not in counts:
        raise TransientReadError("vm_stat output has no active page count")
    return VmStatistics(page_size=page_size, **counts)


def read_vm_stat() -> VmStatistics:
    try:
        result = subprocess.run(["vm_stat"], capture_output=True, text=True, timeout=2.0, check=True)
    except (OSError, subprocess.SubprocessError) as exc:
        raise TransientReadError(f"vm_stat failed: {exc}") from exc
    return parse_vm_stat(result.stdout)


def read_psutil_vm() -> VmStatistics:
    try:
        vm = psutil.virtual_memory()
    except (OSError, psutil.Error) as exc:
        raise TransientReadError(f"virtual_memory failed: {exc}") from exc
    page = mmap.PAGESIZE

    def pages(name: str) -> int:
        return int(getattr(vm, name, 0) or 0) // page

    return VmStatistics(
        page_size=page,
        free=pages("free"),
        active=pages("active"),
        inactive=pages("inactive"),
        wired=pages("wired"),
    )


def default_vm_reader() -> Callable[[], VmStatistics]:
    # Only vm_stat reports compressor pages.
    if platform.system() == "Darwin":
        return read_vm_stat
    return read_psutil_vm


class MemorySampler:
    def __init__(
        self,
        reader: Callable[[], VmStatistics] | None = None,
        total_reader: Callable[[], int] = read_total_memory,
        history_size: int = HISTORY_SIZE,
    ) -> None:
        self._reader = reader or default_vm_reader()
        self._total_reader = total_reader
        self._history = HistoryBuffer(history_size)
        self._state = MemoryState(history=self._history.values())

    @property
    def state(self) -> MemoryState:
        return self._state

    def update(self) -> MemoryState:
        try:
            total = self._total_reader()
            stats = self._reader()
        except TransientReadError as exc:
            log.debug("memory read skipped: %s", exc)
            return self._state

        page = stats.page_size
        active = stats.active * page
        wired = stats.wired * page
        compressed = stats.compressed * page
        used = active + wired + compressed
        percent = used / total * 100 if total > 0 else 0.0

        self._history.append(percent)
        self._state = MemoryState(
            total=total,
            used=used,
            free=stats.free * page,
            active=active,
            inactive=stats.inactive * page,
            wired=wired,
            compressed=compressed,
            usage_percent=percent,
            history=self._history.values(),
        )
        return self._state
