"""Mounted volume capacities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePath
from typing import Callable, Iterable

import psutil

from ..errors import TransientReadError
from ..models import DiskInfo, DiskState

log = logging.getLogger("hostmon.telemetry.disk")

DEFAULT_HIDDEN_PREFIXES = ("/System/Volumes/", "/private/var/vm", "/boot/efi", "/snap/", "/proc/", "/sys/", "/dev/")
_HIDDEN_FSTYPES = {"autofs", "devfs", "devtmpfs", "squashfs", "tmpfs", "overlay", "nullfs"}


@dataclass(frozen=True)
class VolumeMount:
    device: str
    mount_point: str
    fstype: str = ""


@dataclass(frozen=True)
class VolumeUsage:
    total: int
    free: int


def list_mounts() -> list[VolumeMount]:
    try:
        parts = psutil.disk_partitions(all=False)
    except (OSError, psutil.Error) as exc:
        raise TransientReadError(f"disk_partitions failed: {exc}") from exc
    return [VolumeMount(device=p.device, mount_point=p.mountpoint, fstype=p.fstype) for p in parts]


def volume_usage(mount_point: str) -> VolumeUsage:
    usage = psutil.disk_usage(mount_point)
    return VolumeUsage(total=int(usage.total), free=int(usage.free))


def volume_name(mount: VolumeMount) -> str:
    return PurePath(mount.mount_point).name or PurePath(mount.device).name or mount.mount_point


class DiskSampler:
    def __init__(
        self,
        mounts: Callable[[], list[VolumeMount]] = list_mounts,
        usage: Callable[[str], VolumeUsage] = volume_usage,
        hidden_prefixes: Iterable[str] = DEFAULT_HIDDEN_PREFIXES,
    ) -> None:
        self._mounts = mounts
        self._usage = usage
        self._hidden_prefixes = tuple(hidden_prefixes)
        self._state = DiskState()

    @property
    def state(self) -> DiskState:
        return self._state

    def is_hidden(self, mount: VolumeMount) -> bool:
        path = mount.mount_point
        if mount.fstype in _HIDDEN_FSTYPES:
            return True
        if any(part.startswith(".") for part in PurePath(path).parts):
            return True
        return any(path == prefix.rstrip("/") or path.startswith(prefix) for prefix in self._hidden_prefixes)

    def update(self) -> DiskState:
        try:
            mounts = self._mounts()
        except TransientReadError as exc:
            log.debug("volume enumeration skipped: %s", exc)
            return self._state

        volumes: list[DiskInfo] = []
        seen: set[str] = set()
        for mount in mounts:
            if mount.mount_point in seen or self.is_hidden(mount):
                continue
            seen.add(mount.mount_point)
            try:
                usage = self._usage(mount.mount_point)
            except (OSError, psutil.Error) as exc:
                # Unmount race or permission denied; leave the volume out.
                log.debug("skipping volume %s: %s", mount.mount_point, exc)
                continue
            volumes.append(
                DiskInfo(
                    name=volume_name(mount),
                    mount_point=mount.mount_point,
                    total_bytes=usage.total,
                    free_bytes=usage.free,
                )
            )

        self._state = DiskState(volumes=tuple(volumes))
        return self._state
