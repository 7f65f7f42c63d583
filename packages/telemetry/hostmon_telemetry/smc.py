"""Keyed hardware sensor registers: raw value decoding and the AppleSMC connection.

The decode formulas are per data type and were worked out by the community
for Intel and Apple Silicon machines; they are best effort. Keep them in
``decode_value`` so controllers only ever move raw bytes.
"""

from __future__ import annotations

import ctypes
import ctypes.util
import logging
import platform
import struct
from dataclasses import dataclass
from typing import Protocol

from .errors import ControllerUnavailable, TransientReadError

log = logging.getLogger("hostmon.telemetry.smc")


@dataclass(frozen=True)
class RawValue:
    data_type: str
    payload: bytes


class SensorController(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...

    def read_key(self, key: str) -> RawValue | None: ...


def decode_value(raw: RawValue | None) -> float | None:
    """Decode a register payload into a number, or None for unknown types."""
    if raw is None:
        return None
    kind = raw.data_type
    data = raw.payload
    try:
        if kind == "sp78":
            return struct.unpack(">h", data[:2])[0] / 256.0
        if kind == "fpe2":
            return struct.unpack(">H", data[:2])[0] / 4.0
        if kind == "flt ":
            return float(struct.unpack("<f", data[:4])[0])
        if kind == "ui8 ":
            return float(data[0])
        if kind == "ui16":
            return float(struct.unpack(">H", data[:2])[0])
        if kind == "ui32":
            return float(struct.unpack(">I", data[:4])[0])
    except (struct.error, IndexError):
        return None
    return None


def fourcc(code: str) -> int:
    value = 0
    for char in code.encode("ascii"):
        value = (value << 8) | char
    return value


def fourcc_str(value: int) -> str:
    return bytes((value >> shift) & 0xFF for shift in (24, 16, 8, 0)).decode("ascii", errors="replace")


class _KeyDataVers(ctypes.Structure):
    _fields_ = [
        ("major", ctypes.c_uint8),
        ("minor", ctypes.c_uint8),
        ("build", ctypes.c_uint8),
        ("reserved", ctypes.c_uint8),
        ("release", ctypes.c_uint16),
    ]


class _KeyDataPLimit(ctypes.Structure):
    _fields_ = [
        ("version", ctypes.c_uint16),
        ("length", ctypes.c_uint16),
        ("cpu_p_limit", ctypes.c_uint32),
        ("gpu_p_limit", ctypes.c_uint32),
        ("mem_p_limit", ctypes.c_uint32),
    ]


class _KeyInfo(ctypes.Structure):
    _fields_ = [
        ("data_size", ctypes.c_uint32),
        ("data_type", ctypes.c_uint32),
        ("data_attributes", ctypes.c_uint8),
    ]


class _KeyData(ctypes.Structure):
    _fields_ = [
        ("key", ctypes.c_uint32),
        ("vers", _KeyDataVers),
        ("p_limit_data", _KeyDataPLimit),
        ("key_info", _KeyInfo),
        ("result", ctypes.c_uint8),
        ("status", ctypes.c_uint8),
        ("data8", ctypes.c_uint8),
        ("data32", ctypes.c_uint32),
        ("bytes", ctypes.c_uint8 * 32),
    ]


_KERNEL_INDEX_SMC = 2
_CMD_READ_BYTES = 5
_CMD_READ_KEYINFO = 9
_KERN_SUCCESS = 0


class AppleSmcController:
    """IOKit connection to the AppleSMC service."""

    def __init__(self) -> None:
        self._iokit = None
        self._connection = ctypes.c_uint32(0)
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def _load(self):
        if platform.system() != "Darwin":
            raise ControllerUnavailable("AppleSMC is only present on macOS")
        path = ctypes.util.find_library("IOKit")
        if path is None:
            raise ControllerUnavailable("IOKit framework not found")
        iokit = ctypes.cdll.LoadLibrary(path)
        iokit.IOServiceMatching.restype = ctypes.c_void_p
        iokit.IOServiceMatching.argtypes = [ctypes.c_char_p]
        iokit.IOServiceGetMatchingService.restype = ctypes.c_uint32
        iokit.IOServiceGetMatchingService.argtypes = [ctypes.c_uint32, ctypes.c_void_p]
        iokit.IOServiceOpen.restype = ctypes.c_int
        iokit.IOServiceOpen.argtypes = [ctypes.c_uint32, ctypes.c_uint32, ctypes.c_uint32, ctypes.POINTER(ctypes.c_uint32)]
        iokit.IOServiceClose.argtypes = [ctypes.c_uint32]
        iokit.IOObjectRelease.argtypes = [ctypes.c_uint32]
        iokit.IOConnectCallStructMethod.restype = ctypes.c_int
        iokit.IOConnectCallStructMethod.argtypes = [
            ctypes.c_uint32,
            ctypes.c_uint32,
            ctypes.c_void_p,
            ctypes.c_size_t,
            ctypes.c_void_p,
            ctypes.POINTER(ctypes.c_size_t),
        ]
        return iokit

    def open(self) -> None:
        if self._open:
            return
        try:
            iokit = self._load()
            libc = ctypes.CDLL(ctypes.util.find_library("System") or "/usr/lib/libSystem.B.dylib")
            task = ctypes.c_uint32.in_dll(libc, "mach_task_self_")
        except OSError as exc:
            raise ControllerUnavailable(f"cannot load IOKit: {exc}") from exc

        service = iokit.IOServiceGetMatchingService(0, iokit.IOServiceMatching(b"AppleSMC"))
        if service == 0:
            raise ControllerUnavailable("AppleSMC service not found")
        result = iokit.IOServiceOpen(service, task.value, 0, ctypes.byref(self._connection))
        iokit.IOObjectRelease(service)
        if result != _KERN_SUCCESS:
            raise ControllerUnavailable(f"IOServiceOpen failed: {result:#x}")
        self._iokit = iokit
        self._open = True
        log.info("AppleSMC connection opened", extra={"event": "smc_open"})

    def close(self) -> None:
        if not self._open:
            return
        self._iokit.IOServiceClose(self._connection.value)
        self._connection = ctypes.c_uint32(0)
        self._open = False
        log.info("AppleSMC connection closed", extra={"event": "smc_close"})

    def _call(self, request: _KeyData) -> _KeyData:
        response = _KeyData()
        size = ctypes.c_size_t(ctypes.sizeof(_KeyData))
        result = self._iokit.IOConnectCallStructMethod(
            self._connection.value,
            _KERNEL_INDEX_SMC,
            ctypes.byref(request),
            ctypes.sizeof(_KeyData),
            ctypes.byref(response),
            ctypes.byref(size),
        )
        if result != _KERN_SUCCESS:
            raise TransientReadError(f"SMC call failed: {result:#x}")
        return response

    def read_key(self, key: str) -> RawValue | None:
        if not self._open:
            return None
        request = _KeyData(key=fourcc(key), data8=_CMD_READ_KEYINFO)
        info = self._call(request)
        if info.result != 0:
            return None

        request.key_info.data_size = info.key_info.data_size
        request.data8 = _CMD_READ_BYTES
        data = self._call(request)
        if data.result != 0:
            return None
        size = min(int(info.key_info.data_size), 32)
        return RawValue(data_type=fourcc_str(info.key_info.data_type), payload=bytes(data.bytes[:size]))
