"""Display helpers. Pure functions of already-collected values."""

from __future__ import annotations

MISSING = "--"

_UNITS = ("KB", "MB", "GB", "TB", "PB")
_DECIMALS = {"KB": 0, "MB": 1}


def format_bytes(count: int | float, style: str = "file") -> str:
    """Human readable byte count.

    ``file`` style uses decimal (1000) multiples like disk vendors; ``memory``
    style uses binary (1024) multiples.
    """
    if style not in ("file", "memory"):
        raise ValueError(f"unknown byte count style: {style!r}")
    base = 1000 if style == "file" else 1024
    value = float(count)
    if abs(value) < base:
        whole = int(value)
        return f"{whole} byte" if whole == 1 else f"{whole} bytes"

    unit = _UNITS[0]
    value /= base
    for unit in _UNITS:
        if abs(value) < base or unit == _UNITS[-1]:
            break
        value /= base
    decimals = _DECIMALS.get(unit, 2)
    return f"{value:.{decimals}f} {unit}"


def format_speed(bytes_per_second: float) -> str:
    if bytes_per_second < 1024:
        return f"{bytes_per_second:.0f} B/s"
    if bytes_per_second < 1024 * 1024:
        return f"{bytes_per_second / 1024:.1f} KB/s"
    return f"{bytes_per_second / 1024 / 1024:.2f} MB/s"


def format_percent(value: float, decimals: int = 1) -> str:
    return f"{value:.{decimals}f}%"


def format_temperature(celsius: float) -> str:
    # 0 is the "no reading" sentinel, not a real temperature.
    if celsius <= 0:
        return MISSING
    return f"{int(round(celsius))}°C"


def format_rpm(rpm: int) -> str:
    if rpm <= 0:
        return MISSING
    return f"{rpm} RPM"


def format_time_remaining(minutes: int) -> str:
    if minutes < 0:
        return MISSING
    hours, mins = divmod(int(minutes), 60)
    return f"{hours}:{mins:02d}"
