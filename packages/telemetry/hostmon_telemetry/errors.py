"""Exception types raised by telemetry readers and hardware controllers."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for telemetry failures."""


class TransientReadError(TelemetryError):
    """A single OS query failed; the next cycle tries again."""


class ControllerUnavailable(TelemetryError):
    """The hardware sensor controller cannot be opened on this host."""
