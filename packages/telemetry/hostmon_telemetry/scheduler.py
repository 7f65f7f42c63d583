"""Sampling scheduler with exact stop semantics and snapshot subscriptions."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from .models import Snapshot, Visibility
from .provider import TelemetryProvider

log = logging.getLogger("hostmon.telemetry.scheduler")

REFRESH_INTERVAL_CHOICES = (0.5, 1.0, 2.0, 5.0)

SnapshotCallback = Callable[[Snapshot], None]


class SchedulerState(str, Enum):
    STOPPED = "Stopped"
    RUNNING = "Running"


@dataclass
class SchedulerStatus:
    state: SchedulerState = SchedulerState.STOPPED
    refresh_interval: float = 1.0
    cycles: int = 0
    last_cycle_s: float = 0.0
    last_error: str | None = None


def _validate_interval(value: float) -> float:
    interval = float(value)
    if not math.isfinite(interval) or interval <= 0:
        raise ValueError(f"refresh interval must be a positive number of seconds, got {value!r}")
    return interval


class Subscription:
    """Handle returned by ``subscribe``. Calling it unsubscribes."""

    def __init__(self, scheduler: SamplingScheduler, callback: SnapshotCallback) -> None:
        self._scheduler = scheduler
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        self._scheduler._unsubscribe(self)

    def __call__(self) -> None:
        self.unsubscribe()


class SamplingScheduler:
    """Drives ``TelemetryProvider.poll`` on a fixed cadence from a worker thread.

    Subscribers are called on the worker thread while the publish lock is
    held, so a UI should hand the snapshot over to its own loop. Once
    ``stop`` or ``Subscription.unsubscribe`` returns no further callback is
    made, including when they are invoked from inside a callback.
    """

    def __init__(self, provider: TelemetryProvider | None = None, refresh_interval: float = 1.0) -> None:
        self._provider = provider or TelemetryProvider()
        self._interval = _validate_interval(refresh_interval)
        self._status = SchedulerStatus(refresh_interval=self._interval)

        # _lock serializes publishing against stop/unsubscribe; _wake guards the timer.
        self._lock = threading.RLock()
        self._wake = threading.Condition(threading.Lock())
        self._generation = 0
        self._reschedule = False
        self._worker: threading.Thread | None = None
        self._subscribers: list[Subscription] = []
        self._latest: Snapshot | None = None
        self._events: list[dict[str, Any]] = []
        self._closed = False

    @property
    def provider(self) -> TelemetryProvider:
        return self._provider

    @property
    def status(self) -> SchedulerStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status.state is SchedulerState.RUNNING

    @property
    def latest(self) -> Snapshot | None:
        return self._latest

    @property
    def refresh_interval(self) -> float:
        return self._interval

    @refresh_interval.setter
    def refresh_interval(self, value: float) -> None:
        interval = _validate_interval(value)
        with self._wake:
            if interval == self._interval:
                return
            self._interval = interval
            self._status.refresh_interval = interval
            if self._status.state is SchedulerState.RUNNING:
                self._reschedule = True
                self._wake.notify_all()
        self._log_event("interval_changed", refresh_interval=interval)

    @property
    def visibility(self) -> Visibility:
        return self._provider.visibility

    @visibility.setter
    def visibility(self, value: Visibility) -> None:
        # Picked up by the next snapshot; sampling itself is unaffected.
        self._provider.visibility = value

    def recent_events(self, limit: int = 200) -> list[dict[str, Any]]:
        return self._events[-limit:]

    def _log_event(self, event: str, **fields: Any) -> None:
        row = {
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "state": self._status.state.value,
        }
        row.update(fields)
        self._events.append(row)
        if len(self._events) > 1000:
            self._events = self._events[-1000:]
        log.debug("%s %s", event, fields, extra={"event": event})

    def subscribe(self, callback: SnapshotCallback) -> Subscription:
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def start(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("scheduler is closed")
            if self._status.state is SchedulerState.RUNNING:
                return
            self._status.state = SchedulerState.RUNNING
            with self._wake:
                self._generation += 1
                generation = self._generation
                self._reschedule = False
            self._log_event("start", refresh_interval=self._interval)

            # First snapshot is collected synchronously so consumers never see an empty one.
            self._cycle(generation)
            if generation != self._generation:
                return
            self._worker = threading.Thread(
                target=self._run,
                args=(generation,),
                name="hostmon-sampler",
                daemon=True,
            )
            self._worker.start()

    def stop(self) -> None:
        with self._lock:
            if self._status.state is SchedulerState.STOPPED:
                return
            self._status.state = SchedulerState.STOPPED
            with self._wake:
                self._generation += 1
                self._wake.notify_all()
            worker, self._worker = self._worker, None
            self._log_event("stop")
        if worker is not None and worker is not threading.current_thread():
            worker.join()

    def close(self) -> None:
        self.stop()
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._provider.close()
        self._log_event("close")

    def __enter__(self) -> SamplingScheduler:
        self.start()
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def _run(self, generation: int) -> None:
        deadline = time.monotonic() + self._interval
        while True:
            with self._wake:
                while True:
                    if self._generation != generation:
                        return
                    if self._reschedule:
                        self._reschedule = False
                        deadline = time.monotonic() + self._interval
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    # Very long intervals wait in TIMEOUT_MAX slices.
                    self._wake.wait(min(remaining, threading.TIMEOUT_MAX))
                interval = self._interval

            self._cycle(generation)

            deadline += interval
            now = time.monotonic()
            if deadline <= now:
                # Overran the period; realign instead of firing back-to-back.
                deadline = now + interval

    def _cycle(self, generation: int) -> None:
        start = time.perf_counter()
        try:
            snapshot = self._provider.poll()
        except Exception as exc:
            self._status.last_error = str(exc)
            log.exception("collection cycle failed", extra={"event": "cycle_error"})
            self._log_event("cycle_error", error=str(exc))
            return
        self._status.cycles += 1
        self._status.last_cycle_s = time.perf_counter() - start
        self._publish(snapshot, generation)

    def _publish(self, snapshot: Snapshot, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._latest = snapshot
            for subscription in list(self._subscribers):
                if generation != self._generation:
                    return
                if not subscription.active:
                    continue
                try:
                    subscription.callback(snapshot)
                except Exception:
                    log.exception("snapshot subscriber failed", extra={"event": "subscriber_error"})
