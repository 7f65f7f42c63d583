"""CLI entrypoints: one-shot snapshot, live watch, and doctor."""

from __future__ import annotations

import argparse
import json
import math
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any

from hostmon_core import build_doctor_payload, build_scheduler, load_config
from hostmon_core.logging_setup import configure_logging, install_crash_hooks
from hostmon_telemetry import Snapshot
from hostmon_telemetry.formatting import (
    format_bytes,
    format_percent,
    format_rpm,
    format_speed,
    format_temperature,
    format_time_remaining,
)


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    data = asdict(snapshot)
    data["disk"]["volumes"] = [
        dict(asdict(v), used_bytes=v.used_bytes, usage_percent=v.usage_percent) for v in snapshot.disk.volumes
    ]
    return data


def render_line(snapshot: Snapshot) -> str:
    parts: list[str] = []
    show = snapshot.visibility
    if show.cpu:
        parts.append(f"cpu {format_percent(snapshot.cpu.usage)}")
    if show.memory:
        mem = snapshot.memory
        parts.append(
            f"mem {format_bytes(mem.used, 'memory')}/{format_bytes(mem.total, 'memory')} "
            f"{format_percent(mem.usage_percent)}"
        )
    if show.network:
        net = snapshot.network
        parts.append(f"net down {format_speed(net.download_speed)} up {format_speed(net.upload_speed)}")
    if show.disk:
        for volume in snapshot.disk.volumes:
            parts.append(f"disk {volume.name} {format_percent(volume.usage_percent)}")
    if show.battery and snapshot.battery.is_present:
        bat = snapshot.battery
        parts.append(
            f"battery {bat.current_capacity_percent}% {bat.power_source} "
            f"{format_time_remaining(bat.time_remaining_minutes)}"
        )
    if show.sensors and snapshot.sensors.available:
        sensors = snapshot.sensors
        fans = " ".join(format_rpm(f.rpm) for f in sensors.fans)
        parts.append(
            f"temp cpu {format_temperature(sensors.cpu_temperature_c)} "
            f"gpu {format_temperature(sensors.gpu_temperature_c)}" + (f" fans {fans}" if fans else "")
        )
    return " | ".join(parts)


def cmd_snapshot(args: argparse.Namespace) -> int:
    cfg = args.cfg
    scheduler = build_scheduler(cfg)
    try:
        scheduler.start()
        scheduler.stop()
        snapshot = scheduler.latest
    finally:
        scheduler.close()
    _print_json(snapshot_to_dict(snapshot) if snapshot is not None else {})
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    cfg = args.cfg
    scheduler = build_scheduler(cfg)
    if args.interval is not None:
        scheduler.refresh_interval = args.interval

    done = threading.Event()
    seen = 0

    def _on_snapshot(snapshot: Snapshot) -> None:
        nonlocal seen
        print(render_line(snapshot), flush=True)
        seen += 1
        if args.count and seen >= args.count:
            done.set()

    scheduler.subscribe(_on_snapshot)
    try:
        scheduler.start()
        done.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.close()
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    cfg = args.cfg
    scheduler = build_scheduler(cfg)
    try:
        scheduler.start()
        scheduler.stop()
        payload = build_doctor_payload(cfg, scheduler.latest)
        payload["events"] = scheduler.recent_events()
    finally:
        scheduler.close()
    _print_json(payload)
    return 0


def _positive_float(value: str) -> float:
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        raise argparse.ArgumentTypeError("interval must be a positive number of seconds")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hostmon", description="Host telemetry sampler")
    parser.add_argument("--config", default=None, help="Optional path to a config.json")
    parser.add_argument("--verbose", action="store_true", help="Log to the console as well")
    sub = parser.add_subparsers(dest="command", required=True)

    snap_cmd = sub.add_parser("snapshot", help="Collect one snapshot and print it as JSON")
    snap_cmd.set_defaults(func=cmd_snapshot)

    watch_cmd = sub.add_parser("watch", help="Print a line per published snapshot")
    watch_cmd.add_argument("--interval", type=_positive_float, default=None, help="Refresh interval in seconds")
    watch_cmd.add_argument("--count", type=int, default=0, help="Stop after this many snapshots (0 = forever)")
    watch_cmd.set_defaults(func=cmd_watch)

    doctor_cmd = sub.add_parser("doctor", help="Print host capabilities and diagnostics")
    doctor_cmd.set_defaults(func=cmd_doctor)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.cfg = load_config(Path(args.config) if args.config else None)
    configure_logging(keep_files=args.cfg.diagnostics.keep_log_files, console=args.verbose)
    install_crash_hooks()
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
