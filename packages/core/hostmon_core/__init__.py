"""Core app services for settings, logging, and diagnostics."""

from .config import AppConfig, build_scheduler, config_path, load_config, visibility_from
from .diagnostics import build_doctor_payload

__all__ = [
    "AppConfig",
    "build_doctor_payload",
    "build_scheduler",
    "config_path",
    "load_config",
    "visibility_from",
]
