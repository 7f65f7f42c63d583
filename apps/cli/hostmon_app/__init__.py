"""Command-line host for the telemetry engine."""
