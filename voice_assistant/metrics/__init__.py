"""Latency, token and cost telemetry."""
