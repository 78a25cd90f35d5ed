"""Monitoring module - Prometheus metrics for secret providers."""

from monitoring.recorders import Metrics, track_time

__all__ = [
    "Metrics",
    "track_time",
]
