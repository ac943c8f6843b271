"""Centralized metrics module for Prometheus instrumentation.

This package consolidates all Prometheus metrics definitions:
- translation_metrics: Language detection, translator and cache metrics
- realtime_metrics: Push connections, broadcasts and fan-out metrics

Usage:
    # Import individual metrics directly from submodules:
    from polychat.metrics.translation_metrics import translation_errors_total
    from polychat.metrics.realtime_metrics import realtime_connections_active
"""

from polychat.metrics import realtime_metrics, translation_metrics

__all__ = [
    "realtime_metrics",
    "translation_metrics",
]
