"""
Monitoring infrastructure for the royalty ledger.

This package provides:
- Ledger metrics collection (counters, gauges, histograms)
- Structured logging with JSON output

Usage:
    from monitoring import metrics, get_logger

    metrics.increment("distributions_total")
    logger = get_logger("my_module")
    logger.info("Something happened", extra={"track_id": "t-1"})
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
]
