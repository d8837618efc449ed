"""
Observability: structured logging, Prometheus metrics, tracing and health checks
"""

from dlq_intel.observability.logging import (
    configure_logging,
    get_logger,
    replay_log_context,
    scan_log_context,
)
from dlq_intel.observability.metrics import start_metrics_server
from dlq_intel.observability.tracing import get_tracer, init_tracing

__all__ = [
    "configure_logging",
    "get_logger",
    "replay_log_context",
    "scan_log_context",
    "start_metrics_server",
    "get_tracer",
    "init_tracing",
]
