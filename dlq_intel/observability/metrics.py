"""
Prometheus Metrics for DLQ scanning and replay
"""

import structlog
from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = structlog.get_logger(__name__)

# Counters
records_detected_total = Counter(
    "dlq_records_detected_total",
    "New dead-lettered messages detected by the scanner",
    ["namespace"],
)

scan_errors_total = Counter(
    "dlq_scan_errors_total",
    "Scanner failures by namespace and scope (namespace or entity)",
    ["namespace", "scope"],
)

replay_attempts_total = Counter(
    "dlq_replay_attempts_total",
    "Replay outcomes (Success, Failed, Skipped)",
    ["outcome"],
)

replay_skipped_total = Counter(
    "dlq_replay_skipped_total",
    "Messages skipped by the per-rule rate limit",
    ["rule"],
)

rules_malformed_total = Counter(
    "dlq_rules_malformed_total",
    "Rules skipped during evaluation because their stored data is malformed",
)

# Gauges
namespace_scan_mode = Gauge(
    "dlq_namespace_scan_mode",
    "Polling mode per namespace (1 active, 0 inactive)",
    ["namespace"],
)

# Histograms
scan_duration_seconds = Histogram(
    "dlq_scan_duration_seconds",
    "Time taken to scan a namespace",
    ["namespace"],
    buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server

    Args:
        port: HTTP port to expose /metrics endpoint (default 9090)
    """
    start_http_server(port)
    logger.info("Prometheus metrics server started", port=port)


def increment_records_detected(namespace: str, count: int = 1) -> None:
    """Increment detected records counter"""
    records_detected_total.labels(namespace=namespace).inc(count)


def increment_scan_errors(namespace: str, scope: str, count: int = 1) -> None:
    """Increment scanner error counter"""
    scan_errors_total.labels(namespace=namespace, scope=scope).inc(count)


def increment_replay_outcome(outcome: str, count: int = 1) -> None:
    """Increment replay outcome counter"""
    replay_attempts_total.labels(outcome=outcome).inc(count)


def increment_replay_skipped(rule: str, count: int = 1) -> None:
    """Increment rate-limited skip counter"""
    replay_skipped_total.labels(rule=rule).inc(count)


def increment_malformed_rules(count: int = 1) -> None:
    rules_malformed_total.inc(count)


def set_namespace_scan_mode(namespace: str, active: bool) -> None:
    """Set namespace polling mode gauge"""
    namespace_scan_mode.labels(namespace=namespace).set(1 if active else 0)


def observe_scan_duration(namespace: str, duration_seconds: float) -> None:
    """Observe namespace scan duration histogram"""
    scan_duration_seconds.labels(namespace=namespace).observe(duration_seconds)
