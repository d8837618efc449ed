"""
OpenTelemetry spans around namespace scans and replay groups

Spans go through the global tracer provider. Until init_tracing() installs
an SDK provider, OpenTelemetry hands out no-op spans, so callers never need
to check whether tracing is enabled.
"""

from contextlib import contextmanager
from typing import Iterator

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from dlq_intel import __version__

INSTRUMENTATION_NAME = "dlq_intel"

ATTR_NAMESPACE = "dlq.namespace_id"
ATTR_DESTINATION = "dlq.replay.destination"
ATTR_GROUP_SIZE = "dlq.replay.group_size"
ATTR_FAILED = "dlq.replay.failed"
ATTR_DETECTED = "dlq.scan.detected"


def init_tracing(service_name: str = "dlq-intel", console_export: bool = False) -> TracerProvider:
    """
    Install an SDK tracer provider for the process

    Args:
        service_name: Reported as service.name on every span
        console_export: Print finished spans to stdout
    """
    provider = TracerProvider(
        resource=Resource.create({SERVICE_NAME: service_name, SERVICE_VERSION: __version__})
    )
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    return provider


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(INSTRUMENTATION_NAME, __version__)


@contextmanager
def trace_namespace_scan(namespace_id: str) -> Iterator[trace.Span]:
    """Span covering one scan of every DLQ in a namespace"""
    with get_tracer().start_as_current_span(
        "dlq.scan_namespace", attributes={ATTR_NAMESPACE: namespace_id}
    ) as span:
        yield span


@contextmanager
def trace_replay_group(namespace_id: str, destination: str, group_size: int) -> Iterator[trace.Span]:
    """Span covering one batched replay call to a single destination"""
    with get_tracer().start_as_current_span(
        "dlq.replay_group",
        attributes={
            ATTR_NAMESPACE: namespace_id,
            ATTR_DESTINATION: destination,
            ATTR_GROUP_SIZE: group_size,
        },
    ) as span:
        yield span
