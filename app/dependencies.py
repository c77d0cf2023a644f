"""
FastAPI Dependencies

All long-lived object creation happens here, not per request.
Routes receive these through Depends() so tests can override them.
"""

from functools import lru_cache

from app.core.config import settings
from memory.trace_store import TraceStore
from observability.collector import TraceCollector
from observability.context import TraceContext
from observability.sink import build_sink
from streaming.transport import TransportConsumer


@lru_cache(maxsize=1)
def get_trace_store() -> TraceStore:
    """
    Create and cache the process-wide TraceStore.

    Returns:
        TraceStore: Registry of every live run.
    """
    return TraceStore(
        timeout_minutes=settings.run_timeout_minutes,
        default_max_iterations=settings.default_max_iterations,
        default_max_depth=settings.default_max_depth,
    )


@lru_cache(maxsize=1)
def get_transport_consumer() -> TransportConsumer:
    """Create and cache the stream transport."""
    return TransportConsumer(
        connect_timeout_seconds=settings.stream_connect_timeout_seconds,
        read_timeout_seconds=settings.stream_read_timeout_seconds,
    )


class CollectorFactory:
    """Builds one TraceCollector per consumed stream, wired from settings."""

    def __init__(self, consumer: TransportConsumer):
        self._consumer = consumer

    def __call__(self, context: TraceContext) -> TraceCollector:
        sink = build_sink(settings.trace_sink)
        return TraceCollector(
            context=context,
            consumer=self._consumer,
            sink=sink,
            total_timeout_seconds=settings.total_timeout_seconds,
            enabled=sink is not None,
        )


def get_collector_factory() -> CollectorFactory:
    """
    Factory for per-run collectors.

    All components are wired here:
    - TransportConsumer: opens and reads the live stream
    - TraceSink: receives the final snapshot
    """
    return CollectorFactory(get_transport_consumer())
