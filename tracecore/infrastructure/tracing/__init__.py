"""Módulo de tracing: contexto, baggage, spans e propagação."""
from .context import (
    ROOT_CONTEXT,
    Context,
    Token,
    attach,
    bind_context,
    current,
    detach,
    generate_span_id,
    generate_trace_id,
    use_context,
)
from .baggage import (
    clear_baggage,
    get_all_baggage,
    get_baggage,
    remove_baggage,
    set_baggage,
)
from .span import (
    FinishedSpan,
    Link,
    NonRecordingSpan,
    Span,
    SpanContext,
    SpanKind,
    Status,
    StatusCode,
)
from .tracer import (
    Tracer,
    TracerProvider,
    get_current_span,
    get_tracer,
    get_tracer_provider,
    set_span_in_context,
    set_tracer_provider,
)
from .propagation import TraceContextPropagator, extract, inject
from .processors import BatchSpanProcessor, SimpleSpanProcessor, SpanProcessor
from .exporters import InMemorySpanExporter, LoggingSpanExporter, SpanExporter
from .decorators import traced
from .events import EventBus, SpanEventAdapter
from .middleware import TraceMiddleware

__all__ = [
    # Context
    "ROOT_CONTEXT",
    "Context",
    "Token",
    "attach",
    "bind_context",
    "current",
    "detach",
    "generate_trace_id",
    "generate_span_id",
    "use_context",
    # Baggage
    "set_baggage",
    "get_baggage",
    "get_all_baggage",
    "remove_baggage",
    "clear_baggage",
    # Spans
    "FinishedSpan",
    "Link",
    "NonRecordingSpan",
    "Span",
    "SpanContext",
    "SpanKind",
    "Status",
    "StatusCode",
    # Tracer
    "Tracer",
    "TracerProvider",
    "get_current_span",
    "get_tracer",
    "get_tracer_provider",
    "set_span_in_context",
    "set_tracer_provider",
    # Propagation
    "TraceContextPropagator",
    "inject",
    "extract",
    # Pipeline
    "SpanProcessor",
    "SimpleSpanProcessor",
    "BatchSpanProcessor",
    "SpanExporter",
    "InMemorySpanExporter",
    "LoggingSpanExporter",
    # Decorators
    "traced",
    # Events
    "EventBus",
    "SpanEventAdapter",
    # Middleware
    "TraceMiddleware",
]
