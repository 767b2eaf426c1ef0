"""Configuração do tracing: provider, pipeline de spans e propagação global."""
from typing import Optional

from tracecore.infrastructure.config.settings import TracingSettings, get_settings
from tracecore.infrastructure.logging.structlog_config import get_logger, setup_logging
from tracecore.infrastructure.tracing.exporters import (
    InMemorySpanExporter,
    LoggingSpanExporter,
    SpanExporter,
)
from tracecore.infrastructure.tracing.middleware import TraceMiddleware
from tracecore.infrastructure.tracing.processors import BatchSpanProcessor, SimpleSpanProcessor
from tracecore.infrastructure.tracing.propagation import TraceContextPropagator, set_global_propagator
from tracecore.infrastructure.tracing.tracer import TracerProvider, set_tracer_provider

logger = get_logger("observability.tracing")


def _build_exporter(settings: TracingSettings) -> Optional[SpanExporter]:
    if settings.exporter == "logging":
        return LoggingSpanExporter(service_name=settings.service_name)
    if settings.exporter == "memory":
        return InMemorySpanExporter()
    return None


def setup_tracing(
    settings: Optional[TracingSettings] = None,
    exporter: Optional[SpanExporter] = None,
    configure_logging: bool = True,
) -> TracerProvider:
    """Inicializa tracing e registra o provider global.

    Args:
        settings: Configurações (default: ``get_settings()``)
        exporter: Exporter explícito; substitui ``settings.exporter``
        configure_logging: Se deve chamar ``setup_logging`` com ``settings.log_level``
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings.log_level)

    provider = TracerProvider(sampled=settings.sampled, strict_mode=settings.strict_mode)
    exporter = exporter or _build_exporter(settings)
    if exporter is not None:
        if settings.processor == "batch":
            provider.add_span_processor(
                BatchSpanProcessor(exporter, max_batch_size=settings.batch_max_size)
            )
        else:
            provider.add_span_processor(SimpleSpanProcessor(exporter))
    set_tracer_provider(provider)

    # Propagação W3C TraceContext + Baggage
    set_global_propagator(TraceContextPropagator())

    logger.info(
        "tracing_configured",
        service=settings.service_name,
        service_version=settings.service_version,
        environment=settings.environment,
        exporter=type(exporter).__name__ if exporter is not None else None,
        processor=settings.processor,
    )
    return provider


def instrument_app(app, settings: Optional[TracingSettings] = None) -> None:
    """Adiciona o TraceMiddleware a uma app Starlette/FastAPI."""
    settings = settings or get_settings()
    app.add_middleware(TraceMiddleware, excluded_paths=settings.excluded_paths)
