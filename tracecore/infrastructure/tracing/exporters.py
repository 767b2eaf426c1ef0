"""
Exporters de spans finalizados.

O transporte real (OTLP, backend de visualização) fica fora deste núcleo;
aqui existem apenas o contrato e dois sinks locais: memória (testes) e log.
"""
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from tracecore.infrastructure.logging.structlog_config import get_logger
from tracecore.infrastructure.tracing.span import FinishedSpan


class SpanExporter(ABC):
    """Contrato do sink de spans."""

    @abstractmethod
    def export(self, spans: Sequence[FinishedSpan]) -> bool:
        """Exporta um lote. Retorna True em caso de sucesso."""

    def shutdown(self) -> None:
        pass


class InMemorySpanExporter(SpanExporter):
    """Guarda spans finalizados em memória (útil para testes)."""

    def __init__(self):
        self._spans: List[FinishedSpan] = []
        self._lock = threading.Lock()
        self._stopped = False

    def export(self, spans: Sequence[FinishedSpan]) -> bool:
        if self._stopped:
            return False
        with self._lock:
            self._spans.extend(spans)
        return True

    def get_finished_spans(self) -> Tuple[FinishedSpan, ...]:
        with self._lock:
            return tuple(self._spans)

    def clear(self) -> None:
        with self._lock:
            self._spans.clear()

    def shutdown(self) -> None:
        self._stopped = True


class LoggingSpanExporter(SpanExporter):
    """Loga cada span finalizado como evento estruturado ``span_finished``."""

    def __init__(self, service_name: Optional[str] = None, logger_name: str = "tracing.exporter"):
        self.service_name = service_name
        self.logger = get_logger(logger_name)

    def export(self, spans: Sequence[FinishedSpan]) -> bool:
        for span in spans:
            self.logger.info(
                "span_finished",
                service=self.service_name,
                span_name=span.name,
                trace_id=span.context.trace_id,
                span_id=span.context.span_id,
                parent_span_id=span.parent.span_id if span.parent is not None else None,
                kind=span.kind.value,
                status=span.status.code.value,
                status_description=span.status.description,
                duration_ms=span.duration_ns / 1_000_000,
                attributes=dict(span.attributes),
                events=[event.name for event in span.events],
            )
        return True
