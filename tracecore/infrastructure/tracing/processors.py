"""
Span processors: a fronteira que recebe spans finalizados.

``on_end`` é chamado exatamente uma vez por span. Falhas do exporter nunca
chegam ao código instrumentado: são logadas e o span é descartado.
"""
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

from tracecore.infrastructure.logging.structlog_config import get_logger
from tracecore.infrastructure.tracing.exporters import SpanExporter
from tracecore.infrastructure.tracing.span import FinishedSpan

if TYPE_CHECKING:
    from tracecore.infrastructure.tracing.context import Context
    from tracecore.infrastructure.tracing.span import Span

logger = get_logger("tracing.processors")


class SpanProcessor(ABC):
    """Interface de hooks invocada pelo TracerProvider."""

    def on_start(self, span: "Span", parent_context: Optional["Context"]) -> None:
        pass

    @abstractmethod
    def on_end(self, span: FinishedSpan) -> None:
        ...

    def force_flush(self) -> bool:
        return True

    def shutdown(self) -> None:
        pass


def _export(exporter: SpanExporter, spans: List[FinishedSpan]) -> bool:
    for span in spans:
        if span.end_time < span.start_time:
            logger.warning(
                "span_end_before_start",
                span_name=span.name,
                span_id=span.context.span_id,
                duration_ns=span.duration_ns,
            )
    try:
        return exporter.export(spans)
    except Exception:
        logger.exception("span_export_failed", exporter=type(exporter).__name__, batch_size=len(spans))
        return False


class SimpleSpanProcessor(SpanProcessor):
    """Encaminha cada span finalizado ao exporter imediatamente."""

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def on_end(self, span: FinishedSpan) -> None:
        _export(self.exporter, [span])

    def shutdown(self) -> None:
        self.exporter.shutdown()


class BatchSpanProcessor(SpanProcessor):
    """
    Acumula spans finalizados e os exporta em lotes.

    Um lote é exportado quando o buffer atinge ``max_batch_size`` ou no
    ``force_flush``/``shutdown``. O export roda na thread que completou o
    lote, fora do lock do buffer.
    """

    def __init__(self, exporter: SpanExporter, max_batch_size: int = 512):
        if max_batch_size <= 0:
            raise ValueError("max_batch_size deve ser positivo")
        self.exporter = exporter
        self.max_batch_size = max_batch_size
        self._buffer: List[FinishedSpan] = []
        self._lock = threading.Lock()
        self._stopped = False

    def on_end(self, span: FinishedSpan) -> None:
        with self._lock:
            if self._stopped:
                logger.debug("span_dropped_processor_stopped", span_name=span.name)
                return
            self._buffer.append(span)
            if len(self._buffer) < self.max_batch_size:
                return
            batch, self._buffer = self._buffer, []
        _export(self.exporter, batch)

    def force_flush(self) -> bool:
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return True
        return _export(self.exporter, batch)

    def shutdown(self) -> None:
        self.force_flush()
        with self._lock:
            self._stopped = True
        self.exporter.shutdown()


class MultiSpanProcessor(SpanProcessor):
    """Repassa para todos os processors registrados, isolando suas falhas."""

    def __init__(self, processors: Optional[List[SpanProcessor]] = None):
        self._processors: List[SpanProcessor] = list(processors or [])
        self._lock = threading.Lock()

    def add(self, processor: SpanProcessor) -> None:
        with self._lock:
            self._processors = self._processors + [processor]

    def on_start(self, span: "Span", parent_context: Optional["Context"]) -> None:
        for processor in self._processors:
            try:
                processor.on_start(span, parent_context)
            except Exception:
                logger.exception("span_processor_on_start_failed", processor=type(processor).__name__)

    def on_end(self, span: FinishedSpan) -> None:
        for processor in self._processors:
            try:
                processor.on_end(span)
            except Exception:
                logger.exception("span_processor_on_end_failed", processor=type(processor).__name__)

    def force_flush(self) -> bool:
        return all([processor.force_flush() for processor in self._processors])

    def shutdown(self) -> None:
        for processor in self._processors:
            processor.shutdown()
