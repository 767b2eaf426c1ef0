"""
Tracer e TracerProvider: criação de spans e ligação com o pipeline de processors.

Fluxo: o Tracer lê o span corrente do Context -> cria o Span com parent =
span corrente -> o chamador anexa o contexto derivado (``set_span_in_context``)
-> no ``end()`` o snapshot vai para o processor -> o contexto anterior é
restaurado com ``detach``.
"""
import threading
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from tracecore.infrastructure.logging.structlog_config import get_logger
from tracecore.infrastructure.tracing.context import (
    Context,
    attach,
    current,
    detach,
    generate_span_id,
    generate_trace_id,
    set_strict_mode,
)
from tracecore.infrastructure.tracing.processors import MultiSpanProcessor, SpanProcessor
from tracecore.infrastructure.tracing.span import (
    TRACE_FLAG_NONE,
    TRACE_FLAG_SAMPLED,
    FinishedSpan,
    Link,
    NonRecordingSpan,
    Span,
    SpanContext,
    SpanKind,
)

logger = get_logger("tracing.tracer")

ParentType = Union[Span, NonRecordingSpan, SpanContext]


def set_span_in_context(span: Union[Span, NonRecordingSpan], context: Optional[Context] = None) -> Context:
    """Retorna um contexto derivado com ``span`` como span corrente."""
    return (context if context is not None else current()).with_span(span)


def get_current_span(context: Optional[Context] = None) -> Optional[Union[Span, NonRecordingSpan]]:
    return (context if context is not None else current()).span


def _resolve_parent(context: Context, parent: Optional[ParentType]) -> Optional[SpanContext]:
    if parent is not None:
        span_context = parent if isinstance(parent, SpanContext) else parent.get_span_context()
    else:
        span = context.span
        span_context = span.get_span_context() if span is not None else None

    if span_context is None or not span_context.is_valid:
        return None
    return span_context


class Tracer:
    """Fábrica de spans de um componente instrumentado."""

    def __init__(self, name: str, provider: "TracerProvider", version: Optional[str] = None):
        self.name = name
        self.version = version
        self._provider = provider

    def start_span(
        self,
        name: str,
        context: Optional[Context] = None,
        *,
        kind: SpanKind = SpanKind.INTERNAL,
        parent: Optional[ParentType] = None,
        links: Iterable[Link] = (),
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[int] = None,
    ) -> Span:
        """
        Cria um novo span aberto.

        Args:
            name: Nome da operação
            context: Contexto de onde ler o span pai (padrão: ``current()``)
            kind: Papel do span no trace
            parent: Pai explícito (Span ou SpanContext), ignora ``context``
            links: Referências a spans de outros traces
            attributes: Atributos iniciais
            start_time: Início em ns desde epoch (padrão: agora)

        Returns:
            Span aberto. Para torná-lo corrente, anexe
            ``set_span_in_context(span, context)``.
        """
        base_context = context if context is not None else current()
        parent_context = _resolve_parent(base_context, parent)
        if parent_context is not None:
            trace_id = parent_context.trace_id
            trace_flags = parent_context.trace_flags
        else:
            trace_id = generate_trace_id()
            trace_flags = TRACE_FLAG_SAMPLED if self._provider.sampled else TRACE_FLAG_NONE

        span = Span(
            name=name,
            context=SpanContext(trace_id=trace_id, span_id=generate_span_id(), trace_flags=trace_flags),
            parent=parent_context,
            kind=kind,
            attributes=attributes,
            links=links,
            start_time=start_time,
            on_end=self._provider._on_end,
        )
        self._provider._on_start(span, base_context)
        return span

    @contextmanager
    def start_as_current_span(
        self,
        name: str,
        context: Optional[Context] = None,
        *,
        end_on_exit: bool = True,
        **kwargs: Any,
    ) -> Iterator[Span]:
        """
        Cria um span, anexa-o como corrente durante o bloco e finaliza ao sair.

        NÃO define status ERROR quando o bloco lança exceção: status é dado que
        a aplicação registra explicitamente (ver ``traced``). A exceção segue
        propagando inalterada.
        """
        base_context = context if context is not None else current()
        span = self.start_span(name, base_context, **kwargs)
        token = attach(set_span_in_context(span, base_context))
        try:
            yield span
        finally:
            detach(token)
            if end_on_exit:
                span.end()


class TracerProvider:
    """
    Ponto de configuração: tracers, processors e flags globais.

    ``strict_mode`` é global ao processo: só é alterado quando passado
    explicitamente, para que um segundo provider não desfaça a configuração.
    """

    def __init__(self, sampled: bool = True, strict_mode: Optional[bool] = None):
        self.sampled = sampled
        self._processor = MultiSpanProcessor()
        self._shutdown = False
        self._lock = threading.Lock()
        if strict_mode is not None:
            set_strict_mode(strict_mode)

    def get_tracer(self, name: str, version: Optional[str] = None) -> Tracer:
        return Tracer(name, self, version)

    def add_span_processor(self, processor: SpanProcessor) -> None:
        self._processor.add(processor)

    def _on_start(self, span: Span, parent_context: Optional[Context]) -> None:
        if not self._shutdown:
            self._processor.on_start(span, parent_context)

    def _on_end(self, span: FinishedSpan) -> None:
        if self._shutdown:
            logger.debug("span_dropped_after_shutdown", span_name=span.name)
            return
        self._processor.on_end(span)

    def force_flush(self) -> bool:
        return self._processor.force_flush()

    def shutdown(self) -> None:
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
        self._processor.shutdown()


_tracer_provider: Optional[TracerProvider] = None
_tracer_provider_lock = threading.Lock()


def set_tracer_provider(provider: TracerProvider) -> None:
    global _tracer_provider
    with _tracer_provider_lock:
        _tracer_provider = provider


def get_tracer_provider() -> TracerProvider:
    """Retorna o provider global, criando um padrão (sem processors) se necessário."""
    global _tracer_provider
    with _tracer_provider_lock:
        if _tracer_provider is None:
            _tracer_provider = TracerProvider()
        return _tracer_provider


def get_tracer(name: str, version: Optional[str] = None) -> Tracer:
    return get_tracer_provider().get_tracer(name, version)
