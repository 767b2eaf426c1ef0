"""
Eventos de instrumentação e logging de tracing.

- ``EventBus``: despachante mínimo de eventos ``<prefixo>.start``,
  ``<prefixo>.stop`` e ``<prefixo>.exception``.
- ``SpanEventAdapter``: traduz esses três eventos para start_span / end /
  set_status(ERROR)+end, permitindo que hooks genéricos dirijam o tracer sem
  dependerem dele. O núcleo não importa este módulo.
- Funções ``log_*``: eventos estruturados da camada HTTP.
"""
import threading
import time
import traceback
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from tracecore.infrastructure.logging.structlog_config import get_logger
from tracecore.infrastructure.tracing.context import (
    Context,
    Token,
    execution_unit,
    attach,
    current,
    detach,
)
from tracecore.infrastructure.tracing.span import Span, StatusCode
from tracecore.infrastructure.tracing.tracer import Tracer, set_span_in_context

logger = get_logger("tracing.events")

START = "start"
STOP = "stop"
EXCEPTION = "exception"

EventHandler = Callable[[str, Mapping[str, Any], Mapping[str, Any]], None]


def _trace_fields() -> Dict[str, Optional[str]]:
    """Campos de trace do contexto corrente para anexar aos logs."""
    span = current().span
    if span is None:
        return {"trace_id": None, "span_id": None}
    span_context = span.get_span_context()
    return {"trace_id": span_context.trace_id, "span_id": span_context.span_id}


# ============================================================================
# Despachante de eventos
# ============================================================================

class EventBus:
    """
    Registro de handlers por nome de evento.

    Um handler que lança exceção é logado e desanexado, para nunca afetar o
    código que emitiu o evento.
    """

    def __init__(self):
        self._handlers: Dict[str, Tuple[Tuple[str, ...], EventHandler]] = {}
        self._lock = threading.Lock()

    def attach(self, handler_id: str, event_names: Iterable[str], handler: EventHandler) -> None:
        with self._lock:
            if handler_id in self._handlers:
                raise ValueError(f"Handler '{handler_id}' já registrado")
            self._handlers[handler_id] = (tuple(event_names), handler)

    def detach(self, handler_id: str) -> bool:
        with self._lock:
            return self._handlers.pop(handler_id, None) is not None

    def handlers_for(self, event_name: str) -> List[Tuple[str, EventHandler]]:
        with self._lock:
            return [
                (handler_id, handler)
                for handler_id, (event_names, handler) in self._handlers.items()
                if event_name in event_names
            ]

    def emit(
        self,
        event_name: str,
        measurements: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> None:
        for handler_id, handler in self.handlers_for(event_name):
            try:
                handler(event_name, measurements or {}, metadata or {})
            except Exception:
                logger.exception("event_handler_failed", handler_id=handler_id, event_name=event_name)
                self.detach(handler_id)

    def span(self, prefix: str, metadata: Optional[Mapping[str, Any]], fn: Callable[[], Any]) -> Any:
        """
        Executa ``fn`` emitindo ``start`` antes e ``stop``/``exception`` depois.

        Todos os eventos compartilham ``metadata["operation_id"]``.
        """
        metadata = {"operation_id": uuid.uuid4().hex, **(metadata or {})}
        start_monotonic = time.monotonic_ns()
        self.emit(f"{prefix}.{START}", {"system_time": time.time_ns()}, metadata)
        try:
            result = fn()
        except Exception as e:
            self.emit(
                f"{prefix}.{EXCEPTION}",
                {"duration": time.monotonic_ns() - start_monotonic},
                {**metadata, "reason": e, "stacktrace": traceback.format_exc()},
            )
            raise
        self.emit(f"{prefix}.{STOP}", {"duration": time.monotonic_ns() - start_monotonic}, metadata)
        return result


# ============================================================================
# Adaptador start/stop/exception -> Tracer
# ============================================================================

@dataclass
class _OpenOperation:
    span: Span
    context: Context
    token: Token
    owner: Tuple[str, int]


class SpanEventAdapter:
    """
    Mapeia eventos de ciclo de vida para operações do Tracer.

    ``start`` cria o span e o anexa como corrente; ``stop`` faz detach e
    finaliza; ``exception`` registra status ERROR antes de finalizar. A
    correlação entre eventos usa ``metadata["operation_id"]``.

    As operações abertas formam uma pilha por unidade de execução. Um ``stop``
    fora de ordem desanexa as operações acima da encerrada e as reanexa em
    seguida, de modo que um span finalizado nunca fica como corrente.
    """

    def __init__(self, tracer: Tracer):
        self.tracer = tracer
        self._open: Dict[str, _OpenOperation] = {}
        self._stacks: Dict[Tuple[str, int], List[str]] = {}
        self._lock = threading.Lock()

    def attach_to(self, bus: EventBus, prefix: str, handler_id: Optional[str] = None) -> str:
        handler_id = handler_id or f"span-adapter:{prefix}"
        bus.attach(
            handler_id,
            [f"{prefix}.{START}", f"{prefix}.{STOP}", f"{prefix}.{EXCEPTION}"],
            self.handle,
        )
        return handler_id

    @property
    def open_operations(self) -> int:
        with self._lock:
            return len(self._open)

    def handle(self, event_name: str, measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
        prefix, _, suffix = event_name.rpartition(".")
        if suffix == START:
            self.on_start(prefix, measurements, metadata)
        elif suffix == STOP:
            self.on_stop(metadata)
        elif suffix == EXCEPTION:
            self.on_exception(metadata)
        else:
            logger.debug("event_ignored", event_name=event_name)

    def on_start(self, prefix: str, measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
        operation_id = metadata.get("operation_id")
        if operation_id is None:
            logger.warning("event_missing_operation_id", event_prefix=prefix)
            return
        span = self.tracer.start_span(
            metadata.get("span_name", prefix),
            attributes=metadata.get("attributes"),
            start_time=measurements.get("system_time"),
        )
        context = set_span_in_context(span)
        owner = execution_unit()
        with self._lock:
            self._open[operation_id] = _OpenOperation(span, context, attach(context), owner)
            self._stacks.setdefault(owner, []).append(operation_id)

    def _close(self, metadata: Mapping[str, Any]) -> Optional[_OpenOperation]:
        """Remove a operação da pilha e restaura o contexto da unidade de execução."""
        operation_id = metadata.get("operation_id")
        with self._lock:
            operation = self._open.pop(operation_id, None)
            if operation is None:
                logger.warning("event_unknown_operation", operation_id=operation_id)
                return None

            stack = self._stacks[operation.owner]
            index = stack.index(operation_id)
            above = [self._open[other_id] for other_id in stack[index + 1:]]
            del stack[index]
            if not stack:
                del self._stacks[operation.owner]

            if operation.owner != execution_unit():
                # o slot pertence a outra thread/task; só o span é finalizado
                logger.warning("event_stop_foreign_unit", operation_id=operation_id)
                return operation

            if above:
                logger.debug("event_stop_out_of_order", operation_id=operation_id, still_open=len(above))
            for other in reversed(above):
                detach(other.token)
            detach(operation.token)
            for other in above:
                other.token = attach(other.context)
        return operation

    def on_stop(self, metadata: Mapping[str, Any]) -> None:
        operation = self._close(metadata)
        if operation is None:
            return
        operation.span.end()

    def on_exception(self, metadata: Mapping[str, Any]) -> None:
        operation = self._close(metadata)
        if operation is None:
            return
        span = operation.span
        reason = metadata.get("reason")
        if isinstance(reason, BaseException):
            span.record_exception(reason)
            description = f"{type(reason).__name__}: {reason}"
        else:
            description = str(reason) if reason is not None else None
        span.set_status(StatusCode.ERROR, description)
        span.end()


# ============================================================================
# Eventos HTTP
# ============================================================================

def log_request_received(
    path: str,
    method: str,
    ip: Optional[str],
    user_agent: Optional[str]
):
    """Loga recebimento de request"""
    logger.info(
        "request_received",
        **_trace_fields(),
        request_metadata={
            "path": path,
            "method": method,
            "ip": ip,
            "user_agent": user_agent
        }
    )


def log_response_sent(
    status_code: int,
    duration_ms: float
):
    """Loga envio de response"""
    logger.info(
        "response_sent",
        **_trace_fields(),
        status="success",
        status_code=status_code,
        total_duration_ms=duration_ms
    )


def log_request_failed(
    error_type: str,
    error_message: str,
    duration_ms: float
):
    """Loga falha de request"""
    logger.error(
        "request_failed",
        **_trace_fields(),
        status="error",
        error_type=error_type,
        error_message=error_message,
        total_duration_ms=duration_ms
    )
