"""
Decorador para criar spans automáticos em funções.

É o wrapper de instrumentação responsável pelo status: o núcleo nunca deriva
ERROR do fluxo de controle, então aqui a exceção é capturada, registrada no
span (evento + status ERROR) e relançada inalterada.
"""
import functools
import inspect
import time
from typing import Any, Callable, Optional

from tracecore.infrastructure.logging.structlog_config import get_logger
from tracecore.infrastructure.tracing.span import Span, SpanKind, StatusCode
from tracecore.infrastructure.tracing.tracer import Tracer, get_tracer

logger = get_logger("tracing.decorator")


def _record_failure(span: Span, event_name: str, error: Exception, duration_ms: float) -> None:
    span.record_exception(error)
    span.set_status(StatusCode.ERROR, f"{type(error).__name__}: {error}")
    logger.error(
        f"{event_name}_error",
        error_type=type(error).__name__,
        error_message=str(error),
        duration_before_error_ms=duration_ms,
    )


def traced(
    event_name: Optional[str] = None,
    *,
    tracer: Optional[Tracer] = None,
    kind: SpanKind = SpanKind.INTERNAL,
    log_args: bool = False,
    log_result: bool = False,
):
    """
    Decorador que executa a função dentro de um span corrente.

    Args:
        event_name: Nome do span e prefixo dos eventos de log
            (padrão: nome qualificado da função)
        tracer: Tracer a usar (padrão: tracer global do módulo da função)
        kind: SpanKind do span criado
        log_args: Se deve logar os kwargs da função
        log_result: Se deve logar um resumo do resultado

    Exemplo:
        @traced("checkout")
        async def checkout(order_id):
            ...
    """
    def decorator(func: Callable) -> Callable:
        span_name = event_name or func.__qualname__

        def _tracer() -> Tracer:
            return tracer if tracer is not None else get_tracer(func.__module__)

        def _log_start(span: Span, kwargs: dict) -> None:
            log_data = {"function": func.__name__, "span_name": span_name}
            if log_args:
                log_data["function_args"] = kwargs
            logger.info(f"{span_name}_start", **log_data)

        def _log_end(result: Any, duration_ms: float) -> None:
            log_data = {"status": "success", "duration_ms": duration_ms}
            if log_result:
                log_data["result_summary"] = _summarize_result(result)
            logger.info(f"{span_name}_end", **log_data)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with _tracer().start_as_current_span(span_name, kind=kind) as span:
                _log_start(span, kwargs)
                start_time = time.time()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, span_name, e, (time.time() - start_time) * 1000)
                    raise
                _log_end(result, (time.time() - start_time) * 1000)
                return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with _tracer().start_as_current_span(span_name, kind=kind) as span:
                _log_start(span, kwargs)
                start_time = time.time()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, span_name, e, (time.time() - start_time) * 1000)
                    raise
                _log_end(result, (time.time() - start_time) * 1000)
                return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def _summarize_result(result: Any) -> Any:
    """
    Cria resumo do resultado para logging.
    Evita logar objetos muito grandes.
    """
    if result is None:
        return None

    if isinstance(result, (str, int, float, bool)):
        return result

    if isinstance(result, list):
        return {
            "type": "list",
            "length": len(result),
            "preview": result[:3] if len(result) > 3 else result
        }

    if isinstance(result, dict):
        return {
            "type": "dict",
            "keys": list(result.keys())
        }

    return {
        "type": type(result).__name__
    }
