"""
Configuração de logging estruturado com structlog.

Todo evento de log recebe o trace_id/span_id do contexto ativo da unidade de
execução corrente, quando houver um span.
"""

import logging
import sys
from typing import Any, Optional

import structlog


def add_trace_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Processor structlog que anexa trace_id/span_id do span corrente."""
    # Import tardio: o módulo de contexto usa get_logger deste módulo
    from tracecore.infrastructure.tracing.context import current

    span = current().span
    if span is None:
        return event_dict

    span_context = span.get_span_context()
    event_dict.setdefault("trace_id", span_context.trace_id)
    event_dict.setdefault("span_id", span_context.span_id)
    return event_dict


def setup_logging(log_level: str = "INFO", json_logs: Optional[bool] = None) -> None:
    """
    Configura logging estruturado para a aplicação.

    Args:
        log_level: Nível de log (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Força JSON (True) ou console (False). Por padrão usa
            console apenas em DEBUG.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    if json_logs is None:
        json_logs = log_level.upper() != "DEBUG"

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if json_logs
            else structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Obtém um logger configurado.

    Args:
        name: Nome do logger (geralmente __name__)

    Returns:
        Logger estruturado
    """
    return structlog.get_logger(name)
