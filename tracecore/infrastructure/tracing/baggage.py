"""
Baggage: pares chave/valor (str -> str) carregados dentro do Context.

Diferente dos atributos de span, baggage atravessa fronteiras de processo via
propagação. Todas as operações são puras: retornam um novo Context.
"""
from typing import Any, Mapping, Optional

from tracecore.infrastructure.logging.structlog_config import get_logger
from tracecore.infrastructure.tracing.context import Context

logger = get_logger("tracing.baggage")


def _is_valid_entry(key: Any, value: Any) -> bool:
    if not isinstance(key, str) or not key:
        logger.warning("baggage_invalid_key", key=repr(key))
        return False
    if not isinstance(value, str):
        logger.warning("baggage_invalid_value", key=key, value_type=type(value).__name__)
        return False
    return True


def set_baggage(context: Context, key: str, value: str) -> Context:
    """
    Retorna um contexto derivado com a entrada inserida/sobrescrita.

    Chaves vazias ou valores não-string são ignorados (contexto original
    retornado), pois instrumentação nunca deve derrubar a aplicação.
    """
    if not _is_valid_entry(key, value):
        return context
    entries = dict(context.baggage)
    entries[key] = value
    return context.with_baggage(entries)


def get_baggage(context: Context, key: str) -> Optional[str]:
    return context.baggage.get(key)


def get_all_baggage(context: Context) -> Mapping[str, str]:
    """Retorna visão somente-leitura de todo o baggage do contexto."""
    return context.baggage


def remove_baggage(context: Context, key: str) -> Context:
    if key not in context.baggage:
        return context
    entries = dict(context.baggage)
    del entries[key]
    return context.with_baggage(entries)


def clear_baggage(context: Context) -> Context:
    return context.with_baggage({})
