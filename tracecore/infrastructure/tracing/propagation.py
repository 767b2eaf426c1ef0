"""
Propagação text-map: Context <-> carrier plano ``dict[str, str]``.

Chaves do carrier (estáveis):

``traceparent``
    W3C Trace Context: ``00-<32 hex trace id>-<16 hex span id>-<2 hex flags>``.

``baggage``
    Chave única: membros ``chave=valor`` unidos por ``,``. Chaves e valores
    são percent-encoded em UTF-8 sem caracteres seguros, então qualquer string
    (inclusive ``,``, ``;``, ``=``, espaços e não-ASCII) faz o round-trip exato.
    Propriedades após ``;`` enviadas por outras implementações são descartadas.

A extração nunca lança exceção: ``traceparent`` ou ``baggage`` malformado
resulta em ``ROOT_CONTEXT``. Sem ``traceparent`` e com ``baggage`` válido, o
resultado é um contexto só com o baggage.
"""
import re
from typing import Any, Dict, Mapping, MutableMapping, Optional
from urllib.parse import quote, unquote

from tracecore.core.exceptions import CarrierFormatException
from tracecore.infrastructure.logging.structlog_config import get_logger
from tracecore.infrastructure.tracing.context import ROOT_CONTEXT, Context, current
from tracecore.infrastructure.tracing.span import NonRecordingSpan, SpanContext

logger = get_logger("tracing.propagation")

TRACEPARENT_HEADER = "traceparent"
BAGGAGE_HEADER = "baggage"

_TRACEPARENT_VERSION = "00"
_TRACEPARENT_RE = re.compile(
    r"^([0-9a-f]{2})-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})(-.*)?$"
)


def format_traceparent(span_context: SpanContext) -> str:
    return (
        f"{_TRACEPARENT_VERSION}-{span_context.trace_id}-"
        f"{span_context.span_id}-{span_context.trace_flags:02x}"
    )


def parse_traceparent(value: str) -> SpanContext:
    """Converte um valor ``traceparent`` em SpanContext remoto."""
    match = _TRACEPARENT_RE.match(value.strip())
    if match is None:
        raise CarrierFormatException(TRACEPARENT_HEADER, value, "formato inválido")

    version, trace_id, span_id, flags, extra = match.groups()
    if version == "ff":
        raise CarrierFormatException(TRACEPARENT_HEADER, value, "versão ff é proibida")
    if version == _TRACEPARENT_VERSION and extra:
        raise CarrierFormatException(TRACEPARENT_HEADER, value, "campos extras na versão 00")

    span_context = SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        trace_flags=int(flags, 16),
        is_remote=True,
    )
    if not span_context.is_valid:
        raise CarrierFormatException(TRACEPARENT_HEADER, value, "trace_id ou span_id zerado")
    return span_context


def format_baggage(baggage: Mapping[str, str]) -> str:
    return ",".join(
        f"{quote(key, safe='')}={quote(value, safe='')}" for key, value in baggage.items()
    )


def parse_baggage(value: str) -> Dict[str, str]:
    """Converte o valor ``baggage``; um membro malformado invalida o valor inteiro."""
    entries: Dict[str, str] = {}
    for member in value.split(","):
        member = member.strip()
        if not member:
            continue
        pair = member.split(";", 1)[0]
        if "=" not in pair:
            raise CarrierFormatException(BAGGAGE_HEADER, value, f"membro sem '=': {member!r}")
        raw_key, raw_value = pair.split("=", 1)
        raw_key = raw_key.strip()
        if not raw_key:
            raise CarrierFormatException(BAGGAGE_HEADER, value, f"chave vazia: {member!r}")
        try:
            key = unquote(raw_key, errors="strict")
            entry_value = unquote(raw_value.strip(), errors="strict")
        except UnicodeDecodeError:
            raise CarrierFormatException(BAGGAGE_HEADER, value, f"UTF-8 inválido: {member!r}")
        entries[key] = entry_value
    return entries


def _get_header(carrier: Mapping[str, Any], name: str) -> Optional[str]:
    value = carrier.get(name)
    if value is None:
        for key, candidate in carrier.items():
            if isinstance(key, str) and key.lower() == name:
                value = candidate
                break
    if value is None:
        return None
    if not isinstance(value, str):
        raise CarrierFormatException(name, repr(value), "valor não é string")
    return value


class TraceContextPropagator:
    """Injeta/extrai identidade de trace e baggage por um carrier text-map."""

    fields = (TRACEPARENT_HEADER, BAGGAGE_HEADER)

    def inject(
        self,
        context: Optional[Context] = None,
        carrier: Optional[MutableMapping[str, str]] = None,
    ) -> MutableMapping[str, str]:
        """
        Escreve ``context`` (padrão: ``current()``) em ``carrier``.

        Returns:
            O carrier (um dict novo quando nenhum foi passado).
        """
        context = context if context is not None else current()
        carrier = carrier if carrier is not None else {}

        if context.span is not None:
            span_context = context.span.get_span_context()
            if span_context.is_valid:
                carrier[TRACEPARENT_HEADER] = format_traceparent(span_context)
        if context.baggage:
            carrier[BAGGAGE_HEADER] = format_baggage(context.baggage)
        return carrier

    def extract(self, carrier: Optional[Mapping[str, Any]]) -> Context:
        """
        Monta um Context a partir de ``carrier``.

        O span corrente do resultado é um NonRecordingSpan (pai remoto): o
        receptor o usa como pai e nunca pode finalizá-lo.

        Ausência de ``traceparent`` NÃO degrada para ``ROOT_CONTEXT`` quando há
        ``baggage`` válido: o resultado é um contexto sem span carregando só o
        baggage. Só entrada malformada ou carrier inválido retorna
        ``ROOT_CONTEXT``.
        """
        if not isinstance(carrier, Mapping):
            logger.debug("carrier_extract_failed", reason="carrier não é um mapping")
            return ROOT_CONTEXT

        try:
            traceparent = _get_header(carrier, TRACEPARENT_HEADER)
            baggage_header = _get_header(carrier, BAGGAGE_HEADER)
            span_context = parse_traceparent(traceparent) if traceparent is not None else None
            baggage = parse_baggage(baggage_header) if baggage_header is not None else {}
        except CarrierFormatException as e:
            logger.debug("carrier_extract_failed", **e.details)
            return ROOT_CONTEXT

        context = ROOT_CONTEXT
        if span_context is not None:
            context = context.with_span(NonRecordingSpan(span_context))
        if baggage:
            context = context.with_baggage(baggage)
        return context


_global_propagator = TraceContextPropagator()


def set_global_propagator(propagator: TraceContextPropagator) -> None:
    global _global_propagator
    _global_propagator = propagator


def get_global_propagator() -> TraceContextPropagator:
    return _global_propagator


def inject(
    context: Optional[Context] = None,
    carrier: Optional[MutableMapping[str, str]] = None,
) -> MutableMapping[str, str]:
    return _global_propagator.inject(context, carrier)


def extract(carrier: Optional[Mapping[str, Any]]) -> Context:
    return _global_propagator.extract(carrier)
