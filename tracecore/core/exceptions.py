"""
Exceções customizadas do núcleo de tracing.

Erros de uso (detach fora de ordem, escrita após end) são apenas logados por
padrão; estas exceções só sobem quando o modo estrito está habilitado ou quando
são capturadas internamente para produzir logs com detalhes.
"""

from typing import Any, Optional


class TracingException(Exception):
    """Exceção base para erros do núcleo de tracing."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class CarrierFormatException(TracingException):
    """Carrier de propagação com formato inválido."""

    def __init__(self, key: str, value: str, reason: str):
        super().__init__(
            message=f"Valor inválido para '{key}': {reason}",
            details={"key": key, "value": value, "reason": reason}
        )


class ContextDetachException(TracingException):
    """Token de detach obsoleto, fora de ordem ou de outra unidade de execução."""

    def __init__(self, token_generation: int, active_generation: Optional[int]):
        super().__init__(
            message=(
                f"Token de contexto {token_generation} não corresponde ao "
                f"contexto ativo ({active_generation})"
            ),
            details={
                "token_generation": token_generation,
                "active_generation": active_generation,
            }
        )


class SpanEndedException(TracingException):
    """Operação de escrita em um span já finalizado."""

    def __init__(self, span_name: str, span_id: str, operation: str):
        super().__init__(
            message=f"Span '{span_name}' ({span_id}) já foi finalizado: {operation} ignorado",
            details={"span_name": span_name, "span_id": span_id, "operation": operation}
        )
